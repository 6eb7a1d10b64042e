"""Shared fakes for disnake objects, the voice layer and the resolver."""

import asyncio
from types import SimpleNamespace

import pytest

from core.errors import PlaybackError, VoiceConnectionError
from core.player import PlaybackPolicy
from core.playlist import PlaylistStore
from core.resolver import ResolvedTrack
from systems.session_manager import SessionManager
from utils.config import ConfigManager

GUILD_ID = 1001
TEXT_CHANNEL_ID = 2001
VOICE_CHANNEL_ID = 3001
OTHER_VOICE_CHANNEL_ID = 3002


class FakeTextChannel:
    def __init__(self, channel_id=TEXT_CHANNEL_ID):
        self.id = channel_id
        self.sent = []

    async def send(self, content=None, **kwargs):
        self.sent.append(content)
        return SimpleNamespace(content=content)


class FakeVoiceChannel:
    def __init__(self, channel_id, guild, can_speak=True):
        self.id = channel_id
        self.name = f"voice-{channel_id}"
        self.guild = guild
        self.can_speak = can_speak

    def permissions_for(self, member):
        return SimpleNamespace(connect=self.can_speak, speak=self.can_speak)


class FakeGuild:
    def __init__(self, guild_id=GUILD_ID, name="Test Server"):
        self.id = guild_id
        self.name = name
        self.me = SimpleNamespace(id=42)
        self.voice_client = None


class FakeClient:
    def __init__(self):
        self.channels = {}
        self.guilds = {}
        self.presence = []

    def add(self, channel):
        self.channels[channel.id] = channel
        return channel

    def get_channel(self, channel_id):
        return self.channels.get(channel_id)

    def get_guild(self, guild_id):
        return self.guilds.get(guild_id)

    async def change_presence(self, activity=None):
        self.presence.append(activity)


class FakeVoice:
    """Stands in for systems.voice_manager.VoiceManager."""

    def __init__(self, guild_id, client=None):
        self.guild_id = guild_id
        self.client = client
        self.connected = False
        self.fail_connect = False
        self.connects = []
        self.disconnects = 0
        self.played = []
        self.stops = 0
        self.after = None

    def is_connected(self):
        return self.connected

    async def connect(self, channel, fresh=False):
        self.connects.append((channel.id, fresh))
        if self.fail_connect:
            raise VoiceConnectionError(f"could not join {channel.name}")
        self.connected = True

    async def disconnect(self):
        self.connected = False
        self.disconnects += 1

    async def wait_until_connected(self, timeout):
        return self.connected

    def play(self, source, after):
        if not self.connected:
            raise PlaybackError("not connected to voice")
        self.played.append(source)
        self.after = after

    def stop(self):
        self.stops += 1


class FakeResolver:
    """Resolves instantly unless told to fail or to wait for `gate`."""

    def __init__(self):
        self.failures = {}
        self.gate = None
        self.calls = []

    async def resolve(self, reference):
        self.calls.append(reference)
        if self.gate is not None:
            await self.gate.wait()
        if reference in self.failures:
            raise self.failures[reference]
        return ResolvedTrack(reference=reference, source=reference, title=f"Title of {reference}")


async def settle(rounds: int = 50) -> None:
    """Let background tasks (resolves, zero-delay timers, probes) run to completion."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def config(tmp_path):
    config = ConfigManager(tmp_path)
    config.settings["presence_enabled"] = False
    config.settings["reconnection"].update(max_attempts=2, probe_timeout=0.01, rejoin_delay=0)
    return config


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def guild(client):
    guild = FakeGuild()
    client.guilds[guild.id] = guild
    return guild


@pytest.fixture
def text_channel(client):
    return client.add(FakeTextChannel())


@pytest.fixture
def voice_channel(client, guild):
    return client.add(FakeVoiceChannel(VOICE_CHANNEL_ID, guild))


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def store():
    return PlaylistStore(("https://youtu.be/aaaaaaaaaaa", "https://youtu.be/bbbbbbbbbbb", "https://youtu.be/ccccccccccc"))


@pytest.fixture
def make_manager(client, config, resolver, store, text_channel, voice_channel):
    def make(**kwargs):
        kwargs.setdefault("store", store)
        return SessionManager(
            client,
            config,
            resolver=resolver,
            voice_factory=FakeVoice,
            source_factory=lambda track, volume: ("source", track.reference),
            playback_policy=PlaybackPolicy(0, 0, 0),
            **kwargs,
        )
    return make


@pytest.fixture
def manager(make_manager):
    return make_manager()
