from dataclasses import replace
from types import SimpleNamespace

import disnake
import pytest

from core.connection import ConnectionSession
from core.modes import PlaybackMode
from core.player import PlayerState, new_session
from core.playlist import PlaylistStore
from core.registry import GuildSession
from handlers.commands import CommandHandler, build_help_embed, build_now_playing_embed, parse_command
from tests.conftest import GUILD_ID, FakeVoice, FakeVoiceChannel, settle


class FakeMessage:
    def __init__(self, content, guild, channel, voice_channel=None, bot=False):
        self.content = content
        self.guild = guild
        self.channel = channel
        self.author = SimpleNamespace(
            bot=bot,
            voice=SimpleNamespace(channel=voice_channel) if voice_channel else None,
        )
        self.replies = []

    async def reply(self, content=None, **kwargs):
        self.replies.append(content if content is not None else kwargs.get("embed"))


@pytest.fixture
def handler(client, manager, config):
    return CommandHandler(client, manager, config)


@pytest.fixture
def send(handler, guild, text_channel, voice_channel):
    async def send(content, in_voice=True, **kwargs):
        message = FakeMessage(content, guild, text_channel, voice_channel if in_voice else None, **kwargs)
        name = await handler.handle(message)
        await settle()
        return name, message
    return send


@pytest.mark.parametrize("content, expected", [
    ("!play", "play"),
    ("  !play  ", "play"),
    ("!np", "nowplaying"),
    ("!nowplaying", "nowplaying"),
    ("!leave", "leave"),
    ("!play now", None),
    ("!PLAY", None),
    ("play", None),
    ("!", None),
    ("?play", None),
])
def test_parse_command(content, expected):
    assert parse_command(content, "!") == expected


def test_parse_command_with_long_prefix():
    assert parse_command("pp!skip", "pp!") == "skip"


async def test_bot_messages_are_ignored(send):
    name, message = await send("!play", bot=True)
    assert name is None
    assert message.replies == []


async def test_direct_messages_are_ignored(handler, text_channel):
    message = FakeMessage("!help", None, text_channel)
    assert await handler.handle(message) is None


async def test_play_requires_voice_channel(send, manager):
    name, message = await send("!play", in_voice=False)

    assert name == "play"
    assert message.replies == ["❌ Join a voice channel first!"]
    assert manager.get_session(GUILD_ID) is None


async def test_play_requires_permissions(handler, guild, text_channel, manager):
    muted = FakeVoiceChannel(4001, guild, can_speak=False)
    message = FakeMessage("!play", guild, text_channel, muted)
    await handler.handle(message)

    assert message.replies == ["❌ I can't connect or speak in that voice channel."]
    assert manager.get_session(GUILD_ID) is None


async def test_play_joins_and_starts(send, manager, text_channel):
    await send("!play")

    session = manager.get_session(GUILD_ID)
    assert session.player.state == PlayerState.PLAYING
    assert session.text_channel_id == text_channel.id
    assert any("Started playing" in text for text in text_channel.sent)


async def test_play_twice_reports_already_playing(send, text_channel):
    await send("!play")
    await send("!play")

    assert any("Already playing" in text for text in text_channel.sent)


async def test_skip_with_nothing_playing(send):
    _, message = await send("!skip")
    assert message.replies == ["❌ Nothing is playing!"]


async def test_skip_in_joined_but_stopped_guild(send, text_channel):
    await send("!join")
    await send("!skip")

    assert "❌ Nothing is playing!" in text_channel.sent


async def test_stop_always_replies(send, manager):
    _, message = await send("!stop")
    assert message.replies == ["⏹️ Stopped playback and left the voice channel."]

    await send("!play")
    _, message = await send("!stop")
    assert message.replies == ["⏹️ Stopped playback and left the voice channel."]
    assert manager.get_session(GUILD_ID) is None


async def test_leave(send, manager):
    await send("!join")
    _, message = await send("!leave")

    assert message.replies == ["👋 Left the voice channel."]
    assert manager.get_session(GUILD_ID) is None


async def test_join_replies(send, manager):
    _, message = await send("!join")

    assert message.replies == ["✅ Joined your voice channel!"]
    assert manager.get_session(GUILD_ID).connection.is_ready


async def test_join_failure_replies(send, manager):
    manager.voice_factory = lambda guild_id, client: _refusing_voice(guild_id, client)
    _, message = await send("!join")

    assert message.replies == ["❌ Failed to join voice channel or start playback."]


def _refusing_voice(guild_id, client):
    voice = FakeVoice(guild_id, client)
    voice.fail_connect = True
    return voice


async def test_now_playing_embed(send):
    await send("!play")
    _, message = await send("!np")

    embed = message.replies[0]
    assert isinstance(embed, disnake.Embed)
    assert embed.title == "🎵 Now Playing"
    fields = {field.name: field.value for field in embed.fields}
    assert fields["📊 Progress"] == "Song 1 of 3"
    assert fields["🔗 URL"] == "https://youtu.be/aaaaaaaaaaa"


async def test_now_playing_when_stopped(send):
    _, message = await send("!np")
    assert message.replies == ["❌ Nothing is playing!"]


async def test_help_embed(send):
    _, message = await send("!help")

    embed = message.replies[0]
    assert embed.title == "🎵 Perpetua"
    status = embed.fields[-1].value
    assert "YouTube Playlist (3 songs)" in status
    assert "Stopped" in status


def test_help_embed_local_mode():
    embed = build_help_embed("!", PlaybackMode.LOCAL, 1, active=True)

    music = embed.fields[0].value
    assert "Restart current song" in music
    assert "Playing" in embed.fields[-1].value


def test_now_playing_embed_long_url_uses_link():
    long_url = "https://www.youtube.com/watch?v=aaaaaaaaaaa&list=PL0123456789abcdef&index=3"
    player = replace(new_session(PlaylistStore((long_url,)), PlaybackMode.YOUTUBE), current_title="Song")
    session = GuildSession(GUILD_ID, player, ConnectionSession(channel_id=1))

    embed = build_now_playing_embed(session)
    fields = {field.name: field.value for field in embed.fields}
    assert fields["🔗 URL"] == f"[Click here]({long_url})"
