# Copyright (C) 2026 grodz
#
# This file is part of Perpetua.
#
# Perpetua is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""
Session Runtime

Executes what the state machines decide. For each guild a GuildRuntime:
- feeds events through core.player / core.connection transitions
- stores the new sessions in the registry
- runs the returned effects (voice calls, resolves, timers, chat notices)
- turns async outcomes back into events tagged with the epoch they started under

Background work (resolves, start timers, recovery probes, rejoin timers) runs
as tasks owned by the runtime and is cancelled when superseded. Epochs catch
anything that slips past a cancel.

Threading:
The FFmpeg `after` callback runs on the audio thread. It never touches state;
it only hands a TrackFinished event to the event loop with
asyncio.run_coroutine_threadsafe().
"""

import asyncio
from typing import Callable, Dict, List, Optional

import disnake
from loguru import logger

from config.timing import FAILURE_PASSES
from core import connection as conn
from core import player
from core.effects import (
    CancelPending,
    CancelRecovery,
    ConnectVoice,
    DestroyVoice,
    Log,
    Notify,
    ProbeRecovery,
    RequestTeardown,
    ResolveTrack,
    ResumePlayback,
    ScheduleRejoin,
    ScheduleStart,
    StopAudio,
    StopPlayback,
    StreamTrack,
    SuspendPlayback,
)
from core.errors import PlaybackError, ResolutionError, ResolutionErrorKind, VoiceConnectionError
from core.modes import PlaybackMode
from core.player import PlaybackPolicy
from core.playlist import PlaylistStore
from core.registry import GuildSession, SessionRegistry
from core.resolver import TrackResolver, get_resolver
from systems.voice_manager import VoiceManager
from utils.discord_helpers import format_guild_log, make_audio_source, safe_send, update_presence

PLAYER_EVENTS = (
    player.PlayRequested,
    player.SkipRequested,
    player.StopRequested,
    player.TrackResolved,
    player.ResolveFailed,
    player.TrackFinished,
    player.StartDue,
    player.PlaybackSuspended,
    player.PlaybackResumed,
)


class GuildRuntime:
    """
    Effect executor for one guild.

    Attributes:
        guild_id: Discord guild ID
        voice: VoiceManager for this guild
        join_lock: Serializes joins so two !play commands can't race the handshake
    """

    def __init__(self, manager: "SessionManager", guild_id: int):
        self.manager = manager
        self.guild_id = guild_id
        self.voice = manager.voice_factory(guild_id, manager.client)
        self.join_lock = asyncio.Lock()

        # Resolve in flight or start timer pending (player side)
        self._pending: Optional[asyncio.Task] = None
        # Recovery probe or rejoin timer (connection side)
        self._recovery: Optional[asyncio.Task] = None
        # Fire-and-forget dispatches, kept referenced until done
        self._background: set = set()

        self._handlers: Dict[type, Callable] = {
            Notify: self._notify,
            Log: self._log,
            ResolveTrack: self._resolve,
            StreamTrack: self._stream,
            ScheduleStart: self._schedule_start,
            StopAudio: self._stop_audio,
            CancelPending: self._cancel_pending,
            RequestTeardown: self._request_teardown,
            ConnectVoice: self._connect,
            ProbeRecovery: self._probe,
            ScheduleRejoin: self._schedule_rejoin,
            CancelRecovery: self._cancel_recovery,
            DestroyVoice: self._destroy_voice,
            StopPlayback: self._forward(player.StopRequested(teardown=False)),
            SuspendPlayback: self._forward(player.PlaybackSuspended()),
            ResumePlayback: self._forward(player.PlaybackResumed()),
        }

    @property
    def label(self) -> str:
        return format_guild_log(self.guild_id, self.manager.client)

    @property
    def session(self) -> Optional[GuildSession]:
        """This guild's sessions, or None once this runtime has been retired."""
        if self.manager.runtimes.get(self.guild_id) is not self:
            return None
        return self.manager.registry.get(self.guild_id)

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def dispatch(self, event) -> None:
        """Apply one event to the right machine, then run its effects in order."""
        session = self.session
        if session is None:
            logger.debug(f"{self.label}: no session, dropping {type(event).__name__}")
            return

        if isinstance(event, PLAYER_EVENTS):
            session.player, effects = player.transition(session.player, event, self.manager.playback_policy)
        else:
            session.connection, effects = conn.transition(session.connection, event, self.manager.reconnect_policy)

        await self.run_effects(effects)

    async def run_effects(self, effects: List) -> None:
        for effect in effects:
            await self._handlers[type(effect)](effect)
        self._reap()

    def _reap(self) -> None:
        """Drop this guild's session once its connection is destroyed."""
        session = self.session
        if session is not None and session.connection.is_destroyed:
            self.manager.retire(self)

    def post(self, event) -> None:
        """Dispatch from a fresh task so the current effect list finishes first."""
        task = asyncio.get_running_loop().create_task(self.dispatch(event))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _forward(self, event) -> Callable:
        async def forward(effect) -> None:
            await self.dispatch(event)
        return forward

    # =========================================================================
    # Task bookkeeping
    # =========================================================================

    @staticmethod
    def _cancel(task: Optional[asyncio.Task]) -> None:
        # A task may cancel "its own slot" while handling the event it produced
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _spawn_pending(self, coro) -> None:
        self._cancel(self._pending)
        self._pending = asyncio.get_running_loop().create_task(coro)

    def _spawn_recovery(self, coro) -> None:
        self._cancel(self._recovery)
        self._recovery = asyncio.get_running_loop().create_task(coro)

    def close(self) -> None:
        """Cancel every background task. Called when the runtime is retired."""
        self._cancel(self._pending)
        self._cancel(self._recovery)
        self._pending = self._recovery = None

    # =========================================================================
    # Shared effects
    # =========================================================================

    async def _notify(self, effect: Notify) -> None:
        config = self.manager.config
        params = dict(effect.params)
        for key in ("title", "url"):
            if key in params:
                params[key] = disnake.utils.escape_markdown(str(params[key]))
        text = config.msg(effect.key, **params)

        if not config.is_enabled(effect.key):
            logger.debug(f"{self.label}: (muted) {text}")
            return

        session = self.session
        channel_id = session.text_channel_id if session else self.manager.text_channels.get(self.guild_id)
        channel = self.manager.client.get_channel(channel_id) if channel_id else None
        if channel is None:
            logger.debug(f"{self.label}: no text channel for notice '{effect.key}'")
            return
        await safe_send(channel, text)

    async def _log(self, effect: Log) -> None:
        logger.log(effect.level.upper(), f"{self.label}: {effect.message}")

    # =========================================================================
    # Player effects
    # =========================================================================

    async def _resolve(self, effect: ResolveTrack) -> None:
        self._spawn_pending(self._run_resolve(effect))

    async def _run_resolve(self, effect: ResolveTrack) -> None:
        logger.debug(f"{self.label}: resolving #{effect.index + 1}: {effect.reference}")
        try:
            track = await self.manager.resolver.resolve(effect.reference)
        except asyncio.CancelledError:
            raise
        except ResolutionError as e:
            await self.dispatch(player.ResolveFailed(effect.epoch, e))
            return
        except Exception as e:
            logger.opt(exception=True).error(f"{self.label}: unexpected error resolving {effect.reference}")
            error = ResolutionError(effect.reference, ResolutionErrorKind.UNAVAILABLE, str(e))
            await self.dispatch(player.ResolveFailed(effect.epoch, error))
            return
        await self.dispatch(player.TrackResolved(effect.epoch, track))

    async def _stream(self, effect: StreamTrack) -> None:
        session = self.session
        if session is None or session.player.epoch != effect.epoch:
            return

        loop = asyncio.get_running_loop()
        epoch = effect.epoch
        label = self.label

        def after_track(error):
            """Runs in FFmpeg's audio thread, so only hand the event to the loop."""
            if error:
                logger.error(f"{label}: playback error: {error}")
            event = player.TrackFinished(epoch, PlaybackError(str(error)) if error else None)
            try:
                asyncio.run_coroutine_threadsafe(self.dispatch(event), loop)
            except RuntimeError:
                logger.debug(f"{label}: event loop closed, dropping track-finished event")

        volume = self.manager.config.section("audio").get("volume", 50)
        try:
            source = self.manager.source_factory(effect.track, volume)
            self.voice.play(source, after=after_track)
        except (PlaybackError, disnake.ClientException, OSError) as e:
            logger.warning(f"{label}: could not start audio: {e}")
            self.post(player.TrackFinished(epoch, e if isinstance(e, PlaybackError) else PlaybackError(str(e))))
            return

        if self.manager.config.get("presence_enabled", True):
            await update_presence(self.manager.client, getattr(effect.track, "title", None))

    async def _schedule_start(self, effect: ScheduleStart) -> None:
        async def start_later():
            await asyncio.sleep(effect.delay)
            await self.dispatch(player.StartDue(effect.epoch))
        self._spawn_pending(start_later())

    async def _stop_audio(self, effect: StopAudio) -> None:
        self.voice.stop()

    async def _cancel_pending(self, effect: CancelPending) -> None:
        self._cancel(self._pending)
        self._pending = None

    async def _request_teardown(self, effect: RequestTeardown) -> None:
        await self.dispatch(conn.TeardownRequested())

    # =========================================================================
    # Connection effects
    # =========================================================================

    async def _connect(self, effect: ConnectVoice) -> None:
        channel = self.manager.client.get_channel(effect.channel_id)
        if channel is None:
            await self.dispatch(conn.VoiceConnectFailed(f"channel {effect.channel_id} not found"))
            return

        try:
            await self.voice.connect(channel, fresh=effect.fresh)
        except VoiceConnectionError as e:
            logger.warning(f"{self.label}: {e}")
            await self.dispatch(conn.VoiceConnectFailed(str(e)))
            return

        # Torn down while the handshake was in flight
        session = self.session
        if session is None or session.connection.is_destroyed:
            await self.voice.disconnect()
            return

        await self.dispatch(conn.VoiceConnected())

    async def _probe(self, effect: ProbeRecovery) -> None:
        async def probe():
            recovered = await self.voice.wait_until_connected(effect.timeout)
            event = conn.VoiceRecovered(effect.epoch) if recovered else conn.RecoveryTimedOut(effect.epoch)
            await self.dispatch(event)
        self._spawn_recovery(probe())

    async def _schedule_rejoin(self, effect: ScheduleRejoin) -> None:
        async def rejoin_later():
            await asyncio.sleep(effect.delay)
            await self.dispatch(conn.RejoinDue(effect.epoch))
        self._spawn_recovery(rejoin_later())

    async def _cancel_recovery(self, effect: CancelRecovery) -> None:
        self._cancel(self._recovery)
        self._recovery = None

    async def _destroy_voice(self, effect: DestroyVoice) -> None:
        await self.voice.disconnect()
        if self.manager.config.get("presence_enabled", True):
            await update_presence(self.manager.client, None)


class SessionManager:
    """
    Owns the registry and one GuildRuntime per guild with a live session.

    Commands and gateway events call in here; nothing else touches sessions.

    Args:
        client: disnake Client
        config: Loaded ConfigManager
        store: PlaylistStore shared by every guild
        resolver: Track resolver (defaults to the one for the configured mode)
        voice_factory: Builds a VoiceManager per guild (swapped out in tests)
        source_factory: Builds an audio source from a resolved track and volume
    """

    def __init__(
        self,
        client,
        config,
        store: PlaylistStore,
        resolver: Optional[TrackResolver] = None,
        voice_factory: Callable = VoiceManager,
        source_factory: Callable = make_audio_source,
        playback_policy: Optional[PlaybackPolicy] = None,
    ):
        self.client = client
        self.config = config
        self.mode = PlaybackMode.from_value(config.playback_mode)
        self.store = store
        self.resolver = resolver or get_resolver(self.mode, config.cookies_file())
        self.voice_factory = voice_factory
        self.source_factory = source_factory
        self.playback_policy = playback_policy or PlaybackPolicy(
            failure_passes=config.section("playback").get("failure_passes", FAILURE_PASSES),
        )
        self.reconnect_policy = conn.ReconnectPolicy(**config.section("reconnection"))

        self.registry = SessionRegistry()
        self.runtimes: Dict[int, GuildRuntime] = {}
        self.text_channels: Dict[int, int] = {}
        self._lock = asyncio.Lock()

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_session(self, guild_id: int) -> Optional[GuildSession]:
        return self.registry.get(guild_id)

    def get_runtime(self, guild_id: int) -> Optional[GuildRuntime]:
        return self.runtimes.get(guild_id)

    def is_active(self, guild_id: int) -> bool:
        session = self.registry.get(guild_id)
        return session is not None and session.player.is_active

    def set_text_channel(self, guild_id: int, channel_id: int) -> None:
        """Remember where to post notices for this guild."""
        self.text_channels[guild_id] = channel_id
        session = self.registry.get(guild_id)
        if session is not None:
            session.text_channel_id = channel_id

    def retire(self, runtime: GuildRuntime) -> None:
        """Remove a guild's session and runtime after its connection is destroyed."""
        if self.runtimes.get(runtime.guild_id) is runtime:
            del self.runtimes[runtime.guild_id]
            self.registry.remove(runtime.guild_id)
            logger.debug(f"{runtime.label}: session closed")
        runtime.close()

    # =========================================================================
    # Commands
    # =========================================================================

    async def join(self, guild_id: int, channel_id: int) -> bool:
        """
        Make sure the bot is connected to `channel_id`.

        Creates the guild's session on first use. Returns True when the
        connection ended up READY.
        """
        async with self._lock:
            runtime = self.runtimes.get(guild_id)
            created = runtime is None
            if created:
                connection, effects = conn.open_connection(channel_id)
                self.registry.put(GuildSession(
                    guild_id=guild_id,
                    player=player.new_session(self.store, self.mode),
                    connection=connection,
                    text_channel_id=self.text_channels.get(guild_id),
                ))
                runtime = GuildRuntime(self, guild_id)
                self.runtimes[guild_id] = runtime

        async with runtime.join_lock:
            if created:
                await runtime.run_effects(effects)
            else:
                await runtime.dispatch(conn.JoinRequested(channel_id))

        session = self.registry.get(guild_id)
        return session is not None and session.connection.is_ready

    async def play(self, guild_id: int) -> None:
        await self._dispatch(guild_id, player.PlayRequested())

    async def skip(self, guild_id: int) -> bool:
        """Skip the current track. False when the guild has no session at all."""
        return await self._dispatch(guild_id, player.SkipRequested())

    async def stop(self, guild_id: int) -> bool:
        """Stop playback and leave voice. False when there was nothing to stop."""
        return await self._dispatch(guild_id, player.StopRequested(teardown=True))

    async def _dispatch(self, guild_id: int, event) -> bool:
        runtime = self.runtimes.get(guild_id)
        if runtime is None:
            return False
        await runtime.dispatch(event)
        return True

    # =========================================================================
    # Gateway events
    # =========================================================================

    async def voice_disconnected(self, guild_id: int) -> None:
        await self._dispatch(guild_id, conn.VoiceDisconnected())

    async def voice_moved(self, guild_id: int, channel_id: int) -> None:
        await self._dispatch(guild_id, conn.VoiceMoved(channel_id))

    async def teardown(self, guild_id: int) -> None:
        await self._dispatch(guild_id, conn.TeardownRequested())

    async def teardown_all(self) -> None:
        """Tear down every guild (shutdown)."""
        for guild_id in list(self.runtimes):
            try:
                await self.teardown(guild_id)
            except Exception:
                logger.opt(exception=True).warning(f"{format_guild_log(guild_id, self.client)}: teardown failed")
