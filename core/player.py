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
Music Player - Per-Guild Playback State Machine

Pure transitions: transition(session, event, policy) returns the next
PlayerSession and a list of effects. Nothing here awaits, sleeps or talks to
Discord; systems/session_manager.py runs the effects and feeds outcomes back
in as events.

State flow:
    STOPPED -> STARTING -> PLAYING -> IDLE | ERRORED -> STARTING ...
    any state -> STOPPED on stop/teardown

STARTING covers both "start timer pending" and "resolve in flight".

Epochs: every transition that schedules new async work (or abandons old work)
bumps the epoch. Async outcomes carry the epoch they were started under, and a
mismatch means the outcome is stale and gets dropped. This is what keeps a
resolve that finishes after !stop from ever reaching the voice client.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, List, Optional, Tuple

from config.timing import AUTO_SKIP_DELAY, FAILURE_PASSES, LOCAL_RESTART_DELAY, MANUAL_SKIP_DELAY
from core.errors import ResolutionErrorKind
from core.effects import (
    CancelPending,
    Log,
    Notify,
    RequestTeardown,
    ResolveTrack,
    ScheduleStart,
    StopAudio,
    StreamTrack,
)
from core.modes import PlaybackMode
from core.playlist import PlaylistStore


class PlayerState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    PLAYING = "playing"
    IDLE = "idle"
    ERRORED = "errored"


@dataclass(frozen=True, slots=True)
class PlaybackPolicy:
    """
    Delays (seconds) the player schedules between tracks.

    failure_passes: full playlist passes of consecutive resolve failures
    before the session gives up. Playback errors never count.
    """
    manual_skip_delay: float = MANUAL_SKIP_DELAY
    auto_skip_delay: float = AUTO_SKIP_DELAY
    local_restart_delay: float = LOCAL_RESTART_DELAY
    failure_passes: int = FAILURE_PASSES


DEFAULT_POLICY = PlaybackPolicy()


@dataclass(frozen=True, slots=True)
class PlayerSession:
    """
    Playback state for one guild.

    Attributes:
        store: Playlist entries and cursor
        mode: YouTube playlist or single local file
        state: Current PlayerState
        epoch: Generation counter for discarding stale async outcomes
        failures: Consecutive resolve failures since the last successful resolve
        suspended: Voice link is down; hold off starting anything
        current_title: Title of the track being streamed, if any
    """

    store: PlaylistStore
    mode: PlaybackMode = PlaybackMode.YOUTUBE
    state: PlayerState = PlayerState.STOPPED
    epoch: int = 0
    failures: int = 0
    suspended: bool = False
    current_title: Optional[str] = None

    @property
    def is_active(self) -> bool:
        """True from !play until stop - what chat commands treat as 'playing'."""
        return self.state != PlayerState.STOPPED

    @property
    def is_streaming(self) -> bool:
        return self.state == PlayerState.PLAYING


# =============================================================================
# EVENTS
# =============================================================================

@dataclass(frozen=True, slots=True)
class PlayRequested:
    pass


@dataclass(frozen=True, slots=True)
class SkipRequested:
    pass


@dataclass(frozen=True, slots=True)
class StopRequested:
    teardown: bool = True


@dataclass(frozen=True, slots=True)
class TrackResolved:
    epoch: int
    track: Any


@dataclass(frozen=True, slots=True)
class ResolveFailed:
    epoch: int
    error: Exception


@dataclass(frozen=True, slots=True)
class TrackFinished:
    epoch: int
    error: Optional[Exception] = None


@dataclass(frozen=True, slots=True)
class StartDue:
    epoch: int


@dataclass(frozen=True, slots=True)
class PlaybackSuspended:
    pass


@dataclass(frozen=True, slots=True)
class PlaybackResumed:
    pass


# =============================================================================
# TRANSITIONS
# =============================================================================

def _resolve_current(session: PlayerSession) -> Tuple[PlayerSession, List]:
    """Bump the epoch and ask for the track under the cursor."""
    session = replace(session, state=PlayerState.STARTING, epoch=session.epoch + 1, current_title=None)
    store = session.store
    return session, [ResolveTrack(session.epoch, store.cursor, store.current())]


def _on_play(session: PlayerSession, event: PlayRequested, policy: PlaybackPolicy):
    if session.is_active:
        return session, [Notify("already_playing")]

    session = replace(session, store=session.store.reset(), failures=0, suspended=False)
    session, effects = _resolve_current(session)
    return session, [
        Log("info", f"starting playback ({len(session.store)} tracks, {session.mode.value} mode)"),
        Notify("started", {"count": len(session.store)}),
        *effects,
    ]


def _on_skip(session: PlayerSession, event: SkipRequested, policy: PlaybackPolicy):
    if not session.is_active:
        return session, [Notify("nothing_playing")]

    if session.mode == PlaybackMode.LOCAL:
        store = session.store
        notice = Notify("restarting_local")
    else:
        store = session.store.advance()
        notice = Notify("skipped", {"position": store.position, "total": len(store)})

    session = replace(
        session,
        store=store,
        state=PlayerState.STARTING,
        epoch=session.epoch + 1,
        failures=0,
        current_title=None,
    )
    return session, [
        CancelPending(),
        StopAudio(),
        Log("info", f"skipping to track {store.position}/{len(store)}"),
        notice,
        ScheduleStart(session.epoch, policy.manual_skip_delay),
    ]


def _on_stop(session: PlayerSession, event: StopRequested, policy: PlaybackPolicy):
    if not session.is_active and not event.teardown:
        return session, []

    effects: List = []
    if session.is_active:
        effects.append(Log("info", "stopping playback"))
    effects += [CancelPending(), StopAudio()]
    if event.teardown:
        effects.append(RequestTeardown())

    session = replace(
        session,
        store=session.store.reset(),
        state=PlayerState.STOPPED,
        epoch=session.epoch + 1,
        failures=0,
        suspended=False,
        current_title=None,
    )
    return session, effects


def _on_resolved(session: PlayerSession, event: TrackResolved, policy: PlaybackPolicy):
    if session.state != PlayerState.STARTING or event.epoch != session.epoch:
        return session, [Log("debug", f"dropping stale resolve (epoch {event.epoch}, current {session.epoch})")]

    track = event.track
    title = getattr(track, "title", None) or session.store.current()
    session = replace(
        session,
        state=PlayerState.PLAYING,
        epoch=session.epoch + 1,
        failures=0,
        current_title=title,
    )

    if session.mode == PlaybackMode.LOCAL:
        notice = Notify("now_playing_local", {"title": title})
    else:
        notice = Notify("now_playing", {"title": title, "url": session.store.current()})

    return session, [
        StreamTrack(session.epoch, track),
        Log("info", f"now playing: {title}"),
        notice,
    ]


def _failure_notice(session: PlayerSession, error: Exception, during_playback: bool) -> Notify:
    """Pick the chat notice for a track that could not be resolved or played."""
    reference = session.store.current()

    if session.mode == PlaybackMode.LOCAL:
        return Notify("local_failed", {"reason": str(error)})
    if during_playback:
        return Notify("playback_error", {"url": reference})

    kind = getattr(error, "kind", None)
    if kind == ResolutionErrorKind.PROCESSING:
        return Notify("video_processing", {"url": reference})
    if kind == ResolutionErrorKind.BOT_DETECTION:
        return Notify("bot_detected", {"url": reference})
    return Notify("play_failed", {"url": reference})


def _handle_failure(session: PlayerSession, error: Exception, policy: PlaybackPolicy, during_playback: bool):
    """
    Notify, advance and retry after the automatic delay.

    Resolve failures are counted; the session gives up only after
    policy.failure_passes full passes over the playlist failed in a row.
    A playback error follows a successful resolve, so it always retries.
    """
    reference = session.store.current()
    effects: List = [
        Log("warning", f"track {session.store.position}/{len(session.store)} failed: {reference} ({error})"),
        _failure_notice(session, error, during_playback),
    ]

    failures = session.failures if during_playback else session.failures + 1
    if failures >= max(2, policy.failure_passes) * len(session.store):
        effects.append(Notify("all_failed", {"count": len(session.store)}))
        stopped, stop_effects = _on_stop(session, StopRequested(teardown=True), policy)
        return stopped, effects + stop_effects

    store = session.store if session.mode == PlaybackMode.LOCAL else session.store.advance()
    session = replace(
        session,
        store=store,
        state=PlayerState.ERRORED,
        epoch=session.epoch + 1,
        failures=failures,
        current_title=None,
    )
    effects.append(ScheduleStart(session.epoch, policy.auto_skip_delay))
    return session, effects


def _on_resolve_failed(session: PlayerSession, event: ResolveFailed, policy: PlaybackPolicy):
    if session.state != PlayerState.STARTING or event.epoch != session.epoch:
        return session, [Log("debug", f"dropping stale resolve failure (epoch {event.epoch})")]
    return _handle_failure(session, event.error, policy, during_playback=False)


def _on_finished(session: PlayerSession, event: TrackFinished, policy: PlaybackPolicy):
    if session.state != PlayerState.PLAYING or event.epoch != session.epoch:
        return session, []

    if event.error is not None:
        return _handle_failure(session, event.error, policy, during_playback=True)

    if session.mode == PlaybackMode.LOCAL:
        session = replace(session, state=PlayerState.IDLE, epoch=session.epoch + 1, current_title=None)
        return session, [
            Log("debug", "local file finished, restarting"),
            ScheduleStart(session.epoch, policy.local_restart_delay),
        ]

    store = session.store.advance()
    session = replace(session, store=store, state=PlayerState.IDLE, epoch=session.epoch + 1, current_title=None)
    return session, [
        Log("debug", f"song finished, next is {store.position}/{len(store)}"),
        ScheduleStart(session.epoch, policy.auto_skip_delay),
    ]


def _on_start_due(session: PlayerSession, event: StartDue, policy: PlaybackPolicy):
    startable = (PlayerState.IDLE, PlayerState.ERRORED, PlayerState.STARTING)
    if session.state not in startable or event.epoch != session.epoch or session.suspended:
        return session, []
    return _resolve_current(session)


def _on_suspended(session: PlayerSession, event: PlaybackSuspended, policy: PlaybackPolicy):
    if not session.is_active or session.suspended:
        return session, []

    session = replace(
        session,
        state=PlayerState.STARTING,
        epoch=session.epoch + 1,
        suspended=True,
        current_title=None,
    )
    return session, [
        Log("info", "voice link down, holding playback"),
        CancelPending(),
        StopAudio(),
    ]


def _on_resumed(session: PlayerSession, event: PlaybackResumed, policy: PlaybackPolicy):
    if not session.suspended:
        return session, []

    session = replace(session, suspended=False)
    if not session.is_active:
        return session, []

    session, effects = _resolve_current(session)
    return session, [Log("info", "voice link back, resuming playback"), *effects]


_HANDLERS = {
    PlayRequested: _on_play,
    SkipRequested: _on_skip,
    StopRequested: _on_stop,
    TrackResolved: _on_resolved,
    ResolveFailed: _on_resolve_failed,
    TrackFinished: _on_finished,
    StartDue: _on_start_due,
    PlaybackSuspended: _on_suspended,
    PlaybackResumed: _on_resumed,
}


def transition(session: PlayerSession, event, policy: PlaybackPolicy = DEFAULT_POLICY) -> Tuple[PlayerSession, List]:
    """
    Apply one event to a player session.

    Args:
        session: Current session
        event: One of the player events above
        policy: Delays to schedule with

    Returns:
        (next session, effects to run in order)
    """
    handler = _HANDLERS.get(type(event))
    if handler is None:
        raise TypeError(f"not a player event: {event!r}")
    return handler(session, event, policy)


def new_session(store: PlaylistStore, mode: PlaybackMode) -> PlayerSession:
    """Fresh STOPPED session over a store."""
    return PlayerSession(store=store.reset(), mode=mode)
