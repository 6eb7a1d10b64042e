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
Voice Connection State Machine

Tracks one guild's voice link and decides what to do when it drops:

    SIGNALLING -> CONNECTING -> READY
    READY -> DISCONNECTED            (drop; wait for the link to come back)
    DISCONNECTED -> READY            (recovered on its own)
    DISCONNECTED -> CONNECTING       (probe timed out; rejoin after a delay)
    any -> DESTROYED                 (teardown or out of attempts, terminal)

Like core/player.py this is pure: transition() returns the next session and
the effects for the runtime to run.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional, Tuple

from core.effects import (
    CancelRecovery,
    ConnectVoice,
    DestroyVoice,
    Log,
    Notify,
    ProbeRecovery,
    ResumePlayback,
    ScheduleRejoin,
    StopPlayback,
    SuspendPlayback,
)


class ConnectionState(Enum):
    SIGNALLING = "signalling"
    CONNECTING = "connecting"
    READY = "ready"
    DISCONNECTED = "disconnected"
    DESTROYED = "destroyed"


@dataclass(frozen=True, slots=True)
class ReconnectPolicy:
    """
    Reconnection tuning, built from settings.yaml.

    Attributes:
        enabled: False makes every drop terminal
        max_attempts: Recovery cycles allowed before giving up
        probe_timeout: Seconds to wait for the link to recover on its own
        rejoin_delay: Seconds between a failed probe and an active rejoin
    """

    enabled: bool = True
    max_attempts: int = 5
    probe_timeout: float = 5.0
    rejoin_delay: float = 5.0


DEFAULT_RECONNECT_POLICY = ReconnectPolicy()


@dataclass(frozen=True, slots=True)
class ConnectionSession:
    channel_id: int
    state: ConnectionState = ConnectionState.SIGNALLING
    reconnect_attempts: int = 0
    epoch: int = 0
    # Channel a READY link is moving away from, until the move settles
    moving_from: Optional[int] = None

    @property
    def is_ready(self) -> bool:
        return self.state == ConnectionState.READY

    @property
    def is_destroyed(self) -> bool:
        return self.state == ConnectionState.DESTROYED


# =============================================================================
# EVENTS
# =============================================================================

@dataclass(frozen=True, slots=True)
class JoinRequested:
    channel_id: int


@dataclass(frozen=True, slots=True)
class VoiceConnected:
    pass


@dataclass(frozen=True, slots=True)
class VoiceConnectFailed:
    reason: str = ""


@dataclass(frozen=True, slots=True)
class VoiceDisconnected:
    pass


@dataclass(frozen=True, slots=True)
class VoiceRecovered:
    epoch: int


@dataclass(frozen=True, slots=True)
class RecoveryTimedOut:
    epoch: int


@dataclass(frozen=True, slots=True)
class RejoinDue:
    epoch: int


@dataclass(frozen=True, slots=True)
class VoiceMoved:
    channel_id: int


@dataclass(frozen=True, slots=True)
class TeardownRequested:
    pass


# =============================================================================
# TRANSITIONS
# =============================================================================

def open_connection(channel_id: int) -> Tuple[ConnectionSession, List]:
    """Start a brand new link to `channel_id`."""
    session = ConnectionSession(channel_id=channel_id, epoch=1)
    return session, [Log("debug", f"joining voice channel {channel_id}"), ConnectVoice(channel_id)]


def _destroy(session: ConnectionSession) -> Tuple[ConnectionSession, List]:
    session = replace(session, state=ConnectionState.DESTROYED, epoch=session.epoch + 1)
    return session, [CancelRecovery(), DestroyVoice(), StopPlayback()]


def _handle_drop(session: ConnectionSession, policy: ReconnectPolicy, reason: str):
    """
    Decide between another recovery cycle and giving up.

    reconnect_attempts counts cycles started since the last READY and never
    goes past max_attempts.
    """
    if policy.enabled and session.reconnect_attempts < policy.max_attempts:
        attempts = session.reconnect_attempts + 1
        session = replace(
            session,
            state=ConnectionState.DISCONNECTED,
            reconnect_attempts=attempts,
            epoch=session.epoch + 1,
        )
        return session, [
            Log("warning", f"{reason}, attempting to reconnect ({attempts}/{policy.max_attempts})"),
            SuspendPlayback(),
            ProbeRecovery(session.epoch, policy.probe_timeout),
        ]

    if policy.enabled:
        effects: List = [
            Log("error", f"{reason}, max reconnection attempts reached"),
            Notify("reconnect_gave_up", {"attempts": policy.max_attempts}),
        ]
    else:
        effects = [
            Log("warning", f"{reason}, auto-reconnect disabled"),
            Notify("voice_lost"),
        ]
    session, destroy_effects = _destroy(session)
    return session, effects + destroy_effects


def _on_join(session: ConnectionSession, event: JoinRequested, policy: ReconnectPolicy):
    if session.is_destroyed:
        return session, []

    if session.state == ConnectionState.READY:
        if event.channel_id == session.channel_id:
            return session, []
        session = replace(
            session,
            channel_id=event.channel_id,
            state=ConnectionState.CONNECTING,
            epoch=session.epoch + 1,
            moving_from=session.channel_id,
        )
        return session, [Log("debug", f"moving to voice channel {event.channel_id}"), ConnectVoice(event.channel_id)]

    # Mid-recovery or mid-handshake: drop whatever is pending and connect fresh
    session = replace(
        session,
        channel_id=event.channel_id,
        moving_from=None,
        state=ConnectionState.CONNECTING,
        epoch=session.epoch + 1,
    )
    return session, [CancelRecovery(), ConnectVoice(event.channel_id, fresh=True)]


def _on_connected(session: ConnectionSession, event: VoiceConnected, policy: ReconnectPolicy):
    if session.state in (ConnectionState.READY, ConnectionState.DESTROYED):
        return session, []

    recovering = session.reconnect_attempts > 0 or session.state == ConnectionState.DISCONNECTED
    session = replace(
        session,
        state=ConnectionState.READY,
        reconnect_attempts=0,
        moving_from=None,
        epoch=session.epoch + 1,
    )
    if not recovering:
        return session, [Log("debug", f"voice ready in channel {session.channel_id}")]
    return session, [
        Log("info", "voice connection re-established"),
        CancelRecovery(),
        ResumePlayback(),
    ]


def _on_connect_failed(session: ConnectionSession, event: VoiceConnectFailed, policy: ReconnectPolicy):
    if session.is_destroyed:
        return session, []

    reason = f"voice connect failed: {event.reason}" if event.reason else "voice connect failed"
    if session.reconnect_attempts > 0:
        return _handle_drop(session, policy, reason)

    # A failed move leaves the old link in an unknown state: recover it like a drop
    if session.moving_from is not None:
        session = replace(session, channel_id=session.moving_from, moving_from=None)
        return _handle_drop(session, policy, f"{reason} while moving")

    session, effects = _destroy(session)
    return session, [Log("error", reason), *effects]


def _on_disconnected(session: ConnectionSession, event: VoiceDisconnected, policy: ReconnectPolicy):
    if session.state != ConnectionState.READY:
        return session, []
    return _handle_drop(session, policy, "voice connection lost")


def _on_recovered(session: ConnectionSession, event: VoiceRecovered, policy: ReconnectPolicy):
    if session.state != ConnectionState.DISCONNECTED or event.epoch != session.epoch:
        return session, []
    session = replace(session, state=ConnectionState.READY, reconnect_attempts=0, epoch=session.epoch + 1)
    return session, [Log("info", "voice connection recovered on its own"), ResumePlayback()]


def _on_recovery_timeout(session: ConnectionSession, event: RecoveryTimedOut, policy: ReconnectPolicy):
    if session.state != ConnectionState.DISCONNECTED or event.epoch != session.epoch:
        return session, []
    session = replace(session, epoch=session.epoch + 1)
    return session, [
        Log("warning", f"voice did not recover, rejoining in {policy.rejoin_delay:g}s"),
        Notify("reconnecting", {"attempt": session.reconnect_attempts, "max": policy.max_attempts}),
        ScheduleRejoin(session.epoch, policy.rejoin_delay),
    ]


def _on_rejoin_due(session: ConnectionSession, event: RejoinDue, policy: ReconnectPolicy):
    if session.state != ConnectionState.DISCONNECTED or event.epoch != session.epoch:
        return session, []
    session = replace(session, state=ConnectionState.CONNECTING, epoch=session.epoch + 1)
    return session, [ConnectVoice(session.channel_id, fresh=True)]


def _on_moved(session: ConnectionSession, event: VoiceMoved, policy: ReconnectPolicy):
    if session.is_destroyed or event.channel_id == session.channel_id:
        return session, []
    return replace(session, channel_id=event.channel_id), [Log("info", f"moved to voice channel {event.channel_id}")]


def _on_teardown(session: ConnectionSession, event: TeardownRequested, policy: ReconnectPolicy):
    if session.is_destroyed:
        return session, []
    return _destroy(session)


_HANDLERS = {
    JoinRequested: _on_join,
    VoiceConnected: _on_connected,
    VoiceConnectFailed: _on_connect_failed,
    VoiceDisconnected: _on_disconnected,
    VoiceRecovered: _on_recovered,
    RecoveryTimedOut: _on_recovery_timeout,
    RejoinDue: _on_rejoin_due,
    VoiceMoved: _on_moved,
    TeardownRequested: _on_teardown,
}


def transition(
    session: ConnectionSession,
    event,
    policy: ReconnectPolicy = DEFAULT_RECONNECT_POLICY,
) -> Tuple[ConnectionSession, List]:
    """Apply one event to a connection session. Returns (next session, effects)."""
    handler = _HANDLERS.get(type(event))
    if handler is None:
        raise TypeError(f"not a connection event: {event!r}")
    return handler(session, event, policy)
