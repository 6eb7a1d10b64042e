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
Effects

Side-effect commands returned by the player and connection transitions.
The transitions never touch Discord, yt-dlp or the clock themselves; the
session runtime (systems/session_manager.py) executes these in order.

Effects carrying an epoch produce an event tagged with that epoch when their
async work completes. The machines drop events whose epoch is stale.
"""

from dataclasses import dataclass, field
from typing import Any, Dict


# =============================================================================
# SHARED
# =============================================================================

@dataclass(frozen=True, slots=True)
class Notify:
    """Send the message `key` from messages.yaml to the guild's text channel."""
    key: str
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Log:
    level: str
    message: str


# =============================================================================
# PLAYER
# =============================================================================

@dataclass(frozen=True, slots=True)
class ResolveTrack:
    """Resolve `reference` in the background, then post TrackResolved or ResolveFailed."""
    epoch: int
    index: int
    reference: str


@dataclass(frozen=True, slots=True)
class StreamTrack:
    """Hand a resolved track to the voice client. Completion posts TrackFinished."""
    epoch: int
    track: Any


@dataclass(frozen=True, slots=True)
class ScheduleStart:
    """Post StartDue(epoch) after `delay` seconds."""
    epoch: int
    delay: float


@dataclass(frozen=True, slots=True)
class StopAudio:
    pass


@dataclass(frozen=True, slots=True)
class CancelPending:
    """Cancel any in-flight resolve or start timer."""


@dataclass(frozen=True, slots=True)
class RequestTeardown:
    """Ask the connection machine to destroy the voice link."""


# =============================================================================
# CONNECTION
# =============================================================================

@dataclass(frozen=True, slots=True)
class ConnectVoice:
    """Join (or move to) `channel_id`. `fresh` drops any stale client first."""
    channel_id: int
    fresh: bool = False


@dataclass(frozen=True, slots=True)
class ProbeRecovery:
    """Wait up to `timeout` seconds for the existing link to come back by itself."""
    epoch: int
    timeout: float


@dataclass(frozen=True, slots=True)
class ScheduleRejoin:
    epoch: int
    delay: float


@dataclass(frozen=True, slots=True)
class CancelRecovery:
    pass


@dataclass(frozen=True, slots=True)
class DestroyVoice:
    pass


# Connection -> player hand-offs

@dataclass(frozen=True, slots=True)
class StopPlayback:
    pass


@dataclass(frozen=True, slots=True)
class SuspendPlayback:
    pass


@dataclass(frozen=True, slots=True)
class ResumePlayback:
    pass
