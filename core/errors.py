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
Error Taxonomy

ConfigError is fatal at startup. Everything else is recovered per guild by the
player and connection state machines and only ever reaches users as a notice.
"""

from enum import Enum


class PerpetuaError(Exception):
    """Base class for all bot errors."""


class ConfigError(PerpetuaError):
    """
    Missing or invalid configuration (token, playlist, local file, ffmpeg).

    Carries every problem found so startup can report them all at once.
    """

    def __init__(self, problems):
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class ResolutionErrorKind(Enum):
    BOT_DETECTION = "bot_detection"
    PROCESSING = "processing"
    NETWORK = "network"
    INVALID_REFERENCE = "invalid_reference"
    UNAVAILABLE = "unavailable"


class ResolutionError(PerpetuaError):
    """A track reference could not be turned into a playable stream."""

    def __init__(self, reference: str, kind: ResolutionErrorKind, detail: str = ""):
        self.reference = reference
        self.kind = kind
        self.detail = detail
        super().__init__(f"{kind.value}: {detail or reference}")


class VoiceConnectionError(PerpetuaError, ConnectionError):
    """Joining or rejoining a voice channel failed."""


class PlaybackError(PerpetuaError):
    """Decoding or audio output failed mid-track."""
