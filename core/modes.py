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

"""Playback modes shared by the player, the resolver and settings."""

from enum import Enum


class PlaybackMode(Enum):
    YOUTUBE = "youtube"
    LOCAL = "local"

    @classmethod
    def from_value(cls, value: str) -> "PlaybackMode":
        """Parse a mode name from settings, raising ValueError on anything unknown."""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"unknown playback mode {value!r} (expected 'youtube' or 'local')") from None
