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
Playlist Store

Loads the ordered list of track references from playlist.json and tracks the
playback cursor over it.

The store is an immutable value: advance() and reset() hand back a new store.
Entries are a tuple shared by every guild, so copying a store only copies the
cursor.
"""

import json
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Tuple, Union

from loguru import logger

from core.errors import ConfigError


@dataclass(frozen=True, slots=True)
class PlaylistStore:
    """
    Ordered track references plus a cursor into them.

    Attributes:
        entries: Track references (URLs or file paths), insertion order significant
        cursor: Index of the current entry, always 0 <= cursor < len(entries)
    """

    entries: Tuple[str, ...]
    cursor: int = 0

    def __post_init__(self):
        if not self.entries:
            raise ValueError("PlaylistStore needs at least one entry")
        if not 0 <= self.cursor < len(self.entries):
            raise ValueError(f"cursor {self.cursor} out of range for {len(self.entries)} entries")

    @classmethod
    def single(cls, reference: str) -> "PlaylistStore":
        """One-entry store, used by local mode."""
        return cls((reference,))

    def __len__(self) -> int:
        return len(self.entries)

    def current(self) -> str:
        """Track reference under the cursor."""
        return self.entries[self.cursor]

    def advance(self) -> "PlaylistStore":
        """Move the cursor forward one entry, wrapping to the start."""
        return replace(self, cursor=(self.cursor + 1) % len(self.entries))

    def reset(self) -> "PlaylistStore":
        """Move the cursor back to the first entry."""
        return replace(self, cursor=0)

    @property
    def position(self) -> int:
        """1-based position of the cursor, for display."""
        return self.cursor + 1


def load_playlist(source: Union[str, Path]) -> PlaylistStore:
    """
    Load playlist.json into a store.

    The file must hold a non-empty JSON list of non-blank strings.

    Args:
        source: Path to the playlist file

    Returns:
        PlaylistStore with the cursor at 0

    Raises:
        ConfigError: File missing, unreadable, malformed or empty
    """
    path = Path(source)
    if not path.is_file():
        raise ConfigError(f"playlist not found at {path} - add your songs to {path.name}")

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid {path.name} format: {e}") from e
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}") from e

    if not isinstance(raw, list):
        raise ConfigError(f"{path.name} must contain a JSON list of track URLs")
    if not raw:
        raise ConfigError(f"{path.name} is empty - add at least one song")

    entries = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, str) or not entry.strip():
            raise ConfigError(f"{path.name} entry #{index + 1} is not a track URL: {entry!r}")
        entries.append(entry.strip())

    logger.debug(f"loaded {len(entries)} entries from {path}")
    return PlaylistStore(tuple(entries))
