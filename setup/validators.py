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

"""Validation utilities for setup. Every check returns (ok, message)."""

import shutil
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from core.errors import ConfigError, ResolutionError
from core.playlist import load_playlist


def check_python_version(min_version: tuple = (3, 10)) -> Tuple[bool, str]:
    """Check if Python version meets minimum requirement."""
    current = sys.version_info[:2]
    version_str = f"{current[0]}.{current[1]}"

    if current >= min_version:
        return True, f"Python {version_str}"
    min_str = f"{min_version[0]}.{min_version[1]}"
    return False, f"Python {min_str}+ required, found {version_str}"


def validate_token_format(token: Optional[str]) -> Tuple[bool, str]:
    """Basic validation of Discord bot token format.

    Discord tokens have three dot-separated base64 sections. Lenient on
    length; catches the usual copy/paste mistakes.

    Returns:
        (ok, message) - messages are user-friendly, not technical
    """
    if not token or not isinstance(token, str):
        return False, "DISCORD_TOKEN is empty - add it to .env"

    token = token.strip()

    if token.startswith('"') or token.startswith("'"):
        return False, "Remove the quotes around your token"

    if " " in token:
        return False, "Token contains spaces - make sure you copied it completely"

    if token == "your_token_here":
        return False, "Replace 'your_token_here' with your actual bot token"

    parts = token.split(".")
    if len(parts) != 3 or any(not part for part in parts):
        return False, (
            "That doesn't look like a valid token.\n"
            "    Get a fresh one: Discord Developer Portal > Your App > Bot > Reset Token"
        )

    return True, "Token format valid"


def check_ffmpeg() -> Tuple[bool, str]:
    path = shutil.which("ffmpeg")
    if path:
        return True, f"ffmpeg found at {path}"
    return False, "ffmpeg not found on PATH (apt install ffmpeg / brew install ffmpeg / winget install ffmpeg)"


def check_playlist_file(path: Path) -> Tuple[bool, str]:
    """Check that the playlist loads: a non-empty JSON array of strings."""
    try:
        store = load_playlist(path)
    except ConfigError as e:
        return False, "; ".join(e.problems)
    return True, f"Playlist has {len(store)} songs ({path})"


def check_local_file(path: Path) -> Tuple[bool, str]:
    if not path.is_file():
        return False, f"Local audio file not found at {path}"
    size_mb = path.stat().st_size / (1024 * 1024)
    return True, f"Local file {path.name} ({size_mb:.1f}MB)"


def check_cookies_file(path: Optional[str]) -> Tuple[bool, str]:
    """Cookies are optional; a configured but missing file is only a warning."""
    if not path:
        return True, "No YouTube cookies configured (optional)"
    if Path(path).is_file():
        return True, f"YouTube cookies file found ({path})"
    return False, f"YouTube cookies file not found: {path}"


def _format_duration(seconds: Optional[float]) -> str:
    if not seconds:
        return "?:??"
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours}:{minutes:02d}:{secs:02d}" if hours else f"{minutes}:{secs:02d}"


async def resolve_all(references: List[str], resolver) -> List[Tuple[bool, str]]:
    """Resolve every playlist entry in order.

    Returns:
        One (ok, message) per reference: title and duration, or the failure kind
    """
    results = []
    for index, reference in enumerate(references, start=1):
        try:
            track = await resolver.resolve(reference)
        except ResolutionError as e:
            results.append((False, f"#{index} {reference} - {e.kind.value}: {e.detail}"))
            continue
        results.append((True, f"#{index} {track.title} [{_format_duration(track.duration)}]"))
    return results
