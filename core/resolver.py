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
Track Resolution

Turns a playlist reference into something FFmpeg can stream:
- YouTubeResolver: extracts a direct audio URL with yt-dlp (runs in a worker thread)
- LocalFileResolver: passes a file path through after checking it exists

Both raise ResolutionError with a kind the player uses to pick the notice text.
"""

import asyncio
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import yt_dlp
from loguru import logger

from core.errors import ResolutionError, ResolutionErrorKind
from core.modes import PlaybackMode


# watch?v=, shorts/, live/, embed/ and youtu.be short links with an 11-char video id
_YOUTUBE_URL = re.compile(
    r'^(?:https?://)?(?:www\.|m\.|music\.)?'
    r'(?:youtube\.com/(?:watch\?(?:.*&)?v=|shorts/|live/|embed/)|youtu\.be/)'
    r'[\w-]{11}(?:[?&#].*)?$'
)

# yt-dlp error text -> kind, checked in order
_ERROR_PATTERNS = (
    ("sign in to confirm", ResolutionErrorKind.BOT_DETECTION),
    ("not a bot", ResolutionErrorKind.BOT_DETECTION),
    ("processing this video", ResolutionErrorKind.PROCESSING),
    ("unable to download webpage", ResolutionErrorKind.NETWORK),
    ("timed out", ResolutionErrorKind.NETWORK),
    ("connection reset", ResolutionErrorKind.NETWORK),
    ("temporary failure in name resolution", ResolutionErrorKind.NETWORK),
    ("unsupported url", ResolutionErrorKind.INVALID_REFERENCE),
    ("is not a valid url", ResolutionErrorKind.INVALID_REFERENCE),
)

YDL_OPTIONS = {
    'format': 'bestaudio/best',
    'noplaylist': True,
    'quiet': True,
    'no_warnings': True,
    'skip_download': True,
}


@dataclass(frozen=True, slots=True)
class ResolvedTrack:
    """
    A playable track.

    Attributes:
        reference: The playlist entry this came from
        source: Direct stream URL or local file path handed to FFmpeg
        title: Display title
        duration: Length in seconds, when known
        http_headers: Headers FFmpeg must send when fetching a remote stream
        is_local: True for files on disk
    """

    reference: str
    source: str
    title: str
    duration: Optional[int] = None
    http_headers: Dict[str, str] = field(default_factory=dict)
    is_local: bool = False


def classify_extraction_error(message: str) -> ResolutionErrorKind:
    """Map yt-dlp error text to a ResolutionErrorKind."""
    lowered = message.lower()
    for needle, kind in _ERROR_PATTERNS:
        if needle in lowered:
            return kind
    return ResolutionErrorKind.UNAVAILABLE


class TrackResolver:
    """Interface shared by the YouTube and local resolvers."""

    def validate(self, reference: str) -> bool:
        raise NotImplementedError

    async def resolve(self, reference: str) -> ResolvedTrack:
        raise NotImplementedError


class YouTubeResolver(TrackResolver):
    """
    Resolve YouTube URLs to direct audio streams with yt-dlp.

    Extraction is blocking network I/O, so it runs in asyncio.to_thread().
    """

    def __init__(self, cookies_file: Optional[str] = None):
        self.options = dict(YDL_OPTIONS)
        if cookies_file:
            self.options['cookiefile'] = cookies_file

    def validate(self, reference: str) -> bool:
        return bool(_YOUTUBE_URL.match(reference))

    async def resolve(self, reference: str) -> ResolvedTrack:
        if not self.validate(reference):
            raise ResolutionError(reference, ResolutionErrorKind.INVALID_REFERENCE, "invalid YouTube URL")

        info = await asyncio.to_thread(self._extract, reference)

        stream_url = info.get('url')
        if not stream_url:
            raise ResolutionError(reference, ResolutionErrorKind.UNAVAILABLE, "no audio stream found")

        duration = info.get('duration')
        return ResolvedTrack(
            reference=reference,
            source=stream_url,
            title=info.get('title') or reference,
            duration=int(duration) if duration else None,
            http_headers=dict(info.get('http_headers') or {}),
        )

    def _extract(self, reference: str) -> dict:
        """Blocking yt-dlp call. Converts yt-dlp errors to ResolutionError."""
        try:
            with yt_dlp.YoutubeDL(self.options) as ydl:
                info = ydl.extract_info(reference, download=False)
        except yt_dlp.utils.DownloadError as e:
            kind = classify_extraction_error(str(e))
            logger.debug(f"yt-dlp failed for {reference} ({kind.value}): {e}")
            raise ResolutionError(reference, kind, str(e)) from e
        except OSError as e:
            raise ResolutionError(reference, ResolutionErrorKind.NETWORK, str(e)) from e

        if not info:
            raise ResolutionError(reference, ResolutionErrorKind.UNAVAILABLE, "no video info returned")

        # Playlist URLs with noplaylist off still come back wrapped
        if 'entries' in info:
            entries = [entry for entry in info['entries'] if entry]
            if not entries:
                raise ResolutionError(reference, ResolutionErrorKind.UNAVAILABLE, "playlist has no playable entries")
            info = entries[0]

        return info


class LocalFileResolver(TrackResolver):
    """Pass local audio files straight through to FFmpeg."""

    def validate(self, reference: str) -> bool:
        return Path(reference).is_file()

    async def resolve(self, reference: str) -> ResolvedTrack:
        path = Path(reference)
        if not path.is_file():
            raise ResolutionError(reference, ResolutionErrorKind.UNAVAILABLE, f"local file not found: {path}")
        return ResolvedTrack(
            reference=reference,
            source=str(path),
            title=path.name,
            is_local=True,
        )


def get_resolver(mode, cookies_file: Optional[str] = None) -> TrackResolver:
    """Build the resolver for a playback mode."""
    if mode == PlaybackMode.LOCAL:
        return LocalFileResolver()
    return YouTubeResolver(cookies_file=cookies_file)
