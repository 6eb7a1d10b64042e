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
Discord API Helper Functions

Safe wrappers around the Discord calls the bot makes outside the voice
manager. All of them accept None and swallow only the Discord errors that are
expected in normal operation (deleted channels, lost permissions, rate limits),
logging them at debug level.

- format_guild_log(): Human-readable guild names for log lines
- safe_send() / safe_reply(): Mention-safe messaging
- safe_disconnect() / safe_voice_state_change(): Voice housekeeping
- can_connect_to_channel(): Permission pre-check before joining
- make_audio_source(): FFmpeg source for a resolved track
- update_presence(): "Listening to ..." status with dedupe
"""

import asyncio
import shlex
from time import monotonic as _now
from typing import Optional

import disnake
from loguru import logger

# Reconnect flags matter for googlevideo URLs, which drop long idle streams
FFMPEG_STREAM_BEFORE_OPTIONS = "-reconnect 1 -reconnect_streamed 1 -reconnect_delay_max 5 -nostdin"
FFMPEG_LOCAL_BEFORE_OPTIONS = "-nostdin"
FFMPEG_OPTIONS = "-vn"

# Global presence state (bot-wide, not per-guild)
_last_presence_update: float = 0
_current_presence_text: Optional[str] = None
_presence_lock = asyncio.Lock()

# Set from bot.py when logging at debug level
_show_ids = False


def set_show_ids(enabled: bool) -> None:
    """Include guild IDs in log lines (enabled at debug level)."""
    global _show_ids
    _show_ids = enabled


# =============================================================================
# LOGGING FORMATTERS
# =============================================================================

def format_guild_log(guild_or_id, bot=None) -> str:
    """
    Format guild for logging with human-readable name.

    Args:
        guild_or_id: Guild object, guild ID (int), or None (for DMs)
        bot: Client instance (needed to look up names from an ID)

    Returns:
        "ServerName", "ServerName (#123)" at debug level, "DM" or "Guild #123"

    Examples:
        >>> format_guild_log(message.guild)
        'My Discord Server'
        >>> format_guild_log(None)
        'DM'
    """
    if guild_or_id is None:
        return "DM"

    if isinstance(guild_or_id, int):
        guild = bot.get_guild(guild_or_id) if bot else None
        guild_id = guild_or_id
    else:
        guild = guild_or_id
        guild_id = guild.id if guild else None

    if guild and getattr(guild, 'name', None):
        if _show_ids:
            return f"{guild.name} (#{guild_id})"
        return guild.name

    # Bot kicked, cache not ready, etc.
    return f"Guild #{guild_id}" if guild_id else "Unknown"


# =============================================================================
# MESSAGING
# =============================================================================

async def safe_send(channel, content: str) -> Optional[disnake.Message]:
    """
    Send a message with mentions suppressed.

    Returns:
        Message object if sent, None if the channel is gone, forbidden or rate limited
    """
    if not channel:
        return None
    try:
        return await channel.send(content, allowed_mentions=disnake.AllowedMentions.none())
    except (disnake.NotFound, disnake.Forbidden, disnake.HTTPException) as e:
        logger.debug(f"could not send message: {e}")
        return None


async def safe_reply(message: disnake.Message, content: str) -> Optional[disnake.Message]:
    """Reply to a command message, falling back to a plain send if the original was deleted."""
    try:
        return await message.reply(content, allowed_mentions=disnake.AllowedMentions.none())
    except disnake.NotFound:
        return await safe_send(message.channel, content)
    except (disnake.Forbidden, disnake.HTTPException) as e:
        logger.debug(f"could not reply: {e}")
        return None


# =============================================================================
# VOICE HOUSEKEEPING
# =============================================================================

async def safe_disconnect(voice_client: Optional[disnake.VoiceClient], force: bool = True) -> bool:
    """
    Disconnect from voice, treating None as an already-finished disconnect.

    Returns:
        True if disconnected (or nothing to do), False on error
    """
    if not voice_client:
        return True
    try:
        await voice_client.disconnect(force=force)
        return True
    except (disnake.ClientException, disnake.HTTPException, OSError) as e:
        # OSError covers aiohttp transport resets during shutdown
        logger.debug(f"disconnect failed (non-critical): {e}")
        return False


async def safe_voice_state_change(guild: disnake.Guild, channel, self_deaf: bool = True) -> bool:
    """Self-deafen in `channel`. The bot never listens, so this only saves bandwidth."""
    try:
        await guild.change_voice_state(channel=channel, self_deaf=self_deaf)
    except (disnake.ClientException, disnake.HTTPException) as e:
        logger.debug(f"voice state change failed (non-critical): {e}")
        return False
    return True


def can_connect_to_channel(channel) -> bool:
    """
    Check if the bot may join and speak in a voice channel.

    Returns False when guild.me is not cached yet (startup race).
    """
    if not channel:
        return False
    me = channel.guild.me
    if not me:
        return False
    perms = channel.permissions_for(me)
    return bool(perms and perms.connect and perms.speak)


# =============================================================================
# AUDIO
# =============================================================================

def make_audio_source(track, volume: int = 50) -> disnake.PCMVolumeTransformer:
    """
    Create a fresh FFmpeg source for a resolved track.

    Sources are single-use, so this runs for every play, including local-mode
    restarts of the same file.

    Args:
        track: ResolvedTrack from core.resolver
        volume: 0-100

    Returns:
        FFmpegPCMAudio wrapped in PCMVolumeTransformer
    """
    if track.is_local:
        before_options = FFMPEG_LOCAL_BEFORE_OPTIONS
    else:
        before_options = FFMPEG_STREAM_BEFORE_OPTIONS
        if track.http_headers:
            headers = "".join(f"{key}: {value}\r\n" for key, value in track.http_headers.items())
            before_options += f" -headers {shlex.quote(headers)}"

    source = disnake.FFmpegPCMAudio(track.source, before_options=before_options, options=FFMPEG_OPTIONS)
    return disnake.PCMVolumeTransformer(source, volume=max(0, min(100, volume)) / 100)


# =============================================================================
# PRESENCE
# =============================================================================

async def update_presence(client, status_text: Optional[str]) -> bool:
    """
    Show "Listening to <status_text>" under the bot's name, or clear it.

    The lock covers dedupe check, API call and state update, and state is only
    recorded on success so a failed call can be retried.

    Returns:
        True if updated (or deduplicated), False on error
    """
    global _last_presence_update, _current_presence_text

    current_time = _now()

    async with _presence_lock:
        if status_text == _current_presence_text and current_time - _last_presence_update < 10:
            return True

        try:
            if status_text:
                activity = disnake.Activity(type=disnake.ActivityType.listening, name=status_text[:128])
                await client.change_presence(activity=activity)
            else:
                await client.change_presence(activity=None)
        except (disnake.ClientException, disnake.HTTPException) as e:
            logger.debug(f"presence update failed (non-critical): {e}")
            return False

        _last_presence_update = current_time
        _current_presence_text = status_text
        return True
