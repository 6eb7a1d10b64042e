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
Voice Management System

Thin per-guild wrapper over a disnake VoiceClient. It does exactly what the
connection and player effects ask for and converts disnake's errors into
VoiceConnectionError / PlaybackError. Decisions about retrying live in
core/connection.py, not here.
"""

import asyncio
from time import monotonic as _now
from typing import Optional

import disnake
from loguru import logger

from config.timing import VOICE_CONNECT_TIMEOUT, VOICE_CONNECTION_CHECK_INTERVAL
from core.errors import PlaybackError, VoiceConnectionError
from utils.discord_helpers import format_guild_log, safe_disconnect, safe_voice_state_change


class VoiceManager:
    """
    Voice operations for one guild.

    Attributes:
        guild_id: Discord guild ID
        voice_client: Current VoiceClient, None when not connected
    """

    def __init__(self, guild_id: int, client=None):
        self.guild_id = guild_id
        self.client = client
        self.voice_client: Optional[disnake.VoiceClient] = None

    @property
    def channel_id(self) -> Optional[int]:
        if self.voice_client and self.voice_client.channel:
            return self.voice_client.channel.id
        return None

    def is_connected(self) -> bool:
        try:
            return bool(self.voice_client and self.voice_client.is_connected())
        except (AttributeError, RuntimeError) as e:
            logger.debug(f"{format_guild_log(self.guild_id, self.client)}: voice state probe failed: {e}")
            return False

    # =========================================================================
    # Connect / Disconnect
    # =========================================================================

    async def connect(self, channel, fresh: bool = False) -> disnake.VoiceClient:
        """
        Join `channel`, or move there if already connected elsewhere in the guild.

        Args:
            channel: Target voice channel
            fresh: Drop any existing client first (used for rejoins, where the
                   old client is in an unknown state)

        Raises:
            VoiceConnectionError: Handshake timed out or Discord refused
        """
        guild = channel.guild
        label = format_guild_log(guild)

        if fresh:
            await self.disconnect()
            # A client may exist that we never tracked (e.g. after a gateway resume)
            await safe_disconnect(guild.voice_client, force=True)

        voice_client = self.voice_client or guild.voice_client

        try:
            if voice_client and voice_client.is_connected():
                if voice_client.channel is None or voice_client.channel.id != channel.id:
                    logger.debug(f"{label}: moving to {channel.name}")
                    await voice_client.move_to(channel)
            else:
                if voice_client:
                    await safe_disconnect(voice_client, force=True)
                logger.debug(f"{label}: connecting to {channel.name}")
                voice_client = await channel.connect(timeout=VOICE_CONNECT_TIMEOUT, reconnect=True)
        except asyncio.TimeoutError as e:
            raise VoiceConnectionError(f"timed out joining {channel.name}") from e
        except (disnake.ClientException, disnake.HTTPException, OSError) as e:
            raise VoiceConnectionError(f"could not join {channel.name}: {e}") from e

        self.voice_client = voice_client
        await safe_voice_state_change(guild, channel, self_deaf=True)
        return voice_client

    async def disconnect(self) -> None:
        """Stop audio and leave voice. Safe to call when already disconnected."""
        voice_client, self.voice_client = self.voice_client, None
        if voice_client:
            self._stop(voice_client)
            await safe_disconnect(voice_client, force=True)

    async def wait_until_connected(self, timeout: float) -> bool:
        """
        Poll until the link reports connected again or `timeout` passes.

        disnake's reconnect=True resumes dropped voice websockets by itself;
        this is how we notice it succeeded.
        """
        deadline = _now() + timeout
        while True:
            if self.is_connected():
                return True
            remaining = deadline - _now()
            if remaining <= 0:
                return False
            await asyncio.sleep(min(VOICE_CONNECTION_CHECK_INTERVAL, remaining))

    # =========================================================================
    # Audio
    # =========================================================================

    def play(self, source, after) -> None:
        """
        Start streaming `source`. `after(error)` runs on the audio thread when it ends.

        Raises:
            PlaybackError: Not connected, or the client refused the source
        """
        if not self.is_connected():
            raise PlaybackError("not connected to voice")
        try:
            self.voice_client.play(source, after=after)
        except (disnake.ClientException, TypeError, OSError) as e:
            raise PlaybackError(str(e)) from e

    def stop(self) -> None:
        """Stop current audio. The after callback still fires, with a stale epoch."""
        if self.voice_client:
            self._stop(self.voice_client)

    def _stop(self, voice_client: disnake.VoiceClient) -> None:
        try:
            if voice_client.is_playing() or voice_client.is_paused():
                voice_client.stop()
        except (disnake.ClientException, AttributeError, RuntimeError) as e:
            logger.debug(f"{format_guild_log(self.guild_id, self.client)}: stop failed (ignored): {e}")
