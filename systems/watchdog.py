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
Voice Watchdog

Not every dead voice link produces a gateway event. The watchdog periodically
looks at guilds whose connection machine believes it is READY and reports a
disconnect for any whose VoiceClient is no longer connected. From there the
connection machine's normal recovery takes over.
"""

import asyncio
from typing import List

from loguru import logger

from config.timing import WATCHDOG_INTERVAL
from utils.discord_helpers import format_guild_log


async def check_voice_links(manager) -> List[int]:
    """
    One watchdog pass.

    Returns:
        Guild IDs that were reported as disconnected
    """
    dead = []
    for guild_id, runtime in list(manager.runtimes.items()):
        session = manager.get_session(guild_id)
        if session is None or not session.connection.is_ready:
            continue
        if runtime.voice.is_connected():
            continue

        logger.warning(f"{format_guild_log(guild_id, manager.client)}: watchdog found a dead voice link")
        dead.append(guild_id)
        await manager.voice_disconnected(guild_id)
    return dead


async def voice_watchdog(client, manager, interval: float = WATCHDOG_INTERVAL):
    """Run check_voice_links() every `interval` seconds until the client closes."""
    await client.wait_until_ready()
    logger.debug("voice watchdog started")

    while not client.is_closed():
        await asyncio.sleep(interval)
        try:
            await check_voice_links(manager)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.opt(exception=True).error("voice watchdog pass failed")
