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
Perpetua - loops a playlist in Discord voice channels, around the clock.

Startup:
1. Load .env, settings.yaml and messages.yaml
2. Configure logging (loguru, disnake's stdlib logs routed in)
3. Validate token, ffmpeg and playlist (exit 1 on any ConfigError)
4. Connect to Discord and hand chat/voice events to the session runtime
"""

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional

import aiohttp
import disnake
from dotenv import load_dotenv
from loguru import logger

# Load environment variables before anything reads them
load_dotenv()

from config.paths import CONFIG_DIR, LOG_DIR
from config.timing import SHUTDOWN_TIMEOUT
from core.errors import ConfigError
from handlers.commands import CommandHandler
from systems.session_manager import SessionManager
from systems.watchdog import check_voice_links, voice_watchdog
from utils.config import ConfigManager, validate_configuration
from utils.discord_helpers import format_guild_log, set_show_ids, update_presence

__version__ = "1.0.0"

# =============================================================================
# LOGGING SETUP
# =============================================================================

# settings.yaml level presets -> loguru level
LOG_LEVEL_PRESETS = {
    'minimal': 'NOTICE',
    'verbose': 'INFO',
    'debug': 'DEBUG',
}

# 4-character level tags keep log columns aligned
LEVEL_TAGS = {
    'DEBUG': 'DBUG',
    'INFO': 'INFO',
    'NOTICE': 'NOTE',
    'WARNING': 'WARN',
    'ERROR': 'FAIL',
    'CRITICAL': 'CRIT',
}


class InterceptHandler(logging.Handler):
    """Route stdlib logging records (disnake, asyncio) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk back to the caller that issued the log call
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _format_record(record) -> str:
    tag = LEVEL_TAGS.get(record["level"].name, record["level"].name[:4])
    return (
        "<green>[{time:YYYY-MM-DD HH:mm:ss}]</green> "
        f"<level>[{tag}]</level> "
        "<cyan>{name}</cyan>: {message}\n{exception}"
    )


def resolve_log_level(value: str) -> str:
    """Map a preset or level name to a loguru level name. Unknown values fall back to INFO."""
    name = str(value or 'verbose').strip()
    if name.lower() in LOG_LEVEL_PRESETS:
        return LOG_LEVEL_PRESETS[name.lower()]
    if name.upper() in LEVEL_TAGS:
        return name.upper()
    logger.warning(f"unknown log level {value!r}, using INFO")
    return 'INFO'


def setup_logging(settings: dict) -> str:
    """
    Configure loguru sinks from the logging section of settings.yaml.

    Console always; a rotating file sink when logging.file is set.

    Returns:
        The effective level name
    """
    level = resolve_log_level(settings.get('level'))

    logger.remove()
    logger.add(sys.stderr, level=level, format=_format_record, backtrace=False, diagnose=False)

    log_file = settings.get('file')
    if log_file:
        path = Path(log_file)
        if not path.is_absolute():
            path = LOG_DIR / path
        logger.add(
            path,
            level=level,
            format=_format_record,
            rotation="00:00",
            retention=int(settings.get('max_files') or 5),
            encoding="utf-8",
            colorize=False,
            enqueue=True,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    library_level = logging.DEBUG if level == 'DEBUG' else logging.WARNING
    for name in ('disnake', 'disnake.gateway', 'disnake.voice_client', 'disnake.player'):
        logging.getLogger(name).setLevel(library_level)

    set_show_ids(level == 'DEBUG')
    return level


# Custom level for lifecycle lines that should show even at "minimal"
try:
    logger.level("NOTICE", no=25, color="<cyan><bold>")
except TypeError:
    # Already registered (module reloaded)
    pass


# =============================================================================
# ASYNCIO EXCEPTION HANDLER
# =============================================================================

# Network-level failures: logged, never fatal
NETWORK_ERRORS = (OSError, aiohttp.ClientError, disnake.HTTPException, asyncio.TimeoutError)


def custom_exception_handler(loop, context):
    """
    Backstop for exceptions nobody awaited.

    - "Unclosed client session" / "Unclosed connector": aiohttp shutdown noise, dropped
    - network errors: logged, bot keeps running
    - anything else: logged at CRITICAL, then the bot shuts down with exit status 1
    """
    message = context.get("message", "")

    if message in ("Unclosed client session", "Unclosed connector"):
        return

    exception = context.get("exception")
    if exception is None:
        loop.default_exception_handler(context)
        return

    if isinstance(exception, NETWORK_ERRORS):
        logger.error(f"network error in background task: {exception!r}")
        return

    logger.opt(exception=exception).critical(f"unhandled exception: {message or type(exception).__name__}")
    client = _client
    if client is not None and not client.is_shutting_down:
        loop.create_task(client.shutdown(exit_code=1))


# =============================================================================
# CLIENT
# =============================================================================

class PerpetuaClient(disnake.Client):
    """
    Gateway client. Chat goes to CommandHandler, voice events to SessionManager.

    Attributes:
        config: Loaded ConfigManager
        manager: SessionManager owning every guild session
        command_handler: CommandHandler for chat commands
        exit_code: Process exit status once the client closes
    """

    def __init__(self, config: ConfigManager, store, **kwargs):
        intents = disnake.Intents.default()
        intents.message_content = True
        intents.voice_states = True
        super().__init__(intents=intents, **kwargs)

        self.config = config
        self.manager = SessionManager(self, config, store)
        self.command_handler = CommandHandler(self, self.manager, config)
        self.exit_code = 0
        self.is_shutting_down = False

        # Set once on_ready has run; later on_ready calls are gateway reconnects
        self._is_initialized = False
        self._watchdog_task: Optional[asyncio.Task] = None

    # =========================================================================
    # Gateway events
    # =========================================================================

    async def on_ready(self):
        if self._is_initialized:
            logger.info("gateway reconnected, checking voice links")
            await check_voice_links(self.manager)
            return
        self._is_initialized = True

        logger.log("NOTICE", f"Perpetua v{__version__} - Copyright (C) 2026 grodz")
        logger.info("Licensed under GPL 3.0 - See LICENSE.md for details")
        logger.log("NOTICE", f"connected as {self.user}, serving {len(self.guilds)} guild(s)")

        manager = self.manager
        if manager.mode.value == "local":
            logger.info(f"mode: local file ({manager.store.current()})")
        else:
            logger.info(f"mode: youtube playlist ({len(manager.store)} songs)")
        logger.info(f"commands: {self.config.prefix}help for the list")
        logger.info("Press Ctrl+C or send SIGTERM to shutdown")

        self._watchdog_task = asyncio.create_task(voice_watchdog(self, manager))

    async def on_resumed(self):
        logger.debug("gateway session resumed")
        await check_voice_links(self.manager)

    async def on_disconnect(self):
        if not self.is_shutting_down:
            logger.info("gateway disconnected, waiting for disnake to reconnect...")

    async def on_message(self, message: disnake.Message):
        await self.command_handler.handle(message)

    async def on_voice_state_update(self, member, before, after):
        if self.user is None or member.id != self.user.id:
            return

        guild_id = member.guild.id
        if before.channel is not None and after.channel is None:
            logger.info(f"{format_guild_log(member.guild)}: bot left voice channel {before.channel.name}")
            await self.manager.voice_disconnected(guild_id)
        elif after.channel is not None and (before.channel is None or before.channel.id != after.channel.id):
            await self.manager.voice_moved(guild_id, after.channel.id)

    async def on_guild_remove(self, guild):
        logger.info(f"removed from {format_guild_log(guild)}")
        await self.manager.teardown(guild.id)

    async def on_error(self, event_method: str, *args, **kwargs):
        logger.opt(exception=True).error(f"unhandled error in {event_method}")

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def shutdown(self, exit_code: int = 0):
        """Tear down every guild, clear presence and close the gateway."""
        if self.is_shutting_down:
            return
        self.is_shutting_down = True
        self.exit_code = exit_code
        logger.info("initiating graceful shutdown...")

        if self._watchdog_task and not self._watchdog_task.done():
            self._watchdog_task.cancel()
            try:
                await self._watchdog_task
            except asyncio.CancelledError:
                pass

        logger.info(f"leaving {len(self.manager.runtimes)} voice channel(s)...")
        try:
            await asyncio.wait_for(self.manager.teardown_all(), timeout=SHUTDOWN_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("voice teardown timed out, closing anyway")

        if self.config.get("presence_enabled", True) and self.is_ready():
            await update_presence(self, None)

        logger.info("closing bot connection...")
        await self.close()
        logger.info("shutdown complete")


_client: Optional[PerpetuaClient] = None


def handle_shutdown_signal(signum: int) -> None:
    """SIGINT (Ctrl+C) / SIGTERM (systemd stop) handler: schedule a clean shutdown."""
    logger.info(f"received {signal.Signals(signum).name}, shutting down...")
    if _client is not None:
        asyncio.get_running_loop().create_task(_client.shutdown())


def _install_signal_handlers(loop) -> None:
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, handle_shutdown_signal, sig)
        except NotImplementedError:
            # Windows: no loop signal support, bounce through the loop thread
            signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(handle_shutdown_signal, signum))


# =============================================================================
# MAIN
# =============================================================================

async def run_bot() -> int:
    """Load config, validate, run until shutdown. Returns the exit status."""
    global _client

    config = ConfigManager(CONFIG_DIR)
    await config.load()
    setup_logging(config.section("logging"))

    try:
        store = validate_configuration(config)
    except ConfigError as e:
        for problem in e.problems:
            logger.critical(problem)
        logger.critical("fix the problems above (or run: python -m setup) and restart")
        return 1

    loop = asyncio.get_running_loop()
    loop.set_exception_handler(custom_exception_handler)
    _install_signal_handlers(loop)

    client = PerpetuaClient(config, store)
    _client = client

    logger.info("starting bot...")
    try:
        await client.start(os.getenv("DISCORD_TOKEN", "").strip())
    except disnake.LoginFailure:
        logger.critical("Discord rejected DISCORD_TOKEN - get a fresh token from the developer portal")
        return 1
    finally:
        if not client.is_closed():
            await client.close()

    return client.exit_code


def main() -> None:
    sys.exit(asyncio.run(run_bot()))


if __name__ == '__main__':
    main()
