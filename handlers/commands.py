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
Chat Commands

Seven prefix commands, matched exactly against the trimmed message:
    !play  !stop  !skip  !nowplaying (!np)  !join  !leave  !help

"!play now" or "!PLAY" are not commands. Messages from bots and DMs are
ignored. Every command message also records the channel it came from, which
is where the guild's playback notices go afterwards.

Commands only call into the SessionManager and reply; the state machines
decide everything else.
"""

from typing import Optional

import disnake
from loguru import logger

from config.paths import LOGO_PATH
from core.modes import PlaybackMode
from utils.discord_helpers import can_connect_to_channel, format_guild_log, safe_reply

# Message text after the prefix -> command
COMMANDS = {
    "play": "play",
    "stop": "stop",
    "skip": "skip",
    "nowplaying": "nowplaying",
    "np": "nowplaying",
    "join": "join",
    "leave": "leave",
    "help": "help",
}

NOW_PLAYING_COLOR = 0x00FF00
HELP_COLOR = 0x0099FF


def parse_command(content: str, prefix: str) -> Optional[str]:
    """
    Map message content to a command name.

    Case-sensitive exact match after trimming surrounding whitespace.

    Examples:
        >>> parse_command("  !np ", "!")
        'nowplaying'
        >>> parse_command("!play something", "!") is None
        True
    """
    content = content.strip()
    if not content.startswith(prefix):
        return None
    return COMMANDS.get(content[len(prefix):])


# =============================================================================
# EMBEDS
# =============================================================================

def build_now_playing_embed(session) -> disnake.Embed:
    """Embed for !np: title, position in the playlist and the link."""
    player = session.player
    store = player.store
    reference = store.current()

    title = player.current_title if player.is_streaming and player.current_title else "Loading..."
    embed = disnake.Embed(
        title="🎵 Now Playing",
        description=f"**{disnake.utils.escape_markdown(title)}**",
        color=NOW_PLAYING_COLOR,
    )
    embed.add_field(name="📊 Progress", value=f"Song {store.position} of {len(store)}", inline=True)
    if player.mode == PlaybackMode.LOCAL:
        embed.add_field(name="📁 Source", value="Local MP3 file", inline=False)
    else:
        link = f"[Click here]({reference})" if len(reference) > 50 else reference
        embed.add_field(name="🔗 URL", value=link, inline=False)
    return embed


def build_help_embed(prefix: str, mode: PlaybackMode, track_count: int, active: bool) -> disnake.Embed:
    p = prefix
    skip_text = "Restart current song" if mode == PlaybackMode.LOCAL else "Skip to next song"
    mode_text = "Local MP3 File" if mode == PlaybackMode.LOCAL else f"YouTube Playlist ({track_count} songs)"

    embed = disnake.Embed(
        title="🎵 Perpetua",
        description="Plays your playlist continuously in voice channels!",
        color=HELP_COLOR,
    )
    embed.add_field(
        name="🎶 Music Commands",
        value=(
            f"`{p}play` - Start playing the playlist\n"
            f"`{p}stop` - Stop music and leave channel\n"
            f"`{p}skip` - {skip_text}\n"
            f"`{p}nowplaying` or `{p}np` - Show current song"
        ),
        inline=False,
    )
    embed.add_field(
        name="🔧 Voice Commands",
        value=(
            f"`{p}join` - Join your voice channel\n"
            f"`{p}leave` - Leave voice channel\n"
            f"`{p}help` - Show this help message"
        ),
        inline=False,
    )
    embed.add_field(
        name="📊 Status",
        value=f"Mode: {mode_text}\nCurrently: {'Playing' if active else 'Stopped'}",
        inline=False,
    )
    return embed


def build_help_text(prefix: str, mode: PlaybackMode, track_count: int) -> str:
    """Plain-text help, sent when the embed can't be (e.g. missing Embed Links permission)."""
    p = prefix
    skip_text = "Restart current song" if mode == PlaybackMode.LOCAL else "Skip to next song"
    mode_text = "Local MP3 file" if mode == PlaybackMode.LOCAL else f"YouTube playlist ({track_count} songs)"
    return (
        "🎵 **Perpetua**\n\n"
        f"`{p}play` - Start playing\n"
        f"`{p}stop` - Stop playback and leave channel\n"
        f"`{p}skip` - {skip_text}\n"
        f"`{p}nowplaying` or `{p}np` - Show current song\n"
        f"`{p}join` - Join your voice channel\n"
        f"`{p}leave` - Leave voice channel\n"
        f"`{p}help` - Show this help message\n\n"
        f"📝 Mode: {mode_text}"
    )


# =============================================================================
# DISPATCHER
# =============================================================================

class CommandHandler:
    """
    Routes chat messages to commands.

    Args:
        client: disnake Client
        manager: SessionManager
        config: ConfigManager (prefix and message texts)
    """

    def __init__(self, client, manager, config):
        self.client = client
        self.manager = manager
        self.config = config
        self._commands = {
            "play": self.play,
            "stop": self.stop,
            "skip": self.skip,
            "nowplaying": self.now_playing,
            "join": self.join,
            "leave": self.leave,
            "help": self.help,
        }

    async def handle(self, message: disnake.Message) -> Optional[str]:
        """
        Run the command in `message`, if any.

        Returns:
            Command name that ran, or None if the message was ignored
        """
        if message.author.bot or message.guild is None:
            return None

        name = parse_command(message.content, self.config.prefix)
        if name is None:
            return None

        self.manager.set_text_channel(message.guild.id, message.channel.id)
        logger.info(f"{format_guild_log(message.guild)}: {message.author} used {self.config.prefix}{name}")
        await self._commands[name](message)
        return name

    async def reply(self, message: disnake.Message, key: str, **params) -> None:
        """Reply with a messages.yaml entry, or just log it if the entry is disabled."""
        text = self.config.msg(key, **params)
        if not self.config.is_enabled(key):
            logger.debug(f"{format_guild_log(message.guild)}: (muted) {text}")
            return
        await safe_reply(message, text)

    def _author_channel(self, message: disnake.Message):
        voice = getattr(message.author, "voice", None)
        return voice.channel if voice else None

    async def _ensure_voice(self, message: disnake.Message) -> bool:
        """Join the author's voice channel. Replies with the reason on failure."""
        channel = self._author_channel(message)
        if channel is None:
            await self.reply(message, "not_in_voice")
            return False
        if not can_connect_to_channel(channel):
            await self.reply(message, "no_voice_permission")
            return False
        if not await self.manager.join(message.guild.id, channel.id):
            await self.reply(message, "join_failed")
            return False
        return True

    # =========================================================================
    # Commands
    # =========================================================================

    async def play(self, message: disnake.Message) -> None:
        guild_id = message.guild.id
        # Already playing: the player replies with its own notice
        if not self.manager.is_active(guild_id) and not await self._ensure_voice(message):
            return
        await self.manager.play(guild_id)

    async def stop(self, message: disnake.Message) -> None:
        await self.manager.stop(message.guild.id)
        await self.reply(message, "stopped")

    async def skip(self, message: disnake.Message) -> None:
        if not await self.manager.skip(message.guild.id):
            await self.reply(message, "nothing_playing")

    async def now_playing(self, message: disnake.Message) -> None:
        session = self.manager.get_session(message.guild.id)
        if session is None or not session.player.is_active:
            await self.reply(message, "nothing_playing")
            return
        await self._send_embed(message, build_now_playing_embed(session), fallback=(
            f"🎵 Now playing: {session.player.store.current()}\n"
            f"📊 Song {session.player.store.position}/{len(session.player.store)}"
        ))

    async def join(self, message: disnake.Message) -> None:
        if await self._ensure_voice(message):
            await self.reply(message, "joined")

    async def leave(self, message: disnake.Message) -> None:
        await self.manager.stop(message.guild.id)
        await self.reply(message, "left")

    async def help(self, message: disnake.Message) -> None:
        manager = self.manager
        embed = build_help_embed(
            self.config.prefix, manager.mode, len(manager.store), manager.is_active(message.guild.id)
        )
        await self._send_embed(message, embed, fallback=build_help_text(self.config.prefix, manager.mode, len(manager.store)))

    async def _send_embed(self, message: disnake.Message, embed: disnake.Embed, fallback: str) -> None:
        """Reply with an embed (logo thumbnail when present), plain text if Discord refuses it."""
        kwargs = {"embed": embed, "allowed_mentions": disnake.AllowedMentions.none()}
        if LOGO_PATH.is_file():
            embed.set_thumbnail(url="attachment://logo.png")
            kwargs["file"] = disnake.File(LOGO_PATH, filename="logo.png")
        try:
            await message.reply(**kwargs)
        except disnake.HTTPException as e:
            logger.warning(f"{format_guild_log(message.guild)}: embed reply failed ({e}), sending text")
            await safe_reply(message, fallback)
