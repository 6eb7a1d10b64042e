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

"""Configuration management for Perpetua."""

import asyncio
import copy
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Callable, Optional

import yaml
from loguru import logger

from config.paths import resolve_path
from config.timing import FAILURE_PASSES
from core.errors import ConfigError
from core.playlist import PlaylistStore, load_playlist


# =============================================================================
# DEFAULT SETTINGS SCHEMA
# =============================================================================
# These defaults are used when settings.yaml is missing or incomplete.
# Environment variables can override any setting (see _apply_env_overrides).
#
#   prefix                 - Command prefix for chat commands ("!" -> !play)
#   presence_enabled       - Show "Listening to [song]" in bot status
#
# Playback Settings (playback.*):
#   mode                   - "youtube" (loop playlist.json) or "local" (loop one file)
#   playlist_path          - Playlist file; empty means playlist.json in the config folder
#   local_file             - Audio file looped in local mode
#   failure_passes         - Playlist passes of back-to-back resolve failures before giving up (2-20)
#
# Audio Settings (audio.*):
#   volume                 - Playback volume (0-100)
#
# Reconnection Settings (reconnection.*):
#   enabled                - Try to recover dropped voice connections
#   max_attempts           - Recovery cycles before giving up (0-20)
#   probe_timeout          - Seconds to wait for the link to recover on its own
#   rejoin_delay           - Seconds between a failed probe and rejoining
#
# YouTube Settings (youtube.*):
#   cookies_file           - Netscape cookies.txt for yt-dlp (helps with bot detection)
#
# Logging Settings (logging.*):
#   level                  - "minimal", "verbose", "debug", or a level name like "WARNING"
#   file                   - Also log to this file (rotated daily), empty = console only
#   max_files              - Rotated log files to keep (1-100)
# =============================================================================

DEFAULT_SETTINGS = {
    "prefix": "!",
    "presence_enabled": True,
    "playback": {
        "mode": "youtube",
        "playlist_path": None,
        "local_file": "local/song.mp3",
        "failure_passes": FAILURE_PASSES,
    },
    "audio": {
        "volume": 50,
    },
    "reconnection": {
        "enabled": True,
        "max_attempts": 5,
        "probe_timeout": 5.0,
        "rejoin_delay": 5.0,
    },
    "youtube": {
        "cookies_file": None,
    },
    "logging": {
        "level": "verbose",
        "file": None,
        "max_files": 5,
    },
}

_SECTIONS = ("playback", "audio", "reconnection", "youtube", "logging")

PLAYBACK_MODES = ("youtube", "local")

# =============================================================================
# DEFAULT MESSAGES SCHEMA
# =============================================================================
# Each message has two fields:
#   text    - The message template (supports {variables}; {prefix} is always available)
#   enabled - False logs the notice instead of posting it
# =============================================================================

DEFAULT_MESSAGES = {
    # Command replies
    "not_in_voice": {"text": "❌ Join a voice channel first!", "enabled": True},
    "no_voice_permission": {"text": "❌ I can't connect or speak in that voice channel.", "enabled": True},
    "join_failed": {"text": "❌ Failed to join voice channel or start playback.", "enabled": True},
    "joined": {"text": "✅ Joined your voice channel!", "enabled": True},
    "left": {"text": "👋 Left the voice channel.", "enabled": True},
    "stopped": {"text": "⏹️ Stopped playback and left the voice channel.", "enabled": True},
    "nothing_playing": {"text": "❌ Nothing is playing!", "enabled": True},

    # Playback
    "started": {"text": "🎵 Started playing the playlist! ({count} songs)", "enabled": True},
    "already_playing": {"text": "🎵 Already playing and looping the playlist!", "enabled": True},
    "now_playing": {"text": "🎵 Now playing: **{title}**\n{url}", "enabled": True},
    "now_playing_local": {"text": "🎵 Now playing local file: **{title}**", "enabled": True},
    "skipped": {"text": "⏭️ Skipped to song {position} of {total}.", "enabled": True},
    "restarting_local": {"text": "🔄 Restarting local MP3...", "enabled": True},

    # Track failures
    "video_processing": {"text": "⏳ Video is being processed by YouTube, skipping: {url}", "enabled": True},
    "bot_detected": {
        "text": "🤖 Bot detection error, skipping: {url}\n💡 Consider setting up YouTube cookies",
        "enabled": True,
    },
    "play_failed": {"text": "❌ Failed to play: {url}\nSkipping to next song...", "enabled": True},
    "playback_error": {"text": "❌ Playback error on: {url}\nSkipping to next song...", "enabled": True},
    "local_failed": {"text": "❌ Failed to play local MP3: {reason}", "enabled": True},
    "all_failed": {
        "text": "❌ None of the {count} songs could be played. Check the playlist, then use `{prefix}play` to try again.",
        "enabled": True,
    },

    # Voice connection
    "reconnecting": {
        "text": "⚠️ Voice connection lost. Attempting to reconnect... ({attempt}/{max})",
        "enabled": True,
    },
    "reconnect_gave_up": {
        "text": "❌ Lost connection to voice channel after {attempts} attempts. Use `{prefix}play` to restart.",
        "enabled": True,
    },
    "voice_lost": {"text": "❌ Lost connection to voice channel. Use `{prefix}play` to restart.", "enabled": True},
}


def deep_merge(user: dict, defaults: dict) -> dict:
    """Merge user config with defaults, preserving nested structure.

    User values override defaults. Unknown keys are logged and ignored.
    The result never shares nested dicts with `defaults`.
    """
    result = copy.deepcopy(defaults)
    for key, value in user.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(value, result[key])
        elif key in defaults:
            result[key] = value
        else:
            logger.warning(f"unknown config key: {key}")
    return result


def load_yaml(path: Path, defaults: dict) -> dict:
    """Load YAML file merged over defaults.

    A missing or unparsable file yields a copy of the defaults; parse errors
    are logged.
    """
    if not path.exists():
        return copy.deepcopy(defaults)

    try:
        with open(path, 'r', encoding='utf-8') as f:
            user = yaml.safe_load(f) or {}

        if not isinstance(user, dict):
            logger.warning(f"{path.name} invalid, using defaults")
            return copy.deepcopy(defaults)

        return deep_merge(user, defaults)

    except yaml.YAMLError:
        logger.opt(exception=True).error(f"failed to parse {path.name}")
        return copy.deepcopy(defaults)


def save_yaml(path: Path, data: dict, header: str = "") -> None:
    """Save YAML atomically (temp file, then rename) with an optional header comment."""
    temp_path = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_fd, temp_path = tempfile.mkstemp(dir=path.parent, suffix='.tmp')
        try:
            f = os.fdopen(temp_fd, 'w', encoding='utf-8')
        except Exception:
            os.close(temp_fd)
            raise
        with f:
            if header:
                f.write(header)
            yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
        Path(temp_path).replace(path)
    except Exception:
        if temp_path:
            Path(temp_path).unlink(missing_ok=True)
        raise


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


class ConfigManager:
    """Manages bot configuration from settings.yaml and messages.yaml.

    Priority (highest wins):
    1. DEFAULT_SETTINGS / DEFAULT_MESSAGES (built-in defaults)
    2. settings.yaml / messages.yaml (user customization)
    3. Environment variables (.env or deployment)

    Access patterns:
        config_manager.get("prefix")                    # Top-level setting
        config_manager.section("reconnection")          # Nested section dict
        config_manager.msg("skipped", position=2, total=9)
        config_manager.is_enabled("now_playing")

    Attributes:
        config_path: Directory containing settings.yaml and messages.yaml
        settings: Loaded settings dict (after validation)
        messages: Loaded messages dict
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = Path(config_path)
        self.settings: dict = copy.deepcopy(DEFAULT_SETTINGS)
        self.messages: dict = copy.deepcopy(DEFAULT_MESSAGES)

    async def load(self) -> None:
        """Load settings and messages, apply env overrides, validate.

        Generates missing config files with default values and header comments.
        """
        settings_path = self.config_path / "settings.yaml"
        self.settings = await asyncio.to_thread(load_yaml, settings_path, DEFAULT_SETTINGS)

        if not settings_path.exists():
            header = "# Perpetua Settings\n# Environment variables override these values\n\n"
            await asyncio.to_thread(save_yaml, settings_path, DEFAULT_SETTINGS, header)
            logger.debug(f"generated {settings_path.name}")

        messages_path = self.config_path / "messages.yaml"
        self.messages = await asyncio.to_thread(load_yaml, messages_path, DEFAULT_MESSAGES)

        if not messages_path.exists():
            header = "# Perpetua Chat Messages\n# Set enabled: false to keep a notice out of chat\n\n"
            await asyncio.to_thread(save_yaml, messages_path, DEFAULT_MESSAGES, header)
            logger.debug(f"generated {messages_path.name}")

        self._apply_env_overrides()
        self._validate_settings()

        logger.debug("config loaded")

    # =========================================================================
    # Validation
    # =========================================================================

    def _clamp(self, section: str, key: str, low, high, cast: Callable = int) -> None:
        """Coerce settings[section][key] with `cast` and clamp it to [low, high]."""
        target = self.settings[section]
        value = target.get(key)
        try:
            v = cast(value)
        except (ValueError, TypeError):
            logger.warning(f"{section}.{key}={value!r} invalid, using default")
            target[key] = DEFAULT_SETTINGS[section][key]
            return
        clamped = max(low, min(high, v))
        if clamped != v:
            logger.warning(f"{section}.{key}={v} out of range, clamped to {clamped} (valid: {low}-{high})")
        target[key] = clamped

    def _validate_settings(self) -> None:
        """Validate and clamp settings after loading from all sources.

        1. Null-restore: YAML "key:" with no value becomes None; restore defaults
           (except keys whose default is None).
        2. Corrupt sections (scalar instead of mapping) are reset.
        3. Prefix must be a non-empty string without whitespace.
        4. Playback mode must be youtube or local.
        5. Numeric ranges are clamped, booleans type-checked.
        """
        for key in list(self.settings):
            if self.settings[key] is None and key in DEFAULT_SETTINGS:
                self.settings[key] = copy.deepcopy(DEFAULT_SETTINGS[key])

        for section in _SECTIONS:
            sect = self.settings.get(section)
            defaults = DEFAULT_SETTINGS[section]
            if not isinstance(sect, dict):
                logger.warning(f"{section} section invalid, using defaults")
                self.settings[section] = copy.deepcopy(defaults)
                continue
            for key in list(sect):
                if sect[key] is None and defaults.get(key) is not None:
                    sect[key] = defaults[key]

        prefix = self.settings.get("prefix")
        if not isinstance(prefix, str) or not prefix.strip() or any(c.isspace() for c in prefix):
            logger.warning(f"prefix={prefix!r} invalid, using default")
            self.settings["prefix"] = DEFAULT_SETTINGS["prefix"]

        playback = self.settings["playback"]
        mode = str(playback.get("mode")).strip().lower()
        if mode not in PLAYBACK_MODES:
            logger.warning(f"playback.mode={playback.get('mode')!r} invalid, using 'youtube'")
            mode = "youtube"
        playback["mode"] = mode

        self._clamp("playback", "failure_passes", 2, 20)
        self._clamp("audio", "volume", 0, 100)
        self._clamp("reconnection", "max_attempts", 0, 20)
        self._clamp("reconnection", "probe_timeout", 0.5, 60.0, float)
        self._clamp("reconnection", "rejoin_delay", 0.0, 300.0, float)
        self._clamp("logging", "max_files", 1, 100)

        for section, key in (("reconnection", "enabled"), (None, "presence_enabled")):
            target = self.settings[section] if section else self.settings
            if not isinstance(target.get(key), bool):
                name = f"{section}.{key}" if section else key
                logger.warning(f"{name}={target.get(key)!r} is not true/false, using default")
                target[key] = (DEFAULT_SETTINGS[section] if section else DEFAULT_SETTINGS)[key]

    def _apply_env_overrides(self) -> None:
        """Override settings with environment variables.

        env_map maps ENV_VAR_NAME -> (setting_key, converter), with dot notation
        for nested keys. Invalid values are logged and ignored.
        """
        def non_negative(env_key: str, cast: Callable = int) -> Callable[[str], Any]:
            def validate(x: str):
                v = cast(x)
                if v < 0:
                    logger.warning(f"{env_key}={v} out of range, clamped to 0 (valid: 0+)")
                    return cast(0)
                return v
            return validate

        def milliseconds(env_key: str) -> Callable[[str], float]:
            to_number = non_negative(env_key, float)
            return lambda x: to_number(x) / 1000

        env_map = {
            "BOT_PREFIX": ("prefix", str.strip),
            "PRESENCE_ENABLED": ("presence_enabled", _as_bool),
            # Playback
            "PLAYBACK_MODE": ("playback.mode", str.lower),
            "PLAYLIST_PATH": ("playback.playlist_path", str),
            "LOCAL_FILE_PATH": ("playback.local_file", str),
            "FAILURE_PASSES": ("playback.failure_passes", int),
            "DEFAULT_VOLUME": ("audio.volume", int),
            # Reconnection (range validation handled by _validate_settings)
            "AUTO_RECONNECT": ("reconnection.enabled", _as_bool),
            "MAX_RECONNECT_ATTEMPTS": ("reconnection.max_attempts", int),
            "RECONNECT_PROBE_TIMEOUT": ("reconnection.probe_timeout", float),
            "RECONNECT_DELAY": ("reconnection.rejoin_delay", milliseconds("RECONNECT_DELAY")),
            # YouTube
            "YOUTUBE_COOKIES_FILE": ("youtube.cookies_file", str),
            # Logging
            "LOG_LEVEL": ("logging.level", str),
            "LOG_FILE": ("logging.file", str),
            "MAX_LOG_FILES": ("logging.max_files", non_negative("MAX_LOG_FILES")),
        }

        for env_key, (setting_key, converter) in env_map.items():
            if value := os.getenv(env_key):
                try:
                    converted = converter(value)
                    if "." in setting_key:
                        parts = setting_key.split(".")
                        target = self.settings
                        for part in parts[:-1]:
                            target = target.setdefault(part, {})
                            if not isinstance(target, dict):
                                logger.warning(f"invalid config structure for {setting_key}")
                                break
                        else:
                            target[parts[-1]] = converted
                    else:
                        self.settings[setting_key] = converted
                    logger.debug(f"{env_key} overrides {setting_key}")
                except (ValueError, TypeError) as e:
                    logger.warning(f"invalid env var {env_key}: {e}")

    # =========================================================================
    # Access
    # =========================================================================

    def get(self, key: str, default=None) -> Any:
        """Get a top-level setting value."""
        return self.settings.get(key, default)

    def section(self, name: str) -> dict:
        """Get a nested settings section (e.g. "reconnection"). Always a dict."""
        value = self.settings.get(name)
        return value if isinstance(value, dict) else copy.deepcopy(DEFAULT_SETTINGS.get(name, {}))

    @property
    def prefix(self) -> str:
        return self.settings.get("prefix") or DEFAULT_SETTINGS["prefix"]

    @property
    def playback_mode(self) -> str:
        return self.section("playback").get("mode", "youtube")

    def playlist_path(self) -> Path:
        """Configured playlist file, defaulting to playlist.json next to settings.yaml."""
        configured = self.section("playback").get("playlist_path")
        if configured:
            return resolve_path(str(configured))
        return self.config_path / "playlist.json"

    def local_file_path(self) -> Path:
        return resolve_path(str(self.section("playback").get("local_file") or DEFAULT_SETTINGS["playback"]["local_file"]))

    def cookies_file(self) -> Optional[str]:
        configured = self.section("youtube").get("cookies_file")
        return str(resolve_path(str(configured))) if configured else None

    def msg(self, key: str, **kwargs) -> str:
        """Get formatted message text from messages.yaml.

        {prefix} is always available to templates. A template with an unknown
        placeholder is returned unformatted.
        """
        entry = self.messages.get(key, DEFAULT_MESSAGES.get(key, {}))
        template = entry.get("text", key) if isinstance(entry, dict) else str(entry)
        kwargs.setdefault("prefix", self.prefix)
        try:
            return template.format(**kwargs)
        except (KeyError, IndexError, ValueError):
            logger.warning(f"message '{key}' has a bad placeholder, sending it unformatted")
            return template

    def is_enabled(self, key: str) -> bool:
        """Check if a message should be posted to chat (False = log only)."""
        entry = self.messages.get(key, DEFAULT_MESSAGES.get(key, {}))
        return entry.get("enabled", True) if isinstance(entry, dict) else True


def validate_configuration(config: ConfigManager) -> PlaylistStore:
    """Pre-flight check before the bot connects. Collects every problem at once.

    Checks performed:
    - DISCORD_TOKEN is set and has three non-empty dot-separated sections
    - ffmpeg is on PATH
    - youtube mode: playlist file loads and is non-empty
    - local mode: the local file exists

    Also warns (non-fatal) when a configured cookies file is missing.

    Returns:
        The PlaylistStore playback will loop over (one entry in local mode)

    Raises:
        ConfigError: With every problem found
    """
    errors = []
    store = None

    token = (os.getenv("DISCORD_TOKEN") or "").strip()
    if not token:
        errors.append("DISCORD_TOKEN not set - add it to .env or run: python -m setup")
    else:
        parts = token.split(".")
        if len(parts) != 3 or any(not part for part in parts):
            errors.append(
                "DISCORD_TOKEN format appears invalid (expected three dot-separated sections). "
                "Get a fresh token from: https://discord.com/developers/applications"
            )

    if not shutil.which("ffmpeg"):
        errors.append("ffmpeg not found on PATH - install it (apt install ffmpeg / brew install ffmpeg)")

    if config.playback_mode == "local":
        local_file = config.local_file_path()
        if local_file.is_file():
            store = PlaylistStore.single(str(local_file))
        else:
            errors.append(f"local audio file not found at {local_file}")
    else:
        try:
            store = load_playlist(config.playlist_path())
        except ConfigError as e:
            errors.extend(e.problems)

    cookies = config.cookies_file()
    if cookies and not Path(cookies).is_file():
        logger.warning(f"youtube cookies file not found: {cookies}")

    if errors:
        raise ConfigError(errors)

    return store
