"""
File Paths and Directory Settings

Locations anchored to the bot directory so the bot works regardless of the
current working directory. settings.yaml and environment variables override
the playlist, local file and log paths; CONFIG_PATH moves the whole config
directory.
"""

import os
from pathlib import Path

# Anchor paths to bot root directory for CWD-independence
BOT_ROOT = Path(__file__).resolve().parent.parent

# settings.yaml, messages.yaml and playlist.json live here
CONFIG_DIR = Path(os.getenv('CONFIG_PATH') or str(BOT_ROOT / 'config'))

LOG_DIR = BOT_ROOT / 'logs'                  # Relative logging.file paths land here

LOGO_PATH = BOT_ROOT / 'logo' / 'logo.png'   # Optional thumbnail for the !help and !np embeds


def resolve_path(value: str) -> Path:
    """Resolve a configured path, treating relative paths as relative to the bot root."""
    path = Path(value).expanduser()
    return path if path.is_absolute() else BOT_ROOT / path
