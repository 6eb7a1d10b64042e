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

"""Configuration doctor - checks everything the bot needs before it connects."""

import asyncio
import os
from pathlib import Path

from dotenv import load_dotenv

from .validators import (
    check_cookies_file,
    check_ffmpeg,
    check_local_file,
    check_playlist_file,
    check_python_version,
    resolve_all,
    validate_token_format,
)


def run_doctor(project_root: Path = None, resolve: bool = False) -> bool:
    """Run every offline check and print a status line for each.

    Phases:
        1. Prerequisites (Python, ffmpeg)
        2. .env (DISCORD_TOKEN)
        3. Playback source (playlist or local file, cookies)
        4. Optional: resolve every playlist entry with yt-dlp

    Args:
        project_root: Root directory of the project. Defaults to parent of setup module.
        resolve: Also resolve each playlist entry (needs network)

    Returns:
        True if every required check passed
    """
    if project_root is None:
        project_root = Path(__file__).parent.parent
    project_root = Path(project_root)

    load_dotenv(project_root / ".env")

    # Imported after .env is loaded so CONFIG_PATH and overrides apply
    from config.paths import CONFIG_DIR
    from utils.config import ConfigManager

    print("=" * 50)
    print("Perpetua Configuration Check")
    print("=" * 50)
    print()

    all_ok = True

    print("Prerequisites:")
    for ok, msg in (check_python_version(), check_ffmpeg()):
        _print_status(ok, msg)
        all_ok &= ok
    print()

    print("Discord:")
    if not (project_root / ".env").exists():
        _print_status(False, "No .env file - copy .env.example to .env", warning_only=True)
    ok, msg = validate_token_format(os.getenv("DISCORD_TOKEN"))
    _print_status(ok, msg)
    all_ok &= ok
    print()

    config = ConfigManager(CONFIG_DIR)
    asyncio.run(config.load())

    print(f"Playback ({config.playback_mode} mode):")
    if config.playback_mode == "local":
        ok, msg = check_local_file(config.local_file_path())
        _print_status(ok, msg)
        all_ok &= ok
    else:
        playlist_path = config.playlist_path()
        ok, msg = check_playlist_file(playlist_path)
        _print_status(ok, msg)
        all_ok &= ok

        ok, msg = check_cookies_file(config.cookies_file())
        _print_status(ok, msg, warning_only=True)

        if resolve and all_ok:
            print()
            _resolve_playlist(playlist_path, config.cookies_file())
    print()

    if all_ok:
        _print_status(True, "Configuration looks good - start the bot with: python bot.py")
    else:
        _print_status(False, "Fix the problems above, then run this check again")
    return all_ok


def _resolve_playlist(playlist_path: Path, cookies_file) -> None:
    """Resolve every entry and print a summary. Failures are reported, not fatal."""
    from core.playlist import load_playlist
    from core.resolver import YouTubeResolver

    store = load_playlist(playlist_path)
    print(f"Resolving {len(store)} songs (this can take a while)...")

    results = asyncio.run(resolve_all(list(store.entries), YouTubeResolver(cookies_file)))
    for ok, msg in results:
        _print_status(ok, msg, warning_only=True)

    working = sum(1 for ok, _ in results if ok)
    print(f"\n{working}/{len(results)} songs playable")


def _print_status(ok: bool, msg: str, warning_only: bool = False):
    """Print a status line with [+], [!], or [x] prefix."""
    # ANSI colors (work on both Linux and Windows 10+)
    GREEN = "\033[92m"
    RED = "\033[91m"
    YELLOW = "\033[93m"
    NC = "\033[0m"

    if ok:
        print(f"{GREEN}[+] {msg}{NC}")
    elif warning_only:
        print(f"{YELLOW}[!] {msg}{NC}")
    else:
        print(f"{RED}[x] {msg}{NC}")
