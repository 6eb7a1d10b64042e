#!/usr/bin/env python3
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

"""Perpetua setup entry point - run with: python -m setup [--resolve]"""

import argparse
import sys
from pathlib import Path

from .doctor import run_doctor

if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        prog="python -m setup",
        description="Check Perpetua's configuration: token, ffmpeg, playlist or local file.",
    )
    parser.add_argument(
        "--resolve",
        action="store_true",
        help="also resolve every playlist entry with yt-dlp (needs network)",
    )
    args = parser.parse_args()

    try:
        # Project root is parent of setup/ folder
        project_root = Path(__file__).parent.parent
        success = run_doctor(project_root, resolve=args.resolve)
        sys.exit(0 if success else 1)
    except KeyboardInterrupt:
        print("\n\nCheck cancelled.")
        sys.exit(1)
