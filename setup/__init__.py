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

"""Setup utilities for Perpetua."""

from .validators import (
    check_python_version,
    validate_token_format,
    check_ffmpeg,
    check_playlist_file,
    check_local_file,
    check_cookies_file,
    resolve_all,
)
from .doctor import run_doctor

__all__ = [
    "check_python_version",
    "validate_token_format",
    "check_ffmpeg",
    "check_playlist_file",
    "check_local_file",
    "check_cookies_file",
    "resolve_all",
    "run_doctor",
]
