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
Session Registry

The one map from guild id to that guild's player and connection sessions.
A guild has an entry only while its voice connection is live or pending;
the runtime removes it as soon as the connection is destroyed.
"""

from dataclasses import dataclass
from typing import Dict, Iterator, Optional

from core.connection import ConnectionSession
from core.player import PlayerSession


@dataclass(slots=True)
class GuildSession:
    guild_id: int
    player: PlayerSession
    connection: ConnectionSession
    text_channel_id: Optional[int] = None


class SessionRegistry:
    """guild_id -> GuildSession. At most one entry per guild."""

    def __init__(self):
        self._sessions: Dict[int, GuildSession] = {}

    def get(self, guild_id: int) -> Optional[GuildSession]:
        return self._sessions.get(guild_id)

    def put(self, session: GuildSession) -> None:
        self._sessions[session.guild_id] = session

    def remove(self, guild_id: int) -> Optional[GuildSession]:
        return self._sessions.pop(guild_id, None)

    def __contains__(self, guild_id: int) -> bool:
        return guild_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[GuildSession]:
        return iter(list(self._sessions.values()))
