"""In-memory room storage indexed by id and by code.

This is the only holder of authoritative Room records. A durable store would
replace this class behind the same methods.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from beatbattles.rooms.codes import is_valid_room_code
from beatbattles.rooms.errors import DuplicateRoomError

if TYPE_CHECKING:
    from beatbattles.rooms.models import Room


class RoomRepository:
    def __init__(self) -> None:
        self._rooms: dict[str, Room] = {}  # room_id -> Room
        self._codes: dict[str, str] = {}  # code -> room_id
        # Both indices change together under this guard.
        self._guard = threading.Lock()

    def __len__(self) -> int:
        return len(self._rooms)

    def insert(self, room: Room) -> None:
        with self._guard:
            if room.id in self._rooms:
                raise DuplicateRoomError(f"room id {room.id} already exists")
            if room.code in self._codes:
                raise DuplicateRoomError(f"room code {room.code} is already in use")
            self._rooms[room.id] = room
            self._codes[room.code] = room.id

    def find_by_id(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    def find_by_code(self, code: str) -> Room | None:
        """Resolve a room code. Malformed codes are rejected without a lookup."""
        if not is_valid_room_code(code):
            return None
        with self._guard:
            room_id = self._codes.get(code)
            if room_id is None:
                return None
            return self._rooms.get(room_id)

    def code_in_use(self, code: str) -> bool:
        return code in self._codes

    def remove(self, room_id: str) -> Room | None:
        """Remove a room and release its code. Returns the removed room, if any."""
        with self._guard:
            room = self._rooms.pop(room_id, None)
            if room is not None and self._codes.get(room.code) == room_id:
                del self._codes[room.code]
            return room

    def rooms(self) -> list[Room]:
        with self._guard:
            return list(self._rooms.values())
