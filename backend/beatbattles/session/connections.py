"""Connection index for room broadcasting."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from beatbattles.messaging.protocol import ConnectionProtocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoomBinding:
    """The room membership a connection currently speaks for."""

    room_id: str
    user_id: str


class ConnectionRegistry:
    """Track live connections and which room each one is bound to.

    Keeps two indices in step: connection -> binding (at most one room per
    connection) and room -> {connection_id: user_id}. Every bind/unbind
    updates both.
    """

    def __init__(self) -> None:
        self._connections: dict[str, ConnectionProtocol] = {}
        self._bindings: dict[str, RoomBinding] = {}  # connection_id -> binding
        self._rooms: dict[str, dict[str, str]] = {}  # room_id -> {connection_id -> user_id}
        self._delivered: dict[str, int] = {}  # connection_id -> last room revision sent

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def register(self, connection: ConnectionProtocol) -> None:
        self._connections[connection.connection_id] = connection

    def unregister(self, connection_id: str) -> RoomBinding | None:
        """Forget a connection. Returns the binding it held, if any."""
        binding = self.unbind(connection_id)
        self._connections.pop(connection_id, None)
        return binding

    def get(self, connection_id: str) -> ConnectionProtocol | None:
        return self._connections.get(connection_id)

    def binding_for(self, connection_id: str) -> RoomBinding | None:
        return self._bindings.get(connection_id)

    def bind(self, connection_id: str, room_id: str, user_id: str) -> None:
        previous = self._bindings.get(connection_id)
        if previous is not None and previous.room_id != room_id:
            self.unbind(connection_id)
        self._bindings[connection_id] = RoomBinding(room_id=room_id, user_id=user_id)
        self._rooms.setdefault(room_id, {})[connection_id] = user_id

    def unbind(self, connection_id: str) -> RoomBinding | None:
        binding = self._bindings.pop(connection_id, None)
        self._delivered.pop(connection_id, None)
        if binding is not None:
            members = self._rooms.get(binding.room_id)
            if members is not None:
                members.pop(connection_id, None)
                if not members:
                    del self._rooms[binding.room_id]
        return binding

    def unbind_user(self, room_id: str, user_id: str) -> list[str]:
        """Unbind every connection speaking for ``user_id`` in a room."""
        connection_ids = [cid for cid, uid in self._rooms.get(room_id, {}).items() if uid == user_id]
        for connection_id in connection_ids:
            self.unbind(connection_id)
        return connection_ids

    def retain_members(self, room_id: str, member_ids: list[str]) -> list[str]:
        """Unbind connections whose user is no longer a member of the room."""
        keep = set(member_ids)
        stale = [cid for cid, uid in self._rooms.get(room_id, {}).items() if uid not in keep]
        for connection_id in stale:
            self.unbind(connection_id)
        return stale

    def drop_room(self, room_id: str) -> list[str]:
        """Unbind every connection from a destroyed room."""
        connection_ids = list(self._rooms.get(room_id, {}))
        for connection_id in connection_ids:
            self.unbind(connection_id)
        return connection_ids

    def connection_ids_in(self, room_id: str) -> list[str]:
        return list(self._rooms.get(room_id, {}))

    def user_has_other_connection(self, room_id: str, user_id: str, exclude: str) -> bool:
        return any(uid == user_id and cid != exclude for cid, uid in self._rooms.get(room_id, {}).items())

    async def send_to(self, connection_id: str, message: dict[str, Any]) -> bool:
        """Send to one connection. Returns False if it is unknown or the send failed."""
        connection = self._connections.get(connection_id)
        if connection is None:
            return False
        try:
            await connection.send_message(message)
        except (ConnectionError, RuntimeError, OSError):  # fmt: skip
            logger.debug("send to %s failed", connection_id)
            return False
        return True

    async def broadcast(self, room_id: str, message: dict[str, Any], exclude: str | None = None) -> None:
        """Send a message to every connection bound to a room, skipping failures."""
        for connection_id in self.connection_ids_in(room_id):
            if connection_id == exclude:
                continue
            await self.send_to(connection_id, message)

    async def broadcast_revision(self, room_id: str, revision: int, message: dict[str, Any]) -> None:
        """Broadcast a room snapshot, never sending a connection an older revision than it has seen.

        The revision is recorded before the send so an older snapshot that is
        broadcast later is skipped rather than overwriting a newer one.
        """
        for connection_id in self.connection_ids_in(room_id):
            if self._delivered.get(connection_id, -1) >= revision:
                continue
            self._delivered[connection_id] = revision
            await self.send_to(connection_id, message)
