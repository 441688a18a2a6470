"""Session gateway: binds connections to rooms, runs room operations and fans out state."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from typing import TYPE_CHECKING, Any

from beatbattles.messaging.types import (
    CompositionBroadcastMessage,
    ErrorCode,
    ErrorMessage,
    GameStateUpdatedMessage,
    PongMessage,
    RoomCreatedMessage,
    RoomLeftMessage,
    RoomUpdatedMessage,
    VoteSubmittedMessage,
)
from beatbattles.rooms.errors import RoomError, RoomGone
from beatbattles.rooms.models import DEFAULT_CAPACITY, RoomPhase, User
from beatbattles.rooms.projector import project
from beatbattles.session.connections import ConnectionRegistry

if TYPE_CHECKING:
    from beatbattles.messaging.protocol import ConnectionProtocol
    from beatbattles.messaging.types import Composition, UserPayload, Vote
    from beatbattles.rooms.models import RoomState
    from beatbattles.rooms.service import RoomLifecycleService
    from beatbattles.session.connections import RoomBinding

logger = logging.getLogger(__name__)


class SessionManager:
    """Boundary between connections and the room lifecycle service.

    Each handler invokes one service operation, updates the connection index
    to match, and then broadcasts the resulting room snapshot. Failures are
    answered to the requesting connection only. Broadcasting happens after
    the room lock is released and never undoes a committed change.
    """

    def __init__(
        self,
        service: RoomLifecycleService,
        *,
        max_rooms: int = 1000,
        default_capacity: int = DEFAULT_CAPACITY,
        max_capacity: int = 32,
        reap_interval_seconds: float = 30,
        disconnect_grace_seconds: float = 0,
    ) -> None:
        self._service = service
        self._max_rooms = max_rooms
        self._default_capacity = default_capacity
        self._max_capacity = max_capacity
        self._reap_interval_seconds = reap_interval_seconds
        self._disconnect_grace_seconds = disconnect_grace_seconds
        self._connections = ConnectionRegistry()
        self._reaper_task: asyncio.Task[None] | None = None

    @property
    def service(self) -> RoomLifecycleService:
        return self._service

    @property
    def connections(self) -> ConnectionRegistry:
        return self._connections

    @property
    def room_count(self) -> int:
        return self._service.room_count

    @property
    def connection_count(self) -> int:
        return self._connections.connection_count

    def register_connection(self, connection: ConnectionProtocol) -> None:
        self._connections.register(connection)

    # --- Inbound operations ---

    async def create_room(
        self,
        connection: ConnectionProtocol,
        user: UserPayload,
        capacity: int | None = None,
    ) -> None:
        capacity = capacity if capacity is not None else self._default_capacity
        if capacity > self._max_capacity:
            await self._send_error(
                connection,
                ErrorCode.CREATE_ROOM_ERROR,
                f"Capacity must be at most {self._max_capacity}",
            )
            return
        if self._service.room_count >= self._max_rooms:
            await self._send_error(connection, ErrorCode.CREATE_ROOM_ERROR, "Server at capacity")
            return

        previous = self._connections.binding_for(connection.connection_id)
        member = self._member_from(user, connection)
        room = await self._service.create_room(member, capacity)
        if previous is not None:
            await self._depart(previous)

        self._connections.bind(connection.connection_id, room.id, member.id)
        logger.info("room %s created by %s", room.code, member.id)

        await self._send(connection, RoomCreatedMessage(room=room).model_dump(mode="json"))
        await self._broadcast_room(room)

    async def join_room(self, connection: ConnectionProtocol, room_code: str, user: UserPayload) -> None:
        member = self._member_from(user, connection)
        result = await self._service.join_room(room_code, member)
        if isinstance(result, RoomError):
            logger.info("join %s rejected for %s: %s", room_code, member.id, result.kind)
            await self._send_error(connection, ErrorCode.JOIN_ROOM_ERROR, result.message)
            return

        previous = self._connections.binding_for(connection.connection_id)
        if previous is not None and previous.room_id != result.id:
            await self._depart(previous)

        self._connections.bind(connection.connection_id, result.id, member.id)
        await self._broadcast_room(result)
        if result.status != RoomPhase.WAITING:
            # a member coming back mid-game needs the current phase
            await self._broadcast_game_state(result)

    async def leave_room(self, connection: ConnectionProtocol, room_code: str, user_id: str) -> None:
        """Remove ``user_id`` from the room.

        Only a connection speaking for the departing user, or an unbound one,
        is told ``room_left``.
        """
        binding = self._connections.binding_for(connection.connection_id)
        result = await self._service.leave_room(room_code, user_id)
        if isinstance(result, RoomError):
            await self._send_error(connection, ErrorCode.LEAVE_ROOM_ERROR, result.message)
            return

        if isinstance(result, RoomGone):
            self._connections.drop_room(result.room_id)
            room_id = result.room_id
        else:
            self._connections.unbind_user(result.id, user_id)
            room_id = result.id

        if binding is None or (binding.room_id == room_id and binding.user_id == user_id):
            await self._send(
                connection,
                RoomLeftMessage(room_id=room_id, room_code=room_code).model_dump(mode="json"),
            )
        if not isinstance(result, RoomGone):
            await self._broadcast_room(result)

    async def start_game(self, connection: ConnectionProtocol, room_code: str, user_id: str) -> None:
        result = await self._service.start_game(room_code, user_id)
        if isinstance(result, RoomError):
            logger.info("start of %s rejected for %s: %s", room_code, user_id, result.kind)
            await self._send_error(connection, ErrorCode.START_GAME_ERROR, result.message)
            return

        await self._broadcast_room(result)
        await self._broadcast_game_state(result)

    async def update_composition(
        self,
        connection: ConnectionProtocol,
        room_code: str,
        composition: Composition,
    ) -> None:
        """Relay a composition to everyone in the room. The content is not inspected."""
        room = self._service.find_room(room_code)
        if room is None:
            await self._send_error(connection, ErrorCode.COMPOSITION_UPDATE_ERROR, "Room not found")
            return

        await self._connections.broadcast(
            room.id,
            CompositionBroadcastMessage(composition=composition).model_dump(mode="json"),
        )

    async def submit_vote(self, connection: ConnectionProtocol, room_code: str, vote: Vote) -> None:
        # TODO: store votes and move the room to results once every member has voted
        room = self._service.find_room(room_code)
        if room is None:
            await self._send_error(connection, ErrorCode.SUBMIT_VOTE_ERROR, "Room not found")
            return

        logger.info("vote submitted in %s by %s", room.code, vote.user_id)
        await self._send(connection, VoteSubmittedMessage(vote=vote).model_dump(mode="json"))

    async def handle_ping(self, connection: ConnectionProtocol) -> None:
        await self._send(connection, PongMessage().model_dump(mode="json"))

    async def handle_disconnect(self, connection: ConnectionProtocol) -> None:
        """Forget the connection and mark its member disconnected.

        The member stays in the room until they leave or the idle reaper
        removes them. Nothing changes if the same user is still connected to
        the room through another connection.
        """
        binding = self._connections.unregister(connection.connection_id)
        if binding is None:
            return
        if self._connections.user_has_other_connection(binding.room_id, binding.user_id, connection.connection_id):
            return

        room = await self._service.update_connection(binding.room_id, binding.user_id, connected=False)
        if room is not None:
            await self._broadcast_room(room)

    # --- Idle reaper ---

    def start_idle_reaper(self) -> None:
        """Start the periodic idle reaper task. Idempotent."""
        if self._reap_interval_seconds <= 0:
            return
        if self._reaper_task is not None and not self._reaper_task.done():
            return
        self._reaper_task = asyncio.create_task(self._idle_reaper_loop())

    async def stop_idle_reaper(self) -> None:
        if self._reaper_task is not None:
            self._reaper_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reaper_task
            self._reaper_task = None

    async def _idle_reaper_loop(self) -> None:
        while True:
            await asyncio.sleep(self._reap_interval_seconds)
            try:
                await self.reap_idle()
            except Exception:
                logger.exception("idle reaper encountered an error")

    async def reap_idle(self) -> None:
        """Remove members that stayed disconnected past the grace period and publish the result."""
        outcomes = await self._service.reap_idle(self._disconnect_grace_seconds)
        for outcome in outcomes:
            if isinstance(outcome, RoomGone):
                self._connections.drop_room(outcome.room_id)
            else:
                await self._broadcast_room(outcome)

    # --- Internal helpers ---

    async def _depart(self, binding: RoomBinding) -> None:
        """Leave the room a connection was previously bound to."""
        room = self._service.get_room(binding.room_id)
        self._connections.unbind_user(binding.room_id, binding.user_id)
        if room is None:
            return
        result = await self._service.leave_room(room.code, binding.user_id)
        if isinstance(result, RoomGone):
            self._connections.drop_room(result.room_id)
        elif not isinstance(result, RoomError):
            await self._broadcast_room(result)

    async def _broadcast_room(self, room: RoomState) -> None:
        """Prune the index against the room as it is now, then fan ``room`` out.

        ``room`` may already be stale when a handler suspended after the
        commit, so membership is read again rather than taken from it.
        """
        current = self._service.get_room(room.id)
        if current is None:
            self._connections.drop_room(room.id)
            return
        self._connections.retain_members(room.id, current.member_ids)
        await self._connections.broadcast_revision(
            room.id,
            room.revision,
            RoomUpdatedMessage(room=room).model_dump(mode="json"),
        )

    async def _broadcast_game_state(self, room: RoomState) -> None:
        await self._connections.broadcast(
            room.id,
            GameStateUpdatedMessage(state=project(room)).model_dump(mode="json"),
        )

    @staticmethod
    def _member_from(user: UserPayload, connection: ConnectionProtocol) -> User:
        return User(
            id=user.id or str(uuid.uuid4()),
            display_name=user.display_name,
            connection_id=connection.connection_id,
        )

    @staticmethod
    async def _send(connection: ConnectionProtocol, message: dict[str, Any]) -> None:
        with contextlib.suppress(ConnectionError, RuntimeError, OSError):
            await connection.send_message(message)

    async def _send_error(self, connection: ConnectionProtocol, code: ErrorCode, message: str) -> None:
        await self._send(connection, ErrorMessage(code=code, message=message).model_dump(mode="json"))
