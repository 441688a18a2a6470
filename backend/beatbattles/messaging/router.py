from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from beatbattles.messaging.types import (
    CompositionUpdatedMessage,
    CreateRoomMessage,
    ErrorMessage,
    JoinRoomMessage,
    LeaveRoomMessage,
    PingMessage,
    StartGameMessage,
    SubmitVoteMessage,
    error_code_for,
    parse_client_message,
)

if TYPE_CHECKING:
    from beatbattles.messaging.protocol import ConnectionProtocol
    from beatbattles.session.manager import SessionManager

logger = logging.getLogger(__name__)


class MessageRouter:
    """
    Routes incoming messages to the session manager.

    Holds no state of its own and can be tested without real WebSocket
    connections.
    """

    def __init__(self, session_manager: SessionManager) -> None:
        self._session_manager = session_manager

    async def handle_message(
        self,
        connection: ConnectionProtocol,
        raw_message: dict[str, Any],
    ) -> None:
        message_type = raw_message.get("type")
        try:
            message = parse_client_message(raw_message)
        except (ValidationError, KeyError, TypeError, ValueError) as e:
            logger.warning("invalid message from %s: %s", connection.connection_id, e)
            await self._send_error(connection, message_type, str(e))
            return

        try:
            await self._dispatch(connection, message)
        except Exception:
            logger.exception("failed to handle %s from %s", message_type, connection.connection_id)
            await self._send_error(connection, message_type, "Internal server error")

    async def _dispatch(self, connection: ConnectionProtocol, message: Any) -> None:
        if isinstance(message, CreateRoomMessage):
            await self._session_manager.create_room(connection, message.user, message.capacity)
        elif isinstance(message, JoinRoomMessage):
            await self._session_manager.join_room(connection, message.room_code, message.user)
        elif isinstance(message, LeaveRoomMessage):
            await self._session_manager.leave_room(connection, message.room_code, message.user_id)
        elif isinstance(message, StartGameMessage):
            await self._session_manager.start_game(connection, message.room_code, message.user_id)
        elif isinstance(message, CompositionUpdatedMessage):
            await self._session_manager.update_composition(connection, message.room_code, message.composition)
        elif isinstance(message, SubmitVoteMessage):
            await self._session_manager.submit_vote(connection, message.room_code, message.vote)
        elif isinstance(message, PingMessage):
            await self._session_manager.handle_ping(connection)

    async def _send_error(self, connection: ConnectionProtocol, message_type: object, text: str) -> None:
        error = ErrorMessage(code=error_code_for(message_type), message=text)
        try:
            await connection.send_message(error.model_dump(mode="json"))
        except (ConnectionError, RuntimeError, OSError):  # fmt: skip
            logger.debug("could not deliver error to %s", connection.connection_id)

    async def handle_connect(self, connection: ConnectionProtocol) -> None:
        self._session_manager.register_connection(connection)

    async def handle_disconnect(self, connection: ConnectionProtocol) -> None:
        await self._session_manager.handle_disconnect(connection)
