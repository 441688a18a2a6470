from abc import ABC, abstractmethod
from typing import Any

from beatbattles.messaging.encoder import decode, encode


class ConnectionProtocol(ABC):
    """
    A bidirectional client connection, independent of the transport.

    The session layer only talks to this interface, so a WebSocket can be
    swapped for any other pub/sub channel (or an in-memory mock in tests).
    """

    @property
    @abstractmethod
    def connection_id(self) -> str:
        """Unique identifier for this connection."""
        ...

    @abstractmethod
    async def send_bytes(self, data: bytes) -> None: ...

    @abstractmethod
    async def receive_bytes(self) -> bytes: ...

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None: ...

    async def send_message(self, data: dict[str, Any]) -> None:
        """
        Send a message to the client using MessagePack encoding.
        """
        await self.send_bytes(encode(data))

    async def receive_message(self) -> dict[str, Any]:
        raw = await self.receive_bytes()
        return decode(raw)
