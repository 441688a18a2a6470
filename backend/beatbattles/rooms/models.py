"""Room and member records, plus the wire snapshots handed out to other layers."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from beatbattles.rooms.codes import format_room_code

DEFAULT_CAPACITY = 10


class RoomPhase(StrEnum):
    WAITING = "waiting"
    COMPOSING = "composing"
    VOTING = "voting"
    RESULTS = "results"

    @property
    def next_phase(self) -> RoomPhase | None:
        """The phase a room may advance to from this one, or None when terminal."""
        order = list(RoomPhase)
        index = order.index(self)
        if index + 1 < len(order):
            return order[index + 1]
        return None


class ConnectionState(StrEnum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class WireModel(BaseModel):
    """Base for models sent to clients: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        serialize_by_alias=True,
    )


class MemberInfo(WireModel):
    id: str
    display_name: str
    connection_state: ConnectionState


class RoomState(WireModel):
    """Immutable snapshot of a room, safe to hand outside the repository."""

    model_config = ConfigDict(frozen=True)

    id: str
    code: str
    display_code: str
    status: RoomPhase
    host_id: str
    members: list[MemberInfo]
    capacity: int
    theme: str | None = None
    created_at: datetime
    updated_at: datetime
    revision: int

    @property
    def member_ids(self) -> list[str]:
        return [m.id for m in self.members]


class GameStateView(WireModel):
    room_id: str
    status: RoomPhase
    theme: str | None = None
    time_remaining: int | None = None  # seconds


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class User:
    """A room member.

    ``connection_id`` is the transport handle used to route outbound events.
    It is never used for identity.
    """

    id: str
    display_name: str
    connection_state: ConnectionState = ConnectionState.CONNECTED
    connection_id: str | None = None
    disconnected_at: float | None = None  # time.monotonic() of the last disconnect

    @property
    def is_connected(self) -> bool:
        return self.connection_state == ConnectionState.CONNECTED

    def mark_connected(self, connection_id: str | None) -> None:
        self.connection_state = ConnectionState.CONNECTED
        self.connection_id = connection_id
        self.disconnected_at = None

    def mark_disconnected(self) -> None:
        self.connection_state = ConnectionState.DISCONNECTED
        self.connection_id = None
        self.disconnected_at = time.monotonic()

    def snapshot(self) -> MemberInfo:
        return MemberInfo(
            id=self.id,
            display_name=self.display_name,
            connection_state=self.connection_state,
        )


@dataclass
class Room:
    """Authoritative mutable room record, owned by RoomRepository.

    Only RoomLifecycleService mutates it, and only while holding the room lock.
    """

    id: str
    code: str
    host_id: str
    members: list[User] = field(default_factory=list)  # join order
    capacity: int = DEFAULT_CAPACITY
    status: RoomPhase = RoomPhase.WAITING
    theme: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    revision: int = 0

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise ValueError(f"capacity must be a positive integer, got {self.capacity}")

    @property
    def member_count(self) -> int:
        return len(self.members)

    @property
    def is_empty(self) -> bool:
        return not self.members

    @property
    def is_full(self) -> bool:
        return self.member_count >= self.capacity

    def member(self, user_id: str) -> User | None:
        for user in self.members:
            if user.id == user_id:
                return user
        return None

    def has_member(self, user_id: str) -> bool:
        return self.member(user_id) is not None

    def touch(self) -> None:
        """Record an accepted mutation."""
        self.updated_at = utcnow()
        self.revision += 1

    def snapshot(self) -> RoomState:
        return RoomState(
            id=self.id,
            code=self.code,
            display_code=format_room_code(self.code) or self.code,
            status=self.status,
            host_id=self.host_id,
            members=[u.snapshot() for u in self.members],
            capacity=self.capacity,
            theme=self.theme,
            created_at=self.created_at,
            updated_at=self.updated_at,
            revision=self.revision,
        )
