"""Typed outcomes for room operations that do not produce a room snapshot."""

from dataclasses import dataclass
from enum import StrEnum


class RoomErrorKind(StrEnum):
    NOT_FOUND = "not_found"
    ROOM_FULL = "room_full"
    WRONG_PHASE = "wrong_phase"
    NOT_AUTHORIZED = "not_authorized"
    INSUFFICIENT_PLAYERS = "insufficient_players"


@dataclass(frozen=True)
class RoomError:
    """A rejected operation. The room, if any, is unchanged."""

    kind: RoomErrorKind
    message: str


@dataclass(frozen=True)
class RoomGone:
    """The operation removed the last member and the room was destroyed."""

    room_id: str
    code: str


class DuplicateRoomError(ValueError):
    """Raised when inserting a room whose id or code is already live."""
