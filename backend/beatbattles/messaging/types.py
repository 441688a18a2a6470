from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import AliasChoices, ConfigDict, Field, TypeAdapter, field_validator

from beatbattles.rooms.codes import normalize_room_code
from beatbattles.rooms.models import GameStateView, RoomState, WireModel

# ASCII control character boundaries for input validation
_SPACE_ORD = 0x20
_DEL_ORD = 0x7F

IdStr = Annotated[str, Field(min_length=1, max_length=64)]


class ClientMessageType(StrEnum):
    CREATE_ROOM = "create_room"
    JOIN_ROOM = "join_room"
    LEAVE_ROOM = "leave_room"
    START_GAME = "start_game"
    COMPOSITION_UPDATED = "composition_updated"
    SUBMIT_VOTE = "submit_vote"
    PING = "ping"


class ServerMessageType(StrEnum):
    ROOM_CREATED = "room_created"
    ROOM_UPDATED = "room_updated"
    ROOM_LEFT = "room_left"
    GAME_STATE_UPDATED = "game_state_updated"
    COMPOSITION_UPDATED = "composition_updated"
    VOTE_SUBMITTED = "vote_submitted"
    PONG = "pong"
    ERROR = "error"


class ErrorCode(StrEnum):
    CREATE_ROOM_ERROR = "CREATE_ROOM_ERROR"
    JOIN_ROOM_ERROR = "JOIN_ROOM_ERROR"
    LEAVE_ROOM_ERROR = "LEAVE_ROOM_ERROR"
    START_GAME_ERROR = "START_GAME_ERROR"
    COMPOSITION_UPDATE_ERROR = "COMPOSITION_UPDATE_ERROR"
    SUBMIT_VOTE_ERROR = "SUBMIT_VOTE_ERROR"
    INVALID_MESSAGE = "INVALID_MESSAGE"
    RATE_LIMITED = "RATE_LIMITED"


ERROR_CODE_BY_MESSAGE_TYPE: dict[str, ErrorCode] = {
    ClientMessageType.CREATE_ROOM: ErrorCode.CREATE_ROOM_ERROR,
    ClientMessageType.JOIN_ROOM: ErrorCode.JOIN_ROOM_ERROR,
    ClientMessageType.LEAVE_ROOM: ErrorCode.LEAVE_ROOM_ERROR,
    ClientMessageType.START_GAME: ErrorCode.START_GAME_ERROR,
    ClientMessageType.COMPOSITION_UPDATED: ErrorCode.COMPOSITION_UPDATE_ERROR,
    ClientMessageType.SUBMIT_VOTE: ErrorCode.SUBMIT_VOTE_ERROR,
}


def error_code_for(message_type: object) -> ErrorCode:
    """Operation-specific error code for a raw ``type`` value, INVALID_MESSAGE if unknown."""
    if isinstance(message_type, str):
        return ERROR_CODE_BY_MESSAGE_TYPE.get(message_type, ErrorCode.INVALID_MESSAGE)
    return ErrorCode.INVALID_MESSAGE


def _reject_control_chars(v: str) -> str:
    if any((ord(c) < _SPACE_ORD and c not in ("\t", "\n", "\r")) or ord(c) == _DEL_ORD for c in v):
        raise ValueError("text must not contain control characters")
    return v


# --- Payloads passed through to room members ---


class Note(WireModel):
    id: IdStr
    pitch: int = Field(ge=0, le=127)  # MIDI note number
    start_time: float = Field(ge=0)  # beats
    duration: float = Field(gt=0)  # beats
    velocity: int = Field(ge=0, le=127)


class Track(WireModel):
    id: IdStr
    instrument_type: str = Field(min_length=1, max_length=64)
    notes: list[Note] = Field(default_factory=list, max_length=4096)
    effects: list[str] = Field(default_factory=list, max_length=16)
    volume: float = 0.0
    pan: float = Field(default=0.0, ge=-1, le=1)
    muted: bool = False
    soloed: bool = False


class Composition(WireModel):
    id: IdStr
    user_id: IdStr
    room_id: IdStr
    tracks: list[Track] = Field(default_factory=list, max_length=16)
    bpm: float = Field(gt=0, le=400)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class Vote(WireModel):
    id: IdStr
    user_id: IdStr
    composition_id: IdStr
    room_id: IdStr
    score: int = Field(ge=1, le=5)
    created_at: datetime | None = None


# --- Client -> server ---


class UserPayload(WireModel):
    id: str | None = Field(default=None, min_length=1, max_length=64)
    display_name: str = Field(
        min_length=1,
        max_length=50,
        validation_alias=AliasChoices("displayName", "display_name", "username"),
    )

    @field_validator("display_name")
    @classmethod
    def _validate_display_name(cls, v: str) -> str:
        v = _reject_control_chars(v).strip()
        if not v:
            raise ValueError("display name must not be blank")
        return v


class _ClientMessage(WireModel):
    model_config = ConfigDict(extra="forbid")


RoomCodeField = Annotated[str, Field(min_length=1, max_length=16)]


class _RoomScopedMessage(_ClientMessage):
    room_code: RoomCodeField

    @field_validator("room_code")
    @classmethod
    def _normalize_room_code(cls, v: str) -> str:
        return normalize_room_code(v)


class CreateRoomMessage(_ClientMessage):
    type: Literal[ClientMessageType.CREATE_ROOM] = ClientMessageType.CREATE_ROOM
    user: UserPayload
    capacity: int | None = Field(
        default=None,
        ge=1,
        validation_alias=AliasChoices("capacity", "maxPlayers", "max_players"),
    )


class JoinRoomMessage(_RoomScopedMessage):
    type: Literal[ClientMessageType.JOIN_ROOM] = ClientMessageType.JOIN_ROOM
    user: UserPayload


class LeaveRoomMessage(_RoomScopedMessage):
    type: Literal[ClientMessageType.LEAVE_ROOM] = ClientMessageType.LEAVE_ROOM
    user_id: IdStr


class StartGameMessage(_RoomScopedMessage):
    type: Literal[ClientMessageType.START_GAME] = ClientMessageType.START_GAME
    user_id: IdStr


class CompositionUpdatedMessage(_RoomScopedMessage):
    type: Literal[ClientMessageType.COMPOSITION_UPDATED] = ClientMessageType.COMPOSITION_UPDATED
    composition: Composition


class SubmitVoteMessage(_RoomScopedMessage):
    type: Literal[ClientMessageType.SUBMIT_VOTE] = ClientMessageType.SUBMIT_VOTE
    vote: Vote


class PingMessage(_ClientMessage):
    type: Literal[ClientMessageType.PING] = ClientMessageType.PING


ClientMessage = Annotated[
    CreateRoomMessage
    | JoinRoomMessage
    | LeaveRoomMessage
    | StartGameMessage
    | CompositionUpdatedMessage
    | SubmitVoteMessage
    | PingMessage,
    Field(discriminator="type"),
]

_client_message_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


def parse_client_message(
    data: dict[str, Any],
) -> (
    CreateRoomMessage
    | JoinRoomMessage
    | LeaveRoomMessage
    | StartGameMessage
    | CompositionUpdatedMessage
    | SubmitVoteMessage
    | PingMessage
):
    """Validate a decoded frame into a typed client message."""
    return _client_message_adapter.validate_python(data)


# --- Server -> client ---


class RoomCreatedMessage(WireModel):
    type: Literal[ServerMessageType.ROOM_CREATED] = ServerMessageType.ROOM_CREATED
    room: RoomState


class RoomUpdatedMessage(WireModel):
    type: Literal[ServerMessageType.ROOM_UPDATED] = ServerMessageType.ROOM_UPDATED
    room: RoomState


class RoomLeftMessage(WireModel):
    type: Literal[ServerMessageType.ROOM_LEFT] = ServerMessageType.ROOM_LEFT
    room_id: str
    room_code: str


class GameStateUpdatedMessage(WireModel):
    type: Literal[ServerMessageType.GAME_STATE_UPDATED] = ServerMessageType.GAME_STATE_UPDATED
    state: GameStateView


class CompositionBroadcastMessage(WireModel):
    type: Literal[ServerMessageType.COMPOSITION_UPDATED] = ServerMessageType.COMPOSITION_UPDATED
    composition: Composition


class VoteSubmittedMessage(WireModel):
    type: Literal[ServerMessageType.VOTE_SUBMITTED] = ServerMessageType.VOTE_SUBMITTED
    vote: Vote


class PongMessage(WireModel):
    type: Literal[ServerMessageType.PONG] = ServerMessageType.PONG


class ErrorMessage(WireModel):
    type: Literal[ServerMessageType.ERROR] = ServerMessageType.ERROR
    code: ErrorCode
    message: str
