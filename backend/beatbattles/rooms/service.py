"""Room lifecycle: creation, membership, host handoff and phase transitions."""

from __future__ import annotations

import asyncio
import contextlib
import random
import time
import uuid
from dataclasses import replace
from typing import TYPE_CHECKING

import structlog

from beatbattles.rooms.codes import generate_room_code
from beatbattles.rooms.errors import RoomError, RoomErrorKind, RoomGone
from beatbattles.rooms.models import DEFAULT_CAPACITY, Room, RoomPhase
from beatbattles.rooms.projector import project

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from beatbattles.rooms.models import GameStateView, RoomState, User
    from beatbattles.rooms.repository import RoomRepository

logger = structlog.get_logger()

MIN_PLAYERS_TO_START = 2

THEMES = (
    "Space Adventure",
    "Underwater Journey",
    "Jungle Expedition",
    "Desert Mirage",
    "Cyberpunk City",
    "Medieval Castle",
    "Haunted Mansion",
    "Tropical Paradise",
    "Arctic Wilderness",
    "Steampunk Factory",
)


def pick_host(members: list[User]) -> User:
    """First connected member in join order, else the first member."""
    for user in members:
        if user.is_connected:
            return user
    return members[0]


def _not_found(code: str) -> RoomError:
    return RoomError(RoomErrorKind.NOT_FOUND, f"Room {code!r} not found")


class RoomLifecycleService:
    """Owns every state transition of every room.

    Mutating operations on one room run one at a time under that room's
    asyncio.Lock and re-read the room after acquiring it. Rooms do not share
    locks, so operations on different rooms never wait on each other.
    Expected rejections are returned as RoomError values.
    """

    def __init__(
        self,
        repository: RoomRepository,
        *,
        rng: random.Random | None = None,
        code_generator: Callable[[], str] | None = None,
    ) -> None:
        self._repository = repository
        self._rng = rng or random.Random()
        self._generate_code = code_generator or (lambda: generate_room_code(self._rng))
        self._room_locks: dict[str, asyncio.Lock] = {}

    @property
    def room_count(self) -> int:
        return len(self._repository)

    # --- Mutations ---

    async def create_room(self, host: User, capacity: int = DEFAULT_CAPACITY) -> RoomState:
        """Create a room in the waiting phase with ``host`` as its only member.

        Raises ValueError for a non-positive capacity.
        """
        code = self._generate_code()
        while self._repository.code_in_use(code):
            logger.debug("room code collision, regenerating", code=code)
            code = self._generate_code()

        member = replace(host)
        member.mark_connected(host.connection_id)
        room = Room(
            id=uuid.uuid4().hex,
            code=code,
            host_id=member.id,
            members=[member],
            capacity=capacity,
        )
        self._repository.insert(room)
        self._room_locks[room.id] = asyncio.Lock()
        logger.info("room created", room_id=room.id, code=code, capacity=capacity, host_id=member.id)
        return room.snapshot()

    async def join_room(self, code: str, user: User) -> RoomState | RoomError:
        """Add ``user`` to the room, or refresh them in place if already a member.

        An existing member is refreshed even when the room is full or the
        game has started, so a dropped member can always get back in.
        """
        async with self._locked(self._room_id_for(code)) as room:
            if room is None:
                return _not_found(code)

            existing = room.member(user.id)
            if existing is not None:
                existing.display_name = user.display_name
                existing.mark_connected(user.connection_id)
            else:
                if room.is_full:
                    return RoomError(RoomErrorKind.ROOM_FULL, "Room is full")
                if room.status != RoomPhase.WAITING:
                    return RoomError(RoomErrorKind.WRONG_PHASE, "Game has already started")
                member = replace(user)
                member.mark_connected(user.connection_id)
                room.members.append(member)

            room.touch()
            logger.info(
                "member joined",
                room_id=room.id,
                user_id=user.id,
                rejoin=existing is not None,
                member_count=room.member_count,
            )
            return room.snapshot()

    async def leave_room(self, code: str, user_id: str) -> RoomState | RoomGone | RoomError:
        """Remove a member. Leaving a room the user is not in is a successful no-op."""
        async with self._locked(self._room_id_for(code)) as room:
            if room is None:
                return _not_found(code)

            user = room.member(user_id)
            if user is None:
                return room.snapshot()

            room.members.remove(user)
            if room.is_empty:
                return self._destroy(room, reason="last member left")

            if room.host_id == user_id:
                room.host_id = pick_host(room.members).id
                logger.info("host reassigned", room_id=room.id, host_id=room.host_id)

            room.touch()
            logger.info("member left", room_id=room.id, user_id=user_id, member_count=room.member_count)
            return room.snapshot()

    async def start_game(self, code: str, user_id: str) -> RoomState | RoomError:
        """Host-only: pick a theme and move the room from waiting to composing."""
        async with self._locked(self._room_id_for(code)) as room:
            if room is None:
                return _not_found(code)
            if room.host_id != user_id:
                return RoomError(RoomErrorKind.NOT_AUTHORIZED, "Only the host can start the game")
            if room.member_count < MIN_PLAYERS_TO_START:
                return RoomError(
                    RoomErrorKind.INSUFFICIENT_PLAYERS,
                    f"At least {MIN_PLAYERS_TO_START} players are needed to start",
                )
            if room.status != RoomPhase.WAITING:
                return RoomError(RoomErrorKind.WRONG_PHASE, "Game has already started")

            room.theme = self._rng.choice(THEMES)
            self._enter_phase(room, RoomPhase.COMPOSING)
            return room.snapshot()

    async def advance_phase(self, room_id: str, next_phase: RoomPhase) -> RoomState | RoomError:
        """Move a room to the phase immediately after its current one.

        Deciding *when* to advance (timers, everyone submitted) is up to the caller.
        """
        async with self._locked(room_id) as room:
            if room is None:
                return RoomError(RoomErrorKind.NOT_FOUND, f"Room {room_id!r} not found")
            if room.status.next_phase != next_phase:
                return RoomError(
                    RoomErrorKind.WRONG_PHASE,
                    f"Cannot move from {room.status} to {next_phase}",
                )
            if next_phase == RoomPhase.COMPOSING and room.theme is None:
                room.theme = self._rng.choice(THEMES)
            self._enter_phase(room, next_phase)
            return room.snapshot()

    async def update_connection(
        self,
        room_id: str,
        user_id: str,
        *,
        connected: bool,
        connection_id: str | None = None,
    ) -> RoomState | None:
        """Record a member connecting or dropping.

        Returns None, changing nothing, when the room or member is already gone.
        """
        async with self._locked(room_id) as room:
            if room is None:
                return None
            user = room.member(user_id)
            if user is None:
                return None

            if connected:
                user.mark_connected(connection_id)
            else:
                user.mark_disconnected()
            room.touch()
            logger.info("member connection changed", room_id=room_id, user_id=user_id, connected=connected)
            return room.snapshot()

    async def reap_idle(self, grace_seconds: float = 0) -> list[RoomState | RoomGone]:
        """Remove members that have been disconnected for at least ``grace_seconds``.

        Each affected room is handled under its own lock like any other
        operation. Returns the new state of every room that changed.
        """
        now = time.monotonic()
        candidates = [room.id for room in self._repository.rooms() if any(not u.is_connected for u in room.members)]

        outcomes: list[RoomState | RoomGone] = []
        for room_id in candidates:
            async with self._locked(room_id) as room:
                if room is None:
                    continue

                idle_ids = {u.id for u in room.members if _is_idle(u, now, grace_seconds)}
                if not idle_ids:
                    continue

                room.members = [u for u in room.members if u.id not in idle_ids]
                logger.info("reaped idle members", room_id=room_id, user_ids=sorted(idle_ids))
                if room.is_empty:
                    outcomes.append(self._destroy(room, reason="all members idle"))
                    continue

                if room.host_id in idle_ids:
                    room.host_id = pick_host(room.members).id
                    logger.info("host reassigned", room_id=room_id, host_id=room.host_id)
                room.touch()
                outcomes.append(room.snapshot())
        return outcomes

    # --- Queries ---

    def get_room(self, room_id: str) -> RoomState | None:
        room = self._repository.find_by_id(room_id)
        return room.snapshot() if room is not None else None

    def find_room(self, code: str) -> RoomState | None:
        room = self._repository.find_by_code(code)
        return room.snapshot() if room is not None else None

    def get_game_state(self, room_id: str) -> GameStateView | None:
        room = self.get_room(room_id)
        return project(room) if room is not None else None

    def list_available_rooms(self) -> list[RoomState]:
        """Rooms still accepting players, newest first."""
        rooms = [
            room for room in self._repository.rooms() if room.status == RoomPhase.WAITING and not room.is_full
        ]
        rooms.sort(key=lambda r: r.created_at, reverse=True)
        return [room.snapshot() for room in rooms]

    # --- Internal helpers ---

    def _room_id_for(self, code: str) -> str | None:
        room = self._repository.find_by_code(code)
        return room.id if room is not None else None

    @contextlib.asynccontextmanager
    async def _locked(self, room_id: str | None) -> AsyncIterator[Room | None]:
        """Hold the room's lock and yield the room as it is once the lock is ours."""
        lock = self._room_locks.get(room_id) if room_id is not None else None
        if room_id is None or lock is None:
            yield None
            return

        async with lock:
            yield self._repository.find_by_id(room_id)

        # Drop the lock only once released; late waiters find the room gone.
        if self._repository.find_by_id(room_id) is None:
            self._room_locks.pop(room_id, None)

    def _destroy(self, room: Room, *, reason: str) -> RoomGone:
        self._repository.remove(room.id)
        logger.info("room destroyed", room_id=room.id, code=room.code, reason=reason)
        return RoomGone(room_id=room.id, code=room.code)

    @staticmethod
    def _enter_phase(room: Room, phase: RoomPhase) -> None:
        previous = room.status
        room.status = phase
        room.touch()
        logger.info("room phase changed", room_id=room.id, previous=previous, phase=phase, theme=room.theme)


def _is_idle(user: User, now: float, grace_seconds: float) -> bool:
    if user.is_connected:
        return False
    return user.disconnected_at is None or now - user.disconnected_at >= grace_seconds
