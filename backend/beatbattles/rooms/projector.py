"""Client-facing game state derived from a room snapshot."""

from beatbattles.rooms.models import GameStateView, RoomPhase, RoomState

# Nominal length of each timed phase, in seconds.
PHASE_DURATIONS: dict[RoomPhase, int] = {
    RoomPhase.COMPOSING: 300,
    RoomPhase.VOTING: 120,
}


def project(room: RoomState) -> GameStateView:
    """Build the GameStateView for a room.

    ``time_remaining`` is the full nominal duration of the current phase. It
    does not count down from ``updated_at``.
    """
    return GameStateView(
        room_id=room.id,
        status=room.status,
        theme=room.theme,
        time_remaining=PHASE_DURATIONS.get(room.status),
    )
