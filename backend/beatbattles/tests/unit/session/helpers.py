from beatbattles.messaging.types import UserPayload
from beatbattles.tests.mocks.connection import MockConnection, YieldingConnection


def connect(manager, connection_id: str) -> MockConnection:
    """Register a fresh MockConnection with the session manager."""
    conn = MockConnection(connection_id)
    manager.register_connection(conn)
    return conn


def user(user_id: str, display_name: str | None = None) -> UserPayload:
    return UserPayload(id=user_id, display_name=display_name or user_id.title())


async def create_room(manager, conn: MockConnection, user_id: str = "host", capacity: int | None = None) -> dict:
    """Create a room through the manager and return the wire snapshot sent back."""
    await manager.create_room(conn, user(user_id), capacity)
    return conn.messages_of_type("room_created")[-1]["room"]


async def room_with_members(manager, *user_ids: str) -> tuple[dict, list[MockConnection]]:
    """Create a room hosted by the first user and join the rest, one connection each."""
    host_id, *others = user_ids
    conns = [connect(manager, f"conn-{host_id}")]
    room = await create_room(manager, conns[0], host_id)
    for user_id in others:
        conn = connect(manager, f"conn-{user_id}")
        await manager.join_room(conn, room["code"], user(user_id))
        conns.append(conn)
    for conn in conns:
        conn.clear()
    return room, conns


def yielding(manager, connection_id: str) -> YieldingConnection:
    """Register a connection whose sends suspend, so concurrent handlers can interleave."""
    conn = YieldingConnection(connection_id)
    manager.register_connection(conn)
    return conn


def room_updates(conn: MockConnection) -> list[dict]:
    return [m["room"] for m in conn.messages_of_type("room_updated")]
