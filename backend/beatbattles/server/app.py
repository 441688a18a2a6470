from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING

import structlog
from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute

from beatbattles.messaging.router import MessageRouter
from beatbattles.rooms.codes import format_room_code
from beatbattles.rooms.repository import RoomRepository
from beatbattles.rooms.service import RoomLifecycleService
from beatbattles.server.settings import GameServerSettings
from beatbattles.server.websocket import websocket_endpoint
from beatbattles.session.manager import SessionManager
from shared.build_info import build_info
from shared.logging import setup_logging

logger = structlog.get_logger()

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from starlette.requests import Request
    from starlette.websockets import WebSocket


async def health(_request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok", **build_info()})


async def status(request: Request) -> JSONResponse:
    session_manager: SessionManager = request.app.state.session_manager
    settings: GameServerSettings = request.app.state.settings
    return JSONResponse(
        {
            "status": "ok",
            **build_info(),
            "rooms": session_manager.room_count,
            "connections": session_manager.connection_count,
            "max_rooms": settings.max_rooms,
        },
    )


async def list_rooms(request: Request) -> JSONResponse:
    """Rooms that are still waiting for players and have a free seat."""
    session_manager: SessionManager = request.app.state.session_manager
    rooms = session_manager.service.list_available_rooms()
    return JSONResponse(
        {
            "rooms": [
                {
                    "id": room.id,
                    "code": room.code,
                    "displayCode": format_room_code(room.code),
                    "hostId": room.host_id,
                    "memberCount": len(room.members),
                    "capacity": room.capacity,
                    "createdAt": room.created_at.isoformat(),
                }
                for room in rooms
            ],
        },
    )


def create_app(
    settings: GameServerSettings | None = None,
    session_manager: SessionManager | None = None,
    message_router: MessageRouter | None = None,
) -> Starlette:
    if settings is None:  # pragma: no cover
        settings = GameServerSettings()

    if session_manager is None:
        session_manager = SessionManager(
            RoomLifecycleService(RoomRepository()),
            max_rooms=settings.max_rooms,
            default_capacity=settings.default_room_capacity,
            max_capacity=settings.max_room_capacity,
            reap_interval_seconds=settings.reap_interval_seconds,
            disconnect_grace_seconds=settings.disconnect_grace_seconds,
        )

    if message_router is None:
        message_router = MessageRouter(session_manager)

    async def ws_endpoint(websocket: WebSocket) -> None:
        await websocket_endpoint(websocket, message_router)

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/status", status, methods=["GET"]),
        Route("/rooms", list_rooms, methods=["GET"]),
        WebSocketRoute("/ws", ws_endpoint),
    ]

    @contextlib.asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncIterator[None]:
        session_manager.start_idle_reaper()
        try:
            yield
        finally:
            await session_manager.stop_idle_reaper()

    app = Starlette(routes=routes, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_methods=["GET"],
        allow_headers=["Content-Type"],
    )
    app.state.settings = settings
    app.state.session_manager = session_manager

    logger.info("room server ready", max_rooms=settings.max_rooms)
    return app


def get_app() -> Starlette:  # pragma: no cover
    """ASGI application factory for production use (e.g., uvicorn --factory)."""
    _settings = GameServerSettings()
    setup_logging(log_dir=_settings.log_dir)
    return create_app(settings=_settings)
