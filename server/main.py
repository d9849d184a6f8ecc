"""FastAPI WebSocket server for the Bluff card game."""

import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from config import config
from handlers import HANDLERS, ConnectionContext, leave_current_room, send_error
from logging_config import player_id_var, setup_logging
from room import RoomManager
from routers.health import router as health_router

# Configure logging based on environment
setup_logging(
    level=config.LOG_LEVEL,
    environment=config.ENVIRONMENT,
)
logger = logging.getLogger(__name__)


def create_app(room_manager: Optional[RoomManager] = None) -> FastAPI:
    """
    Build the application around a room registry.

    Args:
        room_manager: Registry to serve. Tests pass their own; the server
            creates one from the config.

    Returns:
        The configured FastAPI app. The registry is exposed as
        ``app.state.room_manager``.
    """
    room_manager = room_manager or RoomManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"Bluff server started (environment={config.ENVIRONMENT}, "
            f"players_to_start={config.PLAYERS_TO_START}, "
            f"hand_size_policy={config.HAND_SIZE_POLICY})"
        )
        yield
        logger.info("Shutdown initiated...")
        await _close_all_websockets(room_manager)
        room_manager.rooms.clear()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="Bluff Card Game",
        debug=config.DEBUG,
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.room_manager = room_manager
    app.include_router(health_router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await websocket.accept()

        connection_id = str(uuid.uuid4())
        player_id_var.set(connection_id)
        logger.debug(f"WebSocket connected as {connection_id}")

        ctx = ConnectionContext(
            websocket=websocket,
            connection_id=connection_id,
            player_id=connection_id,
        )

        # Shared dependencies passed to every handler
        handler_deps = dict(room_manager=room_manager)

        try:
            while True:
                try:
                    data = await websocket.receive_json()
                except json.JSONDecodeError:
                    await send_error(ctx, "invalid_message", "Messages must be JSON")
                    continue
                if not isinstance(data, dict):
                    continue
                handler = HANDLERS.get(data.get("type"))
                if handler:
                    await handler(data, ctx, **handler_deps)
        except WebSocketDisconnect:
            logger.debug(f"WebSocket {connection_id} disconnected")
        finally:
            # Every exit from the loop frees the seat
            await leave_current_room(ctx, room_manager)

    return app


async def _close_all_websockets(room_manager: RoomManager):
    """Close all active WebSocket connections gracefully."""
    for room in list(room_manager.rooms.values()):
        for player in room.players.values():
            if player.websocket:
                try:
                    await player.websocket.close(code=1001, reason="Server shutting down")
                except Exception:
                    pass
    logger.info("All WebSocket connections closed")


app = create_app()


def run():
    """Run the server using uvicorn."""
    import uvicorn

    logger.info(f"Starting Bluff server on {config.HOST}:{config.PORT}")
    logger.info(f"Debug mode: {config.DEBUG}")

    uvicorn.run(
        "main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
