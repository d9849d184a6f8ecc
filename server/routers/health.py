"""
Health check endpoints for production deployment.

Provides:
- /health - Basic liveness check (is the app running?)
- /ready - Readiness check (can the app handle requests?)
- /metrics - Room and player counts for monitoring
- /api/rooms - Public list of rooms and their phase
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from game import ACTIVE_PHASES

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    timestamp: str


class MetricsResponse(BaseModel):
    """Operational metrics from the room registry."""
    timestamp: str
    active_rooms: int
    total_players: int
    games_in_progress: int


class RoomSummary(BaseModel):
    """One room as listed by /api/rooms."""
    room_id: str
    players: list[str]
    phase: str
    winner_name: Optional[str] = None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Basic liveness check - is the app running?

    This endpoint should always return 200 if the process is alive.
    """
    return HealthResponse(status="ok", timestamp=_now())


@router.get("/ready", response_model=HealthResponse)
async def readiness_check(request: Request):
    """
    Readiness check - can the app handle requests?

    Game state is in-memory only, so the app is ready once the room
    registry is attached.
    """
    ready = getattr(request.app.state, "room_manager", None) is not None
    if not ready:
        logger.warning("Readiness check failed: room manager not attached")
    return HealthResponse(status="ok" if ready else "starting", timestamp=_now())


@router.get("/metrics", response_model=MetricsResponse)
async def metrics(request: Request):
    """Expose room/game metrics for dashboards and alerting."""
    rooms = request.app.state.room_manager.rooms
    return MetricsResponse(
        timestamp=_now(),
        active_rooms=len(rooms),
        total_players=sum(len(r.players) for r in rooms.values()),
        games_in_progress=sum(1 for r in rooms.values() if r.game.phase in ACTIVE_PHASES),
    )


@router.get("/api/rooms", response_model=list[RoomSummary])
async def list_rooms(request: Request):
    """List open rooms so players can find one to join."""
    rooms = request.app.state.room_manager.rooms
    return [
        RoomSummary(
            room_id=code,
            players=[p.name for p in room.game.players],
            phase=room.game.phase.value,
            winner_name=room.game.winner_name,
        )
        for code, room in rooms.items()
    ]
