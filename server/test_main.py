"""
Tests for the application factory, HTTP monitoring routes and the /ws
dispatch loop.

Run with: pytest test_main.py -v
"""

import json
from types import SimpleNamespace

import pytest
from fastapi import WebSocketDisconnect

from game import GameOptions
from handlers import ConnectionContext, handle_join_room
from main import create_app
from room import RoomManager
from routers.health import health_check, list_rooms, metrics, readiness_check


def fake_request(app):
    return SimpleNamespace(app=app)


@pytest.fixture
def room_manager():
    return RoomManager(options=GameOptions())


@pytest.fixture
def app(room_manager):
    return create_app(room_manager)


def test_app_owns_its_registry(app, room_manager):
    assert app.state.room_manager is room_manager
    assert create_app().state.room_manager is not room_manager


def test_routes_registered(app):
    paths = {route.path for route in app.routes}
    assert {"/ws", "/health", "/ready", "/metrics", "/api/rooms"} <= paths


@pytest.mark.asyncio
async def test_health():
    response = await health_check()
    assert response.status == "ok"


@pytest.mark.asyncio
async def test_ready(app):
    response = await readiness_check(fake_request(app))
    assert response.status == "ok"

    bare = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace()))
    response = await readiness_check(bare)
    assert response.status == "starting"


@pytest.mark.asyncio
async def test_metrics_counts(app, room_manager):
    room_manager.join_room("one", "p1")
    room_manager.join_room("one", "p2")
    room_manager.join_room("two", "p3")

    response = await metrics(fake_request(app))
    assert response.active_rooms == 2
    assert response.total_players == 3
    assert response.games_in_progress == 1


@pytest.mark.asyncio
async def test_list_rooms(app, room_manager):
    room_manager.join_room("lobby", "p1", "Alice")

    rooms = await list_rooms(fake_request(app))
    assert len(rooms) == 1
    assert rooms[0].room_id == "lobby"
    assert rooms[0].players == ["Alice"]
    assert rooms[0].phase == "waiting"
    assert rooms[0].winner_name is None


# =============================================================================
# /ws dispatch loop
# =============================================================================

class ScriptedWebSocket:
    """
    WebSocket that replays a fixed list of inbound frames.

    Exception instances in the script are raised from receive_json();
    once the script runs out the peer disconnects.
    """

    def __init__(self, frames):
        self.frames = list(frames)
        self.messages: list[dict] = []
        self.accepted = False

    async def accept(self):
        self.accepted = True

    async def receive_json(self):
        if not self.frames:
            raise WebSocketDisconnect(code=1000)
        frame = self.frames.pop(0)
        if isinstance(frame, Exception):
            raise frame
        return frame

    async def send_json(self, data: dict):
        self.messages.append(data)

    def types(self) -> list[str]:
        return [m.get("type") for m in self.messages]


class MockWebSocket:
    """Mock WebSocket that collects sent messages."""

    def __init__(self):
        self.messages: list[dict] = []

    async def send_json(self, data: dict):
        self.messages.append(data)


def ws_endpoint(app):
    return next(route.endpoint for route in app.routes if route.path == "/ws")


async def seat_alice(room_manager) -> ConnectionContext:
    ctx = ConnectionContext(websocket=MockWebSocket(), connection_id="alice", player_id="alice")
    await handle_join_room({"room_id": "lobby", "player_name": "Alice"}, ctx, room_manager=room_manager)
    return ctx


def join_frame(name="Bob"):
    return {"type": "join_room", "room_id": "lobby", "player_name": name}


class TestWebSocketEndpoint:

    @pytest.mark.asyncio
    async def test_disconnect_leaves_room(self, app, room_manager):
        alice = await seat_alice(room_manager)
        bob_ws = ScriptedWebSocket([join_frame()])

        await ws_endpoint(app)(bob_ws)

        assert bob_ws.accepted
        assert bob_ws.types()[0] == "joined"
        room = room_manager.get_room("lobby")
        assert list(room.players) == ["alice"]
        left = [m for m in alice.websocket.messages if m["type"] == "player_left"]
        assert left and left[0]["player_name"] == "Bob"

    @pytest.mark.asyncio
    async def test_last_disconnect_removes_room(self, app, room_manager):
        await ws_endpoint(app)(ScriptedWebSocket([join_frame()]))
        assert room_manager.rooms == {}

    @pytest.mark.asyncio
    async def test_malformed_frame_rejected_and_loop_continues(self, app, room_manager):
        alice = await seat_alice(room_manager)
        bob_ws = ScriptedWebSocket([
            join_frame(),
            json.JSONDecodeError("Expecting value", "not json", 0),
            {"type": "set_name", "name": "Robert"},
        ])

        await ws_endpoint(app)(bob_ws)

        errors = [m for m in bob_ws.messages if m["type"] == "error"]
        assert [e["code"] for e in errors] == ["invalid_message"]
        renamed = [m for m in alice.websocket.messages if m["type"] == "room_state"]
        assert any(p["name"] == "Robert" for p in renamed[-2]["players"])
        assert list(room_manager.get_room("lobby").players) == ["alice"]

    @pytest.mark.asyncio
    async def test_non_dict_and_unknown_frames_ignored(self, app, room_manager):
        bob_ws = ScriptedWebSocket([
            [1, 2, 3],
            "hello",
            {"type": "dance"},
            {"no_type": True},
            join_frame(),
        ])

        await ws_endpoint(app)(bob_ws)

        assert "error" not in bob_ws.types()
        assert bob_ws.types()[0] == "joined"

    @pytest.mark.asyncio
    async def test_unexpected_error_still_frees_seat(self, app, room_manager):
        alice = await seat_alice(room_manager)
        bob_ws = ScriptedWebSocket([join_frame(), RuntimeError("transport broke")])

        with pytest.raises(RuntimeError):
            await ws_endpoint(app)(bob_ws)

        assert list(room_manager.get_room("lobby").players) == ["alice"]
        assert any(m["type"] == "player_left" for m in alice.websocket.messages)
