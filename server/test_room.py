"""
Test suite for Room and RoomManager.

Covers:
- Lazy room creation on join, removal when the last player leaves
- Idempotent joins and the automatic deal at the player threshold
- Display names
- Cross-room player search
- Message broadcast and send_to

Run with: pytest test_room.py -v
"""

import pytest

from game import GameInProgress, GameOptions, GamePhase, HandSizePolicy
from models.events import EventType, GameEvent
from room import Room, RoomManager


# =============================================================================
# Mock helpers
# =============================================================================

class MockWebSocket:
    """Mock WebSocket that collects sent messages."""

    def __init__(self):
        self.messages: list[dict] = []

    async def send_json(self, data: dict):
        self.messages.append(data)


class BrokenWebSocket:
    """WebSocket whose peer has gone away."""

    async def send_json(self, data: dict):
        raise RuntimeError("connection closed")


def make_manager(**option_overrides) -> RoomManager:
    return RoomManager(options=GameOptions(**option_overrides))


# =============================================================================
# RoomManager: join / leave
# =============================================================================

class TestRoomManagerJoin:

    def test_join_creates_room_lazily(self):
        rm = make_manager()
        assert rm.get_room("lobby") is None

        room, events = rm.join_room("lobby", "p1", "Alice")
        assert rm.get_room("lobby") is room
        assert room.game.room_code == "lobby"
        assert events == []
        assert room.game.phase == GamePhase.WAITING

    def test_join_deals_at_threshold(self):
        rm = make_manager()
        rm.join_room("lobby", "p1", "Alice")
        room, events = rm.join_room("lobby", "p2", "Bob")

        assert [e.event_type for e in events] == [EventType.GAME_STARTED]
        assert room.game.phase == GamePhase.AWAITING_PLAY
        assert all(len(p.hand) == 26 for p in room.game.players)

    def test_three_player_variant(self):
        rm = make_manager(min_players=3, hand_size_policy=HandSizePolicy.FIXED, fixed_hand_size=17)
        rm.join_room("lobby", "p1")
        room, events = rm.join_room("lobby", "p2")
        assert events == []
        room, events = rm.join_room("lobby", "p3")
        assert events
        assert [len(p.hand) for p in room.game.players] == [17, 17, 17]

    def test_duplicate_join_is_idempotent(self):
        rm = make_manager()
        rm.join_room("lobby", "p1", "Alice")
        room, _ = rm.join_room("lobby", "p2", "Bob")
        hands_before = {p.id: list(p.hand) for p in room.game.players}

        room, events = rm.join_room("lobby", "p2", None)
        assert events == []
        assert len(room.players) == 2
        assert len(room.game.players) == 2
        assert {p.id: list(p.hand) for p in room.game.players} == hands_before
        assert room.game.get_player("p2").name == "Bob"

    def test_default_name(self):
        rm = make_manager()
        room, _ = rm.join_room("lobby", "p1")
        assert room.player_list() == [{"id": "p1", "name": "Player #1"}]

    def test_join_in_progress_rejected(self):
        rm = make_manager()
        rm.join_room("lobby", "p1")
        rm.join_room("lobby", "p2")
        with pytest.raises(GameInProgress):
            rm.join_room("lobby", "p3")
        room = rm.get_room("lobby")
        assert "p3" not in room.players
        assert len(room.game.players) == 2

    def test_rooms_are_independent(self):
        rm = make_manager()
        room1, _ = rm.join_room("one", "p1")
        room2, _ = rm.join_room("two", "p2")
        assert room1 is not room2
        assert rm.find_player_room("p1") is room1
        assert rm.find_player_room("p2") is room2
        assert rm.find_player_room("nobody") is None
        assert rm.player_count() == 2


class TestRoomManagerLeave:

    def test_last_leave_destroys_room(self):
        rm = make_manager()
        rm.join_room("lobby", "p1")
        rm.leave_room("lobby", "p1")
        assert rm.get_room("lobby") is None

    def test_leave_keeps_room_for_others(self):
        rm = make_manager()
        rm.join_room("lobby", "p1", "Alice")
        rm.join_room("lobby", "p2", "Bob")

        events = rm.leave_room("lobby", "p2")
        room = rm.get_room("lobby")
        assert room is not None
        assert list(room.players) == ["p1"]
        assert events[0].event_type == EventType.PLAYER_LEFT
        assert events[0].data["player_name"] == "Bob"

    def test_leave_below_threshold_then_rejoin_redeals(self):
        rm = make_manager()
        rm.join_room("lobby", "p1")
        rm.join_room("lobby", "p2")
        rm.leave_room("lobby", "p2")
        room = rm.get_room("lobby")
        assert room.game.phase == GamePhase.WAITING

        room, events = rm.join_room("lobby", "p3")
        assert events
        assert room.game.phase == GamePhase.AWAITING_PLAY

    def test_leave_unknown_room(self):
        rm = make_manager()
        assert rm.leave_room("nowhere", "p1") == []

    def test_remove_room(self):
        rm = make_manager()
        rm.get_or_create_room("lobby")
        rm.remove_room("lobby")
        assert rm.get_room("lobby") is None
        rm.remove_room("lobby")  # Should not raise


class TestDisplayName:

    def test_set_display_name(self):
        rm = make_manager()
        room, _ = rm.join_room("lobby", "p1", "Alice")
        assert rm.set_display_name("lobby", "p1", "Alicia") is True
        assert room.player_list()[0]["name"] == "Alicia"

    def test_set_display_name_does_not_touch_game(self):
        rm = make_manager()
        rm.join_room("lobby", "p1")
        room, _ = rm.join_room("lobby", "p2")
        state_before = room.game.get_state("p1")
        rm.set_display_name("lobby", "p2", "Bob")
        state_after = room.game.get_state("p1")
        state_before["players"][1].pop("name")
        state_after["players"][1].pop("name")
        assert state_before == state_after

    def test_set_display_name_unknown(self):
        rm = make_manager()
        assert rm.set_display_name("lobby", "p1", "X") is False
        rm.join_room("lobby", "p1")
        assert rm.set_display_name("lobby", "ghost", "X") is False


# =============================================================================
# Broadcast / send_to
# =============================================================================

class TestMessaging:

    @pytest.mark.asyncio
    async def test_broadcast_to_all(self):
        room = Room(code="TEST")
        ws1, ws2 = MockWebSocket(), MockWebSocket()
        room.add_player("p1", "Alice", ws1)
        room.add_player("p2", "Bob", ws2)

        await room.broadcast({"type": "test_msg"})
        assert ws1.messages == [{"type": "test_msg"}]
        assert ws2.messages == [{"type": "test_msg"}]

    @pytest.mark.asyncio
    async def test_broadcast_excludes_player(self):
        room = Room(code="TEST")
        ws1, ws2 = MockWebSocket(), MockWebSocket()
        room.add_player("p1", "Alice", ws1)
        room.add_player("p2", "Bob", ws2)

        await room.broadcast({"type": "test_msg"}, exclude="p1")
        assert len(ws1.messages) == 0
        assert len(ws2.messages) == 1

    @pytest.mark.asyncio
    async def test_broken_connection_does_not_stop_broadcast(self):
        room = Room(code="TEST")
        ws2 = MockWebSocket()
        room.add_player("p1", "Alice", BrokenWebSocket())
        room.add_player("p2", "Bob", ws2)

        await room.broadcast({"type": "test_msg"})
        assert len(ws2.messages) == 1

    @pytest.mark.asyncio
    async def test_send_to_specific_player(self):
        room = Room(code="TEST")
        ws1, ws2 = MockWebSocket(), MockWebSocket()
        room.add_player("p1", "Alice", ws1)
        room.add_player("p2", "Bob", ws2)

        await room.send_to("p1", {"type": "private_msg"})
        assert len(ws1.messages) == 1
        assert len(ws2.messages) == 0

    @pytest.mark.asyncio
    async def test_send_to_nonexistent_player(self):
        room = Room(code="TEST")
        await room.send_to("nobody", {"type": "test"})  # Should not raise

    @pytest.mark.asyncio
    async def test_send_events_routes_private_events(self):
        room = Room(code="TEST")
        ws1, ws2 = MockWebSocket(), MockWebSocket()
        room.add_player("p1", "Alice", ws1)
        room.add_player("p2", "Bob", ws2)
        events = [
            GameEvent(EventType.MESSAGE, "TEST", 1, data={"text": "hello"}),
            GameEvent(EventType.CARDS_PLAYED, "TEST", 2, player_id="p1",
                      recipient_id="p1", data={"cards": [{"rank": "7", "suit": "♠"}]}),
        ]

        await room.send_events(events)
        assert [m["type"] for m in ws1.messages] == ["message", "cards_played"]
        assert ws1.messages[1]["cards"] == [{"rank": "7", "suit": "♠"}]
        assert [m["type"] for m in ws2.messages] == ["message"]

    @pytest.mark.asyncio
    async def test_game_state_is_per_player(self):
        room = Room(code="TEST")
        ws1, ws2 = MockWebSocket(), MockWebSocket()
        room.add_player("p1", "Alice", ws1)
        room.add_player("p2", "Bob", ws2)
        room.game.start_match()

        await room.broadcast_game_state()
        state1 = ws1.messages[0]["game_state"]
        state2 = ws2.messages[0]["game_state"]
        assert "hand" in state1["players"][0] and "hand" not in state1["players"][1]
        assert "hand" in state2["players"][1] and "hand" not in state2["players"][0]
