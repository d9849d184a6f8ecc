"""
Outbound event definitions for the Bluff game server.

Every state transition in game.py returns the list of events it produced
instead of pushing them to a transport. The WebSocket layer broadcasts them
to the room, followed by a per-player state snapshot. Private information
travels only in events addressed to one recipient and in those snapshots.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class EventType(str, Enum):
    """All outbound event types produced by a Bluff match."""

    # Lifecycle events
    PLAYER_LEFT = "player_left"
    GAME_STARTED = "game_started"
    GAME_OVER = "game_over"

    # Gameplay events
    CARDS_PLAYED = "cards_played"
    REVEAL_CARDS = "reveal_cards"
    TABLE_CLEARED = "table_cleared"
    MESSAGE = "message"


@dataclass
class GameEvent:
    """
    A single notification produced by a state transition.

    Attributes:
        event_type: The type of event (from EventType enum).
        room_code: Room the event belongs to.
        sequence_num: Monotonically increasing sequence number within the room.
        player_id: ID of the player who triggered the event (if applicable).
        recipient_id: Only this player receives the event; None means the
            whole room.
        data: Event-specific payload data.
    """

    event_type: EventType
    room_code: str
    sequence_num: int
    player_id: Optional[str] = None
    recipient_id: Optional[str] = None
    data: dict = field(default_factory=dict)

    def to_message(self) -> dict:
        """
        Build the client-facing WebSocket message for this event.

        The payload fields are flattened next to ``type`` to match the
        shape of every other server message.
        """
        return {
            "type": self.event_type.value,
            "player_id": self.player_id,
            "sequence_num": self.sequence_num,
            **self.data,
        }
