"""Models package for the Bluff server."""

from .events import EventType, GameEvent

__all__ = [
    "EventType",
    "GameEvent",
]
