"""
Room management for multiplayer Bluff games.

This module handles room creation, player management, and WebSocket
communication for multiplayer game sessions.

A Room contains:
    - An identifier chosen by the players (any non-empty string)
    - The WebSocket connections of everyone in the room
    - A Game instance with the actual match state

Rooms are created lazily by the first join and destroyed when the last
player leaves. There is no persistence: a room lives as long as its players.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional

from fastapi import WebSocket

from config import config
from game import Game, GameOptions
from logging_config import get_logger
from models.events import GameEvent

logger = get_logger(__name__)


@dataclass
class RoomPlayer:
    """
    A connection in a game room (transport-level representation).

    This is separate from game.Player - RoomPlayer binds a player ID to its
    WebSocket, while game.Player tracks the name and hand.

    Attributes:
        id: Unique player identifier (connection_id).
        websocket: WebSocket connection (None in tests that don't need one).
    """

    id: str
    websocket: Optional[WebSocket] = None


@dataclass
class Room:
    """
    A game room that hosts one Bluff match at a time.

    Attributes:
        code: Room identifier used to join.
        players: Dict mapping player IDs to RoomPlayer objects, in join order.
        game: The Game instance containing actual game state.
        game_lock: asyncio.Lock serializing every mutation and its broadcast.
    """

    code: str
    players: dict[str, RoomPlayer] = field(default_factory=dict)
    game: Game = field(default_factory=Game)
    game_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def __post_init__(self) -> None:
        self.game.room_code = self.code

    def add_player(
        self,
        player_id: str,
        name: Optional[str],
        websocket: Optional[WebSocket] = None,
    ) -> RoomPlayer:
        """
        Add a player to the room, or refresh an existing one.

        Args:
            player_id: Unique identifier for the player (connection_id).
            name: Display name, or None for the "Player #N" default.
            websocket: The player's WebSocket connection.

        Returns:
            The RoomPlayer for this ID.

        Raises:
            GameInProgress, RoomFull: Propagated from Game.add_player.
        """
        self.game.add_player(player_id, name)

        room_player = self.players.get(player_id)
        if room_player is None:
            room_player = RoomPlayer(id=player_id, websocket=websocket)
            self.players[player_id] = room_player
        elif websocket is not None:
            room_player.websocket = websocket
        return room_player

    def remove_player(self, player_id: str) -> list[GameEvent]:
        """
        Remove a player from the room and the match.

        Returns:
            Events produced by the match (empty if the player wasn't here).
        """
        if player_id not in self.players:
            return []
        del self.players[player_id]
        return self.game.remove_player(player_id)

    def get_player(self, player_id: str) -> Optional[RoomPlayer]:
        """Get a player by ID, or None if not found."""
        return self.players.get(player_id)

    def is_empty(self) -> bool:
        """Check if the room has no players."""
        return len(self.players) == 0

    def player_list(self) -> list[dict]:
        """Get list of players (id and display name) for client display."""
        return [{"id": p.id, "name": p.name} for p in self.game.players]

    async def broadcast(self, message: dict, exclude: Optional[str] = None) -> None:
        """
        Send a message to all players in the room.

        Args:
            message: JSON-serializable message dict.
            exclude: Optional player ID to skip.
        """
        for player_id, player in self.players.items():
            if player_id != exclude and player.websocket:
                try:
                    await player.websocket.send_json(message)
                except Exception as e:
                    logger.debug(f"Send to {player_id} failed: {e}")

    async def send_to(self, player_id: str, message: dict) -> None:
        """
        Send a message to a specific player.

        Args:
            player_id: ID of the recipient player.
            message: JSON-serializable message dict.
        """
        player = self.players.get(player_id)
        if player and player.websocket:
            try:
                await player.websocket.send_json(message)
            except Exception as e:
                logger.debug(f"Send to {player_id} failed: {e}")

    async def send_events(self, events: list[GameEvent]) -> None:
        """Deliver match events in the order they were produced."""
        for event in events:
            if event.recipient_id:
                await self.send_to(event.recipient_id, event.to_message())
            else:
                await self.broadcast(event.to_message())

    async def broadcast_game_state(self) -> None:
        """Send each player their own view of the match."""
        for pid in list(self.players):
            await self.send_to(pid, {
                "type": "game_state",
                "game_state": self.game.get_state(pid),
            })


class RoomManager:
    """
    Registry of all active game rooms.

    One RoomManager is owned by the application and passed to every
    handler; tests build their own to stay isolated.
    """

    def __init__(self, options: Optional[GameOptions] = None) -> None:
        """
        Initialize an empty room manager.

        Args:
            options: Match options for new rooms. Defaults to the server config.
        """
        self.rooms: dict[str, Room] = {}
        self.options = options or GameOptions.from_config(config)

    def join_room(
        self,
        room_code: str,
        player_id: str,
        name: Optional[str] = None,
        websocket: Optional[WebSocket] = None,
    ) -> tuple[Room, list[GameEvent]]:
        """
        Join (creating if needed) a room.

        Joining is idempotent for the same player ID. When this join brings
        an undealt room up to the required player count, the match is dealt.

        Args:
            room_code: Room identifier.
            player_id: Joining player's ID.
            name: Display name (optional).
            websocket: The player's connection.

        Returns:
            Tuple of (Room, events produced by dealing, possibly empty).

        Raises:
            GameInProgress, RoomFull.
        """
        log = logger.with_context(room_code=room_code, player_id=player_id)
        room = self.get_or_create_room(room_code)
        try:
            room.add_player(player_id, name, websocket)
        finally:
            if room.is_empty():
                self.remove_room(room_code)
        log.info(f"Player joined ({len(room.players)} in room)")

        events: list[GameEvent] = []
        if room.game.ready_to_deal():
            events = room.game.start_match()
            log.info(f"Match dealt to {len(room.game.players)} players")
        return room, events

    def leave_room(self, room_code: str, player_id: str) -> list[GameEvent]:
        """
        Remove a player from a room, destroying the room if it empties.

        Returns:
            Events produced by the match (empty if nothing changed).
        """
        room = self.rooms.get(room_code)
        if room is None:
            return []

        events = room.remove_player(player_id)
        log = logger.with_context(room_code=room_code, player_id=player_id)
        if room.is_empty():
            self.remove_room(room_code)
            log.info("Last player left, room removed")
        elif events:
            log.info(f"Player left ({len(room.players)} remaining)")
        return events

    def set_display_name(self, room_code: str, player_id: str, name: str) -> bool:
        """Rename a player. Returns False if the room or player is unknown."""
        room = self.rooms.get(room_code)
        if room is None:
            return False
        return room.game.set_player_name(player_id, name)

    def get_or_create_room(self, code: str) -> Room:
        """Get a room, creating an empty one if it doesn't exist yet."""
        room = self.rooms.get(code)
        if room is None:
            room = Room(code=code, game=Game(options=self.options))
            self.rooms[code] = room
            logger.with_context(room_code=code).info("Room created")
        return room

    def get_room(self, code: str) -> Optional[Room]:
        """Get a room by its identifier, or None."""
        return self.rooms.get(code)

    def remove_room(self, code: str) -> None:
        """Delete a room (no-op if it doesn't exist)."""
        if code in self.rooms:
            del self.rooms[code]

    def find_player_room(self, player_id: str) -> Optional[Room]:
        """
        Find which room a player is in.

        Args:
            player_id: The player ID to search for.

        Returns:
            The Room containing the player, or None.
        """
        for room in self.rooms.values():
            if player_id in room.players:
                return room
        return None

    def player_count(self) -> int:
        return sum(len(room.players) for room in self.rooms.values())
