"""WebSocket message handlers for the Bluff card game.

Each handler corresponds to a single message type from the client.
Handlers are dispatched via the HANDLERS dict in main.py.

Every handler that touches a match holds the room's game_lock for the
whole mutation plus broadcast, so clients never see a half-applied action.
Rejected actions are reported to the acting player only.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from fastapi import WebSocket

from game import Card, Game, GameError, InvalidPlay, Rank
from logging_config import room_code_var
from models.events import EventType, GameEvent
from room import Room, RoomManager

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 32


@dataclass
class ConnectionContext:
    """State tracked per WebSocket connection."""

    websocket: WebSocket
    connection_id: str
    player_id: str
    current_room: Optional[Room] = None


async def send_error(ctx: ConnectionContext, code: str, message: str) -> None:
    await ctx.websocket.send_json({"type": "error", "code": code, "message": message})


async def reject(ctx: ConnectionContext, action: str, error: GameError) -> None:
    """Report a rejected action back to the player who attempted it."""
    room_code = ctx.current_room.code if ctx.current_room else None
    logger.info(
        f"Rejected {action} from {ctx.player_id}: {error.code}",
        extra={"room_code": room_code, "player_id": ctx.player_id},
    )
    await send_error(ctx, error.code, str(error))


def _clean_name(raw: Any) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    return raw.strip()[:MAX_NAME_LENGTH] or None


def _parse_cards(raw: Any) -> list[Card]:
    if not isinstance(raw, list):
        raise InvalidPlay("cards must be a list")
    return [Card.from_dict(c) for c in raw]


def _log_outcome(room: Room, events: list[GameEvent]) -> None:
    for event in events:
        if event.event_type == EventType.GAME_OVER:
            logger.info(
                f"Game over, winner {event.data['winner_name']}",
                extra={"room_code": room.code, "player_id": event.data["winner_id"]},
            )
        elif event.event_type == EventType.REVEAL_CARDS:
            logger.info(
                f"Bluff called on {event.data['declarer_id']}: "
                f"{'caught' if event.data['is_bluff'] else 'truthful'}",
                extra={"room_code": room.code, "player_id": event.player_id},
            )


async def apply_action(
    ctx: ConnectionContext,
    action: str,
    transition: Callable[[Game], list[GameEvent]],
) -> None:
    """
    Run one state transition under the room lock and publish the result.

    Args:
        ctx: The acting connection.
        action: Name used in logs.
        transition: Callable applying the action to the room's Game.
    """
    room = ctx.current_room
    if not room:
        await send_error(ctx, "not_in_room", "Join a room first")
        return

    async with room.game_lock:
        try:
            events = transition(room.game)
        except GameError as e:
            await reject(ctx, action, e)
            return

        logger.debug(
            f"{action} by {ctx.player_id} produced {len(events)} events",
            extra={"room_code": room.code},
        )
        _log_outcome(room, events)
        await room.send_events(events)
        await room.broadcast_game_state()


async def leave_current_room(ctx: ConnectionContext, room_manager: RoomManager) -> None:
    """Remove the connection's player from its room (explicit leave or disconnect)."""
    room = ctx.current_room
    if not room:
        return
    ctx.current_room = None
    room_code_var.set(None)

    async with room.game_lock:
        events = room_manager.leave_room(room.code, ctx.player_id)
        if room.is_empty():
            return
        await room.send_events(events)
        await room.broadcast({"type": "room_state", "players": room.player_list()})
        await room.broadcast_game_state()


# ---------------------------------------------------------------------------
# Lobby / Room handlers
# ---------------------------------------------------------------------------

async def handle_join_room(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    room_code = str(data.get("room_id") or "").strip()
    player_name = _clean_name(data.get("player_name"))

    if not room_code:
        await send_error(ctx, "invalid_room", "room_id is required")
        return

    # A player belongs to one room at a time
    if ctx.current_room and ctx.current_room.code != room_code:
        await leave_current_room(ctx, room_manager)

    while True:
        room = room_manager.get_or_create_room(room_code)
        async with room.game_lock:
            # The last player may have left (removing the room) while we waited
            if room_manager.get_room(room_code) is not room:
                continue
            try:
                room, events = room_manager.join_room(room_code, ctx.player_id, player_name, ctx.websocket)
            except GameError as e:
                await reject(ctx, "join_room", e)
                return
            ctx.current_room = room
            room_code_var.set(room.code)

            await ctx.websocket.send_json({
                "type": "joined",
                "room_id": room.code,
                "player_id": ctx.player_id,
            })
            await room.send_events(events)
            await room.broadcast({"type": "room_state", "players": room.player_list()})
            await room.broadcast_game_state()
            return


async def handle_set_name(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    room = ctx.current_room
    name = _clean_name(data.get("name"))
    if not room or not name:
        return

    async with room.game_lock:
        if room_manager.set_display_name(room.code, ctx.player_id, name):
            logger.debug(f"{ctx.player_id} renamed to {name}", extra={"room_code": room.code})
            await room.broadcast({"type": "room_state", "players": room.player_list()})
            await room.broadcast_game_state()


async def handle_leave_room(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, **kw) -> None:
    await leave_current_room(ctx, room_manager)


# ---------------------------------------------------------------------------
# Game action handlers
# ---------------------------------------------------------------------------

async def handle_play_cards(data: dict, ctx: ConnectionContext, **kw) -> None:
    def play(game: Game) -> list[GameEvent]:
        cards = _parse_cards(data.get("cards"))
        declared_rank = Rank.parse(data.get("declared_rank"))
        return game.play_cards(ctx.player_id, cards, declared_rank)

    await apply_action(ctx, "play_cards", play)


async def handle_skip_turn(data: dict, ctx: ConnectionContext, **kw) -> None:
    await apply_action(ctx, "skip_turn", lambda game: game.skip_turn(ctx.player_id))


async def handle_call_bluff(data: dict, ctx: ConnectionContext, **kw) -> None:
    await apply_action(ctx, "call_bluff", lambda game: game.call_bluff(ctx.player_id))


async def handle_request_new_game(data: dict, ctx: ConnectionContext, **kw) -> None:
    await apply_action(ctx, "request_new_game", lambda game: game.request_new_game())


# ---------------------------------------------------------------------------
# Handler dispatch table
# ---------------------------------------------------------------------------

HANDLERS = {
    "join_room": handle_join_room,
    "set_name": handle_set_name,
    "leave_room": handle_leave_room,
    "play_cards": handle_play_cards,
    "skip_turn": handle_skip_turn,
    "call_bluff": handle_call_bluff,
    "request_new_game": handle_request_new_game,
}
