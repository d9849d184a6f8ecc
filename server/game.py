"""
Game logic for Bluff (also known as Cheat).

This module implements the core game mechanics: card/deck management,
player hands, the shared pile, and the turn/challenge state machine.

Bluff Rules Summary:
    - The whole deck is dealt out face-down between the players
    - On your turn you place one or more cards face-down on the pile and
      declare their rank. The first play of a round picks the rank freely;
      every later play in the same round must declare that same rank
    - Instead of playing you may skip. If every player skips in a row, the
      pile is removed from play and the first player who skipped leads the
      next round
    - Any opponent may call bluff on the most recent play. The cards are
      revealed: if any of them differs from the declared rank the declarer
      takes the whole pile, otherwise the challenger does
    - Emptying your hand does not win on its own. You win once an opponent
      lets the play stand (skips) or challenges it and is proven wrong

Phases:
    WAITING -> AWAITING_PLAY <-> AWAITING_RESPONSE -> GAME_OVER

    A deal or a resolved round always lands in AWAITING_PLAY (no open
    declaration). A play moves the match to AWAITING_RESPONSE until the
    round is resolved by a challenge or a full cycle of skips.

Every public transition validates before it mutates. A rejected action
raises a GameError subclass and leaves the game untouched; an accepted one
returns the list of GameEvents it produced.
"""

import random
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from models.events import GameEvent, EventType


DECK_SIZE = 52


# =============================================================================
# Errors
# =============================================================================

class GameError(Exception):
    """
    Base class for rejected player actions.

    These are never fatal: the handler reports them to the acting player
    only, and the game state is left exactly as it was.

    Attributes:
        code: Stable machine-readable identifier sent to clients.
    """

    code = "game_error"
    default_message = "Action not allowed"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)


class NotYourTurn(GameError):
    code = "not_your_turn"
    default_message = "It's not your turn"


class CardsNotHeld(GameError):
    code = "cards_not_held"
    default_message = "You don't have those cards!"


class DeclaredRankMismatch(GameError):
    code = "declared_rank_mismatch"
    default_message = "You must play the declared rank"


class NoPendingPlay(GameError):
    code = "no_pending_play"
    default_message = "There is nothing to call bluff on"


class SelfChallenge(GameError):
    code = "self_challenge"
    default_message = "You can't call bluff on your own play"


class GameNotActive(GameError):
    code = "game_not_active"
    default_message = "No match is in progress"


class InvalidPlay(GameError):
    code = "invalid_play"
    default_message = "Invalid play"


class ResponseRequired(GameError):
    code = "response_required"
    default_message = "The last player has no cards left - call bluff or skip"


class NotInRoom(GameError):
    code = "not_in_room"
    default_message = "You are not in this room"


class NotEnoughPlayers(GameError):
    code = "not_enough_players"
    default_message = "Not enough players to start a match"


class RoomFull(GameError):
    code = "room_full"
    default_message = "Room is full"


class GameInProgress(GameError):
    code = "game_in_progress"
    default_message = "Game already in progress"


# =============================================================================
# Cards
# =============================================================================

class Suit(Enum):
    """Card suits for a standard deck."""

    SPADES = "♠"
    HEARTS = "♥"
    DIAMONDS = "♦"
    CLUBS = "♣"


class Rank(Enum):
    """Card ranks in ascending order. Rank is all that matters in Bluff."""

    TWO = "2"
    THREE = "3"
    FOUR = "4"
    FIVE = "5"
    SIX = "6"
    SEVEN = "7"
    EIGHT = "8"
    NINE = "9"
    TEN = "10"
    JACK = "J"
    QUEEN = "Q"
    KING = "K"
    ACE = "A"

    @classmethod
    def parse(cls, value: Any) -> "Rank":
        """
        Parse a rank from client input ("7", "10", "q", ...).

        Raises:
            InvalidPlay: If the value is not one of the 13 ranks.
        """
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise InvalidPlay(f"Unknown rank: {value!r}") from None


@dataclass(frozen=True)
class Card:
    """
    An immutable playing card.

    Two cards are equal when rank and suit are equal, so a hand can be
    treated as a multiset with collections.Counter.

    Attributes:
        rank: The card's rank (2-10, J, Q, K, A).
        suit: The card's suit.
    """

    rank: Rank
    suit: Suit

    def __str__(self) -> str:
        return f"{self.rank.value}{self.suit.value}"

    def to_dict(self) -> dict:
        """Convert card to dictionary for JSON serialization."""
        return {"rank": self.rank.value, "suit": self.suit.value}

    @classmethod
    def from_dict(cls, data: Any) -> "Card":
        """
        Build a card from client data.

        Accepts ``{"rank": "7", "suit": "♠"}`` or the compact ``"7♠"`` form.

        Raises:
            InvalidPlay: If the data doesn't describe one of the 52 cards.
        """
        if isinstance(data, str):
            return cls.parse(data)
        if not isinstance(data, dict):
            raise InvalidPlay(f"Malformed card: {data!r}")
        try:
            suit = Suit(data.get("suit"))
        except ValueError:
            raise InvalidPlay(f"Malformed card: {data!r}") from None
        return cls(Rank.parse(data.get("rank")), suit)

    @classmethod
    def parse(cls, text: str) -> "Card":
        """Parse the compact form, e.g. "10♥" or "Q♣"."""
        if len(text) < 2:
            raise InvalidPlay(f"Malformed card: {text!r}")
        try:
            suit = Suit(text[-1])
        except ValueError:
            raise InvalidPlay(f"Malformed card: {text!r}") from None
        return cls(Rank.parse(text[:-1]), suit)


def rank_of(card: Card) -> Rank:
    """Return the rank of a card (used to check a declaration)."""
    return card.rank


def build_deck() -> list[Card]:
    """Return all 52 cards in canonical order (suits outer, ranks inner)."""
    return [Card(rank, suit) for suit in Suit for rank in Rank]


def shuffled_deck(rng: Optional[random.Random] = None) -> list[Card]:
    """
    Return a full deck under a uniform random permutation.

    Args:
        rng: Random source to shuffle with. Pass a seeded random.Random
             for reproducible deals; defaults to a fresh OS-seeded one.
    """
    deck = build_deck()
    (rng or random.Random()).shuffle(deck)
    return deck


def cards_to_dict(cards: list[Card]) -> list[dict]:
    return [card.to_dict() for card in cards]


# =============================================================================
# Players and options
# =============================================================================

@dataclass
class Player:
    """
    A player in a Bluff match.

    Attributes:
        id: Unique identifier (the connection ID).
        name: Display name.
        hand: Cards held, in no meaningful order.
    """

    id: str
    name: str
    hand: list[Card] = field(default_factory=list)

    def holds(self, cards: list[Card]) -> bool:
        """Check that every card (with multiplicity) is in the hand."""
        needed = Counter(cards)
        held = Counter(self.hand)
        return all(held[card] >= count for card, count in needed.items())

    def remove_cards(self, cards: list[Card]) -> None:
        for card in cards:
            self.hand.remove(card)


class HandSizePolicy(str, Enum):
    """
    How the deck is split between players.

    DROP_REMAINDER: floor(52 / players) each; leftover cards stay out of play.
    FIXED: A fixed hand size (17 by default, so three players use 51 cards),
           capped at floor(52 / players).
    """

    DROP_REMAINDER = "drop_remainder"
    FIXED = "fixed"


@dataclass
class GameOptions:
    """Match configuration, normally built from the server config."""

    min_players: int = 2
    """Players needed before a match is dealt."""

    max_players: int = 6
    """Players allowed in one room."""

    hand_size_policy: HandSizePolicy = HandSizePolicy.DROP_REMAINDER

    fixed_hand_size: int = 17
    """Cards per player when hand_size_policy is FIXED."""

    def hand_size(self, num_players: int) -> int:
        """Cards dealt to each player for the given table size."""
        fair_share = DECK_SIZE // num_players
        if self.hand_size_policy == HandSizePolicy.FIXED:
            return min(self.fixed_hand_size, fair_share)
        return fair_share

    @classmethod
    def from_config(cls, server_config) -> "GameOptions":
        """Build GameOptions from a config.ServerConfig."""
        return cls(
            min_players=server_config.PLAYERS_TO_START,
            max_players=server_config.MAX_PLAYERS_PER_ROOM,
            hand_size_policy=HandSizePolicy(server_config.HAND_SIZE_POLICY),
            fixed_hand_size=server_config.FIXED_HAND_SIZE,
        )


@dataclass
class PendingPlay:
    """
    The declaration currently open to challenge.

    Attributes:
        player_id: Who made the play.
        cards: The exact cards placed face-down.
        declared_rank: The rank the player claimed they were.
    """

    player_id: str
    cards: list[Card]
    declared_rank: Rank


class GamePhase(Enum):
    """
    Phases of a Bluff match.

    The phase always agrees with the round data: a PendingPlay exists
    exactly when the phase is AWAITING_RESPONSE.
    """

    WAITING = "waiting"                      # Lobby, not dealt yet
    AWAITING_PLAY = "awaiting_play"          # New round, any rank may be opened
    AWAITING_RESPONSE = "awaiting_response"  # A declaration is open to challenge
    GAME_OVER = "game_over"                  # Someone's win was confirmed


ACTIVE_PHASES = (GamePhase.AWAITING_PLAY, GamePhase.AWAITING_RESPONSE)


# =============================================================================
# Game
# =============================================================================

@dataclass
class Game:
    """
    Main game state and rules for one Bluff room.

    Attributes:
        room_code: Room this match belongs to (stamped on events).
        players: Players in turn order (join order).
        pile: Face-down cards played during the current round.
        pending_play: The open declaration, or None at the start of a round.
        skipped: IDs of players who skipped this round, in skip order.
        out_of_play: Cards nobody holds: undealt remainder, cleared piles,
            hands of departed players.
        current_player_index: Index of the player whose turn it is.
        phase: Current match phase.
        winner_id: ID of the winner once the match is over.
        winner_name: Display name of the winner (kept even if they leave).
        options: Match configuration.
        rng: Random source for shuffling and picking the first player.
    """

    room_code: str = ""
    players: list[Player] = field(default_factory=list)
    pile: list[Card] = field(default_factory=list)
    pending_play: Optional[PendingPlay] = None
    skipped: list[str] = field(default_factory=list)
    out_of_play: list[Card] = field(default_factory=list)
    current_player_index: int = 0
    phase: GamePhase = GamePhase.WAITING
    winner_id: Optional[str] = None
    winner_name: Optional[str] = None
    options: GameOptions = field(default_factory=GameOptions)
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)

    _events: list[GameEvent] = field(default_factory=list, repr=False, compare=False)
    _sequence_num: int = field(default=0, repr=False, compare=False)

    def _emit(
        self,
        event_type: EventType,
        player_id: Optional[str] = None,
        recipient_id: Optional[str] = None,
        **data: Any,
    ) -> None:
        """
        Record an event produced by the transition in progress.

        Args:
            event_type: Event type.
            player_id: ID of player who triggered the event.
            recipient_id: Deliver only to this player (None for the whole room).
            **data: Event-specific data fields.
        """
        self._sequence_num += 1
        self._events.append(GameEvent(
            event_type=event_type,
            room_code=self.room_code,
            sequence_num=self._sequence_num,
            player_id=player_id,
            recipient_id=recipient_id,
            data=data,
        ))

    def _take_events(self) -> list[GameEvent]:
        events, self._events = self._events, []
        return events

    # -------------------------------------------------------------------------
    # Player Management
    # -------------------------------------------------------------------------

    def add_player(self, player_id: str, name: Optional[str] = None) -> Player:
        """
        Add a player to the match, or return them if already present.

        Joining twice with the same ID never duplicates the player; a
        non-empty name on the repeat join updates the display name.

        Args:
            player_id: Unique identifier (connection ID).
            name: Display name. Defaults to "Player #N".

        Returns:
            The (new or existing) Player.

        Raises:
            GameInProgress: A match is being played.
            RoomFull: The room already has max_players.
        """
        existing = self.get_player(player_id)
        if existing:
            if name:
                existing.name = name
            return existing

        if self.phase in ACTIVE_PHASES:
            raise GameInProgress()
        if len(self.players) >= self.options.max_players:
            raise RoomFull()

        player = Player(id=player_id, name=name or f"Player #{len(self.players) + 1}")
        self.players.append(player)
        return player

    def remove_player(self, player_id: str) -> list[GameEvent]:
        """
        Remove a player from the match.

        Rules for leaving mid-match:
            - The leaver's hand goes out of play.
            - A round in progress is voided: the pile goes out of play and
              the open declaration is dropped, since its cards can no longer
              be attributed to players who are all still present.
            - Turn order is kept; if the leaver held the turn it passes to
              the next player in rotation.
            - If fewer than min_players remain, the match is abandoned and
              the room goes back to WAITING so the next join can re-deal.

        Args:
            player_id: ID of the player to remove.

        Returns:
            Events produced, empty if the player wasn't in the match.
        """
        index = self.player_index(player_id)
        if index is None:
            return []

        removed = self.players.pop(index)
        if player_id in self.skipped:
            self.skipped.remove(player_id)
        self._emit(EventType.PLAYER_LEFT, player_id=player_id, player_name=removed.name)

        if self.phase == GamePhase.WAITING:
            return self._take_events()

        self.out_of_play.extend(removed.hand)
        removed.hand = []

        if self.players:
            if index < self.current_player_index:
                self.current_player_index -= 1
            self.current_player_index %= len(self.players)
        else:
            self.current_player_index = 0

        if len(self.players) < self.options.min_players:
            self._reset_to_waiting()
            self._emit(
                EventType.MESSAGE,
                text=f"{removed.name} left. Not enough players - waiting for more to join.",
            )
        elif self.phase in ACTIVE_PHASES and (self.pile or self.pending_play):
            self.out_of_play.extend(self.pile)
            self._clear_round()
            self._emit(
                EventType.MESSAGE,
                text=f"{removed.name} left. The round is void and the pile is removed.",
            )
            self._emit(EventType.TABLE_CLEARED)

        return self._take_events()

    def set_player_name(self, player_id: str, name: str) -> bool:
        """Rename a player. Returns False if the player isn't in the match."""
        player = self.get_player(player_id)
        if not player or not name:
            return False
        player.name = name
        return True

    def get_player(self, player_id: str) -> Optional[Player]:
        for player in self.players:
            if player.id == player_id:
                return player
        return None

    def player_index(self, player_id: str) -> Optional[int]:
        for i, player in enumerate(self.players):
            if player.id == player_id:
                return i
        return None

    def current_player(self) -> Optional[Player]:
        """Get the player whose turn it currently is."""
        if self.players and self.phase in ACTIVE_PHASES:
            return self.players[self.current_player_index]
        return None

    @property
    def declared_rank(self) -> Optional[Rank]:
        """The rank every play must match until the round resolves."""
        return self.pending_play.declared_rank if self.pending_play else None

    def ready_to_deal(self) -> bool:
        """Whether a join has just filled the table for an undealt match."""
        return self.phase == GamePhase.WAITING and len(self.players) >= self.options.min_players

    def card_count(self) -> int:
        """Cards accounted for: hands + pile + out of play (52 once dealt)."""
        return (
            sum(len(p.hand) for p in self.players)
            + len(self.pile)
            + len(self.out_of_play)
        )

    # -------------------------------------------------------------------------
    # Match Lifecycle
    # -------------------------------------------------------------------------

    def start_match(self) -> list[GameEvent]:
        """
        Deal a fresh shuffled deck and pick a random first player.

        Each player receives a contiguous chunk of the deck in turn order;
        the chunk size comes from options.hand_size(). Cards left over go
        out of play.

        Returns:
            Events produced (game_started).

        Raises:
            NotEnoughPlayers: Fewer than options.min_players are seated.
        """
        num_players = len(self.players)
        if num_players < self.options.min_players:
            raise NotEnoughPlayers()

        deck = shuffled_deck(self.rng)
        hand_size = self.options.hand_size(num_players)
        for i, player in enumerate(self.players):
            player.hand = deck[i * hand_size:(i + 1) * hand_size]
        self.out_of_play = deck[num_players * hand_size:]

        self._clear_round()
        self.winner_id = None
        self.winner_name = None
        self.current_player_index = self.rng.randrange(num_players)
        self.phase = GamePhase.AWAITING_PLAY

        first = self.players[self.current_player_index]
        self._emit(
            EventType.GAME_STARTED,
            player_order=[p.id for p in self.players],
            hand_size=hand_size,
            current_player_id=first.id,
        )
        return self._take_events()

    def request_new_game(self) -> list[GameEvent]:
        """Re-deal for a rematch, discarding all current hands and round state."""
        return self.start_match()

    # -------------------------------------------------------------------------
    # Player Actions
    # -------------------------------------------------------------------------

    def play_cards(
        self,
        player_id: str,
        cards: list[Card],
        declared_rank: Rank,
    ) -> list[GameEvent]:
        """
        Place cards face-down on the pile and declare their rank.

        The turn always passes to the next player, even when this play
        empties the player's hand: a win is only confirmed once an opponent
        skips or loses a challenge against it.

        Args:
            player_id: The acting player.
            cards: Cards to play (must all be in the player's hand).
            declared_rank: The claimed rank of those cards.

        Returns:
            Events produced: the public cards_played, then a private
            cards_played for the actor listing the cards actually played.

        Raises:
            GameNotActive, NotYourTurn, InvalidPlay, CardsNotHeld,
            DeclaredRankMismatch, ResponseRequired.
        """
        self._require_active()
        player = self._require_turn(player_id)

        if not cards:
            raise InvalidPlay("You must play at least one card")
        if len(set(cards)) != len(cards):
            raise InvalidPlay("The same card can't be played twice")
        if not player.holds(cards):
            raise CardsNotHeld()
        if self.declared_rank and declared_rank != self.declared_rank:
            raise DeclaredRankMismatch(
                f"You must play the declared rank of {self.declared_rank.value}."
            )
        if self.pending_play:
            declarer = self.get_player(self.pending_play.player_id)
            if declarer and not declarer.hand:
                raise ResponseRequired(
                    f"{declarer.name} has no cards left - call bluff or skip."
                )

        player.remove_cards(cards)
        self.pile.extend(cards)
        self.pending_play = PendingPlay(player.id, list(cards), declared_rank)
        self.skipped = []
        self.phase = GamePhase.AWAITING_RESPONSE
        self._advance_turn()

        self._emit(
            EventType.CARDS_PLAYED,
            player_id=player.id,
            player_name=player.name,
            card_count=len(cards),
            declared_rank=declared_rank.value,
            pile_count=len(self.pile),
            cards_left=len(player.hand),
        )
        self._emit(
            EventType.CARDS_PLAYED,
            player_id=player.id,
            recipient_id=player.id,
            player_name=player.name,
            cards=cards_to_dict(cards),
            declared_rank=declared_rank.value,
        )
        return self._take_events()

    def skip_turn(self, player_id: str) -> list[GameEvent]:
        """
        Pass without playing.

        Skipping while the open declaration belongs to a player with an
        empty hand accepts that play, and that player wins. Otherwise the
        skip is recorded; once every player has skipped, the pile goes out
        of play and the first player who skipped leads the next round.

        Args:
            player_id: The acting player.

        Returns:
            Events produced.

        Raises:
            GameNotActive, NotYourTurn.
        """
        self._require_active()
        player = self._require_turn(player_id)

        if self.pending_play:
            declarer = self.get_player(self.pending_play.player_id)
            if declarer and not declarer.hand:
                self._emit(
                    EventType.MESSAGE,
                    player_id=player.id,
                    text=f"{player.name} let the play stand.",
                )
                self._finish(declarer)
                return self._take_events()

        if player.id not in self.skipped:
            self.skipped.append(player.id)
        self._emit(EventType.MESSAGE, player_id=player.id, text=f"{player.name} skipped.")

        if set(self.skipped) >= {p.id for p in self.players}:
            first_skipper = self.skipped[0]
            self.out_of_play.extend(self.pile)
            self._clear_round()
            self.current_player_index = self.player_index(first_skipper)
            self._emit(EventType.MESSAGE, text="All players skipped. The pile is cleared.")
            self._emit(EventType.TABLE_CLEARED)
        else:
            self._advance_turn()

        return self._take_events()

    def call_bluff(self, player_id: str) -> list[GameEvent]:
        """
        Challenge the open declaration.

        The challenged cards are revealed. If any of them differs from the
        declared rank the declarer takes the whole pile and the challenger
        plays next. Otherwise the challenger takes the pile and the declarer
        plays next, or wins outright if their hand is empty.

        Any player other than the declarer may challenge, whoever's turn it is.

        Args:
            player_id: The challenging player.

        Returns:
            Events produced (reveal_cards, message, table_cleared and
            possibly game_over).

        Raises:
            GameNotActive, NotInRoom, NoPendingPlay, SelfChallenge.
        """
        self._require_active()
        caller = self.get_player(player_id)
        if caller is None:
            raise NotInRoom()
        if self.pending_play is None:
            raise NoPendingPlay()
        if self.pending_play.player_id == caller.id:
            raise SelfChallenge()

        pending = self.pending_play
        declarer = self.get_player(pending.player_id)
        is_bluff = any(rank_of(card) != pending.declared_rank for card in pending.cards)
        loser, next_player = (declarer, caller) if is_bluff else (caller, declarer)

        self._emit(
            EventType.REVEAL_CARDS,
            player_id=caller.id,
            declarer_id=declarer.id,
            cards=cards_to_dict(pending.cards),
            declared_rank=pending.declared_rank.value,
            is_bluff=is_bluff,
        )

        loser.hand.extend(self.pile)
        verdict = "a bluff!" if is_bluff else "not a bluff!"
        self._emit(
            EventType.MESSAGE,
            player_id=caller.id,
            text=f"{caller.name} called bluff. It was {verdict} {loser.name} takes the pile.",
        )
        self._clear_round()
        self._emit(EventType.TABLE_CLEARED)

        if not is_bluff and not declarer.hand:
            self._finish(declarer)
        else:
            self.current_player_index = self.player_index(next_player.id)

        return self._take_events()

    # -------------------------------------------------------------------------
    # Turn & Round Flow (Internal)
    # -------------------------------------------------------------------------

    def _require_active(self) -> None:
        if self.phase not in ACTIVE_PHASES:
            raise GameNotActive()

    def _require_turn(self, player_id: str) -> Player:
        current = self.current_player()
        if current is None or current.id != player_id:
            raise NotYourTurn()
        return current

    def _advance_turn(self) -> None:
        self.current_player_index = (self.current_player_index + 1) % len(self.players)

    def _clear_round(self) -> None:
        """Start a fresh round. Callers decide where the pile's cards went."""
        self.pile = []
        self.pending_play = None
        self.skipped = []
        if self.phase in ACTIVE_PHASES:
            self.phase = GamePhase.AWAITING_PLAY

    def _finish(self, winner: Player) -> None:
        self.pending_play = None
        self.skipped = []
        self.phase = GamePhase.GAME_OVER
        self.winner_id = winner.id
        self.winner_name = winner.name
        self._emit(EventType.GAME_OVER, winner_id=winner.id, winner_name=winner.name)

    def _reset_to_waiting(self) -> None:
        for player in self.players:
            player.hand = []
        self.pile = []
        self.pending_play = None
        self.skipped = []
        self.out_of_play = []
        self.current_player_index = 0
        self.winner_id = None
        self.winner_name = None
        self.phase = GamePhase.WAITING

    # -------------------------------------------------------------------------
    # State Snapshot
    # -------------------------------------------------------------------------

    def get_state(self, for_player_id: Optional[str]) -> dict:
        """
        Get the game state as seen by one player.

        Only the viewer's own hand is included; opponents are shown by
        card count. Pile cards stay hidden until revealed by a challenge.

        Args:
            for_player_id: The player who will receive this state, or
                None for a neutral view with no hands.

        Returns:
            Dict suitable for JSON serialization.
        """
        current = self.current_player()

        players_data = []
        for player in self.players:
            entry = {
                "id": player.id,
                "name": player.name,
                "card_count": len(player.hand),
                "skipped": player.id in self.skipped,
            }
            if player.id == for_player_id:
                entry["hand"] = cards_to_dict(player.hand)
            players_data.append(entry)

        return {
            "room_code": self.room_code,
            "phase": self.phase.value,
            "players": players_data,
            "current_player_id": current.id if current else None,
            "declared_rank": self.declared_rank.value if self.declared_rank else None,
            "pending_player_id": self.pending_play.player_id if self.pending_play else None,
            "pile_count": len(self.pile),
            "winner_id": self.winner_id,
            "winner_name": self.winner_name,
            "min_players": self.options.min_players,
        }
