"""
Game logic for Quartet.

This module implements the core rules of Quartet, a set-collecting card game
played over video chat, including deck and hand management, per-turn gift
tracking, penalty and round draws, and win detection.

Quartet Rules Summary:
    - 36 cards: 9 types x 4 copies, each type drawn from a 3x3 template image
    - Every player starts with 4 cards; a spinner picks who goes first
    - On someone else's turn you may give the active player cards, but a gift
      always hands over EVERY copy of the chosen type(s)
    - Four of a kind immediately becomes a scored set
    - If any player holding cards gave nothing during a turn, the active
      player draws a penalty card when ending the turn
    - After each full rotation every player draws a card
    - The game ends once all 9 sets have been collected

Card conservation:
    hands + deck + 4 * sets == 36 at every point after the deck is built.
"""

import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from constants import (
    CARDS_PER_SET,
    COPIES_PER_TYPE,
    HAND_SIZE,
    NUM_CARD_TYPES,
    SPINNER_DURATION_SPREAD_MS,
    SPINNER_MIN_DURATION_MS,
    WIN_SET_TOTAL,
)
from rng import RandomSource, mulberry32, random_seed, shuffle_in_place


class GameError(Exception):
    """A rule precondition failed. ``code`` is the wire error code."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


class GamePhase(str, Enum):
    """
    Phases of a Quartet game.

    Flow: LOBBY -> ACTIVE -> FINISHED
    A new game resets any phase back to LOBBY.
    """

    LOBBY = "lobby"
    ACTIVE = "active"
    FINISHED = "finished"


def build_deck() -> list[int]:
    """Build an unshuffled deck, type-major: [0, 0, 0, 0, 1, ..., 8]."""
    return [type_id for type_id in range(NUM_CARD_TYPES) for _ in range(COPIES_PER_TYPE)]


def valid_type_ids(raw: Iterable) -> list[int]:
    """
    Deduplicate and validate card type ids from client input.

    Anything that is not an integer in [0, NUM_CARD_TYPES) is dropped.
    Order of first appearance is kept.
    """
    result: list[int] = []
    for value in raw:
        if isinstance(value, bool):
            continue
        if isinstance(value, float) and not value.is_integer():
            continue
        try:
            type_id = int(value)
        except (TypeError, ValueError):
            continue
        if 0 <= type_id < NUM_CARD_TYPES and type_id not in result:
            result.append(type_id)
    return result


@dataclass
class Player:
    """
    A player's in-game state.

    Attributes:
        id: Unique identifier for the player.
        name: Display name.
        hand_counts: Card type id -> count. Zero counts are never stored.
        sets_count: Completed sets.
        seat: 1-based display seat, assigned at game start or late join.
    """

    id: str
    name: str
    hand_counts: dict[int, int] = field(default_factory=dict)
    sets_count: int = 0
    seat: Optional[int] = None

    def hand_total(self) -> int:
        """Total number of cards held."""
        return sum(self.hand_counts.values())

    def add_to_hand(self, type_id: int, n: int = 1) -> None:
        if n <= 0:
            return
        self.hand_counts[type_id] = self.hand_counts.get(type_id, 0) + n

    def remove_all_of_type(self, type_id: int) -> int:
        """
        Remove every copy of a type.

        Returns:
            How many cards were removed (0 if the type was not held).
        """
        return self.hand_counts.pop(type_id, 0)

    def reset(self) -> None:
        """Clear hand, sets and seat."""
        self.hand_counts = {}
        self.sets_count = 0
        self.seat = None


@dataclass
class SetTally:
    """Publicly visible set totals for one player."""

    sets_count: int = 0
    by_type: dict[int, int] = field(default_factory=dict)


@dataclass
class TurnTracker:
    """
    Per-turn gift bookkeeping.

    Attributes:
        started_at: Epoch seconds when the turn began.
        eligible: Non-active players who held cards when the turn began.
        gave: Players who moved at least one card to the active player.
    """

    started_at: float
    eligible: set[str] = field(default_factory=set)
    gave: set[str] = field(default_factory=set)

    def missing_gifts(self) -> set[str]:
        """Eligible players who have not given anything yet."""
        return self.eligible - self.gave


@dataclass
class Spinner:
    """
    Shared starting-player spinner.

    Only the seed travels over the wire; every client derives the same
    index from it with mulberry32.
    """

    seed: int
    duration_ms: int

    @classmethod
    def create(cls, rng: RandomSource = random.random) -> "Spinner":
        return cls(
            seed=random_seed(rng),
            duration_ms=SPINNER_MIN_DURATION_MS + int(rng() * SPINNER_DURATION_SPREAD_MS),
        )

    def pick_index(self, num_players: int) -> int:
        """First output of mulberry32(seed), scaled to a player index."""
        return int(mulberry32(self.seed)() * num_players)

    def to_dict(self) -> dict:
        return {"seed": self.seed, "durationMs": self.duration_ms}


@dataclass
class GiveResult:
    moved_total: int = 0
    moved_by_type: dict[int, int] = field(default_factory=dict)


@dataclass
class TurnOutcome:
    """What happened when a turn was ended."""

    penalty_drawn: bool = False
    round_ended: bool = False
    round_recipients: list[str] = field(default_factory=list)
    finished: bool = False


@dataclass
class Game:
    """
    Authoritative game state and rules for one room.

    Attributes:
        players: Player id -> Player.
        phase: Current game phase.
        order: Turn rotation, fixed at game start (late joiners appended).
        turn_order: Display order; mirrors ``order`` and drives seat numbers.
        turn_index: Position of the active player in ``order``.
        active_player_id: Cached ``order[turn_index]``.
        deck: Card type ids; the end of the list is the top.
        public_sets: Player id -> SetTally, visible to everyone.
        turn_tracker: Gift bookkeeping for the current turn (active phase only).
        started_at: Epoch seconds of the last game start.
        rng: Random source for shuffles and round subsets.
    """

    players: dict[str, Player] = field(default_factory=dict)
    phase: GamePhase = GamePhase.LOBBY
    order: list[str] = field(default_factory=list)
    turn_order: list[str] = field(default_factory=list)
    turn_index: int = 0
    active_player_id: Optional[str] = None
    deck: list[int] = field(default_factory=list)
    public_sets: dict[str, SetTally] = field(default_factory=dict)
    turn_tracker: Optional[TurnTracker] = None
    started_at: Optional[float] = None
    rng: RandomSource = field(default=random.random, repr=False, compare=False)

    # -------------------------------------------------------------------------
    # Player Management
    # -------------------------------------------------------------------------

    def add_player(self, player: Player) -> None:
        """Add a player. During an active game use add_late_player instead."""
        self.players[player.id] = player

    def get_player(self, player_id: Optional[str]) -> Optional[Player]:
        if player_id is None:
            return None
        return self.players.get(player_id)

    def active_player(self) -> Optional[Player]:
        return self.get_player(self.active_player_id)

    def next_seat(self) -> int:
        """One past the highest seat in use."""
        return max((p.seat or 0 for p in self.players.values()), default=0) + 1

    def add_late_player(self, player: Player) -> int:
        """
        Bring a new player into a game that is already running.

        The player joins the end of the rotation, is dealt up to a full hand
        from whatever is left in the deck, and becomes subject to the current
        turn's giving obligation if they end up holding cards.

        Returns:
            Number of cards dealt.
        """
        player.seat = self.next_seat()
        self.players[player.id] = player
        self.order.append(player.id)
        self.turn_order.append(player.id)

        dealt = 0
        for _ in range(HAND_SIZE):
            if not self.draw_one(player.id):
                break
            dealt += 1
        self.check_sets(player.id)

        if (
            self.turn_tracker is not None
            and player.id != self.active_player_id
            and player.hand_total() > 0
        ):
            self.turn_tracker.eligible.add(player.id)
        return dealt

    def remove_player(self, player_id: str) -> Optional[Player]:
        """
        Remove a player, returning their cards to the deck.

        If the departing player was active, the turn passes to whoever now
        sits at the same rotation index, with a fresh turn tracker and no
        penalty or round draw.

        Returns:
            The removed Player, or None if not found.
        """
        player = self.players.get(player_id)
        if player is None:
            return None

        for type_id, count in player.hand_counts.items():
            self.deck.extend([type_id] * count)
        player.hand_counts = {}
        shuffle_in_place(self.deck, self.rng)

        # Completed sets stay on the public tally and count toward the win.
        del self.players[player_id]
        self.turn_order = [pid for pid in self.turn_order if pid != player_id]

        was_active = player_id == self.active_player_id
        if player_id in self.order:
            removed_index = self.order.index(player_id)
            self.order.pop(removed_index)
            if removed_index < self.turn_index:
                self.turn_index -= 1

        if self.turn_tracker is not None:
            self.turn_tracker.eligible.discard(player_id)
            self.turn_tracker.gave.discard(player_id)

        if was_active:
            if self.order:
                self.turn_index %= len(self.order)
                self.active_player_id = self.order[self.turn_index]
                if self.phase == GamePhase.ACTIVE:
                    self.start_turn_tracker()
            else:
                self.turn_index = 0
                self.active_player_id = None
                self.turn_tracker = None
        return player

    # -------------------------------------------------------------------------
    # Deck & Sets
    # -------------------------------------------------------------------------

    def draw_one(self, player_id: str) -> bool:
        """
        Move the top card of the deck into a player's hand.

        Returns:
            False if the deck is empty or the player is unknown.
        """
        player = self.players.get(player_id)
        if player is None or not self.deck:
            return False
        player.add_to_hand(self.deck.pop(), 1)
        return True

    def deal(self, cards_per_player: int = HAND_SIZE) -> None:
        """Deal in rotation order; stops quietly when the deck runs out."""
        for pid in self.order:
            for _ in range(cards_per_player):
                if not self.draw_one(pid):
                    break

    def check_sets(self, player_id: str) -> int:
        """
        Convert every complete group of four into a scored set.

        Leaves the remainder (0-3) of each type in hand. Safe to call
        repeatedly; a second call without new cards changes nothing.
        Also runs the win check, so a room whose public tally already
        reaches the target finishes on the next call.

        Returns:
            Number of sets completed by this call.
        """
        player = self.players.get(player_id)
        if player is None:
            return 0

        completed = 0
        for type_id in range(NUM_CARD_TYPES):
            count = player.hand_counts.get(type_id, 0)
            if count < CARDS_PER_SET:
                continue
            sets, remaining = divmod(count, CARDS_PER_SET)
            if remaining:
                player.hand_counts[type_id] = remaining
            else:
                del player.hand_counts[type_id]

            player.sets_count += sets
            tally = self.public_sets.setdefault(player_id, SetTally())
            tally.sets_count += sets
            tally.by_type[type_id] = tally.by_type.get(type_id, 0) + sets
            completed += sets

        self.check_finished()
        return completed

    def check_all_sets(self) -> None:
        for pid in list(self.order):
            self.check_sets(pid)

    def total_sets(self) -> int:
        return sum(tally.sets_count for tally in self.public_sets.values())

    def check_finished(self) -> bool:
        """Move an active game to FINISHED once every set has been collected."""
        if self.phase == GamePhase.ACTIVE and self.total_sets() >= WIN_SET_TOTAL:
            self.phase = GamePhase.FINISHED
        return self.phase == GamePhase.FINISHED

    def card_count(self) -> int:
        """Cards in hands + deck + cards locked in sets."""
        in_hands = sum(p.hand_total() for p in self.players.values())
        return in_hands + len(self.deck) + CARDS_PER_SET * self.total_sets()

    # -------------------------------------------------------------------------
    # Game Lifecycle
    # -------------------------------------------------------------------------

    def start_game(self, rng: Optional[RandomSource] = None) -> Spinner:
        """
        Start a new game from the lobby.

        Args:
            rng: Optional random source; defaults to the game's own.

        Returns:
            The spinner that chose the first player.

        Raises:
            GameError: ``bad_phase`` outside the lobby, ``need_2_players``
                with fewer than two players.
        """
        if self.phase != GamePhase.LOBBY:
            raise GameError("bad_phase")
        if len(self.players) < 2:
            raise GameError("need_2_players")
        rng = rng or self.rng

        self.order = shuffle_in_place(list(self.players.keys()), rng)
        self.turn_order = list(self.order)
        for seat, pid in enumerate(self.turn_order, start=1):
            self.players[pid].seat = seat

        self.public_sets = {}
        for player in self.players.values():
            player.hand_counts = {}
            player.sets_count = 0

        self.deck = shuffle_in_place(build_deck(), rng)
        self.deal(HAND_SIZE)

        spinner = Spinner.create(rng)
        self.turn_index = spinner.pick_index(len(self.order))
        self.active_player_id = self.order[self.turn_index]

        self.phase = GamePhase.ACTIVE
        self.check_all_sets()
        self.start_turn_tracker()
        self.started_at = time.time()
        return spinner

    def reset(self) -> None:
        """Return to the lobby. Players are kept; all game state is cleared."""
        self.phase = GamePhase.LOBBY
        self.order = []
        self.turn_order = []
        self.turn_index = 0
        self.active_player_id = None
        self.deck = []
        self.public_sets = {}
        self.turn_tracker = None
        self.started_at = None
        for player in self.players.values():
            player.reset()

    # -------------------------------------------------------------------------
    # Turn Flow
    # -------------------------------------------------------------------------

    def start_turn_tracker(self) -> None:
        """Fresh gift bookkeeping for whoever is active now."""
        eligible = {
            pid for pid, player in self.players.items()
            if pid != self.active_player_id and player.hand_total() > 0
        }
        self.turn_tracker = TurnTracker(started_at=time.time(), eligible=eligible)

    def advance_turn(self) -> None:
        self.turn_index = (self.turn_index + 1) % len(self.order)
        self.active_player_id = self.order[self.turn_index]
        self.start_turn_tracker()

    def give_to_active(self, sender_id: str, type_ids: Iterable) -> GiveResult:
        """
        Hand every copy of the chosen types to the active player.

        Args:
            sender_id: The giving (non-active) player.
            type_ids: Requested card types; duplicates and invalid ids ignored.

        Returns:
            What was actually moved. Selecting a type the sender does not
            hold moves nothing and does not count as a gift.
        """
        result = GiveResult()
        sender = self.players.get(sender_id)
        active = self.active_player()
        if sender is None or active is None or sender is active:
            return result

        for type_id in valid_type_ids(type_ids):
            moved = sender.remove_all_of_type(type_id)
            if moved > 0:
                active.add_to_hand(type_id, moved)
                result.moved_total += moved
                result.moved_by_type[type_id] = moved

        if result.moved_total > 0 and self.turn_tracker is not None:
            self.turn_tracker.gave.add(sender_id)

        self.check_sets(active.id)
        self.check_sets(sender_id)
        return result

    def end_turn(self) -> TurnOutcome:
        """
        Finish the active player's turn.

        Order of operations:
            1. Penalty draw if any eligible player gave nothing
            2. Set check for the active player
            3. Advance to the next player (fresh turn tracker)
            4. Round draw when the rotation wraps to index 0
            5. Win check
        """
        outcome = TurnOutcome()
        if not self.order or self.active_player_id is None:
            return outcome

        tracker = self.turn_tracker
        if tracker is not None and tracker.missing_gifts():
            outcome.penalty_drawn = self.draw_one(self.active_player_id)

        self.check_sets(self.active_player_id)
        self.advance_turn()

        if self.turn_index == 0:
            outcome.round_ended = True
            outcome.round_recipients = self.round_draw()
            self.check_all_sets()

        outcome.finished = self.check_finished()
        return outcome

    def round_draw(self) -> list[str]:
        """
        Give every player in rotation one card.

        When the deck cannot cover everyone, a random subset the size of
        the remaining deck draws instead.

        Returns:
            Ids of the players who drew.
        """
        pids = list(self.order)
        if len(self.deck) < len(pids):
            shuffle_in_place(pids, self.rng)
            pids = pids[:len(self.deck)]
        return [pid for pid in pids if self.draw_one(pid)]
