"""
Test suite for Quartet game rules.

Covers:
- Deck construction and hand primitives
- Set conversion (remainders, idempotency)
- Game start (dealing, seats, spinner, preconditions)
- Gifts to the active player
- End of turn: penalty draw, rotation, round draw
- Win detection
- Late join, removal, reset
- Card conservation across a long randomized game

Run with: pytest test_game.py -v
"""

import random

import pytest

from constants import DECK_SIZE, WIN_SET_TOTAL
from game import (
    Game,
    GameError,
    GamePhase,
    Player,
    SetTally,
    Spinner,
    build_deck,
    valid_type_ids,
)
from rng import mulberry32


# =============================================================================
# Helpers
# =============================================================================

def make_lobby(num_players=3, seed=1):
    game = Game(rng=mulberry32(seed))
    for i in range(num_players):
        game.add_player(Player(id=f"p{i}", name=f"Player {i}"))
    return game


def make_active(hands, deck=None, active_index=0):
    """An active game with hand-picked hands, rotation in dict order."""
    game = Game(rng=mulberry32(1))
    for seat, (pid, hand) in enumerate(hands.items(), start=1):
        game.add_player(Player(id=pid, name=pid.upper(), hand_counts=dict(hand), seat=seat))
    game.order = list(hands)
    game.turn_order = list(hands)
    game.deck = list(deck or [])
    game.turn_index = active_index
    game.active_player_id = game.order[active_index]
    game.phase = GamePhase.ACTIVE
    game.start_turn_tracker()
    return game


# =============================================================================
# Deck & Hand
# =============================================================================

class TestDeck:

    def test_build_deck_has_36_cards(self):
        deck = build_deck()
        assert len(deck) == DECK_SIZE == 36

    def test_build_deck_type_major(self):
        deck = build_deck()
        assert deck[:5] == [0, 0, 0, 0, 1]
        assert deck[-1] == 8
        for type_id in range(9):
            assert deck.count(type_id) == 4


class TestValidTypeIds:

    def test_dedupes_and_keeps_order(self):
        assert valid_type_ids([3, 1, 3, 1]) == [3, 1]

    def test_drops_out_of_range_and_junk(self):
        assert valid_type_ids([-1, 9, "x", None, 4, True, 2.0]) == [4, 2]

    def test_fractional_ids_dropped(self):
        assert valid_type_ids([1.7, 0.5, 8.999, float("nan"), float("inf"), 3.0]) == [3]

    def test_numeric_strings_accepted(self):
        assert valid_type_ids(["5"]) == [5]


class TestPlayerHand:

    def test_add_to_hand(self):
        p = Player(id="a", name="A")
        p.add_to_hand(2, 3)
        p.add_to_hand(2)
        assert p.hand_counts == {2: 4}
        assert p.hand_total() == 4

    def test_add_zero_stores_nothing(self):
        p = Player(id="a", name="A")
        p.add_to_hand(2, 0)
        assert p.hand_counts == {}

    def test_remove_all_of_type(self):
        p = Player(id="a", name="A", hand_counts={1: 3, 2: 1})
        assert p.remove_all_of_type(1) == 3
        assert p.hand_counts == {2: 1}

    def test_remove_missing_type_returns_zero_and_mutates_nothing(self):
        p = Player(id="a", name="A", hand_counts={2: 1})
        assert p.remove_all_of_type(5) == 0
        assert p.hand_counts == {2: 1}


class TestDraw:

    def test_draw_takes_top_of_deck(self):
        game = make_active({"a": {}, "b": {}}, deck=[1, 2, 7])
        assert game.draw_one("a") is True
        assert game.players["a"].hand_counts == {7: 1}
        assert game.deck == [1, 2]

    def test_draw_from_empty_deck(self):
        game = make_active({"a": {}, "b": {}}, deck=[])
        assert game.draw_one("a") is False
        assert game.players["a"].hand_counts == {}

    def test_deal_stops_when_deck_runs_out(self):
        game = make_active({"a": {}, "b": {}}, deck=[0, 1, 2, 3, 4, 5])
        game.deal(4)
        assert game.players["a"].hand_total() == 4
        assert game.players["b"].hand_total() == 2
        assert game.deck == []


# =============================================================================
# Sets
# =============================================================================

class TestCheckSets:

    def test_four_of_a_kind_becomes_set(self):
        game = make_active({"a": {3: 4, 1: 1}, "b": {}})
        assert game.check_sets("a") == 1
        a = game.players["a"]
        assert a.hand_counts == {1: 1}
        assert a.sets_count == 1
        assert game.public_sets["a"].sets_count == 1
        assert game.public_sets["a"].by_type == {3: 1}

    def test_remainder_stays_in_hand(self):
        game = make_active({"a": {3: 6}, "b": {}})
        game.check_sets("a")
        assert game.players["a"].hand_counts == {3: 2}

    def test_idempotent(self):
        game = make_active({"a": {3: 4, 5: 8}, "b": {}})
        game.check_sets("a")
        before = (dict(game.players["a"].hand_counts), game.players["a"].sets_count, game.total_sets())
        assert game.check_sets("a") == 0
        after = (dict(game.players["a"].hand_counts), game.players["a"].sets_count, game.total_sets())
        assert before == after

    def test_unknown_player(self):
        game = make_active({"a": {}, "b": {}})
        assert game.check_sets("zzz") == 0


class TestWinCondition:

    def test_nine_sets_finishes_on_next_check(self):
        game = make_active({"a": {}, "b": {}})
        game.public_sets = {"a": SetTally(sets_count=5), "b": SetTally(sets_count=4)}
        assert game.phase == GamePhase.ACTIVE
        game.check_sets("a")
        assert game.phase == GamePhase.FINISHED

    def test_eight_sets_keeps_playing(self):
        game = make_active({"a": {}, "b": {}})
        game.public_sets = {"a": SetTally(sets_count=8)}
        game.check_sets("b")
        assert game.phase == GamePhase.ACTIVE

    def test_lobby_never_finishes(self):
        game = make_lobby()
        game.public_sets = {"p0": SetTally(sets_count=WIN_SET_TOTAL)}
        game.check_sets("p0")
        assert game.phase == GamePhase.LOBBY

    def test_gift_completing_last_set_finishes(self):
        game = make_active({"a": {0: 2}, "b": {0: 2}})
        game.public_sets = {"a": SetTally(sets_count=8)}
        game.give_to_active("b", [0])
        assert game.total_sets() == 9
        assert game.phase == GamePhase.FINISHED


# =============================================================================
# Start
# =============================================================================

class TestStartGame:

    def test_deals_four_each(self):
        game = make_lobby(3)
        game.start_game()
        assert len(game.deck) == 24
        for player in game.players.values():
            assert player.hand_total() + 4 * player.sets_count == 4
        assert game.card_count() == 36

    def test_phase_and_rotation(self):
        game = make_lobby(4)
        game.start_game()
        assert game.phase == GamePhase.ACTIVE
        assert sorted(game.order) == ["p0", "p1", "p2", "p3"]
        assert game.turn_order == game.order
        assert game.active_player_id == game.order[game.turn_index]
        assert game.started_at is not None

    def test_seats_follow_turn_order(self):
        game = make_lobby(3)
        game.start_game()
        assert [game.players[pid].seat for pid in game.turn_order] == [1, 2, 3]

    def test_spinner_picks_first_player(self):
        game = make_lobby(5, seed=11)
        spinner = game.start_game()
        assert game.turn_index == spinner.pick_index(5)
        assert 0 <= spinner.seed < 2**31
        assert 2400 <= spinner.duration_ms < 3200

    def test_tracker_excludes_active(self):
        game = make_lobby(3)
        game.start_game()
        tracker = game.turn_tracker
        assert game.active_player_id not in tracker.eligible
        assert tracker.gave == set()

    def test_needs_two_players(self):
        game = make_lobby(1)
        with pytest.raises(GameError) as exc:
            game.start_game()
        assert exc.value.code == "need_2_players"
        assert game.phase == GamePhase.LOBBY
        assert game.deck == []

    def test_rejects_outside_lobby(self):
        game = make_lobby(2)
        game.start_game()
        deck_before = list(game.deck)
        with pytest.raises(GameError) as exc:
            game.start_game()
        assert exc.value.code == "bad_phase"
        assert game.deck == deck_before

    def test_same_rng_same_game(self):
        a = make_lobby(3, seed=5)
        b = make_lobby(3, seed=5)
        a.start_game()
        b.start_game()
        assert a.order == b.order
        assert a.deck == b.deck
        assert a.active_player_id == b.active_player_id


class TestSpinner:

    def test_to_dict(self):
        assert Spinner(seed=7, duration_ms=2500).to_dict() == {"seed": 7, "durationMs": 2500}

    def test_pick_index_matches_browser(self):
        assert Spinner(seed=1, duration_ms=2400).pick_index(3) == 1
        assert Spinner(seed=1, duration_ms=2400).pick_index(5) == 3
        assert Spinner(seed=2147483647, duration_ms=2400).pick_index(5) == 2


# =============================================================================
# Gifts
# =============================================================================

class TestGiveToActive:

    def test_moves_all_copies(self):
        game = make_active({"a": {}, "b": {2: 3, 4: 1}})
        result = game.give_to_active("b", [2])
        assert result.moved_total == 3
        assert result.moved_by_type == {2: 3}
        assert game.players["a"].hand_counts == {2: 3}
        assert game.players["b"].hand_counts == {4: 1}
        assert "b" in game.turn_tracker.gave

    def test_multiple_types_and_duplicates(self):
        game = make_active({"a": {}, "b": {2: 1, 4: 2}})
        result = game.give_to_active("b", [2, 4, 2, 99])
        assert result.moved_total == 3
        assert game.players["b"].hand_counts == {}

    def test_type_not_held_is_not_a_gift(self):
        game = make_active({"a": {}, "b": {2: 1}})
        result = game.give_to_active("b", [5])
        assert result.moved_total == 0
        assert "b" not in game.turn_tracker.gave

    def test_active_cannot_give_to_self(self):
        game = make_active({"a": {1: 1}, "b": {}})
        result = game.give_to_active("a", [1])
        assert result.moved_total == 0
        assert game.players["a"].hand_counts == {1: 1}

    def test_unknown_sender(self):
        game = make_active({"a": {}, "b": {}})
        assert game.give_to_active("nobody", [1]).moved_total == 0

    def test_gift_completes_set_for_active(self):
        game = make_active({"a": {6: 3}, "b": {6: 1}})
        game.give_to_active("b", [6])
        assert game.players["a"].sets_count == 1
        assert game.players["a"].hand_counts == {}
        assert game.public_sets["a"].by_type == {6: 1}


# =============================================================================
# End of Turn
# =============================================================================

class TestEndTurn:

    def test_penalty_when_someone_did_not_give(self):
        game = make_active({"a": {0: 1}, "b": {1: 1}, "c": {2: 1}}, deck=[5, 6, 7])
        game.give_to_active("b", [1])
        before = game.players["a"].hand_total()

        outcome = game.end_turn()

        assert outcome.penalty_drawn is True
        assert game.players["a"].hand_total() == before + 1
        assert game.players["a"].hand_counts[7] == 1
        assert len(game.deck) == 2

    def test_no_penalty_when_everyone_gave(self):
        game = make_active({"a": {0: 1}, "b": {1: 1}, "c": {2: 1}}, deck=[5, 6, 7])
        game.give_to_active("b", [1])
        game.give_to_active("c", [2])
        outcome = game.end_turn()
        assert outcome.penalty_drawn is False
        assert len(game.deck) == 3

    def test_players_without_cards_are_not_obliged(self):
        game = make_active({"a": {0: 1}, "b": {}, "c": {}}, deck=[5])
        outcome = game.end_turn()
        assert outcome.penalty_drawn is False

    def test_penalty_on_empty_deck_is_skipped(self):
        game = make_active({"a": {0: 1}, "b": {1: 1}}, deck=[])
        outcome = game.end_turn()
        assert outcome.penalty_drawn is False

    def test_advances_and_resets_tracker(self):
        game = make_active({"a": {0: 1}, "b": {1: 1}, "c": {2: 1}}, deck=[5, 6, 7])
        game.give_to_active("b", [1])
        game.end_turn()
        assert game.active_player_id == "b"
        assert game.turn_index == 1
        assert game.turn_tracker.gave == set()
        assert game.turn_tracker.eligible == {"a", "c"}

    def test_round_draw_after_full_rotation(self):
        game = make_active({"a": {}, "b": {}, "c": {}}, deck=list(range(9)))

        first = game.end_turn()
        second = game.end_turn()
        assert not first.round_ended and not second.round_ended

        third = game.end_turn()
        assert third.round_ended is True
        assert sorted(third.round_recipients) == ["a", "b", "c"]
        assert game.turn_index == 0
        for player in game.players.values():
            assert player.hand_total() == 1
        assert len(game.deck) == 6

    def test_round_draw_short_deck_random_subset(self):
        game = make_active({"a": {}, "b": {}, "c": {}}, deck=[1, 2])
        assert len(game.round_draw()) == 2
        assert game.deck == []
        assert sum(p.hand_total() for p in game.players.values()) == 2

    def test_round_draw_empty_deck(self):
        game = make_active({"a": {}, "b": {}}, deck=[])
        assert game.round_draw() == []

    def test_round_draw_can_complete_sets(self):
        game = make_active({"a": {}, "b": {3: 3}}, deck=[3, 0], active_index=1)
        outcome = game.end_turn()
        assert outcome.round_ended is True
        assert game.players["b"].sets_count == 1

    def test_end_turn_reports_finish(self):
        game = make_active({"a": {2: 3}, "b": {}}, deck=[7, 2], active_index=1)
        game.public_sets = {"b": SetTally(sets_count=8)}
        game.turn_tracker.gave.add("a")
        # The round draw at wrap hands a the 4th copy of type 2.
        outcome = game.end_turn()
        assert outcome.round_ended is True
        assert outcome.finished is True
        assert game.phase == GamePhase.FINISHED


# =============================================================================
# Late Join, Removal, Reset
# =============================================================================

class TestLateJoin:

    def test_late_player_dealt_and_seated(self):
        game = make_lobby(2)
        game.start_game()
        late = Player(id="late", name="Late")
        dealt = game.add_late_player(late)
        assert dealt == 4
        assert late.seat == 3
        assert game.order[-1] == "late"
        assert game.turn_order[-1] == "late"
        assert late.hand_total() + 4 * late.sets_count == 4
        assert game.card_count() == 36

    def test_late_player_owes_a_gift(self):
        game = make_lobby(2)
        game.start_game()
        late = Player(id="late", name="Late")
        game.add_late_player(late)
        if late.hand_total() > 0:
            assert "late" in game.turn_tracker.eligible

    def test_late_player_with_empty_deck(self):
        game = make_active({"a": {}, "b": {}}, deck=[])
        late = Player(id="late", name="Late")
        assert game.add_late_player(late) == 0
        assert "late" not in game.turn_tracker.eligible


class TestRemovePlayer:

    def test_cards_return_to_deck(self):
        game = make_active({"a": {0: 1}, "b": {1: 2}, "c": {}}, deck=[5])
        game.remove_player("b")
        assert "b" not in game.players
        assert sorted(game.deck) == [1, 1, 5]
        assert game.order == ["a", "c"]
        assert game.turn_order == ["a", "c"]

    def test_conservation_after_removal(self):
        game = make_lobby(4)
        game.start_game()
        game.remove_player(game.order[1])
        assert game.card_count() == 36

    def test_removing_active_passes_turn_to_same_index(self):
        game = make_active({"a": {0: 1}, "b": {}, "c": {2: 1}}, active_index=1)
        game.give_to_active("c", [2])
        game.remove_player("b")
        assert game.active_player_id == "c"
        assert game.turn_index == 1
        assert game.turn_tracker.gave == set()
        assert game.turn_tracker.eligible == {"a"}

    def test_removing_last_active_wraps(self):
        game = make_active({"a": {}, "b": {}, "c": {}}, active_index=2)
        game.remove_player("c")
        assert game.turn_index == 0
        assert game.active_player_id == "a"

    def test_removing_earlier_player_keeps_active(self):
        game = make_active({"a": {}, "b": {}, "c": {}}, active_index=2)
        game.remove_player("a")
        assert game.active_player_id == "c"
        assert game.order[game.turn_index] == "c"

    def test_completed_sets_stay_public(self):
        game = make_active({"a": {}, "b": {}})
        game.public_sets = {"b": SetTally(sets_count=2, by_type={0: 1, 1: 1})}
        game.remove_player("b")
        assert game.total_sets() == 2

    def test_removing_everyone(self):
        game = make_active({"a": {}})
        game.remove_player("a")
        assert game.active_player_id is None
        assert game.turn_tracker is None

    def test_remove_unknown(self):
        game = make_active({"a": {}, "b": {}})
        assert game.remove_player("zzz") is None


class TestReset:

    def test_reset_returns_to_lobby_keeping_players(self):
        game = make_lobby(3)
        game.start_game()
        game.reset()
        assert game.phase == GamePhase.LOBBY
        assert len(game.players) == 3
        assert game.deck == []
        assert game.order == []
        assert game.public_sets == {}
        assert game.turn_tracker is None
        assert game.active_player_id is None
        for player in game.players.values():
            assert player.hand_counts == {}
            assert player.sets_count == 0
            assert player.seat is None

    def test_can_start_again_after_reset(self):
        game = make_lobby(2)
        game.start_game()
        game.reset()
        game.start_game()
        assert game.phase == GamePhase.ACTIVE
        assert game.card_count() == 36


# =============================================================================
# Conservation
# =============================================================================

class TestCardConservation:

    @pytest.mark.parametrize("seed", [1, 2, 3, 17, 99])
    def test_long_random_game(self, seed):
        chooser = random.Random(seed)
        game = make_lobby(chooser.randint(2, 6), seed=seed)
        game.start_game()
        assert game.card_count() == 36

        for _ in range(400):
            if game.phase != GamePhase.ACTIVE:
                break
            givers = [
                p for p in game.players.values()
                if p.id != game.active_player_id and p.hand_counts
            ]
            if givers and chooser.random() < 0.6:
                sender = chooser.choice(givers)
                type_id = chooser.choice(list(sender.hand_counts))
                game.give_to_active(sender.id, [type_id])
            else:
                game.end_turn()

            assert game.card_count() == 36
            assert game.total_sets() <= WIN_SET_TOTAL
            for player in game.players.values():
                assert all(count > 0 for count in player.hand_counts.values())
                assert all(count < 4 for count in player.hand_counts.values())
