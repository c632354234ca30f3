"""
Tests for Game class.
"""
import numpy as np
import pytest
from quantum_gomoku.core.board import Board, Color
from quantum_gomoku.core.game import (
    COLLAPSE_DELAY, DECIDE_DELAY, NO_WINNER_DELAY, REVERT_DELAY, THINK_DELAY,
    Game, HeuristicPhase,
)
from quantum_gomoku.core.state import GameMode, GameState, TurnPhase


def settle(game):
    """Let every scheduled step run."""
    game.scheduler.run_pending()


def record_phases(game):
    """Collect the phase of every emitted state, without repeats."""
    phases = []

    def listener(state):
        if not phases or phases[-1] != state.turn_phase:
            phases.append(state.turn_phase)

    game.subscribe(listener)
    return phases


def test_game_initialization():
    """Test that a game is initialized correctly."""
    game = Game()

    assert isinstance(game.board, Board)
    assert isinstance(game.state, GameState)
    assert game.current_player == Color.FIRST
    assert game.turn_phase == TurnPhase.AWAITING_PLACEMENT
    assert game.winner is None
    assert game.state.mode == GameMode.LOCAL_VS_LOCAL
    assert len(game.history) == 0
    assert game.pending_timer is None
    assert game.board.stone_count() == 0


def test_place_stone():
    """Placing a stone records it and waits for observe or end turn."""
    game = Game()

    assert game.place_stone(7, 7) == True
    assert game.board.get(7, 7).probability == 0.9
    assert game.state.last_strength_used[Color.FIRST] == 0
    assert game.state.stone_placed == True
    assert game.turn_phase == TurnPhase.PLACED
    # The turn does not pass yet
    assert game.current_player == Color.FIRST
    # Pre-placement snapshot
    assert len(game.history) == 1


def test_invalid_placements_are_ignored():
    game = Game()

    assert game.place_stone(-1, 5) == False
    assert game.place_stone(15, 5) == False

    game.place_stone(7, 7)
    # One stone per turn
    assert game.place_stone(7, 8) == False
    game.end_turn()

    # Occupied cell
    assert game.place_stone(7, 7) == False
    assert game.board.get(7, 7).probability == 0.9
    assert game.current_player == Color.SECOND
    assert game.board.stone_count() == 1


def test_end_turn_rotates_player():
    game = Game()

    # Nothing placed yet
    assert game.end_turn() == False

    game.place_stone(7, 7)
    assert game.end_turn() == True
    assert game.current_player == Color.SECOND
    assert game.turn_phase == TurnPhase.AWAITING_PLACEMENT
    assert game.state.stone_placed == False
    assert game.state.selected_strength == 0

    game.place_stone(7, 8)
    assert game.board.get(7, 8).probability == 0.1


def test_select_strength():
    game = Game()

    assert game.select_strength(1) == True
    assert game.state.selected_strength == 1
    # Unknown strength
    assert game.select_strength(2) == False
    # Already selected
    assert game.select_strength(1) == False

    game.place_stone(7, 7)
    assert game.board.get(7, 7).probability == 0.7
    # No changes once the stone is down
    assert game.select_strength(0) == False
    assert game.state.selected_strength == 1


def test_strongest_stone_cannot_repeat():
    """After strength 0, the same color's next stone cannot be strength 0."""
    game = Game()

    game.place_stone(7, 7)  # FIRST, strength 0
    game.end_turn()
    game.place_stone(0, 0)  # SECOND
    game.end_turn()

    assert game.current_player == Color.FIRST
    assert game.state.selected_strength == 1, "Default selection must skip the forbidden strength"
    assert game.select_strength(0) == False
    assert game.state.selected_strength == 1

    game.place_stone(7, 8)
    assert game.board.get(7, 8).probability == 0.7
    game.end_turn()
    game.place_stone(0, 1)
    game.end_turn()

    # After a strength 1 stone, strength 0 is available again
    assert game.state.selected_strength == 0
    assert game.select_strength(1) == True
    assert game.select_strength(0) == True


def test_end_to_end_observation_without_winner(make_rng):
    """First observes a board with no line; the turn passes to Second."""
    rng = make_rng(seed=5)
    game = Game(rng=rng)

    game.place_stone(7, 7)
    game.end_turn()
    game.select_strength(1)
    game.place_stone(7, 8)
    assert game.board.get(7, 8).probability == 0.3
    game.end_turn()

    game.place_stone(8, 8)
    phases = record_phases(game)
    assert game.observe() == True
    assert game.state.is_collapsing
    assert rng.random_calls == 0, "Nothing resolves before the collapse delay"

    game.scheduler.advance(COLLAPSE_DELAY)
    assert rng.random_calls == 3, "One draw per stone on the board"
    assert game.state.observations_remaining[Color.FIRST] == 4
    assert game.state.observations_remaining[Color.SECOND] == 5
    assert game.turn_phase == TurnPhase.SHOWING_NO_WINNER
    assert all(game.board.get(r, c).observed_color is not None
               for r, c in game.board.stone_positions())

    game.scheduler.advance(NO_WINNER_DELAY)
    assert game.turn_phase == TurnPhase.REVERTING
    assert not game.board.is_observed()
    assert game.current_player == Color.FIRST

    game.scheduler.advance(REVERT_DELAY)
    assert phases == [
        TurnPhase.COLLAPSING,
        TurnPhase.SHOWING_NO_WINNER,
        TurnPhase.REVERTING,
        TurnPhase.AWAITING_PLACEMENT,
    ]
    assert game.current_player == Color.SECOND
    assert game.state.stone_placed == False
    assert game.pending_timer is None


def test_observe_requires_placed_stone():
    game = Game()
    assert game.observe() == False
    assert game.turn_phase == TurnPhase.AWAITING_PLACEMENT


def test_observe_ignored_without_observations():
    game = Game()
    game.state.observations_remaining[Color.FIRST] = 0

    game.place_stone(7, 7)
    assert game.observe() == False
    assert game.turn_phase == TurnPhase.PLACED
    assert game.state.observations_remaining[Color.FIRST] == 0
    assert game.pending_timer is None


def test_observations_run_out():
    """Each observation costs exactly one; the count never goes negative."""
    game = Game(seed=11)
    cells = iter([(r, c) for r in range(0, 15, 2) for c in range(0, 15, 2)])

    for expected in range(4, -1, -1):
        game.place_stone(*next(cells))
        assert game.observe() == True
        settle(game)
        assert game.state.observations_remaining[Color.FIRST] == expected
        # Second just passes
        game.place_stone(*next(cells))
        game.end_turn()

    game.place_stone(*next(cells))
    assert game.observe() == False
    assert game.state.observations_remaining[Color.FIRST] == 0


def test_revert_round_trip_keeps_probabilities():
    game = Game(seed=3)
    for row, col in [(7, 7), (7, 8), (8, 8), (6, 6)]:
        game.place_stone(row, col)
        game.end_turn()
    game.place_stone(0, 0)

    before = game.board.probability.copy()
    game.observe()
    settle(game)

    assert not game.board.is_observed()
    assert np.array_equal(game.board.probability, before, equal_nan=True)


def test_observation_win_ends_game(make_rng):
    game = Game(rng=make_rng(constant=0.0))
    for col in range(3, 7):
        game.board.place(7, col, 1.0)

    game.place_stone(7, 7)
    game.observe()
    game.scheduler.advance(COLLAPSE_DELAY)

    assert game.state.is_over
    assert game.winner == Color.FIRST
    assert game.state.winning_line == [(7, 3), (7, 4), (7, 5), (7, 6), (7, 7)]
    assert game.state.observations_remaining[Color.FIRST] == 4
    assert game.pending_timer is None

    # Terminal: only reset is accepted
    assert game.place_stone(0, 0) == False
    assert game.end_turn() == False
    assert game.observe() == False
    assert game.undo() == False
    assert game.select_strength(1) == False

    assert game.reset() == True
    assert game.turn_phase == TurnPhase.AWAITING_PLACEMENT
    assert game.winner is None
    assert game.board.stone_count() == 0


def test_dual_completion_awards_observer(make_rng):
    """Both colors complete a line; Second observed, so Second wins."""
    game = Game(rng=make_rng(constant=0.5))
    for col in range(5):
        game.board.place(3, col, 1.0)   # resolves FIRST
    for col in range(4):
        game.board.place(10, col, 0.0)  # resolves SECOND

    game.place_stone(14, 14)
    game.end_turn()
    game.place_stone(10, 4)             # 0.1: resolves SECOND on a 0.5 draw
    game.observe()
    settle(game)

    assert game.winner == Color.SECOND
    assert game.state.winning_line == [(10, c) for c in range(5)]


def test_confirmation_mode():
    game = Game()
    assert game.toggle_confirmation_mode() == True
    assert game.state.confirm_placement == True

    # First click only marks the cell
    assert game.place_stone(7, 7) == True
    assert game.state.pending_confirmation == (7, 7)
    assert game.board.get(7, 7) is None

    # A different cell moves the mark
    game.place_stone(5, 5)
    assert game.state.pending_confirmation == (5, 5)
    assert game.board.stone_count() == 0

    # Second click on the same cell commits
    game.place_stone(5, 5)
    assert game.board.get(5, 5) is not None
    assert game.state.pending_confirmation is None
    assert game.turn_phase == TurnPhase.PLACED
    assert len(game.history) == 1

    game.end_turn()
    game.place_stone(1, 1)
    assert game.state.pending_confirmation == (1, 1)
    game.toggle_confirmation_mode()
    assert game.state.confirm_placement == False
    assert game.state.pending_confirmation is None


def test_undo_local():
    game = Game()
    assert game.undo() == False

    game.place_stone(7, 7)
    game.end_turn()
    game.place_stone(7, 8)

    assert game.undo() == True
    assert game.current_player == Color.SECOND
    assert game.turn_phase == TurnPhase.AWAITING_PLACEMENT
    assert game.board.get(7, 8) is None

    assert game.undo() == True
    assert game.current_player == Color.FIRST
    assert game.turn_phase == TurnPhase.PLACED

    assert game.undo() == True
    assert game.board.stone_count() == 0
    assert game.undo() == False


def test_undo_during_collapse_cancels_timer():
    game = Game(seed=1)
    game.place_stone(7, 7)
    game.observe()
    assert game.pending_timer is not None

    assert game.undo() == True
    assert game.pending_timer is None
    assert game.scheduler.pending() == 0
    assert game.turn_phase == TurnPhase.PLACED
    assert game.state.observations_remaining[Color.FIRST] == 5

    # Time passing afterwards changes nothing
    game.scheduler.advance(10.0)
    assert game.turn_phase == TurnPhase.PLACED
    assert not game.board.is_observed()


def test_reset_preserves_mode_and_cancels_timer():
    game = Game(mode=GameMode.LOCAL_VS_HEURISTIC, heuristic_color=Color.SECOND, seed=2)
    game.place_stone(7, 7)
    game.end_turn()
    assert game.heuristic_phase == HeuristicPhase.THINKING
    assert game.pending_timer is not None

    assert game.reset() == True
    assert game.pending_timer is None
    assert game.scheduler.pending() == 0
    assert game.heuristic_phase == HeuristicPhase.IDLE
    assert game.state.mode == GameMode.LOCAL_VS_HEURISTIC
    assert game.state.heuristic_color == Color.SECOND
    assert len(game.history) == 0
    assert game.state.observations_remaining == {Color.FIRST: 5, Color.SECOND: 5}


def test_reset_changes_mode():
    game = Game()
    game.reset(GameMode.LOCAL_VS_HEURISTIC, Color.FIRST)

    assert game.state.mode == GameMode.LOCAL_VS_HEURISTIC
    assert game.state.heuristic_color == Color.FIRST
    # The heuristic moves first
    assert game.heuristic_phase == HeuristicPhase.THINKING

    game.reset(GameMode.LOCAL_VS_LOCAL, None)
    assert game.state.heuristic_color is None
    assert game.pending_timer is None


def test_subscribers_are_notified():
    game = Game()
    seen = []
    unsubscribe = game.subscribe(seen.append)

    game.place_stone(7, 7)
    game.end_turn()
    assert len(seen) == 2
    assert seen[-1].current_player == Color.SECOND

    # Ignored actions do not emit
    game.end_turn()
    assert len(seen) == 2

    unsubscribe()
    game.place_stone(0, 0)
    assert len(seen) == 2


def test_heuristic_turn(make_rng):
    """The heuristic places after thinking, then decides after a pause."""
    game = Game(mode=GameMode.LOCAL_VS_HEURISTIC, rng=make_rng(seed=4, constant=0.99))
    timers = []
    game.subscribe(lambda state: timers.append(game.scheduler.pending()))

    game.place_stone(7, 7)
    game.end_turn()
    assert game.current_player == Color.SECOND
    assert game.heuristic_phase == HeuristicPhase.THINKING

    # The human cannot play for the heuristic
    assert game.place_stone(0, 0) == False
    assert game.board.stone_count() == 1

    game.scheduler.advance(THINK_DELAY)
    assert game.board.stone_count() == 2
    assert game.turn_phase == TurnPhase.PLACED
    assert game.heuristic_phase == HeuristicPhase.DECIDING
    assert game.end_turn() == False

    # A 0.99 draw never observes, so the turn simply ends
    game.scheduler.advance(DECIDE_DELAY)
    assert game.current_player == Color.FIRST
    assert game.turn_phase == TurnPhase.AWAITING_PLACEMENT
    assert game.heuristic_phase == HeuristicPhase.IDLE
    assert game.state.observations_remaining[Color.SECOND] == 5

    assert max(timers) <= 1, "Never more than one timer in flight"


def test_heuristic_observes(make_rng):
    game = Game(mode=GameMode.LOCAL_VS_HEURISTIC, rng=make_rng(seed=4, constant=0.0))

    game.place_stone(0, 0)
    game.end_turn()
    game.scheduler.advance(THINK_DELAY + DECIDE_DELAY)

    # A zero draw always observes
    assert game.state.is_collapsing
    settle(game)
    assert game.state.observations_remaining[Color.SECOND] == 4
    assert game.current_player == Color.FIRST
    assert game.turn_phase == TurnPhase.AWAITING_PLACEMENT


def test_heuristic_moves_first():
    game = Game(mode=GameMode.LOCAL_VS_HEURISTIC, heuristic_color=Color.FIRST, seed=9)
    assert game.pending_timer is not None

    settle(game)
    assert game.current_player == Color.SECOND
    assert game.board.stone_count() == 1
    assert game.board.get(7, 7) is not None

    # Nothing to return to before the human's first turn
    assert game.undo() == False


HUMAN_CELLS = [(0, 0), (0, 14), (14, 0), (14, 14), (0, 7)]


def play_human_turns(game, turns, observe_on=()):
    for turn in range(turns):
        cell = next(c for c in HUMAN_CELLS if game.board.is_empty(*c))
        game.place_stone(*cell)
        if turn in observe_on:
            game.observe()
        else:
            game.end_turn()
        settle(game)


@pytest.mark.parametrize("turns", [1, 2, 3, 4])
@pytest.mark.parametrize("then_place", [False, True])
def test_undo_against_heuristic_returns_to_human_turn(turns, then_place):
    """Undo always lands at the start of a human turn, before placement."""
    game = Game(mode=GameMode.LOCAL_VS_HEURISTIC, heuristic_color=Color.SECOND, seed=21)
    play_human_turns(game, turns, observe_on={1, 3})
    assert not game.state.is_over

    if then_place:
        game.place_stone(7, 0)

    human_moves_before = sum(1 for r, c in game.board.stone_positions()
                             if (r, c) in HUMAN_CELLS)

    assert game.undo() == True
    assert game.current_player == Color.FIRST
    assert game.state.stone_placed == False
    assert game.turn_phase == TurnPhase.AWAITING_PLACEMENT
    assert game.pending_timer is None

    human_moves_after = sum(1 for r, c in game.board.stone_positions()
                            if (r, c) in HUMAN_CELLS)
    if then_place:
        assert human_moves_after == human_moves_before
    else:
        assert human_moves_after == human_moves_before - 1


def test_repeated_undo_against_heuristic():
    game = Game(mode=GameMode.LOCAL_VS_HEURISTIC, seed=8)
    play_human_turns(game, 3)

    while game.undo():
        assert game.current_player == Color.FIRST
        assert game.state.stone_placed == False

    assert game.board.stone_count() == 0
