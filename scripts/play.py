#!/usr/bin/env python3
"""
CLI interface for playing Quantum Gomoku against a human or the heuristic.
"""
import sys
import os
import time
import argparse
import logging

# Add the parent directory to Python path so we can import quantum_gomoku
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from quantum_gomoku.core.board import BOARD_SIZE, Color
from quantum_gomoku.core.game import Game
from quantum_gomoku.core.state import GameMode, TurnPhase


PHASE_MESSAGES = {
    TurnPhase.COLLAPSING: "Observing... the stones are collapsing",
    TurnPhase.SHOWING_NO_WINNER: "No five in a row this time",
    TurnPhase.REVERTING: "Stones return to their superposition",
}


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='Play Quantum Gomoku in the terminal')
    parser.add_argument('--mode', type=str, default='heuristic', choices=['local', 'heuristic'],
                        help='Play against a second human or the heuristic (default: heuristic)')
    parser.add_argument('--heuristic-color', type=str, default='second', choices=['first', 'second'],
                        help='Color the heuristic plays (default: second)')
    parser.add_argument('--seed', type=int, default=None,
                        help='Random seed for collapses and the heuristic')
    parser.add_argument('--confirm', action='store_true',
                        help='Require a second identical move to place a stone')
    parser.add_argument('--verbose', action='store_true',
                        help='Log engine transitions')
    return parser.parse_args()


def cell_symbol(stone, on_line):
    """Three-character cell: chance of FIRST while unobserved, color once observed."""
    if stone is None:
        return "  ."
    if stone.observed_color is not None:
        mark = 'X' if stone.observed_color == Color.FIRST else 'O'
        return f" *{mark}" if on_line else f"  {mark}"
    return f"{round(stone.probability * 100):3d}"


def display_board(state):
    """Display the board in ASCII format."""
    line = set(state.winning_line or [])
    print("\n   ", end="")
    for col in range(BOARD_SIZE):
        print(f"{col:3d}", end="")
    print()
    print("   " + "---" * BOARD_SIZE)

    for row in range(BOARD_SIZE):
        print(f"{row:2d}|", end="")
        for col in range(BOARD_SIZE):
            print(cell_symbol(state.board.get(row, col), (row, col) in line), end="")
        print(f"|{row:2d}")
    print("   " + "---" * BOARD_SIZE)


def get_player_name(color):
    return "First (X)" if color == Color.FIRST else "Second (O)"


def display_status(game):
    state = game.state
    if state.is_over:
        print(f"\nGAME OVER - {get_player_name(state.winner)} wins!")
        return

    color = state.current_player
    message = PHASE_MESSAGES.get(state.turn_phase)
    if message:
        print(f"\n{message}")
    print(f"\n{get_player_name(color)} to play | strength {state.selected_strength} "
          f"({round(state.stone_probability() * 100)}% First) | "
          f"observations left: X {state.observations_remaining[Color.FIRST]}, "
          f"O {state.observations_remaining[Color.SECOND]}")
    if state.pending_confirmation is not None:
        print(f"Marked {state.pending_confirmation}, enter it again to place")
    if game.notice:
        print(f"! {game.notice}")


def parse_move(move_input):
    """
    Parse move input from user.

    Args:
        move_input (str): User input like "7 7" or "7,7"

    Returns:
        tuple: (row, col) or None if invalid
    """
    parts = move_input.replace(',', ' ').split()
    if len(parts) != 2:
        return None
    try:
        row, col = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if 0 <= row < BOARD_SIZE and 0 <= col < BOARD_SIZE:
        return (row, col)
    return None


def run_timers(game):
    """Sleep through every scheduled step, redrawing as the state changes."""
    delay = game.scheduler.next_delay()
    while delay is not None:
        time.sleep(delay)
        game.scheduler.advance(delay)
        delay = game.scheduler.next_delay()


def select_strength(game, parts):
    """Choosing the strength that is already selected counts as accepted."""
    if len(parts) != 2 or not parts[1].isdigit():
        return False
    index = int(parts[1])
    state = game.state
    if index == state.selected_strength and state.turn_phase == TurnPhase.AWAITING_PLACEMENT:
        return True
    return game.select_strength(index)


def handle_command(game, command):
    """
    Apply one line of input.

    Returns:
        bool: False when the player wants to quit
    """
    if command in ('q', 'quit', 'exit'):
        return False

    if command in ('e', 'end'):
        accepted = game.end_turn()
    elif command in ('o', 'observe'):
        accepted = game.observe()
    elif command in ('u', 'undo'):
        accepted = game.undo()
    elif command in ('c', 'confirm'):
        accepted = game.toggle_confirmation_mode()
    elif command in ('n', 'new'):
        accepted = game.reset()
    elif command.startswith('s'):
        accepted = select_strength(game, command.split())
    else:
        move = parse_move(command)
        accepted = move is not None and game.place_stone(*move)

    if not accepted:
        print("Not allowed right now. Commands: row col | s 0/1 | e | o | u | c | n | q")
    return True


def main():
    """Main game loop."""
    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(levelname)s %(name)s: %(message)s')

    print("=" * 60)
    print("                  QUANTUM GOMOKU")
    print("=" * 60)
    print("Stones are X or O only with some probability (shown as % First).")
    print("After placing, observe to collapse every stone, or end your turn.")
    print("Five observed stones in a row win. Strength 0 cannot be used twice in a row.")
    print("Commands: row col | s 0/1 | e(nd) | o(bserve) | u(ndo) | c(onfirm) | n(ew) | q(uit)")
    print("=" * 60)

    if args.mode == 'heuristic':
        mode = GameMode.LOCAL_VS_HEURISTIC
        heuristic_color = Color.FIRST if args.heuristic_color == 'first' else Color.SECOND
    else:
        mode = GameMode.LOCAL_VS_LOCAL
        heuristic_color = None

    game = Game(mode=mode, heuristic_color=heuristic_color, seed=args.seed)
    if args.confirm:
        game.toggle_confirmation_mode()

    def redraw(state):
        display_board(state)
        display_status(game)

    game.subscribe(redraw)
    redraw(game.state)

    try:
        while True:
            run_timers(game)
            if game.state.is_over:
                answer = input("\nPlay again? (y/n): ").strip().lower()
                if answer != 'y':
                    break
                game.reset()
                continue

            command = input("> ").strip().lower()
            if not command:
                continue
            if not handle_command(game, command):
                break
            game.dismiss_notice()

    except (KeyboardInterrupt, EOFError):
        pass

    print("\nThanks for playing!")


if __name__ == "__main__":
    main()
