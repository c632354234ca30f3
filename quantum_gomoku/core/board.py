"""
Board implementation for Quantum Gomoku.

Stones do not have a color when they are placed. Each stone carries the
probability that it resolves to the first color, and only an observation
collapses the whole board to concrete colors.
"""
from enum import IntEnum
from typing import List, NamedTuple, Optional, Tuple

import numpy as np


BOARD_SIZE = 15

# Four axis directions: horizontal, vertical, diagonal (↘), anti-diagonal (↙)
DIRECTIONS = [(0, 1), (1, 0), (1, 1), (1, -1)]

WIN_LENGTH = 5


class Color(IntEnum):
    """
    Stone colors. Values match the board encoding:
    - 1: first player (black)
    - -1: second player (white)
    """
    FIRST = 1
    SECOND = -1

    @property
    def opponent(self):
        return Color(-self.value)


# Probability of resolving to Color.FIRST for each selectable strength.
# Index 0 is the strongest stone for that color.
STONE_PROBABILITIES = {
    Color.FIRST: (0.9, 0.7),
    Color.SECOND: (0.1, 0.3),
}


class Stone(NamedTuple):
    """A placed stone as seen from outside the board."""
    probability: float
    observed_color: Optional[Color] = None

    def resolve_probability(self, color):
        """Chance that this stone resolves to `color`."""
        if color == Color.FIRST:
            return self.probability
        return 1.0 - self.probability


class WinResult(NamedTuple):
    winner: Optional[Color] = None
    line: Optional[List[Tuple[int, int]]] = None


class Board:
    """
    Represents a 15x15 Quantum Gomoku board.

    Board state representation:
    - probability: float array, chance of each stone resolving to FIRST,
      NaN for empty cells
    - observed: int8 array, 0 for empty or unresolved cells, otherwise the
      Color value fixed by the last observation
    """

    def __init__(self):
        """Initialize an empty 15x15 board."""
        self.size = BOARD_SIZE
        self.probability = np.full((self.size, self.size), np.nan)
        self.observed = np.zeros((self.size, self.size), dtype=np.int8)

    def in_bounds(self, row, col):
        return 0 <= row < self.size and 0 <= col < self.size

    def is_empty(self, row, col):
        return bool(np.isnan(self.probability[row, col]))

    def get(self, row, col):
        """
        Get the stone at a position.

        Returns:
            Stone or None: None if the cell is empty
        """
        if self.is_empty(row, col):
            return None
        observed = int(self.observed[row, col])
        return Stone(
            probability=float(self.probability[row, col]),
            observed_color=Color(observed) if observed else None,
        )

    def place(self, row, col, probability):
        """
        Place an unobserved stone on the board.

        Args:
            row (int): Row position (0-14)
            col (int): Column position (0-14)
            probability (float): Chance of resolving to Color.FIRST

        Returns:
            bool: True if the stone was placed, False if invalid
        """
        if not self.in_bounds(row, col):
            return False

        if not self.is_empty(row, col):
            return False

        if not 0.0 <= probability <= 1.0:
            return False

        self.probability[row, col] = probability
        self.observed[row, col] = 0
        return True

    def set_stone(self, row, col, stone):
        """Write a stone (or None to clear) without placement checks."""
        if stone is None:
            self.probability[row, col] = np.nan
            self.observed[row, col] = 0
        else:
            self.probability[row, col] = stone.probability
            self.observed[row, col] = int(stone.observed_color or 0)

    def legal_moves(self):
        """
        Get all empty positions on the board.

        Returns:
            list: List of (row, col) tuples in row-major order
        """
        return [(int(r), int(c)) for r, c in np.argwhere(np.isnan(self.probability))]

    def stone_positions(self):
        """Positions of every placed stone, in row-major order."""
        return [(int(r), int(c)) for r, c in np.argwhere(~np.isnan(self.probability))]

    def stone_count(self):
        return int(np.count_nonzero(~np.isnan(self.probability)))

    def is_full(self):
        return self.stone_count() == self.size * self.size

    def is_observed(self):
        """True while any stone holds an observed color."""
        return bool(np.any(self.observed != 0))

    def resolve_probabilities(self, color):
        """
        Per-cell chance of resolving to `color`, 0 for empty cells.

        Returns:
            np.ndarray: float array of shape (size, size)
        """
        probs = self.probability if color == Color.FIRST else 1.0 - self.probability
        return np.nan_to_num(probs, nan=0.0)

    def collapse(self, rng):
        """
        Observe the board: every stone independently resolves to a color.

        One uniform draw is taken per stone, in row-major order. The stone
        becomes FIRST when the draw is below its probability.

        Args:
            rng: random.Random-compatible source
        """
        for row, col in self.stone_positions():
            draw = rng.random()
            if draw < self.probability[row, col]:
                self.observed[row, col] = Color.FIRST
            else:
                self.observed[row, col] = Color.SECOND

    def revert(self):
        """Clear every observed color, leaving probabilities untouched."""
        self.observed[:, :] = 0

    def _run_from(self, row, col, color, dr, dc):
        """
        Collect resolved stones of `color` starting at (row, col).

        Probes up to 4 cells beyond the origin in direction (dr, dc).

        Returns:
            list or None: The 5 coordinates if the run reaches 5, else None
        """
        line = [(row, col)]
        for i in range(1, WIN_LENGTH):
            r, c = row + dr * i, col + dc * i
            if not (self.in_bounds(r, c) and self.observed[r, c] == color):
                break
            line.append((r, c))

        if len(line) >= WIN_LENGTH:
            return line
        return None

    def check_winner(self, tiebreak=None):
        """
        Check the observed board for five in a row.

        Only resolved stones count. Both colors are collected over the whole
        scan because one observation can complete lines for both players at
        once; in that case `tiebreak` (the observing player) wins.

        Args:
            tiebreak (Color, optional): Color that triggered the observation

        Returns:
            WinResult: (winner, line), both None if nobody has five
        """
        lines = {}

        for row in range(self.size):
            for col in range(self.size):
                value = int(self.observed[row, col])
                if value == 0:
                    continue

                color = Color(value)
                if color in lines:
                    continue

                for dr, dc in DIRECTIONS:
                    line = self._run_from(row, col, color, dr, dc)
                    if line is not None:
                        lines[color] = line
                        break

        if not lines:
            return WinResult()

        if len(lines) == 2 and tiebreak is not None:
            winner = Color(tiebreak)
        else:
            # Single winner, or no observer given: first line in scan order
            winner = next(iter(lines))

        return WinResult(winner=winner, line=lines[winner])

    def copy(self):
        clone = Board.__new__(Board)
        clone.size = self.size
        clone.probability = self.probability.copy()
        clone.observed = self.observed.copy()
        return clone

    def __eq__(self, other):
        if not isinstance(other, Board):
            return NotImplemented
        return (np.array_equal(self.probability, other.probability, equal_nan=True)
                and np.array_equal(self.observed, other.observed))

    __hash__ = None
