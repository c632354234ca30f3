"""
Heuristic agent for Quantum Gomoku.
"""
import random

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from ...core.board import DIRECTIONS, WIN_LENGTH
from ...core.state import is_strength_allowed


# A neighbor stops extending a line once it is less likely than this to
# resolve to the color being evaluated.
EXTENSION_THRESHOLD = 0.4

DEFENSE_WEIGHT = 1.2

TIE_TOLERANCE = 0.001


class HeuristicAgent:
    """
    An agent that plays on probabilities rather than colors.

    Move selection scores every empty cell by the probability-weighted lines
    it would extend for itself (attack) and cut for the opponent (defense),
    with a small bonus for central cells. Observation is triggered
    stochastically, more eagerly the more likely a winning line already is.
    """

    def __init__(self, seed=None, rng=None):
        """
        Initialize the heuristic agent.

        Args:
            seed (int, optional): Random seed for tie-breaking reproducibility
            rng (random.Random, optional): Shared random source, overrides seed
        """
        self.rng = rng if rng is not None else random.Random(seed)

    def select_action(self, board, color):
        """
        Select the best cell for a stone of `color`.

        Args:
            board: Board instance
            color (Color): Color the agent plays

        Returns:
            tuple: (row, col) coordinates of selected move, or None if the
            board is full
        """
        legal_moves = board.legal_moves()

        if not legal_moves:
            return None

        scores = [self._score_move(board, row, col, color) for row, col in legal_moves]
        best_score = max(scores)

        best_moves = [move for move, score in zip(legal_moves, scores)
                      if score >= best_score - TIE_TOLERANCE]

        return self.rng.choice(best_moves)

    def _score_move(self, board, row, col, color):
        """
        Score a move based on probabilistic line strength.

        Args:
            board: Board instance
            row, col: Move coordinates
            color: Color making the move

        Returns:
            float: Score for this move (higher is better)
        """
        attack = 0.0
        defense = 0.0
        opponent = color.opponent

        for dr, dc in DIRECTIONS:
            attack += self._line_score(board, row, col, color, dr, dc)
            defense += self._line_score(board, row, col, opponent, dr, dc)

        center = board.size // 2
        distance = abs(row - center) + abs(col - center)

        return attack + defense * DEFENSE_WEIGHT + (10 - distance) * 0.1

    def _line_score(self, board, row, col, color, dr, dc):
        """
        Evaluate the line through (row, col) along one axis.

        The candidate cell counts as a resolved stone of `color`. The line
        extends both ways over placed stones while each is at least
        EXTENSION_THRESHOLD likely to resolve to `color`.

        Returns:
            float: Score contribution for this axis
        """
        length = 1
        total = 1.0

        for sign in (-1, 1):
            r, c = row + sign * dr, col + sign * dc
            while board.in_bounds(r, c):
                stone = board.get(r, c)
                if stone is None:
                    break
                prob = stone.resolve_probability(color)
                if prob < EXTENSION_THRESHOLD:
                    break
                length += 1
                total += prob
                r, c = r + sign * dr, c + sign * dc

        return self._length_score(length) * total

    def _length_score(self, length):
        if length >= 5:
            return 10000
        elif length == 4:
            return 1000
        elif length == 3:
            return 100
        elif length == 2:
            return 10
        return 0

    def win_probability(self, board, color):
        """
        Best chance that a full line of `color` is realized right now.

        Looks at every length-5 window on the board along all 4 axes. A
        window's chance is the product of its cells' resolve probabilities,
        so any empty cell zeroes it.

        Returns:
            float: Maximum window probability in [0, 1]
        """
        probs = board.resolve_probabilities(color)
        best = 0.0

        # Horizontal and vertical
        for grid in (probs, probs.T):
            windows = sliding_window_view(grid, WIN_LENGTH, axis=1)
            best = max(best, float(np.prod(windows, axis=-1).max()))

        # Diagonal (↘) on the grid, anti-diagonal (↙) on its mirror image
        for grid in (probs, np.fliplr(probs)):
            for offset in range(-(board.size - WIN_LENGTH), board.size - WIN_LENGTH + 1):
                diagonal = np.diagonal(grid, offset=offset)
                windows = sliding_window_view(diagonal, WIN_LENGTH)
                best = max(best, float(np.prod(windows, axis=-1).max()))

        return best

    def should_observe(self, board, color, observations_left):
        """
        Decide whether to observe after placing a stone.

        Args:
            board: Board instance
            color (Color): Color the agent plays
            observations_left (int): Observations the agent may still use

        Returns:
            bool: True to observe, False to end the turn
        """
        if observations_left <= 0:
            return False

        chance = self.win_probability(board, color)

        if chance > 0.8:
            threshold = 0.95
        elif chance > 0.5:
            threshold = 0.8
        elif chance > 0.2:
            threshold = 0.4 if observations_left >= 3 else 0.1
        else:
            # Occasional bluff
            threshold = 0.02

        return self.rng.random() < threshold

    def select_strength(self, last_strength):
        """
        Pick a stone strength, honoring the no-repeat rule.

        Args:
            last_strength: Strength index this color used last, or None

        Returns:
            int: 0 or 1
        """
        if not is_strength_allowed(last_strength, 0):
            return 1
        return self.rng.choice((0, 1))
