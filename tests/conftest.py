"""
Pytest fixtures for Quantum Gomoku tests.
"""
import random

import pytest

from quantum_gomoku.core.board import Stone


class CountingRandom:
    """Random source that counts draws and can replay fixed values."""

    def __init__(self, values=(), constant=None, seed=0):
        self._rng = random.Random(seed)
        self.values = list(values)
        self.constant = constant
        self.random_calls = 0

    def random(self):
        self.random_calls += 1
        if self.values:
            return self.values.pop(0)
        if self.constant is not None:
            return self.constant
        return self._rng.random()

    def choice(self, seq):
        return self._rng.choice(seq)


@pytest.fixture
def make_rng():
    """Factory for CountingRandom sources."""
    return CountingRandom


@pytest.fixture
def resolve():
    """Put observed stones of a color on the given cells of a board."""
    def _resolve(board, cells, color):
        for row, col in cells:
            board.set_stone(row, col, Stone(probability=0.5, observed_color=color))
    return _resolve
