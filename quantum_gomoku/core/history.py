"""
Undo history for Quantum Gomoku.

History is a bounded stack of full GameState snapshots. It is persistent:
push and pop return a new History and leave the original untouched, so a
multi-step rewind can be abandoned without side effects.
"""
from typing import Callable, Optional, Tuple


class History:
    """
    Bounded stack of state snapshots.

    When the stack grows past `max_size` the oldest frames are dropped.
    """

    def __init__(self, max_size=500, frames=()):
        """
        Args:
            max_size (int): Maximum number of frames kept
            frames (tuple): Initial frames, oldest first
        """
        self.max_size = max_size
        self.frames = tuple(frames)[-max_size:]

    def push(self, state) -> 'History':
        """Return a new History with a copy of `state` on top."""
        return History(self.max_size, self.frames + (state.copy(),))

    def pop(self) -> Tuple[object, 'History']:
        """
        Remove the most recent frame.

        Returns:
            tuple: (state, remaining_history)

        Raises:
            IndexError: If the history is empty
        """
        if not self.frames:
            raise IndexError("pop from empty history")
        return self.frames[-1].copy(), History(self.max_size, self.frames[:-1])

    def rewind(self, accept: Callable[[object], bool]) -> Optional[Tuple[object, 'History']]:
        """
        Pop frames until one satisfies `accept`.

        Returns:
            tuple or None: (state, remaining_history), or None if no frame
            in the stack is accepted
        """
        history = self
        while history:
            state, history = history.pop()
            if accept(state):
                return state, history
        return None

    def __len__(self):
        return len(self.frames)

    def __bool__(self):
        return bool(self.frames)
