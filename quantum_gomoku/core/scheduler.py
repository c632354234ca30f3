"""
Cancellable timers for the game engine.

The engine never sleeps. Every delay (heuristic thinking time, collapse,
no-winner display, revert) is scheduled through a Scheduler so it can be
cancelled on reset or undo, and so tests can drive time by hand.
"""
import asyncio
import heapq
import itertools
from abc import ABC, abstractmethod


class TimerHandle:
    """Handle returned by Scheduler.call_later."""

    def __init__(self, when, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class Scheduler(ABC):
    """Runs callbacks after a fixed delay."""

    @abstractmethod
    def call_later(self, delay, callback) -> TimerHandle:
        """
        Schedule `callback()` to run after `delay` seconds.

        Returns:
            TimerHandle: Handle whose cancel() prevents the call
        """


class ManualScheduler(Scheduler):
    """
    Scheduler driven by a virtual clock.

    Nothing runs until advance() moves the clock. Callbacks fire in due
    time order, ties in scheduling order. Callbacks may schedule further
    timers; those fire in the same advance() if they fall due.
    """

    def __init__(self):
        self.now = 0.0
        self._queue = []
        self._counter = itertools.count()

    def call_later(self, delay, callback):
        handle = TimerHandle(self.now + delay, callback)
        heapq.heappush(self._queue, (handle.when, next(self._counter), handle))
        return handle

    def pending(self):
        """Number of scheduled, not cancelled timers."""
        return sum(1 for _, _, handle in self._queue if not handle.cancelled)

    def next_delay(self):
        """Seconds until the next live timer, or None if nothing is pending."""
        for when, _, handle in sorted(self._queue):
            if not handle.cancelled:
                return max(0.0, when - self.now)
        return None

    def advance(self, seconds):
        """
        Move the clock forward and fire every timer that falls due.

        Returns:
            int: Number of callbacks run
        """
        target = self.now + seconds
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            when, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self.now = when
            handle.callback()
            fired += 1
        self.now = target
        return fired

    def run_pending(self, limit=1000):
        """
        Advance timer by timer until nothing is scheduled.

        Returns:
            int: Number of callbacks run

        Raises:
            RuntimeError: If more than `limit` callbacks fire
        """
        fired = 0
        delay = self.next_delay()
        while delay is not None:
            fired += self.advance(delay)
            if fired > limit:
                raise RuntimeError(f"Scheduler did not settle after {limit} callbacks")
            delay = self.next_delay()
        return fired


class _LoopTimerHandle(TimerHandle):

    def __init__(self, when, callback, timer):
        super().__init__(when, callback)
        self.timer = timer

    def cancel(self):
        super().cancel()
        self.timer.cancel()


class AsyncioScheduler(Scheduler):
    """
    Scheduler backed by an asyncio event loop.

    Must be created from inside the running loop unless `loop` is given.
    """

    def __init__(self, loop=None):
        self.loop = loop or asyncio.get_running_loop()

    def call_later(self, delay, callback):
        timer = self.loop.call_later(delay, callback)
        return _LoopTimerHandle(self.loop.time() + delay, callback, timer)
