"""
Clock and timer queue used by the control loop.

The supervisor never sleeps on a specific worker: every grace period is a
named timer, and the loop waits at most until the earliest deadline. Tests
inject a fake clock and fire timers by advancing it.

Example:
    timers = TimerQueue(MonotonicClock())
    timers.arm(("drain", 3), 30.0)
    ...
    for key in timers.pop_due():
        handle(key)
"""

from __future__ import annotations

import heapq
import itertools
import time
from collections.abc import Hashable
from typing import Protocol


class Clock(Protocol):
    """Source of monotonic time in seconds."""

    def now(self) -> float: ...


class MonotonicClock:
    """Clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


class TimerQueue:
    """
    Keyed one-shot timers.

    Arming a key that is already armed replaces its deadline. Cancelled and
    replaced entries stay in the heap and are skipped lazily.
    """

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._heap: list[tuple[float, int, Hashable]] = []
        self._deadlines: dict[Hashable, tuple[float, int]] = {}
        self._seq = itertools.count()

    def __len__(self) -> int:
        return len(self._deadlines)

    def __contains__(self, key: object) -> bool:
        return key in self._deadlines

    def arm(self, key: Hashable, delay: float) -> float:
        """
        Arm (or re-arm) a timer.

        Args:
            key: Timer identity
            delay: Seconds from now

        Returns:
            Absolute deadline
        """
        deadline = self._clock.now() + max(0.0, delay)
        seq = next(self._seq)
        self._deadlines[key] = (deadline, seq)
        heapq.heappush(self._heap, (deadline, seq, key))
        return deadline

    def cancel(self, key: Hashable) -> bool:
        """Cancel a timer; returns False if it was not armed."""
        return self._deadlines.pop(key, None) is not None

    def deadline(self, key: Hashable) -> float | None:
        entry = self._deadlines.get(key)
        return entry[0] if entry else None

    def _discard_stale(self) -> None:
        while self._heap:
            deadline, seq, key = self._heap[0]
            if self._deadlines.get(key) == (deadline, seq):
                return
            heapq.heappop(self._heap)

    def next_deadline(self) -> float | None:
        self._discard_stale()
        return self._heap[0][0] if self._heap else None

    def timeout(self) -> float | None:
        """Seconds until the earliest deadline (0 if overdue), None if idle."""
        deadline = self.next_deadline()
        if deadline is None:
            return None
        return max(0.0, deadline - self._clock.now())

    def pop_due(self) -> list[Hashable]:
        """Remove and return every key whose deadline has passed, earliest first."""
        now = self._clock.now()
        due = []
        while True:
            self._discard_stale()
            if not self._heap or self._heap[0][0] > now:
                return due
            _, _, key = heapq.heappop(self._heap)
            del self._deadlines[key]
            due.append(key)
