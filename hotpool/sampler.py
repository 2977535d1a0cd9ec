"""Resident memory sampling for worker processes."""

from __future__ import annotations

from dataclasses import dataclass

import psutil

from .clock import Clock, MonotonicClock
from .log import Logger


@dataclass(frozen=True)
class ResourceSnapshot:
    """RSS in bytes and the clock time it was taken."""

    rss: int
    taken_at: float


class ResourceSampler:
    """
    Reads a process's resident set size through psutil.

    Processes that vanished, are zombies, or cannot be inspected yield
    None; the exit itself is reported through the process sentinel.
    """

    def __init__(self, lg: Logger, clock: Clock | None = None) -> None:
        self._lg = lg
        self._clock = clock or MonotonicClock()

    def sample(self, pid: int) -> ResourceSnapshot | None:
        try:
            rss = psutil.Process(pid).memory_info().rss
        except psutil.NoSuchProcess:
            return None
        except psutil.AccessDenied as e:
            self._lg.warning("cannot sample worker", extra={"pid": pid, "error": str(e)})
            return None
        return ResourceSnapshot(rss=rss, taken_at=self._clock.now())
