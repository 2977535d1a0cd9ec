"""
Replacement policy: when a worker must be retired, and handover bookkeeping.

A voluntary replacement is a make-before-break handover:

1. spawn a candidate and wait for it to reach READY,
2. send it START and wait for LISTENING (bounded by listen_timeout),
3. only then send STOP to the retiring worker and wait for it to exit
   (bounded by drain_timeout, then killed).

If the candidate does not reach LISTENING in time it is killed, the
retiring worker is left alone, and the handover is retried after a bounded
exponential backoff. Handovers run one at a time, which keeps the number of
serving workers at or below N+1.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum

from .config import ReplacementConfig, RetryConfig
from .registry import WorkerRecord
from .state import WorkerState


class Backoff:
    """
    Bounded exponential backoff.

    delay(1) is the initial delay, each further attempt multiplies it,
    capped at max_delay. exhausted(n) is True once n failures reached the
    configured maximum.
    """

    def __init__(self, config: RetryConfig) -> None:
        self._config = config

    @property
    def max_retries(self) -> int:
        return self._config.max_retries

    def delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        # float pow overflows for large exponents
        exponent = min(max(1, attempt), 64) - 1
        value = self._config.initial_delay * self._config.multiplier**exponent
        return min(self._config.max_delay, value)

    def exhausted(self, failures: int) -> bool:
        return failures >= self._config.max_retries


class HandoverPhase(Enum):
    QUEUED = "queued"
    SPAWNING = "spawning"  # candidate spawned, waiting for LISTENING
    ABORTING = "aborting"  # candidate killed, waiting for it to exit
    BACKOFF = "backoff"  # waiting for the retry timer


@dataclass
class Handover:
    """One pending replacement of a retiring worker."""

    retiring_id: int
    reason: str
    requested_at: float
    phase: HandoverPhase = HandoverPhase.QUEUED
    candidate_id: int | None = None
    failures: int = 0


class ReplacementPolicy:
    """
    Decides which workers to retire and tracks pending handovers.

    Handovers are kept in request order. At most one is active (past
    QUEUED) at a time; the rest wait their turn.
    """

    def __init__(self, config: ReplacementConfig) -> None:
        self._memory_limit = config.memory_limit
        self._max_age = config.max_age
        self._backoff = Backoff(config.retry)
        self._handovers: OrderedDict[int, Handover] = OrderedDict()

    @property
    def memory_limit(self) -> int | None:
        return self._memory_limit

    def set_memory_limit(self, limit: int | None) -> None:
        self._memory_limit = limit

    @property
    def backoff(self) -> Backoff:
        return self._backoff

    def __len__(self) -> int:
        return len(self._handovers)

    def __contains__(self, retiring_id: object) -> bool:
        return retiring_id in self._handovers

    def replacement_reason(self, record: WorkerRecord, now: float) -> str | None:
        """
        Check whether a worker has crossed a replacement threshold.

        Only LISTENING workers that are not already being replaced qualify.

        Returns:
            "memory" or "max_age" if the worker should be replaced, else None
        """
        if record.state is not WorkerState.LISTENING:
            return None
        if record.retiring or record.candidate or record.id in self._handovers:
            return None
        if (
            self._memory_limit is not None
            and record.resource_usage is not None
            and record.resource_usage > self._memory_limit
        ):
            return "memory"
        if self._max_age is not None and record.age(now) > self._max_age:
            return "max_age"
        return None

    def request(self, retiring_id: int, reason: str, now: float) -> Handover | None:
        """
        Queue a handover.

        Returns:
            The new handover, or None if one is already pending for the worker
        """
        if retiring_id in self._handovers:
            return None
        handover = Handover(retiring_id=retiring_id, reason=reason, requested_at=now)
        self._handovers[retiring_id] = handover
        return handover

    def get(self, retiring_id: int) -> Handover | None:
        return self._handovers.get(retiring_id)

    @property
    def active(self) -> Handover | None:
        for handover in self._handovers.values():
            if handover.phase is not HandoverPhase.QUEUED:
                return handover
        return None

    def next_queued(self) -> Handover | None:
        """The next handover to start, if none is active."""
        if self.active is not None:
            return None
        for handover in self._handovers.values():
            return handover
        return None

    def by_candidate(self, candidate_id: int) -> Handover | None:
        for handover in self._handovers.values():
            if handover.candidate_id == candidate_id:
                return handover
        return None

    def discard(self, retiring_id: int) -> Handover | None:
        return self._handovers.pop(retiring_id, None)

    def clear(self) -> list[Handover]:
        dropped = list(self._handovers.values())
        self._handovers.clear()
        return dropped

    def pending(self) -> list[Handover]:
        return list(self._handovers.values())
