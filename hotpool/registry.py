"""
Supervisor-side bookkeeping of every supervised worker.

The registry is the single source of truth for pool membership. It is only
mutated from the control loop's thread, so it needs no locking; other
threads read immutable snapshots instead.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Protocol

from .exceptions import DuplicateWorkerError, RegistryError, UnknownWorkerError
from .state import SERVING_STATES, WorkerState, check_transition


class Closeable(Protocol):
    def close(self) -> Any: ...


@dataclass
class WorkerRecord:
    """
    One supervised worker process.

    Attributes:
        id: Opaque handle allocated by the supervisor, never reused
        created_at: Clock time of the spawn request
        state: Current lifecycle state
        pid: OS process id once the spawn succeeded
        resource_usage: Last sampled RSS in bytes
        sampled_at: Clock time of that sample
        channel: Private control channel, closed exactly once on EXITED
        history: Every state the worker has been in, in order
        candidate: Replacement that has not been committed yet
        retiring: Told to stop (handover committed, resize, shutdown)
        start_sent: START already sent
        forced: Killed by the supervisor
        listened: Reached LISTENING at some point
        lease: Accept capability token held while LISTENING
        exit_code: Process exit code once EXITED
    """

    id: int
    created_at: float
    state: WorkerState = WorkerState.FORKED
    pid: int | None = None
    resource_usage: int | None = None
    sampled_at: float | None = None
    channel: Closeable | None = None
    history: list[WorkerState] = field(default_factory=list)
    candidate: bool = False
    retiring: bool = False
    start_sent: bool = False
    forced: bool = False
    listened: bool = False
    lease: int | None = None
    exit_code: int | None = None
    channel_closes: int = 0

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append(self.state)

    def age(self, now: float) -> float:
        return max(0.0, now - self.created_at)

    def reached(self, state: WorkerState) -> bool:
        """True if the worker has ever been in the given state."""
        return state in self.history


@dataclass(frozen=True)
class WorkerView:
    """Immutable, thread-safe view of one record."""

    id: int
    pid: int | None
    state: WorkerState
    age: float
    resource_usage: int | None
    sampled_at: float | None
    candidate: bool
    retiring: bool


class Registry:
    """
    Mapping from worker id to WorkerRecord plus aggregate queries.

    Invariants enforced here:
    - no two records share an id
    - state only moves along the transition graph
    - the record's channel is closed exactly once, on EXITED
    - a record is removed only after EXITED, and only once
    """

    def __init__(self) -> None:
        self._records: dict[int, WorkerRecord] = {}
        # Ids are allocated increasing, so one mark covers every removed id
        self._highest_removed = 0

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, worker_id: object) -> bool:
        return worker_id in self._records

    def __iter__(self) -> Iterator[WorkerRecord]:
        return iter(list(self._records.values()))

    @property
    def empty(self) -> bool:
        return not self._records

    def add(self, record: WorkerRecord) -> WorkerRecord:
        """
        Register a new worker.

        Raises:
            DuplicateWorkerError: If the id is in use or not above every removed id
        """
        if record.id in self._records or record.id <= self._highest_removed:
            raise DuplicateWorkerError("worker id already registered", worker=record.id)
        self._records[record.id] = record
        return record

    def get(self, worker_id: int) -> WorkerRecord:
        """
        Raises:
            UnknownWorkerError: If no such worker is registered
        """
        try:
            return self._records[worker_id]
        except KeyError:
            raise UnknownWorkerError("unknown worker", worker=worker_id) from None

    def find(self, worker_id: int) -> WorkerRecord | None:
        return self._records.get(worker_id)

    def transition(self, worker_id: int, state: WorkerState) -> WorkerRecord:
        """
        Move a worker to a new state.

        Closes the worker's channel when it reaches EXITED.

        Raises:
            UnknownWorkerError: If no such worker is registered
            IllegalTransition: If the edge is not in the state graph
        """
        record = self.get(worker_id)
        check_transition(record.state, state)
        record.state = state
        record.history.append(state)
        if state is WorkerState.LISTENING:
            record.listened = True
        if state is WorkerState.EXITED:
            self._close_channel(record)
        return record

    def _close_channel(self, record: WorkerRecord) -> None:
        if record.channel is not None and record.channel_closes == 0:
            record.channel_closes += 1
            record.channel.close()

    def remove(self, worker_id: int) -> WorkerRecord:
        """
        Remove an EXITED worker.

        Raises:
            UnknownWorkerError: If the worker is not registered (or already removed)
            RegistryError: If the worker has not exited
        """
        record = self.get(worker_id)
        if record.state is not WorkerState.EXITED:
            raise RegistryError(
                "cannot remove a worker that has not exited",
                worker=worker_id,
                state=str(record.state),
            )
        del self._records[worker_id]
        self._highest_removed = max(self._highest_removed, worker_id)
        return record

    def count_in_state(self, state: WorkerState) -> int:
        return sum(1 for r in self._records.values() if r.state is state)

    def pool_size(self) -> int:
        """Number of workers in READY or LISTENING."""
        return sum(1 for r in self._records.values() if r.state in SERVING_STATES)

    def in_states(self, *states: WorkerState) -> list[WorkerRecord]:
        """Records in any of the given states, oldest first."""
        wanted = set(states)
        return sorted(
            (r for r in self._records.values() if r.state in wanted),
            key=lambda r: (r.created_at, r.id),
        )

    def ids(self) -> list[int]:
        return sorted(self._records)

    def snapshot(self, now: float) -> tuple[WorkerView, ...]:
        """Immutable views of all records, ordered by id."""
        return tuple(
            WorkerView(
                id=r.id,
                pid=r.pid,
                state=r.state,
                age=r.age(now),
                resource_usage=r.resource_usage,
                sampled_at=r.sampled_at,
                candidate=r.candidate,
                retiring=r.retiring,
            )
            for r in sorted(self._records.values(), key=lambda r: r.id)
        )
