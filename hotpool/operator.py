"""
Operator interface: rolling restarts, resizing, thresholds and health.

Operator methods are safe to call from any thread. They only enqueue a
request for the control loop and wake it up; the loop applies requests in
order between events.

Example:
    supervisor_loop = ControlLoop(lg, config, EchoHandler)
    op = supervisor_loop.operator
    threading.Thread(target=supervisor_loop.run).start()

    op.restart()                   # rolling restart of every worker
    op.set_memory_limit("512MB")   # replace workers above 512 MiB
    print(op.health().pool_size)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

from .events import (
    Event,
    ResizeRequested,
    RestartRequested,
    ShutdownRequested,
    ThresholdChanged,
)
from .exceptions import ConfigError, PoolError
from .observability import Alert
from .registry import WorkerView
from .size import InvalidSizeError, parse_limit


@dataclass(frozen=True)
class PoolHealth:
    """
    Point-in-time view of the pool.

    Attributes:
        pool_size: Workers in READY or LISTENING
        target: Configured pool size N
        workers: Per-worker state, pid, age and last sampled RSS
        stats: Counters (spawned, crashes, forced terminations, ...)
        alerts: Recent degraded events, oldest first
        memory_limit: Current resource threshold in bytes
        pending_handovers: Handovers queued or in progress
        shutting_down: A fatal signal or shutdown request was received
        taken_at: Clock time of the snapshot
    """

    pool_size: int
    target: int
    workers: tuple[WorkerView, ...]
    stats: dict[str, int]
    alerts: tuple[Alert, ...]
    memory_limit: int | None
    pending_handovers: int
    shutting_down: bool
    taken_at: float

    @property
    def degraded(self) -> bool:
        """True while fewer than N workers are serving."""
        return self.pool_size < self.target

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["workers"] = [
            {**asdict(view), "state": str(view.state)} for view in self.workers
        ]
        data["alerts"] = [
            {**asdict(alert), "event": alert.event.value} for alert in self.alerts
        ]
        data["degraded"] = self.degraded
        return data


class Operator:
    """
    Thread-safe command surface for a running supervisor.

    Args:
        submit: Enqueues an event for the control loop and wakes it
        snapshot: Returns the latest published PoolHealth, if any
    """

    def __init__(
        self,
        submit: Callable[[Event], None],
        snapshot: Callable[[], PoolHealth | None],
    ) -> None:
        self._submit = submit
        self._snapshot = snapshot

    def restart(self, worker_id: int | None = None) -> None:
        """
        Request a make-before-break replacement.

        Args:
            worker_id: Worker to replace; None replaces every worker, one at a time
        """
        self._submit(RestartRequested(worker_id=worker_id))

    def resize(self, size: int) -> None:
        """
        Change the target pool size.

        Raises:
            ConfigError: If size is not a positive integer
        """
        if not isinstance(size, int) or isinstance(size, bool) or size < 1:
            raise ConfigError("pool size must be a positive integer", value=size)
        self._submit(ResizeRequested(size=size))

    def set_memory_limit(self, limit: int | str | None) -> None:
        """
        Change the resource threshold.

        Args:
            limit: Bytes, a size string such as "512MB", or None to disable

        Raises:
            ConfigError: If the limit cannot be parsed
        """
        try:
            parsed = parse_limit(limit)
        except InvalidSizeError as e:
            raise ConfigError(str(e), key="memory_limit") from e
        self._submit(ThresholdChanged(memory_limit=parsed))

    def shutdown(self) -> None:
        """Ask the supervisor to stop every worker and exit."""
        self._submit(ShutdownRequested())

    def health(self) -> PoolHealth:
        """
        Latest pool health snapshot.

        Raises:
            PoolError: If the supervisor has not published one yet
        """
        health = self._snapshot()
        if health is None:
            raise PoolError("supervisor has not started")
        return health
