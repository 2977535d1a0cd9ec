"""
Observability hooks, counters and alerts for pool operations.

Degraded events (crashes, forced terminations, failed handovers, exhausted
retries, protocol violations) are never swallowed: each one increments a
counter, is recorded as an alert visible through the operator interface,
and triggers any registered hook.

Example:
    hooks = PoolHooks()

    @hooks.on(HookEvent.FORCED_TERMINATION)
    def page_oncall(ctx: HookContext) -> None:
        pager.send(f"worker {ctx.worker_id} was killed: {ctx.data}")
"""

import sys
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class HookEvent(Enum):
    """Event types for pool hooks."""

    # Worker lifecycle
    WORKER_SPAWNED = "worker_spawned"
    WORKER_LISTENING = "worker_listening"
    WORKER_EXITED = "worker_exited"

    # Handover
    HANDOVER_STARTED = "handover_started"
    HANDOVER_COMMITTED = "handover_committed"
    HANDOVER_COMPLETED = "handover_completed"
    HANDOVER_FAILED = "handover_failed"

    # Degraded events
    CRASH = "crash"
    FORCED_TERMINATION = "forced_termination"
    RETRY_EXHAUSTED = "retry_exhausted"
    PROTOCOL_VIOLATION = "protocol_violation"

    # Supervisor
    SIGNAL_RELAYED = "signal_relayed"
    SHUTDOWN = "shutdown"


# Events recorded as operator-visible alerts
ALERT_EVENTS = frozenset(
    {
        HookEvent.CRASH,
        HookEvent.FORCED_TERMINATION,
        HookEvent.HANDOVER_FAILED,
        HookEvent.RETRY_EXHAUSTED,
        HookEvent.PROTOCOL_VIOLATION,
    }
)


@dataclass
class HookContext:
    """Context passed to hooks."""

    event: HookEvent
    timestamp: float = field(default_factory=time.time)
    worker_id: int | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Alert:
    """A degraded event as reported to the operator."""

    event: HookEvent
    timestamp: float
    worker_id: int | None
    data: dict[str, Any]


@dataclass
class PoolStats:
    """Monotonic counters since the supervisor started."""

    spawned: int = 0
    handovers_started: int = 0
    handovers_committed: int = 0
    handovers_completed: int = 0
    handovers_failed: int = 0
    crashes: int = 0
    forced_terminations: int = 0
    retries_exhausted: int = 0
    protocol_violations: int = 0
    signals_relayed: int = 0

    def as_dict(self) -> dict[str, int]:
        return dict(self.__dict__)


_COUNTERS: dict[HookEvent, str] = {
    HookEvent.WORKER_SPAWNED: "spawned",
    HookEvent.HANDOVER_STARTED: "handovers_started",
    HookEvent.HANDOVER_COMMITTED: "handovers_committed",
    HookEvent.HANDOVER_COMPLETED: "handovers_completed",
    HookEvent.HANDOVER_FAILED: "handovers_failed",
    HookEvent.CRASH: "crashes",
    HookEvent.FORCED_TERMINATION: "forced_terminations",
    HookEvent.RETRY_EXHAUSTED: "retries_exhausted",
    HookEvent.PROTOCOL_VIOLATION: "protocol_violations",
    HookEvent.SIGNAL_RELAYED: "signals_relayed",
}


class PoolHooks:
    """
    Callback registry plus the counters and alert log fed by the same events.

    Hooks run synchronously on the control loop's thread; an exception in a
    hook is reported on stderr and does not interrupt supervision.
    """

    def __init__(self, max_alerts: int = 100) -> None:
        self._hooks: dict[HookEvent, list[Callable[[HookContext], None]]] = {}
        self._global_hooks: list[Callable[[HookContext], None]] = []
        self._stats = PoolStats()
        self._alerts: deque[Alert] = deque(maxlen=max_alerts)

    @property
    def stats(self) -> PoolStats:
        return self._stats

    def alerts(self) -> tuple[Alert, ...]:
        return tuple(self._alerts)

    def register(self, event: HookEvent, callback: Callable[[HookContext], None]) -> None:
        """Register a callback for a specific event."""
        self._hooks.setdefault(event, []).append(callback)

    def on(self, event: HookEvent) -> Callable:
        """Decorator form of register()."""

        def decorator(callback: Callable[[HookContext], None]) -> Callable:
            self.register(event, callback)
            return callback

        return decorator

    def register_global(self, callback: Callable[[HookContext], None]) -> None:
        """Register a callback that receives every event."""
        self._global_hooks.append(callback)

    def unregister(self, event: HookEvent, callback: Callable[[HookContext], None]) -> bool:
        callbacks = self._hooks.get(event, [])
        if callback in callbacks:
            callbacks.remove(callback)
            return True
        return False

    def trigger(self, event: HookEvent, worker_id: int | None = None, **data: Any) -> None:
        """
        Count the event, record it as an alert if degraded, and run hooks.

        Args:
            event: Event type
            worker_id: Worker concerned, if any
            **data: Event-specific data
        """
        counter = _COUNTERS.get(event)
        if counter:
            setattr(self._stats, counter, getattr(self._stats, counter) + 1)

        context = HookContext(event=event, worker_id=worker_id, data=data)
        if event in ALERT_EVENTS:
            self._alerts.append(
                Alert(event, context.timestamp, worker_id, dict(data))
            )

        for callback in self._hooks.get(event, []) + self._global_hooks:
            try:
                callback(context)
            except Exception as e:
                sys.stderr.write(f"Error in pool hook for {event.value}: {e}\n")
