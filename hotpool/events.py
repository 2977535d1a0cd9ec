"""
Typed events consumed by the supervisor and effects it asks the loop to run.

The supervisor is a state-transition function over (registry, event) that
returns a list of effects. Only the control loop touches processes,
sockets, signals and timers, which keeps the decision logic testable
without any of them.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple

from .protocol import ControlMessage


class TimerKind(str, Enum):
    """Grace periods and periodic work tracked by the loop's timer queue."""

    SAMPLE = "sample"
    LISTEN_TIMEOUT = "listen_timeout"
    DRAIN_TIMEOUT = "drain_timeout"
    HANDOVER_RETRY = "handover_retry"
    RESPAWN = "respawn"
    SHUTDOWN = "shutdown"


class TimerKey(NamedTuple):
    kind: TimerKind
    worker_id: int | None = None


# Events


@dataclass(frozen=True)
class Spawned:
    """Process creation succeeded (the implicit Forked observation)."""

    worker_id: int
    pid: int


@dataclass(frozen=True)
class SpawnFailed:
    worker_id: int
    error: str


@dataclass(frozen=True)
class MessageReceived:
    """A message read from a worker's channel; source is that channel's worker."""

    message: ControlMessage
    source: int | None = None


@dataclass(frozen=True)
class ChannelClosed:
    """EOF on a worker's channel (the implicit Disconnect observation)."""

    worker_id: int


@dataclass(frozen=True)
class ProcessExited:
    """Process sentinel fired (the implicit Exit observation)."""

    worker_id: int
    exit_code: int | None = None


@dataclass(frozen=True)
class TimerFired:
    key: TimerKey


@dataclass(frozen=True)
class SignalReceived:
    signum: int


@dataclass(frozen=True)
class ResourceSampled:
    worker_id: int
    rss: int
    taken_at: float


@dataclass(frozen=True)
class RestartRequested:
    """Operator asks for replacement of one worker, or all when worker_id is None."""

    worker_id: int | None = None
    reason: str = "operator"


@dataclass(frozen=True)
class ResizeRequested:
    size: int


@dataclass(frozen=True)
class ThresholdChanged:
    memory_limit: int | None


@dataclass(frozen=True)
class ShutdownRequested:
    reason: str = "operator"


Event = (
    Spawned
    | SpawnFailed
    | MessageReceived
    | ChannelClosed
    | ProcessExited
    | TimerFired
    | SignalReceived
    | ResourceSampled
    | RestartRequested
    | ResizeRequested
    | ThresholdChanged
    | ShutdownRequested
)


# Effects


@dataclass(frozen=True)
class Spawn:
    worker_id: int


@dataclass(frozen=True)
class Send:
    worker_id: int
    message: ControlMessage


@dataclass(frozen=True)
class Kill:
    """Unconditional termination (SIGKILL)."""

    worker_id: int


@dataclass(frozen=True)
class Relay:
    """Deliver a signal to a worker."""

    worker_id: int
    signum: int


@dataclass(frozen=True)
class SuspendSelf:
    """Apply the default stop action to the supervisor itself."""


@dataclass(frozen=True)
class ArmTimer:
    key: TimerKey
    delay: float


@dataclass(frozen=True)
class CancelTimer:
    key: TimerKey


@dataclass(frozen=True)
class Sample:
    worker_id: int
    pid: int


Effect = Spawn | Send | Kill | Relay | SuspendSelf | ArmTimer | CancelTimer | Sample
