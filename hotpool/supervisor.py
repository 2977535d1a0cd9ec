"""
Supervisor decision core.

The Supervisor consumes typed events (control messages, channel EOF,
process exits, timers, signals, resource samples, operator requests) and
returns the effects the control loop has to carry out (spawn, send, kill,
relay, arm or cancel timers, sample). It never touches a process, socket
or clock deadline directly, so every scenario can be driven in tests with
a fake clock and no real workers.

Pool accounting: a worker counts toward the target N while it is starting
or listening and is neither an uncommitted replacement candidate nor
retiring. Handovers run one at a time, so at most one candidate exists and
the pool never grows beyond N+1.

Example:
    supervisor = Supervisor(config, lg)
    effects = supervisor.start()
    while not supervisor.finished:
        run(effects)
        effects = supervisor.handle(next_event())
"""

from __future__ import annotations

import itertools
import signal
from collections.abc import Callable
from typing import Any

from .clock import Clock, MonotonicClock
from .config import SupervisorConfig
from .events import (
    ArmTimer,
    CancelTimer,
    ChannelClosed,
    Effect,
    Event,
    Kill,
    MessageReceived,
    ProcessExited,
    Relay,
    ResizeRequested,
    ResourceSampled,
    RestartRequested,
    Sample,
    Send,
    ShutdownRequested,
    SignalReceived,
    Spawn,
    Spawned,
    SpawnFailed,
    SuspendSelf,
    ThresholdChanged,
    TimerFired,
    TimerKey,
    TimerKind,
)
from .exceptions import ProtocolViolation
from .listener import LeaseLedger
from .log import Logger
from .observability import HookEvent, PoolHooks
from .operator import PoolHealth
from .policy import Handover, HandoverPhase, ReplacementPolicy
from .protocol import (
    MessageTag,
    start_message,
    stop_message,
    validate_command,
    validate_inbound,
)
from .registry import Registry, WorkerRecord
from .relay import RelayAction, action_for, signal_name
from .state import DRAINING_STATES, STARTING_STATES, WorkerState

# States counted toward the target pool size
_ACTIVE_STATES = STARTING_STATES | {WorkerState.LISTENING}


class Supervisor:
    """
    Pure state-transition core of the worker-pool supervisor.

    Args:
        config: Supervisor configuration
        lg: Logger instance
        clock: Time source (defaults to the monotonic clock)
        hooks: Observability hooks and counters
    """

    def __init__(
        self,
        config: SupervisorConfig,
        lg: Logger,
        clock: Clock | None = None,
        hooks: PoolHooks | None = None,
    ) -> None:
        self._config = config
        self._lg = lg
        self._clock = clock or MonotonicClock()
        self._hooks = hooks or PoolHooks()
        self._registry = Registry()
        self._policy = ReplacementPolicy(config.replacement)
        self._leases = LeaseLedger()
        self._ids = itertools.count(1)
        self._target = config.pool.size
        self._started = False
        self._shutting_down = False
        self._committed: set[int] = set()
        self._start_failures = 0
        self._start_failures_alerted = False
        self._respawn_armed = False
        # Slots freed by failed starts, refilled when the RESPAWN timer fires
        self._delayed_slots = 0

        self._handlers: dict[type, Callable[[Any], list[Effect]]] = {
            Spawned: self._on_spawned,
            SpawnFailed: self._on_spawn_failed,
            MessageReceived: self._on_message,
            ChannelClosed: self._on_channel_closed,
            ProcessExited: self._on_process_exited,
            TimerFired: self._on_timer,
            SignalReceived: self._on_signal,
            ResourceSampled: self._on_sample,
            RestartRequested: self._on_restart,
            ResizeRequested: self._on_resize,
            ThresholdChanged: self._on_threshold,
            ShutdownRequested: self._on_shutdown,
        }

    @property
    def registry(self) -> Registry:
        return self._registry

    @property
    def policy(self) -> ReplacementPolicy:
        return self._policy

    @property
    def hooks(self) -> PoolHooks:
        return self._hooks

    @property
    def leases(self) -> LeaseLedger:
        return self._leases

    @property
    def target(self) -> int:
        return self._target

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def finished(self) -> bool:
        """True once shutdown was requested and every worker has exited."""
        return self._shutting_down and self._registry.empty

    def start(self) -> list[Effect]:
        """Fill the pool and start the sampling timer."""
        if self._started:
            return []
        self._started = True
        self._lg.info(
            "supervisor starting",
            extra={"size": self._target, "memory_limit": self._policy.memory_limit},
        )
        effects = self._reconcile()
        effects.append(
            ArmTimer(TimerKey(TimerKind.SAMPLE), self._config.replacement.sample_interval)
        )
        return effects

    def handle(self, event: Event) -> list[Effect]:
        """
        Apply one event.

        Args:
            event: Observed event

        Returns:
            Effects for the control loop to execute, in order

        Raises:
            TypeError: If the event type is unknown
        """
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"unsupported event: {event!r}")
        return handler(event)

    def health(self) -> PoolHealth:
        now = self._clock.now()
        return PoolHealth(
            pool_size=self._registry.pool_size(),
            target=self._target,
            workers=self._registry.snapshot(now),
            stats=self._hooks.stats.as_dict(),
            alerts=self._hooks.alerts(),
            memory_limit=self._policy.memory_limit,
            pending_handovers=len(self._policy),
            shutting_down=self._shutting_down,
            taken_at=now,
        )

    # Process lifecycle

    def _on_spawned(self, event: Spawned) -> list[Effect]:
        record = self._registry.find(event.worker_id)
        if record is None:
            return []
        record.pid = event.pid
        self._lg.debug("worker forked", extra={"worker": record.id, "pid": event.pid})
        return []

    def _on_spawn_failed(self, event: SpawnFailed) -> list[Effect]:
        record = self._registry.find(event.worker_id)
        if record is None:
            return []
        self._lg.error(
            "failed to spawn worker", extra={"worker": record.id, "error": event.error}
        )
        return self._handle_exit(record, None)

    def _on_message(self, event: MessageReceived) -> list[Effect]:
        message = event.message
        if event.source is not None and event.source != message.worker_id:
            return self._violation(
                ProtocolViolation(
                    "message carries another worker's id",
                    worker=event.source,
                    claimed=message.worker_id,
                ),
                event.source,
            )

        record = self._registry.find(message.worker_id)
        if record is None:
            return self._violation(
                ProtocolViolation(
                    "message for unknown worker",
                    worker=message.worker_id,
                    tag=message.tag.value,
                ),
                message.worker_id,
            )

        try:
            target = validate_inbound(message, record.state)
        except ProtocolViolation as e:
            return self._violation(e, record.id)

        self._registry.transition(record.id, target)
        self._lg.debug(
            "worker state changed", extra={"worker": record.id, "state": str(target)}
        )

        if target is WorkerState.READY:
            return self._on_ready(record)
        if target is WorkerState.LISTENING:
            return self._on_listening(record)
        return []

    def _on_ready(self, record: WorkerRecord) -> list[Effect]:
        # A worker that got a fatal signal or is being removed is never started
        if self._shutting_down or record.retiring or record.start_sent:
            return []
        validate_command(MessageTag.START, record.state)
        record.lease = self._leases.grant(record.id)
        record.start_sent = True
        return [Send(record.id, start_message(record.id, record.lease))]

    def _on_listening(self, record: WorkerRecord) -> list[Effect]:
        effects: list[Effect] = [CancelTimer(TimerKey(TimerKind.LISTEN_TIMEOUT, record.id))]
        self._hooks.trigger(HookEvent.WORKER_LISTENING, record.id, pid=record.pid)
        self._lg.info("worker listening", extra={"worker": record.id, "pid": record.pid})
        if record.forced:
            return effects

        if self._start_failures:
            self._lg.info(
                "worker start recovered", extra={"failures": self._start_failures}
            )
        self._start_failures = 0
        self._start_failures_alerted = False
        self._delayed_slots = 0

        if self._shutting_down:
            # Already signalled; the signal is its stop command
            self._leases.revoke(record.id)
            record.retiring = True
            self._registry.transition(record.id, WorkerState.STOPPING)
            return effects

        if record.candidate:
            handover = self._policy.by_candidate(record.id)
            if handover is not None and handover.phase is HandoverPhase.SPAWNING:
                effects += self._commit(handover, record)
            else:
                record.candidate = False

        effects += self._reconcile()
        return effects

    def _on_channel_closed(self, event: ChannelClosed) -> list[Effect]:
        record = self._registry.find(event.worker_id)
        if record is None:
            return []
        if record.state is WorkerState.STOPPED:
            self._registry.transition(record.id, WorkerState.DISCONNECTED)
            self._lg.debug("worker disconnected", extra={"worker": record.id})
        elif record.state is not WorkerState.EXITED:
            self._lg.debug(
                "worker closed its channel early",
                extra={"worker": record.id, "state": str(record.state)},
            )
        return []

    def _on_process_exited(self, event: ProcessExited) -> list[Effect]:
        record = self._registry.find(event.worker_id)
        if record is None:
            return []
        return self._handle_exit(record, event.exit_code)

    def _handle_exit(self, record: WorkerRecord, exit_code: int | None) -> list[Effect]:
        """Move a worker to EXITED, remove it, classify the exit, restore the pool."""
        last_state = record.state
        record.exit_code = exit_code
        self._registry.transition(record.id, WorkerState.EXITED)
        self._registry.remove(record.id)
        self._leases.revoke(record.id)

        effects: list[Effect] = [
            CancelTimer(TimerKey(TimerKind.LISTEN_TIMEOUT, record.id)),
            CancelTimer(TimerKey(TimerKind.DRAIN_TIMEOUT, record.id)),
        ]
        self._hooks.trigger(
            HookEvent.WORKER_EXITED,
            record.id,
            exit_code=exit_code,
            state=str(last_state),
        )

        clean = record.reached(WorkerState.STOPPED)
        expected = clean or record.forced or self._shutting_down
        extra = {
            "worker": record.id,
            "pid": record.pid,
            "exit_code": exit_code,
            "state": str(last_state),
        }
        if expected:
            self._lg.info("worker exited", extra=extra)
        else:
            self._lg.error("worker crashed", extra=extra)
            self._hooks.trigger(
                HookEvent.CRASH, record.id, exit_code=exit_code, state=str(last_state)
            )

        if record.id in self._committed:
            self._committed.discard(record.id)
            self._hooks.trigger(HookEvent.HANDOVER_COMPLETED, record.id, forced=record.forced)

        as_candidate = self._policy.by_candidate(record.id)
        if as_candidate is not None:
            effects += self._candidate_exited(as_candidate, record)
        elif self._policy.get(record.id) is not None:
            effects += self._retiring_exited(record)
        elif not expected and not record.listened:
            effects += self._start_failed(record)

        effects += self._advance_handovers()
        effects += self._reconcile()
        return effects

    # Pool size

    def _spawn(self, candidate: bool = False) -> list[Effect]:
        return self._spawn_worker(candidate)[1]

    def _spawn_worker(self, candidate: bool) -> tuple[int, list[Effect]]:
        worker_id = next(self._ids)
        self._registry.add(
            WorkerRecord(id=worker_id, created_at=self._clock.now(), candidate=candidate)
        )
        self._hooks.trigger(HookEvent.WORKER_SPAWNED, worker_id, candidate=candidate)
        self._lg.debug("spawning worker", extra={"worker": worker_id, "candidate": candidate})
        return worker_id, [
            Spawn(worker_id),
            ArmTimer(
                TimerKey(TimerKind.LISTEN_TIMEOUT, worker_id),
                self._config.replacement.listen_timeout,
            ),
        ]

    def _members(self) -> list[WorkerRecord]:
        return [
            r
            for r in self._registry.in_states(*_ACTIVE_STATES)
            if not r.candidate and not r.retiring and not r.forced
        ]

    def _reconcile(self, respawn_now: bool = False) -> list[Effect]:
        """
        Spawn or retire workers until the member count matches the target.

        Slots freed by failed starts wait for the RESPAWN timer unless
        respawn_now is set; every other missing slot is filled at once.
        """
        if self._shutting_down:
            return []
        members = self._members()
        effects: list[Effect] = []

        missing = self._target - len(members)
        if missing > 0:
            deferred = 0
            if self._start_failures and not respawn_now:
                deferred = min(missing, self._delayed_slots)
            if deferred and not self._respawn_armed:
                delay = self._policy.backoff.delay(self._start_failures)
                self._respawn_armed = True
                self._lg.warning(
                    "delaying respawn after failed starts",
                    extra={"failures": self._start_failures, "delay": delay},
                )
                effects.append(ArmTimer(TimerKey(TimerKind.RESPAWN), delay))
            for _ in range(missing - deferred):
                effects += self._spawn()
        elif missing < 0:
            effects += self._retire_surplus(-missing, members)
        return effects

    def _retire_surplus(self, count: int, members: list[WorkerRecord]) -> list[Effect]:
        """Kill workers that are not serving yet, then stop the oldest listening ones."""
        effects: list[Effect] = []
        starting = [r for r in members if r.state in STARTING_STATES]
        listening = [r for r in members if r.state is WorkerState.LISTENING]
        for record in (starting + listening)[:count]:
            if record.id in self._policy:
                effects += self._drop_handover(self._policy.discard(record.id))
            self._lg.info(
                "retiring surplus worker",
                extra={"worker": record.id, "state": str(record.state)},
            )
            if record.state is WorkerState.LISTENING:
                effects += self._stop(record)
            else:
                record.retiring = True
                effects += self._kill(record)
        return effects

    def _stop(self, record: WorkerRecord) -> list[Effect]:
        """Send STOP to a listening worker and arm its drain timeout."""
        validate_command(MessageTag.STOP, record.state)
        lease = self._leases.revoke(record.id)
        record.retiring = True
        self._registry.transition(record.id, WorkerState.STOPPING)
        return [
            Send(record.id, stop_message(record.id, lease)),
            ArmTimer(
                TimerKey(TimerKind.DRAIN_TIMEOUT, record.id),
                self._config.replacement.drain_timeout,
            ),
        ]

    def _kill(self, record: WorkerRecord) -> list[Effect]:
        record.forced = True
        return [Kill(record.id)]

    def _start_failed(self, record: WorkerRecord) -> list[Effect]:
        self._start_failures += 1
        self._delayed_slots += 1
        backoff = self._policy.backoff
        self._lg.warning(
            "worker failed to start",
            extra={"worker": record.id, "failures": self._start_failures},
        )
        if backoff.exhausted(self._start_failures) and not self._start_failures_alerted:
            self._start_failures_alerted = True
            self._lg.critical(
                "workers keep failing to start",
                extra={"failures": self._start_failures, "delay": backoff.delay(self._start_failures)},
            )
            self._hooks.trigger(
                HookEvent.RETRY_EXHAUSTED,
                record.id,
                kind="start",
                failures=self._start_failures,
            )
        return []

    # Handovers

    def _request_handover(self, worker_id: int, reason: str) -> list[Effect]:
        """Queue a make-before-break replacement; repeated requests are ignored."""
        if self._shutting_down:
            return []
        record = self._registry.find(worker_id)
        if (
            record is None
            or record.state is not WorkerState.LISTENING
            or record.retiring
            or record.candidate
        ):
            self._lg.debug(
                "ignoring replacement request",
                extra={
                    "worker": worker_id,
                    "state": str(record.state) if record else None,
                    "reason": reason,
                },
            )
            return []
        if self._policy.request(worker_id, reason, self._clock.now()) is None:
            return []
        self._lg.info("replacement requested", extra={"worker": worker_id, "reason": reason})
        return self._advance_handovers()

    def _advance_handovers(self) -> list[Effect]:
        """Start the next queued handover if none is in progress."""
        while not self._shutting_down:
            handover = self._policy.next_queued()
            if handover is None:
                return []
            record = self._registry.find(handover.retiring_id)
            if record is None or record.state is not WorkerState.LISTENING or record.retiring:
                self._policy.discard(handover.retiring_id)
                continue
            return self._begin_attempt(handover)
        return []

    def _begin_attempt(self, handover: Handover) -> list[Effect]:
        candidate_id, effects = self._spawn_worker(candidate=True)
        handover.candidate_id = candidate_id
        handover.phase = HandoverPhase.SPAWNING
        if handover.failures == 0:
            self._hooks.trigger(
                HookEvent.HANDOVER_STARTED,
                handover.retiring_id,
                candidate=candidate_id,
                reason=handover.reason,
            )
        self._lg.info(
            "handover started",
            extra={
                "worker": handover.retiring_id,
                "candidate": candidate_id,
                "attempt": handover.failures + 1,
            },
        )
        return effects

    def _commit(self, handover: Handover, candidate: WorkerRecord) -> list[Effect]:
        """The candidate is listening: retire the old worker."""
        candidate.candidate = False
        self._policy.discard(handover.retiring_id)
        old = self._registry.find(handover.retiring_id)
        if old is None or old.state is not WorkerState.LISTENING:
            return self._advance_handovers()

        effects = self._stop(old)
        self._committed.add(old.id)
        self._hooks.trigger(
            HookEvent.HANDOVER_COMMITTED, old.id, candidate=candidate.id, reason=handover.reason
        )
        self._lg.info(
            "handover committed", extra={"worker": old.id, "candidate": candidate.id}
        )
        effects += self._advance_handovers()
        return effects

    def _candidate_exited(self, handover: Handover, candidate: WorkerRecord) -> list[Effect]:
        """A candidate died before the handover committed: retry with backoff."""
        reason = "listen_timeout" if handover.phase is HandoverPhase.ABORTING else "candidate_exited"
        handover.failures += 1
        handover.candidate_id = None
        backoff = self._policy.backoff
        self._hooks.trigger(
            HookEvent.HANDOVER_FAILED,
            handover.retiring_id,
            candidate=candidate.id,
            reason=reason,
            attempt=handover.failures,
        )
        self._lg.warning(
            "handover failed",
            extra={
                "worker": handover.retiring_id,
                "candidate": candidate.id,
                "reason": reason,
                "attempt": handover.failures,
            },
        )

        if backoff.exhausted(handover.failures):
            self._policy.discard(handover.retiring_id)
            self._lg.critical(
                "handover abandoned", extra={"worker": handover.retiring_id, "failures": handover.failures}
            )
            self._hooks.trigger(
                HookEvent.RETRY_EXHAUSTED,
                handover.retiring_id,
                kind="handover",
                failures=handover.failures,
            )
            return []

        handover.phase = HandoverPhase.BACKOFF
        delay = backoff.delay(handover.failures)
        return [ArmTimer(TimerKey(TimerKind.HANDOVER_RETRY, handover.retiring_id), delay)]

    def _retiring_exited(self, record: WorkerRecord) -> list[Effect]:
        """The worker being replaced died before the handover committed."""
        handover = self._policy.discard(record.id)
        effects: list[Effect] = []
        if handover is None:
            return effects
        if handover.phase is HandoverPhase.BACKOFF:
            effects.append(CancelTimer(TimerKey(TimerKind.HANDOVER_RETRY, record.id)))
        elif handover.phase is HandoverPhase.SPAWNING and handover.candidate_id is not None:
            candidate = self._registry.find(handover.candidate_id)
            if candidate is not None:
                candidate.candidate = False
                self._lg.info(
                    "candidate promoted", extra={"worker": candidate.id, "replaced": record.id}
                )
        return effects

    def _drop_handover(self, handover: Handover | None) -> list[Effect]:
        """Abandon a handover without counting it as failed."""
        if handover is None:
            return []
        effects: list[Effect] = [
            CancelTimer(TimerKey(TimerKind.HANDOVER_RETRY, handover.retiring_id))
        ]
        if handover.candidate_id is not None:
            candidate = self._registry.find(handover.candidate_id)
            if candidate is not None and not candidate.forced:
                effects += self._kill(candidate)
        return effects

    # Timers

    def _on_timer(self, event: TimerFired) -> list[Effect]:
        kind, worker_id = event.key
        if kind is TimerKind.SAMPLE:
            return self._on_sample_tick()
        if kind is TimerKind.RESPAWN:
            self._respawn_armed = False
            self._delayed_slots = 0
            return self._reconcile(respawn_now=True)
        if kind is TimerKind.SHUTDOWN:
            return self._on_shutdown_timeout()

        if kind is TimerKind.HANDOVER_RETRY:
            handover = self._policy.get(worker_id)
            if handover is None or handover.phase is not HandoverPhase.BACKOFF:
                return []
            record = self._registry.find(worker_id)
            if record is None or record.state is not WorkerState.LISTENING or self._shutting_down:
                self._policy.discard(worker_id)
                return self._advance_handovers()
            return self._begin_attempt(handover)

        record = self._registry.find(worker_id)
        if record is None or record.forced:
            return []
        if kind is TimerKind.LISTEN_TIMEOUT:
            return self._on_listen_timeout(record)
        if kind is TimerKind.DRAIN_TIMEOUT:
            return self._on_drain_timeout(record)
        return []

    def _on_listen_timeout(self, record: WorkerRecord) -> list[Effect]:
        if record.state not in STARTING_STATES:
            return []
        timeout = self._config.replacement.listen_timeout
        self._lg.warning(
            "worker did not reach listening in time",
            extra={"worker": record.id, "state": str(record.state), "timeout": timeout},
        )
        handover = self._policy.by_candidate(record.id)
        if handover is not None:
            handover.phase = HandoverPhase.ABORTING
        elif not record.retiring and not self._shutting_down:
            self._start_failed(record)
        return self._kill(record)

    def _on_drain_timeout(self, record: WorkerRecord) -> list[Effect]:
        if record.state not in DRAINING_STATES:
            return []
        return self._force(record, "drain_timeout", self._config.replacement.drain_timeout)

    def _on_shutdown_timeout(self) -> list[Effect]:
        effects: list[Effect] = []
        for record in self._registry:
            if not record.forced:
                effects += self._force(record, "shutdown_timeout", self._config.shutdown.timeout)
        return effects

    def _force(self, record: WorkerRecord, reason: str, timeout: float) -> list[Effect]:
        """Kill a worker that overstayed its grace period and report it."""
        self._lg.error(
            "forcing worker termination",
            extra={
                "worker": record.id,
                "pid": record.pid,
                "state": str(record.state),
                "reason": reason,
                "timeout": timeout,
            },
        )
        self._hooks.trigger(
            HookEvent.FORCED_TERMINATION, record.id, reason=reason, state=str(record.state)
        )
        return self._kill(record)

    # Sampling and thresholds

    def _on_sample_tick(self) -> list[Effect]:
        if self._shutting_down:
            return []
        effects: list[Effect] = [
            Sample(r.id, r.pid)
            for r in self._registry.in_states(*_ACTIVE_STATES)
            if r.pid is not None
        ]
        effects += self._check_thresholds()
        effects.append(
            ArmTimer(TimerKey(TimerKind.SAMPLE), self._config.replacement.sample_interval)
        )
        return effects

    def _on_sample(self, event: ResourceSampled) -> list[Effect]:
        record = self._registry.find(event.worker_id)
        if record is None:
            return []
        record.resource_usage = event.rss
        record.sampled_at = event.taken_at
        self._lg.trace(
            "worker sampled", extra={"worker": record.id, "rss": event.rss}
        )
        reason = self._policy.replacement_reason(record, self._clock.now())
        if reason is None:
            return []
        return self._request_handover(record.id, reason)

    def _check_thresholds(self) -> list[Effect]:
        effects: list[Effect] = []
        now = self._clock.now()
        for record in self._registry.in_states(WorkerState.LISTENING):
            reason = self._policy.replacement_reason(record, now)
            if reason is not None:
                effects += self._request_handover(record.id, reason)
        return effects

    def _on_threshold(self, event: ThresholdChanged) -> list[Effect]:
        self._policy.set_memory_limit(event.memory_limit)
        self._lg.info("memory limit changed", extra={"memory_limit": event.memory_limit})
        return self._check_thresholds()

    # Operator requests

    def _on_restart(self, event: RestartRequested) -> list[Effect]:
        if event.worker_id is not None:
            if event.worker_id not in self._registry:
                self._lg.warning("restart requested for unknown worker", extra={"worker": event.worker_id})
                return []
            return self._request_handover(event.worker_id, event.reason)

        self._lg.info("rolling restart requested", extra={"reason": event.reason})
        effects: list[Effect] = []
        for record in self._registry.in_states(WorkerState.LISTENING):
            effects += self._request_handover(record.id, event.reason)
        return effects

    def _on_resize(self, event: ResizeRequested) -> list[Effect]:
        if event.size < 1:
            self._lg.warning("ignoring invalid pool size", extra={"size": event.size})
            return []
        self._lg.info("pool resized", extra={"from": self._target, "to": event.size})
        self._target = event.size
        return self._reconcile()

    # Signals and shutdown

    def _on_signal(self, event: SignalReceived) -> list[Effect]:
        action = action_for(event.signum)
        name = signal_name(event.signum)
        if action is None:
            self._lg.debug("ignoring signal", extra={"signal": name})
            return []

        effects = self._relay_all(event.signum)
        if action is RelayAction.FATAL:
            effects += self._begin_shutdown(name)
        elif action is RelayAction.SUSPEND:
            effects.append(SuspendSelf())
        return effects

    def _on_shutdown(self, event: ShutdownRequested) -> list[Effect]:
        if self._shutting_down:
            return []
        effects = self._relay_all(signal.SIGTERM)
        return effects + self._begin_shutdown(event.reason)

    def _relay_all(self, signum: int) -> list[Effect]:
        workers = [r.id for r in self._registry]
        self._hooks.trigger(
            HookEvent.SIGNAL_RELAYED, signal=signal_name(signum), workers=len(workers)
        )
        self._lg.info(
            "relaying signal", extra={"signal": signal_name(signum), "workers": len(workers)}
        )
        return [Relay(worker_id, signum) for worker_id in workers]

    def _begin_shutdown(self, reason: str) -> list[Effect]:
        """Stop spawning and handovers; every worker already got the signal."""
        if self._shutting_down:
            return []
        self._shutting_down = True
        effects: list[Effect] = [
            CancelTimer(TimerKey(TimerKind.SAMPLE)),
            CancelTimer(TimerKey(TimerKind.RESPAWN)),
        ]
        self._respawn_armed = False
        self._delayed_slots = 0
        for handover in self._policy.clear():
            effects.append(CancelTimer(TimerKey(TimerKind.HANDOVER_RETRY, handover.retiring_id)))

        for record in self._registry.in_states(WorkerState.LISTENING):
            self._leases.revoke(record.id)
            record.retiring = True
            self._registry.transition(record.id, WorkerState.STOPPING)

        self._hooks.trigger(HookEvent.SHUTDOWN, reason=reason, workers=len(self._registry))
        self._lg.info(
            "supervisor shutting down", extra={"reason": reason, "workers": len(self._registry)}
        )
        if not self._registry.empty:
            effects.append(ArmTimer(TimerKey(TimerKind.SHUTDOWN), self._config.shutdown.timeout))
        return effects

    # Protocol violations

    def _violation(self, error: ProtocolViolation, worker_id: int | None) -> list[Effect]:
        self._lg.warning("protocol violation", extra={"worker": worker_id, "error": str(error)})
        self._hooks.trigger(HookEvent.PROTOCOL_VIOLATION, worker_id, error=str(error))
        return []
