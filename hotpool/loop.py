"""
Control loop: the runtime driver around the Supervisor decision core.

The loop owns every OS resource: the shared listening socket, the worker
processes, the timer queue, the signal relay and a wakeup socket pair. It
waits on worker channels, process sentinels and the wakeup socket with
`multiprocessing.connection.wait`, turns what it observes into events,
feeds them to the supervisor and carries out the effects it returns.

Per iteration, channel messages are handled before process exits, and a
worker's channel is drained before its exit is reported, so messages sent
just before dying are never lost.

Example:
    loop = ControlLoop(lg, config, EchoHandler)
    loop.run()  # returns after a fatal signal once every worker exited
"""

from __future__ import annotations

import os
import queue
import signal
import socket
from collections import deque
from multiprocessing.connection import wait
from typing import Any

from .channel import ChannelClosed as ChannelClosedError
from .clock import Clock, MonotonicClock, TimerQueue
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
    ResourceSampled,
    Sample,
    Send,
    SignalReceived,
    Spawn,
    Spawned,
    SpawnFailed,
    SuspendSelf,
    TimerFired,
)
from .exceptions import SpawnError
from .listener import SharedListener
from .log import Logger
from .observability import PoolHooks
from .operator import Operator, PoolHealth
from .process import ProcessBackend
from .relay import SignalRelay
from .sampler import ResourceSampler
from .supervisor import Supervisor
from .worker import worker_main


class ControlLoop:
    """
    Single-threaded event loop supervising the worker pool.

    Args:
        lg: Logger instance
        config: Supervisor configuration
        handler: Request handler class or "module:attr" path run by workers
        clock: Time source
        hooks: Observability hooks and counters
        backend: Process backend (defaults to multiprocessing workers)
        listener: Shared listener (defaults to one built from config.listener)
        sampler: Resource sampler (defaults to psutil)
        handle_signals: Install the signal relay; requires the main thread
    """

    def __init__(
        self,
        lg: Logger,
        config: SupervisorConfig,
        handler: Any,
        clock: Clock | None = None,
        hooks: PoolHooks | None = None,
        backend: ProcessBackend | None = None,
        listener: SharedListener | None = None,
        sampler: ResourceSampler | None = None,
        handle_signals: bool = True,
    ) -> None:
        self._lg = lg
        self._config = config
        self._handler = handler
        self._clock = clock or MonotonicClock()
        self._supervisor = Supervisor(config, lg, clock=self._clock, hooks=hooks)
        self._backend = backend or ProcessBackend(
            worker_main, start_method=config.pool.start_method
        )
        self._listener = listener or SharedListener(lg, config.listener)
        self._sampler = sampler or ResourceSampler(lg, self._clock)
        self._relay = SignalRelay(lg) if handle_signals else None
        self._timers = TimerQueue(self._clock)

        self._requests: queue.SimpleQueue[Event] = queue.SimpleQueue()
        self._wakeup_r, self._wakeup_w = socket.socketpair()
        self._wakeup_r.setblocking(False)
        self._wakeup_w.setblocking(False)

        self._pending: deque[Event] = deque()
        self._dispatching = False
        self._health: PoolHealth | None = None
        self._operator = Operator(self.submit, lambda: self._health)

    @property
    def supervisor(self) -> Supervisor:
        return self._supervisor

    @property
    def operator(self) -> Operator:
        return self._operator

    @property
    def listener(self) -> SharedListener:
        return self._listener

    @property
    def timers(self) -> TimerQueue:
        return self._timers

    def health(self) -> PoolHealth | None:
        return self._health

    def submit(self, event: Event) -> None:
        """Enqueue an event from any thread (or a signal handler) and wake the loop."""
        self._requests.put(event)
        try:
            self._wakeup_w.send(b"\0")
        except OSError:
            # Buffer full (a wakeup is already pending) or the loop has closed
            pass

    def run(self) -> int:
        """
        Supervise until shutdown completes.

        Returns:
            Process exit code for the supervisor
        """
        try:
            self.start()
            while not self._supervisor.finished:
                self.run_once(self._timers.timeout())
            self._lg.info("supervisor stopped", extra=self._supervisor.hooks.stats.as_dict())
        finally:
            self.close()
        return 0

    def start(self) -> None:
        """Open the listener, install the signal relay and fill the pool."""
        self._listener.open()
        if self._relay is not None:
            self._relay.install(lambda signum: self.submit(SignalReceived(signum)))
        self._execute(self._supervisor.start())
        self._publish()

    def close(self) -> None:
        """Restore signal handlers, kill leftover workers and release sockets."""
        if self._relay is not None:
            self._relay.restore()
        self._backend.kill_all()
        self._listener.close()
        self._wakeup_r.close()
        self._wakeup_w.close()
        self._publish()

    def run_once(self, timeout: float | None) -> None:
        """Wait for the next batch of events (at most `timeout` seconds) and handle it."""
        channels: dict[Any, int] = {}
        sentinels: dict[int, int] = {}
        for wp in self._backend.workers():
            if not (wp.channel.closed or wp.channel.eof):
                channels[wp.channel.connection] = wp.worker_id
            sentinels[wp.sentinel] = wp.worker_id

        ready = wait([*channels, *sentinels, self._wakeup_r], timeout)

        for obj in ready:
            if obj in channels:
                self._read_channel(channels[obj])
        for obj in ready:
            if isinstance(obj, int) and obj in sentinels:
                self._process_exited(sentinels[obj])
        if self._wakeup_r in ready:
            self._drain_wakeup()
        self._drain_requests()

        for key in self._timers.pop_due():
            self._dispatch(TimerFired(key))
        self._publish()

    # Observations

    def _read_channel(self, worker_id: int) -> None:
        wp = self._backend.get(worker_id)
        if wp is None:
            return
        for message in wp.channel.drain():
            self._dispatch(MessageReceived(message, source=worker_id))
        if wp.channel.eof:
            self._dispatch(ChannelClosed(worker_id))

    def _process_exited(self, worker_id: int) -> None:
        wp = self._backend.get(worker_id)
        if wp is None:
            return
        if not (wp.channel.closed or wp.channel.eof):
            self._read_channel(worker_id)
        exit_code = self._backend.reap(worker_id)
        self._dispatch(ProcessExited(worker_id, exit_code))

    def _drain_wakeup(self) -> None:
        while True:
            try:
                if not self._wakeup_r.recv(4096):
                    return
            except BlockingIOError:
                return

    def _drain_requests(self) -> None:
        while True:
            try:
                event = self._requests.get_nowait()
            except queue.Empty:
                return
            self._dispatch(event)

    def _publish(self) -> None:
        self._health = self._supervisor.health()

    # Dispatch

    def _dispatch(self, event: Event) -> None:
        """Feed an event to the supervisor; events raised by effects are handled in order."""
        self._pending.append(event)
        if self._dispatching:
            return
        self._dispatching = True
        try:
            while self._pending:
                self._execute(self._supervisor.handle(self._pending.popleft()))
        finally:
            self._dispatching = False

    def _execute(self, effects: list[Effect]) -> None:
        for effect in effects:
            if isinstance(effect, Spawn):
                self._spawn(effect.worker_id)
            elif isinstance(effect, Send):
                self._send(effect)
            elif isinstance(effect, Kill):
                self._lg.debug("killing worker", extra={"worker": effect.worker_id})
                self._backend.kill(effect.worker_id)
            elif isinstance(effect, Relay):
                self._backend.signal(effect.worker_id, effect.signum)
            elif isinstance(effect, SuspendSelf):
                os.kill(os.getpid(), signal.SIGSTOP)
            elif isinstance(effect, ArmTimer):
                self._timers.arm(effect.key, effect.delay)
            elif isinstance(effect, CancelTimer):
                self._timers.cancel(effect.key)
            elif isinstance(effect, Sample):
                self._sample(effect)
            else:
                raise TypeError(f"unsupported effect: {effect!r}")

    def _spawn(self, worker_id: int) -> None:
        try:
            wp = self._backend.spawn(
                worker_id, self._listener.socket, self._handler, self._config.logging
            )
        except SpawnError as e:
            self._dispatch(SpawnFailed(worker_id, str(e)))
            return
        record = self._supervisor.registry.find(worker_id)
        if record is not None:
            record.channel = wp.channel
        self._dispatch(Spawned(worker_id, wp.pid or 0))

    def _send(self, effect: Send) -> None:
        wp = self._backend.get(effect.worker_id)
        if wp is None:
            return
        try:
            wp.channel.send(effect.message)
        except ChannelClosedError as e:
            # The worker's exit will be observed through its sentinel
            self._lg.warning(
                "could not send to worker",
                extra={"worker": effect.worker_id, "tag": effect.message.tag.value, "error": str(e)},
            )

    def _sample(self, effect: Sample) -> None:
        snapshot = self._sampler.sample(effect.pid)
        if snapshot is not None:
            self._dispatch(ResourceSampled(effect.worker_id, snapshot.rss, snapshot.taken_at))
