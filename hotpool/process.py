"""
Worker process backend.

Spawns worker processes with a private control pipe each, delivers
signals, force-terminates, and reaps them once their sentinel fires. The
backend never decides anything; the control loop calls it to carry out the
supervisor's effects.
"""

from __future__ import annotations

import logging
import multiprocessing as mp
import os
import signal
from collections.abc import Callable
from dataclasses import dataclass
from multiprocessing.process import BaseProcess
from typing import Any

from .channel import ControlChannel
from .exceptions import SpawnError

logger = logging.getLogger("hotpool.process")


@dataclass
class WorkerProcess:
    """A spawned worker process and the supervisor's end of its channel."""

    worker_id: int
    process: BaseProcess
    channel: ControlChannel

    @property
    def pid(self) -> int | None:
        return self.process.pid

    @property
    def sentinel(self) -> int:
        return self.process.sentinel


class ProcessBackend:
    """
    Creates and controls worker processes.

    The target is called in the child as
    `target(worker_id, conn, *args)`, where conn is the child end of the
    control pipe.

    Example:
        backend = ProcessBackend(worker_main, start_method="spawn")
        wp = backend.spawn(1, listen_sock, EchoHandler, {"level": "info"})
        ...
        backend.kill(1)
        exit_code = backend.reap(1)
    """

    def __init__(
        self,
        target: Callable[..., Any],
        start_method: str = "spawn",
        join_timeout: float = 5.0,
    ) -> None:
        """
        Initialize the backend.

        Args:
            target: Callable to run in each worker process
            start_method: multiprocessing start method (spawn, fork, forkserver)
            join_timeout: Seconds to wait for a killed process during cleanup
        """
        self._target = target
        self._ctx = mp.get_context(start_method)
        self._join_timeout = join_timeout
        self._procs: dict[int, WorkerProcess] = {}

    def __len__(self) -> int:
        return len(self._procs)

    def __contains__(self, worker_id: object) -> bool:
        return worker_id in self._procs

    def get(self, worker_id: int) -> WorkerProcess | None:
        return self._procs.get(worker_id)

    def workers(self) -> list[WorkerProcess]:
        return list(self._procs.values())

    def spawn(self, worker_id: int, *args: Any) -> WorkerProcess:
        """
        Start a worker process.

        Raises:
            SpawnError: If the process could not be started
        """
        parent, child = self._ctx.Pipe(duplex=True)
        proc = self._ctx.Process(
            target=self._target,
            args=(worker_id, child, *args),
            name=f"hotpool-worker-{worker_id}",
        )
        try:
            proc.start()
        except Exception as e:
            parent.close()
            raise SpawnError("failed to start worker", worker=worker_id, error=str(e)) from e
        finally:
            child.close()

        wp = WorkerProcess(worker_id, proc, ControlChannel(parent, worker_id))
        self._procs[worker_id] = wp
        logger.debug("worker process started", extra={"worker": worker_id, "pid": proc.pid})
        return wp

    def signal(self, worker_id: int, signum: int) -> bool:
        """
        Deliver a signal to a worker.

        Returns:
            False if the worker is unknown or already gone
        """
        wp = self._procs.get(worker_id)
        if wp is None or wp.pid is None:
            return False
        try:
            os.kill(wp.pid, signum)
        except ProcessLookupError:
            return False
        return True

    def kill(self, worker_id: int) -> bool:
        """Unconditionally terminate a worker (SIGKILL)."""
        return self.signal(worker_id, signal.SIGKILL)

    def reap(self, worker_id: int) -> int | None:
        """
        Collect an exited worker and forget it.

        Call once the worker's sentinel is ready.

        Returns:
            The exit code (negative signal number if killed by a signal)
        """
        wp = self._procs.pop(worker_id, None)
        if wp is None:
            return None
        wp.process.join(self._join_timeout)
        exit_code = wp.process.exitcode
        if exit_code is not None:
            wp.process.close()
        return exit_code

    def kill_all(self) -> None:
        """Kill and reap every remaining worker."""
        for worker_id in list(self._procs):
            wp = self._procs[worker_id]
            if wp.process.is_alive():
                logger.warning(
                    "killing leftover worker", extra={"worker": worker_id, "pid": wp.pid}
                )
                self.kill(worker_id)
            self.reap(worker_id)
            wp.channel.close()
