"""
Tests for the worker process backend with real child processes.
"""

import signal
import socket
import time
from multiprocessing.connection import wait

import psutil
import pytest

from hotpool.exceptions import SpawnError
from hotpool.process import ProcessBackend
from hotpool.protocol import MessageTag
from hotpool.relay import SignalRelay
from hotpool.worker import worker_main
from tests.helpers.handlers import EchoHandler
from tests.helpers.targets import announce_and_exit, sleep_forever


@pytest.fixture
def backends():
    created = []

    def factory(target, start_method="spawn"):
        backend = ProcessBackend(target, start_method=start_method, join_timeout=10.0)
        created.append(backend)
        return backend

    yield factory
    for backend in created:
        backend.kill_all()


@pytest.mark.integration
@pytest.mark.slow
class TestProcessBackend:
    """Test spawning, signalling and reaping."""

    def test_spawn_and_reap(self, backends):
        """Test a worker reports in over its channel and its exit code is collected."""
        backend = backends(announce_and_exit)

        wp = backend.spawn(1, 7)

        message = wp.channel.recv(timeout=30.0)
        assert message.tag is MessageTag.ONLINE
        assert message.payload["pid"] == wp.pid
        assert wait([wp.sentinel], timeout=30.0)
        assert backend.reap(1) == 7
        assert 1 not in backend

    def test_kill(self, backends):
        """Test kill terminates with SIGKILL."""
        backend = backends(sleep_forever)
        wp = backend.spawn(1)
        wp.channel.recv(timeout=30.0)

        assert backend.kill(1) is True

        assert wait([wp.sentinel], timeout=30.0)
        assert backend.reap(1) == -signal.SIGKILL

    def test_signal(self, backends):
        """Test signals are delivered to the worker process."""
        backend = backends(sleep_forever)
        wp = backend.spawn(1)
        wp.channel.recv(timeout=30.0)

        assert backend.signal(1, signal.SIGTERM) is True

        assert wait([wp.sentinel], timeout=30.0)
        assert backend.reap(1) == -signal.SIGTERM

    def test_signal_unknown_worker(self, backends):
        """Test signalling an unknown worker returns False."""
        backend = backends(sleep_forever)

        assert backend.signal(99, signal.SIGTERM) is False
        assert backend.reap(99) is None

    def test_kill_all(self, backends):
        """Test kill_all leaves no worker behind."""
        backend = backends(sleep_forever)
        workers = [backend.spawn(worker_id) for worker_id in (1, 2)]
        for wp in workers:
            wp.channel.recv(timeout=30.0)

        backend.kill_all()

        assert len(backend) == 0
        assert all(wp.channel.closed for wp in workers)

    def test_spawn_failure(self, backends):
        """Test an argument that cannot reach the child raises SpawnError."""
        backend = backends(sleep_forever)

        with pytest.raises(SpawnError):
            backend.spawn(1, lambda: None)

        assert len(backend) == 0


# =============================================================================
# Forked workers
# =============================================================================


def _wait_for_status(proc, status, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if proc.status() == status:
            return True
        time.sleep(0.05)
    return False


@pytest.mark.integration
@pytest.mark.slow
class TestForkedWorker:
    """Test a worker forked from a process with the relay installed."""

    def test_relay_handlers_not_inherited(self, backends, quiet_lg):
        """Test a forked worker suspends on SIGTSTP instead of relaying it."""
        backend = backends(worker_main, start_method="fork")
        sock = socket.create_server(("127.0.0.1", 0))
        relay = SignalRelay(quiet_lg)
        relay.install(lambda signum: None)
        try:
            wp = backend.spawn(1, sock, EchoHandler, {"level": "error"})
        finally:
            relay.restore()
            sock.close()

        assert wp.channel.recv(timeout=30.0).tag is MessageTag.ONLINE
        assert wp.channel.recv(timeout=30.0).tag is MessageTag.READY
        proc = psutil.Process(wp.pid)

        assert backend.signal(1, signal.SIGTSTP) is True
        assert _wait_for_status(proc, psutil.STATUS_STOPPED)

        backend.signal(1, signal.SIGCONT)
        backend.signal(1, signal.SIGTERM)
        assert wait([wp.sentinel], timeout=30.0)
        assert backend.reap(1) == 0
