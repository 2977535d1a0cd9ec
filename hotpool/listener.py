"""
Shared listening socket and the accept-capability ledger.

The supervisor creates and owns the listening socket. Workers inherit it,
but a worker only accepts from it after the supervisor granted a lease
token with START; the token is revoked with STOP (or when the worker
exits). The ledger is the single record of who holds the capability.

Example:
    listener = SharedListener(lg, ListenerConfig(port=0))
    listener.open()
    host, port = listener.address
    ...
    listener.close()
"""

from __future__ import annotations

import itertools
import socket

from .config import ListenerConfig
from .exceptions import ListenerError
from .log import Logger


class LeaseLedger:
    """Which worker currently holds which accept lease."""

    def __init__(self) -> None:
        self._holders: dict[int, int] = {}
        self._tokens = itertools.count(1)

    def __len__(self) -> int:
        return len(self._holders)

    def grant(self, worker_id: int) -> int:
        """
        Grant a new lease to a worker.

        Raises:
            ListenerError: If the worker already holds a lease
        """
        if worker_id in self._holders:
            raise ListenerError(
                "worker already holds a lease",
                worker=worker_id,
                lease=self._holders[worker_id],
            )
        token = next(self._tokens)
        self._holders[worker_id] = token
        return token

    def revoke(self, worker_id: int) -> int | None:
        """Revoke a worker's lease; returns the revoked token, if any."""
        return self._holders.pop(worker_id, None)

    def holds(self, worker_id: int) -> bool:
        return worker_id in self._holders

    def holders(self) -> dict[int, int]:
        """Copy of the worker id to lease token mapping."""
        return dict(self._holders)


class SharedListener:
    """
    The supervisor-owned listening TCP socket.

    The socket is created inheritable so it can be handed to worker
    processes; address reuse is enabled so a restarted supervisor can bind
    again immediately.

    Args:
        lg: Logger instance
        config: Listener configuration
    """

    def __init__(self, lg: Logger, config: ListenerConfig) -> None:
        self._lg = lg
        self._config = config
        self._sock: socket.socket | None = None

    @property
    def socket(self) -> socket.socket:
        """
        Raises:
            ListenerError: If the listener is not open
        """
        if self._sock is None:
            raise ListenerError("listener is not open")
        return self._sock

    @property
    def address(self) -> tuple[str, int]:
        """Bound (host, port); the real port when configured with port 0."""
        host, port = self.socket.getsockname()[:2]
        return host, port

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    def open(self) -> socket.socket:
        """
        Bind and listen.

        Raises:
            ListenerError: If the socket cannot be bound
        """
        if self._sock is not None:
            return self._sock

        host, port = self._config.host, self._config.port
        try:
            family = socket.AF_INET6 if ":" in host else socket.AF_INET
            sock = socket.socket(family, socket.SOCK_STREAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
            sock.listen(self._config.backlog)
            sock.set_inheritable(True)
        except OSError as e:
            self._lg.error(
                "failed to open listener", extra={"host": host, "port": port, "exception": e}
            )
            raise ListenerError("cannot bind listener", host=host, port=port, error=str(e)) from e

        self._sock = sock
        self._lg.info(
            "listening", extra={"host": self.address[0], "port": self.address[1]}
        )
        return sock

    def close(self) -> None:
        if self._sock is None:
            return
        try:
            self._sock.close()
        finally:
            self._sock = None
        self._lg.debug("listener closed")
