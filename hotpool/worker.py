"""
Worker runtime: the code running inside each worker process.

A worker announces itself (ONLINE), prepares its accept server (READY),
and only starts accepting from the inherited listening socket once the
supervisor sends START. On STOP, or on a relayed fatal signal, it stops
accepting, reports STOPPED, finishes in-flight requests, closes its
channel and exits.

The application is a socketserver request handler:

    class EchoHandler(socketserver.BaseRequestHandler):
        def handle(self):
            self.request.sendall(self.request.recv(1024))

    hotpool.serve(EchoHandler, config)

or an import path such as "myapp.handlers:EchoHandler".
"""

from __future__ import annotations

import importlib
import os
import signal
import socket
import socketserver
import threading
from multiprocessing.connection import Connection
from types import FrameType
from typing import Any

import setproctitle

from .channel import ChannelClosed, WorkerChannel
from .exceptions import ConfigError
from .log import LogConfig, Logger, LoggerFactory
from .protocol import MessageTag
from .relay import reset_signals

# How often blocked waits re-check the stop flag
POLL_INTERVAL = 0.2

STOP_SIGNALS = (signal.SIGTERM, signal.SIGINT, signal.SIGQUIT)
NOTICE_SIGNALS = (signal.SIGHUP, signal.SIGUSR1, signal.SIGUSR2)


def resolve_handler(handler: type[socketserver.BaseRequestHandler] | str) -> Any:
    """
    Resolve a handler class or a "module:attr" import path.

    Raises:
        ConfigError: If the path cannot be imported or is not a handler class
    """
    if not isinstance(handler, str):
        return handler
    module_name, _, attr = handler.partition(":")
    if not module_name or not attr:
        raise ConfigError("handler must look like 'module:attr'", handler=handler)
    try:
        obj = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise ConfigError("cannot import handler", handler=handler, error=str(e)) from e
    if not (isinstance(obj, type) and issubclass(obj, socketserver.BaseRequestHandler)):
        raise ConfigError("handler is not a socketserver request handler", handler=handler)
    return obj


class WorkerContext:
    """
    Signal handling for a worker process.

    SIGTERM, SIGINT and SIGQUIT request a graceful stop, exactly like a STOP
    message. SIGHUP, SIGUSR1 and SIGUSR2 are logged and otherwise ignored.

    Example:
        with WorkerContext(lg) as ctx:
            while ctx.running:
                ...
    """

    def __init__(self, lg: Logger, handle_signals: bool = True) -> None:
        self._lg = lg
        self._handle_signals = handle_signals
        self._stop = threading.Event()
        self._original_handlers: dict[int, Any] = {}

    @property
    def running(self) -> bool:
        """False after a stop signal or request_stop()."""
        return not self._stop.is_set()

    @property
    def lg(self) -> Logger:
        return self._lg

    def request_stop(self) -> None:
        self._stop.set()

    def __enter__(self) -> WorkerContext:
        if self._handle_signals:
            for signum in STOP_SIGNALS:
                self._original_handlers[signum] = signal.signal(signum, self._handle_stop_signal)
            for signum in NOTICE_SIGNALS:
                self._original_handlers[signum] = signal.signal(signum, self._handle_notice_signal)
        return self

    def __exit__(self, *args: object) -> None:
        for signum, handler in self._original_handlers.items():
            signal.signal(signum, handler)
        self._original_handlers.clear()

    def _handle_stop_signal(self, signum: int, frame: FrameType | None) -> None:
        """Handle a fatal signal by stopping gracefully."""
        self._lg.debug(f"received {signal.Signals(signum).name}, stopping")
        self._stop.set()

    def _handle_notice_signal(self, signum: int, frame: FrameType | None) -> None:
        self._lg.info("received signal", extra={"signal": signal.Signals(signum).name})


class _AcceptServer(socketserver.ThreadingTCPServer):
    """
    Threaded accept server on an already bound and listening socket.

    server_close() waits for in-flight request threads, which is what lets
    a stopping worker drain.
    """

    daemon_threads = False
    block_on_close = True

    def __init__(self, lg: Logger, sock: socket.socket, handler: Any) -> None:
        self._lg = lg
        super().__init__(sock.getsockname()[:2], handler, bind_and_activate=False)
        # Replace the unbound socket TCPServer created with the inherited one
        self.socket.close()
        self.socket = sock

    def handle_error(self, request: Any, client_address: Any) -> None:
        self._lg.exception("error handling request", extra={"client": client_address})


class WorkerRuntime:
    """
    Lifecycle driver for one worker.

    Args:
        worker_id: Id allocated by the supervisor
        channel: Child end of the control channel
        sock: Inherited listening socket
        handler: Request handler class
        lg: Logger instance
        handle_signals: Install stop and notice signal handlers
    """

    def __init__(
        self,
        worker_id: int,
        channel: WorkerChannel,
        sock: socket.socket,
        handler: Any,
        lg: Logger,
        handle_signals: bool = True,
    ) -> None:
        self._worker_id = worker_id
        self._channel = channel
        self._sock = sock
        self._handler = handler
        self._lg = lg
        self._context = WorkerContext(lg, handle_signals=handle_signals)
        self._server: _AcceptServer | None = None
        self._serve_thread: threading.Thread | None = None
        self._lease: int | None = None

    @property
    def lease(self) -> int | None:
        """Accept lease granted with START, None before START and after STOP."""
        return self._lease

    def run(self) -> int:
        """Run the worker until stopped; returns the process exit code."""
        with self._context:
            try:
                self._channel.announce(MessageTag.ONLINE, pid=os.getpid())
                self._server = _AcceptServer(self._lg, self._sock, self._handler)
                self._channel.announce(MessageTag.READY)

                if self._wait_for(MessageTag.START):
                    self._listen()
                    self._wait_for(MessageTag.STOP)
                    self._stop_listening()
            except ChannelClosed:
                self._lg.warning("supervisor closed the control channel")
                self._stop_listening(report=False)
            finally:
                if self._server is not None:
                    self._server.server_close()
                self._channel.close()
        self._lg.debug("worker exiting")
        return 0

    def _wait_for(self, tag: MessageTag) -> bool:
        """
        Block until the supervisor sends the given command.

        Returns:
            True if it arrived, False if a stop was requested first
        """
        while self._context.running:
            message = self._channel.recv(timeout=POLL_INTERVAL)
            if message is None:
                continue
            if message.tag is tag:
                if tag is MessageTag.START:
                    self._lease = message.payload.get("lease")
                return True
            self._lg.warning(
                "ignoring unexpected command",
                extra={"tag": message.tag.value, "expected": tag.value},
            )
        return False

    def _listen(self) -> None:
        assert self._server is not None
        self._serve_thread = threading.Thread(
            target=self._server.serve_forever,
            kwargs={"poll_interval": POLL_INTERVAL},
            name=f"hotpool-accept-{self._worker_id}",
            daemon=True,
        )
        self._serve_thread.start()
        self._channel.announce(MessageTag.LISTENING, lease=self._lease)
        self._lg.debug("accepting connections", extra={"lease": self._lease})

    def _stop_listening(self, report: bool = True) -> None:
        if self._serve_thread is None or self._server is None:
            return
        self._server.shutdown()
        self._serve_thread.join()
        self._serve_thread = None
        if report:
            self._channel.announce(MessageTag.STOPPED, lease=self._lease)
        self._lease = None
        self._lg.debug("stopped accepting, draining")


def worker_main(
    worker_id: int,
    conn: Connection,
    sock: socket.socket,
    handler: Any,
    log_config: dict[str, Any] | None = None,
) -> None:
    """Entry point of a worker process."""
    reset_signals()
    setproctitle.setproctitle(f"hotpool: worker {worker_id}")
    lg = LoggerFactory.create(
        "/worker",
        LogConfig.from_config(log_config or {}),
        extra={"worker": worker_id},
    )
    runtime = WorkerRuntime(
        worker_id, WorkerChannel(conn, worker_id), sock, resolve_handler(handler), lg
    )
    code = runtime.run()
    if code:
        raise SystemExit(code)
