"""Private per-worker control channel over a multiprocessing connection."""

from __future__ import annotations

import logging
from multiprocessing.connection import Connection
from typing import Any

from .exceptions import ProtocolViolation
from .protocol import ControlMessage, MessageTag

logger = logging.getLogger("hotpool.channel")


class ChannelClosed(Exception):
    """The peer closed its end of the channel (or ours is already closed)."""


class ControlChannel:
    """
    Ordered, bidirectional control channel to one worker.

    Wraps one end of a `multiprocessing.Pipe()`. The supervisor holds the
    parent end inside the worker's registry record; the worker holds the
    child end. Messages travel in their plain-dict wire form.

    Example:
        parent, child = mp.Pipe()
        channel = ControlChannel(parent, worker_id=3)
        channel.send(start_message(3, lease=1))
        for message in channel.drain():
            ...
    """

    def __init__(self, conn: Connection, worker_id: int) -> None:
        self._conn = conn
        self._worker_id = worker_id
        self._closed = False
        self._eof = False

    @property
    def worker_id(self) -> int:
        return self._worker_id

    @property
    def closed(self) -> bool:
        """True once close() ran."""
        return self._closed

    @property
    def eof(self) -> bool:
        """True once the peer's end was observed closed."""
        return self._eof

    @property
    def connection(self) -> Connection:
        """Underlying connection, usable with multiprocessing.connection.wait()."""
        return self._conn

    def fileno(self) -> int:
        return self._conn.fileno()

    def send(self, message: ControlMessage) -> None:
        """
        Send one message.

        Raises:
            ChannelClosed: If either end is closed
        """
        if self._closed:
            raise ChannelClosed(f"channel to worker {self._worker_id} is closed")
        try:
            self._conn.send(message.to_wire())
        except (BrokenPipeError, EOFError, OSError) as e:
            self._eof = True
            raise ChannelClosed(str(e)) from e

    def poll(self, timeout: float | None = 0.0) -> bool:
        """True if a message (or EOF) is ready to be read."""
        if self._closed or self._eof:
            return False
        try:
            return self._conn.poll(timeout)
        except (EOFError, OSError):
            self._eof = True
            return False

    def recv(self, timeout: float | None = None) -> ControlMessage | None:
        """
        Receive one message.

        Args:
            timeout: Seconds to wait; None blocks until a message arrives

        Returns:
            The message, or None if nothing arrived within the timeout

        Raises:
            ChannelClosed: If the peer closed the channel
            ProtocolViolation: If the peer sent something that is not a message
        """
        if self._closed or self._eof:
            raise ChannelClosed(f"channel to worker {self._worker_id} is closed")
        try:
            if timeout is not None and not self._conn.poll(timeout):
                return None
            data = self._conn.recv()
        except (EOFError, OSError) as e:
            self._eof = True
            raise ChannelClosed(f"worker {self._worker_id} closed its channel") from e
        return ControlMessage.from_wire(data)

    def drain(self) -> list[ControlMessage]:
        """
        Read every message that is available without blocking.

        Stops at EOF (check `eof` afterwards). Malformed data is logged and
        skipped; the channel stays usable.
        """
        messages = []
        while self.poll(0):
            try:
                message = self.recv()
            except ChannelClosed:
                break
            except ProtocolViolation as e:
                logger.warning(
                    "discarding malformed message",
                    extra={"worker": self._worker_id, "error": str(e)},
                )
                continue
            if message is not None:
                messages.append(message)
        return messages

    def close(self) -> bool:
        """
        Close our end of the channel.

        Returns:
            True if this call closed it, False if it was already closed
        """
        if self._closed:
            return False
        self._closed = True
        try:
            self._conn.close()
        except OSError as e:
            logger.debug(
                "error closing channel", extra={"worker": self._worker_id, "error": str(e)}
            )
        return True


class WorkerChannel(ControlChannel):
    """
    Child end of a control channel, used inside the worker process.

    Example:
        channel = WorkerChannel(conn, worker_id)
        channel.announce(MessageTag.ONLINE, pid=os.getpid())
    """

    def announce(self, tag: MessageTag, **payload: Any) -> None:
        """Send a lifecycle message about this worker."""
        self.send(ControlMessage(tag, self.worker_id, payload))
