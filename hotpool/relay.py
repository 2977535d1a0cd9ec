"""
Signal relay for the supervisor process.

The relay table is declarative: each catchable signal the supervisor cares
about maps to what happens to the fleet and to the supervisor itself.

    fatal    relay to every worker, then shut down once all have exited
    forward  relay to every worker, supervisor does nothing else
    suspend  relay to every worker, then the supervisor stops itself

SIGKILL and SIGSTOP cannot be caught and are never relayed.

Handlers installed by SignalRelay only hand the signal number to a
callback (which enqueues it for the control loop); all decisions happen on
the loop's thread.

Example:
    relay = SignalRelay(lg)
    relay.install(lambda signum: events.put(SignalReceived(signum)))
    try:
        loop.run()
    finally:
        relay.restore()
"""

from __future__ import annotations

import signal
from collections.abc import Callable
from enum import Enum
from types import FrameType
from typing import Any

from .log import Logger


class RelayAction(Enum):
    FATAL = "fatal"
    FORWARD = "forward"
    SUSPEND = "suspend"


RELAY_TABLE: dict[signal.Signals, RelayAction] = {
    signal.SIGTERM: RelayAction.FATAL,
    signal.SIGINT: RelayAction.FATAL,
    signal.SIGQUIT: RelayAction.FATAL,
    signal.SIGHUP: RelayAction.FORWARD,
    signal.SIGUSR1: RelayAction.FORWARD,
    signal.SIGUSR2: RelayAction.FORWARD,
    signal.SIGTSTP: RelayAction.SUSPEND,
    signal.SIGCONT: RelayAction.FORWARD,
}

UNRELAYABLE = frozenset({signal.SIGKILL, signal.SIGSTOP})


def action_for(signum: int) -> RelayAction | None:
    """Relay action for a signal number, None if the signal is not relayed."""
    try:
        return RELAY_TABLE.get(signal.Signals(signum))
    except ValueError:
        return None


def signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


def reset_signals() -> None:
    """
    Restore the default disposition of every relayed signal.

    A forked worker inherits the supervisor's handlers, which would relay
    into a pool the worker does not own.
    """
    for signum in RELAY_TABLE:
        signal.signal(signum, signal.SIG_DFL)


class SignalRelay:
    """
    Installs and restores the supervisor's signal handlers.

    Args:
        lg: Logger instance
        table: Signal to action mapping (defaults to RELAY_TABLE)
    """

    def __init__(
        self, lg: Logger, table: dict[signal.Signals, RelayAction] | None = None
    ) -> None:
        self._lg = lg
        self._table = dict(RELAY_TABLE if table is None else table)
        self._original_handlers: dict[signal.Signals, Any] = {}
        self._callback: Callable[[int], None] | None = None

    @property
    def installed(self) -> bool:
        return bool(self._original_handlers)

    @property
    def table(self) -> dict[signal.Signals, RelayAction]:
        return dict(self._table)

    def install(self, callback: Callable[[int], None]) -> dict[signal.Signals, Any]:
        """
        Install a handler for every signal in the table.

        Must be called from the main thread.

        Args:
            callback: Called with the signal number from the handler

        Returns:
            The handlers that were in place before
        """
        if self.installed:
            return dict(self._original_handlers)

        self._callback = callback
        for signum in self._table:
            if signum in UNRELAYABLE:
                continue
            self._original_handlers[signum] = signal.signal(signum, self._handle_signal)
        self._lg.debug(
            "signal relay installed",
            extra={"signals": ",".join(s.name for s in self._original_handlers)},
        )
        return dict(self._original_handlers)

    def restore(self) -> None:
        """Put back the handlers that were in place before install()."""
        for signum, handler in self._original_handlers.items():
            signal.signal(signum, handler)
        self._original_handlers.clear()
        self._callback = None

    def _handle_signal(self, signum: int, frame: FrameType | None) -> None:
        if self._callback is not None:
            self._callback(signum)
