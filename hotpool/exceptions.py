"""
Unified exception hierarchy for the worker-pool supervisor.

Every error raised by hotpool derives from PoolError, so callers can catch
all supervisor failures with a single except clause while still matching
the specific subclasses when they care about the cause.
"""

from typing import Any


class PoolError(Exception):
    """
    Base exception for all supervisor errors.

    Example:
        try:
            hotpool.serve(EchoHandler, config)
        except PoolError as e:
            lg.error("supervisor failed", extra={"exception": e})
    """

    def __init__(self, message: str, **context: Any) -> None:
        """
        Initialize the exception with a message and optional context.

        Args:
            message: Human-readable error message
            **context: Additional context information (stored in self.context)
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """String representation with context if available."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


class ConfigError(PoolError):
    """
    Configuration-related errors.

    Examples:
        - Config file not found or too large
        - Invalid YAML syntax
        - Pool size below one
        - Negative or zero timeouts
    """

    pass


class ProtocolViolation(PoolError):
    """
    A control message arrived for a worker that is not in the state the
    message requires, for a worker the registry does not know, or with a
    tag that only the supervisor may send.

    The supervisor never lets this escape its event loop: the message is
    discarded and the worker's recorded state stays authoritative.
    """

    pass


class IllegalTransition(PoolError):
    """Raised when a lifecycle transition is not an edge of the state graph."""

    pass


class RegistryError(PoolError):
    """Registry bookkeeping errors."""

    pass


class DuplicateWorkerError(RegistryError):
    """A record with the same worker id is already registered."""

    pass


class UnknownWorkerError(RegistryError):
    """No record exists for the given worker id."""

    pass


class SpawnError(PoolError):
    """A worker process could not be created."""

    pass


class ListenerError(PoolError):
    """The shared listening socket could not be created or leased."""

    pass
