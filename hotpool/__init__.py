"""
hotpool: zero-downtime worker-pool supervisor.

A supervisor process keeps N worker processes serving one shared listening
socket, replaces workers that exceed a memory budget or an age limit (or on
operator request) with make-before-break handovers, and relays OS signals
to the whole fleet.

Example:
    import socketserver
    import hotpool

    class EchoHandler(socketserver.BaseRequestHandler):
        def handle(self):
            self.request.sendall(self.request.recv(1024))

    if __name__ == "__main__":
        hotpool.serve(EchoHandler, "etc/hotpool.yaml")
"""

from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any

import setproctitle

from .config import SupervisorConfig, load_config
from .exceptions import (
    ConfigError,
    DuplicateWorkerError,
    IllegalTransition,
    ListenerError,
    PoolError,
    ProtocolViolation,
    RegistryError,
    SpawnError,
    UnknownWorkerError,
)
from .log import LogConfig, Logger, LoggerFactory
from .loop import ControlLoop
from .observability import Alert, HookContext, HookEvent, PoolHooks, PoolStats
from .operator import Operator, PoolHealth
from .size import InvalidSizeError, size_str, size_to_bytes
from .state import WorkerState
from .supervisor import Supervisor

# Version is read from package metadata (pyproject.toml)
try:
    __version__ = version("hotpool")
except PackageNotFoundError:
    # Package not installed, use fallback (development mode)
    __version__ = "0.1.0-dev"


def _as_config(config: SupervisorConfig | dict[str, Any] | str | Path | None) -> SupervisorConfig:
    if config is None:
        return SupervisorConfig()
    if isinstance(config, SupervisorConfig):
        return config
    if isinstance(config, dict):
        return SupervisorConfig.from_dict(config)
    return load_config(config)


def serve(
    handler: Any,
    config: SupervisorConfig | dict[str, Any] | str | Path | None = None,
    hooks: PoolHooks | None = None,
    lg: Logger | None = None,
) -> int:
    """
    Run a supervised worker pool until a fatal signal stops it.

    Must be called from the main thread of the main module (workers are
    started with the configured multiprocessing start method).

    Args:
        handler: socketserver request handler class or "module:attr" path
        config: Configuration object, plain dict, or YAML file path
        hooks: Observability hooks for degraded events
        lg: Logger (default: console logger built from config.logging)

    Returns:
        Exit code for the supervisor process

    Raises:
        ConfigError: If the configuration is invalid
        ListenerError: If the listening socket cannot be bound
    """
    cfg = _as_config(config)
    if lg is None:
        lg = LoggerFactory.create("/supervisor", LogConfig.from_config(cfg.logging))
    setproctitle.setproctitle("hotpool: supervisor")
    return ControlLoop(lg, cfg, handler, hooks=hooks).run()


__all__ = [
    "__version__",
    "serve",
    # Core
    "ControlLoop",
    "Operator",
    "PoolHealth",
    "Supervisor",
    "SupervisorConfig",
    "WorkerState",
    "load_config",
    # Observability
    "Alert",
    "HookContext",
    "HookEvent",
    "PoolHooks",
    "PoolStats",
    # Logging
    "LogConfig",
    "Logger",
    "LoggerFactory",
    # Sizes
    "InvalidSizeError",
    "size_str",
    "size_to_bytes",
    # Exceptions
    "ConfigError",
    "DuplicateWorkerError",
    "IllegalTransition",
    "ListenerError",
    "PoolError",
    "ProtocolViolation",
    "RegistryError",
    "SpawnError",
    "UnknownWorkerError",
]
