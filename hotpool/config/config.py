"""
Supervisor configuration loaded from YAML with environment overrides.

Example `etc/hotpool.yaml`:

    pool:
      size: 4
    listener:
      host: 0.0.0.0
      port: 8080
    replacement:
      memory_limit: 512MB
      sample_interval: 5
      listen_timeout: 10
      drain_timeout: 30
      retry:
        initial_delay: 1
        max_delay: 60
        max_retries: 5
    shutdown:
      timeout: 30
    logging:
      level: info

Environment Variable Override Format:
    HOTPOOL_<SECTION>_<KEY>=value

Examples:
    HOTPOOL_POOL_SIZE=8
    HOTPOOL_LOGGING_LEVEL=debug

Keys that themselves contain underscores are matched greedily, so
HOTPOOL_REPLACEMENT_MEMORY_LIMIT=1GB sets replacement.memory_limit.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from ..exceptions import ConfigError
from ..size import InvalidSizeError, parse_limit
from .constants import DEFAULT_ENV_PREFIX, MAX_CONFIG_SIZE_BYTES, START_METHODS


@dataclass(frozen=True)
class PoolConfig:
    """
    Pool sizing.

    Attributes:
        size: Target number of serving workers (N)
        start_method: multiprocessing start method for workers
    """

    size: int = 2
    start_method: str = "spawn"


@dataclass(frozen=True)
class ListenerConfig:
    """
    Shared listening socket.

    Attributes:
        host: Interface to bind
        port: TCP port (0 picks a free port)
        backlog: Accept queue length; connections queue here during handovers
    """

    host: str = "127.0.0.1"
    port: int = 8000
    backlog: int = 2048


@dataclass(frozen=True)
class RetryConfig:
    """
    Bounded exponential backoff for failed handovers and failed starts.

    Attributes:
        initial_delay: Delay before the first retry in seconds
        max_delay: Upper bound for any single delay
        multiplier: Growth factor between attempts
        max_retries: Attempts before the failure is reported as exhausted
    """

    initial_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    max_retries: int = 5


@dataclass(frozen=True)
class ReplacementConfig:
    """
    When and how workers are replaced.

    Attributes:
        memory_limit: RSS in bytes above which a Listening worker is replaced
            (None disables the resource trigger)
        max_age: Seconds after which a Listening worker is replaced
            (None disables the scheduled trigger)
        sample_interval: Seconds between resource samples
        listen_timeout: Seconds a new worker has to reach Listening
        drain_timeout: Seconds a stopped worker has to exit before it is killed
        retry: Backoff for failed handovers and failed starts
    """

    memory_limit: int | None = None
    max_age: float | None = None
    sample_interval: float = 5.0
    listen_timeout: float = 10.0
    drain_timeout: float = 30.0
    retry: RetryConfig = field(default_factory=RetryConfig)


@dataclass(frozen=True)
class ShutdownConfig:
    """
    Attributes:
        timeout: Seconds workers have to exit after a fatal signal before
            they are killed
    """

    timeout: float = 30.0


@dataclass(frozen=True)
class SupervisorConfig:
    """Root configuration object."""

    pool: PoolConfig = field(default_factory=PoolConfig)
    listener: ListenerConfig = field(default_factory=ListenerConfig)
    replacement: ReplacementConfig = field(default_factory=ReplacementConfig)
    shutdown: ShutdownConfig = field(default_factory=ShutdownConfig)
    logging: dict[str, Any] = field(default_factory=lambda: {"level": "info"})

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SupervisorConfig:
        """
        Build a validated configuration from a plain dictionary.

        Unknown sections and keys are rejected so typos fail loudly.

        Raises:
            ConfigError: If a value is missing, unknown or invalid
        """
        data = dict(data or {})
        _reject_unknown(data, {f.name for f in fields(cls)}, "")

        replacement = dict(data.get("replacement") or {})
        retry = _build(RetryConfig, replacement.pop("retry", None), "replacement.retry")
        if "memory_limit" in replacement:
            try:
                replacement["memory_limit"] = parse_limit(replacement["memory_limit"])
            except InvalidSizeError as e:
                raise ConfigError(str(e), key="replacement.memory_limit") from e

        config = cls(
            pool=_build(PoolConfig, data.get("pool"), "pool"),
            listener=_build(ListenerConfig, data.get("listener"), "listener"),
            replacement=replace(
                _build(ReplacementConfig, replacement, "replacement"), retry=retry
            ),
            shutdown=_build(ShutdownConfig, data.get("shutdown"), "shutdown"),
            logging=dict(data.get("logging") or {"level": "info"}),
        )
        config.validate()
        return config

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def with_pool_size(self, size: int) -> SupervisorConfig:
        """Copy with a different pool size."""
        updated = replace(self, pool=replace(self.pool, size=size))
        updated.validate()
        return updated

    def with_memory_limit(self, limit: int | str | None) -> SupervisorConfig:
        """Copy with a different memory limit."""
        try:
            parsed = parse_limit(limit)
        except InvalidSizeError as e:
            raise ConfigError(str(e), key="replacement.memory_limit") from e
        return replace(
            self, replacement=replace(self.replacement, memory_limit=parsed)
        )

    def validate(self) -> None:
        """
        Check value ranges.

        Raises:
            ConfigError: On the first invalid value
        """
        _require(self.pool.size >= 1, "pool.size must be at least 1", self.pool.size)
        _require(
            self.pool.start_method in START_METHODS,
            f"pool.start_method must be one of {sorted(START_METHODS)}",
            self.pool.start_method,
        )
        _require(
            0 <= self.listener.port <= 65535,
            "listener.port must be between 0 and 65535",
            self.listener.port,
        )
        _require(self.listener.backlog > 0, "listener.backlog must be positive", self.listener.backlog)

        r = self.replacement
        for name in ("sample_interval", "listen_timeout", "drain_timeout"):
            value = getattr(r, name)
            _require(value > 0, f"replacement.{name} must be positive", value)
        if r.max_age is not None:
            _require(r.max_age > 0, "replacement.max_age must be positive", r.max_age)

        retry = r.retry
        _require(retry.initial_delay > 0, "retry.initial_delay must be positive", retry.initial_delay)
        _require(
            retry.max_delay >= retry.initial_delay,
            "retry.max_delay must not be below retry.initial_delay",
            retry.max_delay,
        )
        _require(retry.multiplier >= 1, "retry.multiplier must be at least 1", retry.multiplier)
        _require(retry.max_retries >= 1, "retry.max_retries must be at least 1", retry.max_retries)
        _require(self.shutdown.timeout > 0, "shutdown.timeout must be positive", self.shutdown.timeout)


# Helper functions for SupervisorConfig.from_dict()

# Stand-in defaults for fields whose real default is None
_OPTIONAL_DEFAULTS: dict[str, Any] = {"int": 0, "float": 0.0, "str": ""}


def _require(condition: bool, message: str, value: Any) -> None:
    if not condition:
        raise ConfigError(message, value=value)


def _reject_unknown(data: dict[str, Any], known: set[str], section: str) -> None:
    unknown = sorted(set(data) - known)
    if unknown:
        where = f" in section '{section}'" if section else ""
        raise ConfigError(f"Unknown configuration keys{where}: {', '.join(unknown)}")


def _build(cls: Any, data: dict[str, Any] | None, section: str) -> Any:
    """Instantiate a section dataclass, coercing numeric fields."""
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(f"Section '{section}' must be a mapping", value=data)

    annotations = {f.name: str(f.type) for f in fields(cls)}
    _reject_unknown(data, set(annotations), section)
    defaults = cls()
    values = {}
    for key, value in data.items():
        default = getattr(defaults, key)
        values[key] = _coerce(value, default, f"{section}.{key}", annotations[key])
    return cls(**values)


def _coerce(value: Any, default: Any, key: str, annotation: str = "") -> Any:
    """Coerce a value to the type of the field's default (or its annotation when optional)."""
    if value is None:
        return value
    if default is None:
        # "float | None" and friends: coerce to the first named type
        default = _OPTIONAL_DEFAULTS.get(annotation.split("|")[0].strip())
        if default is None:
            return value
    try:
        if isinstance(default, bool):
            return bool(value)
        if isinstance(default, int):
            if isinstance(value, float) and not value.is_integer():
                raise ValueError(f"{value} is not an integer")
            return int(value)
        if isinstance(default, float):
            return float(value)
        if isinstance(default, str):
            return str(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for '{key}'", value=value) from e
    return value


# Environment overrides


def _convert_env_value(value: str) -> bool | int | float | str | None:
    """Convert an environment variable string to the most specific type."""
    if value.lower() in ("null", "none", ""):
        return None
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        return value


def _env_key_to_path(key: str, prefix: str) -> list[str]:
    """
    Convert HOTPOOL_REPLACEMENT_RETRY_MAX_DELAY into
    ['replacement', 'retry', 'max_delay'] by matching known section names.
    """
    parts = key[len(prefix) :].lower().split("_")
    sections = {f.name for f in fields(SupervisorConfig)}
    if parts[0] not in sections:
        return []
    path = [parts[0]]
    rest = parts[1:]
    if path[0] == "replacement" and rest[:1] == ["retry"] and len(rest) > 1:
        path.append("retry")
        rest = rest[1:]
    if not rest:
        return []
    return path + ["_".join(rest)]


def apply_env_overrides(
    data: dict[str, Any], prefix: str = DEFAULT_ENV_PREFIX
) -> dict[str, Any]:
    """
    Apply HOTPOOL_* environment variables on top of a config dictionary.

    Args:
        data: Configuration dictionary (modified in place and returned)
        prefix: Environment variable prefix

    Returns:
        The updated dictionary
    """
    for key, raw in sorted(os.environ.items()):
        if not key.startswith(prefix):
            continue
        path = _env_key_to_path(key, prefix)
        if not path:
            continue
        current = data
        for part in path[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]
        current[path[-1]] = _convert_env_value(raw)
    return data


def load_config(
    fname: str | Path,
    enable_env_overrides: bool = True,
    env_prefix: str = DEFAULT_ENV_PREFIX,
) -> SupervisorConfig:
    """
    Load and validate a YAML configuration file.

    Args:
        fname: Path to the YAML file
        enable_env_overrides: Whether to apply HOTPOOL_* environment overrides
        env_prefix: Prefix for environment variables

    Raises:
        ConfigError: If the file is missing, too large, malformed or invalid
    """
    path = Path(fname)
    if not path.is_file():
        raise ConfigError("Configuration file not found", path=str(path))

    size = path.stat().st_size
    if size > MAX_CONFIG_SIZE_BYTES:
        raise ConfigError(
            "Configuration file exceeds maximum size",
            path=str(path),
            size=size,
            limit=MAX_CONFIG_SIZE_BYTES,
        )

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML: {e}", path=str(path)) from e

    if not isinstance(data, dict):
        raise ConfigError("Configuration root must be a mapping", path=str(path))

    if enable_env_overrides:
        data = apply_env_overrides(data, env_prefix)

    return SupervisorConfig.from_dict(data)
