"""Supervisor configuration: YAML files, environment overrides, validation."""

from .config import (
    ListenerConfig,
    PoolConfig,
    ReplacementConfig,
    RetryConfig,
    ShutdownConfig,
    SupervisorConfig,
    apply_env_overrides,
    load_config,
)
from .constants import DEFAULT_ENV_PREFIX, MAX_CONFIG_SIZE_BYTES

__all__ = [
    "DEFAULT_ENV_PREFIX",
    "MAX_CONFIG_SIZE_BYTES",
    "ListenerConfig",
    "PoolConfig",
    "ReplacementConfig",
    "RetryConfig",
    "ShutdownConfig",
    "SupervisorConfig",
    "apply_env_overrides",
    "load_config",
]
