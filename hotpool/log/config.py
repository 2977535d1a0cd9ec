"""
Immutable logger configuration.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class LogConfig:
    """
    Immutable configuration for supervisor and worker loggers.

    The same LogConfig is handed to worker processes so both sides of the
    pool render log lines identically.
    """

    level: int | bool = logging.INFO  # False disables logging
    micros: bool = False
    colors: bool = True

    @staticmethod
    def _resolve_level(level: str | int | bool) -> int | bool:
        """Resolve level parameter to int or False."""
        from .constants import LogConstants
        from .exceptions import InvalidLogLevelError

        if isinstance(level, bool):
            return False if not level else logging.INFO
        if isinstance(level, str):
            if level.isnumeric():
                return int(level)
            if level.lower() in LogConstants.LEVEL_NAMES:
                return LogConstants.LEVEL_NAMES[level.lower()]
            raise InvalidLogLevelError(level)
        return level

    @classmethod
    def from_params(
        cls,
        level: str | int | bool,
        micros: bool = False,
        colors: bool = True,
    ) -> LogConfig:
        """
        Create LogConfig from individual parameters.

        Args:
            level: Log level (name, numeric value, or False to disable logging)
            micros: Whether to show sub-second precision
            colors: Whether to enable colored output
        """
        return cls(level=cls._resolve_level(level), micros=micros, colors=colors)

    @classmethod
    def from_config(cls, section: dict[str, Any] | None) -> LogConfig:
        """
        Create LogConfig from the `logging` section of the supervisor config.

        Example:
            config = load_config("etc/hotpool.yaml")
            log_config = LogConfig.from_config(config.logging)
        """
        section = section or {}
        level = section.get("level", "info")
        colors = section.get("colors", True)
        if isinstance(colors, dict):
            colors = colors.get("enabled", True)
        micros = section.get("microseconds", section.get("micros", False))
        return cls.from_params(level=level, micros=bool(micros), colors=bool(colors))
