"""
Factory functions for creating configured loggers.

Loggers are named like paths: the supervisor logs as `/supervisor`, its
components as `/supervisor/loop`, and worker processes as `/worker`.
"""

import logging
import sys
from typing import Any, TextIO

from .config import LogConfig
from .formatters import LogFormatter
from .logger import Logger


class LoggerFactory:
    """Factory for creating and configuring loggers."""

    @staticmethod
    def _create_handler(config: LogConfig, stream: TextIO | None) -> logging.Handler:
        handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
        level = logging.CRITICAL + 1 if config.level is False else config.level
        handler.setLevel(level)
        handler.setFormatter(LogFormatter(config))
        return handler

    @staticmethod
    def create(
        name: str,
        config: LogConfig,
        extra: dict[str, Any] | None = None,
        stream: TextIO | None = None,
    ) -> Logger:
        """
        Create a logger writing formatted records to a stream.

        Args:
            name: Logger name
            config: Logger configuration
            extra: Pre-populated extra fields to include in all log records
            stream: Output stream (default: stdout)

        Example:
            >>> lg = LoggerFactory.create("/supervisor", LogConfig.from_params("debug"))
            >>> lg.info("pool started", extra={"size": 2})
            [12:34:56,789] [I] pool started     [size:2] [1234] [/supervisor]
        """
        logger = Logger(name, config, extra)
        logger.propagate = False
        logger.addHandler(LoggerFactory._create_handler(config, stream))
        return logger

    @staticmethod
    def create_child(
        parent: Logger, name: str, extra: dict[str, Any] | None = None
    ) -> Logger:
        """
        Create a child logger sharing the parent's handlers and extra fields.

        Args:
            parent: Parent logger
            name: Child name, appended to the parent's name
            extra: Additional pre-populated extra fields
        """
        merged = parent.extra
        if extra:
            merged.update(extra)
        child = Logger(f"{parent.name.rstrip('/')}/{name}", parent.config, merged)
        child.propagate = False
        for handler in parent.handlers:
            child.addHandler(handler)
        return child


def quick_console_logger(name: str, config: dict[str, Any] | None = None) -> Logger:
    """
    Create a console logger from a `logging` config section.

    Args:
        name: Logger name
        config: Dictionary with optional keys level, colors, micros
    """
    return LoggerFactory.create(name, LogConfig.from_config(config or {"level": "info"}))
