"""
Structured logging for the supervisor and its workers.

Loggers accept extra fields that are rendered as `[key:value]` columns,
support a TRACE level below DEBUG, and can be disabled completely with
`level: false`.
"""

from .config import LogConfig
from .constants import LogConstants
from .exceptions import FormatterError, InvalidLogLevelError, LogError
from .factory import LoggerFactory, quick_console_logger
from .formatters import LogFormatter
from .logger import Logger

__all__ = [
    "FormatterError",
    "InvalidLogLevelError",
    "LogConfig",
    "LogConstants",
    "LogError",
    "LogFormatter",
    "Logger",
    "LoggerFactory",
    "quick_console_logger",
]
