"""
Log formatters for structured, optionally colored console output.

Rendered lines look like:

    [12:34:56,789] [I] handover committed      [retiring:3] [candidate:5] [4711] [/supervisor]
"""

import collections
import logging
import re
import traceback
from typing import Any

from .colors import ColorManager
from .config import LogConfig
from .constants import LogConstants
from .exceptions import FormatterError

_ANSI_PATTERN = re.compile(r"\x1b\[[0-9;]*m")


def _visual_len(text: str) -> int:
    """Visual width of text, excluding ANSI escape codes."""
    if "\x1b" not in text:
        return len(text)
    return len(_ANSI_PATTERN.sub("", text))


def _ordered_keys(extra: dict[str, Any]) -> list[str]:
    """Preserve explicit ordering, otherwise sort for stable output."""
    if isinstance(extra, collections.OrderedDict):
        return list(extra.keys())
    return sorted(extra.keys())


def _render_exception(e: BaseException) -> str:
    """Render an exception with its traceback if one is attached."""
    if not isinstance(e, BaseException):
        raise FormatterError(f"Not an exception: {type(e)}")

    out = f"{e.__class__.__name__}: {e}"
    for filename, lineno, function_name, text in traceback.extract_tb(
        e.__traceback__
    ):
        out += f'\n  File "{filename}", line {lineno}, in {function_name}'
        if text:
            out += f"\n    {text.strip()}"
    return out


class PreFormatter(logging.Formatter):
    """Standard formatter with optional sub-second timestamp precision."""

    def __init__(self, fmt: str, micros: bool) -> None:
        self._micros = micros
        super().__init__(fmt)

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        s = super().formatTime(record)
        if self._micros:
            micros = int((record.created % 1) * 1000000) % 1000
            s += f".{micros:03d}"
        return s


class LogFormatter(logging.Formatter):
    """
    Formatter rendering extra fields as `[key:value]` columns.

    Extra fields are read from the `__hotpool__extra` attribute attached by
    hotpool.log.Logger; an `exception` field is rendered as a traceback on
    the following lines.
    """

    def __init__(self, config: LogConfig) -> None:
        super().__init__()
        self._config = config
        self._pre_formatter = PreFormatter(LogConstants.DEFAULT_FORMAT, config.micros)

    @property
    def config(self) -> LogConfig:
        return self._config

    def format(self, record: logging.LogRecord) -> str:
        fmt = self._build_format(record)
        self._pre_formatter._fmt = fmt
        self._pre_formatter._style._fmt = fmt
        return self._pre_formatter.format(record)

    def _rule_padding(self, record: logging.LogRecord) -> str:
        timestamp_len = 16 if self._config.micros else 12
        width = 1 + timestamp_len + 4 + 1 + 2 + _visual_len(record.getMessage())
        rule = (
            LogConstants.MICRO_RULE_WIDTH
            if self._config.micros
            else LogConstants.DEFAULT_RULE_WIDTH
        )
        return " " * max(1, rule - width)

    def _build_format(self, record: logging.LogRecord) -> str:
        extra = getattr(record, "__hotpool__extra", None) or {}
        if self._config.colors:
            return self._format_colored(record, extra)
        return self._format_plain(record, extra)

    def _format_plain(self, record: logging.LogRecord, extra: dict[str, Any]) -> str:
        fmt = LogConstants.DEFAULT_FORMAT + self._rule_padding(record)
        parts = []
        for key in _ordered_keys(extra):
            if key == "exception":
                continue
            parts.append(f"[{key}:{_escape(extra[key])}]")
        if parts:
            fmt += " ".join(parts) + " "
        fmt += "[%(process)d] [%(name)s]"
        if "exception" in extra:
            fmt += "\n" + _escape(_render_exception(extra["exception"]))
        return fmt

    def _format_colored(self, record: logging.LogRecord, extra: dict[str, Any]) -> str:
        col = ColorManager.get_color_for_level(record.levelno) + "m"
        bold = col[:-1] + ";1m"
        reset = ColorManager.RESET

        fmt = col + "[%(asctime)s] [%(levelname).1s] " + bold + "%(message)s" + reset
        fmt += self._rule_padding(record)
        for key in _ordered_keys(extra):
            if key == "exception":
                continue
            fmt += f"{col}{key}[{bold}{_escape(extra[key])}{reset}{col}]{reset} "

        gray = ColorManager.create_gray_level(9) + "m"
        fmt += f"{gray}[%(process)d] [%(name)s]{reset}"
        if "exception" in extra:
            fmt += "\n" + _escape(_render_exception(extra["exception"]))
        return fmt


def _escape(value: Any) -> str:
    """Escape % so values cannot break %-style record formatting."""
    if isinstance(value, float):
        value = f"{value:.3f}"
    return str(value).replace("%", "%%")
