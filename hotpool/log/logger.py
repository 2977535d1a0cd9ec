"""
Logger class with structured extra-field support.

Components log lower-case messages and carry their context as extra
fields:

    lg.info("worker listening", extra={"worker": 3, "pid": 4711})
"""

import collections
import logging
import sys
from typing import Any

from .config import LogConfig
from .constants import LogConstants

# Attributes the standard LogRecord owns; extra fields must not overwrite them
_RESERVED = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


class Logger(logging.Logger):
    """
    Enhanced logger with pre-populated extra fields and a TRACE level.

    Extra fields passed per call are merged over the fields the logger was
    created with, and attached to the record as `__hotpool__extra` for
    hotpool.log.formatters.LogFormatter to render.
    """

    def __init__(
        self,
        name: str,
        config: LogConfig | None = None,
        extra: dict[str, Any] | collections.OrderedDict | None = None,
    ) -> None:
        """
        Initialize the logger.

        Args:
            name: Logger name
            config: Logger configuration (default: info level)
            extra: Pre-populated extra fields included in every record
        """
        if config is None:
            config = LogConfig.from_params("info")

        if config.level is False:
            super().__init__(name, logging.CRITICAL + 1)
            self._logging_disabled = True
        else:
            super().__init__(name, config.level)
            self._logging_disabled = False

        self._config = config
        self._extra = extra or {}

    @property
    def config(self) -> LogConfig:
        return self._config

    @property
    def extra(self) -> dict[str, Any]:
        return dict(self._extra)

    def _merge_extra(
        self, extra: dict[str, Any] | collections.OrderedDict | None
    ) -> dict[str, Any] | collections.OrderedDict:
        """Merge pre-populated extra fields with per-call extra fields."""
        merged: dict[str, Any] | collections.OrderedDict
        if isinstance(self._extra, collections.OrderedDict) or isinstance(
            extra, collections.OrderedDict
        ):
            merged = collections.OrderedDict(self._extra)
        else:
            merged = self._extra.copy()
        if extra:
            merged.update(extra)
        return merged

    def makeRecord(  # type: ignore[override]
        self,
        name: str,
        level: int,
        fn: str,
        lno: int,
        msg: str,
        args: tuple,
        exc_info: Any,
        func: str | None = None,
        extra: dict[str, Any] | None = None,
        sinfo: str | None = None,
    ) -> logging.LogRecord:
        """Create the record and attach the merged extra fields."""
        merged = self._merge_extra(extra)
        safe = {k: v for k, v in merged.items() if k not in _RESERVED}
        record = super().makeRecord(
            name, level, fn, lno, msg, args, exc_info, func=func, extra=safe, sinfo=sinfo
        )
        setattr(record, "__hotpool__extra", merged)
        return record

    def trace(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log a TRACE level message (below DEBUG)."""
        level = LogConstants.CUSTOM_LEVELS["TRACE"]
        if not self._logging_disabled and self.isEnabledFor(level):
            self._log(level, msg, args, **kwargs)

    def _log(self, level: int, msg: str, args: tuple, **kwargs: Any) -> None:  # type: ignore[override]
        if self._logging_disabled:
            return
        try:
            super()._log(level, msg, args, **kwargs)
        except (TypeError, ValueError) as e:
            # Report format bugs without taking the caller down
            preview = msg[:80] + "..." if len(msg) > 80 else msg
            sys.stderr.write(
                f"LOG_FORMAT_ERROR [{self.name}]: {e.__class__.__name__}: {e} "
                f"| msg={preview!r} args={args!r}\n"
            )
