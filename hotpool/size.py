"""
Memory size parsing and formatting.

Resource thresholds are configured as human-readable strings and worker
memory is reported the same way in logs and health reports.

Example Usage:
    >>> size_to_bytes('512MB')
    536870912

    >>> parse_limit(None) is None
    True

    >>> size_str(157286400)
    '150MB'
"""

import math
import re

from .exceptions import PoolError

_UNITS = [
    (1024**4, "TB"),
    (1024**3, "GB"),
    (1024**2, "MB"),
    (1024, "KB"),
    (1, "B"),
]

# Binary multipliers; IEC suffixes are accepted as aliases
_MULTIPLIERS = {
    "B": 1,
    "KB": 1024,
    "MB": 1024**2,
    "GB": 1024**3,
    "TB": 1024**4,
    "KIB": 1024,
    "MIB": 1024**2,
    "GIB": 1024**3,
    "TIB": 1024**4,
}

_SIZE_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)\s*(TIB|GIB|MIB|KIB|TB|GB|MB|KB|B)$", re.I)


class InvalidSizeError(PoolError):
    """Raised when a size value or string cannot be interpreted."""

    pass


def size_str(size: float | int | None) -> str:
    """
    Format a byte count as a compact human-readable string.

    Args:
        size: Size in bytes (None renders as an empty string)

    Returns:
        Formatted size, e.g. '1.5KB'

    Raises:
        InvalidSizeError: If size is negative, NaN or infinite
    """
    if size is None:
        return ""
    if not isinstance(size, (int, float)) or math.isnan(size) or math.isinf(size):
        raise InvalidSizeError(f"Size must be a finite number, got {size!r}")
    if size < 0:
        raise InvalidSizeError(f"Size cannot be negative, got {size}")
    if size == 0:
        return "0B"

    for threshold, suffix in _UNITS:
        if size >= threshold:
            value = size / threshold
            if value == int(value):
                return f"{int(value)}{suffix}"
            return f"{value:.1f}".rstrip("0").rstrip(".") + suffix

    return f"{int(size)}B"


def size_to_bytes(text: str) -> int:
    """
    Parse a size string such as '512MB' or '1.5GiB' into bytes.

    Args:
        text: Size string to parse

    Returns:
        Size in bytes

    Raises:
        InvalidSizeError: If the string cannot be parsed
    """
    if not isinstance(text, str) or not text.strip():
        raise InvalidSizeError("Size string cannot be empty")

    match = _SIZE_PATTERN.match(text.strip())
    if not match:
        raise InvalidSizeError(f"Could not parse size string: '{text}'")

    value = float(match.group(1))
    return int(value * _MULTIPLIERS[match.group(2).upper()])


def parse_limit(value: int | float | str | None) -> int | None:
    """
    Normalize a configured memory limit to bytes.

    Accepts a byte count, a size string, or None (no limit).

    Raises:
        InvalidSizeError: If the value is not a positive size
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidSizeError(f"Invalid memory limit: {value!r}")
    if isinstance(value, str):
        limit = size_to_bytes(value)
    elif isinstance(value, (int, float)) and math.isfinite(value):
        limit = int(value)
    else:
        raise InvalidSizeError(f"Invalid memory limit: {value!r}")
    if limit <= 0:
        raise InvalidSizeError(f"Memory limit must be positive, got {value!r}")
    return limit


__all__ = [
    "InvalidSizeError",
    "parse_limit",
    "size_str",
    "size_to_bytes",
]
