"""
Configuration-related constants and resource limits.
"""

# Maximum config file size (1MB); supervisor configs are tiny
MAX_CONFIG_SIZE_BYTES = 1024 * 1024

DEFAULT_ENV_PREFIX = "HOTPOOL_"

START_METHODS = frozenset({"spawn", "fork", "forkserver"})
