"""
Pytest configuration and shared fixtures.

This module provides central pytest configuration, custom markers,
and shared fixtures for the hotpool test suite.
"""

import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

# =============================================================================
# Plugin Registration
# =============================================================================

pytest_plugins = [
    "tests.fixtures.logging",
]


# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, isolated, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (real pipes, sockets, processes)"
    )
    config.addinivalue_line("markers", "e2e: End-to-end tests (full system integration)")
    config.addinivalue_line("markers", "property: Property-based tests (hypothesis)")
    config.addinivalue_line("markers", "slow: Tests that take >1 second to run")


# =============================================================================
# Shared Fixtures
# =============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Provide a temporary directory that is cleaned up after the test.

    Yields:
        Path: Temporary directory path
    """
    temp_path = Path(tempfile.mkdtemp(prefix="hotpool-test-", dir="/tmp"))
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def sample_config_dict() -> dict:
    """
    Provide a sample supervisor configuration dictionary.

    Returns:
        dict: Sample configuration
    """
    return {
        "pool": {"size": 3, "start_method": "spawn"},
        "listener": {"host": "127.0.0.1", "port": 0, "backlog": 64},
        "replacement": {
            "memory_limit": "256MB",
            "max_age": 3600,
            "sample_interval": 2.0,
            "listen_timeout": 5.0,
            "drain_timeout": 10.0,
            "retry": {"initial_delay": 0.5, "max_delay": 8.0, "max_retries": 4},
        },
        "shutdown": {"timeout": 15.0},
        "logging": {"level": "debug"},
    }


# =============================================================================
# Test Collection Hooks
# =============================================================================


def pytest_collection_modifyitems(config, items):
    """
    Modify test collection to add markers.

    Args:
        config: Pytest config object
        items: List of collected test items
    """
    # Add 'unit' marker to tests without other markers
    for item in items:
        if not any(
            mark.name in ["integration", "e2e"] for mark in item.iter_markers()
        ):
            item.add_marker(pytest.mark.unit)
