"""
Tests for the structured logging package.

Tests key functionality including:
- LogConfig level resolution and config sections
- Extra field rendering
- TRACE level and disabled loggers
- Child loggers
"""

import logging
from collections import OrderedDict
from io import StringIO

import pytest

from hotpool.log import (
    InvalidLogLevelError,
    LogConfig,
    Logger,
    LoggerFactory,
    quick_console_logger,
)

# =============================================================================
# Test LogConfig
# =============================================================================


@pytest.mark.unit
class TestLogConfig:
    """Test LogConfig construction."""

    def test_level_names(self):
        """Test level names resolve to logging constants."""
        assert LogConfig.from_params("debug").level == logging.DEBUG
        assert LogConfig.from_params("WARNING").level == logging.WARNING
        assert LogConfig.from_params("trace").level == 5

    def test_numeric_levels(self):
        """Test numeric strings and ints are accepted."""
        assert LogConfig.from_params("15").level == 15
        assert LogConfig.from_params(logging.ERROR).level == logging.ERROR

    def test_false_disables(self):
        """Test False and 'false' disable logging."""
        assert LogConfig.from_params(False).level is False
        assert LogConfig.from_params("false").level is False

    def test_invalid_level(self):
        """Test unknown level names raise."""
        with pytest.raises(InvalidLogLevelError):
            LogConfig.from_params("loud")

    def test_from_config_section(self):
        """Test the logging section of the supervisor config."""
        config = LogConfig.from_config({"level": "debug", "colors": False, "micros": True})

        assert config.level == logging.DEBUG
        assert config.colors is False
        assert config.micros is True

    def test_from_config_defaults(self):
        """Test an empty section means info with colors."""
        config = LogConfig.from_config(None)

        assert config.level == logging.INFO
        assert config.colors is True

    def test_colors_section(self):
        """Test the nested colors.enabled form."""
        assert LogConfig.from_config({"colors": {"enabled": False}}).colors is False


# =============================================================================
# Test Logger Output
# =============================================================================


@pytest.mark.unit
class TestLoggerOutput:
    """Test rendered log lines."""

    def test_message_and_name(self, lg, log_stream):
        """Test the message, level letter and logger name are rendered."""
        lg.info("pool started")

        line = log_stream.getvalue()
        assert "[I] pool started" in line
        assert "[/test]" in line

    def test_extra_fields_sorted(self, lg, log_stream):
        """Test extra fields render as sorted [key:value] columns."""
        lg.info("worker listening", extra={"worker": 3, "pid": 4711})

        line = log_stream.getvalue()
        assert "[pid:4711] [worker:3]" in line

    def test_ordered_extra_kept_in_order(self, lg, log_stream):
        """Test an OrderedDict keeps its insertion order."""
        lg.info("handover", extra=OrderedDict([("worker", 1), ("candidate", 3)]))

        assert "[worker:1] [candidate:3]" in log_stream.getvalue()

    def test_prepopulated_extra(self, log_stream):
        """Test fields given at creation appear on every line."""
        lg = LoggerFactory.create(
            "/worker",
            LogConfig.from_params("info", colors=False),
            extra={"worker": 7},
            stream=log_stream,
        )

        lg.info("accepting")

        assert "[worker:7]" in log_stream.getvalue()

    def test_percent_in_extra_is_escaped(self, lg, log_stream):
        """Test values containing % do not break formatting."""
        lg.info("usage", extra={"cpu": "100%"})

        assert "[cpu:100%]" in log_stream.getvalue()

    def test_float_extra_rounded(self, lg, log_stream):
        """Test floats render with three decimals."""
        lg.info("delay", extra={"delay": 0.5})

        assert "[delay:0.500]" in log_stream.getvalue()

    def test_exception_field_rendered(self, lg, log_stream):
        """Test an exception extra is rendered on its own line."""
        try:
            raise ValueError("boom")
        except ValueError as e:
            lg.error("failed", extra={"exception": e})

        output = log_stream.getvalue()
        assert "ValueError: boom" in output
        assert "[exception:" not in output

    def test_reserved_extra_keys_do_not_crash(self, lg, log_stream):
        """Test extra keys that clash with LogRecord attributes are still rendered."""
        lg.info("odd", extra={"name": "x"})

        assert "[name:x]" in log_stream.getvalue()

    def test_colored_output(self, log_stream):
        """Test colored lines contain ANSI escapes."""
        lg = LoggerFactory.create("/color", LogConfig.from_params("info"), stream=log_stream)

        lg.warning("careful", extra={"worker": 1})

        assert "\x1b[" in log_stream.getvalue()


# =============================================================================
# Test Levels
# =============================================================================


@pytest.mark.unit
class TestLevels:
    """Test TRACE and disabled loggers."""

    def test_trace_emitted_at_trace_level(self, log_stream):
        """Test trace() writes when the level allows it."""
        lg = LoggerFactory.create(
            "/trace", LogConfig.from_params("trace", colors=False), stream=log_stream
        )

        lg.trace("sampled", extra={"rss": 1})

        assert "sampled" in log_stream.getvalue()

    def test_trace_suppressed_at_debug(self, lg, log_stream):
        """Test trace() is below DEBUG."""
        lg.trace("sampled")

        assert log_stream.getvalue() == ""

    def test_disabled_logger_writes_nothing(self):
        """Test a logger created with level False is silent."""
        stream = StringIO()
        lg = LoggerFactory.create("/off", LogConfig.from_params(False), stream=stream)

        lg.critical("ignored")
        lg.trace("ignored")

        assert stream.getvalue() == ""

    def test_default_config(self):
        """Test a Logger without config logs at info."""
        assert Logger("/plain").level == logging.INFO


# =============================================================================
# Test Factory
# =============================================================================


@pytest.mark.unit
class TestFactory:
    """Test LoggerFactory helpers."""

    def test_create_child(self, lg, log_stream):
        """Test child loggers extend the name and share handlers."""
        child = LoggerFactory.create_child(lg, "loop", extra={"component": "loop"})

        child.info("tick")

        output = log_stream.getvalue()
        assert "[/test/loop]" in output
        assert "[component:loop]" in output

    def test_child_does_not_change_parent_extra(self, lg):
        """Test the parent's extra fields are copied, not shared."""
        LoggerFactory.create_child(lg, "loop", extra={"component": "loop"})

        assert lg.extra == {}

    def test_quick_console_logger(self):
        """Test the config-section shortcut."""
        lg = quick_console_logger("/quick", {"level": "error"})

        assert lg.level == logging.ERROR
        assert lg.propagate is False
