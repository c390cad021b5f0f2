"""Tests for structured logging configuration."""

import json
import logging
import sys
from unittest.mock import patch

import pytest

from governor.core.logging import (
    JSONFormatter,
    ContextFilter,
    get_logger,
    get_logging_config,
    get_log_context,
    setup_logging,
)


def _record(msg="Test message", level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


@pytest.fixture
def restore_governor_logger():
    """Undo setup_logging so later tests see the default logger tree."""
    logger = logging.getLogger("governor")
    root = logging.getLogger()
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    root_handlers, root_level = list(root.handlers), root.level
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate
    root.handlers[:] = root_handlers
    root.setLevel(root_level)


class TestJSONFormatter:
    """Test JSON formatter for structured logging."""

    def test_basic_json_format(self):
        """Test basic JSON formatting."""
        output = JSONFormatter().format(_record())
        data = json.loads(output)

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert data["source"]["file"] == "test.py"
        assert data["source"]["line"] == 1

    def test_json_format_with_context(self):
        """Test JSON formatting with governor context fields."""
        record = _record("Retrying call")
        record.key = "billing"
        record.attempt = 2
        record.circuit_state = "CLOSED"
        record.delay = 1.5

        data = json.loads(JSONFormatter().format(record))

        assert data["key"] == "billing"
        assert data["attempt"] == 2
        assert data["circuit_state"] == "CLOSED"
        assert data["delay"] == 1.5
        assert "extra" not in data

    def test_json_format_with_extra_fields(self):
        """Test JSON formatting with extra custom fields."""
        record = _record("Custom event")
        record.custom_field = "custom_value"
        record.another_field = 42

        data = json.loads(JSONFormatter().format(record))

        assert data["extra"]["custom_field"] == "custom_value"
        assert data["extra"]["another_field"] == 42

    def test_json_format_skips_unset_context(self):
        record = _record()
        ContextFilter().filter(record)

        data = json.loads(JSONFormatter().format(record))

        assert "key" not in data
        assert "status_code" not in data

    def test_json_format_with_exception(self):
        """Test JSON formatting with exception info."""
        try:
            raise ValueError("Test error")
        except ValueError:
            record = _record("Error occurred", logging.ERROR, sys.exc_info())

        data = json.loads(JSONFormatter().format(record))

        exception_text = "".join(data["exception"])
        assert "ValueError" in exception_text
        assert "Test error" in exception_text


class TestContextFilter:
    """Test context filter for adding default fields."""

    def test_adds_default_fields(self):
        record = _record()

        assert ContextFilter().filter(record) is True
        for field in ("key", "attempt", "circuit_state", "delay", "status_code", "duration_ms"):
            assert hasattr(record, field)

    def test_preserves_existing_values(self):
        record = _record()
        record.key = "billing"

        ContextFilter().filter(record)

        assert record.key == "billing"


class TestGetLoggingConfig:
    """Test logging configuration generation."""

    def test_default_text_format(self):
        with patch("governor.core.logging.settings") as mock_settings:
            mock_settings.log_format = "text"
            mock_settings.log_level = "INFO"

            config = get_logging_config()

        assert "json" not in config["formatters"]
        assert config["handlers"]["console"]["formatter"] == "standard"
        assert config["loggers"]["governor"]["propagate"] is False

    def test_structured_format(self):
        with patch("governor.core.logging.settings") as mock_settings:
            mock_settings.log_format = "structured"
            mock_settings.log_level = "DEBUG"

            config = get_logging_config()

        assert config["handlers"]["console"]["formatter"] == "structured"
        assert config["handlers"]["console"]["level"] == "DEBUG"
        assert "key=%(key)s" in config["formatters"]["structured"]["format"]

    def test_json_format(self):
        with patch("governor.core.logging.settings") as mock_settings:
            mock_settings.log_format = "json"
            mock_settings.log_level = "WARNING"

            config = get_logging_config()

        assert config["handlers"]["console"]["formatter"] == "json"
        assert config["loggers"]["governor"]["level"] == "WARNING"

    def test_context_filter_added(self):
        config = get_logging_config()

        assert "context" in config["filters"]
        assert "context" in config["handlers"]["console"]["filters"]


class TestGetLogger:
    def test_get_logger_default_name(self):
        assert get_logger().name == "governor"

    def test_get_logger_custom_name(self):
        assert get_logger("governor.ratelimit").name == "governor.ratelimit"


class TestGetLogContext:
    """Test get_log_context helper function."""

    def test_basic_context(self):
        context = get_log_context(key="billing", attempt=3, circuit_state="OPEN")

        assert context == {"key": "billing", "attempt": 3, "circuit_state": "OPEN"}

    def test_context_filters_none(self):
        context = get_log_context(key="billing", attempt=None, delay=None)

        assert context == {"key": "billing"}

    def test_context_with_extra(self):
        context = get_log_context(key="billing", delay=0.75, status_code=503)

        assert context["delay"] == 0.75
        assert context["status_code"] == 503


class TestIntegration:
    """Integration tests for logging system."""

    def test_json_logging_output(self, capsys, restore_governor_logger):
        with patch("governor.core.logging.settings") as mock_settings:
            mock_settings.log_format = "json"
            mock_settings.log_level = "INFO"

            setup_logging()
            logger = get_logger("governor.integration")
            logger.warning(
                "Retry 1/3 for 'billing'",
                extra=get_log_context(key="billing", attempt=1, delay=1.0),
            )

        data = json.loads(capsys.readouterr().out.strip())

        assert data["level"] == "WARNING"
        assert data["logger"] == "governor.integration"
        assert data["key"] == "billing"
        assert data["attempt"] == 1
        assert data["delay"] == 1.0
        assert logging.getLogger("httpx").level == logging.WARNING
