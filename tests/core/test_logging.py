"""Tests for structlog configuration."""

import json

import pytest
import structlog

from cloudcost.core.logging import configure_logging


@pytest.fixture(autouse=True)
def reset_structlog():
    """Restore structlog defaults so later tests can capture logs."""
    yield
    structlog.reset_defaults()


class TestConfigureLogging:
    """Test the logging setup wrapper."""

    def test_console_output(self, capsys):
        """Test that console rendering writes the event and its context."""
        configure_logging(level="INFO", json_output=False)

        structlog.get_logger("test").info("scan.started", scan_id=7)

        out = capsys.readouterr().out
        assert "scan.started" in out
        assert "scan_id" in out

    def test_json_output(self, capsys):
        """Test that JSON rendering emits one parseable line per event."""
        configure_logging(level="INFO", json_output=True)

        structlog.get_logger("test").warning("check.permission_denied", check="s3")

        line = capsys.readouterr().out.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "check.permission_denied"
        assert record["level"] == "warning"
        assert record["check"] == "s3"

    def test_level_filtering(self, capsys):
        """Test that events below the configured level are dropped."""
        configure_logging(level="WARNING", json_output=True)

        structlog.get_logger("test").info("scan.checks_started")

        assert "scan.checks_started" not in capsys.readouterr().out
