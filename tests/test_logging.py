"""Logging configuration tests."""

import json
import logging
from collections.abc import Iterator

import pytest
import structlog

from orgdir.logging import configure_logging


@pytest.fixture
def restore_logging() -> Iterator[None]:
    """Undo structlog and root logger changes after the test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    structlog.reset_defaults()
    root.handlers = handlers
    root.setLevel(level)


def test_production_logs_are_json(
    restore_logging: None, capsys: pytest.CaptureFixture[str]
) -> None:
    """Each event is one JSON line tagged with the service name."""
    configure_logging(debug=False)
    structlog.get_logger().info("search_completed", total=3)

    line = capsys.readouterr().out.strip().splitlines()[-1]
    record = json.loads(line)
    assert record["event"] == "search_completed"
    assert record["total"] == 3
    assert record["service"] == "orgdir"
    assert record["level"] == "info"


def test_debug_events_filtered_outside_debug(
    restore_logging: None, capsys: pytest.CaptureFixture[str]
) -> None:
    """Debug events are dropped unless debug logging is enabled."""
    configure_logging(debug=False)
    structlog.get_logger().debug("search_tier_empty")
    assert "search_tier_empty" not in capsys.readouterr().out


def test_debug_mode_renders_for_console(
    restore_logging: None, capsys: pytest.CaptureFixture[str]
) -> None:
    """Debug mode emits human-readable debug events."""
    configure_logging(debug=True)
    structlog.get_logger().debug("search_tier_empty", tier="prefix")

    out = capsys.readouterr().out
    assert "search_tier_empty" in out
    assert "prefix" in out
