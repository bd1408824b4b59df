"""Tests for logging setup."""

import json
import logging
from collections.abc import Iterator

import pytest

from spindb.config import LoggingConfig
from spindb.logging import EventTextFormatter, RateLimitFilter, SpinDBJsonFormatter, setup_logging
from spindb.logging_schema import LogEvent


@pytest.fixture(autouse=True)
def restore_root_logger() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def make_record(msg: str, level: int = logging.INFO, lineno: int = 10) -> logging.LogRecord:
    return logging.LogRecord("spindb.test", level, __file__, lineno, msg, None, None)


class TestRateLimitFilter:
    """Tests for RateLimitFilter."""

    def test_drops_repeats_in_window(self) -> None:
        rate_filter = RateLimitFilter(rate_limit_seconds=60)

        assert rate_filter.filter(make_record("waiting")) is True
        assert rate_filter.filter(make_record("waiting")) is False
        assert rate_filter.filter(make_record("other")) is True

    def test_errors_always_pass(self) -> None:
        rate_filter = RateLimitFilter(rate_limit_seconds=60)

        assert rate_filter.filter(make_record("boom", logging.ERROR)) is True
        assert rate_filter.filter(make_record("boom", logging.ERROR)) is True

    def test_cache_is_bounded(self) -> None:
        rate_filter = RateLimitFilter(rate_limit_seconds=60, max_cache_size=150)

        for i in range(200):
            rate_filter.filter(make_record(f"message {i}"))

        assert len(rate_filter._last_log) <= 150


class TestJsonFormatter:
    """Tests for SpinDBJsonFormatter."""

    def test_standard_fields(self) -> None:
        formatter = SpinDBJsonFormatter(LoggingConfig(service_name="spindb-test"))
        record = make_record("Created container")
        record.event = LogEvent.CONTAINER_CREATED

        data = json.loads(formatter.format(record))

        assert data["message"] == "Created container"
        assert data["event"] == "container_created"
        assert data["level"] == "INFO"
        assert data["logger"] == "spindb.test"
        assert data["service"] == "spindb-test"
        assert "timestamp" in data
        assert "pid" not in data
        assert "lineno" not in data


class TestEventTextFormatter:
    """Tests for EventTextFormatter."""

    def test_appends_event(self) -> None:
        record = make_record("Pulled image")
        record.event = LogEvent.IMAGE_PULLED

        line = EventTextFormatter().format(record)

        assert line.endswith("Pulled image [image_pulled]")

    def test_plain_without_event(self) -> None:
        line = EventTextFormatter().format(make_record("hello"))

        assert line.endswith("INFO - hello")


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_json_format(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging(LoggingConfig(format="json", level="DEBUG"))

        logging.getLogger("spindb.services").info(
            "Switched environment", extra={"event": LogEvent.ENVIRONMENT_SWITCHED}
        )

        line = capsys.readouterr().out.strip().splitlines()[-1]
        assert json.loads(line)["event"] == "environment_switched"

    def test_level_and_quiet_libraries(self) -> None:
        setup_logging(LoggingConfig(level="warning"))

        assert logging.getLogger().level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING
        assert len(logging.getLogger().handlers) == 1
