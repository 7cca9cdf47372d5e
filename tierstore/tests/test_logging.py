"""
Unit Tests: Structured Logging and Migration Events

Tests:
    - JSON formatting with extra and context-scoped fields
    - Context nesting and reset
    - Event sinks render events at the right level
"""

import io
import json
import logging

import pytest

from tierstore.core.errors import StorageError
from tierstore.migration.events import (
    EventKind,
    FanOutEventSink,
    InMemoryEventSink,
    LoggingEventSink,
    MigrationEvent,
)
from tierstore.observability.logging import (
    JsonFormatter,
    LogLevel,
    StructuredLogger,
    current_context,
    setup_logging,
)


@pytest.fixture
def captured():
    """JSON lines written by a dedicated test logger."""
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter())
    logger = logging.getLogger("tierstore.tests.captured")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    yield lambda: [json.loads(line) for line in stream.getvalue().splitlines()]
    logger.removeHandler(handler)


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_fields(self, captured):
        StructuredLogger("tierstore.tests.captured").info("hello", storage_key="t/r1")
        (line,) = captured()
        assert line["message"] == "hello"
        assert line["level"] == "INFO"
        assert line["logger"] == "tierstore.tests.captured"
        assert line["storage_key"] == "t/r1"
        assert "@timestamp" in line

    def test_context_fields(self, captured):
        log = StructuredLogger("tierstore.tests.captured")
        with StructuredLogger.context(job_id="j1", cycle_id="c1"):
            log.info("inside")
        log.info("outside")
        inside, outside = captured()
        assert inside["job_id"] == "j1" and inside["cycle_id"] == "c1"
        assert "job_id" not in outside

    def test_exception_rendered(self, captured):
        logger = logging.getLogger("tierstore.tests.captured")
        try:
            raise ValueError("bad")
        except ValueError:
            logger.exception("failed")
        (line,) = captured()
        assert "ValueError: bad" in line["exception"]

    def test_non_serializable_extra(self, captured):
        StructuredLogger("tierstore.tests.captured").info("obj", error=StorageError.timeout("get", 5))
        (line,) = captured()
        assert "STORAGE_TIMEOUT" in line["error"]


class TestStructuredLogger:
    """Tests for StructuredLogger."""

    def test_nested_context(self):
        with StructuredLogger.context(job_id="j1"):
            with StructuredLogger.context(cycle_id="c1"):
                assert current_context() == {"job_id": "j1", "cycle_id": "c1"}
            assert current_context() == {"job_id": "j1"}
        assert current_context() == {}

    def test_with_extra(self, captured):
        log = StructuredLogger("tierstore.tests.captured").with_extra(component="engine")
        log.warning("w", attempt=2)
        (line,) = captured()
        assert line["component"] == "engine"
        assert line["attempt"] == 2

    @pytest.mark.parametrize("value,expected", [
        ("debug", LogLevel.DEBUG),
        ("ERROR", LogLevel.ERROR),
        (30, LogLevel.WARNING),
    ])
    def test_level_parse(self, value, expected):
        assert LogLevel.parse(value) is expected

    def test_setup_logging(self):
        stream = io.StringIO()
        root = logging.getLogger()
        saved = (root.level, list(root.handlers))
        try:
            setup_logging("WARNING", json_output=True, stream=stream)
            logging.getLogger("tierstore.tests.setup").warning("visible")
            logging.getLogger("tierstore.tests.setup").info("hidden")
        finally:
            root.handlers[:] = saved[1]
            root.setLevel(saved[0])
        lines = stream.getvalue().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["message"] == "visible"


class TestEventSinks:
    """Tests for migration event sinks."""

    def event(self, kind=EventKind.RECORD_MIGRATED, **kwargs):
        return MigrationEvent(kind=kind, job_id="j1", cycle_id="c1", **kwargs)

    def test_levels(self):
        assert EventKind.VERIFICATION_FAILED.level is LogLevel.ERROR
        assert EventKind.RECORD_MIGRATED.level is LogLevel.DEBUG
        assert EventKind.CYCLE_STARTED.level is LogLevel.INFO
        assert self.event(EventKind.CYCLE_FAILED).is_error

    def test_to_dict(self):
        error = StorageError.timeout("cold.get", 5000)
        data = self.event(
            EventKind.VERIFICATION_FAILED, storage_key="t/r1", error=error, details={"step": "verify"}
        ).to_dict()
        assert data["event"] == "verification_failed"
        assert data["storage_key"] == "t/r1"
        assert data["error"]["code"] == "STORAGE_TIMEOUT"
        assert data["step"] == "verify"

    def test_logging_sink(self, caplog):
        sink = LoggingEventSink()
        with caplog.at_level(logging.DEBUG, logger="tierstore.events"):
            sink.emit(self.event(EventKind.VERIFICATION_FAILED, storage_key="t/r1"))
        (record,) = caplog.records
        assert record.levelno == logging.ERROR
        assert record.getMessage() == "migration.verification_failed"
        assert record.storage_key == "t/r1"

    def test_fan_out(self):
        first, second = InMemoryEventSink(), InMemoryEventSink()
        FanOutEventSink(first, second).emit(self.event())
        assert len(first.events) == len(second.events) == 1
        assert first.of_kind(EventKind.RECORD_MIGRATED)
