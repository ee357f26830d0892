"""
Integration tests for amzsync/observability.py

Tests structured logging, correlation IDs, and timing.
"""
import json
import logging
import time as time_module

import pytest

from amzsync.observability import (
    HumanReadableFormatter,
    StructuredFormatter,
    Timer,
    correlation_context,
    generate_correlation_id,
    get_correlation_id,
    get_logger,
    set_correlation_id,
    setup_logging,
)


def _record(msg="Test message", level=logging.INFO, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="amzsync.test",
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestCorrelationId:
    """Tests for correlation ID management."""

    def test_generated_ids_are_short_and_unique(self):
        ids = {generate_correlation_id() for _ in range(50)}
        assert len(ids) == 50
        assert all(len(cid) == 8 for cid in ids)

    def test_set_and_get(self):
        set_correlation_id("req-123")
        assert get_correlation_id() == "req-123"

    def test_context_restores_previous(self):
        """A run's correlation id is scoped to its context."""
        set_correlation_id("outer")
        with correlation_context("run-1") as cid:
            assert cid == "run-1"
            assert get_correlation_id() == "run-1"
        assert get_correlation_id() == "outer"

    def test_context_generates_id(self):
        with correlation_context() as cid:
            assert cid
            assert get_correlation_id() == cid


class TestTimer:
    """Tests for Timer context manager."""

    def test_measures_elapsed_time(self):
        with Timer("spapi_get") as timer:
            time_module.sleep(0.05)

        assert timer.elapsed_ms >= 45
        assert timer.elapsed_ms < 1000

    def test_slow_call_logged_as_warning(self, caplog):
        logger = get_logger("amzsync.test.timer")
        with caplog.at_level(logging.DEBUG, logger="amzsync.test.timer"):
            with Timer("spapi_download", logger, warn_ms=0):
                time_module.sleep(0.001)

        assert caplog.records[-1].levelno == logging.WARNING
        assert caplog.records[-1].duration_ms > 0
        assert caplog.records[-1].operation == "spapi_download"

    def test_fast_call_logged_as_debug(self, caplog):
        logger = get_logger("amzsync.test.timer")
        with caplog.at_level(logging.DEBUG, logger="amzsync.test.timer"):
            with Timer("spapi_get", logger, warn_ms=60000):
                pass

        assert caplog.records[-1].levelno == logging.DEBUG


class TestStructuredFormatter:
    """Tests for JSON log formatter."""

    def test_formats_as_json(self):
        parsed = json.loads(StructuredFormatter().format(_record()))

        assert parsed["message"] == "Test message"
        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "amzsync.test"
        assert parsed["timestamp"].endswith("Z")

    def test_includes_extras(self):
        parsed = json.loads(StructuredFormatter().format(_record(batch=3, report_id="R1")))
        assert parsed["batch"] == 3
        assert parsed["report_id"] == "R1"

    def test_includes_correlation_id(self):
        with correlation_context("run-456"):
            parsed = json.loads(StructuredFormatter().format(_record()))
        assert parsed["correlation_id"] == "run-456"

    def test_non_json_extras_stringified(self):
        parsed = json.loads(StructuredFormatter().format(_record(path=object())))
        assert isinstance(parsed["path"], str)


class TestHumanReadableFormatter:

    def test_format(self):
        with correlation_context("abc12345"):
            line = HumanReadableFormatter().format(_record("Batch 1/8: done", batch=1))

        assert "INFO" in line
        assert "[abc12345]" in line
        assert "Batch 1/8: done" in line
        assert "'batch': 1" in line


class TestSetupLogging:

    @pytest.fixture(autouse=True)
    def restore_root(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_json_mode(self):
        setup_logging(level="DEBUG", json_format=True)
        root = logging.getLogger()

        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_text_mode(self):
        setup_logging(level="warning")
        root = logging.getLogger()

        assert root.level == logging.WARNING
        assert isinstance(root.handlers[0].formatter, HumanReadableFormatter)
