"""Tests for structured logging with trace context."""

import json
import logging

import pytest
from opentelemetry.sdk.trace import TracerProvider

from triage_access.config import LogFormat, LoggingConfig
from triage_access.telemetry.context import bind_request_id, get_request_id
from triage_access.telemetry.logging import (
    AccessLogger,
    StructuredLogFormatter,
    configure_logging,
    get_logger,
    reset_loggers,
)


@pytest.fixture(autouse=True)
def reset_logger_state():
    """Reset logger state before and after each test."""
    reset_loggers()
    yield
    reset_loggers()
    root = logging.getLogger("triage_access")
    for handler in list(root.handlers):
        if getattr(handler, "_triage_access", False):
            root.removeHandler(handler)
    root.setLevel(logging.NOTSET)


def make_record(msg: str = "Test message", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="triage_access.coordinator",
        level=logging.INFO,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredLogFormatter:
    """Tests for StructuredLogFormatter."""

    def test_formats_as_json(self):
        """Test log record is formatted as JSON."""
        data = json.loads(StructuredLogFormatter().format(make_record()))
        assert data["message"] == "Test message"
        assert data["level"] == "INFO"
        assert data["component"] == "triage_access.coordinator"
        assert "timestamp" in data

    def test_extra_fields(self):
        record = make_record(principal_id="user_1", reason="QUOTA_EXCEEDED")
        data = json.loads(StructuredLogFormatter().format(record))
        assert data["principal_id"] == "user_1"
        assert data["reason"] == "QUOTA_EXCEEDED"

    def test_non_json_values_are_stringified(self):
        record = make_record(scopes=frozenset({"read"}))
        data = json.loads(StructuredLogFormatter().format(record))
        assert "read" in data["scopes"]

    def test_no_trace_context_when_no_span(self):
        """Test no trace_id/span_id when no active span."""
        data = json.loads(StructuredLogFormatter().format(make_record()))
        assert "trace_id" not in data
        assert "span_id" not in data

    def test_trace_context_injected_with_active_span(self):
        """Test trace_id/span_id injected when span is active."""
        tracer = TracerProvider().get_tracer("test")
        with tracer.start_as_current_span("authorize"):
            output = StructuredLogFormatter().format(make_record())

        data = json.loads(output)
        assert len(data["trace_id"]) == 32
        assert len(data["span_id"]) == 16

    def test_request_id_injected_when_bound(self):
        with bind_request_id("req-42"):
            data = json.loads(StructuredLogFormatter().format(make_record()))
        assert data["request_id"] == "req-42"

    def test_no_request_id_outside_request(self):
        data = json.loads(StructuredLogFormatter().format(make_record()))
        assert "request_id" not in data


class TestRequestContext:
    """Tests for request id binding."""

    def test_bind_and_reset(self):
        assert get_request_id() is None
        with bind_request_id("outer"):
            with bind_request_id("inner"):
                assert get_request_id() == "inner"
            assert get_request_id() == "outer"
        assert get_request_id() is None


class TestAccessLogger:
    """Tests for AccessLogger."""

    def test_kwargs_become_record_fields(self, caplog):
        with caplog.at_level(logging.INFO, logger="triage_access"):
            AccessLogger("coordinator").info("Access denied", reason="RATE_LIMITED")

        record = caplog.records[-1]
        assert record.name == "triage_access.coordinator"
        assert record.reason == "RATE_LIMITED"

    def test_get_logger_caches(self):
        assert get_logger("a") is get_logger("a")
        assert get_logger("a") is not get_logger("b")


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_installs_single_handler(self):
        configure_logging(LoggingConfig(level="debug"))
        root = configure_logging(LoggingConfig(level="warning", format=LogFormat.TEXT))

        tagged = [h for h in root.handlers if getattr(h, "_triage_access", False)]
        assert len(tagged) == 1
        assert not isinstance(tagged[0].formatter, StructuredLogFormatter)
        assert root.level == logging.WARNING

    def test_json_format(self):
        root = configure_logging(LoggingConfig())
        tagged = [h for h in root.handlers if getattr(h, "_triage_access", False)]
        assert isinstance(tagged[0].formatter, StructuredLogFormatter)
