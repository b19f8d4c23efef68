"""Structured logging with OTEL trace context.

Provides JSON logging with automatic trace context injection. Never pass a
full credential as a field: log ``key_prefix`` or ``principal_id`` instead.

Usage:
    from triage_access.telemetry.logging import get_logger

    logger = get_logger("coordinator")
    logger.info("Access denied", principal_id="user_1", reason="QUOTA_EXCEEDED")
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from opentelemetry import trace

from triage_access.config import LogFormat, LoggingConfig

from .context import get_request_id

ROOT_LOGGER = "triage_access"

_RESERVED_ATTRS = frozenset(
    {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName",
        "message", "taskName",
    }
)


class StructuredLogFormatter(logging.Formatter):
    """JSON formatter with trace context injection.

    Formats log records as JSON with:
    - timestamp (ISO 8601)
    - level
    - component (logger name)
    - message
    - trace_id / span_id (if a span is recording)
    - request_id (if one is bound to the current request)
    - Additional fields from extra
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON-formatted log string
        """
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        span = trace.get_current_span()
        if span and span.is_recording():
            ctx = span.get_span_context()
            if ctx.is_valid:
                log_data["trace_id"] = format(ctx.trace_id, "032x")
                log_data["span_id"] = format(ctx.span_id, "016x")

        request_id = get_request_id()
        if request_id:
            log_data["request_id"] = request_id

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class AccessLogger:
    """Structured logger: keyword arguments become JSON fields."""

    def __init__(self, name: str, level: int | None = None):
        """Initialize logger.

        Args:
            name: Component name (nested under ``triage_access``)
            level: Optional level override
        """
        self._logger = logging.getLogger(f"{ROOT_LOGGER}.{name}")
        if level is not None:
            self._logger.setLevel(level)

    def _log(self, level: int, message: str, **kwargs: Any) -> None:
        self._logger.log(level, message, extra=kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log debug message."""
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        """Log info message."""
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log warning message."""
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        """Log error message."""
        self._log(logging.ERROR, message, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log exception with traceback."""
        self._logger.exception(message, extra=kwargs)


_loggers: dict[str, AccessLogger] = {}


def get_logger(name: str, level: int | None = None) -> AccessLogger:
    """Get or create a structured logger.

    Args:
        name: Logger name (component name)
        level: Optional level override

    Returns:
        AccessLogger instance
    """
    if name not in _loggers:
        _loggers[name] = AccessLogger(name, level)
    return _loggers[name]


def reset_loggers() -> None:
    """Reset logger cache (for testing)."""
    global _loggers
    _loggers = {}


def configure_logging(config: LoggingConfig | None = None) -> logging.Logger:
    """Install one stderr handler on the package root logger.

    Calling again replaces the previous handler instead of stacking another.
    """
    config = config or LoggingConfig()
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(config.level.upper())

    for handler in list(root.handlers):
        if getattr(handler, "_triage_access", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    if config.format == LogFormat.JSON:
        handler.setFormatter(StructuredLogFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )
    handler._triage_access = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    return root
