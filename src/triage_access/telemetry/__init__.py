"""Access engine telemetry - structured logging and OpenTelemetry metrics."""

from .context import bind_request_id, get_request_id, request_id_var
from .logging import (
    AccessLogger,
    StructuredLogFormatter,
    configure_logging,
    get_logger,
    reset_loggers,
)
from .metrics import AccessMetrics, MetricLabels, create_access_metrics

__all__ = [
    # Request context
    "bind_request_id",
    "get_request_id",
    "request_id_var",
    # Metrics
    "AccessMetrics",
    "MetricLabels",
    "create_access_metrics",
    # Logging
    "AccessLogger",
    "StructuredLogFormatter",
    "configure_logging",
    "get_logger",
    "reset_loggers",
]
