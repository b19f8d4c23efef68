"""Access engine metrics - OpenTelemetry conventions.

Metrics:
- triage_access_decisions_total{outcome,reason,scheme}: every authorize call
- triage_access_quota_consumed_total{meter,tier}: units consumed
- triage_access_store_latency_seconds{operation}: store call latency

All metrics use the 'triage_access_' prefix.
"""

from dataclasses import dataclass
from typing import Any

from opentelemetry import metrics
from opentelemetry.metrics import Counter, Histogram

METRIC_PREFIX = "triage_access"


@dataclass
class MetricLabels:
    """Standard metric labels/attributes."""

    OUTCOME = "outcome"
    REASON = "reason"
    SCHEME = "scheme"
    METER = "meter"
    TIER = "tier"
    OPERATION = "operation"

    OUTCOME_ALLOWED = "allowed"
    OUTCOME_DENIED = "denied"
    OUTCOME_UNAVAILABLE = "unavailable"


class AccessMetrics:
    """Access engine metrics collection."""

    def __init__(self, meter: metrics.Meter):
        """Initialize metrics.

        Args:
            meter: OpenTelemetry Meter instance
        """
        self._meter = meter

        self.decisions_total: Counter = meter.create_counter(
            name=f"{METRIC_PREFIX}_decisions_total",
            description="Total number of access decisions",
            unit="1",
        )
        self.quota_consumed_total: Counter = meter.create_counter(
            name=f"{METRIC_PREFIX}_quota_consumed_total",
            description="Total quota units consumed",
            unit="1",
        )
        self.store_latency_seconds: Histogram = meter.create_histogram(
            name=f"{METRIC_PREFIX}_store_latency_seconds",
            description="Backing store call latency in seconds",
            unit="s",
        )

    def record_decision(
        self, outcome: str, reason: str | None = None, scheme: str | None = None
    ) -> None:
        """Record one authorize outcome.

        Args:
            outcome: allowed, denied or unavailable
            reason: Reason code for denials
            scheme: Credential scheme, when one was recognized
        """
        labels: dict[str, Any] = {MetricLabels.OUTCOME: outcome}
        if reason:
            labels[MetricLabels.REASON] = reason
        if scheme:
            labels[MetricLabels.SCHEME] = scheme
        self.decisions_total.add(1, labels)

    def record_quota_consumed(self, meter: str, tier: str, amount: int) -> None:
        self.quota_consumed_total.add(
            amount, {MetricLabels.METER: meter, MetricLabels.TIER: tier}
        )

    def record_store_latency(self, operation: str, duration_seconds: float) -> None:
        self.store_latency_seconds.record(
            duration_seconds, {MetricLabels.OPERATION: operation}
        )


def create_access_metrics(meter: metrics.Meter | None = None) -> AccessMetrics:
    """Build metrics on the given meter, or the global provider's meter."""
    return AccessMetrics(meter or metrics.get_meter(METRIC_PREFIX))
