"""Tests for access engine metrics."""

import pytest
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from triage_access.application import build_coordinator
from triage_access.quota import QuotaRequest
from triage_access.telemetry import AccessMetrics, MetricLabels, create_access_metrics

from support import bearer


@pytest.fixture
def reader() -> InMemoryMetricReader:
    return InMemoryMetricReader()


@pytest.fixture
def metrics(reader) -> AccessMetrics:
    return AccessMetrics(MeterProvider(metric_readers=[reader]).get_meter("test"))


def points(reader: InMemoryMetricReader, name: str) -> list:
    data = reader.get_metrics_data()
    found = []
    if data is None:
        return found
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                if metric.name == name:
                    found.extend(metric.data.data_points)
    return found


class TestAccessMetrics:
    """Tests for AccessMetrics."""

    def test_record_decision(self, metrics, reader):
        metrics.record_decision(MetricLabels.OUTCOME_DENIED, "QUOTA_EXCEEDED", "api-key")
        metrics.record_decision(MetricLabels.OUTCOME_ALLOWED, scheme="api-key")

        decisions = points(reader, "triage_access_decisions_total")
        by_outcome = {p.attributes[MetricLabels.OUTCOME]: p for p in decisions}
        assert by_outcome["denied"].value == 1
        assert by_outcome["denied"].attributes[MetricLabels.REASON] == "QUOTA_EXCEEDED"
        assert MetricLabels.REASON not in by_outcome["allowed"].attributes

    def test_record_quota_consumed(self, metrics, reader):
        metrics.record_quota_consumed("tokens", "free", 50)
        metrics.record_quota_consumed("tokens", "free", 10)
        (point,) = points(reader, "triage_access_quota_consumed_total")
        assert point.value == 60
        assert dict(point.attributes) == {"meter": "tokens", "tier": "free"}

    def test_record_store_latency(self, metrics, reader):
        metrics.record_store_latency("quota.try_consume", 0.004)
        (point,) = points(reader, "triage_access_store_latency_seconds")
        assert point.count == 1
        assert point.attributes[MetricLabels.OPERATION] == "quota.try_consume"

    def test_create_with_global_meter(self):
        assert isinstance(create_access_metrics(), AccessMetrics)


class TestCoordinatorMetrics:
    """Decisions and consumption flow into metrics."""

    @pytest.mark.asyncio
    async def test_decisions_counted(self, config, store, clock, signer, metrics, reader):
        coordinator = build_coordinator(config, store, clock=clock, metrics=metrics)
        header = bearer(signer.issue("user_1"))

        await coordinator.authorize(header, quota=QuotaRequest(amount=10))
        await coordinator.authorize(header, quota=QuotaRequest())
        await coordinator.authorize(None)

        decisions = points(reader, "triage_access_decisions_total")
        totals = {}
        for p in decisions:
            outcome = p.attributes[MetricLabels.OUTCOME]
            totals[outcome] = totals.get(outcome, 0) + p.value
        assert totals == {"allowed": 1, "denied": 2}

        (consumed,) = points(reader, "triage_access_quota_consumed_total")
        assert consumed.value == 10
        assert points(reader, "triage_access_store_latency_seconds")
