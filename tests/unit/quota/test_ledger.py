"""Unit tests for the quota ledger."""

import asyncio
from datetime import UTC, datetime

import pytest

from triage_access.auth import Tier
from triage_access.errors import AccessError
from triage_access.quota import (
    Meter,
    QuotaLedger,
    period_id_for,
    period_reset_at,
    period_start,
    previous_period_id,
)


@pytest.fixture
def ledger(store, guard, clock) -> QuotaLedger:
    return QuotaLedger(store, guard, clock=clock)


class TestPeriods:
    """Tests for period helpers."""

    def test_period_id_is_utc_month(self):
        assert period_id_for(datetime(2026, 3, 31, 23, 59, 59, tzinfo=UTC)) == "2026-03"
        assert period_id_for(datetime(2026, 4, 1, tzinfo=UTC)) == "2026-04"

    def test_reset_at_rolls_year(self):
        assert period_reset_at("2026-12") == datetime(2027, 1, 1, tzinfo=UTC)
        assert period_reset_at("2026-03") == datetime(2026, 4, 1, tzinfo=UTC)

    def test_previous_period(self):
        assert previous_period_id("2026-01") == "2025-12"
        assert previous_period_id("2026-10") == "2026-09"

    def test_period_start(self):
        assert period_start("2026-03") == datetime(2026, 3, 1, tzinfo=UTC)


class TestTryConsume:
    """Tests for try_consume."""

    @pytest.mark.asyncio
    async def test_consume_within_ceiling(self, ledger):
        result = await ledger.try_consume("user_1", "2026-03", 3, 10)
        assert result.allowed
        assert result.consumed_after == 3
        assert result.remaining == 7
        assert result.reset_at == datetime(2026, 4, 1, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_denied_leaves_counter_unchanged(self, ledger):
        await ledger.try_consume("user_1", "2026-03", 8, 10)
        result = await ledger.try_consume("user_1", "2026-03", 3, 10)
        assert not result.allowed
        assert result.consumed_after == 8
        assert result.remaining == 2
        assert await ledger.get_usage("user_1", "2026-03") == 8

    @pytest.mark.asyncio
    async def test_exact_fill(self, ledger):
        result = await ledger.try_consume("user_1", "2026-03", 10, 10)
        assert result.allowed
        assert result.remaining == 0

    @pytest.mark.asyncio
    async def test_zero_ceiling_denies(self, ledger):
        assert not (await ledger.try_consume("user_1", "2026-03", 1, 0)).allowed

    @pytest.mark.asyncio
    async def test_unlimited(self, ledger):
        result = await ledger.try_consume("user_1", "2026-03", 10**6, None)
        assert result.allowed
        assert result.remaining is None

    @pytest.mark.asyncio
    async def test_meters_and_periods_are_separate(self, ledger):
        await ledger.try_consume("user_1", "2026-03", 5, 5)
        assert (await ledger.try_consume("user_1", "2026-03", 5, 5, meter=Meter.TOKENS)).allowed
        assert (await ledger.try_consume("user_1", "2026-04", 5, 5)).allowed
        assert (await ledger.try_consume("user_2", "2026-03", 5, 5)).allowed

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -1, True, 1.5, "2"])
    async def test_invalid_amount(self, ledger, amount):
        with pytest.raises(AccessError) as exc_info:
            await ledger.try_consume("user_1", "2026-03", amount, 10)
        assert exc_info.value.code == "VALIDATION_FAILED"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("period_id", ["2026-3", "2026-13", "202603", "March"])
    async def test_invalid_period(self, ledger, period_id):
        with pytest.raises(AccessError) as exc_info:
            await ledger.try_consume("user_1", period_id, 1, 10)
        assert exc_info.value.code == "VALIDATION_FAILED"

    @pytest.mark.asyncio
    async def test_negative_ceiling(self, ledger):
        with pytest.raises(AccessError):
            await ledger.try_consume("user_1", "2026-03", 1, -1)

    @pytest.mark.asyncio
    async def test_concurrent_consumers_never_overshoot(self, ledger):
        results = await asyncio.gather(
            *(ledger.try_consume("user_1", "2026-03", 1, 10) for _ in range(50))
        )
        assert sum(r.allowed for r in results) == 10
        assert await ledger.get_usage("user_1", "2026-03") == 10

    @pytest.mark.asyncio
    async def test_concurrent_mixed_amounts(self, ledger):
        results = await asyncio.gather(
            *(ledger.try_consume("user_1", "2026-03", 3, 10) for _ in range(10))
        )
        assert sum(r.allowed for r in results) == 3
        assert await ledger.get_usage("user_1", "2026-03") == 9


class TestIdempotency:
    """Tests for idempotent retries."""

    @pytest.mark.asyncio
    async def test_replay_returns_original_outcome(self, ledger):
        first = await ledger.try_consume("user_1", "2026-03", 2, 10, idempotency_key="op-1")
        replay = await ledger.try_consume("user_1", "2026-03", 2, 10, idempotency_key="op-1")
        assert first.allowed and not first.replayed
        assert replay.allowed and replay.replayed
        assert replay.consumed_after == 2
        assert await ledger.get_usage("user_1", "2026-03") == 2

    @pytest.mark.asyncio
    async def test_replay_after_counter_filled(self, ledger):
        await ledger.try_consume("user_1", "2026-03", 5, 10, idempotency_key="op-1")
        await ledger.try_consume("user_1", "2026-03", 5, 10)
        replay = await ledger.try_consume("user_1", "2026-03", 5, 10, idempotency_key="op-1")
        assert replay.allowed
        assert await ledger.get_usage("user_1", "2026-03") == 10

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_apply_once(self, ledger):
        await asyncio.gather(
            *(
                ledger.try_consume("user_1", "2026-03", 1, 10, idempotency_key="op-9")
                for _ in range(5)
            )
        )
        assert await ledger.get_usage("user_1", "2026-03") == 1

    @pytest.mark.asyncio
    async def test_denied_request_is_not_remembered(self, ledger):
        await ledger.try_consume("user_1", "2026-03", 10, 10)
        denied = await ledger.try_consume("user_1", "2026-03", 1, 10, idempotency_key="op-2")
        assert not denied.allowed
        again = await ledger.try_consume("user_1", "2026-03", 1, 11, idempotency_key="op-2")
        assert again.allowed
        assert not again.replayed

    @pytest.mark.asyncio
    async def test_key_reused_with_different_amount_is_rejected(self, ledger):
        await ledger.try_consume("user_1", "2026-03", 1, 1000, idempotency_key="op-3")
        with pytest.raises(AccessError) as exc_info:
            await ledger.try_consume("user_1", "2026-03", 5000, 1000, idempotency_key="op-3")
        assert exc_info.value.code == "VALIDATION_FAILED"
        assert await ledger.get_usage("user_1", "2026-03") == 1

    @pytest.mark.asyncio
    async def test_key_reused_with_different_operation_is_rejected(self, ledger):
        await ledger.try_consume(
            "user_1", "2026-03", 10, 1000, idempotency_key="op-4", operation="screenshot"
        )
        with pytest.raises(AccessError) as exc_info:
            await ledger.try_consume(
                "user_1", "2026-03", 10, 1000, idempotency_key="op-4", operation="console_log"
            )
        assert exc_info.value.code == "VALIDATION_FAILED"

    @pytest.mark.asyncio
    async def test_key_expires_after_ttl(self, ledger, clock):
        await ledger.try_consume("user_1", "2026-03", 1, 10, idempotency_key="op-5")
        clock.advance(seconds=599)
        retry = await ledger.try_consume("user_1", "2026-03", 1, 10, idempotency_key="op-5")
        assert retry.replayed

        clock.advance(seconds=1)
        fresh = await ledger.try_consume("user_1", "2026-03", 1, 10, idempotency_key="op-5")
        assert fresh.allowed and not fresh.replayed
        assert await ledger.get_usage("user_1", "2026-03") == 2


class TestOperationCounts:
    """Tests for per-operation counts."""

    @pytest.mark.asyncio
    async def test_counts_accumulate_per_operation(self, ledger):
        await ledger.try_consume(
            "user_1", "2026-03", 10, None, Meter.TOKENS, operation="screenshot"
        )
        await ledger.try_consume(
            "user_1", "2026-03", 30, None, Meter.TOKENS, operation="screenshot", operation_count=3
        )
        await ledger.try_consume(
            "user_1", "2026-03", 1, None, Meter.TOKENS, operation="console_log"
        )

        balance = await ledger.balance("user_1", Tier.FREE, Meter.TOKENS)
        assert balance.consumed == 41
        assert balance.operations == {"screenshot": 4, "console_log": 1}

    @pytest.mark.asyncio
    async def test_denied_and_replayed_requests_are_not_counted(self, ledger):
        await ledger.try_consume(
            "user_1", "2026-03", 5, 5, Meter.TOKENS, idempotency_key="a", operation="screenshot"
        )
        await ledger.try_consume(
            "user_1", "2026-03", 5, 5, Meter.TOKENS, idempotency_key="a", operation="screenshot"
        )
        await ledger.try_consume("user_1", "2026-03", 5, 5, Meter.TOKENS, operation="screenshot")

        balance = await ledger.balance("user_1", Tier.FREE, Meter.TOKENS)
        assert balance.operations == {"screenshot": 1}


class TestBalance:
    """Tests for usage balances."""

    @pytest.mark.asyncio
    async def test_balance(self, ledger):
        await ledger.try_consume("user_1", "2026-03", 4, 10)
        balance = await ledger.balance("user_1", Tier.FREE)
        assert balance.consumed == 4
        assert balance.ceiling == 10
        assert balance.remaining == 6
        assert not balance.unlimited
        assert balance.period_start == datetime(2026, 3, 1, tzinfo=UTC)
        assert balance.period_end == datetime(2026, 4, 1, tzinfo=UTC)
        assert balance.to_dict()["meter"] == "scans"

    @pytest.mark.asyncio
    async def test_unlimited_balance(self, ledger):
        balance = await ledger.balance("user_1", Tier.ENTERPRISE, Meter.TOKENS)
        assert balance.unlimited
        assert balance.ceiling is None
        assert balance.remaining is None

    @pytest.mark.asyncio
    async def test_new_period_starts_at_zero(self, ledger, clock):
        await ledger.try_consume("user_1", "2026-03", 4, 10)
        clock.set(datetime(2026, 4, 1, tzinfo=UTC))
        assert ledger.current_period_id() == "2026-04"
        assert (await ledger.balance("user_1", Tier.FREE)).consumed == 0


class TestHistory:
    """Tests for per-period history."""

    @pytest.mark.asyncio
    async def test_newest_first_with_empty_periods(self, ledger):
        await ledger.try_consume("user_1", "2026-03", 3, 10)
        await ledger.try_consume("user_1", "2026-01", 7, 10)

        history = await ledger.history("user_1", Tier.FREE, Meter.SCANS, months=4)

        assert [b.period_id for b in history] == ["2026-03", "2026-02", "2026-01", "2025-12"]
        assert [b.consumed for b in history] == [3, 0, 7, 0]
        assert history[2].remaining == 3
        assert history[3].period_start == datetime(2025, 12, 1, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_default_is_six_token_periods(self, ledger):
        history = await ledger.history("user_1", Tier.FREE)
        assert len(history) == 6
        assert {b.meter for b in history} == {Meter.TOKENS}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("months", [0, 25, True])
    async def test_months_out_of_range(self, ledger, months):
        with pytest.raises(AccessError) as exc_info:
            await ledger.history("user_1", Tier.FREE, months=months)
        assert exc_info.value.code == "VALIDATION_FAILED"
