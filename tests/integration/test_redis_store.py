"""Integration tests for the Redis access store.

These tests require a running Redis instance and are skipped when none is
reachable.

With a local Redis:
    docker run -d --name redis-test -p 6379:6379 redis:7-alpine
    REDIS_URL=redis://localhost:6379/15 pytest tests/integration -v
"""

import asyncio
import os
import uuid
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

from triage_access.auth import ApiKey, Tier
from triage_access.store import CounterKey, RedisAccessStore, RedisAccessStoreOptions

pytestmark = pytest.mark.integration

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


@pytest_asyncio.fixture
async def store():
    """Connected store under a unique key prefix, removed afterwards."""
    prefix = f"test:access:{uuid.uuid4().hex[:8]}"
    store = RedisAccessStore(
        RedisAccessStoreOptions(
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/15"),
            key_prefix=prefix,
            connect_timeout=1.0,
        )
    )
    if not await store.connect():
        pytest.skip("Redis not available")

    yield store

    client = store._client
    async for key in client.scan_iter(match=f"{prefix}:*"):
        await client.delete(key)
    await store.close()


def make_key(key_id: str = "key_1", owner_id: str = "user_1", **overrides) -> ApiKey:
    values = {
        "id": key_id,
        "owner_id": owner_id,
        "name": key_id,
        "prefix": "rtm_abcdefgh...",
        "secret_digest": f"digest-{key_id}",
        "created_at": NOW,
    }
    values.update(overrides)
    return ApiKey(**values)


class TestRedisApiKeys:
    """API key records in Redis."""

    @pytest.mark.asyncio
    async def test_insert_find_get(self, store):
        assert await store.insert_api_key(make_key(ip_allow_list=("10.0.0.0/8",)))
        assert await store.find_api_key_id("digest-key_1") == "key_1"

        record = await store.get_api_key("key_1")
        assert record.owner_id == "user_1"
        assert record.ip_allow_list == ("10.0.0.0/8",)
        assert record.is_active

    @pytest.mark.asyncio
    async def test_duplicate_digest_rejected(self, store):
        await store.insert_api_key(make_key())
        assert not await store.insert_api_key(make_key("key_2", secret_digest="digest-key_1"))
        assert await store.get_api_key("key_2") is None

    @pytest.mark.asyncio
    async def test_record_use(self, store):
        await store.insert_api_key(make_key())
        await store.record_api_key_use("key_1", NOW)
        await store.record_api_key_use("key_1", NOW + timedelta(minutes=5))

        record = await store.get_api_key("key_1")
        assert record.request_count == 2
        assert record.last_used_at == NOW + timedelta(minutes=5)

    @pytest.mark.asyncio
    async def test_revoke_keeps_first_timestamp(self, store):
        await store.insert_api_key(make_key())
        assert await store.revoke_api_key("key_1", NOW)
        assert await store.revoke_api_key("key_1", NOW + timedelta(days=1))
        assert not await store.revoke_api_key("missing", NOW)

        record = await store.get_api_key("key_1")
        assert not record.is_active
        assert record.revoked_at == NOW

    @pytest.mark.asyncio
    async def test_list_by_owner(self, store):
        await store.insert_api_key(make_key("key_1"))
        await store.insert_api_key(make_key("key_2"))
        await store.insert_api_key(make_key("key_3", owner_id="user_2"))

        keys = await store.list_api_keys("user_1")
        assert {k.id for k in keys} == {"key_1", "key_2"}


class TestRedisQuota:
    """Quota counters in Redis."""

    @pytest.mark.asyncio
    async def test_consume_up_to_ceiling(self, store):
        key = CounterKey("user_1", "scans", "2026-03")
        assert (await store.consume(key, 6, 10, NOW)).applied
        update = await store.consume(key, 5, 10, NOW)
        assert not update.applied
        assert update.consumed == 6
        assert (await store.consume(key, 4, 10, NOW)).consumed == 10
        assert await store.get_consumed(key) == 10

    @pytest.mark.asyncio
    async def test_unlimited(self, store):
        key = CounterKey("user_1", "tokens", "2026-03")
        assert (await store.consume(key, 1_000_000, None, NOW)).applied

    @pytest.mark.asyncio
    async def test_idempotency_key(self, store):
        key = CounterKey("user_1", "scans", "2026-03")
        first = await store.consume(key, 1, 10, NOW, idempotency_key="op-1")
        again = await store.consume(key, 1, 10, NOW, idempotency_key="op-1")
        assert first.applied and not first.replayed
        assert again.applied and again.replayed
        assert await store.get_consumed(key) == 1

    @pytest.mark.asyncio
    async def test_idempotency_key_reused_with_other_amount(self, store):
        key = CounterKey("user_1", "tokens", "2026-03")
        await store.consume(key, 1, 1000, NOW, idempotency_key="op-2")
        update = await store.consume(key, 5000, 1000, NOW, idempotency_key="op-2")
        assert update.conflict and not update.applied
        assert await store.get_consumed(key) == 1

    @pytest.mark.asyncio
    async def test_operation_counts(self, store):
        key = CounterKey("user_1", "tokens", "2026-03")
        await store.consume(key, 50, None, NOW, operation="lighthouse_audit")
        await store.consume(key, 2, None, NOW, operation="console_log", operation_count=2)
        snapshot = await store.get_counter(key)
        assert snapshot.consumed == 52
        assert snapshot.operations == {"lighthouse_audit": 1, "console_log": 2}

    @pytest.mark.asyncio
    async def test_concurrent_consumers_never_overshoot(self, store):
        key = CounterKey("user_1", "scans", "2026-03")
        results = await asyncio.gather(*(store.consume(key, 1, 10, NOW) for _ in range(25)))
        assert sum(r.applied for r in results) == 10
        assert await store.get_consumed(key) == 10

    @pytest.mark.asyncio
    async def test_delete_counters_before(self, store):
        for period in ("2025-11", "2026-02", "2026-03"):
            await store.consume(CounterKey("user_1", "scans", period), 1, None, NOW)

        assert await store.delete_counters_before("2026-02") == 1
        assert await store.get_consumed(CounterKey("user_1", "scans", "2025-11")) == 0
        assert await store.get_consumed(CounterKey("user_1", "scans", "2026-02")) == 1


class TestRedisWindowsAndTiers:
    """Rate windows and subscription tiers in Redis."""

    @pytest.mark.asyncio
    async def test_increment_window(self, store):
        assert await store.increment_window("user_1:default:100", 60) == 1
        assert await store.increment_window("user_1:default:100", 60) == 2
        assert await store.increment_window("user_1:default:101", 60) == 1

    @pytest.mark.asyncio
    async def test_tiers(self, store):
        assert await store.get_tier("user_1") is None
        await store.set_tier("user_1", Tier.TEAM)
        assert await store.get_tier("user_1") == Tier.TEAM

    @pytest.mark.asyncio
    async def test_ping(self, store):
        assert await store.ping()
