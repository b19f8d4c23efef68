"""In-memory access store."""

import asyncio
import time
from dataclasses import replace
from datetime import datetime, timedelta

from triage_access.auth.models import ApiKey, Tier

from .base import AccessStore
from .types import (
    DEFAULT_IDEMPOTENCY_TTL_SECONDS,
    AppliedOperation,
    CounterKey,
    CounterSnapshot,
    CounterUpdate,
    period_ordinal,
)


class MemoryAccessStore(AccessStore):
    """In-memory access store.

    Data is lost on restart. Suitable for development, tests and
    single-process deployments. Every read-modify-write runs under one
    ``asyncio.Lock``.
    """

    def __init__(self) -> None:
        """Initialize memory store."""
        self._keys: dict[str, ApiKey] = {}
        self._digest_index: dict[str, str] = {}  # secret_digest -> key id
        self._owner_index: dict[str, set[str]] = {}
        self._counters: dict[CounterKey, int] = {}
        self._operations: dict[CounterKey, dict[str, int]] = {}
        self._applied_ops: dict[CounterKey, dict[str, AppliedOperation]] = {}
        self._windows: dict[str, tuple[int, float]] = {}  # key -> (count, expires at)
        self._tiers: dict[str, Tier] = {}
        self._lock = asyncio.Lock()

    # API keys

    async def insert_api_key(self, record: ApiKey) -> bool:
        async with self._lock:
            if record.secret_digest in self._digest_index:
                return False
            self._keys[record.id] = replace(record)
            self._digest_index[record.secret_digest] = record.id
            self._owner_index.setdefault(record.owner_id, set()).add(record.id)
            return True

    async def get_api_key(self, key_id: str) -> ApiKey | None:
        record = self._keys.get(key_id)
        # Copies so callers never mutate stored state
        return replace(record) if record else None

    async def find_api_key_id(self, secret_digest: str) -> str | None:
        return self._digest_index.get(secret_digest)

    async def record_api_key_use(self, key_id: str, used_at: datetime) -> None:
        async with self._lock:
            record = self._keys.get(key_id)
            if record is None:
                return
            record.request_count += 1
            record.last_used_at = used_at

    async def revoke_api_key(self, key_id: str, revoked_at: datetime) -> bool:
        async with self._lock:
            record = self._keys.get(key_id)
            if record is None:
                return False
            if record.is_active:
                record.is_active = False
                record.revoked_at = revoked_at
            return True

    async def list_api_keys(self, owner_id: str) -> list[ApiKey]:
        ids = self._owner_index.get(owner_id, set())
        records = [replace(self._keys[key_id]) for key_id in ids]
        return sorted(records, key=lambda r: r.created_at)

    # Quota counters

    async def consume(
        self,
        key: CounterKey,
        amount: int,
        ceiling: int | None,
        now: datetime,
        idempotency_key: str | None = None,
        operation: str | None = None,
        operation_count: int = 1,
        idempotency_ttl_seconds: int = DEFAULT_IDEMPOTENCY_TTL_SECONDS,
    ) -> CounterUpdate:
        async with self._lock:
            applied = self._applied_ops.setdefault(key, {})
            self._evict_expired_ops(applied, now)
            consumed = self._counters.get(key, 0)

            prior = applied.get(idempotency_key) if idempotency_key is not None else None
            if prior is not None:
                if not prior.matches(amount, operation):
                    return CounterUpdate(applied=False, consumed=consumed, conflict=True)
                return CounterUpdate(applied=True, consumed=prior.consumed, replayed=True)

            if ceiling is not None and consumed + amount > ceiling:
                return CounterUpdate(applied=False, consumed=consumed)

            consumed += amount
            self._counters[key] = consumed
            if operation is not None:
                counts = self._operations.setdefault(key, {})
                counts[operation] = counts.get(operation, 0) + operation_count
            if idempotency_key is not None:
                applied[idempotency_key] = AppliedOperation(
                    amount=amount,
                    operation=operation,
                    consumed=consumed,
                    expires_at=now + timedelta(seconds=idempotency_ttl_seconds),
                )
            return CounterUpdate(applied=True, consumed=consumed)

    @staticmethod
    def _evict_expired_ops(applied: dict[str, AppliedOperation], now: datetime) -> None:
        expired = [k for k, op in applied.items() if op.expires_at <= now]
        for idempotency_key in expired:
            del applied[idempotency_key]

    async def get_consumed(self, key: CounterKey) -> int:
        return self._counters.get(key, 0)

    async def get_counter(self, key: CounterKey) -> CounterSnapshot:
        return CounterSnapshot(
            consumed=self._counters.get(key, 0),
            operations=dict(self._operations.get(key, {})),
        )

    async def delete_counters_before(self, period_id: str) -> int:
        cutoff = period_ordinal(period_id)
        async with self._lock:
            stale = [k for k in self._counters if period_ordinal(k.period_id) < cutoff]
            for key in stale:
                del self._counters[key]
                self._operations.pop(key, None)
                self._applied_ops.pop(key, None)
            return len(stale)

    # Rate limit windows

    async def increment_window(self, key: str, ttl_seconds: int) -> int:
        async with self._lock:
            now = time.monotonic()
            self._evict_expired_windows(now)
            count, expires_at = self._windows.get(key, (0, now + ttl_seconds))
            count += 1
            self._windows[key] = (count, expires_at)
            return count

    def _evict_expired_windows(self, now: float) -> None:
        expired = [k for k, (_, expires_at) in self._windows.items() if expires_at <= now]
        for key in expired:
            del self._windows[key]

    # Subscriptions

    async def get_tier(self, user_id: str) -> Tier | None:
        return self._tiers.get(user_id)

    async def set_tier(self, user_id: str, tier: Tier) -> None:
        self._tiers[user_id] = tier
