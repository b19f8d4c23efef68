"""Backing store abstract base class."""

from abc import ABC, abstractmethod
from datetime import datetime

from triage_access.auth.models import ApiKey, Tier

from .types import DEFAULT_IDEMPOTENCY_TTL_SECONDS, CounterKey, CounterSnapshot, CounterUpdate


class AccessStore(ABC):
    """Abstract interface for the engine's persistent state.

    The engine needs three primitives from any backend: point lookup by key,
    point lookup by a secondary unique value (API key by secret digest), and
    an atomic read-modify-write. Every method may raise; callers go through
    ``StoreGuard`` which turns timeouts and client errors into
    ``BACKEND_UNAVAILABLE``.

    Implementations:
    - MemoryAccessStore: single-process, asyncio.Lock for atomicity
    - RedisAccessStore: Redis with Lua scripts for atomicity
    """

    # ─────────────────────────────────────────────────────────────────
    # API keys
    # ─────────────────────────────────────────────────────────────────

    @abstractmethod
    async def insert_api_key(self, record: ApiKey) -> bool:
        """Persist a new key.

        Returns:
            False if another key already owns ``record.secret_digest``
        """
        ...

    @abstractmethod
    async def get_api_key(self, key_id: str) -> ApiKey | None:
        """Point lookup by key id."""
        ...

    @abstractmethod
    async def find_api_key_id(self, secret_digest: str) -> str | None:
        """Secondary unique index: secret digest -> key id."""
        ...

    @abstractmethod
    async def record_api_key_use(self, key_id: str, used_at: datetime) -> None:
        """Atomically increment request_count and set last_used_at."""
        ...

    @abstractmethod
    async def revoke_api_key(self, key_id: str, revoked_at: datetime) -> bool:
        """Mark a key inactive (the record is kept).

        Returns:
            False if the key does not exist
        """
        ...

    @abstractmethod
    async def list_api_keys(self, owner_id: str) -> list[ApiKey]:
        """List every key (active or not) belonging to an owner."""
        ...

    # ─────────────────────────────────────────────────────────────────
    # Quota counters
    # ─────────────────────────────────────────────────────────────────

    @abstractmethod
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
        """Atomic check-then-increment.

        Increments by ``amount`` only if the result stays within ``ceiling``
        (``None`` = unlimited). Two concurrent calls must never both succeed
        if together they would exceed the ceiling. When ``operation`` is
        given its per-counter count grows by ``operation_count`` in the same
        step.

        An applied ``idempotency_key`` is remembered with its amount and
        operation for ``idempotency_ttl_seconds``. Reusing it with the same
        parameters reports ``replayed``; with different ones ``conflict``.
        """
        ...

    @abstractmethod
    async def get_consumed(self, key: CounterKey) -> int:
        """Current value of a counter (0 if it does not exist)."""
        ...

    @abstractmethod
    async def get_counter(self, key: CounterKey) -> CounterSnapshot:
        """Counter value and per-operation counts (empty if it does not exist)."""
        ...

    @abstractmethod
    async def delete_counters_before(self, period_id: str) -> int:
        """Delete counters for periods strictly older than ``period_id``.

        Returns:
            Number of counters deleted
        """
        ...

    # ─────────────────────────────────────────────────────────────────
    # Rate limit windows
    # ─────────────────────────────────────────────────────────────────

    @abstractmethod
    async def increment_window(self, key: str, ttl_seconds: int) -> int:
        """Atomically increment a window counter, creating it with a TTL.

        Returns:
            Count after the increment
        """
        ...

    # ─────────────────────────────────────────────────────────────────
    # Subscriptions
    # ─────────────────────────────────────────────────────────────────

    @abstractmethod
    async def get_tier(self, user_id: str) -> Tier | None:
        """Subscription tier written by the billing integration."""
        ...

    @abstractmethod
    async def set_tier(self, user_id: str, tier: Tier) -> None:
        """Record a user's subscription tier."""
        ...

    async def ping(self) -> bool:
        """Health check."""
        return True

    async def close(self) -> None:
        """Release resources."""
        return None
