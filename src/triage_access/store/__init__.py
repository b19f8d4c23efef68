"""Backing stores for keys, quota counters, rate windows and tiers."""

from triage_access.config import StoreBackend, StoreConfig
from triage_access.errors import create_error

from .base import AccessStore
from .guard import StoreGuard
from .memory import MemoryAccessStore
from .redis_store import ApiKeyPayload, RedisAccessStore, RedisAccessStoreOptions
from .types import (
    DEFAULT_IDEMPOTENCY_TTL_SECONDS,
    CounterKey,
    CounterSnapshot,
    CounterUpdate,
    period_ordinal,
)


async def open_store(config: StoreConfig) -> AccessStore:
    """Create and connect the configured store.

    Raises:
        AccessError: BACKEND_UNAVAILABLE if Redis cannot be reached
    """
    if config.backend == StoreBackend.MEMORY:
        return MemoryAccessStore()

    store = RedisAccessStore(
        RedisAccessStoreOptions(
            redis_url=config.redis_url,
            key_prefix=config.key_prefix,
            connect_timeout=config.connect_timeout,
            socket_timeout=config.operation_timeout_seconds,
        )
    )
    if not await store.connect():
        raise create_error("BACKEND_UNAVAILABLE", operation="store.connect", reason="ping failed")
    return store


__all__ = [
    "AccessStore",
    "ApiKeyPayload",
    "CounterKey",
    "CounterSnapshot",
    "CounterUpdate",
    "DEFAULT_IDEMPOTENCY_TTL_SECONDS",
    "MemoryAccessStore",
    "RedisAccessStore",
    "RedisAccessStoreOptions",
    "StoreGuard",
    "open_store",
    "period_ordinal",
]
