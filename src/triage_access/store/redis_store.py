"""Redis-backed access store.

Keys (all under ``key_prefix``):
- ``apikey:{id}``             hash: record JSON + mutable usage fields
- ``apikey:digest:{sha256}``  string: key id (unique, written with NX)
- ``apikey:owner:{owner_id}`` set: key ids
- ``quota:{meter}:{principal_id}:{period_id}`` hash: consumed + ``ops:{operation}`` counts
- ``quota:...:applied:{idempotency_key}`` hash: amount, operation, consumed (expires)
- ``quota:periods``           sorted set: counter keys scored by period ordinal
- ``rate:{...}``              string: fixed-window counter with TTL
- ``tier:{user_id}``          string: subscription tier

Every read-modify-write runs as a Lua script so it is atomic across
processes sharing the same Redis.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import redis.asyncio as redis
from pydantic import BaseModel, Field

from triage_access.auth.models import ApiKey, Tier, parse_scopes

from .base import AccessStore
from .types import (
    DEFAULT_IDEMPOTENCY_TTL_SECONDS,
    CounterKey,
    CounterSnapshot,
    CounterUpdate,
    period_ordinal,
)

logger = logging.getLogger(__name__)

OPERATION_FIELD_PREFIX = "ops:"

# KEYS: digest, record, owner set. ARGV: key id, record JSON
INSERT_KEY_SCRIPT = """
if redis.call('SET', KEYS[1], ARGV[1], 'NX') == false then
    return 0
end
redis.call('HSET', KEYS[2], 'record', ARGV[2], 'request_count', 0, 'is_active', '1')
redis.call('SADD', KEYS[3], ARGV[1])
return 1
"""

# KEYS: record. ARGV: used_at
RECORD_USE_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return 0
end
redis.call('HINCRBY', KEYS[1], 'request_count', 1)
redis.call('HSET', KEYS[1], 'last_used_at', ARGV[1])
return 1
"""

# KEYS: record. ARGV: revoked_at
REVOKE_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return 0
end
if redis.call('HGET', KEYS[1], 'is_active') == '1' then
    redis.call('HSET', KEYS[1], 'is_active', '0', 'revoked_at', ARGV[1])
end
return 1
"""

# KEYS: counter, period index, applied key record (only with an idempotency key)
# ARGV: amount, ceiling (-1 = unlimited), now, operation ('' = none),
#       period ordinal, operation count, applied key ttl seconds
# Returns {applied, consumed, replayed, conflict}
CONSUME_SCRIPT = """
local amount = tonumber(ARGV[1])
local ceiling = tonumber(ARGV[2])
local operation = ARGV[4]
local applied_key = KEYS[3]

local consumed = tonumber(redis.call('HGET', KEYS[1], 'consumed')) or 0

if applied_key then
    local prior = redis.call('HMGET', applied_key, 'amount', 'operation', 'consumed')
    if prior[1] then
        if tonumber(prior[1]) ~= amount or prior[2] ~= operation then
            return {0, consumed, 0, 1}
        end
        return {1, tonumber(prior[3]), 1, 0}
    end
end

if ceiling >= 0 and consumed + amount > ceiling then
    return {0, consumed, 0, 0}
end

consumed = redis.call('HINCRBY', KEYS[1], 'consumed', amount)
redis.call('HSET', KEYS[1], 'last_consumed_at', ARGV[3])
if operation ~= '' then
    redis.call('HINCRBY', KEYS[1], 'ops:' .. operation, tonumber(ARGV[6]))
end
if applied_key then
    redis.call('HSET', applied_key, 'amount', amount, 'operation', operation, 'consumed', consumed)
    redis.call('EXPIRE', applied_key, tonumber(ARGV[7]))
end
redis.call('ZADD', KEYS[2], tonumber(ARGV[5]), KEYS[1])
return {1, consumed, 0, 0}
"""


# KEYS: window. ARGV: ttl seconds
WINDOW_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
    redis.call('EXPIRE', KEYS[1], tonumber(ARGV[1]))
end
return count
"""

DELETE_BATCH_SIZE = 500


class ApiKeyPayload(BaseModel):
    """Immutable part of an API key record as stored in Redis."""

    id: str
    owner_id: str
    name: str
    prefix: str
    secret_digest: str
    created_at: datetime
    scopes: list[str] = Field(description="Scope names")
    expires_at: datetime | None = None
    rate_limit: int | None = None
    ip_allow_list: list[str] = Field(default_factory=list)

    @classmethod
    def from_record(cls, record: ApiKey) -> ApiKeyPayload:
        return cls(
            id=record.id,
            owner_id=record.owner_id,
            name=record.name,
            prefix=record.prefix,
            secret_digest=record.secret_digest,
            created_at=record.created_at,
            scopes=sorted(s.value for s in record.scopes),
            expires_at=record.expires_at,
            rate_limit=record.rate_limit,
            ip_allow_list=list(record.ip_allow_list),
        )

    def to_record(self, fields: dict[str, str]) -> ApiKey:
        """Combine with the mutable hash fields into an ApiKey."""
        last_used = fields.get("last_used_at")
        revoked = fields.get("revoked_at")
        return ApiKey(
            id=self.id,
            owner_id=self.owner_id,
            name=self.name,
            prefix=self.prefix,
            secret_digest=self.secret_digest,
            created_at=self.created_at,
            scopes=parse_scopes(self.scopes),
            expires_at=self.expires_at,
            last_used_at=datetime.fromisoformat(last_used) if last_used else None,
            request_count=int(fields.get("request_count", 0)),
            rate_limit=self.rate_limit,
            ip_allow_list=tuple(self.ip_allow_list),
            is_active=fields.get("is_active", "1") == "1",
            revoked_at=datetime.fromisoformat(revoked) if revoked else None,
        )


@dataclass
class RedisAccessStoreOptions:
    """Options for RedisAccessStore."""

    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "triage"
    connect_timeout: float = 5.0
    socket_timeout: float = 5.0
    client_kwargs: dict[str, Any] = field(default_factory=dict)


class RedisAccessStore(AccessStore):
    """Redis-based access store.

    Example:
        store = RedisAccessStore(RedisAccessStoreOptions(redis_url=url))
        if await store.connect():
            await store.set_tier("user_1", Tier.TEAM)
    """

    def __init__(
        self,
        options: RedisAccessStoreOptions | None = None,
        client: redis.Redis | None = None,
    ):
        """Initialize the Redis access store.

        Args:
            options: Connection options
            client: Pre-built client (skips ``connect``'s client creation)
        """
        self._options = options or RedisAccessStoreOptions()
        self._prefix = self._options.key_prefix
        self._client: redis.Redis | None = client
        self._connected = False
        self._scripts: dict[str, Any] = {}

    @property
    def connected(self) -> bool:
        """Return whether the store is connected to Redis."""
        return self._connected

    async def connect(self) -> bool:
        """Connect to Redis.

        Returns:
            True if connection successful, False otherwise.
        """
        if self._connected:
            return True

        if self._client is None:
            self._client = redis.from_url(
                self._options.redis_url,
                socket_connect_timeout=self._options.connect_timeout,
                socket_timeout=self._options.socket_timeout,
                decode_responses=True,
                **self._options.client_kwargs,
            )

        try:
            await self._client.ping()
        except (redis.RedisError, OSError) as e:
            logger.error(f"Failed to connect to Redis: {e}")
            return False

        self._register_scripts(self._client)
        self._connected = True
        logger.info(f"Connected to Redis at {self._sanitize_url(self._options.redis_url)}")
        return True

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._client:
            try:
                await self._client.aclose()
            except (redis.RedisError, OSError) as e:
                logger.warning(f"Error closing Redis connection: {e}")
            finally:
                self._client = None
                self._connected = False
                self._scripts.clear()
                logger.info("Disconnected from Redis")

    async def close(self) -> None:
        await self.disconnect()

    async def ping(self) -> bool:
        if not self._connected or not self._client:
            return False
        try:
            return bool(await self._client.ping())
        except (redis.RedisError, OSError):
            return False

    # API keys

    async def insert_api_key(self, record: ApiKey) -> bool:
        client = self._require_client()
        payload = ApiKeyPayload.from_record(record)
        inserted = await self._scripts["insert"](
            keys=[
                self._digest_key(record.secret_digest),
                self._record_key(record.id),
                self._owner_key(record.owner_id),
            ],
            args=[record.id, payload.model_dump_json()],
            client=client,
        )
        return bool(inserted)

    async def get_api_key(self, key_id: str) -> ApiKey | None:
        client = self._require_client()
        fields = await client.hgetall(self._record_key(key_id))
        if not fields or "record" not in fields:
            return None
        return ApiKeyPayload.model_validate_json(fields["record"]).to_record(fields)

    async def find_api_key_id(self, secret_digest: str) -> str | None:
        client = self._require_client()
        return await client.get(self._digest_key(secret_digest))

    async def record_api_key_use(self, key_id: str, used_at: datetime) -> None:
        client = self._require_client()
        await self._scripts["record_use"](
            keys=[self._record_key(key_id)],
            args=[used_at.isoformat()],
            client=client,
        )

    async def revoke_api_key(self, key_id: str, revoked_at: datetime) -> bool:
        client = self._require_client()
        found = await self._scripts["revoke"](
            keys=[self._record_key(key_id)],
            args=[revoked_at.isoformat()],
            client=client,
        )
        return bool(found)

    async def list_api_keys(self, owner_id: str) -> list[ApiKey]:
        client = self._require_client()
        key_ids = await client.smembers(self._owner_key(owner_id))
        records = []
        for key_id in key_ids:
            record = await self.get_api_key(key_id)
            if record is not None:
                records.append(record)
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
        client = self._require_client()
        counter_key = self._counter_key(key)
        keys = [counter_key, self._period_index_key()]
        if idempotency_key is not None:
            keys.append(f"{counter_key}:applied:{idempotency_key}")

        applied, consumed, replayed, conflict = await self._scripts["consume"](
            keys=keys,
            args=[
                amount,
                -1 if ceiling is None else ceiling,
                now.isoformat(),
                operation or "",
                period_ordinal(key.period_id),
                operation_count,
                idempotency_ttl_seconds,
            ],
            client=client,
        )
        return CounterUpdate(
            applied=bool(applied),
            consumed=int(consumed),
            replayed=bool(replayed),
            conflict=bool(conflict),
        )

    async def get_consumed(self, key: CounterKey) -> int:
        client = self._require_client()
        value = await client.hget(self._counter_key(key), "consumed")
        return int(value) if value else 0

    async def get_counter(self, key: CounterKey) -> CounterSnapshot:
        client = self._require_client()
        fields = await client.hgetall(self._counter_key(key))
        operations = {
            name[len(OPERATION_FIELD_PREFIX) :]: int(value)
            for name, value in fields.items()
            if name.startswith(OPERATION_FIELD_PREFIX)
        }
        return CounterSnapshot(consumed=int(fields.get("consumed", 0)), operations=operations)

    async def delete_counters_before(self, period_id: str) -> int:
        client = self._require_client()
        index = self._period_index_key()
        stale = await client.zrangebyscore(index, "-inf", f"({period_ordinal(period_id)}")

        for start in range(0, len(stale), DELETE_BATCH_SIZE):
            batch = stale[start : start + DELETE_BATCH_SIZE]
            async with client.pipeline(transaction=True) as pipe:
                pipe.delete(*batch)
                pipe.zrem(index, *batch)
                await pipe.execute()

        return len(stale)

    # Rate limit windows

    async def increment_window(self, key: str, ttl_seconds: int) -> int:
        client = self._require_client()
        count = await self._scripts["window"](
            keys=[f"{self._prefix}:rate:{key}"],
            args=[ttl_seconds],
            client=client,
        )
        return int(count)

    # Subscriptions

    async def get_tier(self, user_id: str) -> Tier | None:
        client = self._require_client()
        value = await client.get(f"{self._prefix}:tier:{user_id}")
        if value is None:
            return None
        try:
            return Tier(value)
        except ValueError:
            logger.warning(f"Ignoring unknown tier '{value}' for {user_id}")
            return None

    async def set_tier(self, user_id: str, tier: Tier) -> None:
        client = self._require_client()
        await client.set(f"{self._prefix}:tier:{user_id}", tier.value)

    # Helpers

    def _require_client(self) -> redis.Redis:
        if not self._connected or self._client is None:
            raise ConnectionError("Not connected to Redis")
        return self._client

    def _register_scripts(self, client: redis.Redis) -> None:
        self._scripts = {
            "insert": client.register_script(INSERT_KEY_SCRIPT),
            "record_use": client.register_script(RECORD_USE_SCRIPT),
            "revoke": client.register_script(REVOKE_SCRIPT),
            "consume": client.register_script(CONSUME_SCRIPT),
            "window": client.register_script(WINDOW_SCRIPT),
        }

    def _record_key(self, key_id: str) -> str:
        return f"{self._prefix}:apikey:{key_id}"

    def _digest_key(self, secret_digest: str) -> str:
        return f"{self._prefix}:apikey:digest:{secret_digest}"

    def _owner_key(self, owner_id: str) -> str:
        return f"{self._prefix}:apikey:owner:{owner_id}"

    def _counter_key(self, key: CounterKey) -> str:
        return f"{self._prefix}:quota:{key.meter}:{key.principal_id}:{key.period_id}"

    def _period_index_key(self) -> str:
        return f"{self._prefix}:quota:periods"

    @staticmethod
    def _sanitize_url(url: str) -> str:
        """Hide the password in a Redis URL for logging."""
        if "@" in url:
            scheme, rest = url.split("://", 1)
            _, host = rest.rsplit("@", 1)
            return f"{scheme}://***@{host}"
        return url
