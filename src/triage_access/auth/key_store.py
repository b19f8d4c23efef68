"""API key lifecycle: issue, look up by secret, revoke, list.

Secrets are generated here, returned exactly once from ``issue`` and only
their SHA-256 digest is persisted. Lookup by secret is a point read on the
digest index.

An optional TTL cache maps digest -> key id. It never caches the record
itself: the record is re-read on every lookup, so revocation and expiry take
effect on the very next verification.
"""

from __future__ import annotations

import ipaddress
import logging
import uuid
from datetime import datetime, timedelta

from cachetools import TTLCache

from triage_access.clock import Clock, utc_now
from triage_access.config import ApiKeyPolicyConfig
from triage_access.errors import create_error
from triage_access.store import AccessStore, StoreGuard

from .api_key import display_prefix, extract_key_prefix, generate_api_key, hash_api_key
from .models import ApiKey, IssuedApiKey, RevokeResult, Scope, parse_scopes

logger = logging.getLogger(__name__)

MAX_ISSUE_ATTEMPTS = 3


class ApiKeyStore:
    """Manages API key records in the backing store."""

    def __init__(
        self,
        store: AccessStore,
        guard: StoreGuard | None = None,
        policy: ApiKeyPolicyConfig | None = None,
        clock: Clock = utc_now,
        lookup_cache: TTLCache | None = None,
    ):
        """Initialize key store.

        Args:
            store: Backing store
            guard: Timeout/retry policy for store calls
            policy: Issuance bounds and cache settings
            clock: Time source
            lookup_cache: Explicit digest -> key id cache (overrides policy)
        """
        self._store = store
        self._guard = guard or StoreGuard()
        self._policy = policy or ApiKeyPolicyConfig()
        self._clock = clock

        if lookup_cache is None and self._policy.lookup_cache_ttl_seconds > 0:
            lookup_cache = TTLCache(
                maxsize=self._policy.lookup_cache_max_entries,
                ttl=self._policy.lookup_cache_ttl_seconds,
            )
        self._lookup_cache = lookup_cache

    async def issue(
        self,
        owner_id: str,
        name: str,
        scopes: list[str] | frozenset[Scope] | None = None,
        expires_in_days: int | None = None,
        rate_limit: int | None = None,
        ip_allow_list: list[str] | None = None,
    ) -> IssuedApiKey:
        """Create a key for ``owner_id``.

        Returns:
            The persisted record and the plaintext secret (shown once)

        Raises:
            AccessError: VALIDATION_FAILED for out-of-range input (values are
                never clamped), BACKEND_UNAVAILABLE on store failure
        """
        clean_name = self._validate_name(name)
        granted = self.resolve_scopes(scopes)
        self._validate_expiry(expires_in_days)
        self._validate_rate_limit(rate_limit)
        networks = self._validate_ip_allow_list(ip_allow_list or [])

        now = self._clock()
        expires_at = now + timedelta(days=expires_in_days) if expires_in_days else None

        for _ in range(MAX_ISSUE_ATTEMPTS):
            secret = generate_api_key()
            record = ApiKey(
                id=f"key_{uuid.uuid4().hex[:16]}",
                owner_id=owner_id,
                name=clean_name,
                prefix=display_prefix(secret),
                secret_digest=hash_api_key(secret),
                created_at=now,
                scopes=granted,
                expires_at=expires_at,
                rate_limit=rate_limit,
                ip_allow_list=networks,
            )
            if await self._guard.write("api_key.insert", self._store.insert_api_key, record):
                logger.info(
                    f"Issued API key {record.id} ({extract_key_prefix(secret)}) for {owner_id}"
                )
                return IssuedApiKey(record=record, secret=secret)
            logger.warning("API key digest collision, regenerating")

        raise create_error(
            "INTERNAL_ERROR",
            error_type="DigestCollision",
            detail=f"Could not generate a unique key after {MAX_ISSUE_ATTEMPTS} attempts",
        )

    async def lookup_by_secret(self, secret: str) -> ApiKey | None:
        """Find the record whose digest matches ``secret``.

        Returns the record regardless of active/expired state; the caller
        decides what those mean.
        """
        digest = hash_api_key(secret)

        key_id = self._lookup_cache.get(digest) if self._lookup_cache is not None else None
        if key_id is None:
            key_id = await self._guard.read("api_key.find", self._store.find_api_key_id, digest)
            if key_id is None:
                return None
            if self._lookup_cache is not None:
                self._lookup_cache[digest] = key_id

        record = await self.get(key_id)
        if record is None or record.secret_digest != digest:
            if self._lookup_cache is not None:
                self._lookup_cache.pop(digest, None)
            return None
        return record

    async def get(self, key_id: str) -> ApiKey | None:
        return await self._guard.read("api_key.get", self._store.get_api_key, key_id)

    async def list_keys(self, owner_id: str) -> list[ApiKey]:
        return await self._guard.read("api_key.list", self._store.list_api_keys, owner_id)

    async def record_use(self, key_id: str, used_at: datetime | None = None) -> None:
        """Bump request_count and last_used_at."""
        await self._guard.write(
            "api_key.record_use",
            self._store.record_api_key_use,
            key_id,
            used_at or self._clock(),
        )

    async def revoke(
        self, key_id: str, requester_id: str, requester_is_admin: bool = False
    ) -> RevokeResult:
        """Revoke a key on behalf of its owner or an admin.

        Revoking an already-revoked key reports REVOKED again without
        changing ``revoked_at``.
        """
        record = await self.get(key_id)
        if record is None:
            return RevokeResult.NOT_FOUND
        if record.owner_id != requester_id and not requester_is_admin:
            logger.warning(
                f"{requester_id} attempted to revoke {key_id} owned by {record.owner_id}"
            )
            return RevokeResult.FORBIDDEN

        found = await self._guard.write(
            "api_key.revoke", self._store.revoke_api_key, key_id, self._clock()
        )
        if not found:
            return RevokeResult.NOT_FOUND

        logger.info(f"Revoked API key {key_id} ({record.prefix}) by {requester_id}")
        return RevokeResult.REVOKED

    # Validation

    def _validate_name(self, name: str) -> str:
        clean = (name or "").strip()
        if not clean:
            raise create_error("VALIDATION_FAILED", field="name", reason="Name is required")
        if len(clean) > self._policy.max_name_length:
            raise create_error(
                "VALIDATION_FAILED",
                field="name",
                reason=f"Name must be {self._policy.max_name_length} characters or less",
            )
        return clean

    def resolve_scopes(self, scopes: list[str] | frozenset[Scope] | None) -> frozenset[Scope]:
        """Parse requested scopes; None means the policy default.

        Raises:
            AccessError: VALIDATION_FAILED for unknown or empty scope sets
        """
        if scopes is None:
            scopes = self._policy.default_scopes
        try:
            granted = parse_scopes([s.value if isinstance(s, Scope) else s for s in scopes])
        except ValueError as e:
            raise create_error("VALIDATION_FAILED", field="scopes", reason=str(e)) from e
        if not granted:
            raise create_error(
                "VALIDATION_FAILED", field="scopes", reason="At least one scope is required"
            )
        return granted

    def _validate_expiry(self, expires_in_days: int | None) -> None:
        if expires_in_days is None:
            return
        low, high = self._policy.min_expires_in_days, self._policy.max_expires_in_days
        if not isinstance(expires_in_days, int) or not low <= expires_in_days <= high:
            raise create_error(
                "VALIDATION_FAILED",
                field="expires_in_days",
                reason=f"expires_in_days must be between {low} and {high}",
            )

    def _validate_rate_limit(self, rate_limit: int | None) -> None:
        if rate_limit is None:
            return
        low, high = self._policy.min_rate_limit, self._policy.max_rate_limit
        if not isinstance(rate_limit, int) or not low <= rate_limit <= high:
            raise create_error(
                "VALIDATION_FAILED",
                field="rate_limit",
                reason=f"rate_limit must be between {low} and {high}",
            )

    def _validate_ip_allow_list(self, entries: list[str]) -> tuple[str, ...]:
        normalized = []
        for entry in entries:
            try:
                normalized.append(str(ipaddress.ip_network(entry.strip(), strict=False)))
            except (ValueError, AttributeError) as e:
                raise create_error(
                    "VALIDATION_FAILED",
                    field="ip_allow_list",
                    reason=f"'{entry}' is not an IP address or CIDR range",
                ) from e
        return tuple(normalized)
