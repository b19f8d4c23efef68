"""Credential verifiers, one per scheme.

Each verifier turns a token of its scheme into a ``Principal`` or raises an
``AccessError`` with a stable reason code. ``VerifierRegistry`` dispatches
on the scheme chosen by the credential parser; there is no fallback to
another scheme once one is chosen.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from triage_access.clock import Clock, utc_now
from triage_access.config import ServiceTokenDefinition
from triage_access.errors import AccessError, create_error

from .api_key import extract_key_prefix, validate_api_key_format
from .credentials import ParsedCredential
from .models import Principal, Scheme, Scope, Tier

if TYPE_CHECKING:
    from datetime import datetime

    from triage_access.store import AccessStore, StoreGuard

    from .identity import IdentityProvider
    from .key_store import ApiKeyStore
    from .session import SessionTokenSigner

logger = logging.getLogger(__name__)

DEFAULT_USER_SCOPES = frozenset(
    {Scope.READ, Scope.WRITE, Scope.SCREENSHOT, Scope.LOGS, Scope.AUDIT}
)


class Verifier(ABC):
    """Verifies tokens of a single scheme."""

    scheme: Scheme

    @abstractmethod
    async def verify(self, token: str) -> Principal:
        """Verify a token and build its principal.

        Raises:
            AccessError: with the failure's reason code
        """
        ...

    async def drain(self) -> None:
        """Wait for background work started by earlier ``verify`` calls."""
        return None


class TierResolver:
    """Looks up a user's subscription tier (free when none is recorded)."""

    def __init__(self, store: AccessStore, guard: StoreGuard, default: Tier = Tier.FREE):
        self._store = store
        self._guard = guard
        self._default = default

    async def resolve(self, user_id: str) -> Tier:
        tier = await self._guard.read("tier.get", self._store.get_tier, user_id)
        return tier or self._default


class ServiceTokenVerifier(Verifier):
    """Static tokens for trusted internal callers."""

    scheme = Scheme.SERVICE_TOKEN

    def __init__(self, service_tokens: list[ServiceTokenDefinition]):
        self._tokens = [(t.name, t.token.encode()) for t in service_tokens if t.token]

    async def verify(self, token: str) -> Principal:
        candidate = token.encode()
        matched: str | None = None
        for name, known in self._tokens:
            if hmac.compare_digest(candidate, known) and matched is None:
                matched = name

        if matched is None:
            raise create_error("INVALID_SIGNATURE", scheme=self.scheme.value)

        return Principal(
            id=f"svc_{matched}",
            scheme=self.scheme,
            scopes=frozenset({Scope.ADMIN}),
            tier=Tier.ENTERPRISE,
        )


class SessionTokenVerifier(Verifier):
    """Locally signed HS256 session tokens."""

    scheme = Scheme.SESSION_TOKEN

    def __init__(
        self,
        signer: SessionTokenSigner,
        tiers: TierResolver,
        user_scopes: frozenset[Scope] = DEFAULT_USER_SCOPES,
        clock: Clock = utc_now,
    ):
        self._signer = signer
        self._tiers = tiers
        self._user_scopes = user_scopes
        self._clock = clock

    async def verify(self, token: str) -> Principal:
        claims = self._signer.decode(token)

        if claims.expires_at <= self._clock():
            raise create_error(
                "EXPIRED",
                scheme=self.scheme.value,
                expired_at=claims.expires_at.isoformat(),
                principal_id=claims.sub,
            )

        return Principal(
            id=claims.sub,
            scheme=self.scheme,
            scopes=self._user_scopes,
            tier=await self._tiers.resolve(claims.sub),
            email=claims.email,
        )


class ApiKeyVerifier(Verifier):
    """Long-lived ``rtm_`` keys looked up by secret digest."""

    scheme = Scheme.API_KEY

    def __init__(self, key_store: ApiKeyStore, tiers: TierResolver, clock: Clock = utc_now):
        self._keys = key_store
        self._tiers = tiers
        self._clock = clock
        self._pending: set[asyncio.Task[None]] = set()

    async def verify(self, token: str) -> Principal:
        key_prefix = extract_key_prefix(token)

        if not validate_api_key_format(token):
            raise create_error("NOT_FOUND", scheme=self.scheme.value, key_prefix=key_prefix)

        record = await self._keys.lookup_by_secret(token)
        if record is None:
            raise create_error("NOT_FOUND", scheme=self.scheme.value, key_prefix=key_prefix)

        if not record.is_active:
            raise create_error(
                "REVOKED",
                scheme=self.scheme.value,
                key_prefix=key_prefix,
                principal_id=record.owner_id,
            )

        now = self._clock()
        expires_at = record.expires_at
        if expires_at is not None and expires_at <= now:
            raise create_error(
                "EXPIRED",
                scheme=self.scheme.value,
                expired_at=expires_at.isoformat(),
                principal_id=record.owner_id,
            )

        task = asyncio.create_task(self._record_use(record.id, key_prefix, now))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

        return Principal(
            id=record.owner_id,
            scheme=self.scheme,
            scopes=record.scopes,
            tier=await self._tiers.resolve(record.owner_id),
            rate_limit_override=record.rate_limit,
            key_id=record.id,
            key_prefix=key_prefix,
            ip_allow_list=record.ip_allow_list,
        )

    async def _record_use(self, key_id: str, key_prefix: str, now: datetime) -> None:
        try:
            await self._keys.record_use(key_id, now)
        except AccessError as e:
            logger.warning(f"Failed to record usage for API key {key_prefix}...: {e.detail}")
        except Exception:
            logger.exception(f"Unexpected error recording usage for API key {key_prefix}...")

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)


class IdentityTokenVerifier(Verifier):
    """Tokens issued by the external identity provider."""

    scheme = Scheme.IDENTITY_TOKEN

    def __init__(
        self,
        provider: IdentityProvider | None,
        tiers: TierResolver,
        user_scopes: frozenset[Scope] = DEFAULT_USER_SCOPES,
        timeout_seconds: float = 5.0,
    ):
        self._provider = provider
        self._tiers = tiers
        self._user_scopes = user_scopes
        self._timeout = timeout_seconds

    async def verify(self, token: str) -> Principal:
        if self._provider is None:
            raise create_error(
                "INVALID_SIGNATURE",
                scheme=self.scheme.value,
                detail="No identity provider configured",
            )

        try:
            claims = await asyncio.wait_for(self._provider.verify(token), self._timeout)
        except AccessError:
            raise
        except Exception as e:
            raise create_error(
                "BACKEND_UNAVAILABLE",
                operation="identity.verify",
                reason=f"{type(e).__name__}: {e}",
                scheme=self.scheme.value,
            ) from e

        if claims is None:
            raise create_error("INVALID_SIGNATURE", scheme=self.scheme.value)

        return Principal(
            id=claims.uid,
            scheme=self.scheme,
            scopes=self._user_scopes,
            tier=await self._tiers.resolve(claims.uid),
            email=claims.email,
        )


class VerifierRegistry:
    """Scheme -> verifier dispatch table."""

    def __init__(self) -> None:
        self._verifiers: dict[Scheme, Verifier] = {}

    def register(self, verifier: Verifier, scheme: Scheme | None = None) -> None:
        """Register (or replace) the verifier for a scheme."""
        self._verifiers[scheme or verifier.scheme] = verifier

    def get(self, scheme: Scheme) -> Verifier | None:
        return self._verifiers.get(scheme)

    def schemes(self) -> list[Scheme]:
        return list(self._verifiers)

    async def drain(self) -> None:
        """Wait for every verifier's background work to finish."""
        for verifier in self._verifiers.values():
            await verifier.drain()

    async def verify(self, credential: ParsedCredential) -> Principal:
        """Verify with the one verifier registered for the credential's scheme.

        Raises:
            AccessError: from the verifier, or UNRECOGNIZED_FORMAT if the
                scheme has no verifier
        """
        verifier = self._verifiers.get(credential.scheme)
        if verifier is None:
            raise create_error(
                "UNRECOGNIZED_FORMAT",
                scheme=credential.scheme.value,
                detail=f"No verifier registered for {credential.scheme.value}",
            )
        return await verifier.verify(credential.token)
