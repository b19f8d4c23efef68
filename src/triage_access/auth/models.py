"""Principal, API key and decision models.

Core concepts:
- Principal: resolved identity + grant set for one request (never persisted)
- Scope: closed permission vocabulary, ``admin`` implies every other scope
- Scheme: which credential family produced the principal
- Tier: subscription level driving quota ceilings
- ApiKey: persisted long-lived credential record (secret stored as a digest)
- Decision: outcome of one ``authorize`` call
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from triage_access.errors import create_error

if TYPE_CHECKING:
    from triage_access.errors import AccessError
    from triage_access.quota.ledger import QuotaResult

    from .rate_limiter import RateLimitResult


class Scope(str, Enum):
    """Operations a principal can perform."""

    READ = "read"
    WRITE = "write"
    ADMIN = "admin"  # Implies every other scope
    SCREENSHOT = "screenshot"
    LOGS = "logs"
    AUDIT = "audit"


ALL_SCOPES: frozenset[Scope] = frozenset(Scope)


def parse_scopes(values: list[str] | tuple[str, ...] | set[str]) -> frozenset[Scope]:
    """Convert scope names to Scope members.

    Raises:
        ValueError: If a name is not in the vocabulary
    """
    scopes = set()
    for value in values:
        try:
            scopes.add(Scope(value))
        except ValueError:
            raise ValueError(f"Unknown scope '{value}'") from None
    return frozenset(scopes)


def expand_scopes(scopes: frozenset[Scope] | set[Scope]) -> frozenset[Scope]:
    """Apply the ``admin`` implies-all rule once."""
    if Scope.ADMIN in scopes:
        return ALL_SCOPES
    return frozenset(scopes)


class Scheme(str, Enum):
    """Credential scheme, decided from the credential's shape."""

    SERVICE_TOKEN = "service-token"
    API_KEY = "api-key"
    SESSION_TOKEN = "session-token"
    IDENTITY_TOKEN = "identity-token"


class Tier(str, Enum):
    """Subscription tier."""

    FREE = "free"
    STANDARD = "standard"
    TEAM = "team"
    ENTERPRISE = "enterprise"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller for a single request.

    Built fresh by a verifier; the underlying API key or session is what gets
    persisted, never the principal itself.
    """

    id: str  # User id ("uid"), or "svc_<name>" for service tokens
    scheme: Scheme
    scopes: frozenset[Scope] = frozenset({Scope.READ})
    tier: Tier = Tier.FREE
    rate_limit_override: int | None = None

    email: str | None = None
    key_id: str | None = None  # API-key principals only
    key_prefix: str | None = None  # For logging (never log full key)
    ip_allow_list: tuple[str, ...] = ()  # Carried, not enforced

    def __post_init__(self) -> None:
        """Expand ``admin`` into the full scope set."""
        object.__setattr__(self, "scopes", expand_scopes(self.scopes))

    def has_scope(self, scope: Scope) -> bool:
        """Check if principal has a specific scope."""
        return scope in self.scopes

    @property
    def is_admin(self) -> bool:
        """Check if principal holds the admin scope."""
        return Scope.ADMIN in self.scopes

    @property
    def is_service(self) -> bool:
        """Trusted internal caller; exempt from rate and quota enforcement."""
        return self.scheme == Scheme.SERVICE_TOKEN

    def describe(self) -> dict[str, Any]:
        """Diagnostic metadata safe to log."""
        return {
            "principal_id": self.id,
            "scheme": self.scheme.value,
            "tier": self.tier.value,
            "key_prefix": self.key_prefix,
        }


@dataclass
class ApiKey:
    """Persisted API key record.

    ``secret_digest`` is SHA-256(secret). The secret is returned once at issue
    time and is never retrievable again.
    """

    id: str
    owner_id: str
    name: str
    prefix: str  # Display form: "rtm_ab12cd34..."
    secret_digest: str
    created_at: datetime

    scopes: frozenset[Scope] = frozenset({Scope.READ, Scope.WRITE})
    expires_at: datetime | None = None  # None = never expires
    last_used_at: datetime | None = None
    request_count: int = 0
    rate_limit: int | None = None
    ip_allow_list: tuple[str, ...] = ()

    is_active: bool = True
    revoked_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize without secret material."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "prefix": self.prefix,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
            "request_count": self.request_count,
            "scopes": sorted(s.value for s in self.scopes),
            "rate_limit": self.rate_limit,
            "ip_allow_list": list(self.ip_allow_list),
            "is_active": self.is_active,
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
        }


@dataclass(frozen=True)
class IssuedApiKey:
    """Result of issuing a key: the record plus the one-time secret."""

    record: ApiKey
    secret: str


class RevokeResult(str, Enum):
    """Outcome of a revoke request."""

    REVOKED = "revoked"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"


@dataclass
class Decision:
    """Outcome of an access check.

    ``reason`` is a stable code (see ``triage_access.errors``) whenever
    ``allowed`` is False. ``BACKEND_UNAVAILABLE`` is reported here too but is
    not a policy denial; check ``is_policy_denial`` before treating it as one.
    """

    allowed: bool
    principal: Principal | None = None
    reason: str | None = None
    message: str | None = None
    error: AccessError | None = None
    retry_after_seconds: int | None = None
    quota: QuotaResult | None = None
    rate_limit: RateLimitResult | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def allow(cls, principal: Principal, **kwargs: Any) -> Decision:
        """Build an allow decision."""
        return cls(allowed=True, principal=principal, metadata=principal.describe(), **kwargs)

    @classmethod
    def deny(
        cls, error: AccessError, principal: Principal | None = None, **kwargs: Any
    ) -> Decision:
        """Build a deny decision from the error that caused it."""
        metadata = principal.describe() if principal else {}
        if error.scheme and "scheme" not in metadata:
            metadata["scheme"] = error.scheme
        return cls(
            allowed=False,
            principal=principal,
            reason=error.code,
            message=error.message,
            error=error,
            retry_after_seconds=error.retry_after_seconds,
            metadata=metadata,
            **kwargs,
        )

    @property
    def is_policy_denial(self) -> bool:
        """True when denied by policy rather than an infrastructure fault."""
        return not self.allowed and self.error is not None and self.error.is_policy_denial

    @property
    def already_charged(self) -> bool:
        """True when an idempotency key matched a charge made earlier."""
        return self.quota is not None and self.quota.replayed

    @property
    def http_status(self) -> int:
        """Suggested HTTP status for route handlers."""
        if self.allowed:
            return 200
        return self.error.http_status if self.error else 401

    def raise_for_denial(self) -> Principal:
        """Return the principal, or raise the denial's AccessError."""
        if not self.allowed:
            if self.error is not None:
                raise self.error
            raise create_error(
                "INTERNAL_ERROR",
                error_type="Decision",
                detail=f"denied decision carries no error (reason={self.reason})",
            )
        if self.principal is None:
            raise create_error(
                "INTERNAL_ERROR",
                error_type="Decision",
                detail="allowed decision carries no principal",
            )
        return self.principal
