"""REST API models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from triage_access.auth.models import ApiKey
from triage_access.quota import UsageBalance

# ─────────────────────────────────────────────────────────────────
# Error Response
# ─────────────────────────────────────────────────────────────────


class ErrorDetail(BaseModel):
    """Error detail model (matches the error registry)."""

    code: str
    category: str
    message: str
    detail: str | None = None
    suggestion: str | None = None
    retry_after_seconds: int | None = None
    remaining: int | None = None
    reset_at: datetime | None = None
    request_id: str | None = None


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: ErrorDetail


# ─────────────────────────────────────────────────────────────────
# Health
# ─────────────────────────────────────────────────────────────────


class HealthStatus(str, Enum):
    """Health status enum."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


class HealthCheck(BaseModel):
    """Health check response."""

    status: HealthStatus
    checks: dict[str, str]
    timestamp: datetime


# ─────────────────────────────────────────────────────────────────
# API Keys
# ─────────────────────────────────────────────────────────────────


class CreateKeyRequest(BaseModel):
    """Issue an API key. Range checks happen in the key store."""

    name: str
    scopes: list[str] | None = None
    expires_in_days: int | None = None
    rate_limit: int | None = None
    ip_allow_list: list[str] = Field(default_factory=list)
    owner_id: str | None = Field(default=None, description="Service and admin callers only")


class ApiKeyInfo(BaseModel):
    """Key metadata. Never carries secret material."""

    id: str
    owner_id: str
    name: str
    prefix: str
    scopes: list[str]
    created_at: datetime
    expires_at: datetime | None = None
    last_used_at: datetime | None = None
    request_count: int = 0
    rate_limit: int | None = None
    ip_allow_list: list[str] = Field(default_factory=list)
    is_active: bool = True
    revoked_at: datetime | None = None

    @classmethod
    def from_record(cls, record: ApiKey) -> "ApiKeyInfo":
        return cls(
            id=record.id,
            owner_id=record.owner_id,
            name=record.name,
            prefix=record.prefix,
            scopes=sorted(s.value for s in record.scopes),
            created_at=record.created_at,
            expires_at=record.expires_at,
            last_used_at=record.last_used_at,
            request_count=record.request_count,
            rate_limit=record.rate_limit,
            ip_allow_list=list(record.ip_allow_list),
            is_active=record.is_active,
            revoked_at=record.revoked_at,
        )


class CreateKeyResponse(BaseModel):
    """Issued key; ``key`` is the secret and is never shown again."""

    key: str
    info: ApiKeyInfo


class KeyListResponse(BaseModel):
    keys: list[ApiKeyInfo]
    total: int


class RevokeKeyResponse(BaseModel):
    id: str
    status: str


# ─────────────────────────────────────────────────────────────────
# Usage
# ─────────────────────────────────────────────────────────────────


class MeterBalance(BaseModel):
    """Usage of one meter in one period."""

    meter: str
    consumed: int
    ceiling: int | None
    remaining: int | None
    unlimited: bool
    period_id: str
    period_start: datetime
    period_end: datetime
    operations: dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_balance(cls, balance: UsageBalance) -> "MeterBalance":
        return cls(
            meter=balance.meter.value,
            consumed=balance.consumed,
            ceiling=balance.ceiling,
            remaining=balance.remaining,
            unlimited=balance.unlimited,
            period_id=balance.period_id,
            period_start=balance.period_start,
            period_end=balance.period_end,
            operations=dict(balance.operations),
        )


class UsageResponse(BaseModel):
    principal_id: str
    tier: str
    meters: list[MeterBalance]


class UsageHistoryResponse(BaseModel):
    """One meter's balances for recent periods, newest first."""

    principal_id: str
    tier: str
    meter: str
    periods: list[MeterBalance]
