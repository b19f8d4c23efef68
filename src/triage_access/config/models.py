"""Access engine configuration data models."""

from dataclasses import dataclass, field
from enum import Enum


class LogFormat(str, Enum):
    """Log output format."""

    TEXT = "text"
    JSON = "json"


class StoreBackend(str, Enum):
    """Backing store implementation."""

    MEMORY = "memory"
    REDIS = "redis"


@dataclass
class ValidationIssue:
    """Single validation issue (error or warning)."""

    path: str  # e.g., "quota.scans.free"
    message: str
    severity: str = "error"  # "error" | "warning"


@dataclass
class ValidationResult:
    """Result of config validation."""

    valid: bool
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Ensure valid is False if there are errors."""
        if self.errors:
            self.valid = False


@dataclass
class ServiceTokenDefinition:
    """Static service token for trusted internal callers."""

    name: str
    token: str


@dataclass
class CredentialConfig:
    """Credential parsing configuration."""

    service_tokens: list[ServiceTokenDefinition] = field(default_factory=list)
    # Three-segment tokens shorter than this are locally signed session tokens
    session_token_max_length: int = 600
    # Anything longer than this that is not a session token goes to the identity provider
    identity_token_min_length: int = 100
    # Scopes granted to signed-in users (session and identity tokens)
    user_scopes: list[str] = field(
        default_factory=lambda: ["read", "write", "screenshot", "logs", "audit"]
    )


@dataclass
class SessionConfig:
    """Locally signed session token settings."""

    secret: str = ""
    algorithm: str = "HS256"
    issuer: str | None = "rapidtriage.me"
    audience: str | None = "rapidtriage-api"
    access_token_ttl_seconds: int = 86400  # 24h


@dataclass
class IdentityProviderConfig:
    """External identity provider settings."""

    verify_url: str | None = None
    api_key: str | None = None
    timeout_seconds: float = 5.0


@dataclass
class ApiKeyPolicyConfig:
    """Bounds enforced when issuing API keys."""

    min_expires_in_days: int = 1
    max_expires_in_days: int = 365
    min_rate_limit: int = 10
    max_rate_limit: int = 10000
    max_name_length: int = 100
    default_scopes: list[str] = field(default_factory=lambda: ["read", "write"])
    # 0 disables the secret -> key id lookup cache
    lookup_cache_ttl_seconds: float = 0.0
    lookup_cache_max_entries: int = 10000


@dataclass
class QuotaConfig:
    """Monthly quota ceilings per meter and tier (None = unlimited)."""

    scans: dict[str, int | None] = field(
        default_factory=lambda: {
            "free": 10,
            "standard": 100,
            "team": 500,
            "enterprise": None,
        }
    )
    tokens: dict[str, int | None] = field(
        default_factory=lambda: {
            "free": 1000,
            "standard": 8000,
            "team": 25000,
            "enterprise": None,
        }
    )
    operation_costs: dict[str, int] = field(
        default_factory=lambda: {
            "screenshot": 10,
            "lighthouse_audit": 50,
            "console_log": 1,
            "network_log": 1,
            "triage_report": 100,
            "accessibility_audit": 30,
            "performance_audit": 30,
            "seo_audit": 30,
            "best_practices_audit": 30,
            "element_inspection": 5,
            "js_execution": 20,
        }
    )
    retention_days: int = 90
    cleanup_interval_seconds: int = 3600
    # How long an applied idempotency key answers retries
    idempotency_ttl_seconds: int = 600


@dataclass
class RateLimitCategoryConfig:
    """Fixed-window limit for one operation category."""

    max_per_window: int
    window_seconds: int = 60


@dataclass
class RateLimitConfig:
    """Per-category rate limit presets."""

    categories: dict[str, RateLimitCategoryConfig] = field(
        default_factory=lambda: {
            "default": RateLimitCategoryConfig(max_per_window=100),
            "strict": RateLimitCategoryConfig(max_per_window=20),
            "relaxed": RateLimitCategoryConfig(max_per_window=500),
            "api": RateLimitCategoryConfig(max_per_window=1000),
            "screenshot": RateLimitCategoryConfig(max_per_window=30),
            "audit": RateLimitCategoryConfig(max_per_window=10),
            "sse": RateLimitCategoryConfig(max_per_window=50),
        }
    )


@dataclass
class StoreConfig:
    """Backing store configuration."""

    backend: StoreBackend = StoreBackend.MEMORY
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "triage"
    connect_timeout: float = 5.0
    # Upper bound for any single store call; exceeding it is BACKEND_UNAVAILABLE
    operation_timeout_seconds: float = 2.0
    # Extra attempts for idempotent reads only
    read_retries: int = 2
    retry_backoff_seconds: float = 0.05


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: LogFormat = LogFormat.JSON


@dataclass
class AccessConfig:
    """Complete access engine configuration."""

    credentials: CredentialConfig = field(default_factory=CredentialConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    identity: IdentityProviderConfig = field(default_factory=IdentityProviderConfig)
    api_keys: ApiKeyPolicyConfig = field(default_factory=ApiKeyPolicyConfig)
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    rate_limits: RateLimitConfig = field(default_factory=RateLimitConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
