"""Access engine configuration - loading and models."""

from .loader import ConfigLoader, deep_merge, load_config, resolve_env_vars
from .models import (
    AccessConfig,
    ApiKeyPolicyConfig,
    CredentialConfig,
    IdentityProviderConfig,
    LogFormat,
    LoggingConfig,
    QuotaConfig,
    RateLimitCategoryConfig,
    RateLimitConfig,
    ServiceTokenDefinition,
    SessionConfig,
    StoreBackend,
    StoreConfig,
    ValidationIssue,
    ValidationResult,
)

__all__ = [
    # Loader
    "ConfigLoader",
    "deep_merge",
    "load_config",
    "resolve_env_vars",
    # Models
    "AccessConfig",
    "ApiKeyPolicyConfig",
    "CredentialConfig",
    "IdentityProviderConfig",
    "LogFormat",
    "LoggingConfig",
    "QuotaConfig",
    "RateLimitCategoryConfig",
    "RateLimitConfig",
    "ServiceTokenDefinition",
    "SessionConfig",
    "StoreBackend",
    "StoreConfig",
    "ValidationIssue",
    "ValidationResult",
]
