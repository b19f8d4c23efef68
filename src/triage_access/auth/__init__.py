"""Authentication and authorization layer.

- Principal model, scopes, schemes and tiers
- Credential parsing by shape
- One verifier per scheme (service token, API key, session token,
  identity token)
- API key generation and digesting

Store-backed components live in their own modules and are imported from
there (they depend on ``triage_access.store``, which depends on the models
here):

    from triage_access.auth.key_store import ApiKeyStore
    from triage_access.auth.rate_limiter import RateLimiter
    from triage_access.auth.coordinator import AccessCoordinator
"""

from .api_key import (
    display_prefix,
    extract_key_prefix,
    generate_api_key,
    hash_api_key,
    validate_api_key_format,
    verify_api_key,
)
from .credentials import CredentialParser, ParsedCredential, parse_authorization_header
from .identity import (
    HttpIdentityProvider,
    IdentityClaims,
    IdentityProvider,
    StaticIdentityProvider,
)
from .models import (
    ALL_SCOPES,
    ApiKey,
    Decision,
    IssuedApiKey,
    Principal,
    RevokeResult,
    Scheme,
    Scope,
    Tier,
    expand_scopes,
    parse_scopes,
)
from .session import SessionClaims, SessionTokenSigner
from .verifiers import (
    ApiKeyVerifier,
    IdentityTokenVerifier,
    ServiceTokenVerifier,
    SessionTokenVerifier,
    TierResolver,
    Verifier,
    VerifierRegistry,
)

__all__ = [
    # Models
    "ALL_SCOPES",
    "ApiKey",
    "Decision",
    "IssuedApiKey",
    "Principal",
    "RevokeResult",
    "Scheme",
    "Scope",
    "Tier",
    "expand_scopes",
    "parse_scopes",
    # API Key
    "display_prefix",
    "extract_key_prefix",
    "generate_api_key",
    "hash_api_key",
    "validate_api_key_format",
    "verify_api_key",
    # Parsing
    "CredentialParser",
    "ParsedCredential",
    "parse_authorization_header",
    # Sessions and identity
    "SessionClaims",
    "SessionTokenSigner",
    "HttpIdentityProvider",
    "IdentityClaims",
    "IdentityProvider",
    "StaticIdentityProvider",
    # Verifiers
    "ApiKeyVerifier",
    "IdentityTokenVerifier",
    "ServiceTokenVerifier",
    "SessionTokenVerifier",
    "TierResolver",
    "Verifier",
    "VerifierRegistry",
]
