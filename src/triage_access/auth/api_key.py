"""API key generation and digesting.

Key format: rtm_{40_random_alphanumeric_chars}
- Marker: "rtm_" lets the credential parser classify keys without a lookup
- Total length: 44 chars
- Regex: ^rtm_[a-zA-Z0-9]{40}$

Keys are never stored in plain text. On creation:
1. Generate key: rtm_{random_40_chars}
2. Store SHA-256(key) as the lookup index
3. Display key to the owner once
4. Key prefix (first 12 chars) stored for identification in logs and UIs

A deterministic digest (rather than a salted hash) is what makes
lookup-by-secret an indexed point read instead of a scan.
"""

from __future__ import annotations

import hashlib
import hmac
import re
import secrets
import string

API_KEY_MARKER = "rtm_"
API_KEY_RANDOM_LENGTH = 40
API_KEY_PREFIX_LENGTH = 12

# Key format validation
API_KEY_REGEX = re.compile(rf"^{API_KEY_MARKER}[a-zA-Z0-9]{{{API_KEY_RANDOM_LENGTH}}}$")

# Characters for random part of key
KEY_CHARS = string.ascii_letters + string.digits


def generate_api_key() -> str:
    """Generate a new API key.

    Returns:
        Full API key: rtm_{random_40_chars}

    Example:
        generate_api_key() -> "rtm_a1B2c3D4e5F6g7H8i9J0k1L2m3N4o5P6q7R8s9T0"
    """
    random_part = "".join(secrets.choice(KEY_CHARS) for _ in range(API_KEY_RANDOM_LENGTH))
    return f"{API_KEY_MARKER}{random_part}"


def extract_key_prefix(api_key: str) -> str:
    """Extract the non-secret prefix of an API key for logging.

    Args:
        api_key: Full API key

    Returns:
        First 12 characters, or "invalid" for non-key strings

    Example:
        extract_key_prefix("rtm_a1B2c3D4e5...") -> "rtm_a1B2c3D4"
    """
    if not api_key.startswith(API_KEY_MARKER) or len(api_key) <= API_KEY_PREFIX_LENGTH:
        return "invalid"
    return api_key[:API_KEY_PREFIX_LENGTH]


def display_prefix(api_key: str) -> str:
    """Prefix shown in key listings: "rtm_a1B2c3D4..."."""
    return f"{extract_key_prefix(api_key)}..."


def hash_api_key(api_key: str) -> str:
    """Digest an API key for storage and lookup.

    Args:
        api_key: Plain text API key

    Returns:
        SHA-256 hex digest
    """
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def verify_api_key(api_key: str, digest: str) -> bool:
    """Verify an API key against its stored digest in constant time.

    Args:
        api_key: Plain text API key to verify
        digest: Stored SHA-256 hex digest

    Returns:
        True if key matches digest
    """
    return hmac.compare_digest(hash_api_key(api_key), digest)


def validate_api_key_format(api_key: str) -> bool:
    """Validate API key format.

    Args:
        api_key: API key to validate

    Returns:
        True if key matches expected format
    """
    return bool(API_KEY_REGEX.match(api_key))
