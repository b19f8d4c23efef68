"""External identity provider integration.

Long bearer tokens that are not locally signed session tokens are handed to
an identity provider for verification. ``HttpIdentityProvider`` posts the
token to a configured verification endpoint:

    POST {verify_url}  {"token": "<id token>"}
    200 -> {"uid": "...", "email": "...", ...}   verified
    400/401/403/404 -> token rejected
    anything else / transport failure -> provider unavailable
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from triage_access.config import IdentityProviderConfig

logger = logging.getLogger(__name__)

REJECTED_STATUSES = frozenset({400, 401, 403, 404})


@dataclass(frozen=True)
class IdentityClaims:
    """Claims returned by an identity provider for a valid token."""

    uid: str
    email: str | None = None
    email_verified: bool = False
    name: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


class IdentityProvider(ABC):
    """Verifies tokens issued by an external identity service."""

    @abstractmethod
    async def verify(self, token: str) -> IdentityClaims | None:
        """Verify a token.

        Returns:
            Claims if the token is valid, None if the provider rejects it

        Raises:
            Exception: transport or provider failures (mapped to
                BACKEND_UNAVAILABLE by the caller)
        """
        ...


class HttpIdentityProvider(IdentityProvider):
    """Identity provider reached over HTTP."""

    def __init__(
        self,
        verify_url: str,
        api_key: str | None = None,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize provider.

        Args:
            verify_url: Token verification endpoint
            api_key: Optional bearer credential for the endpoint itself
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self._verify_url = verify_url
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(cls, config: IdentityProviderConfig) -> HttpIdentityProvider | None:
        if not config.verify_url:
            return None
        return cls(config.verify_url, api_key=config.api_key, timeout=config.timeout_seconds)

    async def verify(self, token: str) -> IdentityClaims | None:
        headers = {}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(self._verify_url, headers=headers, json={"token": token})

        if response.status_code in REJECTED_STATUSES:
            logger.debug(f"Identity provider rejected token ({response.status_code})")
            return None
        response.raise_for_status()

        data = response.json()
        uid = data.get("uid") or data.get("sub")
        if not uid:
            logger.warning("Identity provider response carried no uid")
            return None

        return IdentityClaims(
            uid=uid,
            email=data.get("email"),
            email_verified=bool(data.get("email_verified", False)),
            name=data.get("name"),
            raw=data,
        )


class StaticIdentityProvider(IdentityProvider):
    """In-process provider backed by a token -> claims map.

    For development setups and tests without a reachable identity service.
    """

    def __init__(self, tokens: dict[str, IdentityClaims] | None = None):
        self._tokens = dict(tokens or {})

    def add(self, token: str, claims: IdentityClaims) -> None:
        self._tokens[token] = claims

    async def verify(self, token: str) -> IdentityClaims | None:
        return self._tokens.get(token)
