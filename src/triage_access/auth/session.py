"""Locally signed session tokens (HS256 JWT).

Signature, issuer and audience are checked by PyJWT. Expiry is checked
against the injected clock by the caller, not by PyJWT, so tests can pin
the exact boundary (``exp <= now`` is expired).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

from triage_access.clock import Clock, utc_now
from triage_access.config import SessionConfig
from triage_access.errors import create_error

ACCESS_TOKEN_TYPE = "access"


@dataclass(frozen=True)
class SessionClaims:
    """Verified claims of a session token."""

    sub: str
    expires_at: datetime
    email: str | None = None
    issued_at: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


class SessionTokenSigner:
    """Issues and decodes HS256 session tokens."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        issuer: str | None = None,
        audience: str | None = None,
        access_token_ttl_seconds: int = 86400,
        clock: Clock = utc_now,
    ):
        self._secret = secret
        self._algorithm = algorithm
        self._issuer = issuer
        self._audience = audience
        self._ttl = timedelta(seconds=access_token_ttl_seconds)
        self._clock = clock

    @classmethod
    def from_config(cls, config: SessionConfig, clock: Clock = utc_now) -> SessionTokenSigner:
        return cls(
            secret=config.secret,
            algorithm=config.algorithm,
            issuer=config.issuer,
            audience=config.audience,
            access_token_ttl_seconds=config.access_token_ttl_seconds,
            clock=clock,
        )

    @property
    def enabled(self) -> bool:
        return bool(self._secret)

    def issue(
        self,
        user_id: str,
        email: str | None = None,
        ttl: timedelta | None = None,
        extra_claims: dict[str, Any] | None = None,
    ) -> str:
        """Sign an access token for a user.

        Raises:
            AccessError: CONFIG_INVALID if no secret is configured
        """
        if not self._secret:
            raise create_error("CONFIG_INVALID", detail="session.secret is not configured")

        now = self._clock()
        payload: dict[str, Any] = dict(extra_claims or {})
        payload.update(
            {
                "sub": user_id,
                "type": ACCESS_TOKEN_TYPE,
                "iat": int(now.timestamp()),
                "exp": int((now + (ttl or self._ttl)).timestamp()),
            }
        )
        if email:
            payload["email"] = email
        if self._issuer:
            payload["iss"] = self._issuer
        if self._audience:
            payload["aud"] = self._audience

        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def decode(self, token: str) -> SessionClaims:
        """Check signature, issuer and audience; return claims.

        Expiry is NOT checked here.

        Raises:
            AccessError: INVALID_SIGNATURE on any verification failure
        """
        if not self._secret:
            raise create_error("INVALID_SIGNATURE", scheme="session-token")

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                issuer=self._issuer,
                audience=self._audience,
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    "verify_aud": self._audience is not None,
                    "require": ["exp", "sub"],
                },
            )
        except jwt.InvalidTokenError as e:
            raise create_error(
                "INVALID_SIGNATURE", scheme="session-token", detail=str(e)
            ) from e

        exp = payload.get("exp")
        if not isinstance(payload.get("sub"), str) or not isinstance(exp, (int, float)):
            raise create_error(
                "INVALID_SIGNATURE", scheme="session-token", detail="Malformed claims"
            )

        iat = payload.get("iat")
        return SessionClaims(
            sub=payload["sub"],
            email=payload.get("email"),
            expires_at=datetime.fromtimestamp(exp, tz=UTC),
            issued_at=(
                datetime.fromtimestamp(iat, tz=UTC)
                if isinstance(iat, int | float)
                else None
            ),
            raw=payload,
        )
