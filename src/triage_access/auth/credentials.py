"""Credential parsing.

Classifies a raw bearer string into a scheme by shape alone. Rules in
priority order, first match wins:

1. exact (constant-time) match against a configured service token
2. starts with "rtm_"                               -> api-key
3. exactly two "." and shorter than 600 characters  -> session-token
4. longer than 100 characters                       -> identity-token
5. anything else                                    -> UNRECOGNIZED_FORMAT
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass

from triage_access.config import CredentialConfig, ServiceTokenDefinition
from triage_access.errors import create_error

from .api_key import API_KEY_MARKER
from .models import Scheme

BEARER_PREFIX = "Bearer "


def parse_authorization_header(value: str | None) -> str | None:
    """Extract the bearer token from an Authorization header value.

    Returns:
        The token, or None when the header is missing, empty, lacks the
        "Bearer " prefix, or carries an empty token
    """
    if not value or not value.startswith(BEARER_PREFIX):
        return None
    token = value[len(BEARER_PREFIX):].strip()
    return token or None


@dataclass(frozen=True)
class ParsedCredential:
    """A bearer token tagged with the scheme its shape selects."""

    scheme: Scheme
    token: str

    def __repr__(self) -> str:
        # Never expose the token itself
        return f"ParsedCredential(scheme={self.scheme.value!r}, length={len(self.token)})"


class CredentialParser:
    """Shape-based credential classifier.

    Pure: the same token always yields the same scheme for a given
    configuration. No store or network access.
    """

    def __init__(
        self,
        service_tokens: list[ServiceTokenDefinition] | None = None,
        session_token_max_length: int = 600,
        identity_token_min_length: int = 100,
    ):
        self._service_tokens = [t.token.encode() for t in service_tokens or [] if t.token]
        self._session_max = session_token_max_length
        self._identity_min = identity_token_min_length

    @classmethod
    def from_config(cls, config: CredentialConfig) -> CredentialParser:
        return cls(
            service_tokens=config.service_tokens,
            session_token_max_length=config.session_token_max_length,
            identity_token_min_length=config.identity_token_min_length,
        )

    def classify(self, token: str) -> ParsedCredential:
        """Classify a bearer token.

        Raises:
            AccessError: UNRECOGNIZED_FORMAT if no rule matches
        """
        if self._is_service_token(token):
            return ParsedCredential(Scheme.SERVICE_TOKEN, token)

        if token.startswith(API_KEY_MARKER):
            return ParsedCredential(Scheme.API_KEY, token)

        if token.count(".") == 2 and len(token) < self._session_max:
            return ParsedCredential(Scheme.SESSION_TOKEN, token)

        if len(token) > self._identity_min:
            return ParsedCredential(Scheme.IDENTITY_TOKEN, token)

        raise create_error("UNRECOGNIZED_FORMAT")

    def _is_service_token(self, token: str) -> bool:
        candidate = token.encode()
        matched = False
        # Compare against every token so timing does not reveal which one matched
        for known in self._service_tokens:
            if hmac.compare_digest(candidate, known):
                matched = True
        return matched
