"""Shared test helpers (importable from any test module)."""

from datetime import datetime, timedelta

SESSION_SECRET = "test-session-secret-0123456789abcdef"
SERVICE_TOKEN = "svc-test-token-0123456789"
IDENTITY_TOKEN = "idtoken-" + "a" * 150
IDENTITY_UID = "uid_identity_user"


class FixedClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


def bearer(token: str) -> str:
    """Authorization header value for a token."""
    return f"Bearer {token}"
