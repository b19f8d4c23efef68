"""Injectable time source.

Every component that compares against "now" takes a ``clock`` callable so
tests can pin time exactly (expiry boundaries, window edges, period rollover).
"""

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)
