"""Value types shared by store implementations."""

from dataclasses import dataclass, field
from datetime import datetime

# Applied idempotency keys are kept long enough to confirm a lost write, not
# for the whole period.
DEFAULT_IDEMPOTENCY_TTL_SECONDS = 600


@dataclass(frozen=True)
class CounterKey:
    """Identity of one quota period counter."""

    principal_id: str
    meter: str  # "scans" | "tokens"
    period_id: str  # "YYYY-MM"


@dataclass(frozen=True)
class CounterUpdate:
    """Result of an atomic check-then-increment.

    ``consumed`` is the value after the increment when ``applied``, otherwise
    the unchanged current value. ``replayed`` marks an idempotency key that
    had already been applied with the same amount and operation; no second
    increment happened. ``conflict`` marks a key that had been applied with
    different parameters; nothing was changed.
    """

    applied: bool
    consumed: int
    replayed: bool = False
    conflict: bool = False


@dataclass(frozen=True)
class CounterSnapshot:
    """Counter value plus how many times each operation was charged."""

    consumed: int = 0
    operations: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class AppliedOperation:
    """What an idempotency key was applied with."""

    amount: int
    operation: str | None
    consumed: int
    expires_at: datetime

    def matches(self, amount: int, operation: str | None) -> bool:
        return self.amount == amount and self.operation == operation


def period_ordinal(period_id: str) -> int:
    """Sortable month number for a "YYYY-MM" period id."""
    year, month = period_id.split("-")
    return int(year) * 12 + int(month) - 1
