"""Per-principal, per-period quota counters.

A period is a UTC calendar month identified as "YYYY-MM". ``try_consume`` is
a single atomic store operation: two concurrent calls can never both succeed
if together they would push a counter past its ceiling.

Writes are never retried automatically. A caller that lost a write to a
timeout retries with the same ``idempotency_key`` within the key's TTL; the
store recognizes an already-applied key and reports it as ``replayed``
without incrementing. A replay only confirms the earlier charge: it is not
a fresh allowance, and reusing a key with a different amount or operation
is rejected.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime

from triage_access.auth.models import Tier
from triage_access.clock import Clock, utc_now
from triage_access.errors import create_error
from triage_access.store import AccessStore, CounterKey, StoreGuard

from .policy import Meter, TierQuotaPolicy

PERIOD_ID_REGEX = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
MAX_HISTORY_MONTHS = 24


def period_id_for(moment: datetime) -> str:
    """UTC calendar month containing ``moment``."""
    return moment.astimezone(UTC).strftime("%Y-%m")


def period_start(period_id: str) -> datetime:
    year, month = (int(part) for part in period_id.split("-"))
    return datetime(year, month, 1, tzinfo=UTC)


def period_reset_at(period_id: str) -> datetime:
    """First instant of the following period."""
    year, month = (int(part) for part in period_id.split("-"))
    if month == 12:
        return datetime(year + 1, 1, 1, tzinfo=UTC)
    return datetime(year, month + 1, 1, tzinfo=UTC)


def previous_period_id(period_id: str) -> str:
    year, month = (int(part) for part in period_id.split("-"))
    if month == 1:
        return f"{year - 1}-12"
    return f"{year}-{month - 1:02d}"


@dataclass(frozen=True)
class QuotaResult:
    """Outcome of ``try_consume``.

    ``remaining`` is None for unlimited ceilings. On denial ``consumed_after``
    is the unchanged counter value.
    """

    allowed: bool
    consumed_after: int
    remaining: int | None
    ceiling: int | None = None
    period_id: str | None = None
    meter: Meter = Meter.SCANS
    replayed: bool = False

    @property
    def reset_at(self) -> datetime | None:
        return period_reset_at(self.period_id) if self.period_id else None


@dataclass(frozen=True)
class UsageBalance:
    """Consumption against the ceiling for one meter in one period."""

    meter: Meter
    consumed: int
    ceiling: int | None
    remaining: int | None
    unlimited: bool
    period_id: str
    period_start: datetime
    period_end: datetime
    operations: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "meter": self.meter.value,
            "consumed": self.consumed,
            "ceiling": self.ceiling,
            "remaining": self.remaining,
            "unlimited": self.unlimited,
            "period_id": self.period_id,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "operations": dict(self.operations),
        }


def _remaining(ceiling: int | None, consumed: int) -> int | None:
    if ceiling is None:
        return None
    return max(ceiling - consumed, 0)


class QuotaLedger:
    """Atomic check-then-increment counters in the backing store."""

    def __init__(
        self,
        store: AccessStore,
        guard: StoreGuard | None = None,
        policy: TierQuotaPolicy | None = None,
        clock: Clock = utc_now,
    ):
        self._store = store
        self._guard = guard or StoreGuard()
        self._policy = policy or TierQuotaPolicy()
        self._clock = clock

    @property
    def policy(self) -> TierQuotaPolicy:
        return self._policy

    def current_period_id(self) -> str:
        return period_id_for(self._clock())

    async def try_consume(
        self,
        principal_id: str,
        period_id: str,
        amount: int,
        ceiling: int | None,
        meter: Meter = Meter.SCANS,
        idempotency_key: str | None = None,
        operation: str | None = None,
        operation_count: int = 1,
    ) -> QuotaResult:
        """Consume ``amount`` units if the ceiling allows it.

        Args:
            principal_id: Whose counter
            period_id: "YYYY-MM"
            amount: Units to consume (>= 1)
            ceiling: Maximum for the period; None = unlimited
            meter: Which counter
            idempotency_key: Makes retries of the same logical request safe
            operation: Operation name counted alongside the units
            operation_count: How many operations ``amount`` pays for

        Raises:
            AccessError: VALIDATION_FAILED for bad input or an idempotency key
                reused with a different amount or operation,
                BACKEND_UNAVAILABLE if the store fails (outcome unknown; retry
                with the same idempotency_key)
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 1:
            raise create_error(
                "VALIDATION_FAILED", field="amount", reason="amount must be an integer >= 1"
            )
        if ceiling is not None and ceiling < 0:
            raise create_error(
                "VALIDATION_FAILED", field="ceiling", reason="ceiling must be >= 0 or None"
            )
        self._validate_period(period_id)

        update = await self._guard.write(
            "quota.try_consume",
            self._store.consume,
            CounterKey(principal_id, meter.value, period_id),
            amount,
            ceiling,
            self._clock(),
            idempotency_key=idempotency_key,
            operation=operation,
            operation_count=operation_count,
            idempotency_ttl_seconds=self._policy.idempotency_ttl_seconds,
        )
        if update.conflict:
            raise create_error(
                "VALIDATION_FAILED",
                field="idempotency_key",
                reason=(
                    f"Idempotency key '{idempotency_key}' was already used "
                    "with a different amount or operation"
                ),
            )

        return QuotaResult(
            allowed=update.applied,
            consumed_after=update.consumed,
            remaining=_remaining(ceiling, update.consumed),
            ceiling=ceiling,
            period_id=period_id,
            meter=meter,
            replayed=update.replayed,
        )

    async def get_usage(
        self, principal_id: str, period_id: str, meter: Meter = Meter.SCANS
    ) -> int:
        """Current counter value (0 if never consumed)."""
        self._validate_period(period_id)
        return await self._guard.read(
            "quota.get_usage",
            self._store.get_consumed,
            CounterKey(principal_id, meter.value, period_id),
        )

    async def balance(
        self,
        principal_id: str,
        tier: Tier,
        meter: Meter = Meter.SCANS,
        now: datetime | None = None,
    ) -> UsageBalance:
        """Usage against the tier ceiling for the period containing ``now``."""
        return await self._period_balance(
            principal_id, tier, meter, period_id_for(now or self._clock())
        )

    async def history(
        self,
        principal_id: str,
        tier: Tier,
        meter: Meter = Meter.TOKENS,
        months: int = 6,
        now: datetime | None = None,
    ) -> list[UsageBalance]:
        """Balances for the last ``months`` periods, newest first.

        Periods with no counter (never used, or already cleaned up) report
        zero consumption. Ceilings are the tier's current ones.

        Raises:
            AccessError: VALIDATION_FAILED if ``months`` is outside
                [1, MAX_HISTORY_MONTHS]
        """
        valid = isinstance(months, int) and not isinstance(months, bool)
        if not valid or not 1 <= months <= MAX_HISTORY_MONTHS:
            raise create_error(
                "VALIDATION_FAILED",
                field="months",
                reason=f"months must be between 1 and {MAX_HISTORY_MONTHS}",
            )

        period_ids = [period_id_for(now or self._clock())]
        while len(period_ids) < months:
            period_ids.append(previous_period_id(period_ids[-1]))

        return [
            await self._period_balance(principal_id, tier, meter, period_id)
            for period_id in period_ids
        ]

    async def _period_balance(
        self, principal_id: str, tier: Tier, meter: Meter, period_id: str
    ) -> UsageBalance:
        snapshot = await self._guard.read(
            "quota.get_counter",
            self._store.get_counter,
            CounterKey(principal_id, meter.value, period_id),
        )
        ceiling = self._policy.ceiling(tier, meter)
        return UsageBalance(
            meter=meter,
            consumed=snapshot.consumed,
            ceiling=ceiling,
            remaining=_remaining(ceiling, snapshot.consumed),
            unlimited=ceiling is None,
            period_id=period_id,
            period_start=period_start(period_id),
            period_end=period_reset_at(period_id),
            operations=dict(snapshot.operations),
        )

    @staticmethod
    def _validate_period(period_id: str) -> None:
        if not isinstance(period_id, str) or not PERIOD_ID_REGEX.match(period_id):
            raise create_error(
                "VALIDATION_FAILED",
                field="period_id",
                reason=f"'{period_id}' is not a YYYY-MM period",
            )
