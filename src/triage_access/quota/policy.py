"""Tier-derived quota ceilings and operation token costs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from triage_access.auth.models import Tier
from triage_access.config import QuotaConfig
from triage_access.errors import create_error

logger = logging.getLogger(__name__)


class Meter(str, Enum):
    """What a quota counter measures."""

    SCANS = "scans"  # Scan/triage runs per month
    TOKENS = "tokens"  # Weighted operation cost per month


@dataclass(frozen=True)
class QuotaRequest:
    """Consumption the coordinator should enforce for one request."""

    amount: int = 1
    meter: Meter = Meter.SCANS
    idempotency_key: str | None = None
    operation: str | None = None  # Counted per period when set
    multiplier: int = 1  # How many operations ``amount`` pays for


class TierQuotaPolicy:
    """Maps (tier, meter) to a monthly ceiling; None means unlimited.

    Defaults:
        scans:  free 10, standard 100, team 500, enterprise unlimited
        tokens: free 1000, standard 8000, team 25000, enterprise unlimited
    """

    def __init__(self, config: QuotaConfig | None = None):
        self._config = config or QuotaConfig()

    def ceiling(self, tier: Tier, meter: Meter = Meter.SCANS) -> int | None:
        ceilings = self._config.scans if meter == Meter.SCANS else self._config.tokens
        if tier.value in ceilings:
            return ceilings[tier.value]
        # Unconfigured tiers get the free allowance
        logger.warning(f"No {meter.value} ceiling configured for tier '{tier.value}'")
        return ceilings.get(Tier.FREE.value, 0)

    def operation_cost(self, operation: str) -> int:
        """Token cost of a named operation.

        Raises:
            AccessError: VALIDATION_FAILED for unknown operations
        """
        cost = self._config.operation_costs.get(operation)
        if cost is None:
            raise create_error(
                "VALIDATION_FAILED",
                field="operation",
                reason=f"Unknown operation '{operation}'",
            )
        return cost

    def operations(self) -> dict[str, int]:
        return dict(self._config.operation_costs)

    @property
    def idempotency_ttl_seconds(self) -> int:
        return self._config.idempotency_ttl_seconds

    def request_for(
        self, operation: str, idempotency_key: str | None = None, multiplier: int = 1
    ) -> QuotaRequest:
        """Token-meter request for ``multiplier`` runs of a named operation.

        Raises:
            AccessError: VALIDATION_FAILED for unknown operations or a
                multiplier below 1
        """
        if isinstance(multiplier, bool) or not isinstance(multiplier, int) or multiplier < 1:
            raise create_error(
                "VALIDATION_FAILED", field="multiplier", reason="multiplier must be an integer >= 1"
            )
        return QuotaRequest(
            amount=self.operation_cost(operation) * multiplier,
            meter=Meter.TOKENS,
            idempotency_key=idempotency_key,
            operation=operation,
            multiplier=multiplier,
        )
