"""Quota enforcement - monthly counters, tier ceilings and retention."""

from .ledger import (
    MAX_HISTORY_MONTHS,
    QuotaLedger,
    QuotaResult,
    UsageBalance,
    period_id_for,
    period_reset_at,
    period_start,
    previous_period_id,
)
from .policy import Meter, QuotaRequest, TierQuotaPolicy
from .retention import QuotaRetentionManager, cleanup_cutoff

__all__ = [
    # Ledger
    "MAX_HISTORY_MONTHS",
    "QuotaLedger",
    "QuotaResult",
    "UsageBalance",
    "period_id_for",
    "period_reset_at",
    "period_start",
    "previous_period_id",
    # Policy
    "Meter",
    "QuotaRequest",
    "TierQuotaPolicy",
    # Retention
    "QuotaRetentionManager",
    "cleanup_cutoff",
]
