"""Retention Manager - Periodic cleanup of old quota counters."""

import asyncio
import logging
from datetime import datetime, timedelta

from triage_access.clock import Clock, utc_now
from triage_access.config import QuotaConfig
from triage_access.errors import AccessError
from triage_access.store import AccessStore, StoreGuard, period_ordinal

from .ledger import period_id_for, previous_period_id

logger = logging.getLogger(__name__)


def cleanup_cutoff(now: datetime, retention_days: int) -> str:
    """Oldest period to keep.

    Counters for periods strictly before the returned id may be deleted.
    Never later than the previous period, so the current and previous
    periods always survive.
    """
    horizon = period_id_for(now - timedelta(days=retention_days))
    previous = previous_period_id(period_id_for(now))
    return min(horizon, previous, key=period_ordinal)


class QuotaRetentionManager:
    """Periodically deletes quota counters older than the retention horizon."""

    def __init__(
        self,
        store: AccessStore,
        guard: StoreGuard | None = None,
        retention_days: int = 90,
        cleanup_interval_seconds: int = 3600,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize retention manager.

        Args:
            store: Store holding the counters
            guard: Timeout policy for store calls
            retention_days: Horizon in days
            cleanup_interval_seconds: Delay between cleanup runs
            clock: Time source
        """
        self._store = store
        self._guard = guard or StoreGuard()
        self._retention_days = retention_days
        self._interval = cleanup_interval_seconds
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @classmethod
    def from_config(
        cls,
        store: AccessStore,
        config: QuotaConfig,
        guard: StoreGuard | None = None,
        clock: Clock = utc_now,
    ) -> "QuotaRetentionManager":
        return cls(
            store,
            guard=guard,
            retention_days=config.retention_days,
            cleanup_interval_seconds=config.cleanup_interval_seconds,
            clock=clock,
        )

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the cleanup task."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._cleanup_loop())
        logger.info(
            "Quota retention started (retention=%d days, interval=%d seconds)",
            self._retention_days,
            self._interval,
        )

    async def stop(self) -> None:
        """Stop the cleanup task."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Quota retention stopped")

    async def _cleanup_loop(self) -> None:
        while self._running:
            try:
                await self.cleanup_now()
            except AccessError as e:
                logger.error("Quota retention cleanup failed: %s", e.detail)

            try:
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                break

    async def cleanup_now(self) -> int:
        """Perform immediate cleanup.

        Returns:
            Number of counters deleted
        """
        cutoff = cleanup_cutoff(self._clock(), self._retention_days)
        deleted = await self._guard.write(
            "quota.cleanup", self._store.delete_counters_before, cutoff
        )
        if deleted > 0:
            logger.info("Quota retention: deleted %d counters before %s", deleted, cutoff)
        return deleted
