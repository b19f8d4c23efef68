"""Per-principal rate limiting.

Fixed-window algorithm:
- window_start = floor(now / window_seconds) * window_seconds
- one counter per (principal, category, window_start), incremented atomically
  in the store and expiring after 2 * window_seconds
- allowed iff the count after increment <= max_per_window
- when denied, retry_after = ceil(window_start + window_seconds - now)

Category presets (requests per 60s):
    default 100, strict 20, relaxed 500, api 1000,
    screenshot 30, audit 10, sse 50
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import UTC, datetime

from triage_access.clock import Clock, utc_now
from triage_access.config import RateLimitConfig
from triage_access.errors import create_error
from triage_access.store import AccessStore, StoreGuard


@dataclass(frozen=True)
class RateLimitRule:
    """Window size and allowance for one category."""

    category: str
    max_per_window: int
    window_seconds: int = 60


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a rate limit check."""

    allowed: bool
    retry_after_seconds: int  # 0 when allowed
    remaining: int
    reset_at: datetime
    limit: int
    category: str

    def headers(self) -> dict[str, str]:
        """Conventional X-RateLimit-* response headers."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at.timestamp())),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers


class RateLimiter:
    """Fixed-window rate limiter backed by the access store."""

    def __init__(
        self,
        store: AccessStore,
        guard: StoreGuard | None = None,
        presets: RateLimitConfig | None = None,
        clock: Clock = utc_now,
    ):
        """Initialize rate limiter.

        Args:
            store: Store holding window counters
            guard: Timeout policy for store calls
            presets: Category presets
            clock: Time source
        """
        self._store = store
        self._guard = guard or StoreGuard()
        self._presets = presets or RateLimitConfig()
        self._clock = clock

    def rule_for(self, category: str) -> RateLimitRule:
        """Preset rule for a named category.

        Raises:
            AccessError: VALIDATION_FAILED for unknown categories
        """
        preset = self._presets.categories.get(category)
        if preset is None:
            raise create_error(
                "VALIDATION_FAILED",
                field="category",
                reason=f"Unknown rate limit category '{category}'",
            )
        return RateLimitRule(category, preset.max_per_window, preset.window_seconds)

    async def check(
        self,
        principal_id: str,
        category: str,
        window_seconds: int,
        max_per_window: int,
    ) -> RateLimitResult:
        """Count one request and decide whether it is within the window limit.

        Raises:
            AccessError: VALIDATION_FAILED for non-positive limits,
                BACKEND_UNAVAILABLE if the store fails
        """
        if window_seconds < 1 or max_per_window < 1:
            raise create_error(
                "VALIDATION_FAILED",
                field="rate_limit",
                reason="window_seconds and max_per_window must be >= 1",
            )

        now = self._clock().timestamp()
        window_start = math.floor(now / window_seconds) * window_seconds
        window_end = window_start + window_seconds

        count = await self._guard.write(
            "rate_limit.increment",
            self._store.increment_window,
            f"{principal_id}:{category}:{window_start}",
            2 * window_seconds,
        )

        allowed = count <= max_per_window
        return RateLimitResult(
            allowed=allowed,
            retry_after_seconds=0 if allowed else max(math.ceil(window_end - now), 1),
            remaining=max(max_per_window - count, 0),
            reset_at=datetime.fromtimestamp(window_end, tz=UTC),
            limit=max_per_window,
            category=category,
        )

    async def check_rule(
        self, principal_id: str, rule: RateLimitRule, override: int | None = None
    ) -> RateLimitResult:
        """Check against a rule, with an optional per-principal allowance."""
        return await self.check(
            principal_id,
            rule.category,
            rule.window_seconds,
            override if override is not None else rule.max_per_window,
        )
