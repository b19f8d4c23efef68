"""Timeout and retry policy for store calls.

Every store call the engine makes goes through ``StoreGuard``:

- bounded by ``asyncio.wait_for`` so a hung backend cannot stall a request
- timeouts and client errors become ``BACKEND_UNAVAILABLE`` (never a
  policy denial)
- reads are retried with backoff; writes never are, because a write that
  timed out may already have been applied
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar

from triage_access.errors import AccessError, get_error_factory

if TYPE_CHECKING:
    from triage_access.config import StoreConfig
    from triage_access.telemetry.metrics import AccessMetrics

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StoreGuard:
    """Applies timeout, error mapping and read retries to store calls."""

    def __init__(
        self,
        timeout_seconds: float = 2.0,
        read_retries: int = 2,
        backoff_seconds: float = 0.05,
        metrics: AccessMetrics | None = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.read_retries = read_retries
        self.backoff_seconds = backoff_seconds
        self.metrics = metrics

    @classmethod
    def from_config(cls, config: StoreConfig, metrics: AccessMetrics | None = None) -> StoreGuard:
        return cls(
            timeout_seconds=config.operation_timeout_seconds,
            read_retries=config.read_retries,
            backoff_seconds=config.retry_backoff_seconds,
            metrics=metrics,
        )

    async def read(
        self, operation: str, fn: Callable[..., Awaitable[T]], /, *args: Any, **kwargs: Any
    ) -> T:
        """Run an idempotent read, retrying backend failures."""
        attempt = 0
        while True:
            try:
                return await self._call(operation, fn, *args, **kwargs)
            except AccessError as e:
                if not e.retryable or attempt >= self.read_retries:
                    raise
                attempt += 1
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    f"Store read {operation} failed ({e.detail}), "
                    f"retry {attempt}/{self.read_retries} in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

    async def write(
        self, operation: str, fn: Callable[..., Awaitable[T]], /, *args: Any, **kwargs: Any
    ) -> T:
        """Run a write exactly once."""
        return await self._call(operation, fn, *args, **kwargs)

    async def _call(
        self, operation: str, fn: Callable[..., Awaitable[T]], /, *args: Any, **kwargs: Any
    ) -> T:
        started = time.perf_counter()
        try:
            return await asyncio.wait_for(fn(*args, **kwargs), self.timeout_seconds)
        except AccessError:
            raise
        except Exception as e:
            error = get_error_factory().from_exception(e, operation=operation)
            if error.code != "BACKEND_UNAVAILABLE":
                raise
            logger.error(f"Store operation {operation} unavailable: {e!r}")
            raise error from e
        finally:
            if self.metrics is not None:
                self.metrics.record_store_latency(operation, time.perf_counter() - started)
