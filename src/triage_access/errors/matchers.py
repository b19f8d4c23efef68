"""Error matchers for converting backend exceptions to AccessErrors."""

import asyncio

import httpx
from redis.exceptions import RedisError

from .errors import ErrorMatcher, MatchResult


class TimeoutErrorMatcher(ErrorMatcher):
    """Matches timeout errors."""

    def matches(self, error: Exception) -> bool:
        """Check if error is a timeout error."""
        return isinstance(error, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException))

    def extract(self, error: Exception) -> MatchResult:
        """Extract timeout error info.

        Args:
            error: Exception to extract from

        Returns:
            MatchResult with BACKEND_UNAVAILABLE code
        """
        return MatchResult(
            code="BACKEND_UNAVAILABLE",
            context={"reason": "timed out"},
            retryable=True,
        )


class BackendErrorMatcher(ErrorMatcher):
    """Matches store and transport failures (Redis, HTTP, sockets)."""

    def matches(self, error: Exception) -> bool:
        """Check if error came from a backend client."""
        return isinstance(error, (RedisError, httpx.HTTPError, ConnectionError, OSError))

    def extract(self, error: Exception) -> MatchResult:
        """Extract backend error info.

        Args:
            error: Exception to extract from

        Returns:
            MatchResult with BACKEND_UNAVAILABLE code
        """
        return MatchResult(
            code="BACKEND_UNAVAILABLE",
            context={"reason": f"{type(error).__name__}: {error}"},
            retryable=True,
        )


class GenericErrorMatcher(ErrorMatcher):
    """Fallback matcher for any exception."""

    def matches(self, error: Exception) -> bool:
        """Always matches."""
        return True

    def extract(self, error: Exception) -> MatchResult:
        """Extract generic error info.

        Args:
            error: Exception to extract from

        Returns:
            MatchResult with INTERNAL_ERROR code
        """
        return MatchResult(
            code="INTERNAL_ERROR",
            context={"detail": str(error), "error_type": type(error).__name__},
            retryable=False,
        )


class ErrorMatcherChain:
    """Ordered chain of matchers. First match wins."""

    def __init__(self) -> None:
        """Initialize matcher chain with built-in matchers."""
        self.matchers: list[ErrorMatcher] = []
        self._load_builtin_matchers()

    def match(self, error: Exception) -> MatchResult:
        """Find first matching matcher and extract result.

        Args:
            error: Exception to match

        Returns:
            MatchResult from first matching matcher
        """
        for matcher in self.matchers:
            if matcher.matches(error):
                return matcher.extract(error)

        # Should never reach here due to GenericErrorMatcher
        return MatchResult(
            code="INTERNAL_ERROR",
            context={"detail": str(error), "error_type": type(error).__name__},
            retryable=False,
        )

    def _load_builtin_matchers(self) -> None:
        """Load built-in matchers in priority order."""
        # Order matters - TimeoutError is an OSError subclass
        self.matchers = [
            TimeoutErrorMatcher(),
            BackendErrorMatcher(),
            GenericErrorMatcher(),  # Fallback - must be last
        ]
