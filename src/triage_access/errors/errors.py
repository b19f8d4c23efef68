"""Access error types and error templates."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error source categories."""

    CREDENTIAL = "CREDENTIAL"  # Who are you? (401)
    PERMISSION = "PERMISSION"  # Are you allowed? (403)
    LIMIT = "LIMIT"  # Rate and quota ceilings (429)
    VALIDATION = "VALIDATION"
    BACKEND = "BACKEND"  # Store / identity provider faults, never a policy decision
    SYSTEM = "SYSTEM"


@dataclass
class AccessError(Exception):
    """Structured error with context. Base exception for all access errors."""

    # Identity
    code: str  # e.g., "INVALID_SIGNATURE"
    category: ErrorCategory

    # Messages
    message: str
    detail: str | None = None
    suggestion: str | None = None

    # Context
    retryable: bool = False
    http_status: int = 500
    principal_id: str | None = None
    scheme: str | None = None
    operation: str | None = None

    # Limit context
    retry_after_seconds: int | None = None
    remaining: int | None = None
    reset_at: datetime | None = None

    cause: "AccessError | None" = None

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        """Set Exception message."""
        super().__init__(self.message)

    @property
    def is_policy_denial(self) -> bool:
        """True for decisions made by policy, False for infrastructure faults."""
        return self.category in (
            ErrorCategory.CREDENTIAL,
            ErrorCategory.PERMISSION,
            ErrorCategory.LIMIT,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses.

        Returns:
            Dictionary representation of the error
        """
        data: dict[str, Any] = {
            "code": self.code,
            "category": self.category.value,
            "message": self.message,
            "detail": self.detail,
            "suggestion": self.suggestion,
            "retryable": self.retryable,
            "timestamp": self.timestamp.isoformat(),
            "cause": self.cause.to_dict() if self.cause else None,
        }
        if self.retry_after_seconds is not None:
            data["retry_after_seconds"] = self.retry_after_seconds
        if self.remaining is not None:
            data["remaining"] = self.remaining
        if self.reset_at is not None:
            data["reset_at"] = self.reset_at.isoformat()
        return data

    def with_context(
        self,
        principal_id: str | None = None,
        scheme: str | None = None,
        operation: str | None = None,
    ) -> "AccessError":
        """Return copy with additional context.

        Args:
            principal_id: Optional principal identifier
            scheme: Optional credential scheme
            operation: Optional operation name

        Returns:
            New AccessError instance with updated context
        """
        return AccessError(
            code=self.code,
            category=self.category,
            message=self.message,
            detail=self.detail,
            suggestion=self.suggestion,
            retryable=self.retryable,
            http_status=self.http_status,
            principal_id=principal_id or self.principal_id,
            scheme=scheme or self.scheme,
            operation=operation or self.operation,
            retry_after_seconds=self.retry_after_seconds,
            remaining=self.remaining,
            reset_at=self.reset_at,
            cause=self.cause,
            timestamp=self.timestamp,
        )


@dataclass
class ErrorTemplate:
    """Template for creating errors."""

    code: str
    category: ErrorCategory
    message_template: str  # "Credential expired at {expired_at}"
    detail_template: str | None = None
    suggestion_template: str | None = None
    default_retryable: bool = False
    default_http_status: int = 500


@dataclass
class MatchResult:
    """Result of matching an exception."""

    code: str
    context: dict[str, Any]
    retryable: bool | None = None  # None = use template default


class ErrorMatcher(ABC):
    """Base class for exception matchers."""

    @abstractmethod
    def matches(self, error: Exception) -> bool:
        """Check if this matcher handles the error.

        Args:
            error: Exception to check

        Returns:
            True if this matcher can handle the error
        """

    @abstractmethod
    def extract(self, error: Exception) -> MatchResult:
        """Extract access error info from the exception.

        Args:
            error: Exception to extract from

        Returns:
            MatchResult with error code and context
        """
