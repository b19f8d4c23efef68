"""Error factory for creating AccessErrors from any exception type."""

from typing import Any

from .errors import AccessError
from .matchers import ErrorMatcherChain
from .registry import ErrorRegistry


class ErrorFactory:
    """Creates AccessErrors from any exception type."""

    def __init__(
        self,
        registry: ErrorRegistry | None = None,
        matcher_chain: ErrorMatcherChain | None = None,
    ):
        """Initialize error factory.

        Args:
            registry: Error registry (defaults to new ErrorRegistry())
            matcher_chain: Matcher chain (defaults to new ErrorMatcherChain())
        """
        self.registry = registry or ErrorRegistry()
        self.matcher_chain = matcher_chain or ErrorMatcherChain()

    def from_exception(
        self,
        error: Exception,
        operation: str | None = None,
        principal_id: str | None = None,
    ) -> AccessError:
        """Convert any exception to AccessError.

        Args:
            error: Exception to convert
            operation: Optional operation name (e.g. "quota.try_consume")
            principal_id: Optional principal identifier

        Returns:
            AccessError instance
        """
        if isinstance(error, AccessError):
            return error.with_context(principal_id=principal_id, operation=operation)

        match_result = self.matcher_chain.match(error)

        context = match_result.context.copy()
        context.setdefault("operation", operation or "unknown")
        if principal_id:
            context["principal_id"] = principal_id

        access_error = self.registry.create(code=match_result.code, context=context)

        if match_result.retryable is not None:
            access_error.retryable = match_result.retryable

        return access_error

    def create(
        self,
        code: str,
        context: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> AccessError:
        """Create AccessError directly from code.

        Args:
            code: Error code
            context: Context variables for template interpolation
            **kwargs: Additional context variables

        Returns:
            AccessError instance
        """
        merged_context = dict(context or {})
        merged_context.update(kwargs)

        return self.registry.create(code=code, context=merged_context)


# Convenience singleton
_default_factory: ErrorFactory | None = None


def get_error_factory() -> ErrorFactory:
    """Get default error factory singleton.

    Returns:
        Default ErrorFactory instance
    """
    global _default_factory  # noqa: PLW0603
    if _default_factory is None:
        _default_factory = ErrorFactory()
    return _default_factory


def create_error(code: str, **context: Any) -> AccessError:
    """Convenience function to create error.

    Args:
        code: Error code
        **context: Context variables for template interpolation

    Returns:
        AccessError instance
    """
    return get_error_factory().create(code, context)
