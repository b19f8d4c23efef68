"""Error registry for creating errors from templates."""

from typing import Any

from .errors import AccessError, ErrorCategory, ErrorTemplate


class ErrorRegistry:
    """Registry of error templates. Creates errors from templates + context."""

    def __init__(self) -> None:
        """Initialize error registry with built-in templates."""
        self._templates: dict[str, ErrorTemplate] = {}
        self._load_builtin_templates()

    def get_template(self, code: str) -> ErrorTemplate | None:
        """Get template by error code.

        Args:
            code: Error code to look up

        Returns:
            ErrorTemplate if found, None otherwise
        """
        return self._templates.get(code)

    def register(self, template: ErrorTemplate) -> None:
        """Register or replace a template."""
        self._templates[template.code] = template

    def list_codes(self) -> list[str]:
        """List all registered error codes."""
        return list(self._templates.keys())

    def create(
        self,
        code: str,
        context: dict[str, Any] | None = None,
        cause: AccessError | None = None,
    ) -> AccessError:
        """Create error instance from template + context.

        Args:
            code: Error code
            context: Context variables for template interpolation
            cause: Optional cause error

        Returns:
            AccessError instance

        Raises:
            ValueError: If error code not found
        """
        template = self.get_template(code)
        if not template:
            msg = f"Unknown error code: {code}"
            raise ValueError(msg)

        context = context or {}

        message = self._interpolate(template.message_template, context)
        # An explicit detail in the context wins over the template
        detail = context.get("detail") or self._interpolate(template.detail_template, context)
        suggestion = self._interpolate(template.suggestion_template, context)

        if message is None:
            message = f"Error {code}"

        return AccessError(
            code=template.code,
            category=template.category,
            message=message,
            detail=detail,
            suggestion=suggestion,
            retryable=template.default_retryable,
            http_status=template.default_http_status,
            principal_id=context.get("principal_id"),
            scheme=context.get("scheme"),
            operation=context.get("operation"),
            retry_after_seconds=context.get("retry_after_seconds"),
            remaining=context.get("remaining"),
            reset_at=context.get("reset_at"),
            cause=cause,
        )

    def _interpolate(
        self,
        template: str | None,
        context: dict[str, Any],
    ) -> str | None:
        """Safe string interpolation.

        Args:
            template: Template string with {var} placeholders
            context: Context variables

        Returns:
            Interpolated string or None if template is None
        """
        if template is None:
            return None

        try:
            return template.format(**context)
        except KeyError:
            # Missing context variable - return template as-is
            return template

    def _load_builtin_templates(self) -> None:
        """Load hardcoded built-in templates."""
        # CREDENTIAL Errors
        self._templates["NO_CREDENTIAL"] = ErrorTemplate(
            code="NO_CREDENTIAL",
            category=ErrorCategory.CREDENTIAL,
            message_template="No credential",
            detail_template="The request carried no 'Authorization: Bearer <token>' header",
            suggestion_template="Send a bearer token, API key or session token",
            default_http_status=401,
        )

        self._templates["UNRECOGNIZED_FORMAT"] = ErrorTemplate(
            code="UNRECOGNIZED_FORMAT",
            category=ErrorCategory.CREDENTIAL,
            message_template="Unrecognized credential format",
            detail_template="The bearer value matches no known credential scheme",
            default_http_status=401,
        )

        self._templates["INVALID_SIGNATURE"] = ErrorTemplate(
            code="INVALID_SIGNATURE",
            category=ErrorCategory.CREDENTIAL,
            message_template="Invalid credential signature",
            detail_template="The {scheme} credential failed verification",
            suggestion_template="Sign in again to obtain a fresh token",
            default_http_status=401,
        )

        self._templates["EXPIRED"] = ErrorTemplate(
            code="EXPIRED",
            category=ErrorCategory.CREDENTIAL,
            message_template="Credential expired",
            detail_template="The {scheme} credential expired at {expired_at}",
            suggestion_template="Obtain a new token or create a new API key",
            default_http_status=401,
        )

        self._templates["REVOKED"] = ErrorTemplate(
            code="REVOKED",
            category=ErrorCategory.CREDENTIAL,
            message_template="API key revoked",
            detail_template="API key '{key_prefix}' has been revoked",
            suggestion_template="Create a new API key",
            default_http_status=401,
        )

        self._templates["NOT_FOUND"] = ErrorTemplate(
            code="NOT_FOUND",
            category=ErrorCategory.CREDENTIAL,
            message_template="Invalid API key",
            detail_template="No API key matches '{key_prefix}'",
            default_http_status=401,
        )

        # PERMISSION Errors
        self._templates["INSUFFICIENT_SCOPE"] = ErrorTemplate(
            code="INSUFFICIENT_SCOPE",
            category=ErrorCategory.PERMISSION,
            message_template="Forbidden",
            detail_template="Principal '{principal_id}' lacks scope '{scope}'",
            default_http_status=403,
        )

        self._templates["KEY_FORBIDDEN"] = ErrorTemplate(
            code="KEY_FORBIDDEN",
            category=ErrorCategory.PERMISSION,
            message_template="Not allowed to manage API key '{key_id}'",
            detail_template="Only the key owner or an admin may revoke a key",
            default_http_status=403,
        )

        # LIMIT Errors
        self._templates["RATE_LIMITED"] = ErrorTemplate(
            code="RATE_LIMITED",
            category=ErrorCategory.LIMIT,
            message_template="Rate limited",
            detail_template=(
                "Maximum {max_per_window} '{category}' requests per {window_seconds}s"
            ),
            suggestion_template="Retry in {retry_after_seconds} seconds",
            default_http_status=429,
        )

        self._templates["QUOTA_EXCEEDED"] = ErrorTemplate(
            code="QUOTA_EXCEEDED",
            category=ErrorCategory.LIMIT,
            message_template="Quota exceeded",
            detail_template="Monthly {meter} quota of {ceiling} reached for period {period_id}",
            suggestion_template="Upgrade your plan or wait for the quota to reset",
            default_http_status=429,
        )

        # BACKEND Errors
        self._templates["BACKEND_UNAVAILABLE"] = ErrorTemplate(
            code="BACKEND_UNAVAILABLE",
            category=ErrorCategory.BACKEND,
            message_template="Backend unavailable",
            detail_template="'{operation}' failed: {reason}",
            suggestion_template="Retry idempotent reads with backoff",
            default_retryable=True,
            default_http_status=503,
        )

        # VALIDATION Errors
        self._templates["VALIDATION_FAILED"] = ErrorTemplate(
            code="VALIDATION_FAILED",
            category=ErrorCategory.VALIDATION,
            message_template="Invalid {field}",
            detail_template="{reason}",
            default_http_status=422,
        )

        self._templates["DUPLICATE_REQUEST"] = ErrorTemplate(
            code="DUPLICATE_REQUEST",
            category=ErrorCategory.VALIDATION,
            message_template="Request already processed",
            detail_template="Idempotency key '{idempotency_key}' was already charged",
            suggestion_template="Use a new Idempotency-Key for a new request",
            default_http_status=409,
        )

        self._templates["KEY_NOT_FOUND"] = ErrorTemplate(
            code="KEY_NOT_FOUND",
            category=ErrorCategory.VALIDATION,
            message_template="API key '{key_id}' not found",
            default_http_status=404,
        )

        # SYSTEM Errors
        self._templates["CONFIG_INVALID"] = ErrorTemplate(
            code="CONFIG_INVALID",
            category=ErrorCategory.SYSTEM,
            message_template="Invalid configuration",
            detail_template="{detail}",
            suggestion_template="Check the configuration file",
            default_http_status=500,
        )

        self._templates["INTERNAL_ERROR"] = ErrorTemplate(
            code="INTERNAL_ERROR",
            category=ErrorCategory.SYSTEM,
            message_template="Internal error",
            detail_template="{error_type}: {detail}",
            default_http_status=500,
        )
