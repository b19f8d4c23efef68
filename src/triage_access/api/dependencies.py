"""FastAPI dependencies that run requests through the access coordinator."""

from collections.abc import Awaitable, Callable

from fastapi import Request, Response

from triage_access.auth.coordinator import AccessCoordinator
from triage_access.auth.models import Principal, Scope
from triage_access.auth.rate_limiter import RateLimitRule
from triage_access.errors import create_error
from triage_access.quota import QuotaRequest

IDEMPOTENCY_HEADER = "Idempotency-Key"


def get_coordinator(request: Request) -> AccessCoordinator:
    """Coordinator stored on the app by ``create_app``."""
    return request.app.state.coordinator


async def current_principal(request: Request) -> Principal:
    """Authenticate only: no scope, rate or quota checks."""
    coordinator = get_coordinator(request)
    return await coordinator.authenticate(request.headers.get("Authorization"))


def require_access(
    scope: Scope | None = None,
    quota: QuotaRequest | None = None,
    rate_limit: str | RateLimitRule | None = None,
    operation: str | None = None,
) -> Callable[[Request, Response], Awaitable[Principal]]:
    """Build a dependency that authorizes the request or raises the denial.

    Args:
        scope: Scope the route needs
        quota: Fixed consumption per request
        rate_limit: Rate limit category or explicit rule
        operation: Named operation whose token cost is charged; takes
            precedence over ``quota``

    The ``Idempotency-Key`` request header, when present, is attached to the
    quota request so a retried request is not charged twice. A request whose
    key was already charged is rejected with DUPLICATE_REQUEST and the route
    does not run again.
    """

    async def dependency(request: Request, response: Response) -> Principal:
        coordinator = get_coordinator(request)
        idempotency_key = request.headers.get(IDEMPOTENCY_HEADER)

        quota_request = quota
        if operation is not None:
            quota_request = coordinator.ledger.policy.request_for(operation, idempotency_key)
        elif quota is not None and idempotency_key:
            quota_request = QuotaRequest(
                amount=quota.amount,
                meter=quota.meter,
                idempotency_key=idempotency_key,
                operation=quota.operation,
                multiplier=quota.multiplier,
            )

        decision = await coordinator.authorize(
            request.headers.get("Authorization"),
            required_scope=scope,
            quota=quota_request,
            rate_limit=rate_limit,
        )
        principal = decision.raise_for_denial()
        if decision.already_charged:
            raise create_error(
                "DUPLICATE_REQUEST",
                idempotency_key=idempotency_key,
                principal_id=principal.id,
                scheme=principal.scheme.value,
            )

        if decision.rate_limit is not None:
            for name, value in decision.rate_limit.headers().items():
                response.headers[name] = value
        request.state.principal = principal
        return principal

    return dependency
