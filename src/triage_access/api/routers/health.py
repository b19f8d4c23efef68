"""Health router."""

from datetime import UTC, datetime

from fastapi import APIRouter, Request

from triage_access.api.models import HealthCheck, HealthStatus

health_router = APIRouter(tags=["Health"])


@health_router.get("/health", response_model=HealthCheck)
async def health_check(request: Request) -> HealthCheck:
    """Check access engine health status."""
    checks: dict[str, str] = {}

    store = getattr(request.app.state, "store", None)
    if store is not None:
        try:
            checks["store"] = "ok" if await store.ping() else "error: ping failed"
        except Exception as e:
            checks["store"] = f"error: {e}"
    else:
        checks["store"] = "not_configured"

    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is not None:
        checks["verifiers"] = ",".join(s.value for s in coordinator.verifiers.schemes())
    else:
        checks["verifiers"] = "error: coordinator missing"

    if any(v.startswith("error") for v in checks.values()):
        status = HealthStatus.UNHEALTHY
    elif checks["store"] == "not_configured":
        status = HealthStatus.DEGRADED
    else:
        status = HealthStatus.HEALTHY

    return HealthCheck(
        status=status,
        checks=checks,
        timestamp=datetime.now(UTC),
    )
