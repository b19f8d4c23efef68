"""Usage router."""

from fastapi import APIRouter, Depends, Query, Request

from triage_access.api.dependencies import current_principal, get_coordinator
from triage_access.api.models import MeterBalance, UsageHistoryResponse, UsageResponse
from triage_access.auth.models import Principal
from triage_access.quota import Meter

usage_router = APIRouter(tags=["Usage"])


@usage_router.get("/usage", response_model=UsageResponse)
async def get_usage(
    request: Request,
    principal: Principal = Depends(current_principal),
) -> UsageResponse:
    """Current-period quota balance for every meter."""
    balances = await get_coordinator(request).usage(principal)
    return UsageResponse(
        principal_id=principal.id,
        tier=principal.tier.value,
        meters=[MeterBalance.from_balance(b) for b in balances],
    )


@usage_router.get("/usage/history", response_model=UsageHistoryResponse)
async def get_usage_history(
    request: Request,
    meter: Meter = Query(default=Meter.TOKENS),
    months: int = Query(default=6),
    principal: Principal = Depends(current_principal),
) -> UsageHistoryResponse:
    """Per-period balances of one meter, newest first.

    ``months`` outside the supported range is rejected by the ledger
    with VALIDATION_FAILED.
    """
    balances = await get_coordinator(request).usage_history(principal, meter, months)
    return UsageHistoryResponse(
        principal_id=principal.id,
        tier=principal.tier.value,
        meter=meter.value,
        periods=[MeterBalance.from_balance(b) for b in balances],
    )
