"""API key management router.

- POST /keys - Issue a key (secret returned once)
- GET /keys - List the caller's keys (admins may pass ``owner_id``)
- DELETE /keys/{key_id} - Revoke a key
"""

from fastapi import APIRouter, Depends, Path, Query, Request

from triage_access.api.dependencies import current_principal, get_coordinator
from triage_access.api.models import (
    ApiKeyInfo,
    CreateKeyRequest,
    CreateKeyResponse,
    KeyListResponse,
    RevokeKeyResponse,
)
from triage_access.auth.models import Principal

keys_router = APIRouter(prefix="/keys", tags=["API Keys"])


@keys_router.post("", response_model=CreateKeyResponse, status_code=201)
async def create_key(
    request: Request,
    create_request: CreateKeyRequest,
    principal: Principal = Depends(current_principal),
) -> CreateKeyResponse:
    """Issue a new API key for the caller (or for ``owner_id``)."""
    issued = await get_coordinator(request).issue_key(
        principal,
        create_request.name,
        scopes=create_request.scopes,
        expires_in_days=create_request.expires_in_days,
        rate_limit=create_request.rate_limit,
        ip_allow_list=create_request.ip_allow_list,
        owner_id=create_request.owner_id,
    )
    return CreateKeyResponse(key=issued.secret, info=ApiKeyInfo.from_record(issued.record))


@keys_router.get("", response_model=KeyListResponse)
async def list_keys(
    request: Request,
    owner_id: str | None = Query(default=None),
    principal: Principal = Depends(current_principal),
) -> KeyListResponse:
    """List API keys, active and revoked."""
    records = await get_coordinator(request).list_keys(principal, owner_id)
    keys = [ApiKeyInfo.from_record(r) for r in records]
    return KeyListResponse(keys=keys, total=len(keys))


@keys_router.delete("/{key_id}", response_model=RevokeKeyResponse)
async def revoke_key(
    request: Request,
    key_id: str = Path(..., description="Key id"),
    principal: Principal = Depends(current_principal),
) -> RevokeKeyResponse:
    result = await get_coordinator(request).revoke_key(principal, key_id)
    return RevokeKeyResponse(id=key_id, status=result.value)
