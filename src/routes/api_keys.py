"""Management routes: generate, list, revoke, rotate and usage analytics for API keys.

These routes sit behind the owner-session gateway, not behind API keys.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from src.auth.dependencies import get_api_key_service, get_owner_id
from src.auth.tiers import TIERS
from src.schemas.api_key import (
    ApiKeyListResponse,
    ApiKeySummary,
    ErrorEnvelope,
    GenerateKeyRequest,
    IssuedKeyResponse,
    MessageResponse,
    TierInfo,
    TierListResponse,
    UsageSummaryResponse,
)
from src.services.api_key_service import ApiKeyService

router = APIRouter(prefix="/api/api-keys", tags=["API Keys"])

_ERROR_RESPONSES = {
    400: {"model": ErrorEnvelope, "description": "Validation error"},
    401: {"model": ErrorEnvelope, "description": "Missing owner identity"},
    500: {"model": ErrorEnvelope, "description": "Key store unavailable"},
}


@router.post(
    "/generate",
    response_model=IssuedKeyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Generate API key",
    responses={
        **_ERROR_RESPONSES,
        409: {"model": ErrorEnvelope, "description": "Duplicate active key name"},
    },
)
async def generate_key(
    body: GenerateKeyRequest,
    owner_id: str = Depends(get_owner_id),
    service: ApiKeyService = Depends(get_api_key_service),
) -> IssuedKeyResponse:
    """
    Generate a new API key.

    The full credential is returned in this response only and can never be
    retrieved again.
    """
    issued = await service.generate(
        owner_id=owner_id,
        name=body.name,
        tier=body.tier,
        expires_in_days=body.expires_in_days,
        allowed_ips=body.allowed_ips,
        allowed_endpoints=body.allowed_endpoints,
    )
    return IssuedKeyResponse(data=issued, message="API key generated successfully")


@router.get(
    "",
    response_model=ApiKeyListResponse,
    summary="List API keys",
    responses=_ERROR_RESPONSES,
)
async def list_keys(
    owner_id: str = Depends(get_owner_id),
    service: ApiKeyService = Depends(get_api_key_service),
) -> ApiKeyListResponse:
    """List the owner's keys, newest first. Secret hashes are never included."""
    keys = await service.list_keys(owner_id)
    return ApiKeyListResponse(
        data=[ApiKeySummary(**api_key.to_public_dict()) for api_key in keys],
        total=len(keys),
    )


@router.get("/tiers", response_model=TierListResponse, summary="List tiers")
async def list_tiers() -> TierListResponse:
    """Quota ceilings, endpoint reach and features of every tier."""
    return TierListResponse(
        data=[
            TierInfo(
                tier=tier,
                name=descriptor.name,
                requests_per_day=descriptor.requests_per_day,
                requests_per_minute=descriptor.requests_per_minute,
                allowed_endpoints=list(descriptor.allowed_endpoints),
                features=list(descriptor.features),
            )
            for tier, descriptor in TIERS.items()
        ]
    )


@router.delete(
    "/{key_id}",
    response_model=MessageResponse,
    summary="Revoke API key",
    responses={**_ERROR_RESPONSES, 404: {"model": ErrorEnvelope}},
)
async def revoke_key(
    key_id: str,
    owner_id: str = Depends(get_owner_id),
    service: ApiKeyService = Depends(get_api_key_service),
) -> MessageResponse:
    """Revoke a key. Subsequent requests with it are rejected immediately."""
    await service.revoke(owner_id, key_id)
    return MessageResponse(message="API key revoked successfully")


@router.post(
    "/{key_id}/rotate",
    response_model=IssuedKeyResponse,
    summary="Rotate API key",
    responses={**_ERROR_RESPONSES, 404: {"model": ErrorEnvelope}},
)
async def rotate_key(
    key_id: str,
    owner_id: str = Depends(get_owner_id),
    service: ApiKeyService = Depends(get_api_key_service),
) -> IssuedKeyResponse:
    """Issue a replacement credential and deactivate the old one."""
    issued = await service.rotate(owner_id, key_id)
    return IssuedKeyResponse(data=issued, message="API key rotated successfully")


@router.get(
    "/{key_id}/usage",
    response_model=UsageSummaryResponse,
    summary="API key usage analytics",
    responses={**_ERROR_RESPONSES, 404: {"model": ErrorEnvelope}},
)
async def key_usage(
    key_id: str,
    start: Optional[datetime] = Query(None, alias="from"),
    end: Optional[datetime] = Query(None, alias="to"),
    owner_id: str = Depends(get_owner_id),
    service: ApiKeyService = Depends(get_api_key_service),
) -> UsageSummaryResponse:
    """Aggregate the key's usage records, optionally within ``from``..``to``."""
    summary = await service.usage_summary(owner_id, key_id, start=start, end=end)
    return UsageSummaryResponse(data=summary)
