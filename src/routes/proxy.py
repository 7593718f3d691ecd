"""Gated trading-data routes, forwarded to the upstream service once admitted."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from src.auth.dependencies import get_current_api_key
from src.config import settings
from src.models.api_key import ApiKey
from src.services.upstream import UpstreamClient, get_upstream_client, response_headers

router = APIRouter(prefix=settings.gated_path_prefix.rstrip("/"), tags=["Trading Data"])


@router.api_route(
    "/{upstream_path:path}",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    summary="Forward to the trading-data service",
    description=(
        "Every request under the gated prefix has already passed the "
        "gatekeeper (credential, tier, IP allow-list, quota) when it "
        "reaches this route."
    ),
)
async def forward(
    request: Request,
    upstream_path: str,
    api_key: ApiKey = Depends(get_current_api_key),
    upstream: UpstreamClient = Depends(get_upstream_client),
) -> Response:
    """
    Relay the request upstream and return its response unchanged.

    Raises:
        UpstreamUnavailableError: If the trading-data service is unreachable
    """
    upstream_response = await upstream.forward(
        method=request.method,
        path=request.url.path,
        api_key=api_key,
        headers=request.headers,
        query=request.url.query,
        body=await request.body(),
    )
    return Response(
        content=upstream_response.content,
        status_code=upstream_response.status_code,
        headers=response_headers(upstream_response.headers),
    )
