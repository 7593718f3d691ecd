"""Health check and service information endpoints (unauthenticated)."""

import time

from fastapi import APIRouter

from src.config import settings

# Process start, for uptime reporting
_started_at = time.monotonic()

router = APIRouter(tags=["Health"])


@router.get("/status")
async def get_status() -> dict:
    """
    Liveness probe for load balancers.

    Does not touch DynamoDB or the upstream service, so it stays fast and
    reports the process itself.
    """
    return {
        "status": "ok",
        "version": settings.api_version,
        "uptime_seconds": int(time.monotonic() - _started_at),
    }


@router.get("/")
async def root() -> dict[str, str]:
    """Service name and where to find the docs."""
    return {
        "message": f"Welcome to {settings.api_title}",
        "version": settings.api_version,
        "docs": "/docs",
        "health": "/status",
        "gated_prefix": settings.gated_path_prefix,
    }
