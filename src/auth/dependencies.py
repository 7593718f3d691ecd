"""FastAPI dependencies for API key and owner authentication."""

import secrets
from collections.abc import Awaitable, Callable

from fastapi import Header, Request

from src.auth.tiers import Tier
from src.config import settings
from src.exceptions import InsufficientTierError, MissingCredentialError, UnauthorizedError
from src.models.api_key import ApiKey
from src.services.api_key_service import ApiKeyService


async def get_owner_id(
    x_owner_id: str | None = Header(None, alias="X-Owner-Id"),
    x_management_token: str | None = Header(None, alias="X-Management-Token"),
) -> str:
    """
    Resolve the authenticated owner for management routes.

    Account sessions are issued by an upstream identity layer that forwards
    the owner in ``X-Owner-Id``. When ``management_token`` is configured the
    caller must also present it.

    Raises:
        UnauthorizedError: If the owner or the management token is missing or wrong
    """
    if settings.management_token:
        if not x_management_token or not secrets.compare_digest(
            x_management_token, settings.management_token
        ):
            raise UnauthorizedError(message="Invalid management token")

    owner_id = (x_owner_id or "").strip()
    if not owner_id:
        raise UnauthorizedError(
            message="Authentication required",
            details={"hint": "Include the 'X-Owner-Id' header"},
        )
    return owner_id


def get_api_key_service() -> ApiKeyService:
    """Service instance for management routes (overridden in tests)."""
    return ApiKeyService()


async def get_current_api_key(request: Request) -> ApiKey:
    """
    Key record the gatekeeper admitted for this request.

    Only meaningful on routes under the gated prefix.

    Raises:
        MissingCredentialError: If the request did not pass the gatekeeper
    """
    api_key = getattr(request.state, "api_key", None)
    if api_key is None:
        raise MissingCredentialError()
    return api_key


def require_tier(minimum: Tier | str) -> Callable[[Request], Awaitable[ApiKey]]:
    """
    Build a dependency that rejects keys below ``minimum``.

    Usage:
        @router.get("/signals", dependencies=[Depends(require_tier(Tier.PRO))])
    """
    minimum = Tier(minimum)

    async def dependency(request: Request) -> ApiKey:
        api_key = await get_current_api_key(request)
        if not api_key.tier.at_least(minimum):
            raise InsufficientTierError(
                required=minimum.value, current=api_key.tier.value
            )
        return api_key

    return dependency
