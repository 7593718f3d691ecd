"""Tests for owner identity and tier-gating dependencies."""

import pytest
from fastapi import Depends, FastAPI, Request
from httpx import ASGITransport, AsyncClient

from src.auth.dependencies import get_current_api_key, get_owner_id, require_tier
from src.auth.tiers import Tier
from src.config import settings
from src.exceptions import (
    GatekeeperError,
    InsufficientTierError,
    MissingCredentialError,
    UnauthorizedError,
)
from src.handlers.exception_handler import gatekeeper_exception_handler


class TestGetOwnerId:
    """Owner identity from the session gateway."""

    @pytest.mark.asyncio
    async def test_owner_header(self) -> None:
        assert await get_owner_id(x_owner_id=" owner-1 ", x_management_token=None) == "owner-1"

    @pytest.mark.asyncio
    async def test_missing_owner(self) -> None:
        with pytest.raises(UnauthorizedError):
            await get_owner_id(x_owner_id=None, x_management_token=None)

    @pytest.mark.asyncio
    async def test_management_token_required_when_configured(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(settings, "management_token", "s3cret")

        with pytest.raises(UnauthorizedError) as exc_info:
            await get_owner_id(x_owner_id="owner-1", x_management_token="wrong")
        assert exc_info.value.message == "Invalid management token"

        with pytest.raises(UnauthorizedError):
            await get_owner_id(x_owner_id="owner-1", x_management_token=None)

        assert await get_owner_id(x_owner_id="owner-1", x_management_token="s3cret") == "owner-1"


@pytest.fixture
def gated_app(make_api_key) -> FastAPI:
    """App whose middleware attaches a key of the tier named in X-Test-Tier."""
    app = FastAPI()
    app.add_exception_handler(GatekeeperError, gatekeeper_exception_handler)

    @app.middleware("http")
    async def attach_key(request: Request, call_next):
        tier = request.headers.get("x-test-tier")
        if tier:
            _, api_key = make_api_key(Tier(tier))
            request.state.api_key = api_key
        return await call_next(request)

    @app.get("/signals")
    async def signals(api_key=Depends(require_tier(Tier.PRO))) -> dict[str, str]:
        return {"tier": api_key.tier.value}

    @app.get("/me")
    async def me(api_key=Depends(get_current_api_key)) -> dict[str, str]:
        return {"key_prefix": api_key.key_prefix}

    return app


@pytest.mark.asyncio
async def test_require_tier_allows_higher(gated_app: FastAPI) -> None:
    """Test that enterprise passes a pro gate."""
    transport = ASGITransport(app=gated_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/signals", headers={"X-Test-Tier": "enterprise"})

    assert response.status_code == 200
    assert response.json() == {"tier": "enterprise"}


@pytest.mark.asyncio
async def test_require_tier_rejects_lower(gated_app: FastAPI) -> None:
    """Test that starter is rejected by a pro gate with both tiers named."""
    transport = ASGITransport(app=gated_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/signals", headers={"X-Test-Tier": "starter"})

    assert response.status_code == 403
    body = response.json()
    assert body["success"] is False
    assert body["details"] == {"required_tier": "pro", "current_tier": "starter"}


@pytest.mark.asyncio
async def test_require_tier_without_key(gated_app: FastAPI) -> None:
    """Test that a request that never passed the gatekeeper is unauthenticated."""
    transport = ASGITransport(app=gated_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/signals")

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_get_current_api_key(gated_app: FastAPI) -> None:
    """Test that the attached key is returned."""
    transport = ASGITransport(app=gated_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/me", headers={"X-Test-Tier": "free"})

    assert response.status_code == 200
    assert response.json()["key_prefix"].startswith("mk_test_")


def test_insufficient_tier_message() -> None:
    """Test the tier-gate message."""
    exc = InsufficientTierError(required="pro", current="free")
    assert "requires pro tier or higher" in exc.message
    assert exc.status_code == 403


def test_missing_credential_is_unauthorized() -> None:
    assert MissingCredentialError().status_code == 401
