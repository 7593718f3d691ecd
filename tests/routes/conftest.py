"""Application wired to in-memory stores and a mocked trading-data service."""

from datetime import datetime, timezone

import httpx
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from src.auth.dependencies import get_api_key_service
from src.auth.gatekeeper import Gatekeeper
from src.main import create_app
from src.middleware.rate_limit import RateLimiter
from src.services.api_key_service import ApiKeyService
from src.services.upstream import UpstreamClient, get_upstream_client
from src.services.usage_recorder import UsageRecorder

FIXED_NOW = datetime(2025, 11, 11, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def upstream_requests() -> list[httpx.Request]:
    """Requests that reached the mocked trading-data service."""
    return []


@pytest.fixture
def upstream_handler(upstream_requests):
    """Echo handler standing in for the trading-data service."""

    def handler(request: httpx.Request) -> httpx.Response:
        upstream_requests.append(request)
        return httpx.Response(
            200,
            json={"path": request.url.path, "query": request.url.query.decode()},
            headers={"X-Upstream": "trading-data", "Connection": "keep-alive"},
        )

    return handler


@pytest.fixture
def app(key_store, usage_store, runner, upstream_handler) -> FastAPI:
    gatekeeper = Gatekeeper(
        repository=key_store,
        limiter=RateLimiter("UTC"),
        runner=runner,
        clock=lambda: FIXED_NOW,
    )
    recorder = UsageRecorder(repository=usage_store, runner=runner)
    app = create_app(gatekeeper=gatekeeper, recorder=recorder)

    service = ApiKeyService(
        repository=key_store, usage_repository=usage_store, clock=lambda: FIXED_NOW
    )
    upstream = UpstreamClient(
        base_url="http://upstream.test", transport=httpx.MockTransport(upstream_handler)
    )
    app.dependency_overrides[get_api_key_service] = lambda: service
    app.dependency_overrides[get_upstream_client] = lambda: upstream
    return app


@pytest.fixture
async def client(app: FastAPI):
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
