"""Fixtures for integration tests against a moto DynamoDB server."""

import uuid
from datetime import datetime, timedelta
from typing import AsyncGenerator, Generator

import aioboto3
import httpx
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from moto.server import ThreadedMotoServer

from infrastructure.dynamodb_tables import create_all_tables
from src.auth.dependencies import get_api_key_service
from src.auth.gatekeeper import Gatekeeper
from src.config import settings
from src.main import create_app
from src.middleware.rate_limit import RateLimiter
from src.repositories.base import get_dynamodb_config
from src.services.api_key_service import ApiKeyService
from src.services.upstream import UpstreamClient, get_upstream_client
from src.services.usage_recorder import UsageRecorder
from src.utils.time_windows import utcnow


class FakeClock:
    """Settable clock shared by the gatekeeper and the key service."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(scope="session")
def moto_server() -> Generator[str, None, None]:
    """In-process DynamoDB endpoint for the whole session."""
    server = ThreadedMotoServer(ip_address="127.0.0.1", port=0, verbose=False)
    server.start()
    host, port = server.get_host_and_port()
    yield f"http://{host}:{port}"
    server.stop()


@pytest.fixture
async def dynamodb_tables(
    moto_server: str, monkeypatch: pytest.MonkeyPatch
) -> AsyncGenerator[None, None]:
    """
    Create fresh tables for each test.

    Table names are unique per test so no cleanup is needed between tests.
    """
    suffix = uuid.uuid4().hex[:8]
    monkeypatch.setattr(settings, "dynamodb_endpoint_url", moto_server)
    monkeypatch.setattr(settings, "aws_region", "us-east-1")
    monkeypatch.setattr(settings, "aws_access_key_id", "testing")
    monkeypatch.setattr(settings, "aws_secret_access_key", "testing")
    monkeypatch.setattr(settings, "aws_session_token", None)
    monkeypatch.setattr(settings, "dynamodb_table_api_keys", f"api-keys-{suffix}")
    monkeypatch.setattr(settings, "dynamodb_table_api_usage", f"api-usage-{suffix}")

    session = aioboto3.Session()
    async with session.resource("dynamodb", **get_dynamodb_config()) as dynamodb:
        await create_all_tables(dynamodb)
    yield


@pytest.fixture
def clock() -> FakeClock:
    # Real wall time, so stored TTLs are in the future
    return FakeClock(utcnow().replace(microsecond=0))


@pytest.fixture
def upstream() -> UpstreamClient:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"path": request.url.path, "data": []})

    return UpstreamClient(base_url="http://upstream.test", transport=httpx.MockTransport(handler))


@pytest.fixture
def app(dynamodb_tables, clock: FakeClock, runner, upstream: UpstreamClient) -> FastAPI:
    """Full application over the moto tables."""
    gatekeeper = Gatekeeper(limiter=RateLimiter("UTC"), runner=runner, clock=clock)
    recorder = UsageRecorder(runner=runner)
    app = create_app(gatekeeper=gatekeeper, recorder=recorder)

    service = ApiKeyService(clock=clock)
    app.dependency_overrides[get_api_key_service] = lambda: service
    app.dependency_overrides[get_upstream_client] = lambda: upstream
    return app


@pytest.fixture
async def api_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for testing API endpoints."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def owner_headers() -> dict[str, str]:
    return {"X-Owner-Id": "integration-owner"}
