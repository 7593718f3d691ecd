"""FastAPI application entry point."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from src.auth.gatekeeper import Gatekeeper
from src.config import settings
from src.exceptions import GatekeeperError
from src.handlers.exception_handler import (
    gatekeeper_exception_handler,
    generic_exception_handler,
    validation_exception_handler,
)
from src.logging.config import configure_logging, get_logger
from src.middleware.api_key_auth import ApiKeyAuthMiddleware
from src.middleware.logging import LoggingMiddleware
from src.routes import api_keys, proxy, status
from src.services.upstream import upstream_client
from src.services.usage_recorder import UsageRecorder
from src.utils.background import background_tasks

# Configure logging before creating the app
configure_logging()

logger = get_logger(__name__)

DESCRIPTION = """
## Trading Data API Gatekeeper

API-key authentication and tiered rate limiting in front of the
trading-data service.

### Authentication

Every request under the gated prefix must carry an API key:

```
Authorization: Bearer mk_live_...
```

or

```
X-API-Key: mk_live_...
```

### Tiers

| Tier | Requests/day | Requests/minute | Endpoints |
|---|---|---|---|
| free | 100 | 10 | basic opportunities, prices, trending |
| starter | 1,000 | 50 | all |
| pro | 10,000 | 200 | all |
| enterprise | unlimited | 500 | all |

Daily quotas reset at midnight in the quota timezone. Every admitted
response carries `X-RateLimit-Limit`, `X-RateLimit-Remaining` and
`X-RateLimit-Reset`. A 429 response carries `resetAt` and `Retry-After`.

### Key management

Keys are generated, rotated and revoked under `/api/api-keys`. The full
key is shown exactly once.
"""


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    # Let pending usage records land before the process exits
    await background_tasks.drain()
    await upstream_client.aclose()
    logger.info("Shutdown complete")


def create_app(
    gatekeeper: Gatekeeper | None = None,
    recorder: UsageRecorder | None = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        gatekeeper: Gatekeeper for the gated prefix (default wiring if None)
        recorder: Usage recorder (default wiring if None)
    """
    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description=DESCRIPTION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Last added is outermost: logging wraps the gatekeeper so rejections
    # are logged with their correlation ID.
    app.add_middleware(ApiKeyAuthMiddleware, gatekeeper=gatekeeper, recorder=recorder)
    app.add_middleware(LoggingMiddleware)

    app.add_exception_handler(GatekeeperError, gatekeeper_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(status.router)
    app.include_router(api_keys.router)
    app.include_router(proxy.router)

    return app


app = create_app()
