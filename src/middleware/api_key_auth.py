"""Gatekeeper middleware: admits, meters and records traffic under the gated prefix."""

import time
from collections.abc import Callable
from datetime import datetime

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from src.auth.gatekeeper import Gatekeeper
from src.config import settings
from src.exceptions import GatekeeperError, StoreUnavailableError
from src.handlers.exception_handler import error_response_for
from src.logging.config import get_logger
from src.models.api_key import ApiKey
from src.services.usage_recorder import UsageRecorder

logger = get_logger(__name__)


def get_client_ip(request: Request) -> str | None:
    """
    Caller address for IP allow-lists and usage records.

    X-Forwarded-For is honored only when the deployment sits behind a
    trusted proxy (``trust_forwarded_for``); its first entry is the client.
    """
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
    return request.client.host if request.client else None


def is_gated(path: str, prefix: str) -> bool:
    """True for the prefix itself and anything below it."""
    prefix = prefix.rstrip("/")
    return path == prefix or path.startswith(prefix + "/")


class ApiKeyAuthMiddleware(BaseHTTPMiddleware):
    """
    Runs the gatekeeper in front of every gated request.

    Rejections are rendered here because exceptions raised by middleware
    never reach the app's exception handlers. Admitted requests get the
    X-RateLimit-* headers and one usage record, written after the response
    is produced and never awaited by it.
    """

    def __init__(
        self,
        app: ASGIApp,
        gatekeeper: Gatekeeper | None = None,
        recorder: UsageRecorder | None = None,
        path_prefix: str | None = None,
    ) -> None:
        super().__init__(app)
        self.gatekeeper = gatekeeper or Gatekeeper()
        self.recorder = recorder or UsageRecorder()
        self.path_prefix = path_prefix or settings.gated_path_prefix

    def _log_rejection(
        self, request: Request, exc: GatekeeperError, client_ip: str | None
    ) -> None:
        correlation_id = getattr(request.state, "correlation_id", None)
        extra = {
            "correlation_id": correlation_id,
            "context": {
                "failure": exc.failure,
                "status_code": exc.status_code,
                "method": request.method,
                "path": request.url.path,
                "client_ip": client_ip,
            },
        }
        if isinstance(exc, StoreUnavailableError):
            logger.error("Gatekeeper store failure", extra=extra)
        else:
            logger.warning("Request rejected by gatekeeper", extra=extra)

    def _record_usage(
        self,
        request: Request,
        api_key: ApiKey,
        status_code: int,
        started: float,
        client_ip: str | None,
        timestamp: datetime,
    ) -> None:
        usage = self.recorder.build(
            api_key=api_key,
            endpoint=request.url.path,
            method=request.method,
            status_code=status_code,
            response_time_ms=(time.perf_counter() - started) * 1000,
            timestamp=timestamp,
            user_agent=request.headers.get("user-agent"),
            ip_address=client_ip,
        )
        self.recorder.schedule(usage)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """
        Admit or reject a gated request.

        Args:
            request: The incoming request
            call_next: The next middleware/handler in the chain

        Returns:
            The handler's response, or the error envelope on rejection
        """
        if not is_gated(request.url.path, self.path_prefix):
            return await call_next(request)

        started = time.perf_counter()
        now = self.gatekeeper.clock()
        client_ip = get_client_ip(request)

        try:
            admission = await self.gatekeeper.admit(
                request.headers, request.url.path, client_ip, now=now
            )
        except GatekeeperError as exc:
            self._log_rejection(request, exc, client_ip)
            return error_response_for(
                exc, getattr(request.state, "correlation_id", None)
            )

        api_key = admission.api_key
        request.state.api_key = api_key
        request.state.api_key_id = api_key.key_id
        request.state.key_prefix = api_key.key_prefix

        try:
            response = await call_next(request)
        except Exception:
            self._record_usage(request, api_key, 500, started, client_ip, now)
            raise

        for name, value in admission.headers.items():
            response.headers[name] = value

        self._record_usage(
            request, api_key, response.status_code, started, client_ip, now
        )
        return response
