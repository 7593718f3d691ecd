"""Request logging middleware with correlation ID support.

One summary line per request at INFO (WARNING for 5xx). Request headers are
never logged, so credentials cannot leak through this layer.
"""

import logging
import time
import uuid
from collections.abc import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from src.logging.config import get_logger

logger = get_logger(__name__)


def _get_or_generate_correlation_id(request: Request) -> str:
    """
    Extract or generate a correlation ID for the request.

    Args:
        request: The incoming request

    Returns:
        The correlation ID (from header or newly generated)
    """
    return request.headers.get("X-Request-ID", str(uuid.uuid4()))


def _log_request_start(request: Request, correlation_id: str) -> None:
    """
    Log the start of a request.

    Args:
        request: The incoming request
        correlation_id: The correlation ID for this request
    """
    logger.debug(
        "Request started",
        extra={
            "correlation_id": correlation_id,
            "context": {
                "method": request.method,
                "path": request.url.path,
                "client_host": request.client.host if request.client else None,
            },
        },
    )


def _log_request_error(
    request: Request, correlation_id: str, exc: Exception, elapsed_ms: float
) -> None:
    """
    Log a request that failed with an exception.

    Args:
        request: The incoming request
        correlation_id: The correlation ID for this request
        exc: The exception that was raised
        elapsed_ms: Time elapsed before the exception
    """
    logger.error(
        "Request failed with exception",
        exc_info=exc,
        extra={
            "correlation_id": correlation_id,
            "context": {
                "method": request.method,
                "path": request.url.path,
                "response_time_ms": elapsed_ms,
            },
        },
    )


def _log_request_complete(
    request: Request, response: Response, correlation_id: str, elapsed_ms: float
) -> None:
    """
    Log the completion of a request.

    Args:
        request: The incoming request
        response: The response being returned
        correlation_id: The correlation ID for this request
        elapsed_ms: Time elapsed during request processing
    """
    # Key identity only; the credential itself never reaches the logs
    api_key_id = getattr(request.state, "api_key_id", None)
    key_prefix = getattr(request.state, "key_prefix", None)

    level = logging.WARNING if response.status_code >= 500 else logging.INFO
    logger.log(
        level,
        "Request completed",
        extra={
            "correlation_id": correlation_id,
            "context": {
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "response_time_ms": round(elapsed_ms, 2),
                "api_key_id": api_key_id,
                "key_prefix": key_prefix,
            },
        },
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log all HTTP requests and responses.

    Features:
    - Adds unique correlation ID (X-Request-ID) to each request
    - Logs request start with method, path, and correlation ID
    - Logs response with status code, response time, and correlation ID
    - Never logs request headers, so credentials stay out of the logs
    - Includes the key ID and lookup prefix once the gatekeeper admitted the request
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """
        Process the request and add logging.

        Args:
            request: The incoming request
            call_next: The next middleware/handler in the chain

        Returns:
            The response from the handler
        """
        # Generate or extract correlation ID
        correlation_id = _get_or_generate_correlation_id(request)
        request.state.correlation_id = correlation_id

        # Log request start and track timing
        start_time = time.perf_counter()
        _log_request_start(request, correlation_id)

        # Process request with error handling
        try:
            response = await call_next(request)
        except Exception as exc:
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            _log_request_error(request, correlation_id, exc, elapsed_ms)
            raise

        # Log successful completion
        elapsed_ms = (time.perf_counter() - start_time) * 1000
        _log_request_complete(request, response, correlation_id, elapsed_ms)

        # Add correlation ID to response headers
        response.headers["X-Request-ID"] = correlation_id

        return response
