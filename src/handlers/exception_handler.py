"""Global exception handlers for consistent error responses."""

import math
from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.exceptions import GatekeeperError, RateLimitError
from src.logging.config import get_logger
from src.utils.time_windows import ensure_utc, to_iso, utcnow

logger = get_logger(__name__)


def create_error_response(
    error_code: str,
    message: str,
    status_code: int,
    details: dict[str, Any] | None = None,
    correlation_id: str | None = None,
    reset_at: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """
    Create standardized error response.

    Args:
        error_code: Machine-readable error code
        message: Human-readable error message
        status_code: HTTP status code
        details: Additional error details
        correlation_id: Request correlation ID for tracing
        reset_at: ISO 8601 instant at which an exhausted quota window reopens
        headers: Extra response headers

    Returns:
        JSONResponse with error information
    """
    content: dict[str, Any] = {
        "success": False,
        "error": message,
        "error_code": error_code,
    }

    if reset_at:
        content["resetAt"] = reset_at

    if details:
        content["details"] = details

    if correlation_id:
        content["correlation_id"] = correlation_id

    return JSONResponse(status_code=status_code, content=content, headers=headers)


def error_response_for(
    exc: GatekeeperError, correlation_id: str | None = None
) -> JSONResponse:
    """
    Render a GatekeeperError as the error envelope.

    Used both by the exception handler and by the gatekeeper middleware,
    whose exceptions never reach the app's handlers.
    """
    reset_at = None
    headers: dict[str, str] = {}

    if isinstance(exc, RateLimitError) and exc.reset_at is not None:
        reset_at = to_iso(exc.reset_at)
        wait = (ensure_utc(exc.reset_at) - utcnow()).total_seconds()
        headers["Retry-After"] = str(max(1, math.ceil(wait)))

    return create_error_response(
        error_code=exc.error_code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        correlation_id=correlation_id,
        reset_at=reset_at,
        headers=headers or None,
    )


async def gatekeeper_exception_handler(
    request: Request, exc: GatekeeperError
) -> JSONResponse:
    """
    Handle custom GatekeeperError.

    Args:
        request: FastAPI request
        exc: GatekeeperError instance

    Returns:
        JSONResponse with error details
    """
    correlation_id = getattr(request.state, "correlation_id", None)
    return error_response_for(exc, correlation_id)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Handle Pydantic validation errors from FastAPI.

    Formats validation errors into user-friendly, actionable messages.

    Args:
        request: FastAPI request
        exc: RequestValidationError from Pydantic

    Returns:
        JSONResponse with validation error details
    """
    correlation_id = getattr(request.state, "correlation_id", None)

    details: dict[str, Any] = {"validation_errors": []}
    error_messages = []

    for error in exc.errors():
        # Skip the 'body' prefix for cleaner field paths
        field_parts = [str(loc) for loc in error["loc"] if loc != "body"]
        field = ".".join(field_parts) if field_parts else "request"

        msg = error["msg"]
        error_type = error["type"]

        if error_type == "missing":
            msg = "Field is required"
        elif error_type == "value_error":
            msg = msg.removeprefix("Value error, ")

        details["validation_errors"].append(
            {"field": field, "message": msg, "type": error_type}
        )
        error_messages.append(f"{field}: {msg}")

    summary = error_messages[0] if error_messages else "Invalid request data"
    if len(error_messages) > 1:
        summary += f" (and {len(error_messages) - 1} more errors)"

    return create_error_response(
        error_code="VALIDATION_ERROR",
        message=summary,
        status_code=status.HTTP_400_BAD_REQUEST,
        details=details,
        correlation_id=correlation_id,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle unexpected exceptions.

    Logs full traceback and returns generic error to client.

    Args:
        request: FastAPI request
        exc: Any unhandled exception

    Returns:
        JSONResponse with generic error message
    """
    correlation_id = getattr(request.state, "correlation_id", None)

    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        exc_info=exc,
        extra={
            "correlation_id": correlation_id,
            "context": {
                "exception_type": type(exc).__name__,
                "method": request.method,
                "path": request.url.path,
            },
        },
    )

    return create_error_response(
        error_code="INTERNAL_ERROR",
        message="An internal error occurred. Please contact support with the correlation ID.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        correlation_id=correlation_id,
    )
