"""Custom exception classes for the API gatekeeper."""

from datetime import datetime
from typing import Any

GENERIC_UNAUTHORIZED_MESSAGE = "Invalid or expired API key"


class GatekeeperError(Exception):
    """Base exception for the gatekeeper."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize exception.

        Args:
            message: Human-readable error message
            status_code: HTTP status code
            error_code: Machine-readable error code
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}

    @property
    def failure(self) -> str:
        """Internal failure class name, logged but never shown to clients."""
        return type(self).__name__.removesuffix("Error")


class UnauthorizedError(GatekeeperError):
    """Raised when authentication fails (401)."""

    def __init__(
        self,
        message: str = GENERIC_UNAUTHORIZED_MESSAGE,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize UnauthorizedError.

        Args:
            message: Error message
            details: Additional error details
        """
        super().__init__(
            message=message,
            status_code=401,
            error_code="UNAUTHORIZED",
            details=details,
        )


class MissingCredentialError(UnauthorizedError):
    """No credential in either supported header."""

    def __init__(self) -> None:
        super().__init__(
            message=(
                "API key required. Provide via Authorization: Bearer <key> "
                "or X-API-Key: <key>"
            )
        )


class InvalidFormatError(UnauthorizedError):
    """Credential does not have the structural prefix or length of a key."""


class InvalidCredentialError(UnauthorizedError):
    """Well-formed credential that does not match any stored hash."""


class KeyInactiveError(UnauthorizedError):
    """Key has been revoked, rotated away, or lazily expired."""


class KeyExpiredError(UnauthorizedError):
    """Key's expiry instant has passed."""


class ForbiddenError(GatekeeperError):
    """Raised when access is denied (403)."""

    def __init__(
        self,
        message: str = "Forbidden: Access denied",
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize ForbiddenError.

        Args:
            message: Error message
            details: Additional error details
        """
        super().__init__(
            message=message,
            status_code=403,
            error_code="FORBIDDEN",
            details=details,
        )


class EndpointNotAllowedError(ForbiddenError):
    """Requested path is outside the key's tier allow-list."""

    def __init__(self, tier: str, path: str) -> None:
        super().__init__(
            message=(
                f"This endpoint is not available for your tier ({tier}). "
                "Upgrade to access this feature."
            ),
            details={"tier": tier, "path": path},
        )


class IPNotAllowedError(ForbiddenError):
    """Caller address is not on the key's IP allow-list."""

    def __init__(self) -> None:
        super().__init__(message="IP address not whitelisted for this API key")


class InsufficientTierError(ForbiddenError):
    """Key tier is below the minimum a route requires."""

    def __init__(self, required: str, current: str) -> None:
        super().__init__(
            message=(
                f"This endpoint requires {required} tier or higher. "
                f"Current tier: {current}"
            ),
            details={"required_tier": required, "current_tier": current},
        )


class RateLimitError(GatekeeperError):
    """Raised when rate limit is exceeded (429)."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        reset_at: datetime | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize RateLimitError.

        Args:
            message: Error message
            reset_at: Instant at which the exhausted window reopens
            details: Additional error details
        """
        super().__init__(
            message=message,
            status_code=429,
            error_code="RATE_LIMIT_EXCEEDED",
            details=details,
        )
        self.reset_at = reset_at


class MinuteRateExceededError(RateLimitError):
    """Per-minute ceiling reached."""

    def __init__(self, limit: int, reset_at: datetime) -> None:
        super().__init__(
            message="Rate limit exceeded: too many requests per minute",
            reset_at=reset_at,
            details={"limit": limit, "window": "minute"},
        )


class DailyQuotaExceededError(RateLimitError):
    """Daily ceiling reached."""

    def __init__(self, limit: int, reset_at: datetime) -> None:
        super().__init__(
            message="Rate limit exceeded: daily quota exhausted",
            reset_at=reset_at,
            details={"limit": limit, "window": "day"},
        )


class StoreUnavailableError(GatekeeperError):
    """Raised when the key or usage store cannot be reached (500)."""

    def __init__(
        self,
        message: str = "Authentication error",
        operation: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize StoreUnavailableError.

        Args:
            message: Error message
            operation: Store operation that failed
            details: Additional error details
        """
        error_details = details or {}
        if operation:
            error_details["operation"] = operation
        super().__init__(
            message=message,
            status_code=500,
            error_code="STORE_UNAVAILABLE",
            details=error_details,
        )


class KeyNotFoundError(GatekeeperError):
    """Raised when an API key is not found for the owner (404)."""

    def __init__(
        self,
        message: str = "API key not found",
        key_id: str | None = None,
    ) -> None:
        """
        Initialize KeyNotFoundError.

        Args:
            message: Error message
            key_id: Key ID that was not found
        """
        super().__init__(
            message=message,
            status_code=404,
            error_code="NOT_FOUND",
            details={"key_id": key_id} if key_id else None,
        )


class DuplicateKeyNameError(GatekeeperError):
    """Raised when the owner already has an active key with that name (409)."""

    def __init__(self, name: str) -> None:
        super().__init__(
            message=f'An active API key with the name "{name}" already exists',
            status_code=409,
            error_code="DUPLICATE_NAME",
        )


class UpstreamUnavailableError(GatekeeperError):
    """Raised when the trading-data service cannot be reached (502)."""

    def __init__(self, message: str = "Upstream service unavailable") -> None:
        super().__init__(
            message=message,
            status_code=502,
            error_code="UPSTREAM_UNAVAILABLE",
        )
