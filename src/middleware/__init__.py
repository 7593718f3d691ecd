"""Middleware components for request processing."""

from src.middleware.logging import LoggingMiddleware
from src.middleware.rate_limit import RateLimitDecision, RateLimiter, rate_limiter

__all__ = [
    "LoggingMiddleware",
    "RateLimitDecision",
    "RateLimiter",
    "rate_limiter",
]
