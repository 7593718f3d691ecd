"""Data models for the API gatekeeper."""

from src.models.api_key import ApiKey
from src.models.api_usage import ApiUsage

__all__ = ["ApiKey", "ApiUsage"]
