"""Repository layer for DynamoDB operations."""

from src.repositories.api_key_repository import ApiKeyRepository
from src.repositories.usage_repository import UsageRepository

__all__ = ["ApiKeyRepository", "UsageRepository"]
