"""Usage log repository for DynamoDB operations."""

from datetime import datetime
from typing import List, Optional

from src.config import settings
from src.models.api_usage import ApiUsage
from src.repositories.base import BaseRepository
from src.utils.time_windows import to_iso

API_KEY_TIMESTAMP_INDEX = "ApiKeyTimestampIndex"


class UsageRepository(BaseRepository):
    """Append-only store of Usage Records."""

    def __init__(self) -> None:
        """Initialize UsageRepository with the usage table."""
        super().__init__(settings.dynamodb_table_api_usage)

    async def create(self, usage: ApiUsage) -> ApiUsage:
        """
        Append a usage record.

        Args:
            usage: Record to store

        Returns:
            The stored record
        """
        await self.put_item(usage.to_item(settings.usage_retention_days))
        return usage

    async def list_for_key(
        self,
        api_key_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[ApiUsage]:
        """
        List a key's usage records, oldest first, optionally within a range.

        Args:
            api_key_id: Key whose records to fetch
            start: Inclusive lower bound
            end: Inclusive upper bound

        Returns:
            Matching usage records
        """
        condition = "api_key_id = :api_key_id"
        values = {":api_key_id": api_key_id}
        names = None

        if start and end:
            condition += " AND #ts BETWEEN :start AND :end"
        elif start:
            condition += " AND #ts >= :start"
        elif end:
            condition += " AND #ts <= :end"
        if start:
            values[":start"] = to_iso(start)
        if end:
            values[":end"] = to_iso(end)
        if start or end:
            # timestamp is a DynamoDB reserved word
            names = {"#ts": "timestamp"}

        params = {
            "IndexName": API_KEY_TIMESTAMP_INDEX,
            "KeyConditionExpression": condition,
            "ExpressionAttributeValues": values,
        }
        if names:
            params["ExpressionAttributeNames"] = names

        items = await self.query(**params)
        return [ApiUsage(**item) for item in items]
