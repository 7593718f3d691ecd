"""Usage record model for DynamoDB."""

from datetime import datetime, timedelta
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.utils.time_windows import to_iso, unix_timestamp


class ApiUsage(BaseModel):
    """
    One completed request made with an API key.

    Write-once: records are never updated, and DynamoDB TTL on the ``ttl``
    attribute purges them after the retention horizon.
    """

    model_config = ConfigDict(frozen=True)

    usage_id: str = Field(..., description="Unique record identifier (UUID)")
    api_key_id: str
    owner_id: str
    endpoint: str
    method: str
    status_code: int
    response_time_ms: int = Field(..., ge=0)
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    error_message: Optional[str] = None
    timestamp: datetime

    def to_item(self, retention_days: int) -> dict[str, Any]:
        """Convert to a DynamoDB item carrying its TTL."""
        item = self.model_dump(exclude_none=True)
        item["timestamp"] = to_iso(self.timestamp)
        item["ttl"] = unix_timestamp(self.timestamp + timedelta(days=retention_days))
        return item
