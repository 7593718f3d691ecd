"""API Key model for DynamoDB."""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from src.auth.tiers import UNLIMITED, Tier
from src.utils.time_windows import to_iso


class ApiKey(BaseModel):
    """
    API Key record.

    Attributes:
        key_id: Unique identifier (UUID v4)
        owner_id: Account that owns the key
        key_prefix: Cleartext lookup prefix, e.g. ``mk_live_1a2b3c4d``
        key_hash: Bcrypt hash of the full credential
        name: Human-readable name, unique per owner among active keys
        tier: Subscription tier
        requests_per_day: Daily ceiling (-1 = unlimited)
        requests_per_minute: Per-minute ceiling
        requests_used_today: Requests counted in the current day window
        requests_used_this_minute: Requests counted in the current minute window
        last_reset_date: Instant the day window last opened
        last_minute_reset_date: Instant the minute window last opened
        allowed_ips: Optional IP allow-list (addresses or CIDR blocks)
        allowed_endpoints: Optional per-key endpoint restriction
        is_active: False once revoked, rotated or expired
        last_used_at: Last admitted request
        expires_at: Optional expiry instant
        created_at: Creation instant
        updated_at: Last modification instant
    """

    key_id: str = Field(..., description="Unique key identifier (UUID)")
    owner_id: str = Field(..., description="Owning account identifier")
    key_prefix: str = Field(..., description="Cleartext lookup prefix")
    key_hash: str = Field(..., description="Bcrypt hash of API key")
    name: str = Field(..., description="Human-readable key name")
    tier: Tier = Field(default=Tier.FREE, description="Subscription tier")

    requests_per_day: int = Field(default=100, description="Daily ceiling")
    requests_per_minute: int = Field(default=10, description="Per-minute ceiling")
    requests_used_today: int = Field(default=0, ge=0)
    requests_used_this_minute: int = Field(default=0, ge=0)
    last_reset_date: datetime
    last_minute_reset_date: datetime

    allowed_ips: List[str] = Field(default_factory=list)
    allowed_endpoints: List[str] = Field(default_factory=list)
    is_active: bool = True

    last_used_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {
        "json_schema_extra": {
            "example": {
                "key_id": "660e9500-f39c-52e5-b827-557766551111",
                "owner_id": "user-42",
                "key_prefix": "mk_live_1a2b3c4d",
                "key_hash": "$2b$10$...",
                "name": "Production Server",
                "tier": "pro",
                "requests_per_day": 10000,
                "requests_per_minute": 200,
                "requests_used_today": 12,
                "requests_used_this_minute": 1,
                "last_reset_date": "2025-11-11T00:03:00Z",
                "last_minute_reset_date": "2025-11-11T12:00:00Z",
                "allowed_ips": [],
                "allowed_endpoints": [],
                "is_active": True,
                "last_used_at": "2025-11-11T12:00:05Z",
                "expires_at": None,
                "created_at": "2025-11-11T00:03:00Z",
                "updated_at": "2025-11-11T12:00:05Z",
            }
        }
    }

    @property
    def is_unlimited(self) -> bool:
        return self.requests_per_day == UNLIMITED

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now

    def to_item(self) -> dict[str, Any]:
        """
        Convert to a DynamoDB item.

        Datetimes are serialized with ``to_iso`` and None values dropped.
        """
        item: dict[str, Any] = {}
        for field, value in self.model_dump(exclude_none=True).items():
            if isinstance(value, datetime):
                item[field] = to_iso(value)
            elif isinstance(value, Tier):
                item[field] = value.value
            else:
                item[field] = value
        return item

    def to_public_dict(self) -> dict[str, Any]:
        """Listing representation with the secret hash omitted."""
        return {
            "id": self.key_id,
            "name": self.name,
            "key_prefix": self.key_prefix,
            "tier": self.tier.value,
            "is_active": self.is_active,
            "requests_used_today": self.requests_used_today,
            "requests_per_day": self.requests_per_day,
            "requests_per_minute": self.requests_per_minute,
            "allowed_ips": list(self.allowed_ips),
            "allowed_endpoints": list(self.allowed_endpoints),
            "last_used_at": to_iso(self.last_used_at) if self.last_used_at else None,
            "expires_at": to_iso(self.expires_at) if self.expires_at else None,
            "created_at": to_iso(self.created_at),
        }
