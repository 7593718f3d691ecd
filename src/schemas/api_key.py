"""Request and response schemas for the API key management surface."""

import ipaddress
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from src.auth.tiers import Tier
from src.config import settings

KEY_WARNING = "Store this API key securely. It will not be shown again."
ROTATE_WARNING = "Store this API key securely. The old key has been revoked."


class GenerateKeyRequest(BaseModel):
    """Request to generate a new API key."""

    name: str = Field(..., description="Human-readable key name")
    tier: Tier = Field(default=Tier.FREE, description="Subscription tier")
    expires_in_days: Optional[int] = Field(
        None, gt=0, description="Days until the key expires (None = never)"
    )
    allowed_ips: List[str] = Field(
        default_factory=list, description="IP addresses or CIDR blocks allowed to use the key"
    )
    allowed_endpoints: List[str] = Field(
        default_factory=list,
        description="Optional narrowing of the tier's endpoint allow-list",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Trim and bound the key name."""
        v = v.strip()
        if not v:
            raise ValueError("API key name is required")
        if len(v) > settings.max_key_name_length:
            raise ValueError(
                f"API key name must be at most {settings.max_key_name_length} characters"
            )
        return v

    @field_validator("allowed_ips")
    @classmethod
    def validate_allowed_ips(cls, v: List[str]) -> List[str]:
        """Every entry must be an address or a CIDR block."""
        entries = [entry.strip() for entry in v]
        for entry in entries:
            try:
                ipaddress.ip_network(entry, strict=False)
            except ValueError:
                raise ValueError(f"Invalid IP address or CIDR block: {entry!r}") from None
        return entries


class IssuedKey(BaseModel):
    """A freshly generated credential; the only time it is ever returned."""

    api_key: str = Field(..., description="Full API key (shown once)")
    key_prefix: str = Field(..., description="Cleartext lookup prefix")
    key_id: str = Field(..., description="Unique key identifier")
    tier: Tier
    warning: str = KEY_WARNING


class IssuedKeyResponse(BaseModel):
    """Envelope for generate and rotate."""

    success: bool = True
    data: IssuedKey
    message: str


class ApiKeySummary(BaseModel):
    """Listing entry; never carries the secret hash."""

    id: str
    name: str
    key_prefix: str
    tier: Tier
    is_active: bool
    requests_used_today: int
    requests_per_day: int
    requests_per_minute: int
    allowed_ips: List[str]
    allowed_endpoints: List[str]
    last_used_at: Optional[str]
    expires_at: Optional[str]
    created_at: str


class ApiKeyListResponse(BaseModel):
    """Envelope for list."""

    success: bool = True
    data: List[ApiKeySummary]
    total: int


class MessageResponse(BaseModel):
    """Envelope for operations that only report an outcome."""

    success: bool = True
    message: str


class EndpointCount(BaseModel):
    endpoint: str
    count: int


class UsageSummary(BaseModel):
    """Usage analytics for one key."""

    key_id: str
    key_prefix: str
    tier: Tier
    requests_today: int
    requests_this_month: int
    quota_usage: float = Field(..., description="Fraction of the daily quota used today")
    requests_per_day: int
    remaining: int = Field(..., description="Daily requests left (-1 = unlimited)")
    top_endpoints: List[EndpointCount]
    error_rate: float = Field(..., description="Percentage of responses with status >= 400")
    avg_response_time: int = Field(..., description="Mean latency in milliseconds")
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None


class UsageSummaryResponse(BaseModel):
    """Envelope for usage analytics."""

    success: bool = True
    data: UsageSummary


class TierInfo(BaseModel):
    """Public description of a tier."""

    tier: Tier
    name: str
    requests_per_day: int
    requests_per_minute: int
    allowed_endpoints: List[str]
    features: List[str]


class TierListResponse(BaseModel):
    success: bool = True
    data: List[TierInfo]


class ErrorEnvelope(BaseModel):
    """Shape of every error body, used in OpenAPI response docs."""

    success: bool = False
    error: str
    error_code: str
    resetAt: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    correlation_id: Optional[str] = None
