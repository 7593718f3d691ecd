"""
Tier registry: quota ceilings and endpoint reach per subscription tier.

The table is compiled into the process and immutable at runtime. Adding a
tier means adding one ``Tier`` member and one ``TIERS`` entry.
"""

import re
from collections.abc import Iterable, Mapping
from enum import Enum
from functools import lru_cache
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict

UNLIMITED = -1
WILDCARD = "*"


class Tier(str, Enum):
    """Closed set of tiers, declared in capability order."""

    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    ENTERPRISE = "enterprise"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    def at_least(self, minimum: "Tier") -> bool:
        """True if this tier is as capable as ``minimum`` or more."""
        return self.rank >= Tier(minimum).rank


_TIER_ORDER = list(Tier)


class TierLimits(BaseModel):
    """Quota ceilings copied onto a key at creation."""

    model_config = ConfigDict(frozen=True)

    requests_per_day: int
    requests_per_minute: int

    @property
    def is_unlimited(self) -> bool:
        return self.requests_per_day == UNLIMITED


class TierDescriptor(BaseModel):
    """Static description of one tier."""

    model_config = ConfigDict(frozen=True)

    name: str
    requests_per_day: int
    requests_per_minute: int
    allowed_endpoints: tuple[str, ...]
    features: tuple[str, ...]

    @property
    def limits(self) -> TierLimits:
        return TierLimits(
            requests_per_day=self.requests_per_day,
            requests_per_minute=self.requests_per_minute,
        )


TIERS: Mapping[Tier, TierDescriptor] = MappingProxyType(
    {
        Tier.FREE: TierDescriptor(
            name="Free",
            requests_per_day=100,
            requests_per_minute=10,
            allowed_endpoints=(
                "/api/v1/opportunities",
                "/api/v1/opportunities/top",
                "/api/v1/market-reports/available-dates",
                "/api/v1/market/*/price",
                "/api/v1/market/trending",
            ),
            features=(
                "Basic trading opportunities",
                "Top opportunities ranking",
                "Current market prices",
                "Trending symbols",
            ),
        ),
        Tier.STARTER: TierDescriptor(
            name="Starter",
            requests_per_day=1000,
            requests_per_minute=50,
            allowed_endpoints=(WILDCARD,),
            features=(
                "All Free tier features",
                "Full opportunity details",
                "Whale activity tracking",
                "Daily market reports (PDF)",
                "Order book analysis",
                "Historical data access",
            ),
        ),
        Tier.PRO: TierDescriptor(
            name="Pro",
            requests_per_day=10000,
            requests_per_minute=200,
            allowed_endpoints=(WILDCARD,),
            features=(
                "All Starter tier features",
                "AI-powered market analysis",
                "Trading signals API",
                "Real-time signal feed",
                "Advanced analytics",
                "Priority support",
                "Webhook notifications",
            ),
        ),
        Tier.ENTERPRISE: TierDescriptor(
            name="Enterprise",
            requests_per_day=UNLIMITED,
            requests_per_minute=500,
            allowed_endpoints=(WILDCARD,),
            features=(
                "All Pro tier features",
                "Unlimited requests",
                "Deep multi-timeframe analysis",
                "Batch analysis endpoints",
                "WebSocket streaming",
                "Custom integrations",
                "Dedicated support",
                "SLA guarantee",
                "White-label options",
            ),
        ),
    }
)


def get_tier_config(tier: Tier | str) -> TierDescriptor:
    """Descriptor for a tier; raises ValueError for unknown names."""
    return TIERS[Tier(tier)]


def limits_for(tier: Tier | str) -> TierLimits:
    """Daily and per-minute ceilings for a tier."""
    return get_tier_config(tier).limits


@lru_cache(maxsize=256)
def _compile_pattern(pattern: str) -> re.Pattern[str]:
    # Literal segments are escaped; each wildcard matches any run of characters.
    return re.compile(".*".join(re.escape(part) for part in pattern.split(WILDCARD)))


def matches_any(patterns: Iterable[str], path: str) -> bool:
    """
    Match a request path against an allow-list.

    A bare ``*`` entry allows everything. Other entries match either
    exactly or, when they contain a wildcard, as a pattern anchored at both
    ends. Matching is case-sensitive.
    """
    for pattern in patterns:
        if pattern == WILDCARD or pattern == path:
            return True
        if WILDCARD in pattern and _compile_pattern(pattern).fullmatch(path):
            return True
    return False


def is_endpoint_allowed(
    tier: Tier | str,
    path: str,
    key_endpoints: Iterable[str] | None = None,
) -> bool:
    """
    Check whether a path is reachable at a tier.

    Args:
        tier: Tier of the calling key
        path: Request path
        key_endpoints: Optional per-key allow-list; when non-empty the path
            must also match it, so a key can be narrowed below its tier but
            never widened beyond it

    Returns:
        True if the path is allowed
    """
    if not matches_any(get_tier_config(tier).allowed_endpoints, path):
        return False
    if key_endpoints:
        return matches_any(key_endpoints, path)
    return True
