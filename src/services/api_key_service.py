"""API key service: lifecycle operations for the management surface."""

import asyncio
import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from src.auth.api_key import GeneratedKey, generate_api_key
from src.auth.tiers import UNLIMITED, Tier, limits_for
from src.config import settings
from src.exceptions import DuplicateKeyNameError, KeyNotFoundError, StoreUnavailableError
from src.logging.config import get_logger
from src.models.api_key import ApiKey
from src.repositories.api_key_repository import ApiKeyRepository
from src.repositories.usage_repository import UsageRepository
from src.schemas.api_key import (
    ROTATE_WARNING,
    EndpointCount,
    IssuedKey,
    UsageSummary,
)
from src.utils.time_windows import start_of_day, start_of_month, utcnow

logger = get_logger(__name__)

# Retries when a freshly generated lookup prefix is already taken
PREFIX_COLLISION_ATTEMPTS = 3


class ApiKeyService:
    """
    Service layer for API key lifecycle.

    Orchestrates generation, rotation, revocation, listing and usage
    analytics. The full credential leaves this service only in the
    IssuedKey returned by ``generate`` and ``rotate``.
    """

    def __init__(
        self,
        repository: ApiKeyRepository | None = None,
        usage_repository: UsageRepository | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize ApiKeyService.

        Args:
            repository: ApiKeyRepository instance (creates new if None)
            usage_repository: UsageRepository instance (creates new if None)
            clock: Source of the current instant
        """
        self.repository = repository or ApiKeyRepository()
        self.usage_repository = usage_repository or UsageRepository()
        self.clock = clock

    async def _new_credential(self, environment: str | None) -> GeneratedKey:
        for _ in range(PREFIX_COLLISION_ATTEMPTS):
            # bcrypt is CPU-bound; keep it off the event loop
            generated = await asyncio.to_thread(generate_api_key, environment)
            if await self.repository.get_by_prefix(generated.key_prefix) is None:
                return generated
            logger.warning(
                "Lookup prefix collision, regenerating",
                extra={"context": {"key_prefix": generated.key_prefix}},
            )
        raise StoreUnavailableError(
            message="Failed to generate API key", operation="generate"
        )

    async def generate(
        self,
        owner_id: str,
        name: str,
        tier: Tier = Tier.FREE,
        expires_in_days: Optional[int] = None,
        allowed_ips: Optional[List[str]] = None,
        allowed_endpoints: Optional[List[str]] = None,
        environment: Optional[str] = None,
        requests_per_day: Optional[int] = None,
        requests_per_minute: Optional[int] = None,
        expires_at: Optional[datetime] = None,
    ) -> IssuedKey:
        """
        Generate a new API key for an owner.

        Limits default to the tier's; rotation passes the old record's
        limits and expiry through explicitly.

        Args:
            owner_id: Owning account
            name: Key name, unique among the owner's active keys
            tier: Subscription tier
            expires_in_days: Optional lifetime in days
            allowed_ips: Optional IP allow-list
            allowed_endpoints: Optional per-key endpoint restriction
            environment: ``live`` or ``test``

        Returns:
            IssuedKey carrying the full credential

        Raises:
            DuplicateKeyNameError: If an active key already has this name
        """
        tier = Tier(tier)
        if await self.repository.find_active_by_name(owner_id, name):
            raise DuplicateKeyNameError(name)

        generated = await self._new_credential(environment)
        limits = limits_for(tier)
        now = self.clock()

        if expires_at is None and expires_in_days and expires_in_days > 0:
            expires_at = now + timedelta(days=expires_in_days)

        api_key = ApiKey(
            key_id=str(uuid.uuid4()),
            owner_id=owner_id,
            key_prefix=generated.key_prefix,
            key_hash=generated.key_hash,
            name=name,
            tier=tier,
            requests_per_day=(
                requests_per_day if requests_per_day is not None else limits.requests_per_day
            ),
            requests_per_minute=(
                requests_per_minute
                if requests_per_minute is not None
                else limits.requests_per_minute
            ),
            requests_used_today=0,
            requests_used_this_minute=0,
            last_reset_date=now,
            last_minute_reset_date=now,
            allowed_ips=list(allowed_ips or []),
            allowed_endpoints=list(allowed_endpoints or []),
            is_active=True,
            last_used_at=None,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        await self.repository.create(api_key)

        logger.info(
            "Generated API key",
            extra={
                "context": {
                    "owner_id": owner_id,
                    "key_id": api_key.key_id,
                    "key_prefix": api_key.key_prefix,
                    "tier": tier.value,
                }
            },
        )

        return IssuedKey(
            api_key=generated.full_key,
            key_prefix=api_key.key_prefix,
            key_id=api_key.key_id,
            tier=tier,
        )

    async def get_owned(self, owner_id: str, key_id: str) -> ApiKey:
        """
        Fetch a key that belongs to the owner.

        Raises:
            KeyNotFoundError: If missing or owned by someone else
        """
        api_key = await self.repository.get_by_id(key_id)
        if api_key is None or api_key.owner_id != owner_id:
            raise KeyNotFoundError(key_id=key_id)
        return api_key

    async def list_keys(self, owner_id: str) -> List[ApiKey]:
        """All of an owner's keys, newest first. Read-only."""
        return await self.repository.list_by_owner(owner_id)

    async def revoke(self, owner_id: str, key_id: str) -> ApiKey:
        """
        Flag a key inactive. Requests already past verification complete.

        Raises:
            KeyNotFoundError: If the key is not the owner's
        """
        api_key = await self.get_owned(owner_id, key_id)
        revoked = await self.repository.deactivate(api_key.key_id, self.clock())
        logger.info(
            "Revoked API key",
            extra={"context": {"key_id": key_id, "key_prefix": api_key.key_prefix}},
        )
        return revoked

    async def rotate(self, owner_id: str, key_id: str) -> IssuedKey:
        """
        Replace a key with a new credential under the same settings.

        The new record is persisted before the old one is deactivated.

        Raises:
            KeyNotFoundError: If the key is not the owner's or already inactive
        """
        old_key = await self.get_owned(owner_id, key_id)
        if not old_key.is_active:
            raise KeyNotFoundError(message="API key not found or inactive", key_id=key_id)

        issued = await self.generate(
            owner_id=owner_id,
            name=f"{old_key.name} (Rotated)",
            tier=old_key.tier,
            allowed_ips=old_key.allowed_ips,
            allowed_endpoints=old_key.allowed_endpoints,
            environment=old_key.key_prefix.split("_")[1],
            requests_per_day=old_key.requests_per_day,
            requests_per_minute=old_key.requests_per_minute,
            expires_at=old_key.expires_at,
        )
        await self.repository.deactivate(old_key.key_id, self.clock())

        logger.info(
            "Rotated API key",
            extra={
                "context": {
                    "old_key_prefix": old_key.key_prefix,
                    "new_key_prefix": issued.key_prefix,
                }
            },
        )
        return issued.model_copy(update={"warning": ROTATE_WARNING})

    async def usage_summary(
        self,
        owner_id: str,
        key_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> UsageSummary:
        """
        Aggregate a key's usage records.

        Today and this-month counts ignore the range; top endpoints, error
        rate and average latency are computed over ``start``..``end``.
        """
        api_key = await self.get_owned(owner_id, key_id)
        now = self.clock()
        tz_name = settings.quota_timezone

        month_records = await self.usage_repository.list_for_key(
            key_id, start=start_of_month(now, tz_name)
        )
        today_start = start_of_day(now, tz_name)
        requests_today = sum(1 for r in month_records if r.timestamp >= today_start)

        records = await self.usage_repository.list_for_key(key_id, start=start, end=end)
        total = len(records)
        errors = sum(1 for r in records if r.status_code >= 400)
        endpoint_counts = Counter(r.endpoint for r in records)
        avg_latency = (
            round(sum(r.response_time_ms for r in records) / total) if total else 0
        )

        if api_key.is_unlimited:
            quota_usage, remaining = 0.0, UNLIMITED
        else:
            quota_usage = (
                requests_today / api_key.requests_per_day
                if api_key.requests_per_day > 0
                else 0.0
            )
            remaining = max(0, api_key.requests_per_day - requests_today)

        return UsageSummary(
            key_id=key_id,
            key_prefix=api_key.key_prefix,
            tier=api_key.tier,
            requests_today=requests_today,
            requests_this_month=len(month_records),
            quota_usage=quota_usage,
            requests_per_day=api_key.requests_per_day,
            remaining=remaining,
            top_endpoints=[
                EndpointCount(endpoint=endpoint, count=count)
                for endpoint, count in endpoint_counts.most_common(10)
            ],
            error_rate=round(errors / total * 100, 2) if total else 0.0,
            avg_response_time=avg_latency,
            window_start=start,
            window_end=end,
        )
