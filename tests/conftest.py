"""Shared fixtures: fast bcrypt, key factories and in-memory stores."""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import pytest

from src.auth.api_key import generate_api_key
from src.auth.tiers import Tier, limits_for
from src.config import settings
from src.exceptions import KeyNotFoundError, StoreUnavailableError
from src.models.api_key import ApiKey
from src.models.api_usage import ApiUsage
from src.utils.background import BackgroundTaskRunner
from src.utils.time_windows import day_window_elapsed, minute_window_elapsed

# Fixed instant used by most tests: Tuesday 2025-11-11 12:00:00 UTC
NOW = datetime(2025, 11, 11, 12, 0, 0, tzinfo=timezone.utc)


class InMemoryKeyStore:
    """
    Stand-in for ApiKeyRepository with the same conditional-increment contract.

    ``increment_usage`` yields to the loop before reading the stored record,
    so concurrent admissions interleave the way they do against DynamoDB.
    """

    def __init__(self) -> None:
        self.items: dict[str, ApiKey] = {}
        self.increment_calls = 0

    async def get_by_id(self, key_id: str) -> Optional[ApiKey]:
        api_key = self.items.get(key_id)
        return api_key.model_copy() if api_key else None

    async def get_by_prefix(self, key_prefix: str) -> Optional[ApiKey]:
        for api_key in self.items.values():
            if api_key.key_prefix == key_prefix:
                return api_key.model_copy()
        return None

    async def list_by_owner(self, owner_id: str) -> list[ApiKey]:
        keys = [k.model_copy() for k in self.items.values() if k.owner_id == owner_id]
        return sorted(keys, key=lambda k: k.created_at, reverse=True)

    async def find_active_by_name(self, owner_id: str, name: str) -> Optional[ApiKey]:
        for api_key in await self.list_by_owner(owner_id):
            if api_key.is_active and api_key.name == name:
                return api_key
        return None

    async def create(self, api_key: ApiKey) -> ApiKey:
        self.items[api_key.key_id] = api_key.model_copy()
        return api_key

    async def deactivate(self, key_id: str, now: datetime) -> ApiKey:
        if key_id not in self.items:
            raise KeyNotFoundError(key_id=key_id)
        self.items[key_id] = self.items[key_id].model_copy(
            update={"is_active": False, "updated_at": now}
        )
        return self.items[key_id].model_copy()

    async def increment_usage(
        self, api_key: ApiKey, now: datetime, tz_name: str | None = None
    ) -> ApiKey:
        tz_name = tz_name or settings.quota_timezone
        self.increment_calls += 1
        current = api_key
        for _ in range(settings.counter_update_max_attempts):
            await asyncio.sleep(0)
            stored = self.items[current.key_id]
            if (
                stored.last_minute_reset_date != current.last_minute_reset_date
                or stored.last_reset_date != current.last_reset_date
            ):
                current = stored
                continue

            updates: dict[str, Any] = {"last_used_at": now, "updated_at": now}
            if minute_window_elapsed(current.last_minute_reset_date, now):
                updates["requests_used_this_minute"] = 1
                updates["last_minute_reset_date"] = now
            else:
                updates["requests_used_this_minute"] = stored.requests_used_this_minute + 1
            if day_window_elapsed(current.last_reset_date, now, tz_name):
                updates["requests_used_today"] = 1
                updates["last_reset_date"] = now
            else:
                updates["requests_used_today"] = stored.requests_used_today + 1

            self.items[current.key_id] = stored.model_copy(update=updates)
            return self.items[current.key_id].model_copy()
        raise StoreUnavailableError(operation="increment_usage")


class InMemoryUsageStore:
    """Stand-in for UsageRepository."""

    def __init__(self) -> None:
        self.records: list[ApiUsage] = []

    async def create(self, usage: ApiUsage) -> ApiUsage:
        self.records.append(usage)
        return usage

    async def list_for_key(
        self,
        api_key_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[ApiUsage]:
        return [
            r
            for r in sorted(self.records, key=lambda r: r.timestamp)
            if r.api_key_id == api_key_id
            and (start is None or r.timestamp >= start)
            and (end is None or r.timestamp <= end)
        ]


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch: pytest.MonkeyPatch) -> None:
    """Minimum bcrypt cost so tests that hash stay fast."""
    monkeypatch.setattr(settings, "bcrypt_rounds", 4)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def key_store() -> InMemoryKeyStore:
    return InMemoryKeyStore()


@pytest.fixture
def usage_store() -> InMemoryUsageStore:
    return InMemoryUsageStore()


@pytest.fixture
def runner() -> BackgroundTaskRunner:
    return BackgroundTaskRunner()


@pytest.fixture
def make_api_key() -> Callable[..., tuple[str, ApiKey]]:
    """
    Factory returning (full_credential, ApiKey) for a fresh credential.

    Window starts default to NOW; any ApiKey field can be overridden.
    """

    def _make(tier: Tier = Tier.FREE, environment: str = "test", **overrides: Any):
        generated = generate_api_key(environment)
        limits = limits_for(tier)
        fields: dict[str, Any] = {
            "key_id": str(uuid.uuid4()),
            "owner_id": "owner-1",
            "key_prefix": generated.key_prefix,
            "key_hash": generated.key_hash,
            "name": f"key-{generated.key_prefix[-8:]}",
            "tier": tier,
            "requests_per_day": limits.requests_per_day,
            "requests_per_minute": limits.requests_per_minute,
            "last_reset_date": NOW,
            "last_minute_reset_date": NOW,
            "created_at": NOW - timedelta(days=1),
            "updated_at": NOW - timedelta(days=1),
        }
        fields.update(overrides)
        return generated.full_key, ApiKey(**fields)

    return _make


@pytest.fixture
def stored_key(
    key_store: InMemoryKeyStore, make_api_key: Callable[..., tuple[str, ApiKey]]
) -> Callable[..., tuple[str, ApiKey]]:
    """Like make_api_key, but the record is also placed in ``key_store``."""

    def _stored(*args: Any, **kwargs: Any) -> tuple[str, ApiKey]:
        full_key, api_key = make_api_key(*args, **kwargs)
        key_store.items[api_key.key_id] = api_key
        return full_key, api_key

    return _stored
