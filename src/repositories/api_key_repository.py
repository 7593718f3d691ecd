"""API Key repository for DynamoDB operations."""

from datetime import datetime
from typing import Any, List, Optional

from botocore.exceptions import ClientError

from src.config import settings
from src.exceptions import KeyNotFoundError, StoreUnavailableError
from src.logging.config import get_logger
from src.models.api_key import ApiKey
from src.repositories.base import BaseRepository, is_conditional_check_failure
from src.utils.time_windows import day_window_elapsed, minute_window_elapsed, to_iso

logger = get_logger(__name__)

KEY_PREFIX_INDEX = "KeyPrefixIndex"
OWNER_INDEX = "OwnerIndex"


def build_increment_update(
    api_key: ApiKey, now: datetime, tz_name: str
) -> tuple[str, dict[str, Any]]:
    """
    Build the counter update for one admitted request.

    Each counter is either incremented in place or restarted at one with a
    new window start, depending on whether its window has elapsed relative
    to the record the decision is based on. The caller guards the update
    with a condition that those window starts are still the stored ones.

    Returns:
        (update_expression, expression_values)
    """
    clauses = []
    if minute_window_elapsed(api_key.last_minute_reset_date, now):
        clauses.append("requests_used_this_minute = :one")
        clauses.append("last_minute_reset_date = :now")
    else:
        clauses.append("requests_used_this_minute = requests_used_this_minute + :one")

    if day_window_elapsed(api_key.last_reset_date, now, tz_name):
        clauses.append("requests_used_today = :one")
        clauses.append("last_reset_date = :now")
    else:
        clauses.append("requests_used_today = requests_used_today + :one")

    clauses.append("last_used_at = :now")
    clauses.append("updated_at = :now")

    values = {
        ":one": 1,
        ":now": to_iso(now),
        ":seen_minute": to_iso(api_key.last_minute_reset_date),
        ":seen_day": to_iso(api_key.last_reset_date),
    }
    return "SET " + ", ".join(clauses), values


INCREMENT_CONDITION = (
    "last_minute_reset_date = :seen_minute AND last_reset_date = :seen_day"
)


class ApiKeyRepository(BaseRepository):
    """
    Repository for API Key operations in DynamoDB.

    Provides async methods for creating, looking up, listing,
    deactivating and metering API keys.
    """

    def __init__(self) -> None:
        """Initialize ApiKeyRepository with api_keys table."""
        super().__init__(settings.dynamodb_table_api_keys)

    async def get_by_id(self, key_id: str) -> Optional[ApiKey]:
        """
        Get API key by ID (strongly consistent read).

        Args:
            key_id: API key partition key (UUID)

        Returns:
            ApiKey if found, None otherwise
        """
        item = await self.get_item({"key_id": key_id})
        if item:
            return ApiKey(**item)
        return None

    async def get_by_prefix(self, key_prefix: str) -> Optional[ApiKey]:
        """
        Get API key by its cleartext lookup prefix.

        The prefix index is eventually consistent, so the record itself is
        re-read from the table to see current counters and active flag.

        Args:
            key_prefix: Lookup prefix, e.g. ``mk_live_1a2b3c4d``

        Returns:
            ApiKey if found, None otherwise
        """
        items = await self.query(
            IndexName=KEY_PREFIX_INDEX,
            KeyConditionExpression="key_prefix = :key_prefix",
            ExpressionAttributeValues={":key_prefix": key_prefix},
        )
        if not items:
            return None
        return await self.get_by_id(items[0]["key_id"])

    async def list_by_owner(self, owner_id: str) -> List[ApiKey]:
        """
        List all keys of an owner, newest first.

        Args:
            owner_id: Owning account identifier

        Returns:
            List of ApiKey records (active and inactive)
        """
        items = await self.query(
            IndexName=OWNER_INDEX,
            KeyConditionExpression="owner_id = :owner_id",
            ExpressionAttributeValues={":owner_id": owner_id},
            ScanIndexForward=False,
        )
        return [ApiKey(**item) for item in items]

    async def find_active_by_name(self, owner_id: str, name: str) -> Optional[ApiKey]:
        """Find the owner's active key with the given name, if any."""
        for api_key in await self.list_by_owner(owner_id):
            if api_key.is_active and api_key.name == name:
                return api_key
        return None

    async def create(self, api_key: ApiKey) -> ApiKey:
        """
        Create a new API key in DynamoDB.

        Args:
            api_key: ApiKey model to store

        Returns:
            The created ApiKey
        """
        await self.put_item(
            api_key.to_item(),
            ConditionExpression="attribute_not_exists(key_id)",
        )
        return api_key

    async def deactivate(self, key_id: str, now: datetime) -> ApiKey:
        """
        Flag a key inactive. Records are never hard-deleted.

        Args:
            key_id: Key to deactivate
            now: Modification instant

        Returns:
            The updated ApiKey

        Raises:
            KeyNotFoundError: If no such key exists
        """
        try:
            attributes = await self.update_item(
                key={"key_id": key_id},
                update_expression="SET is_active = :inactive, updated_at = :now",
                expression_values={":inactive": False, ":now": to_iso(now)},
                condition_expression="attribute_exists(key_id)",
            )
        except ClientError as exc:
            if is_conditional_check_failure(exc):
                raise KeyNotFoundError(key_id=key_id) from exc
            raise
        return ApiKey(**attributes)

    async def increment_usage(
        self, api_key: ApiKey, now: datetime, tz_name: str | None = None
    ) -> ApiKey:
        """
        Count one admitted request against both quota windows.

        Issued as a single conditional UpdateItem. Concurrent increments in
        the same window both land because the addition happens server-side.
        If a concurrent request has already rolled a window over, the guard
        fails and the update is recomputed from a fresh read.

        Args:
            api_key: Record the admission decision was based on
            now: Request instant
            tz_name: Quota timezone (defaults to settings.quota_timezone)

        Returns:
            The updated ApiKey

        Raises:
            StoreUnavailableError: On store failure or repeated contention
            KeyNotFoundError: If the record disappeared
        """
        tz_name = tz_name or settings.quota_timezone
        current = api_key

        for attempt in range(1, settings.counter_update_max_attempts + 1):
            update_expression, values = build_increment_update(current, now, tz_name)
            try:
                attributes = await self.update_item(
                    key={"key_id": current.key_id},
                    update_expression=update_expression,
                    expression_values=values,
                    condition_expression=INCREMENT_CONDITION,
                )
                return ApiKey(**attributes)
            except ClientError as exc:
                if not is_conditional_check_failure(exc):
                    raise
                logger.info(
                    "Quota window moved during increment, re-reading",
                    extra={"context": {"key_id": current.key_id, "attempt": attempt}},
                )
                refreshed = await self.get_by_id(current.key_id)
                if refreshed is None:
                    raise KeyNotFoundError(key_id=current.key_id) from exc
                current = refreshed

        raise StoreUnavailableError(operation="increment_usage")
