"""Base repository class with common DynamoDB operations."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from src.config import settings
from src.exceptions import StoreUnavailableError
from src.logging.config import get_logger

logger = get_logger(__name__)


def get_dynamodb_config() -> dict[str, Any]:
    """
    Build DynamoDB client configuration based on environment.

    For AWS Lambda with IAM roles, returns minimal config (region only).
    For LocalStack or a moto server, includes endpoint_url and explicit
    credentials.

    Returns:
        Dictionary of boto3 client parameters
    """
    config: dict[str, Any] = {"region_name": settings.aws_region}

    # Only add endpoint_url if explicitly configured (LocalStack)
    if settings.dynamodb_endpoint_url:
        config["endpoint_url"] = settings.dynamodb_endpoint_url

    # Lambda temporary credentials need all three values
    if settings.aws_access_key_id:
        config["aws_access_key_id"] = settings.aws_access_key_id
    if settings.aws_secret_access_key:
        config["aws_secret_access_key"] = settings.aws_secret_access_key
    if settings.aws_session_token:
        config["aws_session_token"] = settings.aws_session_token

    logger.debug(
        "DynamoDB config resolved",
        extra={"context": {"config_keys": sorted(config.keys())}},
    )
    return config


def is_conditional_check_failure(exc: ClientError) -> bool:
    """True if a write was rejected by its ConditionExpression."""
    return exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


class BaseRepository:
    """
    Base repository providing common DynamoDB operations.

    All repository methods are async and use aioboto3 for
    non-blocking database operations. Store failures and timeouts surface
    as StoreUnavailableError.
    """

    def __init__(self, table_name: str) -> None:
        """
        Initialize repository with table name.

        Args:
            table_name: Name of the DynamoDB table
        """
        self.table_name = table_name
        self.session = aioboto3.Session()

    @asynccontextmanager
    async def table(self) -> AsyncIterator[Any]:
        """Yield the DynamoDB table resource."""
        async with self.session.resource("dynamodb", **get_dynamodb_config()) as dynamodb:
            yield await dynamodb.Table(self.table_name)

    async def _call(self, operation: str, method: str, **kwargs: Any) -> dict[str, Any]:
        """
        Invoke a table method with the store timeout applied.

        Conditional check failures are re-raised as ClientError for the
        caller to interpret; everything else becomes StoreUnavailableError.
        """
        try:
            async with asyncio.timeout(settings.store_timeout_seconds):
                async with self.table() as table:
                    return await getattr(table, method)(**kwargs)
        except ClientError as exc:
            if is_conditional_check_failure(exc):
                raise
            logger.error(
                "DynamoDB request failed",
                exc_info=exc,
                extra={"context": {"table": self.table_name, "operation": operation}},
            )
            raise StoreUnavailableError(operation=operation) from exc
        except (BotoCoreError, OSError, TimeoutError) as exc:
            logger.error(
                "DynamoDB unreachable",
                exc_info=exc,
                extra={"context": {"table": self.table_name, "operation": operation}},
            )
            raise StoreUnavailableError(operation=operation) from exc

    async def put_item(self, item: dict[str, Any], **kwargs: Any) -> None:
        """
        Put item into DynamoDB table.

        Args:
            item: Dictionary representing the item to store
            **kwargs: Extra put_item parameters (e.g. ConditionExpression)
        """
        await self._call("put_item", "put_item", Item=item, **kwargs)

    async def get_item(self, key: dict[str, Any]) -> dict[str, Any] | None:
        """
        Get item from DynamoDB table by key.

        Args:
            key: Dictionary with partition key and optionally sort key

        Returns:
            Item dictionary or None if not found
        """
        response = await self._call("get_item", "get_item", Key=key, ConsistentRead=True)
        return response.get("Item")

    async def query(self, **params: Any) -> list[dict[str, Any]]:
        """
        Run a query and follow pagination to the end.

        Args:
            **params: Query parameters (IndexName, KeyConditionExpression, ...)

        Returns:
            All matching items
        """
        items: list[dict[str, Any]] = []
        while True:
            response = await self._call("query", "query", **params)
            items.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return items
            params["ExclusiveStartKey"] = last_key

    async def update_item(
        self,
        key: dict[str, Any],
        update_expression: str,
        expression_values: dict[str, Any],
        expression_names: dict[str, str] | None = None,
        condition_expression: str | None = None,
    ) -> dict[str, Any]:
        """
        Update item in DynamoDB table.

        Args:
            key: Dictionary with partition key and optionally sort key
            update_expression: DynamoDB update expression
            expression_values: Values for the update expression
            expression_names: Optional attribute name mappings for reserved keywords
            condition_expression: Optional guard evaluated atomically with the update

        Returns:
            Updated item attributes

        Raises:
            ClientError: ConditionalCheckFailedException when the guard fails
        """
        update_params: dict[str, Any] = {
            "Key": key,
            "UpdateExpression": update_expression,
            "ExpressionAttributeValues": expression_values,
            "ReturnValues": "ALL_NEW",
        }
        if expression_names:
            update_params["ExpressionAttributeNames"] = expression_names
        if condition_expression:
            update_params["ConditionExpression"] = condition_expression

        response = await self._call("update_item", "update_item", **update_params)
        return response.get("Attributes", {})
