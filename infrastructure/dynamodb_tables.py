"""Script to create the gatekeeper's DynamoDB tables on AWS, LocalStack or a moto server."""

import asyncio
from typing import Any

import aioboto3
from botocore.exceptions import ClientError

from src.config import settings
from src.repositories.api_key_repository import KEY_PREFIX_INDEX, OWNER_INDEX
from src.repositories.base import get_dynamodb_config
from src.repositories.usage_repository import API_KEY_TIMESTAMP_INDEX

USAGE_TTL_ATTRIBUTE = "ttl"


def _index(name: str, hash_key: str, range_key: str | None = None) -> dict[str, Any]:
    key_schema = [{"AttributeName": hash_key, "KeyType": "HASH"}]
    if range_key:
        key_schema.append({"AttributeName": range_key, "KeyType": "RANGE"})
    return {
        "IndexName": name,
        "KeySchema": key_schema,
        "Projection": {"ProjectionType": "ALL"},
    }


async def _create_table(dynamodb: Any, table_name: str, **params: Any) -> bool:
    """Create a table and wait for it. Returns False if it already existed."""
    try:
        table = await dynamodb.create_table(
            TableName=table_name, BillingMode="PAY_PER_REQUEST", **params
        )
        await table.wait_until_exists()
    except ClientError as e:
        if e.response["Error"]["Code"] == "ResourceInUseException":
            print(f"→ Table already exists: {table_name}")
            return False
        raise
    print(f"✓ Created table: {table_name}")
    return True


async def create_api_keys_table(dynamodb: Any, table_name: str) -> None:
    """
    Create the Key Store table.

    Args:
        dynamodb: DynamoDB resource
        table_name: Name of the API keys table
    """
    await _create_table(
        dynamodb,
        table_name,
        KeySchema=[{"AttributeName": "key_id", "KeyType": "HASH"}],
        AttributeDefinitions=[
            {"AttributeName": "key_id", "AttributeType": "S"},
            {"AttributeName": "key_prefix", "AttributeType": "S"},
            {"AttributeName": "owner_id", "AttributeType": "S"},
            {"AttributeName": "created_at", "AttributeType": "S"},
        ],
        GlobalSecondaryIndexes=[
            _index(KEY_PREFIX_INDEX, "key_prefix"),
            _index(OWNER_INDEX, "owner_id", "created_at"),
        ],
    )


async def create_api_usage_table(dynamodb: Any, table_name: str) -> None:
    """
    Create the usage log table with TTL-based retention.

    Args:
        dynamodb: DynamoDB resource
        table_name: Name of the usage table
    """
    await _create_table(
        dynamodb,
        table_name,
        KeySchema=[{"AttributeName": "usage_id", "KeyType": "HASH"}],
        AttributeDefinitions=[
            {"AttributeName": "usage_id", "AttributeType": "S"},
            {"AttributeName": "api_key_id", "AttributeType": "S"},
            {"AttributeName": "timestamp", "AttributeType": "S"},
        ],
        GlobalSecondaryIndexes=[
            _index(API_KEY_TIMESTAMP_INDEX, "api_key_id", "timestamp"),
        ],
    )
    try:
        await dynamodb.meta.client.update_time_to_live(
            TableName=table_name,
            TimeToLiveSpecification={
                "Enabled": True,
                "AttributeName": USAGE_TTL_ATTRIBUTE,
            },
        )
    except ClientError as e:
        # Re-enabling an already enabled TTL is rejected
        if e.response["Error"]["Code"] != "ValidationException":
            raise
    print(f"✓ TTL enabled on {table_name}.{USAGE_TTL_ATTRIBUTE}")


async def create_all_tables(
    dynamodb: Any,
    api_keys_table: str | None = None,
    api_usage_table: str | None = None,
) -> None:
    """Create every table the gatekeeper needs."""
    await create_api_keys_table(dynamodb, api_keys_table or settings.dynamodb_table_api_keys)
    await create_api_usage_table(
        dynamodb, api_usage_table or settings.dynamodb_table_api_usage
    )


async def main() -> None:
    """Create all required DynamoDB tables."""
    print("Creating DynamoDB tables...")
    print(f"Region: {settings.aws_region}")
    print(f"Endpoint: {settings.dynamodb_endpoint_url or 'AWS'}")
    print()

    session = aioboto3.Session()
    async with session.resource("dynamodb", **get_dynamodb_config()) as dynamodb:
        await create_all_tables(dynamodb)

    print()
    print("✓ All tables created successfully!")


if __name__ == "__main__":
    asyncio.run(main())
