"""Configuration management using Pydantic Settings."""

import os

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        # Only load .env file in development (not Lambda/production)
        env_file=".env" if os.getenv("AWS_EXECUTION_ENV") is None else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # AWS Configuration
    aws_region: str = "us-east-2"
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    aws_session_token: str | None = None  # Required for temporary credentials

    @field_validator(
        "aws_access_key_id",
        "aws_secret_access_key",
        "aws_session_token",
        "management_token",
        mode="before",
    )
    @classmethod
    def convert_empty_string_to_none(cls, v):
        """Convert empty strings to None so boto3 can use IAM role in Lambda."""
        if v is None:
            return None
        if isinstance(v, str) and v.strip() == "":
            return None
        return v

    # DynamoDB Configuration
    dynamodb_endpoint_url: str | None = None
    dynamodb_table_api_keys: str = "trading-api-keys"
    dynamodb_table_api_usage: str = "trading-api-usage"

    # Application Configuration
    log_level: str = "INFO"
    api_title: str = "Trading Data API Gatekeeper"
    api_version: str = "1.0.0"
    api_description: str = (
        "API-key authentication and tiered rate limiting for the trading-data API"
    )

    # API Keys
    api_key_environment: str = "live"
    bcrypt_rounds: int = 10
    max_key_name_length: int = 100

    # Rate Limiting
    quota_timezone: str = "UTC"
    store_timeout_seconds: float = 2.0
    counter_update_max_attempts: int = 3

    # Gatekeeper
    gated_path_prefix: str = "/api/v1"
    trust_forwarded_for: bool = False

    # Usage log
    usage_retention_days: int = 90

    # Upstream trading-data service
    upstream_base_url: str = "http://localhost:4000"
    upstream_timeout_seconds: float = 30.0

    # Management surface
    management_token: str | None = None

    @field_validator("api_key_environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Only the two environments encoded in the credential format exist."""
        if v not in ("live", "test"):
            raise ValueError("api_key_environment must be 'live' or 'test'")
        return v


# Global settings instance
settings = Settings()
