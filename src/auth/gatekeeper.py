"""
Request-time admission for API-key traffic.

``Gatekeeper.admit`` runs the gates in order; the first failure raises and
nothing after it runs:

1. extract the credential (Bearer header first, then X-API-Key)
2. resolve the lookup prefix to an active, unexpired key record
3. verify the credential against the stored hash
4. check the path against the tier's endpoint allow-list
5. check the caller address against the key's IP allow-list
6. check both quota windows
7. count the request with one atomic store write
"""

import asyncio
import ipaddress
import secrets
from collections.abc import Mapping
from datetime import datetime
from functools import lru_cache
from typing import Callable, Optional

from pydantic import BaseModel

from src.auth.api_key import (
    ENVIRONMENTS,
    KEY_PREFIX,
    SECRET_HEX_LENGTH,
    extract_key_prefix,
    hash_api_key,
    verify_api_key,
)
from src.auth.tiers import is_endpoint_allowed
from src.exceptions import (
    EndpointNotAllowedError,
    InvalidCredentialError,
    IPNotAllowedError,
    KeyExpiredError,
    KeyInactiveError,
    MissingCredentialError,
)
from src.logging.config import get_logger
from src.middleware.rate_limit import RateLimitDecision, RateLimiter, rate_limiter
from src.models.api_key import ApiKey
from src.repositories.api_key_repository import ApiKeyRepository
from src.utils.background import BackgroundTaskRunner, background_tasks
from src.utils.time_windows import unix_timestamp, utcnow

logger = get_logger(__name__)

RATE_LIMIT_LIMIT_HEADER = "X-RateLimit-Limit"
RATE_LIMIT_REMAINING_HEADER = "X-RateLimit-Remaining"
RATE_LIMIT_RESET_HEADER = "X-RateLimit-Reset"
UNLIMITED_TOKEN = "unlimited"


@lru_cache(maxsize=1)
def _decoy_hash() -> str:
    # Hash of a throwaway well-formed credential, so unknown prefixes cost
    # the same bcrypt round as known ones.
    decoy = f"{KEY_PREFIX}_{ENVIRONMENTS[0]}_{secrets.token_hex(SECRET_HEX_LENGTH // 2)}"
    return hash_api_key(decoy)


def extract_credential(headers: Mapping[str, str]) -> str:
    """
    Pull the credential from the request headers.

    ``Authorization: Bearer <key>`` wins over ``X-API-Key: <key>``.

    Raises:
        MissingCredentialError: If neither header carries a credential
    """
    authorization = headers.get("authorization")
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token.strip():
            return token.strip()

    api_key = headers.get("x-api-key")
    if api_key and api_key.strip():
        return api_key.strip()

    raise MissingCredentialError()


def ip_allowed(client_ip: Optional[str], allowed: list[str]) -> bool:
    """Match an address against exact entries and CIDR blocks."""
    if not client_ip:
        return False
    if client_ip in allowed:
        return True
    try:
        address = ipaddress.ip_address(client_ip)
    except ValueError:
        return False
    for entry in allowed:
        try:
            if address in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            continue
    return False


class Admission(BaseModel):
    """An admitted request: the counted key record and its quota headers."""

    api_key: ApiKey
    decision: RateLimitDecision
    headers: dict[str, str]


class Gatekeeper:
    """
    Orchestrates credential, authorization and quota checks.

    Store failures surface as StoreUnavailableError from the repository
    and are not retried here.
    """

    def __init__(
        self,
        repository: ApiKeyRepository | None = None,
        limiter: RateLimiter | None = None,
        runner: BackgroundTaskRunner | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize the gatekeeper.

        Args:
            repository: Key store (creates new if None)
            limiter: Rate limiter (defaults to the global instance)
            runner: Background runner for fire-and-forget writes
            clock: Source of the current instant
        """
        self.repository = repository or ApiKeyRepository()
        self.limiter = limiter or rate_limiter
        self.runner = runner or background_tasks
        self.clock = clock

    async def _deactivate_expired(self, api_key: ApiKey, now: datetime) -> None:
        await self.repository.deactivate(api_key.key_id, now)
        logger.warning(
            "API key expired, deactivated",
            extra={"context": {"key_prefix": api_key.key_prefix}},
        )

    async def resolve(self, credential: str, now: datetime) -> ApiKey:
        """
        Map a credential to its active, verified key record.

        Raises:
            InvalidFormatError: Malformed credential (no store access, no hash)
            InvalidCredentialError: Unknown prefix or hash mismatch
            KeyInactiveError: Revoked or rotated key
            KeyExpiredError: Expiry instant has passed
        """
        key_prefix = extract_key_prefix(credential)

        api_key = await self.repository.get_by_prefix(key_prefix)
        if api_key is None:
            await asyncio.to_thread(verify_api_key, credential, _decoy_hash())
            raise InvalidCredentialError()

        if not api_key.is_active:
            raise KeyInactiveError()

        if api_key.is_expired(now):
            self.runner.spawn(
                self._deactivate_expired(api_key, now), description="deactivate_expired_key"
            )
            raise KeyExpiredError()

        if not await asyncio.to_thread(verify_api_key, credential, api_key.key_hash):
            raise InvalidCredentialError()

        return api_key

    def authorize(self, api_key: ApiKey, path: str, client_ip: Optional[str]) -> None:
        """
        Endpoint and IP gates.

        Raises:
            EndpointNotAllowedError: Path outside the tier or key allow-list
            IPNotAllowedError: Caller address not on the key's allow-list
        """
        if not is_endpoint_allowed(api_key.tier, path, api_key.allowed_endpoints):
            raise EndpointNotAllowedError(tier=api_key.tier.value, path=path)

        if api_key.allowed_ips and not ip_allowed(client_ip, api_key.allowed_ips):
            raise IPNotAllowedError()

    def rate_limit_headers(self, api_key: ApiKey, now: datetime) -> dict[str, str]:
        """Limit, remaining and daily reset, read from the counted record."""
        if api_key.is_unlimited:
            limit = remaining = UNLIMITED_TOKEN
        else:
            limit = str(api_key.requests_per_day)
            remaining = str(max(0, api_key.requests_per_day - api_key.requests_used_today))
        return {
            RATE_LIMIT_LIMIT_HEADER: limit,
            RATE_LIMIT_REMAINING_HEADER: remaining,
            RATE_LIMIT_RESET_HEADER: str(unix_timestamp(self.limiter.next_daily_reset(now))),
        }

    async def admit(
        self,
        headers: Mapping[str, str],
        path: str,
        client_ip: Optional[str],
        now: Optional[datetime] = None,
    ) -> Admission:
        """
        Run every gate for one request.

        Args:
            headers: Request headers (case-insensitive mapping)
            path: Request path
            client_ip: Caller address
            now: Request instant (defaults to the clock)

        Returns:
            Admission with the counted key record and quota headers

        Raises:
            UnauthorizedError, ForbiddenError, RateLimitError, StoreUnavailableError
        """
        now = now or self.clock()

        credential = extract_credential(headers)
        api_key = await self.resolve(credential, now)
        self.authorize(api_key, path, client_ip)
        decision = self.limiter.check_rate_limit(api_key, now)

        counted = await self.repository.increment_usage(
            api_key, now, self.limiter.tz_name
        )

        return Admission(
            api_key=counted,
            decision=decision,
            headers=self.rate_limit_headers(counted, now),
        )
