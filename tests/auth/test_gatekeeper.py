"""Unit tests for the access gatekeeper orchestration."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from src.auth.gatekeeper import Gatekeeper, extract_credential, ip_allowed
from src.auth.tiers import Tier
from src.exceptions import (
    DailyQuotaExceededError,
    EndpointNotAllowedError,
    InvalidCredentialError,
    InvalidFormatError,
    IPNotAllowedError,
    KeyExpiredError,
    KeyInactiveError,
    MinuteRateExceededError,
    MissingCredentialError,
    StoreUnavailableError,
)
from src.middleware.rate_limit import RateLimiter

NOW = datetime(2025, 11, 11, 12, 0, 0, tzinfo=timezone.utc)
FREE_PATH = "/api/v1/opportunities"
PAID_PATH = "/api/v1/whale-activity"
NEXT_MIDNIGHT = datetime(2025, 11, 12, tzinfo=timezone.utc)


@pytest.fixture
def gatekeeper(key_store, runner) -> Gatekeeper:
    return Gatekeeper(
        repository=key_store,
        limiter=RateLimiter("UTC"),
        runner=runner,
        clock=lambda: NOW,
    )


def bearer(credential: str) -> dict[str, str]:
    return {"authorization": f"Bearer {credential}"}


class TestExtractCredential:
    """Credential transport."""

    def test_bearer(self) -> None:
        assert extract_credential({"authorization": "Bearer abc"}) == "abc"

    def test_bearer_scheme_case_insensitive(self) -> None:
        assert extract_credential({"authorization": "bearer abc"}) == "abc"

    def test_api_key_header(self) -> None:
        assert extract_credential({"x-api-key": " abc "}) == "abc"

    def test_bearer_takes_precedence(self) -> None:
        headers = {"authorization": "Bearer from-bearer", "x-api-key": "from-header"}
        assert extract_credential(headers) == "from-bearer"

    def test_other_scheme_falls_back_to_header(self) -> None:
        headers = {"authorization": "Basic dXNlcjpwdw==", "x-api-key": "abc"}
        assert extract_credential(headers) == "abc"

    @pytest.mark.parametrize(
        "headers",
        [{}, {"authorization": "Bearer "}, {"authorization": "Basic x"}, {"x-api-key": ""}],
    )
    def test_missing(self, headers: dict[str, str]) -> None:
        with pytest.raises(MissingCredentialError) as exc_info:
            extract_credential(headers)
        assert "X-API-Key" in exc_info.value.message


class TestIpAllowed:
    """IP allow-list matching."""

    def test_exact(self) -> None:
        assert ip_allowed("203.0.113.7", ["203.0.113.7"])

    def test_cidr(self) -> None:
        assert ip_allowed("10.1.2.3", ["10.0.0.0/8"])
        assert not ip_allowed("11.1.2.3", ["10.0.0.0/8"])

    def test_ipv6(self) -> None:
        assert ip_allowed("2001:db8::1", ["2001:db8::/32"])

    def test_invalid_entries_are_ignored(self) -> None:
        assert ip_allowed("10.1.2.3", ["not-an-ip", "10.1.2.3/32"])

    def test_missing_or_invalid_client(self) -> None:
        assert not ip_allowed(None, ["10.0.0.0/8"])
        assert not ip_allowed("garbage", ["10.0.0.0/8"])


@pytest.mark.asyncio
class TestAdmit:
    """Full gate sequence against the in-memory key store."""

    async def test_admits_and_counts(self, gatekeeper, stored_key, key_store) -> None:
        credential, api_key = stored_key(Tier.FREE)

        admission = await gatekeeper.admit(bearer(credential), FREE_PATH, "198.51.100.1")

        assert admission.api_key.key_id == api_key.key_id
        assert admission.api_key.requests_used_today == 1
        assert key_store.items[api_key.key_id].requests_used_today == 1
        assert key_store.items[api_key.key_id].last_used_at == NOW
        assert admission.headers == {
            "X-RateLimit-Limit": "100",
            "X-RateLimit-Remaining": "99",
            "X-RateLimit-Reset": str(int(NEXT_MIDNIGHT.timestamp())),
        }

    async def test_api_key_header(self, gatekeeper, stored_key) -> None:
        credential, _ = stored_key(Tier.FREE)

        admission = await gatekeeper.admit({"x-api-key": credential}, FREE_PATH, None)

        assert admission.decision.allowed

    async def test_bearer_wins_over_header(self, gatekeeper, stored_key) -> None:
        credential, _ = stored_key(Tier.FREE)
        headers = {"authorization": f"Bearer {credential}", "x-api-key": "garbage"}

        admission = await gatekeeper.admit(headers, FREE_PATH, None)

        assert admission.decision.allowed

    async def test_unlimited_headers(self, gatekeeper, stored_key) -> None:
        credential, _ = stored_key(Tier.ENTERPRISE)

        admission = await gatekeeper.admit(bearer(credential), PAID_PATH, None)

        assert admission.headers["X-RateLimit-Limit"] == "unlimited"
        assert admission.headers["X-RateLimit-Remaining"] == "unlimited"

    async def test_remaining_reflects_concurrent_increments(
        self, gatekeeper, stored_key, key_store
    ) -> None:
        """Test that the remaining header is read from the counted record."""
        credential, api_key = stored_key(Tier.FREE, requests_used_today=10)
        increment = key_store.increment_usage

        async def other_connections_first(*args, **kwargs):
            stored = key_store.items[api_key.key_id]
            key_store.items[api_key.key_id] = stored.model_copy(
                update={"requests_used_today": 15}
            )
            return await increment(*args, **kwargs)

        with patch.object(key_store, "increment_usage", new=other_connections_first):
            admission = await gatekeeper.admit(bearer(credential), FREE_PATH, None)

        assert admission.decision.remaining == 90
        assert admission.api_key.requests_used_today == 16
        assert admission.headers["X-RateLimit-Remaining"] == "84"

    async def test_malformed_never_touches_store(self, gatekeeper, key_store) -> None:
        with patch.object(key_store, "get_by_prefix", new=AsyncMock()) as lookup:
            with pytest.raises(InvalidFormatError):
                await gatekeeper.admit(bearer("sk_live_nope"), FREE_PATH, None)

        lookup.assert_not_awaited()

    async def test_unknown_prefix_pays_hash_cost(self, gatekeeper, make_api_key) -> None:
        credential, _ = make_api_key(Tier.FREE)

        with patch("src.auth.gatekeeper.verify_api_key", return_value=False) as verify:
            with pytest.raises(InvalidCredentialError):
                await gatekeeper.admit(bearer(credential), FREE_PATH, None)

        verify.assert_called_once()

    async def test_wrong_secret_for_known_prefix(self, gatekeeper, stored_key, key_store) -> None:
        credential, api_key = stored_key(Tier.FREE)
        forged = credential[:16] + ("0" if credential[16] != "0" else "1") + credential[17:]

        with pytest.raises(InvalidCredentialError):
            await gatekeeper.admit(bearer(forged), FREE_PATH, None)

        assert key_store.items[api_key.key_id].requests_used_today == 0

    async def test_inactive_key(self, gatekeeper, stored_key) -> None:
        credential, _ = stored_key(Tier.FREE, is_active=False)

        with pytest.raises(KeyInactiveError) as exc_info:
            await gatekeeper.admit(bearer(credential), FREE_PATH, None)

        assert exc_info.value.status_code == 401

    async def test_expired_key_is_deactivated(
        self, gatekeeper, stored_key, key_store, runner
    ) -> None:
        credential, api_key = stored_key(Tier.FREE, expires_at=NOW - timedelta(seconds=1))

        with pytest.raises(KeyExpiredError):
            await gatekeeper.admit(bearer(credential), FREE_PATH, None)
        await runner.drain()

        assert key_store.items[api_key.key_id].is_active is False
        with pytest.raises(KeyInactiveError):
            await gatekeeper.admit(bearer(credential), FREE_PATH, None)

    async def test_key_expiring_now_is_still_valid(self, gatekeeper, stored_key) -> None:
        credential, _ = stored_key(Tier.FREE, expires_at=NOW)

        admission = await gatekeeper.admit(bearer(credential), FREE_PATH, None)

        assert admission.decision.allowed

    async def test_free_tier_forbidden_path(self, gatekeeper, stored_key, key_store) -> None:
        credential, _ = stored_key(Tier.FREE)

        with pytest.raises(EndpointNotAllowedError) as exc_info:
            await gatekeeper.admit(bearer(credential), PAID_PATH, None)

        assert exc_info.value.status_code == 403
        assert "Upgrade" in exc_info.value.message
        assert key_store.increment_calls == 0

    async def test_ip_allow_list(self, gatekeeper, stored_key) -> None:
        credential, _ = stored_key(Tier.PRO, allowed_ips=["10.0.0.0/8"])

        await gatekeeper.admit(bearer(credential), PAID_PATH, "10.20.30.40")
        with pytest.raises(IPNotAllowedError):
            await gatekeeper.admit(bearer(credential), PAID_PATH, "192.0.2.1")
        with pytest.raises(IPNotAllowedError):
            await gatekeeper.admit(bearer(credential), PAID_PATH, None)

    async def test_minute_limit(self, key_store, stored_key, runner) -> None:
        credential, _ = stored_key(Tier.PRO, requests_per_minute=2)
        gatekeeper = Gatekeeper(repository=key_store, limiter=RateLimiter("UTC"), runner=runner)

        await gatekeeper.admit(bearer(credential), PAID_PATH, None, now=NOW)
        await gatekeeper.admit(bearer(credential), PAID_PATH, None, now=NOW + timedelta(seconds=1))
        with pytest.raises(MinuteRateExceededError) as exc_info:
            await gatekeeper.admit(
                bearer(credential), PAID_PATH, None, now=NOW + timedelta(seconds=2)
            )

        assert exc_info.value.status_code == 429
        assert exc_info.value.reset_at == NOW + timedelta(seconds=60)

    async def test_daily_quota_then_next_day(self, key_store, stored_key, runner) -> None:
        credential, api_key = stored_key(
            Tier.FREE, requests_per_day=100, requests_used_today=100
        )
        gatekeeper = Gatekeeper(repository=key_store, limiter=RateLimiter("UTC"), runner=runner)

        with pytest.raises(DailyQuotaExceededError) as exc_info:
            await gatekeeper.admit(bearer(credential), FREE_PATH, None, now=NOW)
        assert exc_info.value.reset_at == NEXT_MIDNIGHT

        tomorrow = NOW + timedelta(days=1)
        admission = await gatekeeper.admit(bearer(credential), FREE_PATH, None, now=tomorrow)

        assert admission.api_key.requests_used_today == 1
        assert key_store.items[api_key.key_id].last_reset_date == tomorrow

    async def test_store_failure_propagates(self, gatekeeper, key_store, make_api_key) -> None:
        credential, _ = make_api_key(Tier.FREE)

        with patch.object(
            key_store, "get_by_prefix", new=AsyncMock(side_effect=StoreUnavailableError())
        ):
            with pytest.raises(StoreUnavailableError) as exc_info:
                await gatekeeper.admit(bearer(credential), FREE_PATH, None)

        assert exc_info.value.status_code == 500


@pytest.mark.asyncio
class TestConcurrentAdmission:
    """Counter integrity when one key is used from many connections at once."""

    async def test_no_lost_increments(self, gatekeeper, stored_key, key_store) -> None:
        credential, api_key = stored_key(Tier.FREE, requests_per_day=5)

        results = await asyncio.gather(
            *[gatekeeper.admit(bearer(credential), FREE_PATH, None) for _ in range(8)],
            return_exceptions=True,
        )

        admitted = [r for r in results if not isinstance(r, Exception)]
        denied = [r for r in results if isinstance(r, Exception)]
        assert all(isinstance(e, DailyQuotaExceededError) for e in denied)
        # Overshoot is bounded by the number of requests in flight together
        assert 5 <= len(admitted) <= 8
        assert key_store.items[api_key.key_id].requests_used_today == len(admitted)

        with pytest.raises(DailyQuotaExceededError):
            await gatekeeper.admit(bearer(credential), FREE_PATH, None)

    async def test_concurrent_window_rollover(self, key_store, stored_key, runner) -> None:
        """Test that racing resets of an elapsed minute window count every request once."""
        credential, api_key = stored_key(
            Tier.PRO,
            requests_used_this_minute=150,
            last_minute_reset_date=NOW - timedelta(seconds=90),
        )
        gatekeeper = Gatekeeper(
            repository=key_store, limiter=RateLimiter("UTC"), runner=runner, clock=lambda: NOW
        )

        await asyncio.gather(
            *[gatekeeper.admit(bearer(credential), PAID_PATH, None) for _ in range(3)]
        )

        stored = key_store.items[api_key.key_id]
        assert stored.requests_used_this_minute == 3
        assert stored.last_minute_reset_date == NOW
        assert stored.requests_used_today == 3

    async def test_late_request_after_midnight_rollover(
        self, gatekeeper, stored_key, key_store
    ) -> None:
        """Test that a request stamped before midnight never rewinds the new day."""
        before_midnight = datetime(2025, 11, 11, 23, 59, 59, tzinfo=timezone.utc)
        after_midnight = datetime(2025, 11, 12, 0, 0, 1, tzinfo=timezone.utc)
        credential, api_key = stored_key(
            Tier.FREE,
            requests_used_today=40,
            last_reset_date=datetime(2025, 11, 11, 8, 0, tzinfo=timezone.utc),
            requests_used_this_minute=1,
            last_minute_reset_date=before_midnight - timedelta(seconds=30),
        )

        await gatekeeper.admit(bearer(credential), FREE_PATH, None, now=after_midnight)
        # Decided on the day-one record, written after the rollover landed
        late = await key_store.increment_usage(api_key, before_midnight, "UTC")

        assert late.requests_used_today == 2
        assert late.last_reset_date == after_midnight

        await gatekeeper.admit(
            bearer(credential), FREE_PATH, None, now=after_midnight + timedelta(seconds=5)
        )
        stored = key_store.items[api_key.key_id]
        assert stored.requests_used_today == 3
        assert stored.last_reset_date == after_midnight
