"""Two-window quota check against a key's stored counters."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from src.auth.tiers import UNLIMITED
from src.config import settings
from src.exceptions import DailyQuotaExceededError, MinuteRateExceededError, RateLimitError
from src.models.api_key import ApiKey
from src.utils.time_windows import (
    MINUTE_WINDOW,
    day_window_elapsed,
    minute_window_elapsed,
    start_of_next_day,
)


class RateLimitDecision(BaseModel):
    """
    Outcome of an admission check.

    ``remaining`` is the daily quota left before this request is counted,
    or -1 when the key has no daily ceiling.
    """

    allowed: bool
    reason: Optional[str] = None
    reset_at: Optional[datetime] = None
    remaining: int = 0
    error: Optional[RateLimitError] = None

    model_config = {"arbitrary_types_allowed": True}

    def raise_for_denial(self) -> None:
        """Raise the rate-limit error carried by a denied decision."""
        if not self.allowed and self.error is not None:
            raise self.error


class RateLimiter:
    """
    Fixed-window limiter over the counters stored on an API key.

    Two independent windows are evaluated: a 60-second minute window that
    opens at the first request after the previous one lapsed, and a day
    window delimited by calendar days in the quota timezone. The check is
    read-only; counting the request is a separate atomic write
    (ApiKeyRepository.increment_usage).
    """

    def __init__(self, tz_name: str | None = None) -> None:
        """
        Initialize the limiter.

        Args:
            tz_name: Quota timezone (defaults to settings.quota_timezone)
        """
        self._tz_name = tz_name

    @property
    def tz_name(self) -> str:
        return self._tz_name or settings.quota_timezone

    def minute_count(self, api_key: ApiKey, now: datetime) -> int:
        """Minute counter as seen at ``now`` (zero once the window lapsed)."""
        if minute_window_elapsed(api_key.last_minute_reset_date, now):
            return 0
        return api_key.requests_used_this_minute

    def day_count(self, api_key: ApiKey, now: datetime) -> int:
        """Day counter as seen at ``now`` (zero on a new calendar day)."""
        if day_window_elapsed(api_key.last_reset_date, now, self.tz_name):
            return 0
        return api_key.requests_used_today

    def next_daily_reset(self, now: datetime) -> datetime:
        """Start of the next calendar day in the quota timezone."""
        return start_of_next_day(now, self.tz_name)

    def admit(self, api_key: ApiKey, now: datetime) -> RateLimitDecision:
        """
        Decide whether one more request fits in both windows.

        Args:
            api_key: Key record with its stored counters
            now: Request instant

        Returns:
            RateLimitDecision; denied decisions carry the reason and reset time
        """
        if self.minute_count(api_key, now) >= api_key.requests_per_minute:
            reset_at = api_key.last_minute_reset_date + MINUTE_WINDOW
            error = MinuteRateExceededError(
                limit=api_key.requests_per_minute, reset_at=reset_at
            )
            return RateLimitDecision(
                allowed=False,
                reason=error.message,
                reset_at=reset_at,
                remaining=0,
                error=error,
            )

        if api_key.is_unlimited:
            return RateLimitDecision(allowed=True, remaining=UNLIMITED)

        used_today = self.day_count(api_key, now)
        if used_today >= api_key.requests_per_day:
            reset_at = self.next_daily_reset(now)
            error = DailyQuotaExceededError(
                limit=api_key.requests_per_day, reset_at=reset_at
            )
            return RateLimitDecision(
                allowed=False,
                reason=error.message,
                reset_at=reset_at,
                remaining=0,
                error=error,
            )

        return RateLimitDecision(
            allowed=True,
            remaining=api_key.requests_per_day - used_today,
        )

    def check_rate_limit(self, api_key: ApiKey, now: datetime) -> RateLimitDecision:
        """
        Admit or raise.

        Raises:
            MinuteRateExceededError: Per-minute ceiling reached
            DailyQuotaExceededError: Daily ceiling reached
        """
        decision = self.admit(api_key, now)
        decision.raise_for_denial()
        return decision


# Global rate limiter instance
rate_limiter = RateLimiter()
