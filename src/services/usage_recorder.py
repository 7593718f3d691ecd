"""Usage recorder: writes one Usage Record per completed gated request."""

import uuid
from datetime import datetime
from http import HTTPStatus

from src.logging.config import get_logger
from src.models.api_key import ApiKey
from src.models.api_usage import ApiUsage
from src.repositories.usage_repository import UsageRepository
from src.utils.background import BackgroundTaskRunner, background_tasks

logger = get_logger(__name__)


def error_text_for(status_code: int) -> str | None:
    """Reason phrase for error responses, None for successes."""
    if status_code < 400:
        return None
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return None


class UsageRecorder:
    """
    Appends usage records off the request's critical path.

    ``schedule`` never raises and never blocks; ``record`` is the awaited
    write with its own error boundary.
    """

    def __init__(
        self,
        repository: UsageRepository | None = None,
        runner: BackgroundTaskRunner | None = None,
    ) -> None:
        """
        Initialize UsageRecorder.

        Args:
            repository: UsageRepository instance (creates new if None)
            runner: Task runner (defaults to the process-wide runner)
        """
        self.repository = repository or UsageRepository()
        self.runner = runner or background_tasks

    def build(
        self,
        api_key: ApiKey,
        endpoint: str,
        method: str,
        status_code: int,
        response_time_ms: float,
        timestamp: datetime,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> ApiUsage:
        """Assemble the immutable record for one request."""
        return ApiUsage(
            usage_id=str(uuid.uuid4()),
            api_key_id=api_key.key_id,
            owner_id=api_key.owner_id,
            endpoint=endpoint,
            method=method.upper(),
            status_code=status_code,
            response_time_ms=max(0, round(response_time_ms)),
            user_agent=user_agent,
            ip_address=ip_address,
            error_message=error_text_for(status_code),
            timestamp=timestamp,
        )

    async def record(self, usage: ApiUsage) -> bool:
        """
        Persist a usage record, absorbing any failure.

        Returns:
            True if stored, False if the write failed
        """
        try:
            await self.repository.create(usage)
        except Exception as exc:
            logger.error(
                "Error saving API usage",
                exc_info=exc,
                extra={
                    "context": {
                        "api_key_id": usage.api_key_id,
                        "endpoint": usage.endpoint,
                    }
                },
            )
            return False
        return True

    def schedule(self, usage: ApiUsage) -> None:
        """Fire-and-forget ``record``."""
        self.runner.spawn(self.record(usage), description="record_usage")
