"""
Fire-and-forget task runner.

Side effects that must not delay or fail a request (usage records, lazy
key deactivation) are spawned here. Each task's failure is logged and
absorbed by a done-callback.
"""

import asyncio
from collections.abc import Coroutine
from typing import Any

from src.logging.config import get_logger

logger = get_logger(__name__)


class BackgroundTaskRunner:
    """Holds strong references to spawned tasks until they finish."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], description: str) -> asyncio.Task:
        """
        Schedule a coroutine on the running loop without awaiting it.

        Args:
            coro: Coroutine to run
            description: Short label used when logging a failure

        Returns:
            The created task
        """
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_done(t, description))
        return task

    def _on_done(self, task: asyncio.Task, description: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task failed",
                exc_info=exc,
                extra={"context": {"task": description}},
            )

    async def drain(self) -> None:
        """Wait for every pending task (shutdown and tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


# Global runner instance
background_tasks = BackgroundTaskRunner()
