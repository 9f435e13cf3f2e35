"""Detached side-effect tasks.

Cache backfills and engagement updates run after the caller has its answer.
Their failures are logged and never reach the request that spawned them.
"""
import asyncio
import logging
from typing import Awaitable, Set

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Keeps strong references to fire-and-forget tasks until they finish."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable, name: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug("[Tasks] %s cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("[Tasks] %s failed: %s", task.get_name(), exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def wait(self) -> None:
        """Wait for every task spawned so far (used on shutdown and in tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
