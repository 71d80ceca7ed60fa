"""Supervision for fire-and-forget side effects."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from functools import lru_cache
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class DetachedTaskSupervisor:
    """Own detached tasks so they run to completion without the caller awaiting them.

    The event loop keeps only weak references to tasks, so the supervisor
    holds them until they finish. Failures are logged and never re-raised.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def spawn(self, coroutine: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        """Schedule ``coroutine`` on the running loop and return immediately."""
        task = asyncio.get_running_loop().create_task(coroutine, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    @property
    def pending(self) -> int:
        """Number of tasks that have not finished yet."""
        return len(self._tasks)

    async def drain(self, timeout_seconds: float | None = None) -> None:
        """Wait for outstanding tasks; cancel whatever outlives the timeout."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        _, still_running = await asyncio.wait(tasks, timeout=timeout_seconds)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        """Release the task and log its failure, if any."""
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("detached_task_cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "detached_task_failed",
                task=task.get_name(),
                error_type=type(exc).__name__,
                error=str(exc),
            )


@lru_cache
def get_task_supervisor() -> DetachedTaskSupervisor:
    """Create and cache the process-wide detached task supervisor."""
    return DetachedTaskSupervisor()
