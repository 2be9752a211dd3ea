"""Background execution: one asyncio task per job, tracked by job id."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class JobRunner:
    """Fire-and-forget job tasks with handles for waiting and shutdown."""

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task] = {}

    def spawn(self, job_id: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"job-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda t: self._on_done(job_id, t))
        return task

    def _on_done(self, job_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]
        if task.cancelled():
            logger.info("Job %s task cancelled", job_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Job %s task crashed: %s", job_id, exc, exc_info=exc)

    async def wait(self, job_id: str, timeout: float | None = None) -> None:
        """Wait for the job's task; returns at once if it is not running here."""
        task = self._tasks.get(job_id)
        if task is None:
            return
        await asyncio.wait_for(asyncio.shield(task), timeout)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Job runner stopped %d task(s)", len(tasks))
        self._tasks.clear()

    def __len__(self) -> int:
        return len(self._tasks)
