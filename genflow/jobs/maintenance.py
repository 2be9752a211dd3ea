"""Periodic housekeeping: fail stuck jobs and drop expired terminal ones."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import timedelta

from genflow.errors import InvalidTransitionError, JobImmutableError, JobNotFoundError
from genflow.jobs.models import ACTIVE_STATUSES, TERMINAL_STATUSES, JobStatus, utcnow
from genflow.jobs.store import JobStore, is_older_than

logger = logging.getLogger(__name__)


async def fail_stuck_jobs(store: JobStore, max_age_s: int = 360) -> list[str]:
    """Fail non-terminal jobs that have not changed for *max_age_s* seconds.

    Returns the ids of the jobs that were failed.
    """
    cutoff = utcnow() - timedelta(seconds=max_age_s)
    minutes = max(1, round(max_age_s / 60))
    failed: list[str] = []
    for job in await store.list_by_status(ACTIVE_STATUSES):
        if not is_older_than(job, cutoff):
            continue
        try:
            await store.patch(job.job_id, {
                "status": JobStatus.FAILED,
                "error": f"Job timed out after {minutes} minutes",
                "current_step": "Timed out",
            })
        except (JobImmutableError, InvalidTransitionError, JobNotFoundError):
            # Finished or removed between the listing and the patch
            continue
        logger.warning("Failed stuck job %s (last update %s)", job.job_id, job.updated_at.isoformat())
        failed.append(job.job_id)
    return failed


async def cleanup_terminal_jobs(store: JobStore, older_than_s: int = 86400) -> int:
    """Delete terminal jobs whose last update is older than the retention window."""
    cutoff = utcnow() - timedelta(seconds=older_than_s)
    deleted = 0
    for job in await store.list_by_status(TERMINAL_STATUSES):
        if is_older_than(job, cutoff):
            await store.delete(job.job_id)
            deleted += 1
    if deleted:
        logger.info("Cleaned up %d terminal jobs older than %ds", deleted, older_than_s)
    return deleted


class MaintenanceLoop:
    """Runs both sweeps every *interval_s* seconds until stopped."""

    def __init__(
        self,
        store: JobStore,
        *,
        interval_s: float = 300,
        stuck_age_s: int = 360,
        retention_s: int = 86400,
        on_stuck: Callable[[str], None] | None = None,
    ):
        self._store = store
        self._interval_s = interval_s
        self._stuck_age_s = stuck_age_s
        self._retention_s = retention_s
        self._on_stuck = on_stuck
        self._task: asyncio.Task | None = None

    async def run_once(self) -> tuple[list[str], int]:
        failed = await fail_stuck_jobs(self._store, self._stuck_age_s)
        if self._on_stuck is not None:
            for job_id in failed:
                self._on_stuck(job_id)
        deleted = await cleanup_terminal_jobs(self._store, self._retention_s)
        return failed, deleted

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Maintenance sweep failed")
            await asyncio.sleep(self._interval_s)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name="genflow-maintenance")
            logger.info("Maintenance loop started (every %ss)", self._interval_s)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
