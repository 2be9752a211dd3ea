"""Per-job change notification for live subscriptions."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from genflow.jobs.models import JobSnapshot

logger = logging.getLogger(__name__)


class ChangeFeed:
    """Fan published snapshots out to every open subscription of a job id.

    Queues are unbounded; each subscriber drains its own queue, so a slow
    reader never blocks the writer.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)

    def open(self, job_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers[job_id].add(queue)
        return queue

    def close(self, job_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(job_id)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            self._subscribers.pop(job_id, None)

    def publish(self, snapshot: JobSnapshot) -> None:
        for queue in list(self._subscribers.get(snapshot.job_id, ())):
            queue.put_nowait(snapshot)
