"""Generation job storage: in-memory, file-based or Postgres, with live subscriptions."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import uuid
from collections import defaultdict
from collections.abc import AsyncIterator, Iterable
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from genflow.config import Settings
from genflow.errors import JobNotFoundError
from genflow.jobs.feed import ChangeFeed
from genflow.jobs.models import (
    ACTIVE_STATUSES,
    GenerationJob,
    JobKind,
    JobSnapshot,
    JobStatus,
    apply_patch,
    to_snapshot,
)

logger = logging.getLogger(__name__)


class JobStore(Protocol):
    async def create(self, job: GenerationJob) -> GenerationJob: ...
    async def get(self, job_id: str) -> GenerationJob | None: ...
    async def patch(self, job_id: str, changes: dict[str, Any]) -> GenerationJob: ...
    def subscribe(self, job_id: str) -> AsyncIterator[JobSnapshot]: ...
    async def list_by_owner(
        self, owner_id: str, kind: JobKind | None = None, active_only: bool = False,
    ) -> list[GenerationJob]: ...
    async def list_by_status(self, statuses: Iterable[JobStatus]) -> list[GenerationJob]: ...
    async def delete(self, job_id: str) -> None: ...


class BaseJobStore:
    """Shared patch/subscribe behaviour; subclasses provide persistence."""

    def __init__(self, feed: ChangeFeed | None = None):
        self._feed = feed or ChangeFeed()
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # -- persistence hooks ------------------------------------------------

    async def _insert(self, job: GenerationJob) -> None:
        raise NotImplementedError

    async def _load(self, job_id: str) -> GenerationJob | None:
        raise NotImplementedError

    async def _save(self, job: GenerationJob) -> None:
        raise NotImplementedError

    async def _remove(self, job_id: str) -> None:
        raise NotImplementedError

    async def _all(self) -> list[GenerationJob]:
        raise NotImplementedError

    # -- public API -------------------------------------------------------

    async def create(self, job: GenerationJob) -> GenerationJob:
        await self._insert(job)
        self._feed.publish(to_snapshot(job))
        return job

    async def get(self, job_id: str) -> GenerationJob | None:
        return await self._load(job_id)

    async def patch(self, job_id: str, changes: dict[str, Any]) -> GenerationJob:
        """Apply *changes* atomically: either the whole patch lands or nothing does."""
        async with self._locks[job_id]:
            job = await self._load(job_id)
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            updated = apply_patch(job, changes)
            await self._save(updated)
        self._feed.publish(to_snapshot(updated))
        return updated

    async def subscribe(self, job_id: str) -> AsyncIterator[JobSnapshot]:
        """Yield the current snapshot, then every change, ending after a terminal one."""
        queue = self._feed.open(job_id)
        try:
            job = await self._load(job_id)
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            last_version = job.version
            snapshot = to_snapshot(job)
            yield snapshot
            while not snapshot.is_terminal:
                snapshot = await queue.get()
                if snapshot.version <= last_version:
                    continue
                last_version = snapshot.version
                yield snapshot
        finally:
            self._feed.close(job_id, queue)

    async def list_by_owner(
        self,
        owner_id: str,
        kind: JobKind | None = None,
        active_only: bool = False,
    ) -> list[GenerationJob]:
        jobs = [j for j in await self._all() if j.owner_id == owner_id]
        if kind is not None:
            jobs = [j for j in jobs if j.kind == kind]
        if active_only:
            jobs = [j for j in jobs if j.status in ACTIVE_STATUSES]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    async def list_by_status(self, statuses: Iterable[JobStatus]) -> list[GenerationJob]:
        wanted = set(statuses)
        return [j for j in await self._all() if j.status in wanted]

    async def delete(self, job_id: str) -> None:
        async with self._locks[job_id]:
            await self._remove(job_id)
        self._locks.pop(job_id, None)


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------

class InMemoryJobStore(BaseJobStore):
    """Process-local store. Jobs are lost on restart."""

    def __init__(self, feed: ChangeFeed | None = None):
        super().__init__(feed)
        self._jobs: dict[str, GenerationJob] = {}

    async def _insert(self, job: GenerationJob) -> None:
        if job.job_id in self._jobs:
            raise ValueError(f"Job already exists: {job.job_id}")
        self._jobs[job.job_id] = job

    async def _load(self, job_id: str) -> GenerationJob | None:
        return self._jobs.get(job_id)

    async def _save(self, job: GenerationJob) -> None:
        self._jobs[job.job_id] = job

    async def _remove(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)

    async def _all(self) -> list[GenerationJob]:
        return list(self._jobs.values())

    def __len__(self) -> int:  # pragma: no cover - trivial
        return len(self._jobs)


# ---------------------------------------------------------------------------
# File-based implementation
# ---------------------------------------------------------------------------

class FileJobStore(BaseJobStore):
    """Persist jobs as JSON files. Survives restarts within same data dir."""

    def __init__(self, data_dir: Path, feed: ChangeFeed | None = None):
        super().__init__(feed)
        self._dir = Path(data_dir) / "jobs"
        self._dir.mkdir(parents=True, exist_ok=True)

    def _job_path(self, job_id: str) -> Path:
        return self._dir / f"{job_id}.json"

    async def _insert(self, job: GenerationJob) -> None:
        await asyncio.to_thread(self._insert_sync, job)

    async def _load(self, job_id: str) -> GenerationJob | None:
        return await asyncio.to_thread(self._load_sync, job_id)

    async def _save(self, job: GenerationJob) -> None:
        await asyncio.to_thread(self._write_job, job)

    async def _remove(self, job_id: str) -> None:
        await asyncio.to_thread(self._job_path(job_id).unlink, missing_ok=True)

    async def _all(self) -> list[GenerationJob]:
        return await asyncio.to_thread(self._scan)

    def _insert_sync(self, job: GenerationJob) -> None:
        if self._job_path(job.job_id).exists():
            raise ValueError(f"Job already exists: {job.job_id}")
        self._write_job(job)

    def _load_sync(self, job_id: str) -> GenerationJob | None:
        path = self._job_path(job_id)
        if not path.exists():
            return None
        return self._read_job(path)

    def _scan(self) -> list[GenerationJob]:
        jobs = []
        for path in self._dir.glob("job_*.json"):
            try:
                jobs.append(self._read_job(path))
            except (OSError, ValueError) as e:
                logger.warning("Skipping unreadable job file %s: %s", path.name, e)
        return jobs

    def _write_job(self, job: GenerationJob) -> None:
        # Write-then-rename so readers never see a half-written document
        path = self._job_path(job.job_id)
        tmp = path.with_suffix(".json.tmp")
        data = job.model_dump(mode="json")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
        os.replace(tmp, path)

    def _read_job(self, path: Path) -> GenerationJob:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return GenerationJob.model_validate(data)


# ---------------------------------------------------------------------------
# Postgres implementation
# ---------------------------------------------------------------------------

class PostgresJobStore(BaseJobStore):
    """Persist jobs in Postgres as JSONB documents. Survives restarts.

    Change notification is in-process only: subscribers must be served by
    the instance that owns the job.
    """

    def __init__(self, database_url: str, feed: ChangeFeed | None = None):
        super().__init__(feed)
        self._url = database_url
        self._conn = self._connect()

    def _connect(self):
        try:
            import psycopg
        except ImportError:
            raise ImportError(
                "psycopg required for Postgres job store. pip install 'psycopg[binary]'"
            )
        conn = psycopg.connect(self._url, autocommit=True)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS genflow_jobs (
                job_id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                status TEXT NOT NULL,
                document JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_genflow_jobs_owner
            ON genflow_jobs (owner_id, kind, status)
        """)
        return conn

    @staticmethod
    def _row_values(job: GenerationJob) -> tuple:
        return (
            job.owner_id,
            JobKind(job.kind).value,
            job.status.value,
            json.dumps(job.model_dump(mode="json"), default=str),
            job.created_at,
            job.updated_at,
        )

    @staticmethod
    def _row_to_job(row) -> GenerationJob:
        document = row[0] if isinstance(row[0], dict) else json.loads(row[0])
        return GenerationJob.model_validate(document)

    def _execute(self, sql: str, params: tuple = ()):
        return self._conn.execute(sql, params)

    async def _insert(self, job: GenerationJob) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO genflow_jobs
            (owner_id, kind, status, document, created_at, updated_at, job_id)
            VALUES (%s, %s, %s, %s::jsonb, %s, %s, %s)
            """,
            self._row_values(job) + (job.job_id,),
        )

    async def _load(self, job_id: str) -> GenerationJob | None:
        cur = await asyncio.to_thread(
            self._execute, "SELECT document FROM genflow_jobs WHERE job_id = %s", (job_id,),
        )
        row = cur.fetchone()
        return self._row_to_job(row) if row else None

    async def _save(self, job: GenerationJob) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE genflow_jobs SET
                owner_id = %s, kind = %s, status = %s, document = %s::jsonb,
                created_at = %s, updated_at = %s
            WHERE job_id = %s
            """,
            self._row_values(job) + (job.job_id,),
        )

    async def _remove(self, job_id: str) -> None:
        await asyncio.to_thread(self._execute, "DELETE FROM genflow_jobs WHERE job_id = %s", (job_id,))

    async def _all(self) -> list[GenerationJob]:
        cur = await asyncio.to_thread(self._execute, "SELECT document FROM genflow_jobs")
        return [self._row_to_job(row) for row in cur.fetchall()]

    async def list_by_status(self, statuses: Iterable[JobStatus]) -> list[GenerationJob]:
        values = [JobStatus(s).value for s in statuses]
        cur = await asyncio.to_thread(
            self._execute,
            "SELECT document FROM genflow_jobs WHERE status = ANY(%s)",
            (values,),
        )
        return [self._row_to_job(row) for row in cur.fetchall()]


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def build_job_store(settings: Settings) -> JobStore:
    """Build the job store named by settings (Postgres falls back to file)."""
    backend = settings.genflow_job_store.lower()
    if backend == "memory":
        logger.info("Using in-memory job store")
        return InMemoryJobStore()
    if backend == "postgres" or settings.genflow_database_url:
        if settings.genflow_database_url:
            try:
                store = PostgresJobStore(settings.genflow_database_url)
                logger.info("Using Postgres job store")
                return store
            except Exception as e:
                logger.warning("Postgres job store failed (%s), falling back to file store", e)
        else:
            logger.warning("GENFLOW_JOB_STORE=postgres but no database URL; using file store")
    logger.info("Using file-based job store (GENFLOW_DATA_DIR/jobs)")
    return FileJobStore(settings.data_dir)


def new_job_id() -> str:
    return f"job_{uuid.uuid4().hex[:16]}"


def is_older_than(job: GenerationJob, cutoff: datetime) -> bool:
    return job.updated_at < cutoff
