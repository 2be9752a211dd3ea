"""Generation job API.

POST /api/owners/{owner_id}/jobs
  → Validates params, supersedes the owner's active job of the same kind and
    returns { job_id, status } immediately; the job runs in the background.

GET /api/jobs/{job_id}
  → Latest snapshot (status, currentStep, screens counters, failedUnits,
    error, progressPercentage, timestamps).

GET /api/jobs/{job_id}/events
  → Server-Sent Events: current snapshot, then every change, closing after
    the terminal one.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from genflow.errors import JobNotFoundError, NotFoundError, ValidationError
from genflow.jobs.models import JobSnapshot, JobStatus

logger = logging.getLogger(__name__)
router = APIRouter()


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class JobCreateRequest(BaseModel):
    kind: str
    params: dict[str, Any] = Field(default_factory=dict)


class JobCreateResponse(BaseModel):
    job_id: str
    status: JobStatus = JobStatus.PENDING


def _snapshot_json(snapshot: JobSnapshot) -> dict[str, Any]:
    return snapshot.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post(
    "/owners/{owner_id}/jobs",
    response_model=JobCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_job(request: Request, owner_id: str, body: JobCreateRequest):
    """Submit a generation job for an owner."""
    orchestrator = request.app.state.orchestrator
    try:
        job_id = await orchestrator.submit(owner_id, body.kind, body.params)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail={"message": str(e), "errors": e.details})
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return JobCreateResponse(job_id=job_id)


@router.get("/owners/{owner_id}/jobs")
async def list_jobs(
    request: Request,
    owner_id: str,
    kind: str | None = Query(default=None),
    active: bool = Query(default=False),
):
    """Jobs of an owner, newest first."""
    orchestrator = request.app.state.orchestrator
    try:
        snapshots = await orchestrator.list_jobs(owner_id, kind, active)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [_snapshot_json(s) for s in snapshots]


@router.get("/jobs/{job_id}")
async def get_job(request: Request, job_id: str):
    snapshot = await request.app.state.orchestrator.get_job(job_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return _snapshot_json(snapshot)


@router.get("/jobs/{job_id}/events")
async def job_events(request: Request, job_id: str):
    """Live subscription as Server-Sent Events."""
    orchestrator = request.app.state.orchestrator
    if await orchestrator.get_job(job_id) is None:
        raise HTTPException(status_code=404, detail="Job not found")

    async def event_stream() -> AsyncIterator[str]:
        try:
            async for snapshot in orchestrator.subscribe(job_id):
                event = "done" if snapshot.is_terminal else "snapshot"
                yield f"id: {snapshot.version}\n"
                yield f"event: {event}\n"
                yield f"data: {snapshot.model_dump_json(by_alias=True)}\n\n"
        except JobNotFoundError:
            yield "event: error\ndata: {\"detail\": \"Job not found\"}\n\n"

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(request: Request, job_id: str):
    """Best-effort cancel; calling it on a finished job is a no-op."""
    try:
        ack = await request.app.state.orchestrator.cancel(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    return ack.model_dump(mode="json", by_alias=True)
