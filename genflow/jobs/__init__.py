"""Generation job records, storage and retrieval."""

from genflow.jobs.models import GenerationJob, JobKind, JobSnapshot, JobStatus
from genflow.jobs.store import JobStore, build_job_store, new_job_id

__all__ = ["GenerationJob", "JobKind", "JobSnapshot", "JobStatus", "JobStore", "build_job_store", "new_job_id"]
