"""In-process ``JobStore`` for local runs and tests."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Optional
from uuid import UUID

from invoice_pipeline.core.dates import utc_now
from invoice_pipeline.models.job import (
    RESULT_FIELDS,
    Job,
    JobResult,
    JobResultUpdate,
    JobStatus,
    ProcessingPhase,
    apply_phase,
    apply_status,
)

logger = logging.getLogger(__name__)


class InMemoryJobStore:
    """Dict-backed store; one lock serializes every mutation."""

    def __init__(self) -> None:
        self._jobs: dict[UUID, Job] = {}
        self._results: dict[UUID, JobResult] = {}
        self._lock = asyncio.Lock()

    async def create_job(self, source_url: str, client_id: Optional[str] = None) -> Job:
        now = utc_now()
        job = Job(
            id=uuid.uuid4(),
            client_id=client_id,
            source_url=source_url,
            created_at=now,
            updated_at=now,
        )
        async with self._lock:
            self._jobs[job.id] = job
        return job

    async def get_job_by_id(self, job_id: UUID) -> Optional[Job]:
        return self._jobs.get(job_id)

    async def update_job_status(
        self,
        job_id: UUID,
        status: JobStatus,
        error_message: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> Optional[Job]:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            updated = apply_status(
                job, status, now=utc_now(), error_message=error_message, completed_at=completed_at
            )
            self._jobs[job_id] = updated
        logger.info("Job status updated", extra={"job_id": str(job_id), "status": status.value})
        return updated

    async def set_job_processing_phase(self, job_id: UUID, phase: ProcessingPhase) -> Optional[Job]:
        return await self._set_phase(job_id, phase)

    async def clear_job_processing_phase(self, job_id: UUID) -> Optional[Job]:
        return await self._set_phase(job_id, None)

    async def _set_phase(self, job_id: UUID, phase: Optional[ProcessingPhase]) -> Optional[Job]:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            updated = apply_phase(job, phase, now=utc_now())
            self._jobs[job_id] = updated
        return updated

    async def upsert_job_result(self, update: JobResultUpdate) -> JobResult:
        async with self._lock:
            existing = self._results.get(update.job_id)
            if existing is None:
                merged = JobResult(
                    id=uuid.uuid4(),
                    job_id=update.job_id,
                    created_at=utc_now(),
                    **{name: getattr(update, name) for name in RESULT_FIELDS},
                )
            else:
                changes = {
                    name: getattr(update, name)
                    for name in RESULT_FIELDS
                    if getattr(update, name) is not None
                }
                merged = existing.model_copy(update=changes)
            self._results[update.job_id] = merged
        return merged

    async def get_job_result(self, job_id: UUID) -> Optional[JobResult]:
        return self._results.get(job_id)
