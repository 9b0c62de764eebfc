from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol
from uuid import UUID

from invoice_pipeline.models.job import (
    Job,
    JobResult,
    JobResultUpdate,
    JobStatus,
    ProcessingPhase,
)


class JobStore(Protocol):
    """Persistence contract for jobs and their results.

    ``update_job_status`` and ``upsert_job_result`` are atomic. The result
    upsert is a field-level merge: a ``None`` in the update never overwrites
    a stored value, so the OCR step and the extraction step can write the
    same row independently.
    """

    async def create_job(self, source_url: str, client_id: Optional[str] = None) -> Job: ...

    async def get_job_by_id(self, job_id: UUID) -> Optional[Job]: ...

    async def update_job_status(
        self,
        job_id: UUID,
        status: JobStatus,
        error_message: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> Optional[Job]: ...

    async def set_job_processing_phase(
        self, job_id: UUID, phase: ProcessingPhase
    ) -> Optional[Job]: ...

    async def clear_job_processing_phase(self, job_id: UUID) -> Optional[Job]: ...

    async def upsert_job_result(self, update: JobResultUpdate) -> JobResult: ...

    async def get_job_result(self, job_id: UUID) -> Optional[JobResult]: ...
