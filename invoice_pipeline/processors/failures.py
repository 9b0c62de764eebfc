"""
Error policy shared by the processing steps.

- Non-retryable errors: the job is marked ``failed`` with the error message
- Retryable errors: the job stays ``processing`` so the scheduler can re-run
  the step

The error is always re-raised by the caller.
"""

import logging
from typing import Any
from uuid import UUID

from invoice_pipeline.core.errors import ErrorCategory, PipelineError
from invoice_pipeline.database.ports import JobStore
from invoice_pipeline.models.job import InvalidTransitionError, Job, JobStatus

logger = logging.getLogger(__name__)


def parse_job_id(job_id: Any) -> UUID:
    try:
        return job_id if isinstance(job_id, UUID) else UUID(str(job_id))
    except ValueError as e:
        raise PipelineError("Invalid job id", ErrorCategory.VALIDATION, cause=e) from e


async def load_job(store: JobStore, job_id: Any) -> Job:
    job = await store.get_job_by_id(parse_job_id(job_id))
    if job is None:
        raise PipelineError("Job not found", ErrorCategory.VALIDATION)
    return job


async def record_step_failure(store: JobStore, job_id: UUID, error: PipelineError, *, step: str) -> None:
    log_extra = {
        "job_id": str(job_id),
        "category": error.category.value,
        "provider": error.provider,
        "trace_id": error.trace_id,
        "http_status": error.status_code,
        "phase": step,
    }
    if error.retryable:
        logger.warning(f"{step} step failed with a retryable error; job left processing", extra=log_extra)
        return

    logger.error(f"{step} step failed: {error.message}", extra=log_extra)
    try:
        await store.update_job_status(job_id, JobStatus.FAILED, error_message=error.message)
    except InvalidTransitionError:
        logger.warning("Job already terminal; failure not recorded", extra=log_extra)


def ensure_job_open(job: Job) -> None:
    """
    Raises:
        PipelineError: ``validation`` if the job already reached ``completed``
            or ``failed``; a finished job is never reprocessed in place
    """
    if job.status.is_terminal:
        raise PipelineError(f"Job is already {job.status.value}", ErrorCategory.VALIDATION)
