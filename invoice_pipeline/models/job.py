"""Job and JobResult models plus the job state machine.

States: ``queued -> processing(phase) -> {completed, failed}``. Both terminal
states are absorbing; reprocessing creates a fresh job.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, model_validator


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class ProcessingPhase(str, Enum):
    ANALYZING_INVOICE = "analyzing_invoice"
    EXTRACTING_DATA = "extracting_data"
    VERIFYING_DATA = "verifying_data"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.PROCESSING, JobStatus.FAILED}),
    JobStatus.PROCESSING: frozenset(
        {JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED}
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class InvalidTransitionError(Exception):
    """Raised when a job status/phase change violates the state machine."""

    def __init__(self, job_id: Any, current: JobStatus, target: Any, reason: str = ""):
        self.job_id = job_id
        self.current = current
        self.target = target
        msg = f"Job {job_id}: cannot move from {current.value} to {getattr(target, 'value', target)}"
        super().__init__(f"{msg} ({reason})" if reason else msg)


def check_transition(
    job: "Job",
    target: JobStatus,
    error_message: Optional[str] = None,
) -> None:
    """Validate a status change before it is written.

    Raises:
        InvalidTransitionError: If ``target`` is not reachable from the
            job's current status, or the error message contract is broken.
    """
    if target not in ALLOWED_TRANSITIONS[job.status]:
        reason = "terminal state" if job.status.is_terminal else ""
        raise InvalidTransitionError(job.id, job.status, target, reason)
    if target is JobStatus.FAILED and not error_message:
        raise InvalidTransitionError(job.id, job.status, target, "failed requires an error message")
    if target is JobStatus.COMPLETED and error_message:
        raise InvalidTransitionError(job.id, job.status, target, "completed forbids an error message")


def check_phase_change(job: "Job", phase: Optional[ProcessingPhase]) -> None:
    if phase is not None and job.status is not JobStatus.PROCESSING:
        raise InvalidTransitionError(job.id, job.status, phase, "phase requires processing status")


class Job(BaseModel):
    """A single invoice processing job."""

    id: UUID
    client_id: Optional[str] = None
    status: JobStatus = JobStatus.QUEUED
    processing_phase: Optional[ProcessingPhase] = None
    source_url: str
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @model_validator(mode="after")
    def _check_invariants(self) -> "Job":
        if self.status.is_terminal != (self.completed_at is not None):
            raise ValueError("completed_at must be set iff status is terminal")
        if self.processing_phase is not None and self.status is not JobStatus.PROCESSING:
            raise ValueError("processing_phase requires status 'processing'")
        if self.status is JobStatus.FAILED and not self.error_message:
            raise ValueError("failed jobs require an error_message")
        if self.status is JobStatus.COMPLETED and self.error_message is not None:
            raise ValueError("completed jobs must not carry an error_message")
        return self


def apply_status(
    job: Job,
    target: JobStatus,
    *,
    now: datetime,
    error_message: Optional[str] = None,
    completed_at: Optional[datetime] = None,
) -> Job:
    """Return ``job`` moved to ``target``; the input is left untouched.

    Terminal statuses stamp ``completed_at`` (default ``now``) and clear the
    phase. ``processing`` clears ``completed_at`` and ``error_message``.
    """
    check_transition(job, target, error_message)
    changes: dict[str, Any] = {"status": target, "updated_at": now}
    if target.is_terminal:
        changes.update(
            completed_at=completed_at or now,
            processing_phase=None,
            error_message=error_message if target is JobStatus.FAILED else None,
        )
    else:
        changes.update(completed_at=None, error_message=None)
    return Job.model_validate({**job.model_dump(), **changes})


def apply_phase(job: Job, phase: Optional[ProcessingPhase], *, now: datetime) -> Job:
    check_phase_change(job, phase)
    return Job.model_validate({**job.model_dump(), "processing_phase": phase, "updated_at": now})


class JobResultUpdate(BaseModel):
    """Partial result write; ``None`` leaves the stored value untouched."""

    job_id: UUID
    extracted_data: Optional[dict[str, Any]] = None
    confidence_score: Optional[float] = None
    tokens_used: Optional[int] = None
    raw_ocr_text: Optional[str] = None
    ocr_provider: Optional[str] = None
    ocr_duration_ms: Optional[int] = None
    ocr_pages: Optional[int] = None


class JobResult(BaseModel):
    """Merged OCR and extraction output for one job."""

    id: UUID
    job_id: UUID
    extracted_data: Optional[dict[str, Any]] = None
    confidence_score: Optional[float] = None
    tokens_used: Optional[int] = None
    raw_ocr_text: Optional[str] = None
    ocr_provider: Optional[str] = None
    ocr_duration_ms: Optional[int] = None
    ocr_pages: Optional[int] = None
    created_at: datetime


RESULT_FIELDS = (
    "extracted_data",
    "confidence_score",
    "tokens_used",
    "raw_ocr_text",
    "ocr_provider",
    "ocr_duration_ms",
    "ocr_pages",
)
