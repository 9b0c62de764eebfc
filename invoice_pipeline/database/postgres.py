"""
PostgreSQL ``JobStore`` on an asyncpg pool.

Status and phase changes are read-modify-write under ``SELECT ... FOR
UPDATE`` inside one transaction, so the state machine is checked against the
row as it is locked. Result writes are a single UPSERT whose COALESCE merge
keeps stored values for every column the update leaves as NULL.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import asyncpg

from invoice_pipeline.core.dates import utc_now
from invoice_pipeline.database.manager import DatabaseManager
from invoice_pipeline.models.job import (
    Job,
    JobResult,
    JobResultUpdate,
    JobStatus,
    ProcessingPhase,
    apply_phase,
    apply_status,
)

logger = logging.getLogger(__name__)

JOB_COLUMNS = (
    "id, client_id, status::text AS status, processing_phase, source_url, "
    "created_at, updated_at, completed_at, error_message"
)
RESULT_COLUMNS = (
    "id, job_id, extracted_data, confidence_score, tokens_used, raw_ocr_text, "
    "ocr_provider, ocr_duration_ms, ocr_pages, created_at"
)

INSERT_JOB_SQL = f"""
    INSERT INTO jobs (id, client_id, status, source_url, created_at, updated_at)
    VALUES ($1, $2, 'queued', $3, $4, $4)
    RETURNING {JOB_COLUMNS}
"""

SELECT_JOB_SQL = f"SELECT {JOB_COLUMNS} FROM jobs WHERE id = $1"

SELECT_JOB_FOR_UPDATE_SQL = f"SELECT {JOB_COLUMNS} FROM jobs WHERE id = $1 FOR UPDATE"

UPDATE_JOB_SQL = f"""
    UPDATE jobs
    SET status = $2::job_status,
        processing_phase = $3,
        completed_at = $4,
        error_message = $5,
        updated_at = $6
    WHERE id = $1
    RETURNING {JOB_COLUMNS}
"""

UPSERT_RESULT_SQL = f"""
    INSERT INTO job_results (
        id, job_id, extracted_data, confidence_score, tokens_used,
        raw_ocr_text, ocr_provider, ocr_duration_ms, ocr_pages
    )
    VALUES ($1, $2, $3::jsonb, $4, $5, $6, $7, $8, $9)
    ON CONFLICT (job_id) DO UPDATE SET
        extracted_data = COALESCE(EXCLUDED.extracted_data, job_results.extracted_data),
        confidence_score = COALESCE(EXCLUDED.confidence_score, job_results.confidence_score),
        tokens_used = COALESCE(EXCLUDED.tokens_used, job_results.tokens_used),
        raw_ocr_text = COALESCE(EXCLUDED.raw_ocr_text, job_results.raw_ocr_text),
        ocr_provider = COALESCE(EXCLUDED.ocr_provider, job_results.ocr_provider),
        ocr_duration_ms = COALESCE(EXCLUDED.ocr_duration_ms, job_results.ocr_duration_ms),
        ocr_pages = COALESCE(EXCLUDED.ocr_pages, job_results.ocr_pages)
    RETURNING {RESULT_COLUMNS}
"""

SELECT_RESULT_SQL = f"SELECT {RESULT_COLUMNS} FROM job_results WHERE job_id = $1"


def _job_from_row(row: Any) -> Job:
    return Job.model_validate(dict(row))


def _result_from_row(row: Any) -> JobResult:
    data = dict(row)
    if isinstance(data.get("extracted_data"), str):
        data["extracted_data"] = json.loads(data["extracted_data"])
    if data.get("confidence_score") is not None:
        data["confidence_score"] = float(data["confidence_score"])
    return JobResult.model_validate(data)


class PostgresJobStore:
    """Job store over the pool owned by a ``DatabaseManager``."""

    def __init__(self, db_manager: DatabaseManager):
        self._db = db_manager

    async def _pool(self) -> asyncpg.Pool:
        return await self._db.get_pool()

    async def create_job(self, source_url: str, client_id: Optional[str] = None) -> Job:
        pool = await self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(INSERT_JOB_SQL, uuid.uuid4(), client_id, source_url, utc_now())
        job = _job_from_row(row)
        logger.info("Job created", extra={"job_id": str(job.id)})
        return job

    async def get_job_by_id(self, job_id: UUID) -> Optional[Job]:
        pool = await self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SELECT_JOB_SQL, job_id)
        return _job_from_row(row) if row else None

    async def update_job_status(
        self,
        job_id: UUID,
        status: JobStatus,
        error_message: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> Optional[Job]:
        pool = await self._pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(SELECT_JOB_FOR_UPDATE_SQL, job_id)
                if row is None:
                    return None
                updated = apply_status(
                    _job_from_row(row),
                    status,
                    now=utc_now(),
                    error_message=error_message,
                    completed_at=completed_at,
                )
                row = await self._write_job(conn, updated)
        logger.info("Job status updated", extra={"job_id": str(job_id), "status": status.value})
        return _job_from_row(row)

    async def set_job_processing_phase(self, job_id: UUID, phase: ProcessingPhase) -> Optional[Job]:
        return await self._set_phase(job_id, phase)

    async def clear_job_processing_phase(self, job_id: UUID) -> Optional[Job]:
        return await self._set_phase(job_id, None)

    async def _set_phase(self, job_id: UUID, phase: Optional[ProcessingPhase]) -> Optional[Job]:
        pool = await self._pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(SELECT_JOB_FOR_UPDATE_SQL, job_id)
                if row is None:
                    return None
                updated = apply_phase(_job_from_row(row), phase, now=utc_now())
                row = await self._write_job(conn, updated)
        return _job_from_row(row)

    async def _write_job(self, conn: Any, job: Job) -> Any:
        return await conn.fetchrow(
            UPDATE_JOB_SQL,
            job.id,
            job.status.value,
            job.processing_phase.value if job.processing_phase else None,
            job.completed_at,
            job.error_message,
            job.updated_at,
        )

    async def upsert_job_result(self, update: JobResultUpdate) -> JobResult:
        extracted = json.dumps(update.extracted_data) if update.extracted_data is not None else None
        pool = await self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                UPSERT_RESULT_SQL,
                uuid.uuid4(),
                update.job_id,
                extracted,
                update.confidence_score,
                update.tokens_used,
                update.raw_ocr_text,
                update.ocr_provider,
                update.ocr_duration_ms,
                update.ocr_pages,
            )
        return _result_from_row(row)

    async def get_job_result(self, job_id: UUID) -> Optional[JobResult]:
        pool = await self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SELECT_RESULT_SQL, job_id)
        return _result_from_row(row) if row else None
