"""
Extraction step: stored OCR text -> structured fields -> confidence score.

Reads only what the OCR step persisted, so it can run in a fresh process.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from invoice_pipeline.core.errors import ErrorCategory, PipelineError
from invoice_pipeline.database.ports import JobStore
from invoice_pipeline.models.job import JobResultUpdate, JobStatus, ProcessingPhase
from invoice_pipeline.processors.extractor import InvoiceExtractor
from invoice_pipeline.processors.failures import ensure_job_open, load_job, record_step_failure
from invoice_pipeline.processors.scoring import ConfidenceWeights, calculate_confidence

logger = logging.getLogger(__name__)


async def run_extraction_step(
    job_id: Any,
    *,
    store: JobStore,
    extractor: InvoiceExtractor,
    weights: Optional[ConfidenceWeights] = None,
) -> dict[str, Any]:
    """Extract invoice fields from the stored OCR text and complete the job.

    Returns:
        ``{"job_id", "status": "completed", "extraction": {fields, confidence_score, tokens_used}}``

    Raises:
        PipelineError: Any categorized failure, after the job has been
            updated according to the step error policy
    """
    job = await load_job(store, job_id)
    ensure_job_open(job)
    job_log = {"job_id": str(job.id)}
    logger.info("Extraction step started", extra=job_log)

    try:
        result = await store.get_job_result(job.id)
        if result is None or not result.raw_ocr_text:
            raise PipelineError("OCR text not available for job", ErrorCategory.VALIDATION)

        if job.status is not JobStatus.PROCESSING:
            await store.update_job_status(job.id, JobStatus.PROCESSING)
        await store.set_job_processing_phase(job.id, ProcessingPhase.EXTRACTING_DATA)
        outcome = await extractor.extract(result.raw_ocr_text)

        await store.set_job_processing_phase(job.id, ProcessingPhase.VERIFYING_DATA)
        score = calculate_confidence(outcome.fields, weights)
        await store.upsert_job_result(
            JobResultUpdate(
                job_id=job.id,
                extracted_data=outcome.extracted_data(),
                confidence_score=score,
                tokens_used=outcome.tokens_used,
            )
        )
        await store.update_job_status(job.id, JobStatus.COMPLETED)
    except PipelineError as e:
        await record_step_failure(store, job.id, e, step="extraction")
        raise

    logger.info(
        "Extraction step completed",
        extra={**job_log, "tokens": outcome.tokens_used, "duration_ms": outcome.duration_ms},
    )
    return {
        "job_id": str(job.id),
        "status": "completed",
        "extraction": {
            "fields": len(outcome.fields),
            "confidence_score": score,
            "tokens_used": outcome.tokens_used,
        },
    }
