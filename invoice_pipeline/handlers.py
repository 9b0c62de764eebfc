"""
Scheduler-facing entry points.

Each handler loads settings from the environment, opens its own database
pool, runs one step and closes the pool again, so the two steps share no
in-process state. Errors propagate to the scheduler, which owns retries.

Event shape: ``{"jobId": "<uuid>", "pdfUrl": "<optional>"}``. The URL stored
on the job is authoritative; ``pdfUrl`` is accepted for compatibility.
"""

import logging
from typing import Any, Optional

from invoice_pipeline.clients.documents import DocumentFetcher
from invoice_pipeline.clients.factory import get_ocr_provider
from invoice_pipeline.core.errors import ErrorCategory, PipelineError
from invoice_pipeline.core.logging_config import configure_structured_logging
from invoice_pipeline.core.logging_utils import redact_url
from invoice_pipeline.core.settings import AppSettings, DatabaseSettings, LLMSettings, OcrSettings
from invoice_pipeline.database.manager import DatabaseManager
from invoice_pipeline.database.postgres import PostgresJobStore
from invoice_pipeline.processors.extraction_step import run_extraction_step
from invoice_pipeline.processors.extractor import InvoiceExtractor
from invoice_pipeline.processors.ocr_step import run_ocr_step

logger = logging.getLogger(__name__)


def _job_id_from(event: Any) -> str:
    job_id = event.get("jobId") if isinstance(event, dict) else None
    if not job_id:
        raise PipelineError("Event is missing jobId", ErrorCategory.VALIDATION)
    return str(job_id)


def _configure_logging(app_settings: Optional[AppSettings]) -> None:
    app_settings = app_settings or AppSettings()
    configure_structured_logging(app_settings.LOG_LEVEL, app_settings.LOG_JSON)


async def handle_ocr_event(
    event: dict[str, Any],
    *,
    ocr_settings: Optional[OcrSettings] = None,
    db_settings: Optional[DatabaseSettings] = None,
    app_settings: Optional[AppSettings] = None,
) -> dict[str, Any]:
    _configure_logging(app_settings)
    job_id = _job_id_from(event)
    if event.get("pdfUrl"):
        logger.info("OCR event received", extra={"job_id": job_id, "host": redact_url(event["pdfUrl"])})

    ocr_settings = ocr_settings or OcrSettings()
    provider = get_ocr_provider(ocr_settings)
    async with DatabaseManager.from_settings(db_settings or DatabaseSettings()) as db:
        return await run_ocr_step(
            job_id,
            store=PostgresJobStore(db),
            provider=provider,
            settings=ocr_settings,
            fetcher=DocumentFetcher(),
        )


async def handle_extraction_event(
    event: dict[str, Any],
    *,
    llm_settings: Optional[LLMSettings] = None,
    db_settings: Optional[DatabaseSettings] = None,
    app_settings: Optional[AppSettings] = None,
) -> dict[str, Any]:
    _configure_logging(app_settings)
    job_id = _job_id_from(event)

    extractor = InvoiceExtractor.from_settings(llm_settings or LLMSettings())
    async with DatabaseManager.from_settings(db_settings or DatabaseSettings()) as db:
        return await run_extraction_step(job_id, store=PostgresJobStore(db), extractor=extractor)
