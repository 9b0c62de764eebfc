"""
OCR step: source URL -> provider -> raw text persisted on the job result.

Runs on its own; the only hand-off to the extraction step is the stored
result row. The returned payload is deliberately small and never contains
the OCR text.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional
from urllib.parse import urlsplit

from invoice_pipeline.clients.base import OcrInput, OcrProvider, ProviderResult
from invoice_pipeline.clients.documents import DocumentFetcher
from invoice_pipeline.core.config import MAX_SOURCE_URL_LENGTH
from invoice_pipeline.core.errors import ErrorCategory, PipelineError, ProviderError
from invoice_pipeline.core.logging_utils import redact_url
from invoice_pipeline.core.settings import OcrSettings
from invoice_pipeline.database.ports import JobStore
from invoice_pipeline.models.job import JobResultUpdate, JobStatus, ProcessingPhase
from invoice_pipeline.processors.failures import ensure_job_open, load_job, record_step_failure

logger = logging.getLogger(__name__)

UNKNOWN_DOCUMENT_TYPE = "could not determine document type"


def host_allowed(host: str, allowed_hosts: Iterable[str]) -> bool:
    host = host.lower().rstrip(".")
    return any(host == allowed or host.endswith(f".{allowed}") for allowed in allowed_hosts)


def validate_source_url(url: str, allowed_hosts: Iterable[str]) -> None:
    """
    Raises:
        PipelineError: ``validation`` if the URL is not https, too long, or
            not on an allowed host
    """
    if not url or len(url) > MAX_SOURCE_URL_LENGTH:
        raise PipelineError("Invalid source URL length", ErrorCategory.VALIDATION)
    try:
        parts = urlsplit(url)
    except ValueError as e:
        raise PipelineError("Malformed source URL", ErrorCategory.VALIDATION, cause=e) from e
    if parts.scheme != "https":
        raise PipelineError("Source URL must use https", ErrorCategory.VALIDATION)
    if not parts.hostname or not host_allowed(parts.hostname, allowed_hosts):
        raise PipelineError("Source URL host is not allowed", ErrorCategory.VALIDATION)


def validate_ocr_text(text: str, max_bytes: int) -> str:
    if not text or not text.strip():
        raise PipelineError("OCR returned empty text", ErrorCategory.VALIDATION)
    try:
        size = len(text.encode("utf-8"))
    except UnicodeEncodeError as e:
        raise PipelineError("OCR text is not valid UTF-8", ErrorCategory.VALIDATION, cause=e) from e
    if size > max_bytes:
        raise PipelineError(
            f"OCR text exceeds maximum size of {max_bytes} bytes", ErrorCategory.VALIDATION
        )
    return text


def _is_unknown_document_type(error: ProviderError) -> bool:
    if error.category is not ErrorCategory.VALIDATION:
        return False
    haystack = f"{error.message} {error.cause_message or ''}".lower()
    return UNKNOWN_DOCUMENT_TYPE in haystack


async def _extract(
    provider: OcrProvider,
    source_url: str,
    document: Optional[bytes],
    job_log: dict[str, Any],
) -> ProviderResult:
    try:
        return await provider.extract(OcrInput(source_url=source_url))
    except ProviderError as e:
        if document is None or not _is_unknown_document_type(e):
            raise
        logger.warning("Provider could not read URL; retrying with document bytes", extra=job_log)
    return await provider.extract(OcrInput(stream=document))


async def run_ocr_step(
    job_id: Any,
    *,
    store: JobStore,
    provider: OcrProvider,
    settings: OcrSettings,
    fetcher: Optional[DocumentFetcher] = None,
) -> dict[str, Any]:
    """Run OCR for one job and persist the raw text.

    With a ``fetcher``, the document is downloaded and checked (PDF type,
    size cap) before the provider is called, and the same bytes are sent if
    the provider cannot determine the document type from the URL.

    Returns:
        ``{"job_id", "status": "ocr_completed", "ocr": {provider, pages, duration_ms}}``

    Raises:
        PipelineError: Any categorized failure, after the job has been
            updated according to the step error policy
    """
    job = await load_job(store, job_id)
    ensure_job_open(job)
    job_log = {"job_id": str(job.id), "provider": provider.name, "host": redact_url(job.source_url)}
    logger.info("OCR step started", extra=job_log)

    try:
        validate_source_url(job.source_url, settings.allowed_pdf_hosts)
        await store.update_job_status(job.id, JobStatus.PROCESSING)
        await store.set_job_processing_phase(job.id, ProcessingPhase.ANALYZING_INVOICE)

        document = await fetcher.fetch(job.source_url) if fetcher is not None else None
        result = await _extract(provider, job.source_url, document, job_log)
        text = validate_ocr_text(result.text, settings.OCR_TEXT_MAX_BYTES)

        duration_ms = max(0, int(result.metadata.duration_ms))
        pages = max(0, int(result.metadata.pages)) if result.metadata.pages is not None else None
        await store.upsert_job_result(
            JobResultUpdate(
                job_id=job.id,
                raw_ocr_text=text,
                ocr_provider=result.metadata.provider,
                ocr_duration_ms=duration_ms,
                ocr_pages=pages,
            )
        )
    except PipelineError as e:
        await record_step_failure(store, job.id, e, step="ocr")
        raise

    logger.info(
        "OCR step completed",
        extra={**job_log, "duration_ms": duration_ms, "pages": pages, "trace_id": result.metadata.trace_id},
    )
    return {
        "job_id": str(job.id),
        "status": "ocr_completed",
        "ocr": {
            "provider": result.metadata.provider,
            "pages": pages,
            "duration_ms": duration_ms,
        },
    }
