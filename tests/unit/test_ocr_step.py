"""Unit tests for the OCR step."""

from __future__ import annotations

import uuid

import httpx
import pytest

from invoice_pipeline.clients.base import OcrInput, ProviderMetadata, ProviderResult
from invoice_pipeline.clients.documents import DocumentFetcher
from invoice_pipeline.core.errors import ErrorCategory, PipelineError, ProviderError
from invoice_pipeline.models.job import JobStatus, ProcessingPhase
from invoice_pipeline.processors.ocr_step import (
    run_ocr_step,
    validate_ocr_text,
    validate_source_url,
)
from tests.conftest import ALLOWED_URL, FakeClock

ALLOWED_HOSTS = ["s3.amazonaws.com", "amazonaws.com", "cloudfront.net"]


class FakeProvider:
    name = "internal"

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.inputs: list[OcrInput] = []

    async def extract(self, ocr_input: OcrInput) -> ProviderResult:
        self.inputs.append(ocr_input)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def ok(text="# Invoice 42", pages=2, duration_ms=1234.7) -> ProviderResult:
    return ProviderResult(
        text=text,
        metadata=ProviderMetadata(provider="internal", duration_ms=duration_ms, pages=pages, trace_id="t-1"),
    )


class TestRunOcrStep:
    """Happy path and error policy."""

    @pytest.mark.asyncio
    async def test_success_persists_text_and_returns_compact_payload(self, store, ocr_settings):
        job = await store.create_job(ALLOWED_URL)
        provider = FakeProvider(ok())

        payload = await run_ocr_step(job.id, store=store, provider=provider, settings=ocr_settings)

        assert payload == {
            "job_id": str(job.id),
            "status": "ocr_completed",
            "ocr": {"provider": "internal", "pages": 2, "duration_ms": 1234},
        }
        assert "Invoice 42" not in str(payload)

        result = await store.get_job_result(job.id)
        assert result.raw_ocr_text == "# Invoice 42"
        assert result.ocr_provider == "internal"
        assert result.ocr_duration_ms == 1234
        assert result.ocr_pages == 2
        assert result.extracted_data is None

        stored = await store.get_job_by_id(job.id)
        assert stored.status is JobStatus.PROCESSING
        assert stored.processing_phase is ProcessingPhase.ANALYZING_INVOICE
        assert provider.inputs == [OcrInput(source_url=ALLOWED_URL)]

    @pytest.mark.asyncio
    async def test_disallowed_host_fails_job_before_provider_call(self, store, ocr_settings):
        job = await store.create_job("https://evil.example.com/invoice.pdf")
        provider = FakeProvider()

        with pytest.raises(PipelineError) as exc_info:
            await run_ocr_step(job.id, store=store, provider=provider, settings=ocr_settings)

        assert exc_info.value.category is ErrorCategory.VALIDATION
        assert provider.inputs == []
        stored = await store.get_job_by_id(job.id)
        assert stored.status is JobStatus.FAILED
        assert stored.error_message == "Source URL host is not allowed"

    @pytest.mark.asyncio
    async def test_non_retryable_provider_error_fails_job(self, store, ocr_settings):
        job = await store.create_job(ALLOWED_URL)
        provider = FakeProvider(ProviderError("internal provider error: corrupt pdf", ErrorCategory.FAILED_STATUS))

        with pytest.raises(ProviderError):
            await run_ocr_step(job.id, store=store, provider=provider, settings=ocr_settings)

        stored = await store.get_job_by_id(job.id)
        assert stored.status is JobStatus.FAILED
        assert stored.error_message == "internal provider error: corrupt pdf"
        assert stored.completed_at is not None

    @pytest.mark.asyncio
    async def test_retryable_provider_error_leaves_job_processing(self, store, ocr_settings):
        job = await store.create_job(ALLOWED_URL)
        provider = FakeProvider(ProviderError("OCR timeout", ErrorCategory.TIMEOUT))

        with pytest.raises(ProviderError) as exc_info:
            await run_ocr_step(job.id, store=store, provider=provider, settings=ocr_settings)

        assert exc_info.value.retryable is True
        stored = await store.get_job_by_id(job.id)
        assert stored.status is JobStatus.PROCESSING
        assert stored.error_message is None

    @pytest.mark.asyncio
    async def test_rerun_after_retryable_failure_succeeds(self, store, ocr_settings):
        job = await store.create_job(ALLOWED_URL)
        provider = FakeProvider(ProviderError("503", ErrorCategory.SERVER), ok())

        with pytest.raises(ProviderError):
            await run_ocr_step(job.id, store=store, provider=provider, settings=ocr_settings)
        payload = await run_ocr_step(job.id, store=store, provider=provider, settings=ocr_settings)

        assert payload["status"] == "ocr_completed"

    @pytest.mark.asyncio
    async def test_oversized_text_is_validation_error(self, store, ocr_settings):
        job = await store.create_job(ALLOWED_URL)
        provider = FakeProvider(ok(text="x" * 2048))

        with pytest.raises(PipelineError) as exc_info:
            await run_ocr_step(job.id, store=store, provider=provider, settings=ocr_settings)

        assert exc_info.value.category is ErrorCategory.VALIDATION
        assert (await store.get_job_by_id(job.id)).status is JobStatus.FAILED
        assert await store.get_job_result(job.id) is None

    @pytest.mark.asyncio
    async def test_unknown_job(self, store, ocr_settings):
        with pytest.raises(PipelineError) as exc_info:
            await run_ocr_step(uuid.uuid4(), store=store, provider=FakeProvider(), settings=ocr_settings)

        assert exc_info.value.category is ErrorCategory.VALIDATION

    @pytest.mark.asyncio
    async def test_invalid_job_id(self, store, ocr_settings):
        with pytest.raises(PipelineError):
            await run_ocr_step("not-a-uuid", store=store, provider=FakeProvider(), settings=ocr_settings)

    @pytest.mark.asyncio
    async def test_rerun_on_completed_job_is_validation_error(self, store, ocr_settings):
        job = await store.create_job(ALLOWED_URL)
        await store.update_job_status(job.id, JobStatus.PROCESSING)
        await store.update_job_status(job.id, JobStatus.COMPLETED)
        provider = FakeProvider()

        with pytest.raises(PipelineError) as exc_info:
            await run_ocr_step(job.id, store=store, provider=provider, settings=ocr_settings)

        assert exc_info.value.category is ErrorCategory.VALIDATION
        assert exc_info.value.message == "Job is already completed"
        assert provider.inputs == []
        assert (await store.get_job_by_id(job.id)).status is JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_rerun_on_failed_job_keeps_original_error(self, store, ocr_settings):
        job = await store.create_job(ALLOWED_URL)
        await store.update_job_status(job.id, JobStatus.FAILED, error_message="corrupt pdf")

        with pytest.raises(PipelineError) as exc_info:
            await run_ocr_step(job.id, store=store, provider=FakeProvider(), settings=ocr_settings)

        assert exc_info.value.category is ErrorCategory.VALIDATION
        assert exc_info.value.retryable is False
        assert (await store.get_job_by_id(job.id)).error_message == "corrupt pdf"


class TestDocumentTypeFallback:
    """Retry with document bytes when the provider cannot read the URL."""

    @pytest.mark.asyncio
    async def test_falls_back_to_stream(self, store, ocr_settings):
        job = await store.create_job(ALLOWED_URL)
        rejection = ProviderError(
            "mistral http error 400",
            ErrorCategory.VALIDATION,
            cause_message="Could not determine document type",
        )
        provider = FakeProvider(rejection, ok())

        def pdf_handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"%PDF-1.7 body", headers={"content-type": "application/pdf"})

        fetcher = DocumentFetcher(transport=httpx.MockTransport(pdf_handler))

        payload = await run_ocr_step(
            job.id, store=store, provider=provider, settings=ocr_settings, fetcher=fetcher
        )

        assert payload["status"] == "ocr_completed"
        assert provider.inputs[1] == OcrInput(stream=b"%PDF-1.7 body")

    @pytest.mark.asyncio
    async def test_other_validation_errors_do_not_fall_back(self, store, ocr_settings):
        job = await store.create_job(ALLOWED_URL)
        provider = FakeProvider(ProviderError("bad request", ErrorCategory.VALIDATION))
        downloads = []

        def pdf_handler(request: httpx.Request) -> httpx.Response:
            downloads.append(request.url)
            return httpx.Response(200, content=b"%PDF", headers={"content-type": "application/pdf"})

        with pytest.raises(ProviderError):
            await run_ocr_step(
                job.id,
                store=store,
                provider=provider,
                settings=ocr_settings,
                fetcher=DocumentFetcher(transport=httpx.MockTransport(pdf_handler)),
            )

        assert len(provider.inputs) == 1
        assert len(downloads) == 1


class TestDocumentCheck:
    """PDF download and checks before the provider is called."""

    @staticmethod
    def _fetcher(handler, **kwargs) -> DocumentFetcher:
        return DocumentFetcher(transport=httpx.MockTransport(handler), clock=FakeClock(), **kwargs)

    @pytest.mark.asyncio
    async def test_non_pdf_fails_job_before_provider_call(self, store, ocr_settings):
        job = await store.create_job("https://invoices.s3.amazonaws.com/acme/invoice-001")
        provider = FakeProvider(ok())

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"<html>", headers={"content-type": "text/html"})

        with pytest.raises(ProviderError) as exc_info:
            await run_ocr_step(
                job.id, store=store, provider=provider, settings=ocr_settings, fetcher=self._fetcher(handler)
            )

        assert exc_info.value.category is ErrorCategory.VALIDATION
        assert provider.inputs == []
        stored = await store.get_job_by_id(job.id)
        assert stored.status is JobStatus.FAILED
        assert stored.error_message == "Downloaded document is not a PDF"

    @pytest.mark.asyncio
    async def test_oversized_pdf_fails_job(self, store, ocr_settings):
        job = await store.create_job(ALLOWED_URL)
        provider = FakeProvider(ok())

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"%PDF" + b"x" * 64, headers={"content-type": "application/pdf"})

        with pytest.raises(ProviderError):
            await run_ocr_step(
                job.id,
                store=store,
                provider=provider,
                settings=ocr_settings,
                fetcher=self._fetcher(handler, max_bytes=16),
            )

        assert provider.inputs == []
        assert (await store.get_job_by_id(job.id)).error_message == "PDF exceeds maximum size of 16 bytes"

    @pytest.mark.asyncio
    async def test_transient_download_error_is_retried(self, store, ocr_settings):
        job = await store.create_job(ALLOWED_URL)
        provider = FakeProvider(ok())
        responses = [
            httpx.Response(503),
            httpx.Response(200, content=b"%PDF", headers={"content-type": "application/pdf"}),
        ]

        def handler(request: httpx.Request) -> httpx.Response:
            return responses.pop(0)

        payload = await run_ocr_step(
            job.id, store=store, provider=provider, settings=ocr_settings, fetcher=self._fetcher(handler)
        )

        assert payload["status"] == "ocr_completed"
        assert provider.inputs == [OcrInput(source_url=ALLOWED_URL)]


class TestValidation:
    """Source URL and OCR text checks."""

    @pytest.mark.parametrize(
        "url",
        [
            "https://s3.amazonaws.com/bucket/a.pdf",
            "https://bucket.s3.us-east-1.amazonaws.com/a.pdf",
            "https://d111111abcdef8.cloudfront.net/a.pdf",
        ],
    )
    def test_allowed_urls(self, url):
        validate_source_url(url, ALLOWED_HOSTS)

    @pytest.mark.parametrize(
        "url",
        [
            "http://s3.amazonaws.com/bucket/a.pdf",
            "https://notamazonaws.com/a.pdf",
            "https://example.com/a.pdf",
            "https://s3.amazonaws.com/" + "a" * 2048,
            "",
        ],
    )
    def test_rejected_urls(self, url):
        with pytest.raises(PipelineError) as exc_info:
            validate_source_url(url, ALLOWED_HOSTS)
        assert exc_info.value.category is ErrorCategory.VALIDATION

    def test_text_rules(self):
        assert validate_ocr_text("ok", 10) == "ok"
        for bad in ("", "   ", "\ud800", "x" * 11):
            with pytest.raises(PipelineError):
                validate_ocr_text(bad, 10)
