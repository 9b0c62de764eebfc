"""Unit tests for the scheduler-facing entry points."""

import pytest

from invoice_pipeline import handlers
from invoice_pipeline.clients.base import ProviderMetadata, ProviderResult
from invoice_pipeline.core.errors import ErrorCategory, PipelineError
from invoice_pipeline.core.settings import AppSettings
from invoice_pipeline.models.job import JobStatus
from tests.conftest import ALLOWED_URL


class FakeDatabaseManager:
    opened = 0
    closed = 0

    async def __aenter__(self):
        FakeDatabaseManager.opened += 1
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        FakeDatabaseManager.closed += 1


class StaticProvider:
    name = "internal"

    async def extract(self, ocr_input):
        return ProviderResult(
            text="# Invoice", metadata=ProviderMetadata(provider="internal", duration_ms=10, pages=1)
        )


class StaticFetcher:
    def __init__(self):
        self.urls = []

    async def fetch(self, url):
        self.urls.append(url)
        return b"%PDF-1.7"


@pytest.fixture
def wired(monkeypatch, store):
    FakeDatabaseManager.opened = FakeDatabaseManager.closed = 0
    monkeypatch.setattr(handlers.DatabaseManager, "from_settings", classmethod(lambda cls, s: FakeDatabaseManager()))
    monkeypatch.setattr(handlers, "PostgresJobStore", lambda db: store)
    monkeypatch.setattr(handlers, "get_ocr_provider", lambda settings: StaticProvider())
    monkeypatch.setattr(handlers, "DocumentFetcher", StaticFetcher)
    return store


APP = AppSettings(LOG_LEVEL="INFO", LOG_JSON=False)


@pytest.mark.asyncio
async def test_ocr_event_runs_ocr_step(wired, ocr_settings):
    job = await wired.create_job(ALLOWED_URL)

    payload = await handlers.handle_ocr_event(
        {"jobId": str(job.id), "pdfUrl": ALLOWED_URL}, ocr_settings=ocr_settings, app_settings=APP
    )

    assert payload["status"] == "ocr_completed"
    assert (await wired.get_job_result(job.id)).raw_ocr_text == "# Invoice"
    assert FakeDatabaseManager.opened == FakeDatabaseManager.closed == 1


@pytest.mark.asyncio
async def test_missing_job_id_is_validation_error(wired, ocr_settings):
    with pytest.raises(PipelineError) as exc_info:
        await handlers.handle_ocr_event({}, ocr_settings=ocr_settings, app_settings=APP)

    assert exc_info.value.category is ErrorCategory.VALIDATION


@pytest.mark.asyncio
async def test_pool_is_closed_when_step_fails(wired, ocr_settings):
    job = await wired.create_job("https://example.com/a.pdf")

    with pytest.raises(PipelineError):
        await handlers.handle_ocr_event({"jobId": str(job.id)}, ocr_settings=ocr_settings, app_settings=APP)

    assert FakeDatabaseManager.closed == 1
    assert (await wired.get_job_by_id(job.id)).status is JobStatus.FAILED
