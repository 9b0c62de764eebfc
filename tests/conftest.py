"""Shared test fixtures."""

import pytest

from invoice_pipeline.core.settings import OcrSettings
from invoice_pipeline.database.memory import InMemoryJobStore

ALLOWED_URL = "https://invoices.s3.amazonaws.com/acme/invoice-001.pdf"


class FakeClock:
    """Simulated monotonic clock; ``sleep`` advances time instantly."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ZeroRandom:
    """Jitter source that always returns 0."""

    def random(self) -> float:
        return 0.0


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def ocr_settings() -> OcrSettings:
    return OcrSettings(
        OCR_PROVIDER="internal",
        INTERNAL_OCR_URL="https://docling.internal/v1/convert/source",
        ALLOWED_PDF_HOSTS="s3.amazonaws.com,amazonaws.com,cloudfront.net",
        OCR_TEXT_MAX_BYTES=1024,
    )
