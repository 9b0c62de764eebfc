"""External service clients: OCR providers, the LLM client and the PDF fetcher."""

from invoice_pipeline.clients.base import (
    OcrInput,
    OcrProvider,
    ProviderMetadata,
    ProviderResult,
)
from invoice_pipeline.clients.factory import get_ocr_provider

__all__ = [
    "OcrInput",
    "OcrProvider",
    "ProviderMetadata",
    "ProviderResult",
    "get_ocr_provider",
]
