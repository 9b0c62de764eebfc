"""OCR provider selection keyed on ``OCR_PROVIDER``."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from invoice_pipeline.clients.base import OcrProvider
from invoice_pipeline.clients.docling import DoclingConfig, DoclingProvider
from invoice_pipeline.clients.mistral import MistralConfig, MistralProvider
from invoice_pipeline.core.errors import ErrorCategory, ProviderError
from invoice_pipeline.core.settings import OcrSettings
from invoice_pipeline.resilience import Clock

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("internal", "mistral")


def get_ocr_provider(
    settings: OcrSettings,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Optional[Clock] = None,
) -> OcrProvider:
    """Build the configured OCR provider.

    Raises:
        ProviderError: ``validation`` for an unknown provider id or missing
            provider configuration
    """
    provider_id = (settings.OCR_PROVIDER or "internal").strip().lower()

    if provider_id == "internal":
        return DoclingProvider(DoclingConfig.from_settings(settings), transport=transport, clock=clock)
    if provider_id == "mistral":
        return MistralProvider(MistralConfig.from_settings(settings), transport=transport, clock=clock)

    logger.error("Unknown OCR provider", extra={"provider": provider_id})
    raise ProviderError(
        f"Unsupported OCR provider: {provider_id} (expected one of {', '.join(SUPPORTED_PROVIDERS)})",
        ErrorCategory.VALIDATION,
        provider=provider_id,
    )
