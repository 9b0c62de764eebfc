"""Single request/response OCR adapter for a Docling deployment.

Contract:
- POST {endpoint} with ``{"options": {...}, "sources": [{"kind": "http", "url": ...}]}``
- Response ``{"status": "success"|"error", "document": {...}, "errors": [...]}``

A 2xx response whose ``status`` is not ``success`` is a ``failed_status``
error: transport success does not imply task success.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from invoice_pipeline.clients.base import (
    OcrInput,
    ProviderMetadata,
    ProviderResult,
    optional_int,
    provider_detail,
    safe_text,
    strip_image_links,
    trace_id_from,
)
from invoice_pipeline.core.config import OCR_CLIENT_TIMEOUT_SECONDS
from invoice_pipeline.core.dates import elapsed_ms
from invoice_pipeline.core.errors import (
    ErrorCategory,
    ProviderError,
    map_status_to_category,
    map_transport_error,
)
from invoice_pipeline.core.settings import OcrSettings
from invoice_pipeline.resilience import Clock, SystemClock

logger = logging.getLogger(__name__)

PROVIDER_NAME = "internal"

DEFAULT_OPTIONS: dict[str, Any] = {
    "from_formats": ["pdf"],
    "to_formats": ["md"],
    "image_export_mode": "placeholder",
    "do_ocr": True,
    "force_ocr": True,
    "ocr_engine": "rapidocr",
    "ocr_lang": ["en"],
    "pdf_backend": "dlparse_v2",
    "table_mode": "fast",
    "abort_on_error": False,
    "return_as_file": False,
    "return_chunks": False,
}

# Probed in order; the first non-blank one wins
CONTENT_FIELDS = ("md_content", "text_content", "html_content", "doctags_content")


def resolve_options(override_json: Optional[str]) -> dict[str, Any]:
    """Merge a JSON object override on top of the default options."""
    if not override_json:
        return dict(DEFAULT_OPTIONS)
    try:
        parsed = json.loads(override_json)
    except json.JSONDecodeError:
        logger.warning("Ignoring invalid OCR options override (not JSON)", extra={"provider": PROVIDER_NAME})
        return dict(DEFAULT_OPTIONS)
    if not isinstance(parsed, dict):
        logger.warning("Ignoring invalid OCR options override (not an object)", extra={"provider": PROVIDER_NAME})
        return dict(DEFAULT_OPTIONS)
    return {**DEFAULT_OPTIONS, **parsed}


def resolve_content(document: dict[str, Any]) -> str:
    for key in CONTENT_FIELDS:
        value = document.get(key)
        if isinstance(value, str) and value.strip():
            return safe_text(value)
    return ""


@dataclass(frozen=True)
class DoclingConfig:
    endpoint: str
    options: dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_OPTIONS))
    strip_image_links: bool = False
    debug: bool = False
    timeout_seconds: float = OCR_CLIENT_TIMEOUT_SECONDS

    @classmethod
    def from_settings(cls, settings: OcrSettings) -> "DoclingConfig":
        endpoint = (settings.INTERNAL_OCR_URL or "").strip()
        if not endpoint:
            raise ProviderError(
                "Missing INTERNAL_OCR_URL",
                ErrorCategory.VALIDATION,
                provider=PROVIDER_NAME,
            )
        return cls(
            endpoint=endpoint,
            options=resolve_options(settings.INTERNAL_OCR_OPTIONS_JSON),
            strip_image_links=settings.OCR_STRIP_IMAGE_LINKS,
            debug=settings.OCR_DEBUG,
            timeout_seconds=settings.OCR_CLIENT_TIMEOUT_SECONDS,
        )


class DoclingProvider:
    """OCR provider that answers in one call."""

    name = PROVIDER_NAME

    def __init__(
        self,
        config: DoclingConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._clock = clock or SystemClock()

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._config.timeout_seconds,
            transport=self._transport,
        )

    async def extract(self, ocr_input: OcrInput) -> ProviderResult:
        if not ocr_input.source_url:
            raise ProviderError("source_url required", ErrorCategory.VALIDATION, provider=self.name)

        start = self._clock.monotonic()
        payload = {
            "options": self._config.options,
            "sources": [{"kind": "http", "url": ocr_input.source_url}],
        }
        if self._config.debug:
            logger.debug(
                "OCR request: POST %s", self._config.endpoint, extra={"provider": self.name}
            )

        try:
            async with self._client() as client:
                response = await client.post(
                    self._config.endpoint,
                    json=payload,
                    headers={"accept": "application/json"},
                )
        except httpx.TransportError as e:
            raise ProviderError(
                f"{self.name} transport error: {type(e).__name__}",
                map_transport_error(e),
                provider=self.name,
                cause=e,
            ) from e

        trace_id = trace_id_from(response)

        if not response.is_success:
            raise ProviderError(
                f"{self.name} http error {response.status_code}",
                map_status_to_category(response.status_code),
                status_code=response.status_code,
                provider=self.name,
                trace_id=trace_id,
                cause_message=provider_detail(response),
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                f"{self.name} returned a non-JSON body",
                ErrorCategory.SERVER,
                status_code=response.status_code,
                provider=self.name,
                trace_id=trace_id,
                cause=e,
            ) from e

        document = data.get("document") if isinstance(data, dict) else None
        if not isinstance(data, dict) or data.get("status") != "success" or not isinstance(document, dict):
            raise ProviderError(
                f"{self.name} provider error: {_joined_errors(data)}",
                ErrorCategory.FAILED_STATUS,
                status_code=response.status_code,
                provider=self.name,
                trace_id=trace_id,
            )

        text = resolve_content(document)
        if not text:
            raise ProviderError(
                f"{self.name} provider returned empty output",
                ErrorCategory.FAILED_STATUS,
                status_code=response.status_code,
                provider=self.name,
                trace_id=trace_id,
            )
        if self._config.strip_image_links:
            text = strip_image_links(text)

        doc_meta = document.get("metadata")
        if not isinstance(doc_meta, dict):
            doc_meta = {}
        metadata = ProviderMetadata(
            provider=self.name,
            duration_ms=elapsed_ms(start, self._clock.monotonic()),
            pages=optional_int(doc_meta.get("pages")),
            bytes=optional_int(doc_meta.get("bytes")),
            trace_id=trace_id,
        )
        logger.info(
            "OCR completed",
            extra={
                "provider": self.name,
                "duration_ms": metadata.duration_ms,
                "trace_id": trace_id,
                "pages": metadata.pages,
            },
        )
        return ProviderResult(text=text, metadata=metadata)


def _joined_errors(data: Any) -> str:
    if isinstance(data, dict):
        errors = data.get("errors") or []
        messages = [
            str(err.get("message"))
            for err in errors
            if isinstance(err, dict) and err.get("message")
        ]
        if messages:
            return "; ".join(messages)
    return "provider did not return document payload"
