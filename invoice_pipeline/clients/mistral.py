"""Create-then-poll OCR adapter for the Mistral OCR API.

Per-invocation state machine (nothing is persisted):

    Created -> Polling -> Succeeded | Failed | TimedOut

- Created: POST {base}/{create_path} returns ``{"id", "status"}``
- Polling: sleep(backoff) then GET {base}/{status_path} until ``succeeded``
  or ``failed``, or until the deadline measured from the start of the call
  has passed
- Retryable poll errors (quota/timeout/server) consume one backoff step and
  the loop continues; non-retryable ones abort immediately
- Once the deadline passes the call fails with ``timeout`` whatever the
  last error was

Setting ``mode="sync"`` switches to Mistral's single-call OCR endpoint.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import quote, urlsplit

import httpx

from invoice_pipeline.clients.base import (
    OcrInput,
    ProviderMetadata,
    ProviderResult,
    optional_float,
    optional_int,
    provider_detail,
    safe_text,
    strip_image_links,
    to_data_url,
    trace_id_from,
)
from invoice_pipeline.core import config as pipeline_config
from invoice_pipeline.core.dates import elapsed_ms
from invoice_pipeline.core.errors import (
    ErrorCategory,
    ProviderError,
    map_status_to_category,
    map_transport_error,
)
from invoice_pipeline.core.settings import OcrSettings
from invoice_pipeline.resilience import BackoffSchedule, Clock, SystemClock

logger = logging.getLogger(__name__)

PROVIDER_NAME = "mistral"

DEFAULT_POLL_SCHEDULE = BackoffSchedule(
    steps=pipeline_config.OCR_POLL_SCHEDULE_SECONDS,
    jitter_seconds=pipeline_config.OCR_POLL_JITTER_SECONDS,
)

PAGE_SEPARATOR = "\n\n---\n\n"


def interpolate_status_path(template: str, job_id: str) -> str:
    encoded = quote(job_id, safe="")
    if "{id}" in template:
        return template.replace("{id}", encoded)
    return f"{template.rstrip('/')}/{encoded}"


def default_sync_path(base_url: str) -> str:
    """Post to the base URL when it already ends in ``/ocr``."""
    path = urlsplit(base_url).path.rstrip("/")
    return "" if path == "/ocr" or path.endswith("/ocr") else "ocr"


@dataclass(frozen=True)
class MistralConfig:
    base_url: str
    api_key: str = field(repr=False)
    create_path: str = "jobs"
    status_path: str = "jobs/{id}"
    mode: str = "async"
    model: str = "mistral-ocr-latest"
    sync_path: Optional[str] = None
    include_image_base64: bool = True
    strip_image_links: bool = False
    debug: bool = False
    timeout_seconds: float = pipeline_config.OCR_CLIENT_TIMEOUT_SECONDS
    deadline_seconds: float = pipeline_config.OCR_TIMEOUT_SECONDS
    poll_schedule: BackoffSchedule = DEFAULT_POLL_SCHEDULE

    @property
    def is_sync_mode(self) -> bool:
        return self.mode.lower() == "sync"

    @classmethod
    def from_settings(cls, settings: OcrSettings) -> "MistralConfig":
        base_url = (settings.MISTRAL_OCR_API_URL or "").strip()
        api_key = settings.MISTRAL_API_KEY.get_secret_value().strip() if settings.MISTRAL_API_KEY else ""
        if not base_url or not api_key:
            raise ProviderError(
                "Missing MISTRAL_OCR_API_URL or MISTRAL_API_KEY",
                ErrorCategory.VALIDATION,
                provider=PROVIDER_NAME,
            )
        return cls(
            base_url=base_url,
            api_key=api_key,
            create_path=settings.MISTRAL_OCR_CREATE_PATH.strip() or "jobs",
            status_path=settings.MISTRAL_OCR_STATUS_PATH.strip() or "jobs/{id}",
            mode=settings.MISTRAL_OCR_MODE,
            model=settings.MISTRAL_OCR_MODEL,
            sync_path=settings.MISTRAL_OCR_SYNC_PATH,
            include_image_base64=settings.MISTRAL_INCLUDE_IMAGE_BASE64,
            strip_image_links=settings.OCR_STRIP_IMAGE_LINKS,
            debug=settings.OCR_DEBUG,
            timeout_seconds=settings.OCR_CLIENT_TIMEOUT_SECONDS,
        )


class MistralProvider:
    """OCR provider for a service that accepts a job and must be polled."""

    name = PROVIDER_NAME

    def __init__(
        self,
        config: MistralConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._clock = clock or SystemClock()
        self._rng = rng

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._config.timeout_seconds,
            transport=self._transport,
            headers={
                "accept": "application/json",
                "authorization": f"Bearer {self._config.api_key}",
            },
        )

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        base = self._config.base_url.rstrip("/")
        path = path.lstrip("/")
        return f"{base}/{path}" if path else base

    async def _request(
        self,
        client: httpx.AsyncClient,
        method: str,
        path: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> tuple[Any, Optional[str]]:
        """Send one request and classify every failure mode.

        Returns:
            Decoded JSON body and the provider trace id (if any)

        Raises:
            ProviderError: Transport failure, non-2xx status or undecodable body
        """
        if self._config.debug:
            logger.debug("OCR request: %s %s", method, path, extra={"provider": self.name})
        try:
            response = await client.request(method, self._url(path), json=payload)
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
            return response.json(), trace_id
        except ValueError as e:
            raise ProviderError(
                f"{self.name} returned a non-JSON body",
                ErrorCategory.SERVER,
                status_code=response.status_code,
                provider=self.name,
                trace_id=trace_id,
                cause=e,
            ) from e

    async def extract(self, ocr_input: OcrInput) -> ProviderResult:
        ocr_input.require_any(self.name)
        start = self._clock.monotonic()
        document_url = ocr_input.source_url or to_data_url(ocr_input.stream or b"")

        async with self._client() as client:
            if self._config.is_sync_mode:
                return await self._extract_sync(client, document_url, start)
            return await self._extract_polling(client, document_url, start)

    async def _extract_polling(
        self, client: httpx.AsyncClient, document_url: str, start: float
    ) -> ProviderResult:
        created, last_trace_id = await self._request(
            client, "POST", self._config.create_path, {"pdfUrl": document_url}
        )
        job_id = created.get("id") if isinstance(created, dict) else None
        if not job_id:
            raise ProviderError(
                f"{self.name} create response missing job id",
                ErrorCategory.SERVER,
                provider=self.name,
                trace_id=last_trace_id,
            )
        status_path = interpolate_status_path(self._config.status_path, str(job_id))

        attempt = 0
        last_error: Optional[ProviderError] = None
        while True:
            if self._clock.monotonic() - start > self._config.deadline_seconds:
                logger.warning(
                    "OCR polling deadline exceeded",
                    extra={"provider": self.name, "attempt": attempt, "trace_id": last_trace_id},
                )
                raise ProviderError(
                    "OCR timeout",
                    ErrorCategory.TIMEOUT,
                    provider=self.name,
                    trace_id=last_trace_id,
                    cause_message=last_error.message if last_error else None,
                )

            await self._clock.sleep(self._config.poll_schedule.delay(attempt, self._rng))
            attempt += 1

            try:
                data, trace_id = await self._request(client, "GET", status_path)
            except ProviderError as e:
                last_trace_id = e.trace_id or last_trace_id
                e.trace_id = last_trace_id
                if not e.retryable:
                    raise
                last_error = e
                logger.warning(
                    "OCR poll failed, will retry",
                    extra={
                        "provider": self.name,
                        "attempt": attempt,
                        "category": e.category.value,
                        "http_status": e.status_code,
                        "trace_id": last_trace_id,
                    },
                )
                continue

            last_trace_id = trace_id or last_trace_id
            if not isinstance(data, dict):
                last_error = ProviderError(
                    f"{self.name} status response is not an object",
                    ErrorCategory.SERVER,
                    provider=self.name,
                    trace_id=last_trace_id,
                )
                continue

            status = str(data.get("status", "")).lower()
            if status == "succeeded":
                return self._polled_result(data, start, attempt, last_trace_id)
            if status == "failed":
                raise ProviderError(
                    str(data.get("error") or "Provider failed"),
                    ErrorCategory.FAILED_STATUS,
                    provider=self.name,
                    trace_id=last_trace_id,
                )
            logger.debug(
                "OCR job not ready",
                extra={"provider": self.name, "attempt": attempt, "status": status},
            )

    def _polled_result(
        self, data: dict[str, Any], start: float, attempt: int, trace_id: Optional[str]
    ) -> ProviderResult:
        result = data.get("result")
        if not isinstance(result, dict):
            raise ProviderError(
                f"{self.name} reported success without a result payload",
                ErrorCategory.FAILED_STATUS,
                provider=self.name,
                trace_id=trace_id,
            )
        text = safe_text(result.get("markdown"))
        if self._config.strip_image_links:
            text = strip_image_links(text)
        metadata = ProviderMetadata(
            provider=self.name,
            duration_ms=elapsed_ms(start, self._clock.monotonic()),
            confidence=optional_float(result.get("confidence")),
            pages=optional_int(result.get("pages")),
            trace_id=trace_id,
        )
        logger.info(
            "OCR completed",
            extra={
                "provider": self.name,
                "duration_ms": metadata.duration_ms,
                "trace_id": trace_id,
                "pages": metadata.pages,
                "attempt": attempt,
            },
        )
        return ProviderResult(text=text, metadata=metadata)

    async def _extract_sync(
        self, client: httpx.AsyncClient, document_url: str, start: float
    ) -> ProviderResult:
        path = self._config.sync_path
        if path is None:
            path = default_sync_path(self._config.base_url)
        payload = {
            "model": self._config.model,
            "document": {"type": "document_url", "document_url": document_url},
            "include_image_base64": self._config.include_image_base64,
        }
        data, trace_id = await self._request(client, "POST", path.strip(), payload)
        if not isinstance(data, dict):
            raise ProviderError(
                f"{self.name} response is not an object",
                ErrorCategory.SERVER,
                provider=self.name,
                trace_id=trace_id,
            )

        pages = data.get("pages")
        if isinstance(pages, list) and pages:
            ordered = sorted(
                (p for p in pages if isinstance(p, dict)),
                key=lambda p: optional_int(p.get("index")) or 0,
            )
            parts = [p["markdown"] for p in ordered if isinstance(p.get("markdown"), str) and p["markdown"]]
            text = safe_text(PAGE_SEPARATOR.join(parts))
        else:
            text = _markdown_from_response(data)

        if not text.strip():
            raise ProviderError(
                f"{self.name} provider returned empty output",
                ErrorCategory.FAILED_STATUS,
                provider=self.name,
                trace_id=trace_id,
            )
        if self._config.strip_image_links:
            text = strip_image_links(text)

        usage = data.get("usage_info") if isinstance(data.get("usage_info"), dict) else {}
        page_count = optional_int(usage.get("pages_processed"))
        if page_count is None and isinstance(pages, list):
            page_count = len(pages)
        metadata = ProviderMetadata(
            provider=self.name,
            duration_ms=elapsed_ms(start, self._clock.monotonic()),
            confidence=optional_float(data.get("confidence")),
            pages=page_count,
            bytes=optional_int(usage.get("doc_size_bytes")),
            trace_id=trace_id,
        )
        logger.info(
            "OCR completed",
            extra={
                "provider": self.name,
                "duration_ms": metadata.duration_ms,
                "trace_id": trace_id,
                "pages": metadata.pages,
                "attempt": 0,
            },
        )
        return ProviderResult(text=text, metadata=metadata)


def _markdown_from_response(data: dict[str, Any]) -> str:
    for key in ("markdown", "text", "content"):
        if isinstance(data.get(key), str):
            return safe_text(data[key])
    result = data.get("result")
    if isinstance(result, dict):
        for key in ("markdown", "text"):
            if isinstance(result.get(key), str):
                return safe_text(result[key])
    return ""
