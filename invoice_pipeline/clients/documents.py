"""Bounded PDF download: pre-OCR document check and base64 fallback source."""

from __future__ import annotations

import logging
import random
from typing import Optional
from urllib.parse import urlsplit

import httpx

from invoice_pipeline.core.config import (
    MAX_PDF_BYTES,
    PDF_FETCH_MAX_RETRIES,
    PDF_FETCH_RETRY_SCHEDULE_SECONDS,
    PDF_FETCH_TIMEOUT_SECONDS,
)
from invoice_pipeline.core.errors import (
    ErrorCategory,
    PipelineError,
    ProviderError,
    map_status_to_category,
    map_transport_error,
)
from invoice_pipeline.core.logging_utils import redact_url
from invoice_pipeline.resilience import BackoffSchedule, Clock, SystemClock, retry_async

logger = logging.getLogger(__name__)

FETCHER_NAME = "pdf_fetch"

DEFAULT_FETCH_SCHEDULE = BackoffSchedule(steps=PDF_FETCH_RETRY_SCHEDULE_SECONDS)

_RETRIED_CATEGORIES = frozenset({ErrorCategory.SERVER, ErrorCategory.TIMEOUT})


def _is_transient(error: PipelineError) -> bool:
    if error.status_code is not None:
        return error.status_code >= 500
    return error.category in _RETRIED_CATEGORIES


class DocumentFetcher:
    """Download a PDF into memory, refusing anything over ``max_bytes``.

    5xx responses and network failures are retried on ``retry_schedule``;
    4xx responses and content checks fail on the first attempt.
    """

    def __init__(
        self,
        *,
        max_bytes: int = MAX_PDF_BYTES,
        timeout_seconds: float = PDF_FETCH_TIMEOUT_SECONDS,
        max_retries: int = PDF_FETCH_MAX_RETRIES,
        retry_schedule: BackoffSchedule = DEFAULT_FETCH_SCHEDULE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._max_bytes = max_bytes
        self._timeout_seconds = timeout_seconds
        self._max_retries = max_retries
        self._retry_schedule = retry_schedule
        self._transport = transport
        self._clock = clock or SystemClock()
        self._rng = rng

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout_seconds,
            transport=self._transport,
            follow_redirects=True,
        )

    async def fetch(self, url: str) -> bytes:
        """
        Raises:
            ProviderError: ``validation`` for oversize or non-PDF content,
                otherwise the category of the last HTTP/transport failure
        """
        body = await retry_async(
            lambda: self._fetch_once(url),
            self._retry_schedule,
            max_retries=self._max_retries,
            clock=self._clock,
            rng=self._rng,
            label="PDF download",
            retry_on=_is_transient,
        )
        logger.info(f"Fetched PDF ({len(body)} bytes)", extra={"host": redact_url(url)})
        return body

    async def _fetch_once(self, url: str) -> bytes:
        try:
            async with self._client() as client:
                async with client.stream("GET", url) as response:
                    if not response.is_success:
                        raise ProviderError(
                            f"PDF download failed with status {response.status_code}",
                            map_status_to_category(response.status_code),
                            status_code=response.status_code,
                            provider=FETCHER_NAME,
                        )
                    self._check_content_type(url, response)

                    declared = response.headers.get("content-length")
                    if declared and declared.isdigit() and int(declared) > self._max_bytes:
                        raise self._too_large()

                    chunks = []
                    received = 0
                    async for chunk in response.aiter_bytes():
                        received += len(chunk)
                        if received > self._max_bytes:
                            raise self._too_large()
                        chunks.append(chunk)
        except httpx.TransportError as e:
            raise ProviderError(
                f"PDF download transport error: {type(e).__name__}",
                map_transport_error(e),
                provider=FETCHER_NAME,
                cause=e,
            ) from e
        return b"".join(chunks)

    def _check_content_type(self, url: str, response: httpx.Response) -> None:
        content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        if content_type == "application/pdf":
            return
        if urlsplit(url).path.lower().endswith(".pdf"):
            return
        raise ProviderError(
            "Downloaded document is not a PDF",
            ErrorCategory.VALIDATION,
            provider=FETCHER_NAME,
        )

    def _too_large(self) -> ProviderError:
        return ProviderError(
            f"PDF exceeds maximum size of {self._max_bytes} bytes",
            ErrorCategory.VALIDATION,
            provider=FETCHER_NAME,
        )
