"""OCR provider contract.

Every adapter turns one external OCR service into
``extract(OcrInput) -> ProviderResult`` and raises ``ProviderError`` with a
category from the shared taxonomy on failure. Adapters keep no job state
between calls: the calling process may be torn down between pipeline steps.
"""

from __future__ import annotations

import base64
import re
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from invoice_pipeline.core.config import TRACE_HEADERS
from invoice_pipeline.core.errors import ErrorCategory, ProviderError

_IMAGE_LINE_RE = re.compile(r"^!\[[^\]]*\]\([^)]+\)\s*$", re.MULTILINE)


@dataclass(frozen=True)
class OcrInput:
    """Document to process: a URL, a byte stream, or both."""

    source_url: Optional[str] = None
    stream: Optional[bytes] = None

    def require_any(self, provider: str) -> None:
        if not self.source_url and not self.stream:
            raise ProviderError(
                "source_url or stream required",
                ErrorCategory.VALIDATION,
                provider=provider,
            )


@dataclass(frozen=True)
class ProviderMetadata:
    provider: str
    duration_ms: int
    confidence: Optional[float] = None
    pages: Optional[int] = None
    bytes: Optional[int] = None
    trace_id: Optional[str] = None


@dataclass(frozen=True)
class ProviderResult:
    """Normalized OCR output, owned by the calling step for one invocation."""

    text: str
    metadata: ProviderMetadata


class OcrProvider(Protocol):
    """Abstraction over an OCR service used by the OCR step."""

    name: str

    async def extract(self, ocr_input: OcrInput) -> ProviderResult: ...


def trace_id_from(response: httpx.Response) -> Optional[str]:
    for header in TRACE_HEADERS:
        value = response.headers.get(header)
        if value:
            return value
    return None


def provider_detail(response: httpx.Response, limit: int = 200) -> Optional[str]:
    """Short diagnostic message from a JSON error body, never the body itself."""
    try:
        data = response.json()
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    for key in ("message", "detail", "error"):
        value = data.get(key)
        if isinstance(value, dict):
            value = value.get("message")
        if isinstance(value, str) and value.strip():
            return value.strip()[:limit]
    return None


def safe_text(text: object) -> str:
    """Coerce provider output to a UTF-8 encodable string."""
    if not isinstance(text, str):
        return ""
    return text.encode("utf-8", errors="replace").decode("utf-8")


def strip_image_links(markdown: str) -> str:
    """Drop lines that only contain a markdown image placeholder."""
    return _IMAGE_LINE_RE.sub("", markdown)


def to_data_url(stream: bytes, mime_type: str = "application/pdf") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(stream).decode('ascii')}"


def optional_int(value: object) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def optional_float(value: object) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
