"""
Error taxonomy shared by every OCR and LLM provider.

Status codes and transport failures are classified into one of six
categories exactly once, at the provider boundary. Everything downstream
decides on retries with ``is_retryable(category)`` and never looks at the
HTTP status again.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import httpx


class ErrorCategory(str, Enum):
    """Closed set of failure categories."""

    VALIDATION = "validation"
    AUTH = "auth"
    QUOTA = "quota"
    TIMEOUT = "timeout"
    SERVER = "server"
    FAILED_STATUS = "failed_status"


@dataclass(frozen=True)
class ErrorSpec:
    """Specification for a single error category."""

    category: ErrorCategory
    description: str
    retryable: bool


ERROR_SPECS: dict[ErrorCategory, ErrorSpec] = {
    ErrorCategory.VALIDATION: ErrorSpec(
        ErrorCategory.VALIDATION, "Malformed input (bad URL, missing config)", False
    ),
    ErrorCategory.AUTH: ErrorSpec(ErrorCategory.AUTH, "Credential rejected", False),
    ErrorCategory.QUOTA: ErrorSpec(ErrorCategory.QUOTA, "Rate or usage limit hit", True),
    ErrorCategory.TIMEOUT: ErrorSpec(
        ErrorCategory.TIMEOUT, "Operation exceeded allotted time", True
    ),
    ErrorCategory.SERVER: ErrorSpec(
        ErrorCategory.SERVER, "Provider-side 5xx or transport failure", True
    ),
    ErrorCategory.FAILED_STATUS: ErrorSpec(
        ErrorCategory.FAILED_STATUS, "Provider explicitly reported job failure", False
    ),
}


def is_retryable(category: ErrorCategory) -> bool:
    return ERROR_SPECS[ErrorCategory(category)].retryable


def map_status_to_category(status: int) -> ErrorCategory:
    """Map a non-2xx HTTP status to an error category.

    Args:
        status: HTTP status code returned by the provider.

    Returns:
        400 -> validation, 401/403 -> auth, 429 -> quota, everything else
        (5xx and unexpected codes) -> server.
    """
    if status == 400:
        return ErrorCategory.VALIDATION
    if status in (401, 403):
        return ErrorCategory.AUTH
    if status == 429:
        return ErrorCategory.QUOTA
    return ErrorCategory.SERVER


def map_transport_error(exc: Exception) -> ErrorCategory:
    if isinstance(exc, httpx.TimeoutException):
        return ErrorCategory.TIMEOUT
    return ErrorCategory.SERVER


class PipelineError(Exception):
    """Base exception for all pipeline failures.

    Carries enough context for diagnostics (category, HTTP status, provider,
    trace id and the underlying cause message) but never the document
    content, the document URL or a raw provider response body.

    Attributes:
        message: Human-readable error message
        category: One of the six error categories
        status_code: HTTP status code if the failure came from an HTTP call
        provider: Provider identifier
        trace_id: Provider-supplied request id for log correlation
        cause_message: Message of the underlying exception, if any
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        *,
        status_code: Optional[int] = None,
        provider: Optional[str] = None,
        trace_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
        cause_message: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = ErrorCategory(category)
        self.status_code = status_code
        self.provider = provider
        self.trace_id = trace_id
        if cause_message is None and cause is not None:
            cause_message = str(cause) or type(cause).__name__
        self.cause_message = cause_message

    @property
    def retryable(self) -> bool:
        return is_retryable(self.category)

    def to_dict(self) -> dict[str, Any]:
        """Structured, content-free error payload for callers and logs."""
        return {
            "name": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "status_code": self.status_code,
            "provider": self.provider,
            "trace_id": self.trace_id,
            "retryable": self.retryable,
        }


class ProviderError(PipelineError):
    """Failure raised at an OCR/LLM provider boundary."""


class NoExtractedDataError(ProviderError):
    """The model call succeeded but produced no parseable object.

    Kept distinct from transport failures: re-running the same input with
    the same prompt is unlikely to change the outcome.
    """

    def __init__(self, *, provider: Optional[str] = None, trace_id: Optional[str] = None, detail: Optional[str] = None):
        super().__init__(
            "extraction produced no data",
            ErrorCategory.FAILED_STATUS,
            provider=provider,
            trace_id=trace_id,
            cause_message=detail,
        )
