"""
LLM-based invoice field extractor.

Builds the extraction prompt from OCR markdown, calls the structured model
client with the ``InvoiceSchema`` JSON schema and normalizes the answer into
``{field: {value, reasoning, confidence}}``.

Each field is validated on its own: a malformed field is dropped (and
logged) instead of discarding the whole answer. Fields the model did not
return are omitted, never defaulted.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from pydantic import ValidationError

from invoice_pipeline.clients.azure_openai import (
    AzureOpenAIClient,
    AzureOpenAIConfig,
    GeneratedObject,
)
from invoice_pipeline.core.dates import elapsed_ms
from invoice_pipeline.core.errors import (
    ErrorCategory,
    NoExtractedDataError,
    ProviderError,
)
from invoice_pipeline.core.settings import LLMSettings
from invoice_pipeline.models.invoice import INVOICE_FIELDS, ExtractedField, InvoiceSchema
from invoice_pipeline.processors.prompts import build_invoice_messages
from invoice_pipeline.resilience import Clock, SystemClock

logger = logging.getLogger(__name__)

AMOUNT_FIELDS = tuple(name for name in INVOICE_FIELDS if name.endswith("_amount"))

_NUMERIC_RE = re.compile(r"^-?\d+(\.\d+)?$")


class StructuredModelClient(Protocol):
    provider: str

    @property
    def model(self) -> str: ...

    async def generate_object(
        self, messages: list[dict[str, str]], schema: dict[str, Any], *, schema_name: str = ...
    ) -> GeneratedObject: ...


@dataclass(frozen=True)
class ExtractionOutcome:
    fields: dict[str, ExtractedField]
    tokens_used: int
    duration_ms: int
    model: str

    def extracted_data(self) -> dict[str, dict[str, Any]]:
        """JSON-ready field map for persistence."""
        return {name: f.model_dump(mode="json") for name, f in self.fields.items()}


def normalize_amount(value: Any) -> Any:
    """Turn "$1,234.50" / "(25.00)" style strings into floats.

    Values that do not look like an amount are returned unchanged and left to
    schema validation.
    """
    if not isinstance(value, str):
        return value
    text = value.strip()
    negative = text.startswith("(") and text.endswith(")")
    if negative:
        text = text[1:-1].strip()
    text = text.replace("$", "").replace(",", "").strip()
    if not _NUMERIC_RE.match(text):
        return value
    number = float(text)
    return -number if negative else number


class InvoiceExtractor:
    """Schema-constrained invoice extraction over a structured model client."""

    def __init__(self, client: StructuredModelClient, *, clock: Optional[Clock] = None) -> None:
        self._client = client
        self._clock = clock or SystemClock()

    @classmethod
    def from_settings(cls, settings: LLMSettings, **client_kwargs: Any) -> "InvoiceExtractor":
        return cls(AzureOpenAIClient(AzureOpenAIConfig.from_settings(settings), **client_kwargs))

    async def extract(self, text: str) -> ExtractionOutcome:
        """
        Raises:
            ProviderError: ``validation`` for blank input, or the category of
                the model-call failure
            NoExtractedDataError: The call succeeded but no usable field came back
        """
        if not text or not text.strip():
            raise ProviderError(
                "OCR text is empty",
                ErrorCategory.VALIDATION,
                provider=self._client.provider,
            )

        start = self._clock.monotonic()
        try:
            generated = await self._client.generate_object(
                build_invoice_messages(text),
                InvoiceSchema.model_json_schema(),
                schema_name="invoice",
            )
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(
                f"Unexpected LLM failure: {type(e).__name__}",
                ErrorCategory.SERVER,
                provider=self._client.provider,
                cause=e,
            ) from e

        if generated.object is None:
            raise NoExtractedDataError(
                provider=self._client.provider,
                trace_id=generated.trace_id,
                detail="model output is not a JSON object",
            )

        fields = self._normalize(generated.object)
        if not fields:
            raise NoExtractedDataError(
                provider=self._client.provider,
                trace_id=generated.trace_id,
                detail="no valid invoice fields in model output",
            )

        outcome = ExtractionOutcome(
            fields=fields,
            tokens_used=generated.total_tokens,
            duration_ms=elapsed_ms(start, self._clock.monotonic()),
            model=generated.model,
        )
        logger.info(
            f"Extracted {len(fields)} invoice fields",
            extra={
                "provider": self._client.provider,
                "tokens": outcome.tokens_used,
                "duration_ms": outcome.duration_ms,
                "trace_id": generated.trace_id,
            },
        )
        return outcome

    def _normalize(self, raw: dict[str, Any]) -> dict[str, ExtractedField]:
        fields: dict[str, ExtractedField] = {}
        for name in INVOICE_FIELDS:
            if name not in raw or raw[name] is None:
                continue
            candidate = raw[name]
            if name in AMOUNT_FIELDS and isinstance(candidate, dict) and "value" in candidate:
                candidate = {**candidate, "value": normalize_amount(candidate["value"])}
            try:
                parsed = getattr(InvoiceSchema.model_validate({name: candidate}), name)
            except ValidationError as e:
                logger.warning(
                    f"Dropping invalid extracted field '{name}' ({e.error_count()} errors)",
                    extra={"provider": self._client.provider},
                )
                continue
            if parsed is None:
                continue
            fields[name] = ExtractedField(
                value=parsed.value,
                reasoning=parsed.reasoning,
                confidence=parsed.confidence,
            )
        return fields
