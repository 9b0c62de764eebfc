"""Azure OpenAI chat-completions client for schema-constrained output.

Request:
    POST {endpoint}/openai/deployments/{deployment}/chat/completions?api-version=...
    headers: api-key
    body: messages, temperature, response_format={"type": "json_schema", ...}

Retryable categories (quota/timeout/server) are retried in-call up to
``max_retries`` times; everything else surfaces immediately.
"""

from __future__ import annotations

import json
import logging
import random
import re
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import quote

import httpx

from invoice_pipeline.clients.base import optional_int, trace_id_from
from invoice_pipeline.core import config as pipeline_config
from invoice_pipeline.core.errors import (
    ErrorCategory,
    ProviderError,
    map_status_to_category,
    map_transport_error,
)
from invoice_pipeline.core.settings import LLMSettings
from invoice_pipeline.resilience import BackoffSchedule, Clock, SystemClock, retry_async

logger = logging.getLogger(__name__)

PROVIDER_NAME = "azure_openai"

DEFAULT_RETRY_SCHEDULE = BackoffSchedule(
    steps=pipeline_config.LLM_RETRY_SCHEDULE_SECONDS,
    jitter_seconds=pipeline_config.LLM_RETRY_JITTER_SECONDS,
)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


@dataclass(frozen=True)
class AzureOpenAIConfig:
    endpoint: str
    api_key: str = field(repr=False)
    deployment: str
    api_version: str = pipeline_config.DEFAULT_AZURE_API_VERSION
    timeout_seconds: float = pipeline_config.LLM_REQUEST_TIMEOUT_SECONDS
    max_retries: int = pipeline_config.LLM_MAX_RETRIES
    temperature: float = pipeline_config.DEFAULT_TEMPERATURE
    retry_schedule: BackoffSchedule = DEFAULT_RETRY_SCHEDULE

    @classmethod
    def from_settings(cls, settings: LLMSettings) -> "AzureOpenAIConfig":
        endpoint = (settings.AZURE_OPENAI_ENDPOINT or "").strip()
        api_key = settings.AZURE_OPENAI_API_KEY.get_secret_value().strip() if settings.AZURE_OPENAI_API_KEY else ""
        deployment = (settings.AZURE_OPENAI_DEPLOYMENT or "").strip()
        if not endpoint or not api_key or not deployment:
            raise ProviderError(
                "Missing AZURE_OPENAI_ENDPOINT, AZURE_OPENAI_API_KEY or AZURE_OPENAI_DEPLOYMENT",
                ErrorCategory.VALIDATION,
                provider=PROVIDER_NAME,
            )
        return cls(
            endpoint=endpoint,
            api_key=api_key,
            deployment=deployment,
            api_version=settings.AZURE_OPENAI_API_VERSION,
            timeout_seconds=settings.LLM_TIMEOUT_SECONDS,
            max_retries=max(0, settings.LLM_MAX_RETRIES),
        )


@dataclass(frozen=True)
class GeneratedObject:
    """Decoded model output.

    ``object`` is None when the model answered with something that is not a
    JSON object; the caller decides what that means.
    """

    object: Optional[dict[str, Any]]
    total_tokens: int
    model: str
    trace_id: Optional[str] = None


def parse_json_object(content: Any) -> Optional[dict[str, Any]]:
    """Decode a JSON object from model content, tolerating code fences."""
    if not isinstance(content, str):
        return None
    text = content.strip()
    match = _FENCE_RE.match(text)
    if match:
        text = match.group(1)
    try:
        obj = json.loads(text)
    except json.JSONDecodeError:
        return None
    return obj if isinstance(obj, dict) else None


class AzureOpenAIClient:
    """Structured-output model client."""

    provider = PROVIDER_NAME

    def __init__(
        self,
        config: AzureOpenAIConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._clock = clock or SystemClock()
        self._rng = rng

    @property
    def model(self) -> str:
        return self._config.deployment

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._config.timeout_seconds,
            transport=self._transport,
            headers={"api-key": self._config.api_key, "accept": "application/json"},
        )

    def _url(self) -> str:
        base = self._config.endpoint.rstrip("/")
        return f"{base}/openai/deployments/{quote(self._config.deployment, safe='')}/chat/completions"

    async def generate_object(
        self,
        messages: list[dict[str, str]],
        schema: dict[str, Any],
        *,
        schema_name: str = "invoice",
    ) -> GeneratedObject:
        """Run one chat completion constrained to ``schema``.

        Raises:
            ProviderError: Categorized HTTP/transport failure after retries
        """
        payload = {
            "messages": messages,
            "temperature": self._config.temperature,
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": schema_name, "schema": schema, "strict": False},
            },
        }
        return await retry_async(
            lambda: self._call_once(payload),
            self._config.retry_schedule,
            max_retries=self._config.max_retries,
            clock=self._clock,
            rng=self._rng,
            label="LLM call",
        )

    async def _call_once(self, payload: dict[str, Any]) -> GeneratedObject:
        try:
            async with self._client() as client:
                response = await client.post(
                    self._url(),
                    params={"api-version": self._config.api_version},
                    json=payload,
                )
        except httpx.TransportError as e:
            raise ProviderError(
                f"{self.provider} transport error: {type(e).__name__}",
                map_transport_error(e),
                provider=self.provider,
                cause=e,
            ) from e

        trace_id = trace_id_from(response)
        if not response.is_success:
            raise ProviderError(
                f"{self.provider} http error {response.status_code}",
                map_status_to_category(response.status_code),
                status_code=response.status_code,
                provider=self.provider,
                trace_id=trace_id,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                f"{self.provider} returned a non-JSON body",
                ErrorCategory.SERVER,
                status_code=response.status_code,
                provider=self.provider,
                trace_id=trace_id,
                cause=e,
            ) from e

        content = None
        choices = data.get("choices") if isinstance(data, dict) else None
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message") or {}
            content = message.get("content") if isinstance(message, dict) else None

        usage = data.get("usage") if isinstance(data, dict) else None
        total_tokens = optional_int(usage.get("total_tokens")) if isinstance(usage, dict) else None

        return GeneratedObject(
            object=parse_json_object(content),
            total_tokens=max(0, total_tokens or 0),
            model=str(data.get("model") or self._config.deployment),
            trace_id=trace_id,
        )
