from __future__ import annotations

import json

import httpx
import pytest

from invoice_pipeline.clients.base import OcrInput
from invoice_pipeline.clients.docling import (
    DEFAULT_OPTIONS,
    DoclingConfig,
    DoclingProvider,
    resolve_options,
)
from invoice_pipeline.core.errors import ErrorCategory, ProviderError
from invoice_pipeline.core.settings import OcrSettings
from tests.conftest import ALLOWED_URL, FakeClock

ENDPOINT = "https://docling.internal/v1/convert/source"


def _provider(handler, **config) -> DoclingProvider:
    return DoclingProvider(
        DoclingConfig(endpoint=ENDPOINT, **config),
        transport=httpx.MockTransport(handler),
        clock=FakeClock(),
    )


@pytest.mark.asyncio
async def test_docling_success_returns_markdown_and_metadata() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "status": "success",
                "document": {"md_content": "# Invoice 42", "metadata": {"pages": 2, "bytes": 1234}},
            },
            headers={"x-request-id": "req-1"},
        )

    result = await _provider(handler).extract(OcrInput(source_url=ALLOWED_URL))

    assert result.text == "# Invoice 42"
    assert result.metadata.provider == "internal"
    assert result.metadata.pages == 2
    assert result.metadata.bytes == 1234
    assert result.metadata.trace_id == "req-1"
    assert result.metadata.duration_ms >= 0
    assert seen["body"]["sources"] == [{"kind": "http", "url": ALLOWED_URL}]
    assert seen["body"]["options"]["ocr_engine"] == "rapidocr"


@pytest.mark.asyncio
async def test_docling_content_probe_order() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "status": "success",
                "document": {"md_content": "   ", "text_content": "plain text", "html_content": "<p>x</p>"},
            },
        )

    result = await _provider(handler).extract(OcrInput(source_url=ALLOWED_URL))
    assert result.text == "plain text"


@pytest.mark.asyncio
async def test_docling_reported_failure_is_failed_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"status": "failure", "errors": [{"message": "corrupt pdf"}, {"message": "no pages"}]},
            headers={"x-amzn-requestid": "amzn-9"},
        )

    with pytest.raises(ProviderError) as exc_info:
        await _provider(handler).extract(OcrInput(source_url=ALLOWED_URL))

    error = exc_info.value
    assert error.category is ErrorCategory.FAILED_STATUS
    assert error.retryable is False
    assert "corrupt pdf; no pages" in error.message
    assert error.trace_id == "amzn-9"


@pytest.mark.asyncio
async def test_docling_empty_output_is_failed_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "success", "document": {"md_content": ""}})

    with pytest.raises(ProviderError) as exc_info:
        await _provider(handler).extract(OcrInput(source_url=ALLOWED_URL))

    assert exc_info.value.category is ErrorCategory.FAILED_STATUS
    assert "empty output" in exc_info.value.message


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,category",
    [(400, ErrorCategory.VALIDATION), (401, ErrorCategory.AUTH), (429, ErrorCategory.QUOTA), (502, ErrorCategory.SERVER)],
)
async def test_docling_http_errors_are_categorized(status, category) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, text="secret body with invoice data")

    with pytest.raises(ProviderError) as exc_info:
        await _provider(handler).extract(OcrInput(source_url=ALLOWED_URL))

    assert exc_info.value.category is category
    assert exc_info.value.status_code == status
    assert "secret body" not in exc_info.value.message


@pytest.mark.asyncio
async def test_docling_transport_timeout() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ProviderError) as exc_info:
        await _provider(handler).extract(OcrInput(source_url=ALLOWED_URL))

    assert exc_info.value.category is ErrorCategory.TIMEOUT


@pytest.mark.asyncio
async def test_docling_requires_source_url() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(ProviderError) as exc_info:
        await _provider(handler).extract(OcrInput(stream=b"%PDF-1.7"))

    assert exc_info.value.category is ErrorCategory.VALIDATION


@pytest.mark.asyncio
async def test_docling_strips_image_links() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        md = "Total due\n![page-1](image_000.png)\n$120.00"
        return httpx.Response(200, json={"status": "success", "document": {"md_content": md}})

    result = await _provider(handler, strip_image_links=True).extract(OcrInput(source_url=ALLOWED_URL))

    assert "![" not in result.text
    assert "$120.00" in result.text


def test_options_override_merges_and_invalid_json_falls_back() -> None:
    assert resolve_options('{"ocr_lang": ["de"]}')["ocr_lang"] == ["de"]
    assert resolve_options('{"ocr_lang": ["de"]}')["to_formats"] == ["md"]
    assert resolve_options("{not json") == DEFAULT_OPTIONS
    assert resolve_options("[1, 2]") == DEFAULT_OPTIONS


def test_missing_endpoint_is_validation_error() -> None:
    with pytest.raises(ProviderError) as exc_info:
        DoclingConfig.from_settings(OcrSettings(INTERNAL_OCR_URL=None))

    assert exc_info.value.category is ErrorCategory.VALIDATION
