from invoice_pipeline.core.settings import AppSettings, DatabaseSettings, LLMSettings, OcrSettings


class TestSettings:
    """Environment-driven configuration."""

    def test_ocr_defaults(self, monkeypatch):
        monkeypatch.delenv("OCR_PROVIDER", raising=False)
        monkeypatch.delenv("ALLOWED_PDF_HOSTS", raising=False)

        settings = OcrSettings()

        assert settings.OCR_PROVIDER == "internal"
        assert settings.MISTRAL_OCR_MODE == "async"
        assert settings.OCR_TEXT_MAX_BYTES == 1024 * 1024
        assert settings.allowed_pdf_hosts == ["s3.amazonaws.com", "amazonaws.com", "cloudfront.net"]

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("OCR_PROVIDER", "mistral")
        monkeypatch.setenv("MISTRAL_API_KEY", "sk-test")
        monkeypatch.setenv("ALLOWED_PDF_HOSTS", " Example.com , cdn.example.org ,")

        settings = OcrSettings()

        assert settings.OCR_PROVIDER == "mistral"
        assert settings.MISTRAL_API_KEY.get_secret_value() == "sk-test"
        assert "sk-test" not in repr(settings)
        assert settings.allowed_pdf_hosts == ["example.com", "cdn.example.org"]

    def test_llm_defaults(self, monkeypatch):
        monkeypatch.delenv("AZURE_OPENAI_API_VERSION", raising=False)

        settings = LLMSettings()

        assert settings.AZURE_OPENAI_API_VERSION == "2024-08-01-preview"
        assert settings.LLM_TIMEOUT_SECONDS == 30
        assert settings.LLM_MAX_RETRIES == 2

    def test_database_and_app_settings(self, monkeypatch):
        monkeypatch.setenv("DB_PORT", "6543")
        monkeypatch.setenv("LOG_JSON", "false")

        assert DatabaseSettings().DB_PORT == 6543
        assert AppSettings().LOG_JSON is False
