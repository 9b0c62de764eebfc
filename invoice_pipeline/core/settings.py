"""
Application settings using Pydantic.

Environment variables are read once by the entry point and the resulting
objects are passed explicitly into adapters and stores. Nothing in the
package reads ``os.environ`` on its own.
"""

from typing import Optional

from pydantic import SecretStr
from pydantic_settings import BaseSettings

from invoice_pipeline.core import config


class OcrSettings(BaseSettings):
    """OCR provider selection and per-provider configuration."""

    OCR_PROVIDER: str = "internal"
    OCR_DEBUG: bool = False
    OCR_STRIP_IMAGE_LINKS: bool = False
    OCR_TEXT_MAX_BYTES: int = config.MAX_OCR_TEXT_BYTES
    OCR_CLIENT_TIMEOUT_SECONDS: float = config.OCR_CLIENT_TIMEOUT_SECONDS
    ALLOWED_PDF_HOSTS: str = ",".join(config.DEFAULT_ALLOWED_PDF_HOSTS)

    # Docling ("internal") deployment
    INTERNAL_OCR_URL: Optional[str] = None
    INTERNAL_OCR_OPTIONS_JSON: Optional[str] = None

    # Mistral OCR API
    MISTRAL_OCR_API_URL: Optional[str] = None
    MISTRAL_API_KEY: Optional[SecretStr] = None
    MISTRAL_OCR_CREATE_PATH: str = "jobs"
    MISTRAL_OCR_STATUS_PATH: str = "jobs/{id}"
    MISTRAL_OCR_MODE: str = "async"
    MISTRAL_OCR_MODEL: str = "mistral-ocr-latest"
    MISTRAL_OCR_SYNC_PATH: Optional[str] = None
    MISTRAL_INCLUDE_IMAGE_BASE64: bool = True

    model_config = {"case_sensitive": True, "env_file": ".env", "extra": "ignore"}

    @property
    def allowed_pdf_hosts(self) -> list[str]:
        return [h.strip().lower() for h in self.ALLOWED_PDF_HOSTS.split(",") if h.strip()]


class LLMSettings(BaseSettings):
    """Azure OpenAI deployment used for structured extraction."""

    AZURE_OPENAI_ENDPOINT: Optional[str] = None
    AZURE_OPENAI_API_KEY: Optional[SecretStr] = None
    AZURE_OPENAI_DEPLOYMENT: Optional[str] = None
    AZURE_OPENAI_API_VERSION: str = config.DEFAULT_AZURE_API_VERSION
    LLM_TIMEOUT_SECONDS: float = config.LLM_REQUEST_TIMEOUT_SECONDS
    LLM_MAX_RETRIES: int = config.LLM_MAX_RETRIES

    model_config = {"case_sensitive": True, "env_file": ".env", "extra": "ignore"}


class DatabaseSettings(BaseSettings):
    """Database connection and pool configuration."""

    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "invoices"
    DB_USER: str = "postgres"
    DB_PASSWORD: SecretStr = SecretStr("")
    DB_POOL_MIN_SIZE: int = 1
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 10.0
    DB_COMMAND_TIMEOUT: float = 10.0

    model_config = {"case_sensitive": True, "env_file": ".env", "extra": "ignore"}


class AppSettings(BaseSettings):
    """General application settings."""

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    model_config = {"case_sensitive": True, "env_file": ".env", "extra": "ignore"}
