# =============================================================================
# OCR Polling
# =============================================================================

OCR_TIMEOUT_SECONDS = 300  # Absolute deadline for one async OCR invocation (5 min)
OCR_POLL_SCHEDULE_SECONDS = (1.0, 2.0, 4.0, 8.0)  # Last step repeats
OCR_POLL_JITTER_SECONDS = 0.25
OCR_CLIENT_TIMEOUT_SECONDS = 60  # HTTP client timeout for a single OCR request


# =============================================================================
# LLM
# =============================================================================

LLM_REQUEST_TIMEOUT_SECONDS = 30
LLM_MAX_RETRIES = 2
LLM_RETRY_SCHEDULE_SECONDS = (0.5, 1.0, 2.0, 4.0)
LLM_RETRY_JITTER_SECONDS = 0.2
DEFAULT_TEMPERATURE = 0.0
DEFAULT_AZURE_API_VERSION = "2024-08-01-preview"


# =============================================================================
# Validation Limits
# =============================================================================

MAX_SOURCE_URL_LENGTH = 2048
MAX_PDF_BYTES = 15 * 1024 * 1024  # 15 MB
MAX_OCR_TEXT_BYTES = 1 * 1024 * 1024  # 1 MB
PDF_FETCH_TIMEOUT_SECONDS = 45
PDF_FETCH_MAX_RETRIES = 2  # 3 attempts in total
PDF_FETCH_RETRY_SCHEDULE_SECONDS = (0.25, 0.5, 1.0)
DEFAULT_ALLOWED_PDF_HOSTS = ("s3.amazonaws.com", "amazonaws.com", "cloudfront.net")


# =============================================================================
# Error Handling
# =============================================================================

TRACE_HEADERS = ("x-request-id", "x-amzn-requestid", "apim-request-id")
