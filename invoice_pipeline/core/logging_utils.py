"""
Content-safe logging helpers.

Document URLs are often pre-signed and must not reach log lines; only the
host is kept.
"""

from urllib.parse import urlsplit


def redact_url(url: str | None) -> str:
    """
    Reduce a URL to its hostname for logs.

    Rules:
    - None / empty / unparsable → "***"
    - data: URLs → "data"
    - Otherwise → lower-cased hostname
    """
    if not url:
        return "***"
    if url.startswith("data:"):
        return "data"
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return "***"
    return host or "***"
