"""
Time utilities shared across the pipeline.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """
    Return the current time as an aware UTC datetime.
    """
    return datetime.now(timezone.utc)


def elapsed_ms(start: float, end: float) -> int:
    """
    Convert two monotonic readings (seconds) into whole milliseconds.
    """
    return max(0, int(round((end - start) * 1000)))
