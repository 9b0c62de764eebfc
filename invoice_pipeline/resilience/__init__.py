"""Resilience utilities for external service calls.

- Backoff schedules with bounded jitter
- An injectable clock so polling loops can run on simulated time
- Category-aware async retry
"""

from invoice_pipeline.resilience.backoff import (
    BackoffSchedule,
    Clock,
    SystemClock,
    retry_async,
)

__all__ = [
    "BackoffSchedule",
    "Clock",
    "SystemClock",
    "retry_async",
]
