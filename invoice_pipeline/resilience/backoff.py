"""Backoff schedules with jitter, an injectable clock, and async retry.

Example:
    >>> schedule = BackoffSchedule(steps=(1.0, 2.0, 4.0, 8.0), jitter_seconds=0.25)
    >>> schedule.base_delay(0), schedule.base_delay(10)
    (1.0, 8.0)
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol, TypeVar

from invoice_pipeline.core.errors import PipelineError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Clock(Protocol):
    """Time source used by polling loops; swapped for a fake in tests."""

    def monotonic(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


@dataclass(frozen=True)
class BackoffSchedule:
    """Monotonically non-decreasing delay schedule.

    Attributes:
        steps: Base delays in seconds; the last one repeats forever
        jitter_seconds: Upper bound of the uniform noise added to each delay
    """

    steps: tuple[float, ...]
    jitter_seconds: float = 0.0

    def __post_init__(self) -> None:
        if not self.steps:
            raise ValueError("BackoffSchedule requires at least one step")
        if any(b < a for a, b in zip(self.steps, self.steps[1:])):
            raise ValueError("BackoffSchedule steps must be non-decreasing")

    def base_delay(self, attempt: int) -> float:
        return self.steps[min(attempt, len(self.steps) - 1)]

    def delay(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Base delay for ``attempt`` plus uniform jitter in [0, jitter_seconds)."""
        base = self.base_delay(attempt)
        if self.jitter_seconds <= 0:
            return base
        source = rng or random
        return base + source.random() * self.jitter_seconds


async def retry_async(
    func: Callable[[], Awaitable[T]],
    schedule: BackoffSchedule,
    *,
    max_retries: int,
    clock: Optional[Clock] = None,
    rng: Optional[random.Random] = None,
    label: str = "call",
    retry_on: Optional[Callable[[PipelineError], bool]] = None,
) -> T:
    """Retry an async call on retryable ``PipelineError`` categories.

    Args:
        func: Zero-argument coroutine factory
        schedule: Delay schedule, indexed by retry number
        max_retries: Retries after the first attempt
        clock: Sleep source (defaults to ``SystemClock``)
        rng: Jitter source
        label: Name used in log lines
        retry_on: Predicate narrowing which errors are retried (defaults to
            the category's retryability)

    Returns:
        Result from the first successful call

    Raises:
        PipelineError: The last error, immediately if it is not retryable
    """
    clock = clock or SystemClock()
    attempt = 0
    while True:
        try:
            return await func()
        except PipelineError as e:
            should_retry = retry_on(e) if retry_on else e.retryable
            if not should_retry or attempt >= max_retries:
                raise
            delay = schedule.delay(attempt, rng)
            logger.warning(
                f"{label} failed (attempt {attempt + 1}/{max_retries + 1}), "
                f"retrying in {delay:.2f}s",
                extra={
                    "attempt": attempt + 1,
                    "category": e.category.value,
                    "provider": e.provider,
                    "trace_id": e.trace_id,
                },
            )
            await clock.sleep(delay)
            attempt += 1
