"""Fixed-delay retry helpers shared by provider clients."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from typing import TypeVar

logger = logging.getLogger("tools.backoff")

SleepFn = Callable[[float], None]
T = TypeVar("T")


def fixed_backoff(*, max_attempts: int = 2, delay: float = 1.0) -> Iterator[tuple[int, float]]:
    """Yield (attempt, delay_seconds) pairs with a constant delay between attempts."""
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    if delay < 0:
        raise ValueError("delay must be >= 0")

    for attempt in range(1, max_attempts + 1):
        yield attempt, delay


def call_with_retry(
    func: Callable[[], T],
    *,
    retry_on: tuple[type[BaseException], ...],
    label: str,
    max_attempts: int = 2,
    delay: float = 1.0,
    sleep: SleepFn | None = None,
) -> T:
    """Invoke `func`, retrying transient failures on a fixed schedule.

    The last error is re-raised once attempts are exhausted; errors outside
    `retry_on` propagate immediately.
    """
    sleeper = sleep or time.sleep
    last_error: BaseException | None = None
    for attempt, wait in fixed_backoff(max_attempts=max_attempts, delay=delay):
        try:
            return func()
        except retry_on as exc:
            last_error = exc
            if attempt >= max_attempts:
                raise
            logger.warning(
                "provider.retry",
                extra={
                    "label": label,
                    "code": getattr(exc, "code", type(exc).__name__),
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "delay_ms": round(wait * 1000, 2),
                },
            )
            sleeper(wait)
    raise RuntimeError(f"{label}: retries exhausted") from last_error  # pragma: no cover
