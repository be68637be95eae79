"""
Exponential backoff schedule shared by the outbox publisher (async) and the
notification dispatcher (blocking consumer loop).

Only the schedule lives here; each caller owns its retry loop and decides
which exceptions are retryable.
"""
from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass


@dataclass(frozen=True)
class BackoffPolicy:
    max_attempts: int = 3
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 10.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    def delay_for(self, retry: int) -> float:
        """Seconds to wait before retry number ``retry`` (1 = first retry)."""
        return min(self.initial_delay * self.multiplier ** (retry - 1), self.max_delay)

    def delays(self) -> Iterator[float]:
        """Waits between consecutive attempts: ``max_attempts - 1`` values."""
        for retry in range(1, self.max_attempts):
            yield self.delay_for(retry)


# 1s, 2s, 4s ... capped at 10s; three attempts in total.
DEFAULT_BACKOFF = BackoffPolicy()
