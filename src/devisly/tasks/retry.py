"""Retry policy for message-processing tasks.

Cloud Tasks owns the actual retry schedule; this module is the single place
that decides which failures are worth retrying and what the queue's retry
configuration should be.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Literal

ErrorKind = Literal["configuration", "not_found", "transient"]

# Retrying these cannot succeed without an operator stepping in
DISCARD_KINDS: frozenset[str] = frozenset({"configuration", "not_found"})

RETRY_COUNT_HEADER = "X-CloudTasks-TaskRetryCount"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded, polynomially growing retry schedule.

    Attributes:
        max_attempts: Total deliveries, first one included.
        base_seconds: Constant added to every backoff.
        exponent: Power applied to the attempt number.
        max_backoff_seconds: Ceiling for a single wait.
    """

    max_attempts: int = 3
    base_seconds: int = 15
    exponent: int = 4
    max_backoff_seconds: int = 3600

    def backoff(self, attempt: int) -> int:
        """Seconds to wait after the given (1-based) failed attempt."""
        attempt = max(attempt, 1)
        return min(attempt**self.exponent + self.base_seconds, self.max_backoff_seconds)

    def should_retry(self, error_kind: str, attempt: int) -> bool:
        """Whether a failure on the given (1-based) attempt deserves another one."""
        if error_kind in DISCARD_KINDS:
            return False
        return attempt < self.max_attempts

    def is_last_attempt(self, retry_count: int) -> bool:
        """retry_count as reported by Cloud Tasks (0 on first delivery)."""
        return retry_count >= self.max_attempts - 1

    def to_queue_retry_config(self) -> dict[str, Any]:
        """Queue RetryConfig approximating the backoff curve."""
        return {
            "max_attempts": self.max_attempts,
            "min_backoff": timedelta(seconds=self.backoff(1)),
            "max_backoff": timedelta(seconds=self.backoff(self.max_attempts)),
            "max_doublings": max(self.max_attempts - 1, 0),
        }


def retry_count_from_header(value: str | None) -> int:
    """Parse X-CloudTasks-TaskRetryCount; missing or garbage means first delivery."""
    try:
        return max(int(value), 0) if value else 0
    except ValueError:
        return 0
