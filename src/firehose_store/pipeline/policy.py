from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Callable

from ..errors import RetryableError

_TRANSIENT_HINTS = (
    "timeout",
    "timed out",
    "temporar",
    "unavailable",
    "busy",
    "retry",
    "rate limit",
    "too many requests",
    "connection reset",
)


def default_retry_classifier(exc: BaseException) -> bool:
    """True for network/rate-limit class errors worth retrying."""
    if isinstance(exc, (RetryableError, TimeoutError, ConnectionError)):
        return True
    if isinstance(exc, (ValueError, TypeError, KeyError, PermissionError)):
        return False
    msg = str(exc).lower()
    return any(h in msg for h in _TRANSIENT_HINTS)


@dataclass
class RetryPolicy:
    """Exponential backoff schedule for one batch insert.

    ``max_attempts`` counts the first try. The wait after attempt ``n`` is
    ``initial_backoff_ms * backoff_multiplier ** (n - 1)``, capped at
    ``max_backoff_ms``; with ``jitter`` it is drawn from 50-100% of that.
    """

    max_attempts: int = 3
    initial_backoff_ms: int = 250
    max_backoff_ms: int = 30_000
    backoff_multiplier: float = 2.0
    jitter: bool = False
    classify_retryable: Callable[[BaseException], bool] = field(
        default=default_retry_classifier
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_backoff_ms < 0 or self.max_backoff_ms < 0:
            raise ValueError("backoff must be >= 0")
        if self.backoff_multiplier < 1.0:
            raise ValueError("backoff_multiplier must be >= 1.0")

    def next_backoff_ms(self, attempt: int) -> int:
        base = self.initial_backoff_ms * (self.backoff_multiplier ** max(0, attempt - 1))
        capped = int(min(base, self.max_backoff_ms))
        if not self.jitter:
            return capped
        return int(random.uniform(capped / 2, capped))

    def schedule_ms(self) -> list[int]:
        """Waits between consecutive attempts (``max_attempts - 1`` entries)."""
        return [self.next_backoff_ms(i) for i in range(1, self.max_attempts)]
