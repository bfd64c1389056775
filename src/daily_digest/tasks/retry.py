"""Bounded retry with per-failure-class backoff for external calls."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from daily_digest.errors import RateLimitedError, TransientProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3


@dataclass(slots=True)
class RetryPolicy:
    """How many times to call, and how long to wait between calls.

    Network errors and timeouts back off exponentially from ``base_delay_seconds``
    up to ``max_delay_seconds``.  Rate-limit responses wait for the provider's
    ``Retry-After`` hint when present, otherwise ``rate_limit_delay_seconds``.
    Every other error propagates on the first attempt.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    rate_limit_delay_seconds: float = 5.0
    jitter: bool = False
    sleep: Callable[[float], None] = time.sleep
    _random: random.Random = field(default_factory=random.Random, repr=False)

    def delay_for(self, error: TransientProviderError, *, attempt: int) -> float:
        """Seconds to wait after the ``attempt``-th failed call."""

        if isinstance(error, RateLimitedError):
            if error.retry_after is not None and error.retry_after >= 0:
                return min(float(error.retry_after), self.max_delay_seconds)
            return self.rate_limit_delay_seconds
        delay = min(
            self.max_delay_seconds,
            self.base_delay_seconds * (2 ** max(attempt - 1, 0)),
        )
        if self.jitter:
            return self._random.uniform(0, delay)
        return delay

    def call(self, operation: Callable[[], T], *, label: str = "call") -> T:
        """Run ``operation`` until it succeeds or the attempt budget is spent."""

        for attempt in range(1, self.max_attempts + 1):
            try:
                return operation()
            except TransientProviderError as error:
                if attempt >= self.max_attempts:
                    raise
                delay = self.delay_for(error, attempt=attempt)
                logger.warning(
                    "%s failed (%s), retrying in %.1fs (%d/%d)",
                    label,
                    error,
                    delay,
                    attempt,
                    self.max_attempts,
                )
                self.sleep(delay)
        raise RuntimeError(f"{label}: retry loop exited without a result")
