"""
Retry policy for fallible external calls.
Following Single Responsibility Principle - handles retry and backoff only.
"""

import random
import time
from typing import Any, Callable, List, Optional

from .exceptions import ActionFailure, FATAL_ERRORS
from .models import RetryAttempt


class RetryPolicy:
    """
    Bounded exponential-backoff retry around a callable.

    The delay before attempt k (k >= 2) is ``base_delay * 2 ** (k - 1)``,
    so the default schedule for three attempts is 0s, 2s, 4s. Delays are
    capped at ``max_delay``; ``jitter`` (0.0 - 1.0) spreads each delay by
    up to that fraction in either direction and is off by default.
    """

    def __init__(self, max_attempts: int = 3, base_delay: float = 1.0,
                 max_delay: Optional[float] = 32.0, jitter: float = 0.0,
                 sleep: Callable[[float], None] = time.sleep,
                 retry_on: Optional[Callable[[Exception], bool]] = None):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not 0.0 <= jitter <= 1.0:
            raise ValueError("jitter must be between 0.0 and 1.0")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.sleep = sleep
        self.retry_on = retry_on or self.is_retryable
        self.attempts: List[RetryAttempt] = []

    def with_attempts(self, max_attempts: int) -> 'RetryPolicy':
        """Same backoff settings with a different attempt budget"""
        return RetryPolicy(max_attempts=max_attempts, base_delay=self.base_delay,
                           max_delay=self.max_delay, jitter=self.jitter,
                           sleep=self.sleep, retry_on=self.retry_on)

    @staticmethod
    def is_retryable(error: Exception) -> bool:
        """Fatal workflow errors are surfaced immediately"""
        return not isinstance(error, FATAL_ERRORS)

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before the given 1-indexed attempt"""
        if attempt <= 1:
            return 0.0
        delay = self.base_delay * (2 ** (attempt - 1))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        if self.jitter:
            delay += delay * self.jitter * random.uniform(-1.0, 1.0)
        return max(delay, 0.0)

    def call(self, fn: Callable[[], Any], description: str = "operation") -> Any:
        """
        Call fn until it succeeds or max_attempts is exhausted.

        Returns:
            Whatever fn returns on its first successful attempt

        Raises:
            ActionFailure: After max_attempts consecutive failures
        """
        self.attempts = []
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            delay = self.delay_for(attempt)
            if delay > 0:
                self.sleep(delay)
            try:
                result = fn()
            except Exception as e:
                self.attempts.append(RetryAttempt(attempt=attempt, delay=delay, error=str(e)))
                if not self.retry_on(e):
                    raise
                last_error = e
                continue
            self.attempts.append(RetryAttempt(attempt=attempt, delay=delay))
            return result

        raise ActionFailure(
            f"{description} failed after {self.max_attempts} attempts: {last_error}",
            attempts=self.max_attempts,
        ) from last_error


def with_retry(fn: Callable[[], Any], max_attempts: int = 3, description: str = "operation",
               **policy_options) -> Any:
    """Functional form of RetryPolicy.call"""
    return RetryPolicy(max_attempts=max_attempts, **policy_options).call(fn, description)
