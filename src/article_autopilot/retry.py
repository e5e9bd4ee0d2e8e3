"""Bounded retries with linear backoff, returning a tagged result instead of raising."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try, how long to wait, and which errors are worth another try."""

    max_attempts: int = 1
    backoff_seconds: float = 2.0
    retry_on: Callable[[BaseException], bool] = lambda exc: True

    def delay_for(self, attempt: int) -> float:
        """Wait after failed attempt ``attempt`` (1-based): 2s, 4s, 6s with the default unit."""
        return self.backoff_seconds * attempt


@dataclass
class RetrySuccess(Generic[T]):
    value: T
    attempts: int


@dataclass
class RetryExhausted:
    attempts: int
    last_error: Optional[BaseException]
    # True when a non-retryable error ended the loop before max_attempts.
    aborted: bool = False


RetryResult = Union[RetrySuccess[T], RetryExhausted]


def with_retry(
    operation: Callable[[int], T],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "operation",
) -> RetryResult:
    """
    Call ``operation(attempt)`` until it returns or the policy gives up.

    Exceptions never escape: a non-retryable error or the last failed attempt
    yields ``RetryExhausted`` carrying the error. No wait follows the final attempt.
    """
    if policy.max_attempts < 1:
        raise ValueError("max_attempts must be >= 1.")

    last_error: Optional[BaseException] = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            value = operation(attempt)
        except Exception as exc:
            last_error = exc
            logger.warning(
                "%s failed (attempt %s/%s): %s", label, attempt, policy.max_attempts, exc
            )
            if not policy.retry_on(exc):
                return RetryExhausted(attempts=attempt, last_error=exc, aborted=True)
            if attempt < policy.max_attempts:
                delay = policy.delay_for(attempt)
                logger.info("Waiting %.1fs before retrying %s", delay, label)
                sleep(delay)
            continue
        return RetrySuccess(value=value, attempts=attempt)

    logger.error("All %s attempts failed for %s", policy.max_attempts, label)
    return RetryExhausted(attempts=policy.max_attempts, last_error=last_error)
