"""Bounded retry with an optional compensating cleanup action."""

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

from ..utils import MAX_RETRY_DELAY

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryResult(Generic[T]):
    """Outcome of a retried operation."""

    succeeded: bool
    """True if one of the attempts returned normally"""

    attempts: int
    """Number of attempts made"""

    value: Optional[T] = None
    """Return value of the successful attempt"""

    error: Optional[Exception] = None
    """Exception of the last failed attempt when exhausted"""

    @property
    def exhausted(self) -> bool:
        return not self.succeeded


def backoff_delay(retry_delay: float, attempt: int) -> float:
    """Exponential backoff with +/- 25% jitter, capped at MAX_RETRY_DELAY.

    Args:
        retry_delay: Delay after the first failure (0 disables waiting)
        attempt: Number of failures so far (1-based)
    """
    if retry_delay <= 0:
        return 0.0
    base_delay = min(retry_delay * (2 ** (attempt - 1)), MAX_RETRY_DELAY)
    jitter = base_delay * 0.25 * (2 * random.random() - 1)
    return base_delay + jitter


def retry(
    operation: Callable[[], T],
    max_attempts: int,
    cleanup: Optional[Callable[[], object]] = None,
    retry_delay: float = 0.0,
    description: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> RetryResult[T]:
    """Run ``operation`` until it succeeds or ``max_attempts`` is used up.

    Every failure is logged. Once no attempts remain, ``cleanup`` runs
    exactly once; a failing cleanup is logged and never raised.

    Args:
        operation: Zero-argument callable to attempt
        max_attempts: Attempt budget (at least 1)
        cleanup: Compensating action run on exhaustion
        retry_delay: Base backoff delay in seconds (0 retries immediately)
        description: Label used in log messages
        sleep: Sleep function, replaceable in tests

    Returns:
        RetryResult tagged as succeeded or exhausted
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    last_error: Optional[Exception] = None
    for attempt in range(1, max_attempts + 1):
        try:
            value = operation()
        except Exception as e:
            last_error = e
            remaining = max_attempts - attempt
            logger.warning(
                f"{description} failed (attempt {attempt}/{max_attempts}, "
                f"{remaining} left): {e}"
            )
            if remaining:
                delay = backoff_delay(retry_delay, attempt)
                if delay:
                    sleep(delay)
            continue
        if attempt > 1:
            logger.debug(f"{description} succeeded on attempt {attempt}")
        return RetryResult(succeeded=True, attempts=attempt, value=value)

    logger.error(f"{description} failed after {max_attempts} attempt(s): {last_error}")
    if cleanup is not None:
        try:
            cleanup()
        except Exception as e:
            logger.error(f"Cleanup after {description} failed: {e}")

    return RetryResult(succeeded=False, attempts=max_attempts, error=last_error)
