"""Retry policy for generation attempts."""
import random
from dataclasses import dataclass, field
from typing import Callable
from batchforge.config import get_settings
from batchforge.core.enums import BackoffStrategy
from batchforge.core.exceptions import GenerationError


def is_retriable(error: BaseException) -> bool:
    """
    Default retry predicate.

    Only classified transient failures are retried; authentication and
    client errors fail fast, and unclassified errors are never retried.
    """
    return isinstance(error, GenerationError) and error.retriable


@dataclass
class RetryPolicy:
    """
    Bounded retry policy for one batch item.

    Attempts are numbered from 1. With EXPONENTIAL backoff and a base delay
    of 2s the waits are 2s after attempt 1 and 4s after attempt 2.
    """

    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 30.0
    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    retry_on: Callable[[BaseException], bool] = field(default=is_retriable)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        """Build the policy configured for this deployment."""
        settings = get_settings()
        return cls(
            max_attempts=settings.MAX_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
            max_delay=settings.RETRY_MAX_DELAY_SECONDS,
        )

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """
        Check if a failed attempt should be followed by another.

        Args:
            error: Error raised by the attempt
            attempt: Number of the attempt that failed (1-based)

        Returns:
            bool: True if should retry, False otherwise
        """
        return attempt < self.max_attempts and self.retry_on(error)

    def delay_for(self, attempt: int, error: BaseException = None) -> float:
        """
        Calculate the wait before the next attempt.

        A provider supplied Retry-After is honoured when it is longer than
        the computed backoff.

        Args:
            attempt: Number of the attempt that failed (1-based)
            error: Error raised by the attempt

        Returns:
            float: Delay in seconds
        """
        if self.strategy == BackoffStrategy.FIXED:
            delay = self.base_delay

        elif self.strategy == BackoffStrategy.EXPONENTIAL:
            delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

        elif self.strategy == BackoffStrategy.JITTER:
            exponential_delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
            # Add random jitter (0 to 50% of exponential delay)
            delay = exponential_delay + random.uniform(0, exponential_delay * 0.5)

        else:
            delay = self.base_delay

        retry_after = getattr(error, "retry_after", None)
        if retry_after:
            delay = max(delay, min(retry_after, self.max_delay))
        return delay
