"""Credential-aware rate limiting for provider calls.

Every credential gets its own sliding window per model family (flash/pro),
shared by all items and all executions in this process. A rate-limited
response puts the credential into a cooldown that every caller waits out,
so one 429 slows the whole credential down instead of each remaining item
hitting the provider again.
"""
import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Dict, Optional, Tuple
from batchforge.config import get_settings

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


def model_family(model: Optional[str]) -> str:
    """Bucket a model name into the provider's quota family."""
    if model and "pro" in model:
        return "pro"
    return "flash"


@dataclass
class RateLimiterStats:
    """Snapshot of one limiter's usage."""

    active_requests: int
    max_requests: int
    available_slots: int
    cooldown_remaining: float


class SlidingWindowLimiter:
    """Allows at most max_requests acquisitions per window."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._requests: Deque[float] = deque()
        self._cooldown_until = 0.0
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self._requests and now - self._requests[0] >= self.window_seconds:
            self._requests.popleft()

    async def acquire(self) -> None:
        """Wait until a request slot is available and take it."""
        async with self._lock:
            while True:
                now = self._clock()
                if now < self._cooldown_until:
                    wait = self._cooldown_until - now
                    logger.debug(f"Credential in cooldown, waiting {wait:.2f}s")
                    await self._sleep(wait)
                    continue

                self._prune(now)
                if len(self._requests) < self.max_requests:
                    self._requests.append(now)
                    return

                wait = self.window_seconds - (now - self._requests[0])
                logger.debug(
                    f"Rate limiter: {len(self._requests)}/{self.max_requests} slots used, "
                    f"waiting {wait:.2f}s"
                )
                await self._sleep(max(wait, 0.0))

    def penalize(self, seconds: float) -> None:
        """Block all acquisitions for the given number of seconds."""
        self._cooldown_until = max(self._cooldown_until, self._clock() + seconds)

    def stats(self) -> RateLimiterStats:
        now = self._clock()
        self._prune(now)
        active = len(self._requests)
        return RateLimiterStats(
            active_requests=active,
            max_requests=self.max_requests,
            available_slots=max(self.max_requests - active, 0),
            cooldown_remaining=max(self._cooldown_until - now, 0.0),
        )


class CredentialRateLimiter:
    """Keeps one SlidingWindowLimiter per (credential fingerprint, model family)."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        cooldown_seconds: float,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._sleep = sleep
        self._limiters: Dict[Tuple[str, str], SlidingWindowLimiter] = {}

    def limiter_for(self, fingerprint: str, model: Optional[str]) -> SlidingWindowLimiter:
        key = (fingerprint, model_family(model))
        limiter = self._limiters.get(key)
        if limiter is None:
            limiter = SlidingWindowLimiter(
                self.max_requests, self.window_seconds, clock=self._clock, sleep=self._sleep
            )
            self._limiters[key] = limiter
        return limiter

    async def acquire(self, fingerprint: str, model: Optional[str]) -> None:
        """Wait for a request slot for this credential and model."""
        await self.limiter_for(fingerprint, model).acquire()

    def penalize(self, fingerprint: str, model: Optional[str], retry_after: Optional[float] = None) -> None:
        """
        Record a rate-limited response for this credential.

        Args:
            fingerprint: Credential fingerprint
            model: Model the request was for
            retry_after: Provider supplied wait, if any
        """
        seconds = retry_after if retry_after else self.cooldown_seconds
        logger.warning(f"Credential {fingerprint} rate limited, cooling down for {seconds:.1f}s")
        self.limiter_for(fingerprint, model).penalize(seconds)


# Process-wide limiter (singleton)
_rate_limiter: Optional[CredentialRateLimiter] = None


def get_rate_limiter() -> CredentialRateLimiter:
    """
    Get the process-wide credential rate limiter (singleton).

    Returns:
        CredentialRateLimiter: Shared limiter instance
    """
    global _rate_limiter
    if _rate_limiter is None:
        settings = get_settings()
        _rate_limiter = CredentialRateLimiter(
            max_requests=settings.RATE_LIMIT_REQUESTS,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
            cooldown_seconds=settings.RATE_LIMIT_COOLDOWN_SECONDS,
        )
    return _rate_limiter
