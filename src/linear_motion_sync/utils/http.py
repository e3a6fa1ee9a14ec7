"""HTTP retry policy and client-side rate limiting.

Calls to Motion go through a single shared ``RateLimiter`` and a
``RetryPolicy`` that retries only transient failures with exponential
backoff:

    limiter = RateLimiter(max_calls=12, period=60.0)
    policy = RetryPolicy(max_retries=3, base_delay=10.0, max_delay=60.0)

    async def send() -> httpx.Response:
        await limiter.acquire()
        response = await client.get("/workspaces")
        response.raise_for_status()
        return response

    response = await policy.call(send)
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({408, 429})


def is_retryable_error(exception: Exception) -> bool:
    """Determine if an exception represents a transient, retryable error.

    Retryable errors are 5xx responses, 408/429 responses, timeouts and
    transport errors. Other 4xx responses and non-HTTP exceptions are
    permanent.

    Args:
        exception: Exception to check.

    Returns:
        True if the error is retryable, False otherwise.
    """
    # HTTPStatusError is not a TransportError, so check it on its own
    if isinstance(exception, httpx.HTTPStatusError):
        status_code = exception.response.status_code
        return status_code in RETRYABLE_STATUS_CODES or 500 <= status_code < 600

    if isinstance(exception, (httpx.TimeoutException, httpx.TransportError)):
        return True

    return False


class RetryPolicy:
    """Bounded retry with exponential backoff for transient HTTP failures."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 10.0,
        max_delay: float = 60.0,
        multiplier: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize retry policy.

        Args:
            max_retries: Maximum number of retry attempts after the first call.
            base_delay: Delay in seconds before the first retry.
            max_delay: Upper bound for any single delay.
            multiplier: Exponential backoff multiplier.
            sleep: Coroutine used to wait between attempts (for tests).

        Raises:
            ValueError: If parameters are invalid.
        """
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if base_delay < 0 or max_delay < base_delay:
            raise ValueError("delays must satisfy 0 <= base_delay <= max_delay")
        if multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")

        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self._sleep = sleep or asyncio.sleep

    def calculate_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-indexed)."""
        return min(self.max_delay, self.base_delay * (self.multiplier**attempt))

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation``, retrying it on transient failures.

        Args:
            operation: Zero-argument coroutine function performing one attempt.

        Returns:
            The operation's result.

        Raises:
            Exception: The last error once retries are exhausted, or the first
                non-retryable error.
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as e:
                if not is_retryable_error(e):
                    raise
                if attempt >= self.max_retries:
                    logger.warning(f"Max retries ({self.max_retries}) exceeded: {e}")
                    raise

                delay = self.calculate_delay(attempt)
                attempt += 1
                logger.info(
                    f"Retry attempt {attempt}/{self.max_retries} after {delay:.1f}s due to: {e}"
                )
                await self._sleep(delay)


class RateLimiter:
    """Token bucket shared by every caller of one remote service.

    Allows bursts of up to ``max_calls`` and refills at ``max_calls`` per
    ``period`` seconds. Waiters are served one at a time.
    """

    def __init__(
        self,
        max_calls: int = 12,
        period: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        if max_calls <= 0:
            raise ValueError("max_calls must be positive")
        if period <= 0:
            raise ValueError("period must be positive")

        self.max_calls = max_calls
        self.period = period
        self._clock = clock
        self._sleep = sleep or asyncio.sleep
        self._tokens = float(max_calls)
        self._updated_at = clock()
        self._lock = asyncio.Lock()

    @property
    def refill_rate(self) -> float:
        """Tokens added per second."""
        return self.max_calls / self.period

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated_at)
        self._tokens = min(float(self.max_calls), self._tokens + elapsed * self.refill_rate)
        self._updated_at = now

    async def acquire(self) -> None:
        """Wait until a call is allowed, then consume one token."""
        async with self._lock:
            self._refill()
            while self._tokens < 1.0:
                wait = (1.0 - self._tokens) / self.refill_rate
                logger.debug(f"Rate limit reached, waiting {wait:.2f}s")
                await self._sleep(wait)
                self._refill()
            self._tokens -= 1.0
