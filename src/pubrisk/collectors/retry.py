"""Retry with exponential backoff for flaky or rate-limited upstreams."""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from pubrisk import config

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransientError(Exception):
    """A failure worth retrying (5xx, malformed body, dropped connection)."""


class RateLimitError(TransientError):
    """The upstream asked us to slow down (HTTP 429)."""


class RetryPolicy:
    """
    Run an async operation with bounded retries.

    Delay before retry ``n`` (0-based) is ``base_delay * factor ** n`` with
    +/-20% jitter, clamped to ``[min_delay, max_delay]``. Rate-limit failures
    use the steeper ``rate_limit_factor``. When every attempt fails the
    policy returns ``None`` rather than raising.
    """

    JITTER = 0.2

    def __init__(
        self,
        max_attempts: int = config.RETRY_ATTEMPTS,
        base_delay: float = config.RETRY_BASE_DELAY,
        factor: float = config.RETRY_FACTOR,
        rate_limit_factor: float = config.RATE_LIMIT_FACTOR,
        min_delay: float = 0.1,
        max_delay: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.factor = factor
        self.rate_limit_factor = rate_limit_factor
        self.min_delay = min_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self._rng = rng or random.Random()

    def delay_for(self, attempt: int, rate_limited: bool = False) -> float:
        """Backoff delay in seconds after the given failed attempt."""
        factor = self.rate_limit_factor if rate_limited else self.factor
        delay = self.base_delay * factor**attempt
        jitter = (self._rng.random() * 2 - 1) * self.JITTER * delay
        return min(self.max_delay, max(self.min_delay, delay + jitter))

    async def run(self, operation: Callable[[], Awaitable[T]], label: str = "") -> Optional[T]:
        """
        Call ``operation`` until it returns or attempts run out.

        Args:
            operation: Zero-argument coroutine function. It returns the result
                (``None`` meaning "absent") or raises TransientError /
                httpx.HTTPError to request a retry.
            label: Used in log messages.

        Returns:
            The operation's result, or None after exhausting all attempts.
        """
        for attempt in range(self.max_attempts):
            try:
                return await operation()
            except (TransientError, httpx.HTTPError) as e:
                if attempt == self.max_attempts - 1:
                    logger.warning(f"Giving up on {label or 'request'} after {self.max_attempts} attempts: {e}")
                    break
                delay = self.delay_for(attempt, rate_limited=isinstance(e, RateLimitError))
                logger.debug(f"Retrying {label or 'request'} in {delay:.2f}s (attempt {attempt + 1}): {e}")
                await self._sleep(delay)
        return None
