"""Token bucket limiting how often a reconciliation may start."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """Blocking token bucket.

    The bucket starts full so the first ``burst`` calls go through at once.
    After that, callers are spaced at least ``1 / rate`` seconds apart.
    Callers are expected to be serialized (the coordinator holds its lock
    around ``accept``).
    """

    def __init__(
        self,
        rate: float,
        burst: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate}")
        if burst < 1:
            raise ValueError(f"burst must be at least 1, got {burst}")

        self.rate = rate
        self.burst = burst
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(burst)
        self._last_refill = clock()

    @property
    def tokens(self) -> float:
        """Tokens currently in the bucket (negative while a caller waits)."""
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
        self._last_refill = now

    def reserve(self) -> float:
        """Take one token and return how long the caller must wait before using it."""
        self._refill()
        self._tokens -= 1.0
        if self._tokens >= 0:
            return 0.0
        return -self._tokens / self.rate

    async def accept(self) -> None:
        """Block until a token is available, then consume it."""
        delay = self.reserve()
        if delay > 0:
            logger.info(f"Reload rate limit reached, waiting {delay:.1f}s")
            await self._sleep(delay)
