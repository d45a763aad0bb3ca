"""Token-bucket rate limiter shared by all workers of a stage."""
import asyncio
import time
from typing import Awaitable, Callable, Optional


class TokenBucket:
    """
    Allow at most ``max_tokens`` acquisitions per ``interval_seconds``.

    Tokens refill continuously. ``acquire`` waits until a token is free, so
    the aggregate rate stays bounded however many workers share the bucket.
    """

    def __init__(
        self,
        max_tokens: int,
        interval_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_tokens <= 0 or interval_seconds <= 0:
            raise ValueError("max_tokens and interval_seconds must be positive")
        self.max_tokens = max_tokens
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(max_tokens)
        self._updated = clock()
        self._lock = asyncio.Lock()

    @property
    def rate(self) -> float:
        """Tokens per second."""
        return self.max_tokens / self.interval_seconds

    def _refill(self):
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(float(self.max_tokens), self._tokens + elapsed * self.rate)
        self._updated = now

    def try_acquire(self) -> bool:
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    async def acquire(self) -> float:
        """Take one token. Returns the seconds spent waiting."""
        waited = 0.0
        async with self._lock:
            while not self.try_acquire():
                delay = (1 - self._tokens) / self.rate
                await self._sleep(delay)
                waited += delay
        return waited


def build_limiter(max_per_interval: Optional[int], interval_ms: Optional[int]) -> Optional[TokenBucket]:
    if not max_per_interval or not interval_ms:
        return None
    return TokenBucket(max_per_interval, interval_ms / 1000.0)
