"""Client-side request pacing."""

from __future__ import annotations

import asyncio
import time


class RateLimiter:
    """Token bucket limiting outgoing requests per second.

    Example:
        limiter = RateLimiter(requests_per_second=5)
        await limiter.acquire()
    """

    def __init__(self, requests_per_second: float = 10.0, burst: int | None = None) -> None:
        """Initialize rate limiter.

        Args:
            requests_per_second: Sustained request rate.
            burst: Bucket capacity (defaults to one second of requests).
        """
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.requests_per_second = requests_per_second
        self.capacity = float(burst if burst is not None else max(1, int(requests_per_second)))
        self._tokens = self.capacity
        self._updated = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._updated
        self._updated = now
        self._tokens = min(self.capacity, self._tokens + elapsed * self.requests_per_second)

    async def acquire(self) -> None:
        """Wait until a request may be sent."""
        async with self._lock:
            self._refill()
            if self._tokens < 1:
                wait = (1 - self._tokens) / self.requests_per_second
                await asyncio.sleep(wait)
                self._refill()
            self._tokens -= 1
