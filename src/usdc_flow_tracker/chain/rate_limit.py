"""Token bucket limiting the request rate of a chain client.

Each client owns one bucket. Concurrent callers queue on a lock so that a
burst of fetches for many wallets is spread out instead of all waking at
the same refill instant.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field


@dataclass
class RateLimiter:
    """Token bucket; a non-positive rate disables limiting."""

    capacity: float
    rate: float  # tokens per second
    tokens: float
    updated_at: float
    clock: Callable[[], float] = time.monotonic
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @classmethod
    def create(
        cls,
        requests_per_second: float,
        *,
        burst: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> RateLimiter:
        """Bucket refilled at `requests_per_second`, holding at most `burst` tokens."""
        capacity = burst if burst is not None else max(requests_per_second, 1.0)
        return cls(capacity=capacity, rate=requests_per_second, tokens=capacity, updated_at=clock(), clock=clock)

    @property
    def unlimited(self) -> bool:
        return self.rate <= 0

    def _refill(self) -> None:
        now = self.clock()
        self.tokens = min(self.capacity, self.tokens + (now - self.updated_at) * self.rate)
        self.updated_at = now

    def try_acquire(self, tokens: float = 1.0) -> bool:
        """Take tokens without waiting; False if the bucket is short."""
        if self.unlimited:
            return True
        self._refill()
        if self.tokens >= tokens:
            self.tokens -= tokens
            return True
        return False

    async def acquire(self, tokens: float = 1.0) -> None:
        """Wait until `tokens` are available, then take them."""
        if self.unlimited:
            return
        async with self._lock:
            while not self.try_acquire(tokens):
                await asyncio.sleep((tokens - self.tokens) / self.rate)
