"""
Per-provider token bucket

Each external provider gets its own bucket. The bucket only shapes the rate
of calls to that provider; how many screenshots run at once is decided
separately by the orchestrator's semaphore.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Dict


@dataclass
class TokenBucket:
    """
    Classic token bucket.
    - rate: tokens added per second
    - capacity: maximum burst size
    """

    rate: float
    capacity: int
    clock: Callable[[], float] = time.monotonic
    sleep: Callable = asyncio.sleep
    _tokens: float = field(init=False)
    _updated: float = field(init=False)
    _lock: asyncio.Lock = field(init=False, default=None)

    def __post_init__(self) -> None:
        if self.rate <= 0 or self.capacity <= 0:
            raise ValueError("rate and capacity must be positive")
        self._tokens = float(self.capacity)
        self._updated = self.clock()

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.rate)
        self._updated = now

    def try_acquire(self, tokens: int = 1) -> bool:
        """Take tokens if available right now"""
        self._refill(self.clock())
        if self._tokens >= tokens:
            self._tokens -= tokens
            return True
        return False

    async def acquire(self, tokens: int = 1) -> None:
        """Wait until tokens are available, then take them"""
        if tokens > self.capacity:
            raise ValueError(f"Cannot acquire {tokens} tokens from a bucket of {self.capacity}")

        # Lock is created lazily so the bucket can be built outside a running loop
        if self._lock is None:
            self._lock = asyncio.Lock()

        async with self._lock:
            while not self.try_acquire(tokens):
                deficit = tokens - self._tokens
                await self.sleep(deficit / self.rate)


def build_provider_limiters(rate_limits: Dict[str, tuple]) -> Dict[str, TokenBucket]:
    """Build one bucket per provider from {name: (rate, burst)}"""
    return {
        name: TokenBucket(rate=rate, capacity=burst)
        for name, (rate, burst) in rate_limits.items()
    }
