"""
Token Bucket Rate Limiter - External Price Source Throttling

Each external price source owns one bucket so a burst of scans cannot
exceed the venue's public API limits.

Model:
=====
- Capacity: maximum burst size (tokens)
- Rate: tokens added per second
- Cost: tokens consumed per request

Example (5 req/sec, burst 20):
- Up to 20 requests go out immediately
- Then throttled to 5 req/sec sustained
- After 4 idle seconds the bucket is full again
"""

import time
import asyncio
from typing import Callable, Final, Tuple


class TokenBucketRateLimiter:
    """
    Token bucket with asynchronous acquire.

    Attributes:
        rate: Tokens per second (sustained rate)
        capacity: Maximum burst capacity (tokens)
        tokens: Current token count
    """

    def __init__(self, rate: float, capacity: float, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            rate: Tokens per second (e.g., 5.0 = 5 req/sec)
            capacity: Maximum burst capacity (e.g., 20.0 = 20 req burst)
            clock: Monotonic time source
        """
        if rate <= 0 or capacity <= 0:
            raise ValueError(f"rate and capacity must be positive (rate={rate}, capacity={capacity})")
        self.rate: Final[float] = rate
        self.capacity: Final[float] = capacity
        self._clock = clock
        self.tokens: float = capacity  # Start full
        self.last_update: float = clock()
        self._lock = asyncio.Lock()

    @classmethod
    def from_limit(cls, limit: Tuple[float, float]) -> "TokenBucketRateLimiter":
        """Build from a (rate, capacity) tuple as stored in constants"""
        rate, capacity = limit
        return cls(rate=rate, capacity=capacity)

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self.last_update)
        self.tokens = min(self.capacity, self.tokens + self.rate * elapsed)
        self.last_update = now

    async def acquire(self, cost: float = 1.0) -> None:
        """
        Consume tokens, waiting for the bucket to refill if needed.

        Args:
            cost: Tokens to consume (default: 1.0)
        """
        async with self._lock:
            while True:
                self._refill()
                if self.tokens >= cost:
                    self.tokens -= cost
                    return
                await asyncio.sleep((cost - self.tokens) / self.rate)

    def try_acquire(self, cost: float = 1.0) -> bool:
        """Consume tokens without waiting. Returns False if the bucket is short."""
        self._refill()
        if self.tokens >= cost:
            self.tokens -= cost
            return True
        return False

    def get_available_tokens(self) -> float:
        self._refill()
        return self.tokens

    def reset(self) -> None:
        """Refill to capacity"""
        self.tokens = self.capacity
        self.last_update = self._clock()
