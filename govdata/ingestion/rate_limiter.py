"""Per-source token bucket rate limiter."""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from govdata.ingestion.errors import RateLimitTimeout

if TYPE_CHECKING:
    from govdata.ingestion.registry import RateLimitConfig


@dataclass
class TokenBucketLimiter:
    """Token bucket rate limiter.

    Tokens refill continuously at ``rate`` per second up to ``capacity``.
    A caller takes one token per request and waits when none is left.

    Attributes:
        rate: Tokens added per second
        capacity: Maximum tokens in bucket
        max_wait: Default cap on how long acquire() may wait (None = no cap)
        tokens: Current token count
        last_refill: Clock reading at the last refill
    """

    rate: float  # tokens per second
    capacity: float
    max_wait: float | None = None
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    tokens: float = field(init=False)
    last_refill: float = field(init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def __post_init__(self) -> None:
        if self.rate <= 0 or self.capacity < 1:
            raise ValueError("Rate must be positive and capacity at least 1")
        self.tokens = self.capacity
        self.last_refill = self.clock()

    @classmethod
    def from_config(
        cls,
        config: "RateLimitConfig",
        max_wait: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> "TokenBucketLimiter":
        """Create a limiter from a source's requests-per-window limit."""
        return cls(
            rate=config.refill_rate,
            capacity=float(config.requests),
            max_wait=max_wait,
            clock=clock,
        )

    @property
    def token_interval(self) -> float:
        """Seconds needed to refill a single token."""
        return 1.0 / self.rate

    def _refill(self) -> None:
        """Refill tokens based on elapsed time."""
        now = self.clock()
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
        self.last_refill = now

    async def acquire(self, timeout: float | None = None) -> float:
        """Take one token, waiting until one is available.

        Args:
            timeout: Maximum seconds to wait; falls back to ``max_wait``

        Returns:
            Total wait time in seconds (0 if no wait was needed)

        Raises:
            RateLimitTimeout: If the next wait would exceed the timeout
        """
        limit = timeout if timeout is not None else self.max_wait
        waited = await self._acquire_lock(limit)

        try:
            while True:
                self._refill()

                if self.tokens >= 1:
                    self.tokens -= 1
                    return waited

                wait_time = self.token_interval
                if limit is not None and waited + wait_time > limit:
                    raise RateLimitTimeout(waited=waited, timeout=limit)

                await asyncio.sleep(wait_time)
                waited += wait_time
        finally:
            self._lock.release()

    async def _acquire_lock(self, limit: float | None) -> float:
        """Queue behind earlier callers, within the same time limit.

        Returns:
            Seconds spent queued (0 if the lock was free)
        """
        if not self._lock.locked():
            await self._lock.acquire()
            return 0.0

        loop = asyncio.get_running_loop()
        started = loop.time()
        if limit is None:
            await self._lock.acquire()
        else:
            try:
                await asyncio.wait_for(self._lock.acquire(), timeout=limit)
            except asyncio.TimeoutError:
                raise RateLimitTimeout(waited=loop.time() - started, timeout=limit) from None
        return loop.time() - started

    def try_acquire(self) -> bool:
        """Try to take a token without waiting.

        Returns:
            True if a token was taken, False otherwise
        """
        self._refill()

        if self.tokens >= 1:
            self.tokens -= 1
            return True
        return False

    @property
    def available_tokens(self) -> float:
        """Get current available tokens."""
        self._refill()
        return self.tokens
