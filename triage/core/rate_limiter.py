"""Async-safe token-bucket rate limiter shared by every model call.

The retrieval loop, reviewer, reasoner and postprocessors all go through the
same ``ChatModelClient``, which acquires a token before opening a stream.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field

from triage.core.config import get_settings


@dataclass
class TokenBucketRateLimiter:
    requests_per_minute: int = 30
    burst_size: int = 5

    _tokens: float = field(init=False, default=0.0)
    _last_refill: float = field(init=False, default=0.0)
    _lock: asyncio.Lock = field(init=False, default_factory=asyncio.Lock)

    def __post_init__(self) -> None:
        if self.requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")
        self._tokens = float(self.burst_size)
        self._last_refill = time.monotonic()

    async def acquire(self) -> None:
        """Wait until a token is available, then consume one."""
        async with self._lock:
            self._refill()
            while self._tokens < 1.0:
                deficit = 1.0 - self._tokens
                wait_time = deficit * 60.0 / self.requests_per_minute
                # Waiters queue on the lock in arrival order
                await asyncio.sleep(wait_time)
                self._refill()
            self._tokens -= 1.0

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        refill = elapsed * (self.requests_per_minute / 60.0)
        self._tokens = min(self._tokens + refill, float(self.burst_size))
        self._last_refill = now

    @property
    def tokens_remaining(self) -> float:
        self._refill()
        return self._tokens


_limiter: TokenBucketRateLimiter | None = None


def get_rate_limiter() -> TokenBucketRateLimiter:
    global _limiter
    if _limiter is None:
        settings = get_settings()
        _limiter = TokenBucketRateLimiter(
            requests_per_minute=settings.rate_limit_requests_per_minute,
            burst_size=settings.rate_limit_burst_size,
        )
    return _limiter
