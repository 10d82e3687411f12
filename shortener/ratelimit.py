"""Per-client token bucket rate limiting for the HTTP layer.

Each client identifier (the caller's IP) owns a bucket holding up to ``burst``
tokens, refilled at ``rate`` tokens per second. A request spends one token or
is refused. Buckets idle for longer than ``idle_ttl`` seconds are removed by a
background sweep task so the map does not grow without bound.

The limiter lives in one event loop and is only touched from coroutines, so
it needs no lock.
"""

import asyncio
import logging
import time
from dataclasses import dataclass

__all__ = ["RateLimiter"]


@dataclass
class _Bucket:
    tokens: float
    updated_at: float
    last_seen: float


class RateLimiter:
    def __init__(
        self,
        rate: float,
        burst: int,
        idle_ttl: float = 180.0,
        sweep_interval: float = 60.0,
        logger: logging.Logger | None = None,
    ) -> None:
        assert rate > 0, "rate must be positive"
        assert burst >= 1, "burst must be at least 1"
        self.rate = rate
        self.burst = burst
        self.idle_ttl = idle_ttl
        self.sweep_interval = sweep_interval
        self._buckets: dict[str, _Bucket] = {}
        self._sweeper: asyncio.Task | None = None
        self._logger = logger or logging.getLogger("shortener")

    def __len__(self) -> int:
        return len(self._buckets)

    def allow(self, client_id: str, now: float | None = None) -> bool:
        now = time.monotonic() if now is None else now
        bucket = self._buckets.get(client_id)
        if bucket is None:
            bucket = _Bucket(tokens=float(self.burst), updated_at=now, last_seen=now)
            self._buckets[client_id] = bucket
        else:
            elapsed = max(0.0, now - bucket.updated_at)
            bucket.tokens = min(float(self.burst), bucket.tokens + elapsed * self.rate)
            bucket.updated_at = now
        bucket.last_seen = now

        if bucket.tokens >= 1.0:
            bucket.tokens -= 1.0
            return True
        return False

    def sweep(self, now: float | None = None) -> int:
        """Drop buckets not seen for ``idle_ttl`` seconds; return how many were removed."""
        now = time.monotonic() if now is None else now
        stale = [key for key, bucket in self._buckets.items() if now - bucket.last_seen > self.idle_ttl]
        for key in stale:
            del self._buckets[key]
        return len(stale)

    async def start(self) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="rate-limit-sweeper")

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            removed = self.sweep()
            if removed:
                self._logger.debug(f"Rate limiter swept {removed} idle clients")
