"""Redis-backed cache of URL records and short-lived visit counters.

The cache is an optional accelerator. Nothing in the service depends on it
for correctness: every call made through ``best_effort`` is bounded by a
deadline, and any failure or timeout degrades to "no data" with a warning.

Flow Diagram — best_effort()
============================
::
    ┌─────────────┐
    │ cache call   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ asyncio      │
    │ .timeout()   │
    └──────┬──────┘
    OK?    │
    ┌──────┴──────┐
    │ YES          │ NO (error / timeout)
    ▼              ▼
┌─────────┐   ┌──────────────┐
│ Return  │   │ Log warning, │
│ result  │   │ count error, │
└─────────┘   │ return default│
              └──────────────┘

Key Layout
==========
::
    url:{code}      JSON CachedURLPayload, PX = ttl
    clicks:{code}   INCR counter, EXPIRE set on first increment

How to Use
===========
**Step 1 — Build from a client**::
    client = redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
    cache = RedisURLCache(client, click_counter_ttl_seconds=settings.CLICK_COUNTER_TTL_SECONDS)

**Step 2 — Call it without letting failures escape**::
    record = await best_effort("cache.get", cache.get(code), timeout=0.25, logger=logger)

Classes:
    RedisURLCache:  ``URLCache`` implementation on redis.asyncio.

Functions:
    best_effort():  Run a cache coroutine under a deadline, swallowing failures.
"""

import asyncio
import datetime
import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

import redis.asyncio as redis
from prometheus_client import Counter

from shortener.models import ShortURL
from shortener.schemas import CachedURLPayload

__all__ = ["RedisURLCache", "best_effort", "url_key", "clicks_key"]

T = TypeVar("T")

CACHE_OPERATIONS_TOTAL = Counter(
    "url_shortener_cache_operations_total",
    "Total cache operations attempted",
    ["operation"],
)
CACHE_ERRORS_TOTAL = Counter(
    "url_shortener_cache_errors_total",
    "Cache operations that failed or timed out",
    ["operation"],
)


def url_key(code: str) -> str:
    return f"url:{code}"


def clicks_key(code: str) -> str:
    return f"clicks:{code}"


class RedisURLCache:
    def __init__(self, client: redis.Redis, click_counter_ttl_seconds: int = 86400) -> None:
        self._client = client
        self._click_counter_ttl = click_counter_ttl_seconds

    @classmethod
    def from_url(cls, redis_url: str, click_counter_ttl_seconds: int = 86400) -> "RedisURLCache":
        client = redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
        return cls(client, click_counter_ttl_seconds)

    async def get(self, code: str) -> ShortURL | None:
        raw = await self._client.get(url_key(code))
        if not raw:
            return None
        return CachedURLPayload.model_validate_json(raw).to_model()

    async def set(self, record: ShortURL, ttl: datetime.timedelta) -> None:
        millis = int(ttl.total_seconds() * 1000)
        if millis <= 0:
            return
        payload = CachedURLPayload.model_validate(record).model_dump_json()
        await self._client.set(url_key(record.short_code), payload, px=millis)

    async def delete(self, code: str) -> None:
        await self._client.delete(url_key(code))

    async def increment_visit_count(self, code: str) -> int:
        key = clicks_key(code)
        count = await self._client.incr(key)
        # Set TTL on first increment so idle counters disappear.
        if count == 1:
            await self._client.expire(key, self._click_counter_ttl)
        return int(count)

    async def get_visit_count(self, code: str) -> int:
        value = await self._client.get(clicks_key(code))
        return int(value) if value else 0

    async def ping(self) -> None:
        await self._client.ping()

    async def close(self) -> None:
        await self._client.aclose()


async def best_effort(
    operation: str,
    awaitable: Awaitable[T],
    *,
    timeout: float,
    logger: logging.Logger | logging.LoggerAdapter,
    default: Any = None,
) -> T | Any:
    """Await a cache coroutine under ``timeout``; return ``default`` on any failure."""
    CACHE_OPERATIONS_TOTAL.labels(operation=operation).inc()
    try:
        async with asyncio.timeout(timeout):
            return await awaitable
    except Exception as exc:
        CACHE_ERRORS_TOTAL.labels(operation=operation).inc()
        logger.warning(f"Cache {operation} failed: {exc!r}")
        return default
