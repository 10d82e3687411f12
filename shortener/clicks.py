"""Detached click recording for resolved redirects.

The redirect handler hands a ``ClickEvent`` to ``ClickRecorder.record_click``
and returns immediately. The only awaited work on the request path is the
best-effort cache counter increment; the durable visit counter and the click
row are written later by worker tasks owned by the recorder.

Flow Diagram — record_click()
=============================
::
    ┌──────────────┐
    │ GET /{code}  │
    └──────┬───────┘
           ▼
    ┌──────────────┐     ┌───────────────────┐
    │ INCR cache   │────▶│ best_effort()      │ errors/timeouts swallowed
    │ counter      │     └───────────────────┘
    └──────┬───────┘
           ▼
    ┌──────────────┐ full ┌───────────────────┐
    │ put_nowait   │─────▶│ drop + warn        │
    └──────┬───────┘      └───────────────────┘
           ▼  (request returns here)
    ┌──────────────┐
    │ worker task  │ lookup by code ─ missing ─▶ drop silently
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ +1 visit     │ store.increment_visit_count(id)
    │ append click │ click_store.create(Click)
    └──────────────┘

Key Behaviours
===============
- Workers run in their own tasks, independent of any request's cancellation.
- Store failures in a worker are logged and counted, never re-raised.
- On ``stop()`` the queue is drained for a bounded time; the rest is lost.

Classes:
    DeviceInfo:  Coarse (device, browser, os) classification.
    ClickRecorder:  Bounded queue plus worker pool writing clicks to the store.

Functions:
    classify_user_agent():  Substring-based user-agent classification.
"""

import asyncio
import logging
import uuid
from typing import NamedTuple

from prometheus_client import Counter

from shortener.cache import best_effort
from shortener.enums import DeviceType
from shortener.models import Click
from shortener.protocols import ClickStore, URLCache, URLStore
from shortener.schemas import ClickEvent

__all__ = ["DeviceInfo", "ClickRecorder", "classify_user_agent"]

CLICK_EVENTS_QUEUED_TOTAL = Counter(
    "url_shortener_click_events_queued_total",
    "Click events accepted by the recorder queue",
)
CLICK_EVENTS_DROPPED_TOTAL = Counter(
    "url_shortener_click_events_dropped_total",
    "Click events dropped before being recorded",
    ["reason"],
)
CLICK_EVENTS_RECORDED_TOTAL = Counter(
    "url_shortener_click_events_recorded_total",
    "Click events written to the store",
)
CLICK_EVENTS_FAILED_TOTAL = Counter(
    "url_shortener_click_events_failed_total",
    "Click events that failed while writing to the store",
)


# ============================================================================
# USER-AGENT CLASSIFICATION
# ============================================================================


class DeviceInfo(NamedTuple):
    device: str
    browser: str
    os: str


def _detect_device(ua: str) -> str:
    if any(token in ua for token in ("mobile", "android", "iphone")):
        return DeviceType.MOBILE
    if "tablet" in ua or "ipad" in ua:
        return DeviceType.TABLET
    return DeviceType.DESKTOP


def _detect_browser(ua: str) -> str:
    # Edge and Chrome both advertise "chrome"; Chrome advertises "safari".
    if "edg" in ua:
        return "Edge"
    if "chrome" in ua:
        return "Chrome"
    if "firefox" in ua:
        return "Firefox"
    if "safari" in ua:
        return "Safari"
    return "Other"


def _detect_os(ua: str) -> str:
    # Android agents also say "linux"; iOS agents also say "mac os x".
    if "android" in ua:
        return "Android"
    if "iphone" in ua or "ipad" in ua:
        return "iOS"
    if "windows" in ua:
        return "Windows"
    if "mac" in ua:
        return "macOS"
    if "linux" in ua:
        return "Linux"
    return "Other"


def classify_user_agent(user_agent: str | None) -> DeviceInfo:
    """Classify a user agent by case-insensitive substring matching.

    This is lossy on purpose; unknown agents land in ``Desktop``/``Other``.

    Example:
        >>> classify_user_agent("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Safari/604.1")
        DeviceInfo(device='Mobile', browser='Safari', os='iOS')
    """
    ua = (user_agent or "").lower()
    return DeviceInfo(device=str(_detect_device(ua)), browser=_detect_browser(ua), os=_detect_os(ua))


# ============================================================================
# RECORDER
# ============================================================================


class ClickRecorder:
    """Bounded work queue that records clicks off the request path.

    Example:
        >>> recorder = ClickRecorder(url_repo, click_repo, cache, workers=4)
        >>> await recorder.start()
        >>> await recorder.record_click(ClickEvent(short_code="abc123", ip_address="1.2.3.4"))
        >>> await recorder.stop(drain_timeout=5.0)
    """

    def __init__(
        self,
        url_store: URLStore,
        click_store: ClickStore | None,
        cache: URLCache | None = None,
        *,
        queue_size: int = 10000,
        workers: int = 4,
        store_timeout: float = 5.0,
        cache_timeout: float = 0.25,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        assert workers > 0, "workers must be positive"
        self._url_store = url_store
        self._click_store = click_store
        self._cache = cache
        self._queue: asyncio.Queue[ClickEvent] = asyncio.Queue(maxsize=queue_size)
        self._worker_count = workers
        self._store_timeout = store_timeout
        self._cache_timeout = cache_timeout
        self._logger = logger or logging.getLogger("shortener")
        self._workers: list[asyncio.Task] = []

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(), name=f"click-worker-{i}") for i in range(self._worker_count)
        ]
        self._logger.info(f"Click recorder started with {self._worker_count} workers")

    async def stop(self, drain_timeout: float = 5.0) -> None:
        if not self._workers:
            return
        try:
            async with asyncio.timeout(drain_timeout):
                await self._queue.join()
        except TimeoutError:
            lost = self._queue.qsize()
            CLICK_EVENTS_DROPPED_TOTAL.labels(reason="shutdown").inc(lost)
            self._logger.warning(f"Click recorder stopped with {lost} events not recorded")
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._logger.info("Click recorder stopped")

    async def record_click(self, event: ClickEvent) -> None:
        """Count the visit in the cache and queue the event; never waits on the store."""
        if self._cache is not None:
            await best_effort(
                "increment_visit_count",
                self._cache.increment_visit_count(event.short_code),
                timeout=self._cache_timeout,
                logger=self._logger,
                default=0,
            )
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            CLICK_EVENTS_DROPPED_TOTAL.labels(reason="queue_full").inc()
            self._logger.warning(f"Click queue full, dropping click for {event.short_code}")
            return
        CLICK_EVENTS_QUEUED_TOTAL.inc()

    async def wait_idle(self) -> None:
        """Block until every queued event has been processed."""
        await self._queue.join()

    async def _worker(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._process(event)
            except Exception as exc:
                CLICK_EVENTS_FAILED_TOTAL.inc()
                self._logger.warning(f"Failed to record click for {event.short_code}: {exc!r}")
            finally:
                self._queue.task_done()

    async def _process(self, event: ClickEvent) -> None:
        async with asyncio.timeout(self._store_timeout):
            record = await self._url_store.get_by_short_code(event.short_code)
        if record is None:
            # Deleted between the redirect and now.
            CLICK_EVENTS_DROPPED_TOTAL.labels(reason="not_found").inc()
            self._logger.debug(f"Dropping click for unknown code {event.short_code}")
            return

        async with asyncio.timeout(self._store_timeout):
            await self._url_store.increment_visit_count(record.id)

        if self._click_store is not None:
            info = classify_user_agent(event.user_agent)
            click = Click(
                id=str(uuid.uuid4()),
                url_id=record.id,
                short_code=record.short_code,
                ip_address=event.ip_address,
                user_agent=event.user_agent or None,
                referrer=event.referrer or None,
                device=info.device,
                browser=info.browser,
                os=info.os,
                created_at=event.occurred_at,
            )
            async with asyncio.timeout(self._store_timeout):
                await self._click_store.create(click)

        CLICK_EVENTS_RECORDED_TOTAL.inc()
