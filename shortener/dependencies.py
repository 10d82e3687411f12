"""Dependency injection with a singleton service manager.

Shared resources (engine, session factory, repositories, cache, click
recorder, logger) are created once at startup by ``ServiceManager`` and
reused by every request. Each request gets a lightweight ``RequestContext``
carrying tracking information and the caller's identity, from which the
``URLShorteningService`` is built.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from shortener.cache import RedisURLCache
from shortener.clicks import ClickRecorder
from shortener.config import Settings, get_settings
from shortener.database import close_db, create_engine, create_session_factory, init_db
from shortener.enums import HealthStatus
from shortener.protocols import URLCache
from shortener.repository import ClickRepository, URLRepository
from shortener.url_service import URLShorteningService

__all__ = [
    "ServiceManager",
    "RequestContext",
    "client_ip",
    "get_service_manager",
    "get_request_context",
    "get_url_service",
]

STARTUP_PING_TIMEOUT_SECONDS = 2.0


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton service manager for shared resources.

    ``cache`` is ``None`` when caching is disabled or Redis did not answer at
    startup; the service runs correctly either way.
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self, settings: Optional[Settings] = None, cache: Optional[URLCache] = None) -> None:
        """Initialize shared resources once at startup.

        Args:
            settings: Overrides ``get_settings()``
            cache: Pre-built cache to use instead of connecting to Redis
        """
        if self._initialized:
            return
        self.settings = settings or get_settings()
        self.logger = self._setup_logger()
        self.engine: AsyncEngine = create_engine(self.settings.DATABASE_URL, echo=self.settings.DATABASE_ECHO)
        self.sessions: async_sessionmaker[AsyncSession] = create_session_factory(self.engine)
        await init_db(self.engine)

        self.url_store = URLRepository(self.sessions)
        self.click_store = ClickRepository(self.sessions)
        if cache is not None:
            self.cache: Optional[URLCache] = cache
        elif self.settings.CACHE_ENABLED:
            self.cache = await self._setup_cache()
        else:
            self.cache = None

        self.click_recorder = ClickRecorder(
            self.url_store,
            self.click_store,
            self.cache,
            queue_size=self.settings.CLICK_QUEUE_SIZE,
            workers=self.settings.CLICK_WORKERS,
            store_timeout=self.settings.STORE_TIMEOUT_SECONDS,
            cache_timeout=self.settings.CACHE_TIMEOUT_SECONDS,
            logger=self.logger,
        )
        await self.click_recorder.start()
        self._initialized = True
        self.logger.info(f"Service manager initialized (cache={'on' if self.cache else 'off'})")

    def _setup_logger(self) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger("shortener")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(self.settings.LOG_LEVEL.upper())
        return logger

    async def _setup_cache(self) -> Optional[URLCache]:
        """Connect to Redis; fall back to running without a cache if it does not answer."""
        cache = RedisURLCache.from_url(
            self.settings.REDIS_URL,
            click_counter_ttl_seconds=self.settings.CLICK_COUNTER_TTL_SECONDS,
        )
        try:
            async with asyncio.timeout(STARTUP_PING_TIMEOUT_SECONDS):
                await cache.ping()
        except Exception as exc:
            self.logger.warning(f"Redis unavailable at {self.settings.REDIS_URL}, running without cache: {exc!r}")
            await cache.close()
            return None
        return cache

    async def ping_database(self) -> HealthStatus:
        try:
            await self.url_store.ping()
        except Exception as exc:
            self.logger.error(f"Database health check failed: {exc}")
            return HealthStatus.UNHEALTHY
        return HealthStatus.HEALTHY

    async def ping_cache(self) -> HealthStatus:
        if self.cache is None:
            return HealthStatus.UNHEALTHY
        try:
            async with asyncio.timeout(self.settings.CACHE_TIMEOUT_SECONDS):
                await self.cache.ping()
        except Exception as exc:
            self.logger.warning(f"Cache health check failed: {exc!r}")
            return HealthStatus.UNHEALTHY
        return HealthStatus.HEALTHY

    async def cleanup(self) -> None:
        """Cleanup shared resources at shutdown.

        Queued clicks get CLICK_DRAIN_TIMEOUT_SECONDS to be written; whatever
        is left after that is lost.
        """
        if not self._initialized:
            return
        await self.click_recorder.stop(drain_timeout=self.settings.CLICK_DRAIN_TIMEOUT_SECONDS)
        if self.cache is not None:
            await self.cache.close()
        await close_db(self.engine)
        self._initialized = False


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Request context with tracking, caller identity and shared resource access.

    Attributes:
        service_manager: Singleton service manager with shared resources
        request_id: Unique identifier for this request
        trace_id: Correlation ID for distributed tracing
        user_agent: Client user agent string
        client_ip: Client IP address
        referrer: Referer header, empty when absent
        user_id: Caller identity from the X-User-ID header
        start_time: Request start timestamp
        tags: Request tags for categorization
    """

    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    referrer: str = ""
    user_id: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())
    tags: list[str] = field(default_factory=list)

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Get shared logger with request context."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
                "tags": ",".join(self.tags),
            },
        )

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    def add_tag(self, tag: str) -> None:
        if tag not in self.tags:
            self.tags.append(tag)

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


def client_ip(request: Request) -> Optional[str]:
    """Best guess at the caller's address: X-Forwarded-For, X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        service_manager=manager,
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
        client_ip=client_ip(request),
        referrer=request.headers.get("referer", ""),
        user_id=request.headers.get("x-user-id") or None,
    )


def get_url_service(ctx: RequestContext = Depends(get_request_context)) -> URLShorteningService:
    """Create URL service with request context using the factory method."""
    return URLShorteningService.from_context(ctx)
