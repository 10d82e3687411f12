"""URL Shortener Service Layer - Core Business Logic

This module provides the resolution engine: short code allocation, cache-first
resolution under the expiry/access policy, statistics and the owner-facing
lifecycle operations (delete, deactivate, bulk create, password checks).

Architecture Overview
=====================
::
    ┌─────────────────────────────────────────────────────────────┐
    │                    URLShorteningService                     │
    │  ┌─────────────────┐  ┌─────────────────┐  ┌──────────────┐ │
    │  │  Creation       │  │  Resolution     │  │ Lifecycle    │ │
    │  │ • Validate URL  │  │ • Cache first   │  │ • Delete     │ │
    │  │ • Alias / nanoid│  │ • Store fallback│  │ • Deactivate │ │
    │  │ • Persist+cache │  │ • Access policy │  │ • Stats      │ │
    │  └─────────────────┘  └─────────────────┘  └──────────────┘ │
    └─────────────────────────────────────────────────────────────┘
                │                    │                    │
                ▼                    ▼                    ▼
    ┌─────────────────┐  ┌─────────────────┐  ┌─────────────────┐
    │    URLStore     │  │    URLCache     │  │  ClickRecorder  │
    │ (system of rec.)│  │   (optional)    │  │   (detached)    │
    └─────────────────┘  └─────────────────┘  └─────────────────┘

URL Creation Flow
-----------------
::
    ┌─────────────┐
    │ Validate URL │── not absolute http(s) ──▶ InvalidURLError
    └──────┬──────┘
           ▼
    ┌─────────────┐  alias given   ┌──────────────┐
    │ Choose code  │──────────────▶│ exists? ──yes─▶ AliasExistsError
    └──────┬──────┘                └──────────────┘
           │ generated (up to SHORT_CODE_MAX_ATTEMPTS)
           ▼
    ┌─────────────┐
    │ nanoid code  │── exists / unique violation ──▶ retry
    └──────┬──────┘── budget spent ──▶ CodeSpaceExhaustedError
           ▼
    ┌─────────────┐
    │ Store create │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Cache set    │ (best effort, TTL <= remaining lifetime)
    └─────────────┘

URL Resolution Flow
-------------------
::
    ┌─────────────┐
    │ Cache get    │── hit + allowed ──────────────▶ return record
    └──────┬──────┘── hit + denied ──▶ evict entry ─┐
           │ miss / unavailable                      │
           ▼◀────────────────────────────────────────┘
    ┌─────────────┐
    │ Store get    │── none ──▶ URLNotFoundError
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Policy check │── inactive ──▶ URLInactiveError
    └──────┬──────┘── expired  ──▶ URLExpiredError
           ▼
    ┌─────────────┐
    │ Cache set    │ (best effort)
    └──────┬──────┘
           ▼
      return record

Key Behaviours
===============
- The store's uniqueness constraint is authoritative; the existence check is
  only a pre-check.
- Cache failures never fail a request; store failures on the critical path
  propagate, and store calls are bounded by STORE_TIMEOUT_SECONDS.
- A cached entry that fails the policy is not trusted; the store decides.
- Ownership is an explicit ``owner_id`` argument on every mutating call.

Classes:
    URLShorteningService:  The resolution engine.
"""

import asyncio
import datetime
import logging
import time
import uuid
from collections.abc import Awaitable
from typing import TYPE_CHECKING, Optional, TypeVar
from urllib.parse import urlsplit

import validators
from prometheus_client import Counter, Histogram

from shortener.cache import best_effort
from shortener.clicks import ClickRecorder
from shortener.codegen import generate_short_code
from shortener.config import Settings
from shortener.enums import AccessVerdict, CacheStatus, RequestStatus
from shortener.exceptions import (
    AliasExistsError,
    CodeSpaceExhaustedError,
    DuplicateShortCodeError,
    InvalidPasswordError,
    InvalidURLError,
    OperationTimeoutError,
    UnauthorizedError,
    URLExpiredError,
    URLInactiveError,
    URLNotFoundError,
)
from shortener.models import ShortURL
from shortener.policy import access_verdict, cache_ttl_for, ensure_can_redirect, utcnow
from shortener.protocols import ClickStore, URLCache, URLStore
from shortener.schemas import (
    BulkURLResponse,
    BulkURLResult,
    ClickEvent,
    ClickStats,
    URLCreate,
    URLResponse,
)
from shortener.security import hash_password, verify_password

if TYPE_CHECKING:
    from shortener.dependencies import RequestContext

__all__ = ["URLShorteningService"]

T = TypeVar("T")


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

URL_CREATION_REQUESTS_TOTAL = Counter(
    "url_shortener_creation_requests_total",
    "Total URL creation requests",
    ["status"],
)
URL_LOOKUP_REQUESTS_TOTAL = Counter(
    "url_shortener_lookup_requests_total",
    "Total URL lookup requests",
    ["status", "cache_hit"],
)
URL_CREATION_DURATION = Histogram(
    "url_shortener_creation_duration_seconds",
    "Time taken to create short URLs",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
URL_LOOKUP_DURATION = Histogram(
    "url_shortener_lookup_duration_seconds",
    "Time taken to resolve short codes",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)
CACHE_HITS_TOTAL = Counter(
    "url_shortener_cache_hits_total",
    "Total cache hits for URL lookups",
)
CACHE_MISSES_TOTAL = Counter(
    "url_shortener_cache_misses_total",
    "Total cache misses for URL lookups",
)
CACHE_STALE_TOTAL = Counter(
    "url_shortener_cache_stale_total",
    "Cached entries evicted because they failed the access policy",
)
SHORT_CODE_COLLISIONS_TOTAL = Counter(
    "url_shortener_short_code_collisions_total",
    "Generated short codes rejected because they were already taken",
)
DATABASE_READS_TOTAL = Counter(
    "url_shortener_database_reads_total",
    "Total database read operations",
)
DATABASE_WRITES_TOTAL = Counter(
    "url_shortener_database_writes_total",
    "Total database write operations",
)


# ============================================================================
# CORE SERVICE CLASS
# ============================================================================


class URLShorteningService:
    """Core service class for short code allocation and resolution.

    Example:
        >>> service = URLShorteningService.from_context(ctx)
        >>> url = await service.create_short_url(URLCreate(url="https://example.com"))
        >>> record = await service.resolve(url.short_code)
    """

    def __init__(
        self,
        url_store: URLStore,
        click_store: ClickStore | None,
        cache: URLCache | None,
        click_recorder: ClickRecorder | None,
        settings: Settings,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._url_store = url_store
        self._click_store = click_store
        self._cache = cache
        self._click_recorder = click_recorder
        self._settings = settings
        self._logger = logger or logging.getLogger("shortener")

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "URLShorteningService":
        """Factory method to create the service from a RequestContext.

        Args:
            ctx: Request context with the shared stores, cache and recorder

        Returns:
            URLShorteningService: Service instance logging with request context
        """
        manager = ctx.service_manager
        return cls(
            url_store=manager.url_store,
            click_store=manager.click_store,
            cache=manager.cache,
            click_recorder=manager.click_recorder,
            settings=ctx.settings,
            logger=ctx.logger,
        )

    @property
    def base_url(self) -> str:
        return self._settings.BASE_URL

    # ========================================================================
    # CREATION
    # ========================================================================

    async def create_short_url(self, request: URLCreate, owner_id: Optional[str] = None) -> ShortURL:
        """Create a new short URL.

        Args:
            request: Original URL plus optional alias, lifetime in hours and password
            owner_id: Caller identity, stored as the record's owner

        Returns:
            ShortURL: The persisted record

        Raises:
            InvalidURLError: If the URL is not an absolute http(s) URL
            AliasExistsError: If the custom alias is already taken
            CodeSpaceExhaustedError: If no free code was found within the retry budget
            OperationTimeoutError: If a store call exceeded its deadline
        """
        start_time = time.perf_counter()
        try:
            self._logger.info(f"Creating short URL for: {request.url}")
            original_url = self._validate_url(request.url)
            password_hash = await asyncio.to_thread(hash_password, request.password) if request.password else None

            if request.custom_alias:
                record = await self._create_with_alias(request, original_url, password_hash, owner_id)
            else:
                record = await self._create_with_generated_code(request, original_url, password_hash, owner_id)

            await self._cache_record(record)

            duration = time.perf_counter() - start_time
            URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
            self._logger.info(f"URL created successfully: {record.short_code} in {duration:.3f}s")
            return record

        except InvalidURLError as exc:
            URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.VALIDATION_ERROR).inc()
            self._logger.warning(f"URL creation rejected: {exc}")
            raise
        except AliasExistsError as exc:
            URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.CONFLICT).inc()
            self._logger.warning(f"URL creation rejected: {exc}")
            raise
        except Exception as exc:
            URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR).inc()
            self._logger.error(f"URL creation error: {exc}")
            raise
        finally:
            URL_CREATION_DURATION.observe(time.perf_counter() - start_time)

    async def bulk_create(self, requests: list[URLCreate], owner_id: Optional[str] = None) -> BulkURLResponse:
        """Create several short URLs, collecting a result per item instead of failing fast."""
        results: list[BulkURLResult] = []
        for request in requests:
            try:
                record = await self.create_short_url(request, owner_id)
            except AliasExistsError:
                results.append(BulkURLResult(original_url=request.url, success=False, error="custom alias already exists"))
            except InvalidURLError:
                results.append(BulkURLResult(original_url=request.url, success=False, error="invalid URL format"))
            except Exception as exc:
                self._logger.error(f"Bulk item failed for {request.url}: {exc!r}")
                results.append(BulkURLResult(original_url=request.url, success=False, error="failed to create short URL"))
            else:
                data = URLResponse.from_model(record, self.base_url)
                results.append(BulkURLResult(original_url=request.url, success=True, data=data))

        successful = sum(1 for result in results if result.success)
        return BulkURLResponse(
            total=len(results),
            successful=successful,
            failed=len(results) - successful,
            results=results,
        )

    # ========================================================================
    # RESOLUTION
    # ========================================================================

    async def resolve(self, code: str) -> ShortURL:
        """Resolve ``code`` (short code or custom alias) to a record that may redirect.

        Raises:
            URLNotFoundError: No record has this code or alias
            URLInactiveError: The record was deactivated
            URLExpiredError: The record's expiry has passed
        """
        start_time = time.perf_counter()
        cache_hit = CacheStatus.MISS
        try:
            cached = await self._cache_get(code)
            if cached is not None:
                if access_verdict(cached) is AccessVerdict.ALLOWED:
                    cache_hit = CacheStatus.HIT
                    CACHE_HITS_TOTAL.inc()
                    URL_LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache_hit=cache_hit).inc()
                    self._logger.debug(f"Cache hit for {code}")
                    return cached
                # The store has the final word on a denied cached copy.
                CACHE_STALE_TOTAL.inc()
                await self._cache_delete(code)

            CACHE_MISSES_TOTAL.inc()
            record = await self._get_record(code)
            ensure_can_redirect(record)
            await self._cache_record(record)
            URL_LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache_hit=cache_hit).inc()
            self._logger.debug(f"Database hit and cached for {code}")
            return record

        except URLNotFoundError:
            URL_LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND, cache_hit=cache_hit).inc()
            raise
        except (URLInactiveError, URLExpiredError) as exc:
            status = RequestStatus.INACTIVE if isinstance(exc, URLInactiveError) else RequestStatus.EXPIRED
            URL_LOOKUP_REQUESTS_TOTAL.labels(status=status, cache_hit=cache_hit).inc()
            self._logger.info(f"Refusing redirect: {exc}")
            raise
        except Exception as exc:
            URL_LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR, cache_hit=cache_hit).inc()
            self._logger.error(f"URL lookup error for {code}: {exc}")
            raise
        finally:
            URL_LOOKUP_DURATION.observe(time.perf_counter() - start_time)

    async def record_click(self, event: ClickEvent) -> None:
        """Hand a click to the detached recorder; returns without waiting on the store."""
        if self._click_recorder is None:
            self._logger.debug(f"No click recorder configured, ignoring click for {event.short_code}")
            return
        await self._click_recorder.record_click(event)

    # ========================================================================
    # QUERIES
    # ========================================================================

    async def get_url_info(self, code: str) -> ShortURL:
        """Return the record for ``code`` without applying the access policy."""
        return await self._get_record(code)

    async def list_user_urls(self, owner_id: str, limit: int | None = None, offset: int = 0) -> list[ShortURL]:
        assert owner_id, "owner_id must be provided"
        limit = limit or self._settings.USER_URLS_DEFAULT_LIMIT
        DATABASE_READS_TOTAL.inc()
        return await self._store_call("list_by_user", self._url_store.list_by_user(owner_id, limit, offset))

    async def get_stats(
        self,
        code: str,
        date_from: Optional[datetime.datetime] = None,
        date_to: Optional[datetime.datetime] = None,
    ) -> ClickStats:
        """Aggregate click analytics for ``code`` over ``[date_from, date_to]``.

        Defaults to the last STATS_DEFAULT_DAYS days. The cache's short-lived
        counter is reported as ``recent_clicks`` when available.
        """
        record = await self._get_record(code)
        date_to = date_to or utcnow()
        date_from = date_from or date_to - datetime.timedelta(days=self._settings.STATS_DEFAULT_DAYS)

        if self._click_store is not None:
            DATABASE_READS_TOTAL.inc()
            stats = await self._store_call(
                "get_stats",
                self._click_store.get_stats(
                    record.id, record.short_code, date_from, date_to, self._settings.STATS_TOP_N
                ),
            )
        else:
            stats = ClickStats(short_code=record.short_code, total_clicks=record.click_count)

        stats.click_count = record.click_count
        if self._cache is not None:
            stats.recent_clicks = await best_effort(
                "get_visit_count",
                self._cache.get_visit_count(record.short_code),
                timeout=self._settings.CACHE_TIMEOUT_SECONDS,
                logger=self._logger,
                default=0,
            )
        return stats

    async def is_password_protected(self, code: str) -> bool:
        record = await self._get_record(code)
        return record.is_password_protected

    async def verify_password(self, code: str, password: str) -> ShortURL:
        """Resolve ``code`` and check ``password`` against the stored hash.

        Raises:
            InvalidPasswordError: The link is unprotected or the password is wrong
        """
        record = await self.resolve(code)
        # PBKDF2 is CPU bound; keep it off the event loop.
        if not await asyncio.to_thread(verify_password, password, record.password_hash):
            self._logger.warning(f"Invalid password attempt for {code}")
            raise InvalidPasswordError(code)
        return record

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def delete_url(self, url_id: str, owner_id: Optional[str] = None) -> None:
        record = await self._store_call("get_by_id", self._url_store.get_by_id(url_id))
        DATABASE_READS_TOTAL.inc()
        if record is None:
            raise URLNotFoundError(url_id)
        self._check_owner(record, owner_id)

        deleted = await self._store_call("delete", self._url_store.delete(record.id))
        DATABASE_WRITES_TOTAL.inc()
        await self._cache_delete(record.short_code)
        if not deleted:
            raise URLNotFoundError(url_id)
        self._logger.info(f"Deleted URL {record.id} ({record.short_code})")

    async def deactivate_url(self, code: str, owner_id: Optional[str] = None) -> ShortURL:
        record = await self._get_record(code)
        self._check_owner(record, owner_id)

        record.is_active = False
        await self._store_call("update", self._url_store.update(record))
        DATABASE_WRITES_TOTAL.inc()
        await self._cache_delete(record.short_code)
        self._logger.info(f"Deactivated URL {record.short_code}")
        return record

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    @staticmethod
    def _validate_url(url: str) -> str:
        candidate = url.strip()
        scheme = urlsplit(candidate).scheme.lower()
        if scheme not in ("http", "https") or not validators.url(candidate, simple_host=True):
            raise InvalidURLError(url)
        return candidate

    def _check_owner(self, record: ShortURL, owner_id: Optional[str]) -> None:
        # Unowned records may be managed by anyone.
        if record.user_id and record.user_id != owner_id:
            self._logger.warning(f"Ownership check failed for {record.id}")
            raise UnauthorizedError(record.id)

    def _new_record(
        self,
        short_code: str,
        original_url: str,
        request: URLCreate,
        password_hash: Optional[str],
        owner_id: Optional[str],
    ) -> ShortURL:
        now = utcnow()
        expires_at = now + datetime.timedelta(hours=request.expires_in) if request.expires_in else None
        return ShortURL(
            id=str(uuid.uuid4()),
            short_code=short_code,
            original_url=original_url,
            custom_alias=request.custom_alias or None,
            user_id=owner_id,
            expires_at=expires_at,
            password_hash=password_hash,
            is_active=True,
            click_count=0,
            created_at=now,
            updated_at=now,
        )

    async def _create_with_alias(
        self,
        request: URLCreate,
        original_url: str,
        password_hash: Optional[str],
        owner_id: Optional[str],
    ) -> ShortURL:
        alias = request.custom_alias
        DATABASE_READS_TOTAL.inc()
        if await self._store_call("exists_by_short_code", self._url_store.exists_by_short_code(alias)):
            raise AliasExistsError(alias)

        record = self._new_record(alias, original_url, request, password_hash, owner_id)
        try:
            created = await self._store_call("create", self._url_store.create(record))
        except DuplicateShortCodeError as exc:
            raise AliasExistsError(alias) from exc
        DATABASE_WRITES_TOTAL.inc()
        return created

    async def _create_with_generated_code(
        self,
        request: URLCreate,
        original_url: str,
        password_hash: Optional[str],
        owner_id: Optional[str],
    ) -> ShortURL:
        max_attempts = self._settings.SHORT_CODE_MAX_ATTEMPTS
        for attempt in range(1, max_attempts + 1):
            code = generate_short_code(self._settings.SHORT_CODE_LENGTH)
            DATABASE_READS_TOTAL.inc()
            if await self._store_call("exists_by_short_code", self._url_store.exists_by_short_code(code)):
                SHORT_CODE_COLLISIONS_TOTAL.inc()
                self._logger.debug(f"Generated code {code} already taken (attempt {attempt})")
                continue

            record = self._new_record(code, original_url, request, password_hash, owner_id)
            try:
                created = await self._store_call("create", self._url_store.create(record))
            except DuplicateShortCodeError:
                SHORT_CODE_COLLISIONS_TOTAL.inc()
                self._logger.warning(f"Unique constraint rejected {code} (attempt {attempt}), retrying")
                continue
            DATABASE_WRITES_TOTAL.inc()
            return created

        raise CodeSpaceExhaustedError(max_attempts)

    async def _get_record(self, code: str) -> ShortURL:
        DATABASE_READS_TOTAL.inc()
        record = await self._store_call("get_by_short_code", self._url_store.get_by_short_code(code))
        if record is None:
            raise URLNotFoundError(code)
        return record

    async def _store_call(self, operation: str, awaitable: Awaitable[T]) -> T:
        timeout = self._settings.STORE_TIMEOUT_SECONDS
        try:
            async with asyncio.timeout(timeout):
                return await awaitable
        except TimeoutError as exc:
            self._logger.error(f"Store {operation} timed out after {timeout}s")
            raise OperationTimeoutError(operation, timeout) from exc

    async def _cache_get(self, code: str) -> Optional[ShortURL]:
        if self._cache is None:
            return None
        return await best_effort(
            "get", self._cache.get(code), timeout=self._settings.CACHE_TIMEOUT_SECONDS, logger=self._logger
        )

    async def _cache_record(self, record: ShortURL) -> None:
        if self._cache is None:
            return
        ttl = cache_ttl_for(record, datetime.timedelta(seconds=self._settings.CACHE_TTL_SECONDS))
        if ttl is None:
            return
        await best_effort(
            "set", self._cache.set(record, ttl), timeout=self._settings.CACHE_TIMEOUT_SECONDS, logger=self._logger
        )

    async def _cache_delete(self, code: str) -> None:
        if self._cache is None:
            return
        await best_effort(
            "delete", self._cache.delete(code), timeout=self._settings.CACHE_TIMEOUT_SECONDS, logger=self._logger
        )
