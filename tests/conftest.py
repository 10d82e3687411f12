"""Shared pytest fixtures for engine, database, cache and API tests."""

import asyncio
import datetime
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortener.clicks import ClickRecorder
from shortener.config import Settings
from shortener.database import close_db, create_engine, create_session_factory, init_db
from shortener.dependencies import ServiceManager, get_service_manager
from shortener.exceptions import DuplicateShortCodeError
from shortener.main import app
from shortener.models import Click, ShortURL
from shortener.policy import as_utc
from shortener.schemas import CachedURLPayload, ClickStats
from shortener.url_service import URLShorteningService


def clone(record: ShortURL) -> ShortURL:
    """Detached copy, so fakes behave like a real store and do not share objects."""
    return CachedURLPayload.model_validate(record).to_model()


# ============================================================================
# IN-MEMORY FAKES
# ============================================================================


class FakeURLStore:
    """In-memory ``URLStore`` enforcing the short code / alias uniqueness constraint."""

    def __init__(self) -> None:
        self.records: dict[str, ShortURL] = {}
        self.reads = 0
        self.fail_reads = False
        self.stall: asyncio.Event | None = None
        self.increments: list[str] = []

    def _find(self, code: str) -> ShortURL | None:
        for record in self.records.values():
            if code in (record.short_code, record.custom_alias):
                return record
        return None

    async def create(self, record: ShortURL) -> ShortURL:
        await asyncio.sleep(0)
        if self._find(record.short_code) or (record.custom_alias and self._find(record.custom_alias)):
            raise DuplicateShortCodeError(record.short_code)
        self.records[record.id] = clone(record)
        return record

    async def get_by_short_code(self, code: str) -> ShortURL | None:
        if self.stall is not None:
            await self.stall.wait()
        if self.fail_reads:
            raise AssertionError(f"unexpected store read for {code}")
        self.reads += 1
        record = self._find(code)
        return clone(record) if record else None

    async def get_by_id(self, url_id: str) -> ShortURL | None:
        record = self.records.get(url_id)
        return clone(record) if record else None

    async def exists_by_short_code(self, code: str) -> bool:
        await asyncio.sleep(0)
        return self._find(code) is not None

    async def list_by_user(self, user_id: str, limit: int, offset: int) -> list[ShortURL]:
        owned = [r for r in self.records.values() if r.user_id == user_id]
        owned.sort(key=lambda r: r.created_at, reverse=True)
        return [clone(r) for r in owned[offset : offset + limit]]

    async def update(self, record: ShortURL) -> None:
        stored = self.records[record.id]
        stored.is_active = record.is_active
        stored.expires_at = record.expires_at
        stored.password_hash = record.password_hash

    async def delete(self, url_id: str) -> bool:
        return self.records.pop(url_id, None) is not None

    async def increment_visit_count(self, url_id: str) -> None:
        self.increments.append(url_id)
        if url_id in self.records:
            self.records[url_id].click_count += 1

    async def ping(self) -> None:
        return None


class FakeClickStore:
    def __init__(self) -> None:
        self.clicks: list[Click] = []

    async def create(self, click: Click) -> Click:
        self.clicks.append(click)
        return click

    async def get_stats(self, url_id, short_code, date_from, date_to, top_n) -> ClickStats:
        selected = [
            c for c in self.clicks if c.url_id == url_id and as_utc(date_from) <= as_utc(c.created_at) <= as_utc(date_to)
        ]
        return ClickStats(
            short_code=short_code,
            total_clicks=len(selected),
            unique_clicks=len({c.ip_address for c in selected}),
        )


class FakeCache:
    """In-memory ``URLCache`` that serializes like Redis; ``fail`` makes every call raise."""

    def __init__(self) -> None:
        self.entries: dict[str, str] = {}
        self.ttls: dict[str, datetime.timedelta] = {}
        self.counters: dict[str, int] = {}
        self.fail = False
        self.hits = 0

    def _check(self) -> None:
        if self.fail:
            raise ConnectionError("cache down")

    async def get(self, code: str) -> ShortURL | None:
        self._check()
        raw = self.entries.get(code)
        if raw is None:
            return None
        self.hits += 1
        return CachedURLPayload.model_validate_json(raw).to_model()

    async def set(self, record: ShortURL, ttl: datetime.timedelta) -> None:
        self._check()
        self.entries[record.short_code] = CachedURLPayload.model_validate(record).model_dump_json()
        self.ttls[record.short_code] = ttl

    async def delete(self, code: str) -> None:
        self._check()
        self.entries.pop(code, None)

    async def increment_visit_count(self, code: str) -> int:
        self._check()
        self.counters[code] = self.counters.get(code, 0) + 1
        return self.counters[code]

    async def get_visit_count(self, code: str) -> int:
        self._check()
        return self.counters.get(code, 0)

    async def ping(self) -> None:
        self._check()

    async def close(self) -> None:
        return None


# ============================================================================
# ENGINE FIXTURES
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(
        BASE_URL="http://test",
        CACHE_ENABLED=False,
        STORE_TIMEOUT_SECONDS=1.0,
        CACHE_TIMEOUT_SECONDS=0.1,
        CLICK_WORKERS=2,
        RATE_LIMIT_PER_SECOND=0,
    )


@pytest.fixture
def url_store() -> FakeURLStore:
    return FakeURLStore()


@pytest.fixture
def click_store() -> FakeClickStore:
    return FakeClickStore()


@pytest.fixture
def cache() -> FakeCache:
    return FakeCache()


@pytest_asyncio.fixture
async def recorder(url_store, click_store, cache, settings) -> AsyncGenerator[ClickRecorder, None]:
    click_recorder = ClickRecorder(
        url_store,
        click_store,
        cache,
        workers=settings.CLICK_WORKERS,
        store_timeout=settings.STORE_TIMEOUT_SECONDS,
        cache_timeout=settings.CACHE_TIMEOUT_SECONDS,
    )
    await click_recorder.start()
    yield click_recorder
    await click_recorder.stop(drain_timeout=0.5)


@pytest.fixture
def service(url_store, click_store, cache, recorder, settings) -> URLShorteningService:
    return URLShorteningService(url_store, click_store, cache, recorder, settings)


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest_asyncio.fixture
async def sessions(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    await init_db(engine)
    yield create_session_factory(engine)
    await close_db(engine)


# ============================================================================
# API FIXTURES
# ============================================================================


@pytest.fixture
def api_cache() -> FakeCache | None:
    """Cache used by the API fixtures; override in a module to run without one."""
    return FakeCache()


@pytest_asyncio.fixture
async def manager(tmp_path, api_cache) -> AsyncGenerator[ServiceManager, None]:
    api_settings = Settings(
        BASE_URL="http://test",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        CACHE_ENABLED=False,
        CLICK_WORKERS=2,
        RATE_LIMIT_PER_SECOND=0,
    )
    service_manager = ServiceManager()
    await service_manager.initialize(settings=api_settings, cache=api_cache)
    yield service_manager
    await service_manager.cleanup()


@pytest_asyncio.fixture
async def client(manager: ServiceManager) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_service_manager() -> ServiceManager:
        return manager

    app.dependency_overrides[get_service_manager] = override_get_service_manager
    previous_limiter = app.state.rate_limiter
    app.state.rate_limiter = None

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.state.rate_limiter = previous_limiter
    app.dependency_overrides.clear()
