"""Redis cache adapter tests against a mocked redis.asyncio client."""

import asyncio
import datetime
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
import redis.asyncio as redis

from shortener.cache import RedisURLCache, best_effort
from shortener.models import ShortURL
from shortener.schemas import CachedURLPayload

NOW = datetime.datetime(2026, 1, 1, tzinfo=datetime.timezone.utc)


@pytest.fixture
def mock_redis() -> AsyncMock:
    client = AsyncMock(spec=redis.Redis)
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=1)
    client.incr = AsyncMock(return_value=1)
    client.expire = AsyncMock(return_value=True)
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock(return_value=None)
    return client


@pytest.fixture
def sample_url() -> ShortURL:
    return ShortURL(
        id="0b6c1b8e-7f57-4a8e-9a4c-2f5d1b0f4a11",
        short_code="Ab3dE6gH",
        original_url="https://example.com/page",
        custom_alias=None,
        user_id="user-1",
        expires_at=None,
        password_hash="pbkdf2_sha256$1000$00$00",
        is_active=True,
        click_count=3,
        created_at=NOW,
        updated_at=NOW,
    )


@pytest.mark.asyncio
async def test_set_uses_url_key_and_millisecond_ttl(mock_redis, sample_url):
    cache = RedisURLCache(mock_redis)
    await cache.set(sample_url, datetime.timedelta(minutes=5))

    mock_redis.set.assert_awaited_once()
    args, kwargs = mock_redis.set.call_args
    assert args[0] == "url:Ab3dE6gH"
    assert kwargs["px"] == 300_000
    payload = CachedURLPayload.model_validate_json(args[1])
    assert payload.password_hash == sample_url.password_hash


@pytest.mark.asyncio
async def test_set_skips_non_positive_ttl(mock_redis, sample_url):
    cache = RedisURLCache(mock_redis)
    await cache.set(sample_url, datetime.timedelta(0))
    mock_redis.set.assert_not_awaited()


@pytest.mark.asyncio
async def test_get_round_trips_record(mock_redis, sample_url):
    mock_redis.get.return_value = CachedURLPayload.model_validate(sample_url).model_dump_json()
    cache = RedisURLCache(mock_redis)

    cached = await cache.get("Ab3dE6gH")

    mock_redis.get.assert_awaited_once_with("url:Ab3dE6gH")
    assert cached.id == sample_url.id
    assert cached.original_url == sample_url.original_url
    assert cached.is_password_protected
    assert cached.click_count == 3


@pytest.mark.asyncio
async def test_get_miss_returns_none(mock_redis):
    assert await RedisURLCache(mock_redis).get("missing1") is None


@pytest.mark.asyncio
async def test_first_increment_sets_counter_expiry(mock_redis):
    cache = RedisURLCache(mock_redis, click_counter_ttl_seconds=86400)

    assert await cache.increment_visit_count("Ab3dE6gH") == 1

    mock_redis.incr.assert_awaited_once_with("clicks:Ab3dE6gH")
    mock_redis.expire.assert_awaited_once_with("clicks:Ab3dE6gH", 86400)


@pytest.mark.asyncio
async def test_later_increments_keep_existing_expiry(mock_redis):
    mock_redis.incr.return_value = 7
    cache = RedisURLCache(mock_redis)

    assert await cache.increment_visit_count("Ab3dE6gH") == 7
    mock_redis.expire.assert_not_awaited()


@pytest.mark.asyncio
async def test_get_visit_count(mock_redis):
    mock_redis.get.return_value = "42"
    assert await RedisURLCache(mock_redis).get_visit_count("Ab3dE6gH") == 42
    mock_redis.get.return_value = None
    assert await RedisURLCache(mock_redis).get_visit_count("Ab3dE6gH") == 0


@pytest.mark.asyncio
async def test_delete_and_close(mock_redis):
    cache = RedisURLCache(mock_redis)
    await cache.delete("Ab3dE6gH")
    await cache.close()
    mock_redis.delete.assert_awaited_once_with("url:Ab3dE6gH")
    mock_redis.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_best_effort_returns_result():
    async def ok() -> int:
        return 5

    assert await best_effort("op", ok(), timeout=1.0, logger=logging.getLogger("test")) == 5


@pytest.mark.asyncio
async def test_best_effort_swallows_errors():
    logger = MagicMock()
    mock = AsyncMock(side_effect=redis.ConnectionError("refused"))

    result = await best_effort("get", mock(), timeout=1.0, logger=logger, default="fallback")

    assert result == "fallback"
    logger.warning.assert_called_once()


@pytest.mark.asyncio
async def test_best_effort_times_out():
    logger = MagicMock()

    async def slow() -> str:
        await asyncio.sleep(5)
        return "late"

    assert await best_effort("get", slow(), timeout=0.01, logger=logger) is None
    logger.warning.assert_called_once()
