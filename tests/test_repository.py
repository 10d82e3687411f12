"""SQLAlchemy repository tests on a file-backed SQLite database."""

import asyncio
import datetime
import uuid

import pytest

from shortener.exceptions import DuplicateShortCodeError
from shortener.models import Click, ShortURL
from shortener.repository import ClickRepository, URLRepository

NOW = datetime.datetime.now(datetime.timezone.utc)


def make_url(code: str, alias: str | None = None, user_id: str | None = None) -> ShortURL:
    return ShortURL(
        id=str(uuid.uuid4()),
        short_code=code,
        original_url=f"https://example.com/{code}",
        custom_alias=alias,
        user_id=user_id,
        is_active=True,
        click_count=0,
    )


def make_click(url: ShortURL, ip: str, referrer: str | None = None, browser: str = "Chrome", when=None) -> Click:
    return Click(
        id=str(uuid.uuid4()),
        url_id=url.id,
        short_code=url.short_code,
        ip_address=ip,
        user_agent="test",
        referrer=referrer,
        device="Desktop",
        browser=browser,
        os="Linux",
        created_at=when or NOW,
    )


@pytest.fixture
def urls(sessions) -> URLRepository:
    return URLRepository(sessions)


@pytest.fixture
def clicks(sessions) -> ClickRepository:
    return ClickRepository(sessions)


@pytest.mark.asyncio
async def test_create_and_get(urls):
    created = await urls.create(make_url("abc12345"))

    fetched = await urls.get_by_short_code("abc12345")
    assert fetched.id == created.id
    assert fetched.original_url == "https://example.com/abc12345"
    assert (await urls.get_by_id(created.id)).short_code == "abc12345"
    assert await urls.get_by_short_code("missing1") is None


@pytest.mark.asyncio
async def test_lookup_matches_code_or_alias(urls):
    await urls.create(make_url("xyz98765", alias="promo"))

    assert (await urls.get_by_short_code("promo")).short_code == "xyz98765"
    assert await urls.exists_by_short_code("promo")
    assert await urls.exists_by_short_code("xyz98765")
    assert not await urls.exists_by_short_code("other")


@pytest.mark.asyncio
async def test_duplicate_code_raises(urls):
    await urls.create(make_url("dup12345"))
    with pytest.raises(DuplicateShortCodeError):
        await urls.create(make_url("dup12345"))


@pytest.mark.asyncio
async def test_duplicate_alias_raises(urls):
    await urls.create(make_url("promo", alias="promo"))
    with pytest.raises(DuplicateShortCodeError):
        await urls.create(make_url("promo", alias="promo"))


@pytest.mark.asyncio
async def test_increment_visit_count_is_atomic(urls):
    record = await urls.create(make_url("cnt12345"))

    await asyncio.gather(*(urls.increment_visit_count(record.id) for _ in range(5)))

    assert (await urls.get_by_id(record.id)).click_count == 5


@pytest.mark.asyncio
async def test_update_and_delete(urls):
    record = await urls.create(make_url("upd12345"))
    record.is_active = False
    await urls.update(record)
    assert (await urls.get_by_id(record.id)).is_active is False

    assert await urls.delete(record.id) is True
    assert await urls.delete(record.id) is False
    assert await urls.get_by_id(record.id) is None


@pytest.mark.asyncio
async def test_list_by_user_newest_first(urls):
    first = await urls.create(make_url("own00001", user_id="u1"))
    await asyncio.sleep(0.01)
    second = await urls.create(make_url("own00002", user_id="u1"))
    await urls.create(make_url("own00003", user_id="u2"))

    listed = await urls.list_by_user("u1", limit=10, offset=0)
    assert [r.id for r in listed] == [second.id, first.id]
    assert [r.id for r in await urls.list_by_user("u1", limit=1, offset=1)] == [first.id]


@pytest.mark.asyncio
async def test_ping(urls):
    await urls.ping()


@pytest.mark.asyncio
async def test_click_stats_aggregate(urls, clicks):
    record = await urls.create(make_url("sta12345"))
    yesterday = NOW - datetime.timedelta(days=1)
    await clicks.create(make_click(record, "1.1.1.1", referrer="https://news.example", when=yesterday))
    await clicks.create(make_click(record, "1.1.1.1", referrer=None))
    await clicks.create(make_click(record, "2.2.2.2", referrer="", browser="Firefox"))
    await clicks.create(make_click(record, "3.3.3.3", when=NOW - datetime.timedelta(days=90)))

    stats = await clicks.get_stats(
        record.id, record.short_code, NOW - datetime.timedelta(days=30), NOW + datetime.timedelta(minutes=1), top_n=5
    )

    assert stats.short_code == "sta12345"
    assert stats.total_clicks == 3
    assert stats.unique_clicks == 2
    assert sum(stats.clicks_by_date.values()) == 3
    assert stats.clicks_by_date[yesterday.date().isoformat()] == 1
    assert stats.top_referrers[0].name == "Direct"
    assert stats.top_referrers[0].count == 2
    assert {(b.name, b.count) for b in stats.top_browsers} == {("Chrome", 2), ("Firefox", 1)}
    assert [(d.name, d.count) for d in stats.top_devices] == [("Desktop", 3)]


@pytest.mark.asyncio
async def test_click_stats_respects_top_n(urls, clicks):
    record = await urls.create(make_url("top12345"))
    for i in range(4):
        await clicks.create(make_click(record, f"10.0.0.{i}", referrer=f"https://ref{i}.example"))

    stats = await clicks.get_stats(
        record.id, record.short_code, NOW - datetime.timedelta(days=1), NOW + datetime.timedelta(minutes=1), top_n=2
    )
    assert len(stats.top_referrers) == 2


@pytest.mark.asyncio
async def test_click_stats_empty(urls, clicks):
    record = await urls.create(make_url("emp12345"))
    stats = await clicks.get_stats(record.id, record.short_code, NOW - datetime.timedelta(days=1), NOW, top_n=5)
    assert stats.total_clicks == 0
    assert stats.unique_clicks == 0
    assert stats.clicks_by_date == {}
    assert stats.top_referrers == []
