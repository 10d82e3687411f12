"""SQLAlchemy repositories: the durable system of record.

``URLRepository`` and ``ClickRepository`` implement the ``URLStore`` and
``ClickStore`` protocols on top of an async session factory. Every method opens
its own short-lived session, so callers (request handlers and the detached
click workers alike) never share a session.

Uniqueness
==========
::
    exists_by_short_code(code)          create(record)
    ─────────────────────────           ──────────────────────────────
    SELECT EXISTS(... short_code = :c   INSERT ... ─┬─ ok ─────────▶ record
                  OR custom_alias = :c)             └─ IntegrityError
                                                       └▶ DuplicateShortCodeError

The pre-check is only an optimisation; the UNIQUE constraints on
``short_code`` and ``custom_alias`` are the authority.

Classes:
    URLRepository:  CRUD, existence check and atomic visit counter for URLs.
    ClickRepository:  Append-only click log and its analytics aggregate.
"""

import datetime

from sqlalchemy import delete, distinct, exists, func, or_, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortener.exceptions import DuplicateShortCodeError
from shortener.models import Click, ShortURL
from shortener.policy import utcnow
from shortener.schemas import ClickStats, NameCount

__all__ = ["URLRepository", "ClickRepository"]


class URLRepository:
    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = sessions

    async def create(self, record: ShortURL) -> ShortURL:
        """Insert ``record``.

        Raises:
            DuplicateShortCodeError: if the short code or alias is already taken.
        """
        now = utcnow()
        record.created_at = now
        record.updated_at = now
        async with self._sessions() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateShortCodeError(record.short_code) from exc
        return record

    async def get_by_short_code(self, code: str) -> ShortURL | None:
        stmt = select(ShortURL).where(or_(ShortURL.short_code == code, ShortURL.custom_alias == code)).limit(1)
        async with self._sessions() as session:
            result = await session.execute(stmt)
            return result.scalars().first()

    async def get_by_id(self, url_id: str) -> ShortURL | None:
        async with self._sessions() as session:
            return await session.get(ShortURL, url_id)

    async def exists_by_short_code(self, code: str) -> bool:
        stmt = select(exists().where(or_(ShortURL.short_code == code, ShortURL.custom_alias == code)))
        async with self._sessions() as session:
            return bool(await session.scalar(stmt))

    async def list_by_user(self, user_id: str, limit: int, offset: int) -> list[ShortURL]:
        stmt = (
            select(ShortURL)
            .where(ShortURL.user_id == user_id)
            .order_by(ShortURL.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        async with self._sessions() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def update(self, record: ShortURL) -> None:
        # short_code and original_url are immutable.
        record.updated_at = utcnow()
        stmt = (
            update(ShortURL)
            .where(ShortURL.id == record.id)
            .values(
                expires_at=record.expires_at,
                password_hash=record.password_hash,
                is_active=record.is_active,
                updated_at=record.updated_at,
            )
        )
        async with self._sessions() as session:
            await session.execute(stmt)
            await session.commit()

    async def delete(self, url_id: str) -> bool:
        async with self._sessions() as session:
            result = await session.execute(delete(ShortURL).where(ShortURL.id == url_id))
            await session.commit()
            return bool(result.rowcount)

    async def increment_visit_count(self, url_id: str) -> None:
        stmt = (
            update(ShortURL)
            .where(ShortURL.id == url_id)
            .values(click_count=ShortURL.click_count + 1, updated_at=utcnow())
        )
        async with self._sessions() as session:
            await session.execute(stmt)
            await session.commit()

    async def ping(self) -> None:
        async with self._sessions() as session:
            await session.execute(text("SELECT 1"))


class ClickRepository:
    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = sessions

    async def create(self, click: Click) -> Click:
        if click.created_at is None:
            click.created_at = utcnow()
        async with self._sessions() as session:
            session.add(click)
            await session.commit()
        return click

    async def get_stats(
        self,
        url_id: str,
        short_code: str,
        date_from: datetime.datetime,
        date_to: datetime.datetime,
        top_n: int = 5,
    ) -> ClickStats:
        in_range = (Click.url_id == url_id, Click.created_at.between(date_from, date_to))

        async with self._sessions() as session:
            total = await session.scalar(select(func.count(Click.id)).where(*in_range))
            unique = await session.scalar(select(func.count(distinct(Click.ip_address))).where(*in_range))

            day = func.date(Click.created_at)
            by_date = await session.execute(
                select(day.label("day"), func.count(Click.id)).where(*in_range).group_by(day).order_by(day)
            )
            clicks_by_date = {str(row[0]): int(row[1]) for row in by_date}

            top_referrers = await self._top(session, Click.referrer, "Direct", in_range, top_n)
            top_browsers = await self._top(session, Click.browser, "Unknown", in_range, top_n)
            top_devices = await self._top(session, Click.device, "Unknown", in_range, top_n)
            top_os = await self._top(session, Click.os, "Unknown", in_range, top_n)

        return ClickStats(
            short_code=short_code,
            total_clicks=total or 0,
            unique_clicks=unique or 0,
            clicks_by_date=clicks_by_date,
            top_referrers=top_referrers,
            top_browsers=top_browsers,
            top_devices=top_devices,
            top_os=top_os,
        )

    @staticmethod
    async def _top(session: AsyncSession, column, fallback: str, in_range: tuple, limit: int) -> list[NameCount]:
        name = func.coalesce(func.nullif(column, ""), fallback)
        count = func.count(Click.id)
        rows = await session.execute(
            select(name, count).where(*in_range).group_by(name).order_by(count.desc(), name).limit(limit)
        )
        return [NameCount(name=row[0], count=row[1]) for row in rows]
