"""Database engine and session management for the URL shortener.

This module provides SQLAlchemy async engine setup, session factories,
and database lifecycle operations using PostgreSQL as the backend.

Flow Diagram — Database Operations
=================================
::
    ┌─────────────┐
    │ Service     │
    │ Manager     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ create_      │
    │ engine()     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ init_db()    │
    │ create_all   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Repository   │
    │ opens one    │
    │ session per  │
    │ operation    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ close_db()   │
    │ (dispose)    │
    └─────────────┘

How to Use
===========
**Step 1 — Build the engine on startup**::
    engine = create_engine(settings.DATABASE_URL)
    sessions = create_session_factory(engine)
    await init_db(engine)

**Step 2 — Hand the factory to repositories**::
    urls = URLRepository(sessions)

**Step 3 — Cleanup on shutdown**::
    await close_db(engine)

Key Behaviours
===============
- Each repository call runs in its own short-lived session, so detached
  background work never shares a request's session.
- Connection pooling is configured for production workloads (PostgreSQL).
- Tables are created automatically on application startup.
- Engine is properly disposed on application shutdown.

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    create_engine():  Builds the async engine.
    create_session_factory():  Builds the async session factory.
    init_db():  Creates all tables on startup.
    close_db():  Disposes the engine on shutdown.
"""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

__all__ = ["Base", "create_engine", "create_session_factory", "init_db", "close_db"]


class Base(DeclarativeBase):
    pass


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    options: dict = {"echo": echo, "pool_pre_ping": True}
    if not make_url(database_url).get_backend_name().startswith("sqlite"):
        options.update(pool_size=20, max_overflow=10)
    return create_async_engine(database_url, **options)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    # Register the mapped tables on Base.metadata before create_all.
    import shortener.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    await engine.dispose()
