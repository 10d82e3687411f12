"""SQLAlchemy ORM models for the URL shortener service.

This module defines the database schema using SQLAlchemy declarative models
with proper indexing and timestamp management for URL mappings and clicks.

Data Model Layout
=================
::
    urls table
    ├─ id (VARCHAR(36) PRIMARY KEY, uuid4)
    ├─ short_code (VARCHAR(20) UNIQUE, INDEXED)
    ├─ original_url (TEXT NOT NULL)
    ├─ custom_alias (VARCHAR(20) UNIQUE, NULL)
    ├─ user_id (VARCHAR(36), INDEXED, NULL)
    ├─ expires_at (TIMESTAMPTZ, NULL)
    ├─ password_hash (VARCHAR(255), NULL)
    ├─ is_active (BOOLEAN DEFAULT TRUE)
    ├─ click_count (BIGINT DEFAULT 0)
    ├─ created_at (TIMESTAMPTZ)
    └─ updated_at (TIMESTAMPTZ)

    clicks table
    ├─ id (VARCHAR(36) PRIMARY KEY, uuid4)
    ├─ url_id (FK urls.id ON DELETE CASCADE, INDEXED)
    ├─ short_code (VARCHAR(20))
    ├─ ip_address (VARCHAR(45))
    ├─ user_agent (TEXT)
    ├─ referrer (TEXT)
    ├─ device / browser / os (VARCHAR(50))
    └─ created_at (TIMESTAMPTZ, INDEXED)

How to Use
===========
**Step 1 — Import**::
    from shortener.models import ShortURL, Click

**Step 2 — Build a record**::
    url = ShortURL(id=str(uuid.uuid4()), short_code="abc123", original_url="https://example.com")

**Step 3 — Persist through a repository**::
    await URLRepository(sessions).create(url)

Key Behaviours
===============
- short_code and custom_alias share one namespace; both are unique.
- short_code and original_url never change after creation.
- click_count only increases and is updated atomically in SQL.
- A record redirects iff is_active and (expires_at unset or in the future).

Classes:
    ShortURL:  One shortening mapping with its durable visit counter.
    Click:  One observed redirect event (append-only).
"""

import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from shortener.database import Base

__all__ = ["ShortURL", "Click"]


class ShortURL(Base):
    __tablename__ = "urls"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    short_code: Mapped[str] = mapped_column(String(20), unique=True, index=True, nullable=False)
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    custom_alias: Mapped[str | None] = mapped_column(String(20), unique=True, index=True, nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    click_count: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    @property
    def is_password_protected(self) -> bool:
        return bool(self.password_hash)

    def __repr__(self) -> str:
        return (
            f"<ShortURL(id={self.id}, short_code='{self.short_code}', "
            f"active={self.is_active}, clicks={self.click_count})>"
        )


class Click(Base):
    __tablename__ = "clicks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    url_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("urls.id", ondelete="CASCADE"), index=True, nullable=False
    )
    short_code: Mapped[str] = mapped_column(String(20), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(45), index=True, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    referrer: Mapped[str | None] = mapped_column(Text, nullable=True)
    device: Mapped[str | None] = mapped_column(String(50), nullable=True)
    browser: Mapped[str | None] = mapped_column(String(50), nullable=True)
    os: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Click(id={self.id}, short_code='{self.short_code}', device='{self.device}')>"
