"""Capability interfaces consumed by the resolution engine and click recorder.

The engine only talks to its collaborators through these protocols, which lets
tests swap in in-memory fakes. ``URLCache`` is optional everywhere: ``None`` is
a legal configuration.
"""

import datetime
from typing import Protocol

from shortener.models import Click, ShortURL
from shortener.schemas import ClickStats

__all__ = ["URLStore", "ClickStore", "URLCache"]


class URLStore(Protocol):
    async def create(self, record: ShortURL) -> ShortURL: ...

    async def get_by_short_code(self, code: str) -> ShortURL | None:
        """Match ``code`` against the short code or the custom alias."""
        ...

    async def get_by_id(self, url_id: str) -> ShortURL | None: ...

    async def exists_by_short_code(self, code: str) -> bool:
        """Match ``code`` against the short code or the custom alias."""
        ...

    async def list_by_user(self, user_id: str, limit: int, offset: int) -> list[ShortURL]: ...

    async def update(self, record: ShortURL) -> None: ...

    async def delete(self, url_id: str) -> bool: ...

    async def increment_visit_count(self, url_id: str) -> None: ...

    async def ping(self) -> None: ...


class ClickStore(Protocol):
    async def create(self, click: Click) -> Click: ...

    async def get_stats(
        self,
        url_id: str,
        short_code: str,
        date_from: datetime.datetime,
        date_to: datetime.datetime,
        top_n: int,
    ) -> ClickStats: ...


class URLCache(Protocol):
    async def get(self, code: str) -> ShortURL | None: ...

    async def set(self, record: ShortURL, ttl: datetime.timedelta) -> None: ...

    async def delete(self, code: str) -> None: ...

    async def increment_visit_count(self, code: str) -> int: ...

    async def get_visit_count(self, code: str) -> int: ...

    async def ping(self) -> None: ...

    async def close(self) -> None: ...
