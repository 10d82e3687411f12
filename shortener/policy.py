"""Expiry and access policy for short URL records.

Pure predicates over a record's ``is_active`` flag and optional ``expires_at``
timestamp. Both the cached shadow copy and the store copy go through the same
checks on every read.

Decision Table
==============
::
    is_active │ expires_at        │ verdict
    ──────────┼───────────────────┼─────────
    False     │ (anything)        │ INACTIVE
    True      │ unset             │ ALLOWED
    True      │ now <  expires_at │ ALLOWED
    True      │ now >= expires_at │ EXPIRED

Functions:
    is_expired():  expiry set and reached.
    can_redirect():  active and not expired.
    access_verdict():  distinguishes INACTIVE from EXPIRED.
    ensure_can_redirect():  raises the matching service error.
    cache_ttl_for():  cache lifetime bounded by the remaining time-to-expiry.
"""

import datetime
from typing import Any

from shortener.enums import AccessVerdict
from shortener.exceptions import URLExpiredError, URLInactiveError

__all__ = [
    "utcnow",
    "as_utc",
    "is_expired",
    "can_redirect",
    "access_verdict",
    "ensure_can_redirect",
    "cache_ttl_for",
]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value: datetime.datetime) -> datetime.datetime:
    """Return ``value`` as an aware UTC datetime.

    Naive values are read back as UTC; some backends (SQLite) drop tzinfo on
    the round trip.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def is_expired(record: Any, now: datetime.datetime | None = None) -> bool:
    if record.expires_at is None:
        return False
    now = as_utc(now) if now is not None else utcnow()
    return now >= as_utc(record.expires_at)


def can_redirect(record: Any, now: datetime.datetime | None = None) -> bool:
    return bool(record.is_active) and not is_expired(record, now)


def access_verdict(record: Any, now: datetime.datetime | None = None) -> AccessVerdict:
    if not record.is_active:
        return AccessVerdict.INACTIVE
    if is_expired(record, now):
        return AccessVerdict.EXPIRED
    return AccessVerdict.ALLOWED


def ensure_can_redirect(record: Any, now: datetime.datetime | None = None) -> None:
    verdict = access_verdict(record, now)
    if verdict is AccessVerdict.INACTIVE:
        raise URLInactiveError(record.short_code)
    if verdict is AccessVerdict.EXPIRED:
        raise URLExpiredError(record.short_code)


def cache_ttl_for(
    record: Any,
    default_ttl: datetime.timedelta,
    now: datetime.datetime | None = None,
) -> datetime.timedelta | None:
    """Return how long ``record`` may live in the cache.

    ``None`` means the record must not be cached at all (already expired).
    """
    if record.expires_at is None:
        return default_ttl
    now = as_utc(now) if now is not None else utcnow()
    remaining = as_utc(record.expires_at) - now
    if remaining <= datetime.timedelta(0):
        return None
    return min(default_ttl, remaining)
