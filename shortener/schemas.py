"""Pydantic schemas for request/response validation in the URL shortener.

This module defines Pydantic models for API input validation, output
serialization, the Redis cache payload and the click event handed to the
background recorder.

Schema Hierarchy
=================
::
    URLCreate (Input)
    ├─ url: str
    ├─ custom_alias: str | None (3-20 alphanumeric)
    ├─ expires_in: int | None (hours, 0 = never)
    └─ password: str | None (4-50 chars)

    BulkURLCreate (Input)
    └─ urls: list[URLCreate] (1-100)

    URLResponse (Output)
    ├─ id, short_code, short_url, original_url
    ├─ expires_at, created_at, click_count
    ├─ is_active
    └─ password_protected

    ClickStats (Output)
    ├─ total_clicks / unique_clicks
    ├─ clicks_by_date
    └─ top_referrers / top_browsers / top_devices / top_os

    CachedURLPayload (Redis)
    └─ full record, including password_hash

    ClickEvent (Recorder queue)
    └─ short_code, ip_address, user_agent, referrer, occurred_at

Key Behaviours
===============
- Custom aliases must be alphanumeric and 3-20 characters long.
- URL syntax is checked by the service, not here, so every caller gets the same rule.
- All datetime fields are timezone-aware.
- Models are configured for ORM attribute mapping.
"""

import datetime

from pydantic import BaseModel, Field, field_validator

from shortener.enums import HealthStatus
from shortener.models import ShortURL

__all__ = [
    "MAX_EXPIRES_IN_HOURS",
    "URLCreate",
    "BulkURLCreate",
    "URLResponse",
    "BulkURLResult",
    "BulkURLResponse",
    "VerifyPasswordRequest",
    "VerifyPasswordResponse",
    "PasswordProtectedResponse",
    "NameCount",
    "ClickStats",
    "HealthResponse",
    "ClickEvent",
    "CachedURLPayload",
]


# 100 years keeps every expiry far inside datetime range.
MAX_EXPIRES_IN_HOURS = 100 * 365 * 24


class URLCreate(BaseModel):
    url: str = Field(..., min_length=1)
    custom_alias: str | None = None
    expires_in: int | None = Field(
        None, ge=0, le=MAX_EXPIRES_IN_HOURS, description="Lifetime in hours; 0 or absent means never."
    )
    password: str | None = Field(None, min_length=4, max_length=50)

    @field_validator("custom_alias")
    @classmethod
    def validate_custom_alias(cls, v: str | None) -> str | None:
        if v is not None:
            if len(v) < 3 or len(v) > 20:
                raise ValueError("Custom alias must be between 3 and 20 characters")
            if not v.isalnum() or not v.isascii():
                raise ValueError("Custom alias must be alphanumeric")
        return v


class BulkURLCreate(BaseModel):
    urls: list[URLCreate] = Field(..., min_length=1, max_length=100)


class URLResponse(BaseModel):
    id: str
    short_code: str
    short_url: str
    original_url: str
    expires_at: datetime.datetime | None = None
    created_at: datetime.datetime
    click_count: int
    is_active: bool
    password_protected: bool

    @classmethod
    def from_model(cls, url: ShortURL, base_url: str) -> "URLResponse":
        code = url.custom_alias or url.short_code
        return cls(
            id=url.id,
            short_code=url.short_code,
            short_url=f"{base_url.rstrip('/')}/{code}",
            original_url=url.original_url,
            expires_at=url.expires_at,
            created_at=url.created_at,
            click_count=url.click_count,
            is_active=url.is_active,
            password_protected=url.is_password_protected,
        )


class BulkURLResult(BaseModel):
    original_url: str
    success: bool
    data: URLResponse | None = None
    error: str | None = None


class BulkURLResponse(BaseModel):
    total: int
    successful: int
    failed: int
    results: list[BulkURLResult]


class VerifyPasswordRequest(BaseModel):
    password: str = Field(..., min_length=1)


class VerifyPasswordResponse(BaseModel):
    original_url: str


class PasswordProtectedResponse(BaseModel):
    password_protected: bool


class NameCount(BaseModel):
    name: str
    count: int


class ClickStats(BaseModel):
    short_code: str
    total_clicks: int = 0
    unique_clicks: int = 0
    click_count: int = Field(0, description="Durable visit counter stored on the URL record.")
    recent_clicks: int = Field(0, description="Short-lived counter kept in the cache, 0 when unavailable.")
    clicks_by_date: dict[str, int] = Field(default_factory=dict)
    top_referrers: list[NameCount] = Field(default_factory=list)
    top_browsers: list[NameCount] = Field(default_factory=list)
    top_devices: list[NameCount] = Field(default_factory=list)
    top_os: list[NameCount] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus


class ClickEvent(BaseModel):
    """One redirect observed by the HTTP layer, queued for detached recording."""

    short_code: str = Field(..., description="Code as requested, e.g. 'abc123' or a custom alias")
    ip_address: str | None = None
    user_agent: str = ""
    referrer: str = ""
    occurred_at: datetime.datetime = Field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )


class CachedURLPayload(BaseModel):
    """Redis cache payload for a shortened URL."""

    id: str
    short_code: str
    original_url: str
    custom_alias: str | None = None
    user_id: str | None = None
    expires_at: datetime.datetime | None = None
    password_hash: str | None = None
    is_active: bool
    click_count: int
    created_at: datetime.datetime
    updated_at: datetime.datetime

    model_config = {"from_attributes": True}

    def to_model(self) -> ShortURL:
        return ShortURL(**self.model_dump())
