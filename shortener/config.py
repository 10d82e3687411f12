"""Configuration management for the URL shortener service.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from shortener.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    db_url = settings.DATABASE_URL

**Step 3 — Override in tests**::
    settings = Settings(DATABASE_URL="sqlite+aiosqlite:///./test.db", CACHE_ENABLED=False)

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- A disabled or unreachable cache is a legal configuration.
- Timeouts bound every store and cache call made by the service.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "url-shortener"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL (system of record)
    DATABASE_URL: str = "postgresql+asyncpg://urlshortener:urlshortener@db:5432/urlshortener"
    DATABASE_ECHO: bool = False

    # Redis (optional cache)
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_ENABLED: bool = True
    CACHE_TTL_SECONDS: int = 3600
    CLICK_COUNTER_TTL_SECONDS: int = 86400

    # I/O deadlines
    CACHE_TIMEOUT_SECONDS: float = 0.25
    STORE_TIMEOUT_SECONDS: float = 5.0

    # Short code allocation
    SHORT_CODE_LENGTH: int = 8
    SHORT_CODE_MAX_ATTEMPTS: int = 10

    # Detached click recording
    CLICK_QUEUE_SIZE: int = 10000
    CLICK_WORKERS: int = 4
    CLICK_DRAIN_TIMEOUT_SECONDS: float = 5.0

    # Per-client rate limiting (0 disables)
    RATE_LIMIT_PER_SECOND: float = 100
    RATE_LIMIT_BURST: int = 200
    RATE_LIMIT_IDLE_SECONDS: float = 180
    RATE_LIMIT_SWEEP_SECONDS: float = 60

    # Query defaults
    STATS_DEFAULT_DAYS: int = 30
    STATS_TOP_N: int = 5
    USER_URLS_DEFAULT_LIMIT: int = 20

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
