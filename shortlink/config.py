"""Configuration management for the short-link service.

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
    from shortlink.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    lifetime = settings.link_lifetime

**Step 3 — Override in tests**::
    settings = Settings(LINK_LIFETIME_DAYS=1, ENRICHMENT_WORKERS=1)

Key Behaviours
===============
- Settings are cached after first access.
- Environment variables override defaults automatically.
- Only shortlink.main reads settings at import time; everything else receives
  them explicitly through the resources built at startup.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

import datetime
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "shortlink"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://shortlink:shortlink@db:5432/shortlink"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"

    # Short codes and link lifecycle
    SHORT_CODE_LENGTH: int = 6
    SHORT_CODE_MAX_ATTEMPTS: int = 5
    LINK_LIFETIME_DAYS: int = 90

    # Geolocation
    GEO_API_URL: str = "https://ipapi.co/{ip}/json/"
    GEO_TIMEOUT_SECONDS: float = 5.0

    # Enrichment worker pool
    ENRICHMENT_WORKERS: int = 4
    ENRICHMENT_QUEUE_SIZE: int = 1000
    ENRICHMENT_DRAIN_TIMEOUT_SECONDS: float = 10.0

    # QR rendering
    QR_BOX_SIZE: int = 8
    QR_BORDER: int = 4

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    @property
    def link_lifetime(self) -> datetime.timedelta:
        return datetime.timedelta(days=self.LINK_LIFETIME_DAYS)

    def short_url(self, short_code: str) -> str:
        return f"{self.BASE_URL.rstrip('/')}/{short_code}"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
