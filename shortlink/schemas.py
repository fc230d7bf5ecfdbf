"""Pydantic schemas for request/response validation and cache payloads.

Schema Hierarchy
=================
::
    ShortenRequest (Input, POST /api/shorten body; shape only)
    ├─ long_url: str
    ├─ alias: str | None
    └─ context: str | None

    LinkCreate (Validated by LinkService.create_link)
    ├─ long_url: str (absolute URL with scheme and host)
    ├─ alias: str | None (3-50 chars, [A-Za-z0-9_-], not reserved)
    └─ context: str | None (≤ 200 chars)

    LinkCreated (Output)
    ├─ short_code: str
    ├─ short_url: str (computed)
    ├─ long_url: str
    └─ expires_at: datetime

    CachedLink (Redis payload under url:{short_code})
    ├─ short_code: str
    ├─ long_url: str
    └─ expires_at: datetime

    GeoLocation / RedirectEvent (Enrichment pipeline)

    HealthResponse (Output)
    ├─ status: HealthStatus
    ├─ database: HealthStatus
    └─ cache: HealthStatus

Key Behaviours
===============
- ShortenRequest only checks the body shape; LinkCreate holds the field rules.
- URL validation uses the validators library plus an explicit scheme/host check.
- An empty or whitespace-only alias means "generate a random code".
- Reserved aliases are rejected case-insensitively.
- CachedLink carries expires_at so a cache hit can enforce expiry on its own.
"""

import datetime
import re
from urllib.parse import urlparse

import validators
from pydantic import BaseModel, Field, field_validator

from shortlink.enums import HealthStatus

__all__ = [
    "ALIAS_MIN_LENGTH",
    "ALIAS_MAX_LENGTH",
    "CONTEXT_MAX_LENGTH",
    "RESERVED_ALIASES",
    "ShortenRequest",
    "LinkCreate",
    "LinkCreated",
    "CachedLink",
    "GeoLocation",
    "RedirectEvent",
    "HealthResponse",
]

ALIAS_MIN_LENGTH = 3
ALIAS_MAX_LENGTH = 50
CONTEXT_MAX_LENGTH = 200
RESERVED_ALIASES = frozenset({"api", "admin", "www", "app", "help", "support", "about"})

_ALIAS_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class ShortenRequest(BaseModel):
    """Body of POST /api/shorten. Field rules are applied by LinkCreate in the service."""

    long_url: str
    alias: str | None = None
    context: str | None = None


class LinkCreate(BaseModel):
    long_url: str
    alias: str | None = None
    context: str | None = None

    @field_validator("long_url")
    @classmethod
    def validate_long_url(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("URL cannot be empty")
        parsed = urlparse(v)
        if not parsed.scheme:
            raise ValueError("URL must include a scheme (http:// or https://)")
        if not parsed.netloc:
            raise ValueError("URL must include a host")
        if not validators.url(v):
            raise ValueError("Invalid URL provided")
        return v

    @field_validator("alias")
    @classmethod
    def validate_alias(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        if not v:
            return None
        if len(v) < ALIAS_MIN_LENGTH or len(v) > ALIAS_MAX_LENGTH:
            raise ValueError(f"Alias must be between {ALIAS_MIN_LENGTH} and {ALIAS_MAX_LENGTH} characters")
        if not _ALIAS_PATTERN.match(v):
            raise ValueError("Alias can only contain letters, numbers, hyphens, and underscores")
        if v.lower() in RESERVED_ALIASES:
            raise ValueError(f"Alias '{v}' is reserved")
        return v

    @field_validator("context")
    @classmethod
    def validate_context(cls, v: str | None) -> str | None:
        if v is not None and len(v) > CONTEXT_MAX_LENGTH:
            raise ValueError(f"Context must be at most {CONTEXT_MAX_LENGTH} characters")
        return v or None


class LinkCreated(BaseModel):
    short_code: str
    short_url: str
    long_url: str
    expires_at: datetime.datetime

    model_config = {"from_attributes": True}


class CachedLink(BaseModel):
    """Redis cache payload for a link, written with TTL = expires_at - now."""

    short_code: str
    long_url: str
    expires_at: datetime.datetime

    model_config = {"from_attributes": True}


class GeoLocation(BaseModel):
    country: str = "Unknown"
    region: str = "Unknown"
    city: str = "Unknown"

    @classmethod
    def local(cls) -> "GeoLocation":
        return cls(country="Local", region="Local", city="Local")

    @classmethod
    def unknown(cls) -> "GeoLocation":
        return cls()


class RedirectEvent(BaseModel):
    """One completed redirect waiting to be enriched and stored."""

    short_code: str = Field(..., description="Short code that was resolved, e.g. 'abc123'")
    ip_address: str
    user_agent: str = ""
    referrer: str = ""


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus
