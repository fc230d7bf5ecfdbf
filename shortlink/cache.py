"""Redis-backed resolution cache for link payloads and QR images.

The cache is advisory. Every operation here absorbs Redis failures: reads
degrade to a miss and writes are skipped, so callers fall through to the
durable store without ever seeing a cache exception.

Key Layout
==========
::
    url:{short_code}  ─► CachedLink JSON   (PX = expires_at - now)
    qr:{short_code}   ─► PNG bytes         (PX = remaining PTTL of url:{short_code})

Key Behaviours
===============
- TTLs are written in milliseconds and never outlive the link's expires_at.
- A TTL of zero or less means "do not cache"; nothing is written.
- The Redis client is created with decode_responses=False because QR entries
  are raw bytes; link payloads are decoded here.
- Each call is a single-key Redis command; there are no multi-key transactions.
"""

import datetime
import logging

import redis.asyncio as redis
from prometheus_client import Counter
from pydantic import ValidationError
from redis.exceptions import RedisError

from shortlink.schemas import CachedLink

__all__ = ["ResolutionCache", "ttl_until", "create_redis"]

logger = logging.getLogger(__name__)

CACHE_OPERATIONS_TOTAL = Counter(
    "shortlink_cache_operations_total",
    "Redis cache operations issued",
    ["operation"],
)
CACHE_ERRORS_TOTAL = Counter(
    "shortlink_cache_errors_total",
    "Redis cache operations that failed and were absorbed",
    ["operation"],
)

_CACHE_FAILURES = (RedisError, OSError)


def ttl_until(expires_at: datetime.datetime, now: datetime.datetime) -> int:
    """Milliseconds from ``now`` until ``expires_at``, clamped at zero."""
    remaining = int((expires_at - now) / datetime.timedelta(milliseconds=1))
    return max(remaining, 0)


def create_redis(url: str) -> redis.Redis:
    return redis.from_url(url, decode_responses=False)


class ResolutionCache:
    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @staticmethod
    def link_key(short_code: str) -> str:
        return f"url:{short_code}"

    @staticmethod
    def qr_key(short_code: str) -> str:
        return f"qr:{short_code}"

    def _absorb(self, operation: str, short_code: str, exc: BaseException) -> None:
        CACHE_ERRORS_TOTAL.labels(operation=operation).inc()
        logger.warning(f"Cache {operation} failed for {short_code}: {exc}")

    async def get_link(self, short_code: str) -> CachedLink | None:
        CACHE_OPERATIONS_TOTAL.labels(operation="get_link").inc()
        try:
            raw = await self._client.get(self.link_key(short_code))
        except _CACHE_FAILURES as exc:
            self._absorb("get_link", short_code, exc)
            return None
        if raw is None:
            return None
        try:
            return CachedLink.model_validate_json(raw)
        except ValidationError as exc:
            logger.error(f"Cache deserialization error for {short_code}: {exc}")
            return None

    async def set_link(self, link: CachedLink, ttl_ms: int) -> bool:
        if ttl_ms <= 0:
            return False
        CACHE_OPERATIONS_TOTAL.labels(operation="set_link").inc()
        try:
            await self._client.set(self.link_key(link.short_code), link.model_dump_json(), px=ttl_ms)
        except _CACHE_FAILURES as exc:
            self._absorb("set_link", link.short_code, exc)
            return False
        return True

    async def delete_link(self, short_code: str) -> None:
        CACHE_OPERATIONS_TOTAL.labels(operation="delete_link").inc()
        try:
            await self._client.delete(self.link_key(short_code))
        except _CACHE_FAILURES as exc:
            self._absorb("delete_link", short_code, exc)

    async def link_ttl_ms(self, short_code: str) -> int | None:
        """Remaining TTL of the link entry, or None if missing, persistent or unreadable."""
        CACHE_OPERATIONS_TOTAL.labels(operation="link_ttl").inc()
        try:
            remaining = await self._client.pttl(self.link_key(short_code))
        except _CACHE_FAILURES as exc:
            self._absorb("link_ttl", short_code, exc)
            return None
        # -2: no such key, -1: key without expiry
        if remaining is None or remaining <= 0:
            return None
        return int(remaining)

    async def get_qr(self, short_code: str) -> bytes | None:
        CACHE_OPERATIONS_TOTAL.labels(operation="get_qr").inc()
        try:
            return await self._client.get(self.qr_key(short_code))
        except _CACHE_FAILURES as exc:
            self._absorb("get_qr", short_code, exc)
            return None

    async def set_qr(self, short_code: str, png: bytes, ttl_ms: int) -> bool:
        if ttl_ms <= 0:
            return False
        CACHE_OPERATIONS_TOTAL.labels(operation="set_qr").inc()
        try:
            await self._client.set(self.qr_key(short_code), png, px=ttl_ms)
        except _CACHE_FAILURES as exc:
            self._absorb("set_qr", short_code, exc)
            return False
        return True

    async def ping(self) -> None:
        await self._client.ping()

    async def close(self) -> None:
        await self._client.aclose()
