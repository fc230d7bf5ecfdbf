"""Link Service Layer - creation, resolution, QR images and click hand-off.

Architecture Overview
=====================
::
    ┌──────────────────────────────────────────────────────────────┐
    │                        LinkService                           │
    │  ┌────────────────┐  ┌────────────────┐  ┌────────────────┐  │
    │  │ create_link    │  │ resolve        │  │ record_redirect│  │
    │  │ • validate     │  │ • cache first  │  │ _event         │  │
    │  │ • alias/random │  │ • store        │  │ • submit, no   │  │
    │  │ • insert+cache │  │ • expiry       │  │   await        │  │
    │  └────────────────┘  └────────────────┘  └────────────────┘  │
    └──────────────────────────────────────────────────────────────┘
            │                    │                     │
            ▼                    ▼                     ▼
    ┌───────────────┐   ┌────────────────┐   ┌──────────────────┐
    │  LinkStore    │   │ResolutionCache │   │EnrichmentPipeline│
    │ (PostgreSQL)  │   │   (Redis)      │   │ (worker pool)    │
    └───────────────┘   └────────────────┘   └──────────────────┘

Resolution Flow
===============
::
    ┌─────────────┐
    │ GET url:code│
    └──────┬──────┘
    HIT?  │
    ┌─────┴──────────────┐
    │ NO                  │ YES
    ▼                     ▼
┌─────────┐        ┌──────────────┐
│ store   │        │ now >=       │
│ .get()  │        │ expires_at ? │
└────┬────┘        └──────┬───────┘
 None│ found         YES  │  NO
  ▼  ▼                ▼   ▼
404  now >= expires_at?  DEL key   301
     │YES      │NO       410
     ▼         ▼
    410    SET url:code PX=(expires_at-now)
           301

Key Behaviours
===============
- Expiry is enforced on cache hits too: the cached payload carries expires_at,
  and an expired hit evicts the key and resolves to GONE.
- ``now == expires_at`` counts as expired.
- Cache writes use TTL = expires_at - now and are skipped when that is <= 0.
- A user alias is checked with the uniqueness oracle before inserting, so a
  known conflict performs no write; the unique constraint settles races.
- Enrichment is handed off with ``submit`` and never awaited here.
"""

import datetime
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from prometheus_client import Counter, Histogram
from pydantic import ValidationError

from shortlink.cache import ResolutionCache, ttl_until
from shortlink.codegen import CodeGenerator
from shortlink.enrichment import EnrichmentPipeline
from shortlink.enums import CacheStatus, RequestStatus, ResolutionStatus
from shortlink.errors import AliasTaken, CodeExhausted, ValidationFailed
from shortlink.models import ANONYMOUS_OWNER, Link
from shortlink.qr import QRImageCache
from shortlink.schemas import CachedLink, LinkCreate, RedirectEvent
from shortlink.store import LinkStore

if TYPE_CHECKING:
    from shortlink.dependencies import AppResources, RequestContext

__all__ = ["Resolution", "LinkService", "utcnow"]

LINK_CREATIONS_TOTAL = Counter(
    "shortlink_creations_total",
    "Link creation requests by outcome",
    ["status"],
)
RESOLUTIONS_TOTAL = Counter(
    "shortlink_resolutions_total",
    "Short code resolutions by outcome",
    ["status", "cache_hit"],
)
RESOLVE_DURATION = Histogram(
    "shortlink_resolve_duration_seconds",
    "Time taken to resolve a short code",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


@dataclass(frozen=True)
class Resolution:
    status: ResolutionStatus
    long_url: str | None = None
    expires_at: datetime.datetime | None = None
    cache_hit: bool = False


def _validation_failed(exc: ValidationError) -> ValidationFailed:
    error = exc.errors()[0]
    field = ".".join(str(part) for part in error["loc"]) or "request"
    cause = error.get("ctx", {}).get("error")
    reason = str(cause) if cause is not None else error["msg"]
    return ValidationFailed(field, reason)


class LinkService:
    """Creates links and resolves short codes against the cache and the store.

    Example:
        >>> service = LinkService.from_resources(resources)
        >>> link = await service.create_link("https://example.com/a")
        >>> resolution = await service.resolve(link.short_code)
        >>> resolution.status
        <ResolutionStatus.REDIRECT: 'redirect'>
    """

    def __init__(
        self,
        store: LinkStore,
        cache: ResolutionCache,
        generator: CodeGenerator,
        qr_images: QRImageCache,
        enrichment: EnrichmentPipeline,
        link_lifetime: datetime.timedelta = datetime.timedelta(days=90),
        clock: Callable[[], datetime.datetime] = utcnow,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._generator = generator
        self._qr_images = qr_images
        self._enrichment = enrichment
        self._link_lifetime = link_lifetime
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_resources(cls, resources: "AppResources", logger: logging.LoggerAdapter | None = None) -> "LinkService":
        return cls(
            store=resources.store,
            cache=resources.cache,
            generator=resources.generator,
            qr_images=resources.qr_images,
            enrichment=resources.enrichment,
            link_lifetime=resources.settings.link_lifetime,
            clock=resources.clock,
            logger=logger,
        )

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "LinkService":
        return cls.from_resources(ctx.resources, logger=ctx.logger)

    # ========================================================================
    # CREATION
    # ========================================================================

    async def create_link(
        self,
        long_url: str,
        alias: str | None = None,
        context: str | None = None,
        owner_id: str | None = None,
    ) -> Link:
        """Create a link under ``alias`` or a fresh random code.

        Raises:
            ValidationFailed: malformed URL or alias, or oversized context.
            AliasTaken: the alias is already assigned.
            CodeExhausted: no free random code within the retry bound.
        """
        try:
            link = await self._create_link(long_url, alias, context, owner_id)
        except ValidationFailed as exc:
            LINK_CREATIONS_TOTAL.labels(status=RequestStatus.VALIDATION_ERROR).inc()
            self._logger.warning(f"Link creation rejected: {exc}")
            raise
        except AliasTaken as exc:
            LINK_CREATIONS_TOTAL.labels(status=RequestStatus.CONFLICT).inc()
            self._logger.warning(f"Link creation conflict: {exc}")
            raise
        except CodeExhausted as exc:
            LINK_CREATIONS_TOTAL.labels(status=RequestStatus.EXHAUSTED).inc()
            self._logger.error(f"Link creation failed: {exc}")
            raise

        LINK_CREATIONS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        self._logger.info(f"Link created: {link.short_code} -> {link.long_url}")
        return link

    async def _create_link(
        self,
        long_url: str,
        alias: str | None,
        context: str | None,
        owner_id: str | None,
    ) -> Link:
        try:
            request = LinkCreate(long_url=long_url, alias=alias, context=context)
        except ValidationError as exc:
            raise _validation_failed(exc) from exc

        if request.alias:
            if await self._store.exists(request.alias):
                raise AliasTaken(request.alias)
            short_code = request.alias
        else:
            short_code = await self._generator.generate_unique(self._store.exists)

        now = self._clock()
        link = Link(
            short_code=short_code,
            long_url=request.long_url,
            context=request.context,
            owner_id=owner_id or ANONYMOUS_OWNER,
            created_at=now,
            expires_at=now + self._link_lifetime,
        )

        try:
            await self._store.insert(link)
        except AliasTaken:
            if request.alias:
                raise
            # Another writer claimed the generated code between the oracle check and the insert.
            self._logger.error(f"Generated short code {short_code} lost an insert race")
            raise CodeExhausted(self._generator.max_attempts) from None

        await self._populate_cache(link, now)
        return link

    # ========================================================================
    # RESOLUTION
    # ========================================================================

    async def resolve(self, short_code: str) -> Resolution:
        start_time = time.perf_counter()
        resolution = await self._resolve(short_code)
        RESOLVE_DURATION.observe(time.perf_counter() - start_time)
        RESOLUTIONS_TOTAL.labels(
            status=resolution.status,
            cache_hit=CacheStatus.HIT if resolution.cache_hit else CacheStatus.MISS,
        ).inc()
        self._logger.debug(f"Resolved {short_code}: {resolution.status.value} (cache_hit={resolution.cache_hit})")
        return resolution

    async def _resolve(self, short_code: str) -> Resolution:
        now = self._clock()

        cached = await self._cache.get_link(short_code)
        if cached is not None:
            if now >= cached.expires_at:
                await self._cache.delete_link(short_code)
                return Resolution(ResolutionStatus.GONE, expires_at=cached.expires_at, cache_hit=True)
            return Resolution(ResolutionStatus.REDIRECT, cached.long_url, cached.expires_at, cache_hit=True)

        link = await self._store.get(short_code)
        if link is None:
            return Resolution(ResolutionStatus.NOT_FOUND)

        if link.is_expired(now):
            return Resolution(ResolutionStatus.GONE, expires_at=link.expires_at)

        await self._populate_cache(link, now)
        return Resolution(ResolutionStatus.REDIRECT, link.long_url, link.expires_at)

    async def _populate_cache(self, link: Link, now: datetime.datetime) -> None:
        ttl_ms = ttl_until(link.expires_at, now)
        if ttl_ms <= 0:
            return
        if not await self._cache.set_link(CachedLink.model_validate(link), ttl_ms):
            self._logger.debug(f"Cache repopulation skipped for {link.short_code}")

    # ========================================================================
    # QR IMAGES AND ENRICHMENT
    # ========================================================================

    async def get_qr_image(self, short_code: str) -> bytes:
        return await self._qr_images.get_qr_image(short_code)

    def record_redirect_event(
        self,
        short_code: str,
        ip_address: str,
        user_agent: str | None = None,
        referrer: str | None = None,
    ) -> None:
        """Queue a completed redirect for enrichment. Never blocks, never raises."""
        self._enrichment.submit(
            RedirectEvent(
                short_code=short_code,
                ip_address=ip_address,
                user_agent=user_agent or "",
                referrer=referrer or "",
            )
        )
