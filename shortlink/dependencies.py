"""Application resources, request context and FastAPI dependencies.

All long-lived handles (database engine, Redis client, HTTP client for
geolocation, enrichment worker pool) are built once by ``open_resources``
and handed to the app as a single ``AppResources`` object. There are no
module-level client globals; the lifespan owns opening and closing them.

Resource Lifecycle
==================
::
    ┌─────────────┐
    │  lifespan   │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌──────────────────┐
    │ open_resources() │  engine + create_all, Redis, httpx,
    │                  │  LinkStore, ResolutionCache, QR cache,
    │                  │  GeoLocator, EnrichmentPipeline.start()
    └──────┬───────────┘
           ▼
    ┌──────────────────┐
    │ app.state.       │
    │ resources        │◄── get_resources() per request
    └──────┬───────────┘
           ▼
    ┌──────────────────┐
    │ shutdown:        │  drain enrichment → close httpx →
    │                  │  close Redis → dispose engine
    └──────────────────┘
"""

import datetime
import logging
import time
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Optional

import httpx
from fastapi import Depends, Request

from shortlink.cache import ResolutionCache, create_redis
from shortlink.codegen import CodeGenerator
from shortlink.config import Settings
from shortlink.database import close_db, create_engine, create_session_factory, init_db
from shortlink.enrichment import EnrichmentPipeline, extract_client_ip
from shortlink.geo import GeoLocator
from shortlink.link_service import LinkService, utcnow
from shortlink.qr import QRImageCache, QRRenderer
from shortlink.store import LinkStore

__all__ = [
    "AppResources",
    "RequestContext",
    "setup_logging",
    "build_resources",
    "open_resources",
    "get_resources",
    "get_request_context",
    "get_link_service",
]

LOGGER_NAME = "shortlink"


def setup_logging(settings: Settings) -> logging.Logger:
    """Configure the package logger once; module loggers propagate to it."""
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(settings.LOG_LEVEL.upper())
    return logger


@dataclass
class AppResources:
    """Shared, process-wide collaborators built at startup."""

    settings: Settings
    store: LinkStore
    cache: ResolutionCache
    generator: CodeGenerator
    qr_images: QRImageCache
    enrichment: EnrichmentPipeline
    logger: logging.Logger
    clock: Callable[[], datetime.datetime] = utcnow


def build_resources(
    settings: Settings,
    store: LinkStore,
    cache: ResolutionCache,
    http_client: httpx.AsyncClient,
    clock: Callable[[], datetime.datetime] = utcnow,
) -> AppResources:
    geo = GeoLocator(http_client, settings.GEO_API_URL, settings.GEO_TIMEOUT_SECONDS)
    return AppResources(
        settings=settings,
        store=store,
        cache=cache,
        generator=CodeGenerator(settings.SHORT_CODE_LENGTH, settings.SHORT_CODE_MAX_ATTEMPTS),
        qr_images=QRImageCache(cache, QRRenderer(settings.QR_BOX_SIZE, settings.QR_BORDER), settings.BASE_URL),
        enrichment=EnrichmentPipeline(
            store,
            geo,
            workers=settings.ENRICHMENT_WORKERS,
            queue_size=settings.ENRICHMENT_QUEUE_SIZE,
        ),
        logger=setup_logging(settings),
        clock=clock,
    )


@asynccontextmanager
async def open_resources(settings: Settings) -> AsyncIterator[AppResources]:
    engine = create_engine(settings)
    redis_client = create_redis(settings.REDIS_URL)
    http_client = httpx.AsyncClient(timeout=settings.GEO_TIMEOUT_SECONDS)
    cache = ResolutionCache(redis_client)
    try:
        await init_db(engine)
        resources = build_resources(settings, LinkStore(create_session_factory(engine)), cache, http_client)
        resources.enrichment.start()
        try:
            yield resources
        finally:
            await resources.enrichment.drain(settings.ENRICHMENT_DRAIN_TIMEOUT_SECONDS)
    finally:
        await http_client.aclose()
        await cache.close()
        await close_db(engine)


@dataclass
class RequestContext:
    """Per-request view over the shared resources.

    Attributes:
        resources: Shared collaborators built at startup
        request_id: Unique identifier for this request
        client_ip: Client address (X-Forwarded-For, X-Real-IP, then peer)
        user_agent: Client user agent string
        referrer: Referer header, if any
        owner_id: Authenticated user set by an outer auth layer, if any
        start_time: Request start timestamp
        tags: Request tags for categorization
    """

    resources: AppResources
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    client_ip: str = "unknown"
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    owner_id: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())
    tags: list[str] = field(default_factory=list)

    @property
    def settings(self) -> Settings:
        return self.resources.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        return logging.LoggerAdapter(
            self.resources.logger,
            {
                "request_id": self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
                "tags": ",".join(self.tags),
            },
        )

    def add_tag(self, tag: str) -> None:
        if tag not in self.tags:
            self.tags.append(tag)

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


def get_resources(request: Request) -> AppResources:
    return request.app.state.resources


async def get_request_context(
    request: Request,
    resources: AppResources = Depends(get_resources),
) -> RequestContext:
    peer = request.client.host if request.client else None
    return RequestContext(
        resources=resources,
        request_id=request.headers.get("x-request-id") or str(uuid.uuid4()),
        client_ip=extract_client_ip(request.headers, peer),
        user_agent=request.headers.get("user-agent"),
        referrer=request.headers.get("referer"),
        owner_id=getattr(request.state, "user_id", None),
    )


def get_link_service(ctx: RequestContext = Depends(get_request_context)) -> LinkService:
    return LinkService.from_context(ctx)
