"""Shared pytest fixtures: in-memory store and Redis, a frozen clock, and a mocked geolocation API."""

import datetime
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from shortlink.cache import ResolutionCache
from shortlink.config import Settings
from shortlink.dependencies import AppResources, build_resources, get_resources
from shortlink.errors import AliasTaken
from shortlink.link_service import LinkService
from shortlink.main import app
from shortlink.models import AnalyticsEvent, Link

START = datetime.datetime(2026, 1, 1, 12, 0, 0, tzinfo=datetime.UTC)


class FrozenClock:
    def __init__(self, now: datetime.datetime) -> None:
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += datetime.timedelta(**kwargs)


class InMemoryRedis:
    """The handful of redis.asyncio.Redis commands the cache uses, expiring against a FrozenClock."""

    def __init__(self, clock: FrozenClock) -> None:
        self._clock = clock
        self._data: dict[str, tuple[bytes, datetime.datetime | None]] = {}

    def _live(self, key: str) -> tuple[bytes, datetime.datetime | None] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry[1] is not None and self._clock() >= entry[1]:
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> bytes | None:
        entry = self._live(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str | bytes, px: int | None = None) -> bool:
        if isinstance(value, str):
            value = value.encode("utf-8")
        expires = self._clock() + datetime.timedelta(milliseconds=px) if px else None
        self._data[key] = (value, expires)
        return True

    async def pttl(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            return -2
        if entry[1] is None:
            return -1
        return int((entry[1] - self._clock()) / datetime.timedelta(milliseconds=1))

    async def delete(self, *keys: str) -> int:
        return sum(1 for key in keys if self._data.pop(key, None) is not None)

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None


class InMemoryLinkStore:
    """LinkStore stand-in that enforces the same unique-code rule as the database."""

    def __init__(self) -> None:
        self.links: dict[str, Link] = {}
        self.events: list[AnalyticsEvent] = []
        self.insert_calls = 0

    async def exists(self, short_code: str) -> bool:
        return short_code in self.links

    async def get(self, short_code: str) -> Link | None:
        return self.links.get(short_code)

    async def insert(self, link: Link) -> Link:
        self.insert_calls += 1
        if link.short_code in self.links:
            raise AliasTaken(link.short_code)
        link.id = len(self.links) + 1
        self.links[link.short_code] = link
        return link

    async def append_event(self, event: AnalyticsEvent) -> None:
        self.events.append(event)

    async def ping(self) -> None:
        return None


GEO_RESPONSE = {"country_name": "Germany", "region": "Berlin", "city": "Berlin"}


@pytest.fixture
def settings() -> Settings:
    return Settings(
        BASE_URL="http://sho.rt",
        ENRICHMENT_WORKERS=2,
        ENRICHMENT_QUEUE_SIZE=100,
        ENRICHMENT_DRAIN_TIMEOUT_SECONDS=1.0,
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(START)


@pytest.fixture
def redis_client(clock: FrozenClock) -> InMemoryRedis:
    return InMemoryRedis(clock)


@pytest.fixture
def cache(redis_client: InMemoryRedis) -> ResolutionCache:
    return ResolutionCache(redis_client)


@pytest.fixture
def link_store() -> InMemoryLinkStore:
    return InMemoryLinkStore()


@pytest.fixture
def geo_requests() -> list[httpx.Request]:
    return []


@pytest_asyncio.fixture
async def http_client(geo_requests: list[httpx.Request]) -> AsyncGenerator[httpx.AsyncClient, None]:
    def handler(request: httpx.Request) -> httpx.Response:
        geo_requests.append(request)
        return httpx.Response(200, json=GEO_RESPONSE)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        yield client


@pytest.fixture
def resources(
    settings: Settings,
    link_store: InMemoryLinkStore,
    cache: ResolutionCache,
    http_client: httpx.AsyncClient,
    clock: FrozenClock,
) -> AppResources:
    return build_resources(settings, link_store, cache, http_client, clock=clock)


@pytest.fixture
def service(resources: AppResources) -> LinkService:
    return LinkService.from_resources(resources)


@pytest_asyncio.fixture
async def client(resources: AppResources) -> AsyncGenerator[AsyncClient, None]:
    resources.enrichment.start()
    app.dependency_overrides[get_resources] = lambda: resources

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    await resources.enrichment.drain(timeout=1.0)
