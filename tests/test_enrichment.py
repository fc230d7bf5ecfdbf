"""Client IP extraction and the bounded enrichment worker pool."""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from shortlink.enrichment import EnrichmentPipeline, extract_client_ip
from shortlink.geo import GeoLocator
from shortlink.schemas import RedirectEvent


def _event(ip: str = "127.0.0.1", short_code: str = "abc123") -> RedirectEvent:
    return RedirectEvent(short_code=short_code, ip_address=ip, user_agent="pytest", referrer="https://ref.test/")


# ============================================================================
# CLIENT IP EXTRACTION
# ============================================================================


def test_forwarded_for_first_hop_wins() -> None:
    headers = {"x-forwarded-for": "203.0.113.5, 10.0.0.1", "x-real-ip": "198.51.100.7"}
    assert extract_client_ip(headers, "10.0.0.2") == "203.0.113.5"


def test_invalid_forwarded_for_falls_back_to_real_ip() -> None:
    headers = {"x-forwarded-for": "not-an-ip, 10.0.0.1", "x-real-ip": "198.51.100.7"}
    assert extract_client_ip(headers, "10.0.0.2") == "198.51.100.7"


def test_invalid_headers_fall_back_to_peer() -> None:
    headers = {"x-forwarded-for": "bogus", "x-real-ip": "also bogus"}
    assert extract_client_ip(headers, "10.0.0.2") == "10.0.0.2"


def test_no_information_is_unknown() -> None:
    assert extract_client_ip({}, None) == "unknown"


# ============================================================================
# PIPELINE
# ============================================================================


@pytest.mark.asyncio
async def test_local_ip_recorded_as_local_without_api_call(resources, link_store, geo_requests) -> None:
    row = await resources.enrichment.process(_event("127.0.0.1"))

    assert row is not None
    assert (row.country, row.region, row.city) == ("Local", "Local", "Local")
    assert link_store.events == [row]
    assert geo_requests == []


@pytest.mark.asyncio
async def test_public_ip_is_geolocated(resources, link_store, geo_requests) -> None:
    row = await resources.enrichment.process(_event("8.8.8.8"))

    assert row.country == "Germany"
    assert row.city == "Berlin"
    assert row.user_agent == "pytest"
    assert row.referrer == "https://ref.test/"
    assert len(geo_requests) == 1


@pytest.mark.asyncio
async def test_geo_failure_still_records_event(link_store) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        pipeline = EnrichmentPipeline(link_store, GeoLocator(client), workers=1)
        row = await pipeline.process(_event("8.8.8.8"))

    assert row.country == "Unknown"
    assert link_store.events == [row]


@pytest.mark.asyncio
async def test_store_failure_is_absorbed(resources, link_store) -> None:
    link_store.append_event = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("db down")))

    assert await resources.enrichment.process(_event()) is None
    link_store.append_event.assert_awaited_once()


@pytest.mark.asyncio
async def test_full_queue_drops_instead_of_blocking(link_store, http_client) -> None:
    pipeline = EnrichmentPipeline(link_store, GeoLocator(http_client), workers=1, queue_size=2)

    assert pipeline.submit(_event(short_code="one111")) is True
    assert pipeline.submit(_event(short_code="two222")) is True
    assert pipeline.submit(_event(short_code="three3")) is False
    assert pipeline.pending == 2


@pytest.mark.asyncio
async def test_workers_process_and_drain(link_store, http_client) -> None:
    pipeline = EnrichmentPipeline(link_store, GeoLocator(http_client), workers=2, queue_size=10)
    pipeline.start()

    for index in range(5):
        pipeline.submit(_event(short_code=f"code{index:02d}"))
    await pipeline.drain(timeout=1.0)

    assert sorted(event.short_code for event in link_store.events) == [f"code{i:02d}" for i in range(5)]
    assert pipeline.pending == 0


@pytest.mark.asyncio
async def test_worker_survives_failed_event(link_store, http_client) -> None:
    pipeline = EnrichmentPipeline(link_store, GeoLocator(http_client), workers=1, queue_size=10)
    original_append = link_store.append_event
    link_store.append_event = AsyncMock(side_effect=[RuntimeError("boom"), None])
    pipeline.start()

    pipeline.submit(_event(short_code="first1"))
    pipeline.submit(_event(short_code="second"))
    await pipeline.drain(timeout=1.0)

    assert link_store.append_event.await_count == 2
    link_store.append_event = original_append


@pytest.mark.asyncio
async def test_submit_after_drain_is_rejected(link_store, http_client) -> None:
    pipeline = EnrichmentPipeline(link_store, GeoLocator(http_client), workers=1)
    pipeline.start()
    await pipeline.drain(timeout=1.0)

    assert pipeline.submit(_event()) is False


@pytest.mark.asyncio
async def test_drain_gives_up_after_timeout(link_store, http_client) -> None:
    pipeline = EnrichmentPipeline(link_store, GeoLocator(http_client), workers=1)
    blocker = asyncio.Event()
    cancelled: list[str] = []

    async def slow_append(event) -> None:
        try:
            await blocker.wait()
        except asyncio.CancelledError:
            cancelled.append(event.short_code)
            raise

    link_store.append_event = slow_append
    pipeline.start()
    pipeline.submit(_event())

    await asyncio.wait_for(pipeline.drain(timeout=0.05), timeout=1.0)

    assert link_store.events == []
    assert cancelled == ["abc123"]
    assert pipeline.submit(_event()) is False
