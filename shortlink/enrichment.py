"""Best-effort click enrichment on a bounded worker pool.

A redirect hands a RedirectEvent to ``EnrichmentPipeline.submit`` and returns
immediately. Worker tasks, owned by the pipeline rather than by any request,
geolocate the client address and append one analytics row per event.

Pipeline Diagram
================
::
    redirect handler                     worker task (× ENRICHMENT_WORKERS)
    ┌─────────────┐                      ┌──────────────────┐
    │ submit()     │── put_nowait ──►   │ queue.get()       │
    │ (no await)  │   bounded Queue     │ locate_or_fallback│
    └──────┬──────┘                      │ append_event      │
           │ QueueFull                   │ task_done()       │
           ▼                             └──────────────────┘
      drop + WARN + metric

Key Behaviours
===============
- ``submit`` never blocks and never raises; a full queue drops the event.
- Geolocation failure falls back to "Local"/"Unknown"; store failure is logged
  once and not retried.
- Client disconnects cannot cancel enrichment: workers are not request tasks.
- ``drain`` stops intake, waits for queued events up to a timeout, then stops
  the workers. It is the only shutdown path.
"""

import asyncio
import logging
from collections.abc import Mapping

from prometheus_client import Counter, Gauge

from shortlink.geo import GeoLocator, is_valid_ip
from shortlink.models import AnalyticsEvent
from shortlink.schemas import RedirectEvent
from shortlink.store import LinkStore

__all__ = ["extract_client_ip", "EnrichmentPipeline"]

logger = logging.getLogger(__name__)

ENRICHMENT_EVENTS_TOTAL = Counter(
    "shortlink_enrichment_events_total",
    "Redirect events handled by the enrichment pipeline",
    ["outcome"],
)
ENRICHMENT_QUEUE_DEPTH = Gauge(
    "shortlink_enrichment_queue_depth",
    "Redirect events waiting for an enrichment worker",
)

UNKNOWN_IP = "unknown"


def extract_client_ip(headers: Mapping[str, str], peer: str | None) -> str:
    """Pick the client address: X-Forwarded-For first hop, X-Real-IP, then the peer."""
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if is_valid_ip(first_hop):
            return first_hop

    real_ip = (headers.get("x-real-ip") or "").strip()
    if real_ip and is_valid_ip(real_ip):
        return real_ip

    return peer or UNKNOWN_IP


class EnrichmentPipeline:
    def __init__(
        self,
        store: LinkStore,
        geo: GeoLocator,
        workers: int = 4,
        queue_size: int = 1000,
    ) -> None:
        assert workers > 0, f"workers must be positive, got {workers!r}"
        self._store = store
        self._geo = geo
        self._worker_count = workers
        self._queue: asyncio.Queue[RedirectEvent] = asyncio.Queue(maxsize=queue_size)
        self._workers: list[asyncio.Task[None]] = []
        self._accepting = True

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._workers:
            return
        self._accepting = True
        self._workers = [
            asyncio.create_task(self._run_worker(index), name=f"enrichment-worker-{index}")
            for index in range(self._worker_count)
        ]
        logger.info(f"Enrichment pipeline started with {self._worker_count} workers")

    def submit(self, event: RedirectEvent) -> bool:
        if not self._accepting:
            ENRICHMENT_EVENTS_TOTAL.labels(outcome="rejected").inc()
            logger.warning(f"Enrichment pipeline draining; dropped event for {event.short_code}")
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            ENRICHMENT_EVENTS_TOTAL.labels(outcome="dropped").inc()
            logger.warning(f"Enrichment queue full; dropped event for {event.short_code}")
            return False
        ENRICHMENT_QUEUE_DEPTH.set(self._queue.qsize())
        return True

    async def process(self, event: RedirectEvent) -> AnalyticsEvent | None:
        """Enrich one event and append it. Returns the stored row, or None if the write failed."""
        location = await self._geo.locate_or_fallback(event.ip_address)
        row = AnalyticsEvent(
            short_code=event.short_code,
            ip_address=event.ip_address,
            user_agent=event.user_agent,
            referrer=event.referrer,
            country=location.country,
            region=location.region,
            city=location.city,
        )
        try:
            await self._store.append_event(row)
        except Exception as exc:
            ENRICHMENT_EVENTS_TOTAL.labels(outcome="store_failed").inc()
            logger.error(f"Analytics write failed for {event.short_code}: {exc}")
            return None
        ENRICHMENT_EVENTS_TOTAL.labels(outcome="stored").inc()
        return row

    async def _run_worker(self, index: int) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.process(event)
            except Exception:
                logger.warning(f"enrichment worker {index} failed on {event.short_code}", exc_info=True)
            finally:
                self._queue.task_done()
                ENRICHMENT_QUEUE_DEPTH.set(self._queue.qsize())

    async def drain(self, timeout: float = 10.0) -> None:
        self._accepting = False
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except TimeoutError:
            logger.warning(f"Enrichment drain timed out with {self._queue.qsize()} events pending")
        finally:
            for task in self._workers:
                task.cancel()
            await asyncio.gather(*self._workers, return_exceptions=True)
            self._workers = []
            logger.info("Enrichment pipeline stopped")
