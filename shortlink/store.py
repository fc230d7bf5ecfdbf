"""Durable link and analytics storage on PostgreSQL.

Every method opens its own session from the injected session factory, so the
store is safe to share between request handlers and enrichment workers.

Key Behaviours
===============
- ``exists`` is the uniqueness oracle: a fast, advisory point read.
- ``insert`` relies on the unique constraint on ``links.short_code``; an
  IntegrityError there is reported as AliasTaken after rolling back.
- ``append_event`` adds one analytics row and never updates existing ones.
"""

import logging

from prometheus_client import Counter
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortlink.errors import AliasTaken
from shortlink.models import AnalyticsEvent, Link

__all__ = ["LinkStore"]

logger = logging.getLogger(__name__)

DATABASE_READS_TOTAL = Counter(
    "shortlink_database_reads_total",
    "Total database read operations",
)
DATABASE_WRITES_TOTAL = Counter(
    "shortlink_database_writes_total",
    "Total database write operations",
    ["table"],
)


class LinkStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def exists(self, short_code: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(select(Link.id).where(Link.short_code == short_code).limit(1))
            DATABASE_READS_TOTAL.inc()
            return result.scalar_one_or_none() is not None

    async def get(self, short_code: str) -> Link | None:
        async with self._session_factory() as session:
            result = await session.execute(select(Link).where(Link.short_code == short_code))
            DATABASE_READS_TOTAL.inc()
            return result.scalar_one_or_none()

    async def insert(self, link: Link) -> Link:
        """Persist a new link.

        Raises:
            AliasTaken: the short code already exists (unique constraint).
        """
        async with self._session_factory() as session:
            session.add(link)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                logger.info(f"Unique constraint rejected short code: {link.short_code}")
                raise AliasTaken(link.short_code) from exc
            DATABASE_WRITES_TOTAL.labels(table=Link.__tablename__).inc()
            return link

    async def append_event(self, event: AnalyticsEvent) -> None:
        async with self._session_factory() as session:
            session.add(event)
            await session.commit()
            DATABASE_WRITES_TOTAL.labels(table=AnalyticsEvent.__tablename__).inc()

    async def ping(self) -> None:
        async with self._session_factory() as session:
            await session.execute(text("SELECT 1"))
