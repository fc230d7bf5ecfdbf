"""SQLAlchemy ORM models for links and click analytics.

Data Model Layout
=================
::
    links table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ short_code (VARCHAR(50) UNIQUE, INDEXED)
    ├─ long_url (TEXT NOT NULL)
    ├─ context (VARCHAR(200) NULL)
    ├─ owner_id (VARCHAR(255) NOT NULL, DEFAULT 'anonymous')
    ├─ created_at (TIMESTAMPTZ NOT NULL)
    └─ expires_at (TIMESTAMPTZ NOT NULL)

    analytics table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ short_code (VARCHAR(50), INDEXED)
    ├─ ip_address (VARCHAR(64))
    ├─ user_agent (TEXT)
    ├─ referrer (TEXT)
    ├─ country / region / city (VARCHAR(100))
    └─ created_at (TIMESTAMPTZ, DEFAULT NOW())

Key Behaviours
===============
- short_code carries the unique constraint; it is the only guard against two
  concurrent creations claiming the same alias.
- Links are never updated. Expiry is decided by comparing expires_at to now.
- Analytics rows are append-only.

Classes:
    Link:  One short-code mapping with lifecycle metadata.
    AnalyticsEvent:  One enriched click on a link.
"""

import datetime

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from shortlink.database import Base

__all__ = ["ANONYMOUS_OWNER", "Link", "AnalyticsEvent"]

ANONYMOUS_OWNER = "anonymous"


class Link(Base):
    __tablename__ = "links"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    short_code: Mapped[str] = mapped_column(String(50), unique=True, index=True, nullable=False)
    long_url: Mapped[str] = mapped_column(Text, nullable=False)
    context: Mapped[str | None] = mapped_column(String(200), nullable=True)
    owner_id: Mapped[str] = mapped_column(String(255), default=ANONYMOUS_OWNER, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def is_expired(self, now: datetime.datetime) -> bool:
        return now >= self.expires_at

    def __repr__(self) -> str:
        return f"<Link(id={self.id}, short_code='{self.short_code}', expires_at={self.expires_at})>"


class AnalyticsEvent(Base):
    __tablename__ = "analytics"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    short_code: Mapped[str] = mapped_column(String(50), index=True, nullable=False)
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False)
    user_agent: Mapped[str] = mapped_column(Text, default="", nullable=False)
    referrer: Mapped[str] = mapped_column(Text, default="", nullable=False)
    country: Mapped[str] = mapped_column(String(100), nullable=False)
    region: Mapped[str] = mapped_column(String(100), nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<AnalyticsEvent(short_code='{self.short_code}', ip='{self.ip_address}', country='{self.country}')>"
