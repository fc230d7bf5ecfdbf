"""Database engine and session factory construction.

This module builds the SQLAlchemy async engine and session factory from
explicit settings. Nothing is created at import time: the engine is opened
once during application startup and disposed on shutdown.

Flow Diagram — Database Lifecycle
=================================
::
    ┌─────────────┐
    │ lifespan    │
    │ startup     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ create_     │
    │ engine()    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ init_db()    │
    │ create_all  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ sessions per │
    │ store call   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ close_db()   │
    │ dispose      │
    └─────────────┘

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    create_engine():  Build the async engine from settings.
    create_session_factory():  Build the async_sessionmaker bound to an engine.
    init_db():  Creates all tables on startup.
    close_db():  Disposes the engine on shutdown.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortlink.config import Settings

__all__ = ["Base", "create_engine", "create_session_factory", "init_db", "close_db"]


class Base(DeclarativeBase):
    pass


def create_engine(settings: Settings) -> AsyncEngine:
    return create_async_engine(
        settings.DATABASE_URL,
        echo=(settings.APP_ENV == "development"),
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    await engine.dispose()
