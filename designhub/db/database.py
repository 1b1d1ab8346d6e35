"""
DesignHub database engine and sessions.

One async engine per process, created in the app lifespan.  Route handlers
get a request-scoped session from ``get_db``; the database object store and
the events WebSocket open their own short sessions through
``get_session_factory``.  PostgreSQL (asyncpg) in production, SQLite
(aiosqlite) for development and tests.
"""
from __future__ import annotations

import logging
from typing import Any, AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from designhub.config import settings

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./designhub.db"


class Base(DeclarativeBase):
    """Declarative base for users and design repository tables."""


_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_database_url() -> str:
    url = settings.database_url
    if not url:
        logger.warning(f"⚠️ DESIGNHUB_DATABASE_URL unset, using {DEFAULT_DATABASE_URL}")
        url = DEFAULT_DATABASE_URL
    return url


def _require_factory() -> async_sessionmaker[AsyncSession]:
    if _async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _async_session_factory


async def init_db() -> None:
    """Create the engine and session factory.

    Alembic owns the schema.  ``auto_create_schema`` creates the tables from
    ORM metadata instead, for local SQLite databases.
    """
    global _engine, _async_session_factory

    database_url = get_database_url()
    logger.info(f"Initializing database: {make_url(database_url).render_as_string(hide_password=True)}")

    connect_args: dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    _engine = create_async_engine(database_url, echo=settings.debug, connect_args=connect_args)
    _async_session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    # Register every table with Base.metadata
    from designhub.db import designhub_models, models  # noqa: F401

    if settings.auto_create_schema:
        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Schema created from ORM metadata")

    logger.info("✅ Database initialized")


async def close_db() -> None:
    global _engine, _async_session_factory

    if _engine:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("Database connection closed")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; commits on success and rolls back on error."""
    async with _require_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def AsyncSessionLocal() -> AsyncSession:
    """A new session outside a request (health probe)."""
    return _require_factory()()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """The live session factory (database object store, events WebSocket)."""
    return _require_factory()
