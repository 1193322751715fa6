"""Database configuration and session management.

This module constructs an asynchronous SQLAlchemy engine and session
factory for the application.  The connection string comes from
``DATABASE_URL``.  Postgres URLs are normalized to the async ``psycopg``
driver and plain SQLite URLs to ``aiosqlite``.  When no URL is provided a
local SQLite database is used in development only if
``DB_DEV_FALLBACK_SQLITE`` is enabled; otherwise the application refuses
to start.

The engine is built on first use rather than at import time so that the
ORM models (and the tests importing them) do not need a live database
configuration.
"""

from __future__ import annotations

import logging
from typing import Dict, Any, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import declarative_base

from receipt_intake.core.config import settings

logger = logging.getLogger(__name__)

SQLITE_DEV_URL = "sqlite+aiosqlite:///./receipt_intake.db"

# Declarative base
Base = declarative_base()

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def resolve_database_url(raw_url: Optional[str] = None) -> str:
    """Return the async driver URL to connect with.

    Precedence: explicit argument, then ``settings.DATABASE_URL``.  If both
    are missing, fall back to SQLite when ``DB_DEV_FALLBACK_SQLITE`` is true,
    otherwise raise.
    """
    db_url = raw_url or settings.DATABASE_URL
    if not db_url:
        if not settings.DB_DEV_FALLBACK_SQLITE:
            raise RuntimeError(
                "No database URL provided via DATABASE_URL; with "
                "DB_DEV_FALLBACK_SQLITE=false, a database URL is required."
            )
        return SQLITE_DEV_URL

    url_obj = make_url(db_url)
    driver = url_obj.drivername or ""
    # SQLite: upgrade to aiosqlite
    if driver == "sqlite":
        url_obj = url_obj.set(drivername="sqlite+aiosqlite")
    # PostgreSQL: normalize to psycopg (v3) which supports asyncio
    elif driver in {"postgresql", "postgres", "postgresql+psycopg2", "postgresql+asyncpg"}:
        url_obj = url_obj.set(drivername="postgresql+psycopg")
    return url_obj.render_as_string(hide_password=False)


def create_engine_from_url(db_url: str) -> AsyncEngine:
    """Create an async engine for ``db_url`` and log the masked URL."""
    url_obj = make_url(db_url)
    logger.info("Creating async engine with URL: %s", url_obj.render_as_string(hide_password=True))
    engine_kwargs: dict[str, Any] = dict(echo=False)
    if not url_obj.drivername.startswith("sqlite"):
        engine_kwargs["pool_pre_ping"] = True
    return create_async_engine(db_url, **engine_kwargs)


def get_engine() -> AsyncEngine:
    """Return the process-wide engine, creating it on first use."""
    global _engine
    if _engine is None:
        _engine = create_engine_from_url(resolve_database_url())
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the process-wide session factory bound to :func:`get_engine`."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """Create all database tables defined on the declarative ``Base``.

    Typically called during application startup; production deployments
    run the Alembic migrations instead and this becomes a no-op.
    """
    target = engine or get_engine()
    async with target.begin() as conn:
        # Import all models to ensure metadata is populated
        from receipt_intake.models import tables  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Dispose of the process-wide engine (application shutdown)."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


def get_db_debug_info() -> Dict[str, Any]:
    """Return non-sensitive information about the configured database.

    This avoids leaking passwords or secrets.
    """
    info: Dict[str, Any] = {
        "environment": (settings.ENVIRONMENT or "development"),
        "has_DATABASE_URL_env": bool(settings.DATABASE_URL),
    }
    try:
        url_obj = make_url(resolve_database_url())
        info.update(
            {
                "drivername": url_obj.drivername,
                "host": url_obj.host,
                "port": url_obj.port,
                "database": url_obj.database,
                "url": url_obj.render_as_string(hide_password=True),
            }
        )
    except Exception as ex:
        info.update({"error": f"unable to resolve database url: {ex}"})
    return info
