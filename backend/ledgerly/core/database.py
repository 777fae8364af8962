"""Database configuration and session management.

This module constructs an asynchronous SQLAlchemy engine and session
factory for the application.  The connection string comes from
``DATABASE_URL``; when it is unset a local SQLite database is used, which
is convenient for development and tests.  Postgres URLs are normalised to
the psycopg (v3) driver so the same DSN works for the API and the
dramatiq workers.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from ledgerly.core.config import settings

logger = logging.getLogger(__name__)

DEFAULT_SQLITE_URL = "sqlite+aiosqlite:///./ledgerly.db"


def normalize_database_url(url: Optional[str]) -> str:
    """Return an async-capable SQLAlchemy URL for ``url``.

    ``postgres://`` / ``postgresql://`` / ``postgresql+psycopg2://`` and
    ``postgresql+asyncpg://`` all become ``postgresql+psycopg://``; plain
    ``sqlite://`` becomes ``sqlite+aiosqlite://``.  A missing URL falls back
    to a local SQLite file.
    """
    if not url:
        return DEFAULT_SQLITE_URL
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    url_obj = make_url(url)
    driver = url_obj.drivername or ""
    if driver == "sqlite":
        url_obj = url_obj.set(drivername="sqlite+aiosqlite")
    elif driver in {"postgresql", "postgresql+psycopg2", "postgresql+asyncpg"}:
        url_obj = url_obj.set(drivername="postgresql+psycopg")
    return url_obj.render_as_string(hide_password=False)


db_url = normalize_database_url(settings.DATABASE_URL)

engine_kwargs: dict[str, Any] = dict(echo=False, pool_pre_ping=True)
engine = create_async_engine(db_url, **engine_kwargs)

# Create session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Declarative base
Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that yields a database session.

    This function is intended for FastAPI dependency injection.  Each
    session is scoped to the request and closed after use.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db() -> None:
    """Create all tables and seed reference data.

    Typically called during application startup.  Seeding is idempotent:
    system categories and bank templates are only inserted when missing.
    """
    async with engine.begin() as conn:
        # Import all models to ensure metadata is populated
        from ledgerly.models import tables  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)

    from ledgerly.services.bank_templates import seed_bank_templates
    from ledgerly.services.categories import seed_system_categories

    async with AsyncSessionLocal() as session:
        created = await seed_system_categories(session)
        templates = await seed_bank_templates(session)
        await session.commit()
    logger.info("Database ready (categories seeded=%s, templates seeded=%s)", created, templates)


def get_db_debug_info() -> Dict[str, Any]:
    """Return non-sensitive information about the current DB engine for debugging."""
    info: Dict[str, Any] = {"environment": (settings.ENVIRONMENT or "development")}
    try:
        url_obj = make_url(str(engine.url))
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
        info.update({"error": f"unable to parse engine url: {ex}"})
    return info
