"""
Async database engine and session factory.

The ledger and the scheduling system's appointments table live in the same
PostgreSQL database; connections identify themselves as `clinic-dispatch`
so the scheduling system's DBAs can tell them apart.
"""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from clinic_dispatch.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)

APPLICATION_NAME = "clinic-dispatch"


def _engine_options(settings: Settings, database_url: str) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": settings.DB_ECHO, "pool_pre_ping": True}

    if database_url.startswith("postgresql+asyncpg"):
        # Server-side guard; schedulers apply their own shorter wait_for on top
        options["connect_args"] = {
            "server_settings": {"application_name": APPLICATION_NAME},
            "command_timeout": max(settings.DB_QUERY_TIMEOUT_SECONDS * 4, 30),
        }

    if settings.DEBUG or database_url.startswith("sqlite"):
        options["poolclass"] = NullPool
    else:
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_recycle=settings.DB_POOL_RECYCLE,
            pool_timeout=30,
        )
    return options


def create_async_database_engine(settings: Settings | None = None) -> AsyncEngine:
    """Engine for the configured URL (NullPool in debug and on SQLite)."""
    settings = settings or get_settings()
    database_url = settings.async_database_url
    options = _engine_options(settings, database_url)
    pooled = "poolclass" not in options
    logger.info(f"Creating async database engine ({'pooled' if pooled else 'NullPool'})")
    return create_async_engine(database_url, **options)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory shared by the ledger and the appointment store."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async_engine = create_async_database_engine()

AsyncSessionLocal = build_session_factory(async_engine)
