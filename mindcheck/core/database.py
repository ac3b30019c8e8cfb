from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from mindcheck.core.config import get_settings
from mindcheck.core.migrations import upgrade_schema


logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _ensure_engine() -> async_sessionmaker[AsyncSession]:
    """Build the process-wide engine and session factory on first use."""
    global _engine, _session_factory
    if _session_factory is not None:
        return _session_factory

    settings = get_settings()
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL is not configured.")

    options: dict[str, object] = {"echo": settings.database_echo}
    if not settings.database_url.startswith("sqlite"):
        options["pool_pre_ping"] = True
    _engine = create_async_engine(settings.database_url, **options)
    # Finalized sessions are read back after commit when notifying sinks.
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _session_factory


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return _ensure_engine()


async def init_database() -> None:
    """Open the engine and bring the schema up to date when configured to."""
    _ensure_engine()
    if get_settings().database_auto_migrate:
        await upgrade_schema()
    else:
        logger.info("Skipping schema upgrade; DATABASE_AUTO_MIGRATE is off.")


async def dispose_database() -> None:
    global _engine, _session_factory
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
