from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from alembic import command
from alembic.config import Config

from mindcheck.core.config import get_settings


logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def alembic_config(database_url: str | None = None) -> Config:
    """Alembic config for the checked-in migration scripts, bound to ``database_url``.

    Falls back to ``DATABASE_URL`` from settings when no URL is passed.
    """
    ini_path = PROJECT_ROOT / "alembic.ini"
    if not ini_path.is_file():
        raise RuntimeError(f"Missing alembic.ini at {ini_path}.")

    url = database_url or get_settings().database_url
    if not url:
        raise RuntimeError("A database URL is required to build the Alembic config.")

    config = Config(str(ini_path))
    config.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    # ConfigParser treats % as interpolation; URLs may carry escaped passwords.
    config.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    return config


async def upgrade_schema(revision: str = "head", *, database_url: str | None = None) -> None:
    """Run ``alembic upgrade`` off the event loop; the env script drives its own engine."""
    config = alembic_config(database_url)
    logger.info("Upgrading assessment schema to %s.", revision)
    await asyncio.to_thread(command.upgrade, config, revision)
