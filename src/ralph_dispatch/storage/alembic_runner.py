"""Run the job queue migrations from code."""

from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from sqlalchemy.engine import Engine

from ralph_dispatch.storage.common import sqlite_url

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[3]


def _config_for(db_path: Path) -> Config:
    config = Config(str(PROJECT_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    config.set_main_option("sqlalchemy.url", sqlite_url(db_path))
    return config


def upgrade_head(db_path: Path, *, revision: str = "head") -> None:
    """Bring the SQLite database at ``db_path`` up to ``revision``."""

    logger.debug("Upgrading job queue schema in %s to %s", db_path, revision)
    command.upgrade(_config_for(db_path), revision)


def current_revision(engine: Engine) -> str | None:
    """Return the applied revision, or None for an unmigrated database."""

    with engine.connect() as connection:
        return MigrationContext.configure(connection).get_current_revision()
