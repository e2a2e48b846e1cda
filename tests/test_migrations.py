from pathlib import Path

import allure
import sqlalchemy as sa

from ralph_dispatch.queue.repository import JobStore
from ralph_dispatch.storage.alembic_runner import current_revision

pytestmark = [
    allure.epic("Job Queue"),
    allure.feature("Schema"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    store = JobStore(tmp_path / "migrations.db")
    store.init_schema()
    store.init_schema()

    with store.engine.connect() as connection:
        version = connection.execute(sa.text("SELECT version_num FROM alembic_version")).all()
        tables = connection.execute(
            sa.text(
                "SELECT name FROM sqlite_master WHERE type = 'table' "
                "AND name NOT LIKE 'sqlite_%' ORDER BY name",
            ),
        ).all()
        indexes = connection.execute(
            sa.text("SELECT name FROM sqlite_master WHERE type = 'index' AND tbl_name = 'jobs'"),
        ).all()
        journal_mode = connection.execute(sa.text("PRAGMA journal_mode")).scalar_one()

    assert [row[0] for row in version] == ["20261019_0001"]
    assert [row[0] for row in tables] == ["alembic_version", "job_logs", "jobs", "repositories"]
    assert "idx_jobs_queue" in {row[0] for row in indexes}
    assert journal_mode == "wal"
    store.close()


def test_init_schema_creates_parent_directory(tmp_path: Path) -> None:
    store = JobStore(tmp_path / "nested" / "dir" / "ralph.db")
    store.init_schema()

    assert (tmp_path / "nested" / "dir" / "ralph.db").exists()
    store.close()


def test_current_revision_is_none_before_migrations(tmp_path: Path) -> None:
    store = JobStore(tmp_path / "fresh.db")

    assert current_revision(store.engine) is None

    store.init_schema()

    assert current_revision(store.engine) == "20261019_0001"
    store.close()
