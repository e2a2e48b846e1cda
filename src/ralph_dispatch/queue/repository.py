"""Persistent job store backed by SQLModel + SQLite."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from uuid import uuid4

import sqlalchemy as sa
from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, func, select

from ralph_dispatch.queue.contracts import (
    TaskDocument,
    task_document_from_json,
    validate_task_document,
)
from ralph_dispatch.queue.errors import ClaimConflict, FieldError, NotFoundError, ValidationError
from ralph_dispatch.queue.models import (
    JobCreate,
    JobLogView,
    JobLogWrite,
    JobStatus,
    JobTrigger,
    JobView,
    LogStream,
    RepositoryCreate,
    RepositoryUpdate,
    RepositoryView,
)
from ralph_dispatch.queue.validation import (
    validate_job_create,
    validate_repository_create,
    validate_repository_update,
)
from ralph_dispatch.storage.alembic_runner import upgrade_head
from ralph_dispatch.storage.common import (
    build_sqlite_engine,
    ensure_db_parent,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from ralph_dispatch.storage.sqlmodel_models import JobLogRow, JobRow, RepositoryRow

logger = logging.getLogger(__name__)

CLAIM_MAX_ATTEMPTS = 5


class JobStore:
    """Durable persistence for jobs, job logs and repository descriptors."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        ensure_db_parent(self.db_path)
        upgrade_head(self.db_path)

    # Jobs

    def insert_job(self, payload: JobCreate) -> JobView:
        """Create a pending job after validating the payload."""

        errors = validate_job_create(payload)
        if errors:
            raise ValidationError(errors)

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            if session.get(RepositoryRow, payload.repository_id) is None:
                raise NotFoundError("Repository", payload.repository_id)
            row = JobRow(
                job_id=str(uuid4()),
                repository_id=payload.repository_id,
                status=JobStatus.PENDING.value,
                priority=payload.priority,
                task_document_json=payload.task_document.to_json(),
                triggered_by=payload.triggered_by.value,
                chat_channel_id=payload.chat_channel_id,
                chat_thread_ts=payload.chat_thread_ts,
                chat_user_id=payload.chat_user_id,
                iteration=0,
                max_iterations=payload.max_iterations,
                created_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_job_view(row)

    def claim_next_pending(self) -> JobView | None:
        """Atomically move the best pending job to running; ``None`` when idle."""

        for attempt in range(1, CLAIM_MAX_ATTEMPTS + 1):
            try:
                return self._claim_once()
            except ClaimConflict:
                logger.debug("Claim conflict on attempt %d, re-selecting", attempt)
        logger.info("Gave up claiming after %d conflicting attempts", CLAIM_MAX_ATTEMPTS)
        return None

    def _claim_once(self) -> JobView | None:
        now = to_db_datetime(utc_now())
        candidate = (
            sa.select(JobRow.job_id)
            .where(col(JobRow.status) == JobStatus.PENDING.value)
            .order_by(
                col(JobRow.priority).asc(),
                col(JobRow.created_at).asc(),
                sa.text("rowid"),
            )
            .limit(1)
            .scalar_subquery()
        )
        statement = (
            sa_update(JobRow)
            .where(
                col(JobRow.job_id) == candidate,
                col(JobRow.status) == JobStatus.PENDING.value,
            )
            .values(status=JobStatus.RUNNING.value, started_at=now)
            .returning(col(JobRow.job_id))
            .execution_options(synchronize_session=False)
        )
        with Session(self.engine) as session:
            claimed_id = session.exec(statement).scalar_one_or_none()
            if claimed_id is None:
                session.rollback()
                if self._count_status(session, JobStatus.PENDING) > 0:
                    raise ClaimConflict("pending job was claimed concurrently")
                return None
            session.commit()
            row = session.get(JobRow, claimed_id)
            assert row is not None  # noqa: S101
            return _to_job_view(row)

    def update_status(
        self,
        job_id: str,
        status: JobStatus,
        *,
        error_message: str | None = None,
    ) -> JobView:
        """Move a job into a terminal status; terminal jobs are left untouched."""

        if not status.is_terminal:
            raise ValueError(f"update_status accepts terminal statuses only, got {status.value}")

        while True:
            now = to_db_datetime(utc_now())
            with Session(self.engine) as session:
                row = self._get_job_row(session, job_id)
                current = JobStatus(row.status)
                if current.is_terminal:
                    logger.debug(
                        "Job %s already %s, ignoring transition to %s",
                        job_id,
                        current.value,
                        status.value,
                    )
                    return _to_job_view(row)

                result = session.exec(
                    sa_update(JobRow)
                    .where(
                        col(JobRow.job_id) == job_id,
                        col(JobRow.status) == current.value,
                    )
                    .values(
                        status=status.value,
                        error_message=error_message,
                        started_at=func.coalesce(col(JobRow.started_at), now),
                        completed_at=now,
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue
                session.commit()
                session.refresh(row)
                return _to_job_view(row)

    def update_iteration(self, job_id: str, iteration: int) -> None:
        self._update_job_fields(job_id, iteration=iteration)

    def update_task_document(self, job_id: str, document: TaskDocument) -> None:
        """Replace the stored task document wholesale."""

        errors = [
            FieldError(f"task_document.{error.path}", error.message)
            for error in validate_task_document(document.to_dict())
        ]
        if errors:
            raise ValidationError(errors)
        self._update_job_fields(job_id, task_document_json=document.to_json())

    def _update_job_fields(self, job_id: str, **values: object) -> None:
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(JobRow).where(col(JobRow.job_id) == job_id).values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                raise NotFoundError("Job", job_id)
            session.commit()

    def get_job(self, job_id: str) -> JobView | None:
        with Session(self.engine) as session:
            row = session.get(JobRow, job_id)
            return _to_job_view(row) if row is not None else None

    def count_pending(self) -> int:
        with Session(self.engine) as session:
            return self._count_status(session, JobStatus.PENDING)

    def count_by_status(self) -> dict[JobStatus, int]:
        """Return job counts for every status, zero-filled."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(JobRow.status, func.count()).group_by(col(JobRow.status)),
            ).all()
        counts = dict.fromkeys(JobStatus, 0)
        for status, count in rows:
            counts[JobStatus(status)] = int(count)
        return counts

    def get_running(self) -> JobView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(JobRow)
                .where(JobRow.status == JobStatus.RUNNING.value)
                .order_by(col(JobRow.started_at).asc())
                .limit(1),
            ).first()
            return _to_job_view(row) if row is not None else None

    def list_by_status(self, status: JobStatus) -> list[JobView]:
        """List jobs with one status in queue order."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(JobRow)
                .where(JobRow.status == status.value)
                .order_by(col(JobRow.priority).asc(), col(JobRow.created_at).asc()),
            ).all()
            return [_to_job_view(row) for row in rows]

    def list_all(self) -> list[JobView]:
        """List every job, newest first."""

        with Session(self.engine) as session:
            rows = session.exec(select(JobRow).order_by(col(JobRow.created_at).desc())).all()
            return [_to_job_view(row) for row in rows]

    def delete_job(self, job_id: str) -> None:
        """Remove a job together with its logs."""

        with Session(self.engine) as session:
            session.exec(sa_delete(JobLogRow).where(col(JobLogRow.job_id) == job_id))
            result = session.exec(sa_delete(JobRow).where(col(JobRow.job_id) == job_id))
            if result.rowcount != 1:
                session.rollback()
                raise NotFoundError("Job", job_id)
            session.commit()

    # Logs

    def append_log(self, entry: JobLogWrite) -> JobLogView:
        """Append one output line; ids grow in insertion order."""

        row = JobLogRow(
            job_id=entry.job_id,
            iteration=entry.iteration,
            stream=entry.stream.value,
            content=entry.content,
            timestamp=to_db_datetime(entry.timestamp or utc_now()),
        )
        with Session(self.engine) as session:
            session.add(row)
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise NotFoundError("Job", entry.job_id) from error
            session.refresh(row)
            return _to_log_view(row)

    def read_logs(
        self,
        job_id: str,
        *,
        iteration: int | None = None,
        after_id: int | None = None,
        limit: int | None = None,
    ) -> list[JobLogView]:
        """Read log lines in ascending id order; ``after_id`` is exclusive."""

        statement = select(JobLogRow).where(JobLogRow.job_id == job_id)
        if iteration is not None:
            statement = statement.where(JobLogRow.iteration == iteration)
        if after_id is not None:
            statement = statement.where(col(JobLogRow.id) > after_id)
        statement = statement.order_by(col(JobLogRow.id).asc())
        if limit is not None:
            statement = statement.limit(limit)
        with Session(self.engine) as session:
            rows = session.exec(statement).all()
            return [_to_log_view(row) for row in rows]

    def delete_logs(self, job_id: str) -> int:
        """Delete all log lines of a job and return how many were removed."""

        with Session(self.engine) as session:
            result = session.exec(sa_delete(JobLogRow).where(col(JobLogRow.job_id) == job_id))
            session.commit()
            return int(result.rowcount or 0)

    # Repositories

    def create_repository(self, payload: RepositoryCreate) -> RepositoryView:
        errors = validate_repository_create(payload)
        if errors:
            raise ValidationError(errors)

        with Session(self.engine) as session:
            self._ensure_slug_free(session, payload.slug)
            row = RepositoryRow(
                repository_id=str(uuid4()),
                name=payload.name,
                slug=payload.slug,
                git_url=payload.git_url,
                branch=payload.branch,
                docker_image=payload.docker_image,
                keywords_json=json.dumps(payload.keywords, ensure_ascii=False),
                description=payload.description,
                enabled=payload.enabled,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_repository_view(row)

    def get_repository(self, repository_id: str) -> RepositoryView | None:
        with Session(self.engine) as session:
            row = session.get(RepositoryRow, repository_id)
            return _to_repository_view(row) if row is not None else None

    def get_repository_by_slug(self, slug: str) -> RepositoryView | None:
        with Session(self.engine) as session:
            row = session.exec(select(RepositoryRow).where(RepositoryRow.slug == slug)).first()
            return _to_repository_view(row) if row is not None else None

    def list_repositories(self, *, enabled_only: bool = False) -> list[RepositoryView]:
        statement = select(RepositoryRow).order_by(col(RepositoryRow.created_at).asc())
        if enabled_only:
            statement = statement.where(col(RepositoryRow.enabled).is_(True))
        with Session(self.engine) as session:
            rows = session.exec(statement).all()
            return [_to_repository_view(row) for row in rows]

    def update_repository(self, repository_id: str, payload: RepositoryUpdate) -> RepositoryView:
        """Apply a partial update; unset fields keep their stored values."""

        errors = validate_repository_update(payload)
        if errors:
            raise ValidationError(errors)

        with Session(self.engine) as session:
            row = session.get(RepositoryRow, repository_id)
            if row is None:
                raise NotFoundError("Repository", repository_id)
            if payload.slug is not None and payload.slug != row.slug:
                self._ensure_slug_free(session, payload.slug)

            for field_name in ("name", "slug", "git_url", "branch", "docker_image", "description"):
                value = getattr(payload, field_name)
                if value is not None:
                    setattr(row, field_name, value)
            if payload.keywords is not None:
                row.keywords_json = json.dumps(payload.keywords, ensure_ascii=False)
            if payload.enabled is not None:
                row.enabled = payload.enabled

            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_repository_view(row)

    def delete_repository(self, repository_id: str) -> None:
        """Delete a descriptor; jobs that reference it are left as they are."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_delete(RepositoryRow).where(col(RepositoryRow.repository_id) == repository_id),
            )
            if result.rowcount != 1:
                session.rollback()
                raise NotFoundError("Repository", repository_id)
            session.commit()

    def count_repositories(self) -> int:
        with Session(self.engine) as session:
            return int(session.exec(select(func.count()).select_from(RepositoryRow)).one())

    # Helpers

    @staticmethod
    def _get_job_row(session: Session, job_id: str) -> JobRow:
        row = session.get(JobRow, job_id)
        if row is None:
            raise NotFoundError("Job", job_id)
        return row

    @staticmethod
    def _count_status(session: Session, status: JobStatus) -> int:
        return int(
            session.exec(
                select(func.count()).select_from(JobRow).where(JobRow.status == status.value),
            ).one(),
        )

    @staticmethod
    def _ensure_slug_free(session: Session, slug: str) -> None:
        existing = session.exec(select(RepositoryRow).where(RepositoryRow.slug == slug)).first()
        if existing is not None:
            raise ValidationError([FieldError("slug", f"slug already in use: {slug}")])


def _to_job_view(row: JobRow) -> JobView:
    return JobView(
        job_id=row.job_id,
        repository_id=row.repository_id,
        status=JobStatus(row.status),
        priority=row.priority,
        task_document=task_document_from_json(row.task_document_json),
        triggered_by=JobTrigger(row.triggered_by),
        chat_channel_id=row.chat_channel_id,
        chat_thread_ts=row.chat_thread_ts,
        chat_user_id=row.chat_user_id,
        iteration=row.iteration,
        max_iterations=row.max_iterations,
        error_message=row.error_message,
        created_at=to_utc_aware_datetime(row.created_at),
        started_at=optional_utc(row.started_at),
        completed_at=optional_utc(row.completed_at),
    )


def _to_log_view(row: JobLogRow) -> JobLogView:
    return JobLogView(
        log_id=row.id or 0,
        job_id=row.job_id,
        iteration=row.iteration,
        stream=LogStream(row.stream),
        content=row.content,
        timestamp=to_utc_aware_datetime(row.timestamp),
    )


def _to_repository_view(row: RepositoryRow) -> RepositoryView:
    keywords = json.loads(row.keywords_json) if row.keywords_json else []
    return RepositoryView(
        repository_id=row.repository_id,
        name=row.name,
        slug=row.slug,
        git_url=row.git_url,
        branch=row.branch,
        docker_image=row.docker_image,
        keywords=[str(item) for item in keywords] if isinstance(keywords, list) else [],
        description=row.description,
        enabled=row.enabled,
        created_at=to_utc_aware_datetime(row.created_at),
    )
