"""SQLModel ORM tables for the job queue."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class RepositoryRow(SQLModel, table=True):
    __tablename__ = "repositories"  # type: ignore[bad-override]

    repository_id: str = Field(primary_key=True)
    name: str
    slug: str = Field(unique=True, index=True)
    git_url: str
    branch: str = Field(default="main")
    docker_image: str
    keywords_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    description: str = Field(default="", sa_column=Column(Text, nullable=False))
    enabled: bool = Field(default=True, index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class JobRow(SQLModel, table=True):
    __tablename__ = "jobs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_jobs_queue", "status", "priority", "created_at"),)

    job_id: str = Field(primary_key=True)
    # Plain column: deleting a repository leaves its jobs orphaned.
    repository_id: str = Field(index=True)
    status: str = Field(index=True)
    priority: int = Field(default=100)
    task_document_json: str = Field(sa_column=Column(Text, nullable=False))
    triggered_by: str
    chat_channel_id: str | None = None
    chat_thread_ts: str | None = None
    chat_user_id: str | None = None
    iteration: int = Field(default=0)
    max_iterations: int = Field(default=10)
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class JobLogRow(SQLModel, table=True):
    __tablename__ = "job_logs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_job_logs_job_id_id", "job_id", "id"),)

    id: int | None = Field(default=None, primary_key=True)
    job_id: str = Field(
        sa_column=Column(
            ForeignKey("jobs.job_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    iteration: int
    stream: str
    content: str = Field(sa_column=Column(Text, nullable=False))
    timestamp: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
