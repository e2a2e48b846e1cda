"""Create repositories, jobs and job_logs tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "repositories",
        sa.Column("repository_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("git_url", sa.String(), nullable=False),
        sa.Column("branch", sa.String(), server_default="main", nullable=False),
        sa.Column("docker_image", sa.String(), nullable=False),
        sa.Column("keywords_json", sa.Text(), server_default="[]", nullable=False),
        sa.Column("description", sa.Text(), server_default="", nullable=False),
        sa.Column("enabled", sa.Boolean(), server_default=sa.text("1"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("repository_id"),
    )
    op.create_index("ix_repositories_slug", "repositories", ["slug"], unique=True)
    op.create_index("ix_repositories_enabled", "repositories", ["enabled"], unique=False)

    op.create_table(
        "jobs",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("repository_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), server_default="pending", nullable=False),
        sa.Column("priority", sa.Integer(), server_default=sa.text("100"), nullable=False),
        sa.Column("task_document_json", sa.Text(), nullable=False),
        sa.Column("triggered_by", sa.String(), nullable=False),
        sa.Column("chat_channel_id", sa.String(), nullable=True),
        sa.Column("chat_thread_ts", sa.String(), nullable=True),
        sa.Column("chat_user_id", sa.String(), nullable=True),
        sa.Column("iteration", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("max_iterations", sa.Integer(), server_default=sa.text("10"), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("job_id"),
        sa.CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed', 'cancelled')",
            name="ck_jobs_status",
        ),
        sa.CheckConstraint(
            "triggered_by IN ('chat', 'dashboard', 'api')",
            name="ck_jobs_triggered_by",
        ),
    )
    op.create_index("ix_jobs_repository_id", "jobs", ["repository_id"], unique=False)
    op.create_index("ix_jobs_status", "jobs", ["status"], unique=False)
    op.create_index(
        "idx_jobs_queue",
        "jobs",
        ["status", "priority", "created_at"],
        unique=False,
    )

    op.create_table(
        "job_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("iteration", sa.Integer(), nullable=False),
        sa.Column("stream", sa.String(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.job_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("stream IN ('stdout', 'stderr')", name="ck_job_logs_stream"),
    )
    op.create_index("ix_job_logs_job_id", "job_logs", ["job_id"], unique=False)
    op.create_index("idx_job_logs_job_id_id", "job_logs", ["job_id", "id"], unique=False)


def downgrade() -> None:
    op.drop_index("idx_job_logs_job_id_id", table_name="job_logs")
    op.drop_index("ix_job_logs_job_id", table_name="job_logs")
    op.drop_table("job_logs")
    op.drop_index("idx_jobs_queue", table_name="jobs")
    op.drop_index("ix_jobs_status", table_name="jobs")
    op.drop_index("ix_jobs_repository_id", table_name="jobs")
    op.drop_table("jobs")
    op.drop_index("ix_repositories_enabled", table_name="repositories")
    op.drop_index("ix_repositories_slug", table_name="repositories")
    op.drop_table("repositories")
