"""Queue facade: the single writer in front of the job store."""

from __future__ import annotations

from ralph_dispatch.queue.contracts import TaskDocument
from ralph_dispatch.queue.models import (
    JobCreate,
    JobLogView,
    JobLogWrite,
    JobStatus,
    JobView,
    QueueStats,
    RepositoryCreate,
    RepositoryUpdate,
    RepositoryView,
)
from ralph_dispatch.queue.repository import JobStore


class JobQueue:
    """Thin use-case layer over ``JobStore``; holds no state of its own."""

    def __init__(self, store: JobStore) -> None:
        self.store = store

    def enqueue(self, payload: JobCreate) -> JobView:
        return self.store.insert_job(payload)

    def dequeue(self) -> JobView | None:
        """Claim the next pending job without blocking."""

        return self.store.claim_next_pending()

    def get_job(self, job_id: str) -> JobView | None:
        return self.store.get_job(job_id)

    def list_jobs(self, status: JobStatus | None = None) -> list[JobView]:
        if status is None:
            return self.store.list_all()
        return self.store.list_by_status(status)

    def get_running_job(self) -> JobView | None:
        return self.store.get_running()

    def complete(self, job_id: str) -> JobView:
        return self.store.update_status(job_id, JobStatus.COMPLETED)

    def fail(self, job_id: str, error_message: str) -> JobView:
        return self.store.update_status(job_id, JobStatus.FAILED, error_message=error_message)

    def cancel(self, job_id: str) -> JobView:
        return self.store.update_status(job_id, JobStatus.CANCELLED)

    def update_iteration(self, job_id: str, iteration: int) -> None:
        self.store.update_iteration(job_id, iteration)

    def update_task_document(self, job_id: str, document: TaskDocument) -> None:
        self.store.update_task_document(job_id, document)

    def append_log(self, entry: JobLogWrite) -> JobLogView:
        return self.store.append_log(entry)

    def get_logs(
        self,
        job_id: str,
        *,
        iteration: int | None = None,
        after_id: int | None = None,
        limit: int | None = None,
    ) -> list[JobLogView]:
        return self.store.read_logs(job_id, iteration=iteration, after_id=after_id, limit=limit)

    def delete_logs(self, job_id: str) -> int:
        return self.store.delete_logs(job_id)

    def delete_job(self, job_id: str) -> None:
        self.store.delete_job(job_id)

    def pending_count(self) -> int:
        return self.store.count_pending()

    def get_stats(self) -> QueueStats:
        """Per-status job counts."""

        counts = self.store.count_by_status()
        return QueueStats(
            pending=counts[JobStatus.PENDING],
            running=counts[JobStatus.RUNNING],
            completed=counts[JobStatus.COMPLETED],
            failed=counts[JobStatus.FAILED],
            cancelled=counts[JobStatus.CANCELLED],
        )

    # Repository descriptors

    def add_repository(self, payload: RepositoryCreate) -> RepositoryView:
        return self.store.create_repository(payload)

    def get_repository(self, repository_id: str) -> RepositoryView | None:
        return self.store.get_repository(repository_id)

    def get_repository_by_slug(self, slug: str) -> RepositoryView | None:
        return self.store.get_repository_by_slug(slug)

    def list_repositories(self, *, enabled_only: bool = False) -> list[RepositoryView]:
        return self.store.list_repositories(enabled_only=enabled_only)

    def update_repository(self, repository_id: str, payload: RepositoryUpdate) -> RepositoryView:
        return self.store.update_repository(repository_id, payload)

    def delete_repository(self, repository_id: str) -> None:
        self.store.delete_repository(repository_id)

    def repository_count(self) -> int:
        return self.store.count_repositories()
