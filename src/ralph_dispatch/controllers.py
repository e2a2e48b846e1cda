"""Controllers for ralph CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from ralph_dispatch.config import Settings
from ralph_dispatch.executor.docker_runtime import DockerRuntime
from ralph_dispatch.queue.contracts import task_document_from_dict
from ralph_dispatch.queue.errors import FieldError, NotFoundError, ValidationError
from ralph_dispatch.queue.models import (
    JobCreate,
    JobStatus,
    JobTrigger,
    JobView,
    RepositoryCreate,
    RepositoryUpdate,
    RepositoryView,
)
from ralph_dispatch.queue.repository import JobStore
from ralph_dispatch.queue.service import JobQueue
from ralph_dispatch.worker import JobWorker


@dataclass(slots=True)
class RepoAddCommand:
    """CLI input for registering a repository."""

    db_path: Path | None
    name: str
    slug: str
    git_url: str
    docker_image: str
    branch: str
    keywords: tuple[str, ...]
    description: str
    enabled: bool


@dataclass(slots=True)
class RepoListCommand:
    db_path: Path | None
    enabled_only: bool


@dataclass(slots=True)
class RepoRefCommand:
    """CLI input addressing one repository by id or slug."""

    db_path: Path | None
    ref: str


@dataclass(slots=True)
class RepoUpdateCommand:
    """CLI input for a partial repository update."""

    db_path: Path | None
    ref: str
    name: str | None = None
    slug: str | None = None
    git_url: str | None = None
    docker_image: str | None = None
    branch: str | None = None
    keywords: tuple[str, ...] | None = None
    description: str | None = None
    enabled: bool | None = None


@dataclass(slots=True)
class JobEnqueueCommand:
    """CLI input for job enqueue."""

    db_path: Path | None
    repo_ref: str
    prd_path: Path
    priority: int
    max_iterations: int | None
    triggered_by: str


@dataclass(slots=True)
class JobListCommand:
    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class JobRefCommand:
    """CLI input addressing one job."""

    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class JobLogsCommand:
    """CLI input for log tail."""

    db_path: Path | None
    job_id: str
    iteration: int | None
    after_id: int | None
    limit: int | None


@dataclass(slots=True)
class StatsCommand:
    db_path: Path | None


@dataclass(slots=True)
class HealthCommand:
    db_path: Path | None


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    once: bool
    max_jobs: int | None
    max_idle_polls: int | None


class RalphCliController:
    """Coordinates repository, job and worker CLI operations."""

    def add_repository(self, command: RepoAddCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _queue(settings) as queue:
            repository = queue.add_repository(
                RepositoryCreate(
                    name=command.name,
                    slug=command.slug,
                    git_url=command.git_url,
                    docker_image=command.docker_image,
                    branch=command.branch,
                    keywords=list(command.keywords),
                    description=command.description,
                    enabled=command.enabled,
                ),
            )
        return [f"Repository added: id={repository.repository_id} slug={repository.slug}"]

    def list_repositories(self, command: RepoListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _queue(settings) as queue:
            repositories = queue.list_repositories(enabled_only=command.enabled_only)

        lines = [f"Repositories: {len(repositories)}"]
        for repository in repositories:
            lines.append(
                f"  {repository.repository_id} slug={repository.slug} "
                f"image={repository.docker_image} branch={repository.branch} "
                f"enabled={'yes' if repository.enabled else 'no'}",
            )
        return lines

    def show_repository(self, command: RepoRefCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _queue(settings) as queue:
            repository = _resolve_repository(queue, command.ref)
        return [
            f"Repository: {repository.repository_id}",
            f"Name: {repository.name}",
            f"Slug: {repository.slug}",
            f"Git URL: {repository.git_url}",
            f"Branch: {repository.branch}",
            f"Image: {repository.docker_image}",
            f"Keywords: {', '.join(repository.keywords) or '-'}",
            f"Description: {repository.description or '-'}",
            f"Enabled: {'yes' if repository.enabled else 'no'}",
            f"Created: {repository.created_at.isoformat()}",
        ]

    def update_repository(self, command: RepoUpdateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _queue(settings) as queue:
            current = _resolve_repository(queue, command.ref)
            updated = queue.update_repository(
                current.repository_id,
                RepositoryUpdate(
                    name=command.name,
                    slug=command.slug,
                    git_url=command.git_url,
                    docker_image=command.docker_image,
                    branch=command.branch,
                    keywords=list(command.keywords) if command.keywords is not None else None,
                    description=command.description,
                    enabled=command.enabled,
                ),
            )
        return [f"Repository updated: id={updated.repository_id} slug={updated.slug}"]

    def delete_repository(self, command: RepoRefCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _queue(settings) as queue:
            repository = _resolve_repository(queue, command.ref)
            queue.delete_repository(repository.repository_id)
        return [f"Repository deleted: {repository.slug}"]

    def enqueue(self, command: JobEnqueueCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        document = task_document_from_dict(_load_json_file(command.prd_path))
        with _queue(settings) as queue:
            repository = _resolve_repository(queue, command.repo_ref)
            job = queue.enqueue(
                JobCreate(
                    repository_id=repository.repository_id,
                    task_document=document,
                    triggered_by=JobTrigger(command.triggered_by),
                    priority=command.priority,
                    max_iterations=command.max_iterations
                    or settings.worker.default_max_iterations,
                ),
            )
            pending = queue.pending_count()
        return [
            f"Job enqueued: job_id={job.job_id} repository={repository.slug} "
            f"status={job.status.value} priority={job.priority}",
            f"Pending jobs: {pending}",
        ]

    def list_jobs(self, command: JobListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _queue(settings) as queue:
            jobs = queue.list_jobs(status_filter)[: command.limit]

        lines = [f"Jobs: {len(jobs)}"]
        for job in jobs:
            lines.append(
                f"  {job.job_id} status={job.status.value} priority={job.priority} "
                f"iteration={job.iteration}/{job.max_iterations} "
                f"created_at={job.created_at.isoformat()}",
            )
        return lines

    def inspect_job(self, command: JobRefCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _queue(settings) as queue:
            job = queue.get_job(command.job_id)
            if job is None:
                raise NotFoundError("Job", command.job_id)
            repository = queue.get_repository(job.repository_id)
        return _render_job(job, repository)

    def logs(self, command: JobLogsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _queue(settings) as queue:
            if queue.get_job(command.job_id) is None:
                raise NotFoundError("Job", command.job_id)
            entries = queue.get_logs(
                command.job_id,
                iteration=command.iteration,
                after_id=command.after_id,
                limit=command.limit,
            )
        return [
            f"{entry.log_id} [{entry.iteration}] {entry.stream.value}: {entry.content}"
            for entry in entries
        ]

    def cancel(self, command: JobRefCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _queue(settings) as queue:
            job = queue.cancel(command.job_id)
        return [f"Job {job.job_id} status={job.status.value}"]

    def delete_job(self, command: JobRefCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _queue(settings) as queue:
            queue.delete_job(command.job_id)
        return [f"Job deleted: {command.job_id}"]

    def stats(self, command: StatsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _queue(settings) as queue:
            stats = queue.get_stats()
            running = queue.get_running_job()
            repositories = queue.repository_count()
        return [
            "Queue: "
            f"pending={stats.pending} running={stats.running} completed={stats.completed} "
            f"failed={stats.failed} cancelled={stats.cancelled}",
            f"Running job: {running.job_id if running is not None else '-'}",
            f"Repositories: {repositories}",
        ]

    def health(self, command: HealthCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _queue(settings) as queue:
            pending = queue.pending_count()
            running = queue.get_running_job()
        with DockerRuntime(
            settings.docker.host,
            timeout_seconds=settings.docker.request_timeout_seconds,
        ) as runtime:
            docker_available = runtime.ping()
        return [
            f"database: ok ({settings.db_path})",
            f"docker: {'available' if docker_available else 'unavailable'} "
            f"({settings.docker.host})",
            f"queue: pending={pending} running={'yes' if running is not None else 'no'}",
        ]

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_worker()
        with _queue(settings) as queue, DockerRuntime(settings.docker.host) as runtime:
            worker = JobWorker(queue=queue, runtime=runtime, settings=settings)
            summary = (
                worker.run_once()
                if command.once
                else worker.run_loop(
                    max_jobs=command.max_jobs,
                    max_idle_polls=command.max_idle_polls,
                )
            )

        return [
            "Worker summary: "
            f"processed={summary.processed} succeeded={summary.succeeded} "
            f"failed={summary.failed} idle_polls={summary.idle_polls}",
        ]


def _render_job(job: JobView, repository: RepositoryView | None) -> list[str]:
    document = job.task_document
    repository_label = (
        repository.slug if repository is not None else f"{job.repository_id} (missing)"
    )
    lines = [
        f"Job: {job.job_id}",
        f"Repository: {repository_label}",
        f"Status: {job.status.value}",
        f"Priority: {job.priority}",
        f"Triggered by: {job.triggered_by.value}",
        f"Iteration: {job.iteration}/{job.max_iterations}",
        f"Error: {job.error_message or '-'}",
        f"Created: {job.created_at.isoformat()}",
        f"Started: {job.started_at.isoformat() if job.started_at else '-'}",
        f"Completed: {job.completed_at.isoformat() if job.completed_at else '-'}",
        f"Project: {document.project} (branch {document.branch_name})",
    ]
    passed = sum(1 for story in document.user_stories if story.passes)
    lines.append(f"Stories: {passed}/{len(document.user_stories)} passing")
    for story in document.user_stories:
        lines.append(f"  [{'x' if story.passes else ' '}] {story.story_id} {story.title}")
    return lines


def _resolve_repository(queue: JobQueue, ref: str) -> RepositoryView:
    repository = queue.get_repository_by_slug(ref) or queue.get_repository(ref)
    if repository is None:
        raise NotFoundError("Repository", ref)
    return repository


def _parse_status(value: str | None) -> JobStatus | None:
    if value is None:
        return None
    return JobStatus(value.strip().lower())


def _load_json_file(path: Path) -> object:
    try:
        return json.loads(path.read_text("utf-8"))
    except OSError as error:
        raise ValidationError([FieldError("prd", f"cannot read {path}: {error}")]) from error
    except json.JSONDecodeError as error:
        raise ValidationError(
            [FieldError("prd", f"invalid JSON in {path}: {error.msg}")],
        ) from error


@contextmanager
def _queue(settings: Settings) -> Iterator[JobQueue]:
    store = JobStore(settings.db_path, busy_timeout_ms=settings.sqlite_busy_timeout_ms)
    store.init_schema()
    try:
        yield JobQueue(store)
    finally:
        store.close()
