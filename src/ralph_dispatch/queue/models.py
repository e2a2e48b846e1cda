"""Domain models for the job queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ralph_dispatch.queue.contracts import TaskDocument


class JobStatus(str, Enum):
    """Durable job lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class JobTrigger(str, Enum):
    """Where a job request originated."""

    CHAT = "chat"
    DASHBOARD = "dashboard"
    API = "api"


class LogStream(str, Enum):
    """Container output stream a log line was read from."""

    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass(slots=True)
class JobCreate:
    """Input payload for enqueuing a job."""

    repository_id: str
    task_document: TaskDocument
    triggered_by: JobTrigger = JobTrigger.API
    priority: int = 100
    max_iterations: int = 10
    chat_channel_id: str | None = None
    chat_thread_ts: str | None = None
    chat_user_id: str | None = None


@dataclass(slots=True)
class JobView:
    """Readable job view for CLI, worker and executor logic."""

    job_id: str
    repository_id: str
    status: JobStatus
    priority: int
    task_document: TaskDocument
    triggered_by: JobTrigger
    chat_channel_id: str | None
    chat_thread_ts: str | None
    chat_user_id: str | None
    iteration: int
    max_iterations: int
    error_message: str | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None


@dataclass(slots=True)
class JobLogWrite:
    """One captured output line."""

    job_id: str
    iteration: int
    stream: LogStream
    content: str
    timestamp: datetime | None = None


@dataclass(slots=True)
class JobLogView:
    """Stored log line."""

    log_id: int
    job_id: str
    iteration: int
    stream: LogStream
    content: str
    timestamp: datetime


@dataclass(slots=True)
class QueueStats:
    """Job counts per status."""

    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0


@dataclass(slots=True)
class RepositoryCreate:
    """Input payload for registering a target repository."""

    name: str
    slug: str
    git_url: str
    docker_image: str
    branch: str = "main"
    keywords: list[str] = field(default_factory=list)
    description: str = ""
    enabled: bool = True


@dataclass(slots=True)
class RepositoryUpdate:
    """Partial update; ``None`` leaves a field unchanged."""

    name: str | None = None
    slug: str | None = None
    git_url: str | None = None
    docker_image: str | None = None
    branch: str | None = None
    keywords: list[str] | None = None
    description: str | None = None
    enabled: bool | None = None


@dataclass(slots=True)
class RepositoryView:
    """Stored repository descriptor."""

    repository_id: str
    name: str
    slug: str
    git_url: str
    branch: str
    docker_image: str
    keywords: list[str]
    description: str
    enabled: bool
    created_at: datetime
