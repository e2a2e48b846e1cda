"""Shared test fixtures."""

from __future__ import annotations

import struct
import threading
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from ralph_dispatch.config import AuthMode, AuthSettings, Settings, WorkerSettings
from ralph_dispatch.executor.base import ContainerRuntimeError, ContainerSpec, LogLine
from ralph_dispatch.queue.contracts import TaskDocument, UserStory
from ralph_dispatch.queue.models import JobCreate, LogStream, RepositoryCreate, RepositoryView
from ralph_dispatch.queue.repository import JobStore
from ralph_dispatch.queue.service import JobQueue


def make_task_document(stories: int = 2) -> TaskDocument:
    return TaskDocument(
        project="Demo",
        branch_name="ralph/demo-feature",
        description="Add the demo feature",
        user_stories=[
            UserStory(
                story_id=f"US-{index:03d}",
                title=f"Story {index}",
                description=f"Do thing {index}",
                acceptance_criteria=[f"criterion {index}"],
                priority=index,
            )
            for index in range(1, stories + 1)
        ],
    )


def make_job_create(repository_id: str, **overrides: object) -> JobCreate:
    payload = JobCreate(repository_id=repository_id, task_document=make_task_document())
    for name, value in overrides.items():
        setattr(payload, name, value)
    return payload


@pytest.fixture()
def store(tmp_path: Path) -> Iterator[JobStore]:
    job_store = JobStore(tmp_path / "ralph.db")
    job_store.init_schema()
    try:
        yield job_store
    finally:
        job_store.close()


@pytest.fixture()
def queue(store: JobStore) -> JobQueue:
    return JobQueue(store)


@pytest.fixture()
def repository(queue: JobQueue) -> RepositoryView:
    return queue.add_repository(
        RepositoryCreate(
            name="Demo App",
            slug="demo-app",
            git_url="git@github.com:example/demo-app.git",
            docker_image="ralph-sandbox:latest",
        ),
    )


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    repos_root = tmp_path / "repos"
    (repos_root / "demo-app").mkdir(parents=True)
    return Settings(
        db_path=tmp_path / "ralph.db",
        worker=WorkerSettings(
            poll_interval_seconds=0.01,
            graceful_shutdown_seconds=0.05,
            repos_root=repos_root,
            ssh_dir=tmp_path / "ssh",
        ),
        auth=AuthSettings(mode=AuthMode.API_KEY, auth_dir=tmp_path / "auth", api_key="sk-test"),
    )


class FakeRuntime:
    """Scripted container runtime recording every call."""

    def __init__(
        self,
        *,
        lines: list[LogLine] | None = None,
        exit_code: int = 0,
        on_wait: Callable[[ContainerSpec], None] | None = None,
        block_until_stopped: bool = False,
        fail_on: str | None = None,
    ) -> None:
        self.lines = lines or []
        self.exit_code = exit_code
        self.on_wait = on_wait
        self.block_until_stopped = block_until_stopped
        self.fail_on = fail_on
        self.calls: list[str] = []
        self.specs: list[ContainerSpec] = []
        self.streaming = threading.Event()
        self.stopped = threading.Event()
        self._counter = 0

    def create(self, spec: ContainerSpec) -> str:
        self._record("create")
        self.specs.append(spec)
        self._counter += 1
        return f"container-{self._counter:04d}"

    def start(self, container_id: str) -> None:
        self._record("start")

    def stream_logs(self, container_id: str) -> Iterator[LogLine]:
        self._record("stream_logs")
        self.streaming.set()
        yield from self.lines
        if self.block_until_stopped:
            self.stopped.wait(timeout=10)

    def wait(self, container_id: str) -> int:
        self._record("wait")
        if self.on_wait is not None:
            self.on_wait(self.specs[-1])
        if self.stopped.is_set():
            return 137
        return self.exit_code

    def stop(self, container_id: str, *, timeout_seconds: int) -> None:
        self.calls.append("stop")
        self.stopped.set()

    def remove(self, container_id: str) -> None:
        self.calls.append("remove")

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_on == name:
            raise ContainerRuntimeError(f"{name} exploded")


def encode_frame(stream: LogStream, payload: bytes) -> bytes:
    """Build one Docker multiplexed log frame."""

    marker = 1 if stream is LogStream.STDOUT else 2
    return struct.pack(">BxxxI", marker, len(payload)) + payload


def stdout(text: str) -> LogLine:
    return LogLine(stream=LogStream.STDOUT, text=text)


def stderr(text: str) -> LogLine:
    return LogLine(stream=LogStream.STDERR, text=text)
