from __future__ import annotations

import threading

import allure
import pytest

from conftest import FakeRuntime, make_job_create, stdout
from ralph_dispatch.config import Settings
from ralph_dispatch.queue.models import JobStatus, RepositoryView
from ralph_dispatch.queue.service import JobQueue
from ralph_dispatch.worker import JobWorker, WorkerRunSummary

pytestmark = [
    allure.epic("Worker"),
    allure.feature("Poll Loop"),
]


def _worker(queue: JobQueue, settings: Settings, runtime: FakeRuntime) -> JobWorker:
    return JobWorker(queue=queue, runtime=runtime, settings=settings)


def test_run_once_idle(queue: JobQueue, settings: Settings) -> None:
    summary = _worker(queue, settings, FakeRuntime()).run_once()

    assert summary == WorkerRunSummary(idle_polls=1)


def test_run_once_completes_job(
    queue: JobQueue,
    repository: RepositoryView,
    settings: Settings,
) -> None:
    job = queue.enqueue(make_job_create(repository.repository_id))

    summary = _worker(queue, settings, FakeRuntime(lines=[stdout("Iteration 1 of 2")])).run_once()

    assert summary == WorkerRunSummary(processed=1, succeeded=1)
    stored = queue.get_job(job.job_id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.iteration == 1


def test_missing_repository_fails_job(
    queue: JobQueue,
    repository: RepositoryView,
    settings: Settings,
) -> None:
    job = queue.enqueue(make_job_create(repository.repository_id))
    queue.delete_repository(repository.repository_id)
    runtime = FakeRuntime()

    summary = _worker(queue, settings, runtime).run_once()

    assert summary.failed == 1
    stored = queue.get_job(job.job_id)
    assert stored.status == JobStatus.FAILED
    assert stored.error_message == f"Repository not found: {repository.repository_id}"
    assert runtime.calls == []


def test_failure_is_recorded_and_loop_continues(
    queue: JobQueue,
    repository: RepositoryView,
    settings: Settings,
) -> None:
    failing = queue.enqueue(make_job_create(repository.repository_id, priority=1))
    succeeding = queue.enqueue(make_job_create(repository.repository_id, priority=2))

    class _FlakyRuntime(FakeRuntime):
        def wait(self, container_id: str) -> int:
            super().wait(container_id)
            return 1 if container_id == "container-0001" else 0

    summary = _worker(queue, settings, _FlakyRuntime()).run_loop(max_idle_polls=1)

    assert summary == WorkerRunSummary(processed=2, succeeded=1, failed=1, idle_polls=1)
    failed = queue.get_job(failing.job_id)
    assert failed.status == JobStatus.FAILED
    assert failed.error_message == "Container exited with code 1"
    assert failed.task_document == failing.task_document
    assert queue.get_job(succeeding.job_id).status == JobStatus.COMPLETED


def test_unexpected_error_is_recorded(
    queue: JobQueue,
    repository: RepositoryView,
    settings: Settings,
) -> None:
    job = queue.enqueue(make_job_create(repository.repository_id))

    class _BrokenRuntime(FakeRuntime):
        def stream_logs(self, container_id: str):
            raise KeyError("frame")

    summary = _worker(queue, settings, _BrokenRuntime()).run_once()

    assert summary.failed == 1
    assert queue.get_job(job.job_id).error_message == "KeyError: 'frame'"


def test_loop_survives_iteration_errors(
    queue: JobQueue,
    settings: Settings,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    calls = {"count": 0}

    def _flaky_dequeue():
        calls["count"] += 1
        if calls["count"] == 1:
            raise RuntimeError("database is locked")

    monkeypatch.setattr(queue, "dequeue", _flaky_dequeue)

    summary = _worker(queue, settings, FakeRuntime()).run_loop(max_idle_polls=3)

    assert summary.idle_polls == 3
    assert calls["count"] == 3


def test_max_jobs_caps_loop(
    queue: JobQueue,
    repository: RepositoryView,
    settings: Settings,
) -> None:
    for _ in range(3):
        queue.enqueue(make_job_create(repository.repository_id))

    summary = _worker(queue, settings, FakeRuntime()).run_loop(max_jobs=2)

    assert summary.processed == 2
    assert queue.pending_count() == 1


def test_stop_request_stops_in_flight_job_after_grace(
    queue: JobQueue,
    repository: RepositoryView,
    settings: Settings,
) -> None:
    job = queue.enqueue(make_job_create(repository.repository_id))
    runtime = FakeRuntime(lines=[stdout("Iteration 1 of 5")], block_until_stopped=True)
    worker = _worker(queue, settings, runtime)
    result: dict[str, WorkerRunSummary] = {}

    thread = threading.Thread(target=lambda: result.update(summary=worker.run_loop()))
    thread.start()
    assert runtime.streaming.wait(timeout=5)
    worker.request_stop(reason="SIGTERM")
    thread.join(timeout=10)

    assert thread.is_alive() is False
    assert "stop" in runtime.calls
    assert result["summary"].processed == 1
    assert result["summary"].failed == 1
    stored = queue.get_job(job.job_id)
    assert stored.status == JobStatus.FAILED
    assert stored.error_message == "Container exited with code 137"
    assert queue.dequeue() is None


def test_stop_before_poll_skips_dequeue(
    queue: JobQueue,
    repository: RepositoryView,
    settings: Settings,
) -> None:
    queue.enqueue(make_job_create(repository.repository_id))
    worker = _worker(queue, settings, FakeRuntime())
    worker.request_stop()

    summary = worker.run_loop()

    assert summary == WorkerRunSummary()
    assert queue.pending_count() == 1
