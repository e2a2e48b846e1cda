from __future__ import annotations

import multiprocessing
import queue
import threading
from pathlib import Path

import allure

from conftest import make_job_create
from ralph_dispatch.queue.models import JobStatus, RepositoryView
from ralph_dispatch.queue.repository import JobStore

pytestmark = [
    allure.epic("Job Queue"),
    allure.feature("Claim Atomicity"),
]


def _drain_claims(
    db_path: str,
    start_event: threading.Event,
    result_queue: queue.Queue[str],
) -> None:
    store = JobStore(Path(db_path))
    try:
        start_event.wait(timeout=5)
        while (job := store.claim_next_pending()) is not None:
            result_queue.put(job.job_id)
    finally:
        store.close()


def _drain_claims_process(  # pragma: no cover - executed in child process
    db_path: str,
    start_event: multiprocessing.synchronize.Event,
    result_queue: multiprocessing.queues.Queue[str],
) -> None:
    store = JobStore(Path(db_path))
    try:
        start_event.wait(timeout=10)
        while (job := store.claim_next_pending()) is not None:
            result_queue.put(job.job_id)
    finally:
        store.close()


def _collect(result_queue, expected: int) -> list[str]:
    return [result_queue.get(timeout=10) for _ in range(expected)]


def test_concurrent_threads_claim_each_job_once(
    store: JobStore,
    repository: RepositoryView,
) -> None:
    job_ids = {
        store.insert_job(make_job_create(repository.repository_id)).job_id for _ in range(24)
    }
    start_event = threading.Event()
    result_queue: queue.Queue[str] = queue.Queue()
    threads = [
        threading.Thread(
            target=_drain_claims,
            args=(str(store.db_path), start_event, result_queue),
            daemon=True,
        )
        for _ in range(8)
    ]
    for thread in threads:
        thread.start()
    start_event.set()
    for thread in threads:
        thread.join(timeout=30)
        assert thread.is_alive() is False

    claimed = _collect(result_queue, len(job_ids))

    assert result_queue.empty()
    assert len(claimed) == len(set(claimed))
    assert set(claimed) == job_ids
    assert store.count_pending() == 0
    assert all(job.started_at is not None for job in store.list_by_status(JobStatus.RUNNING))


def test_concurrent_processes_claim_each_job_once(
    store: JobStore,
    repository: RepositoryView,
) -> None:
    job_ids = {
        store.insert_job(make_job_create(repository.repository_id)).job_id for _ in range(12)
    }
    context = multiprocessing.get_context("spawn")
    start_event = context.Event()
    result_queue = context.Queue()
    processes = [
        context.Process(
            target=_drain_claims_process,
            args=(str(store.db_path), start_event, result_queue),
        )
        for _ in range(3)
    ]
    for process in processes:
        process.start()
    start_event.set()

    claimed = _collect(result_queue, len(job_ids))
    for process in processes:
        process.join(timeout=30)
        assert process.exitcode == 0

    assert len(claimed) == len(set(claimed))
    assert set(claimed) == job_ids
    assert store.count_pending() == 0
