"""Poll loop that claims pending jobs and runs them one at a time."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from ralph_dispatch.config import Settings
from ralph_dispatch.executor.base import ContainerRuntime
from ralph_dispatch.executor.executor import JobExecutor
from ralph_dispatch.queue.errors import ExecutionError
from ralph_dispatch.queue.models import JobView, RepositoryView
from ralph_dispatch.queue.service import JobQueue

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[..., JobExecutor]


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    idle_polls: int = 0

    def add(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.idle_polls += other.idle_polls


class JobWorker:
    """Consumes pending jobs and executes them in Docker sandboxes."""

    def __init__(
        self,
        *,
        queue: JobQueue,
        runtime: ContainerRuntime,
        settings: Settings,
        executor_factory: ExecutorFactory = JobExecutor,
    ) -> None:
        self.queue = queue
        self.runtime = runtime
        self.settings = settings
        self.executor_factory = executor_factory
        self.poll_interval_seconds = settings.worker.poll_interval_seconds
        self.graceful_shutdown_seconds = settings.worker.graceful_shutdown_seconds
        self._stop_requested = False
        # Re-entrant: the signal handler runs on the main thread, possibly inside a locked block.
        self._lock = threading.RLock()
        self._current_executor: JobExecutor | None = None
        self._stop_timer: threading.Timer | None = None

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def run_once(self) -> WorkerRunSummary:
        """Process at most one job from the queue."""

        summary = WorkerRunSummary()
        if self._stop_requested:
            summary.idle_polls = 1
            return summary

        job = self.queue.dequeue()
        if job is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        logger.info(
            "Claimed job %s (repository=%s priority=%d)",
            job.job_id,
            job.repository_id,
            job.priority,
        )
        repository = self.queue.get_repository(job.repository_id)
        if repository is None:
            self._record_failure(job, f"Repository not found: {job.repository_id}")
            summary.failed = 1
            return summary

        if self._execute(job, repository):
            summary.succeeded = 1
        else:
            summary.failed = 1
        return summary

    def run_loop(
        self,
        *,
        max_jobs: int | None = None,
        max_idle_polls: int | None = None,
    ) -> WorkerRunSummary:
        """Poll until stopped, ``max_jobs`` processed or ``max_idle_polls`` empty polls in a row."""

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        with self._signal_handlers():
            while not self._stop_requested:
                if max_jobs is not None and aggregate.processed >= max_jobs:
                    break

                try:
                    summary = self.run_once()
                except Exception:
                    logger.exception("Worker iteration failed; continuing to poll")
                    summary = WorkerRunSummary(idle_polls=1)
                aggregate.add(summary)

                if summary.processed == 0:
                    consecutive_idle += 1
                    if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                        break
                else:
                    consecutive_idle = 0
                    if max_jobs is not None and aggregate.processed >= max_jobs:
                        break
                self._sleep_with_stop(self.poll_interval_seconds)
        return aggregate

    def request_stop(self, *, reason: str = "request") -> None:
        """Stop issuing dequeues and bound the in-flight job by the grace period."""

        with self._lock:
            already_requested = self._stop_requested
            self._stop_requested = True
            executor = self._current_executor
            if executor is None or self._stop_timer is not None:
                timer = None
            else:
                timer = threading.Timer(self.graceful_shutdown_seconds, executor.stop)
                timer.daemon = True
                self._stop_timer = timer
        if not already_requested:
            logger.info("Shutdown requested (%s)", reason)
        if timer is not None:
            logger.info(
                "Giving job %s %.1fs to finish before stopping its container",
                executor.job.job_id if executor is not None else "-",
                self.graceful_shutdown_seconds,
            )
            timer.start()

    def _execute(self, job: JobView, repository: RepositoryView) -> bool:
        executor = self.executor_factory(
            job=job,
            repository=repository,
            queue=self.queue,
            runtime=self.runtime,
            settings=self.settings,
        )
        with self._lock:
            self._current_executor = executor
        if self._stop_requested:
            self.request_stop(reason="pending before execution")

        try:
            executor.execute()
        except ExecutionError as error:
            self._record_failure(job, str(error))
            return False
        except Exception as error:
            logger.exception("Unexpected error while executing job %s", job.job_id)
            self._record_failure(job, f"{type(error).__name__}: {error}")
            return False
        finally:
            with self._lock:
                self._current_executor = None
                timer = self._stop_timer
                self._stop_timer = None
            if timer is not None:
                timer.cancel()

        logger.info("Job %s completed at iteration %d", job.job_id, executor.iteration)
        return True

    def _record_failure(self, job: JobView, message: str) -> None:
        logger.error("Job %s failed: %s", job.job_id, message)
        self.queue.fail(job.job_id, message)

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if threading.current_thread() is not threading.main_thread():
            # Signal handlers can only be installed in main thread.
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(reason=name)

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
