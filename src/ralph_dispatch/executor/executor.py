"""Run one claimed job inside a Docker sandbox."""

from __future__ import annotations

import logging
import re
import threading
from enum import Enum
from pathlib import Path

from ralph_dispatch.config import AuthMode, Settings
from ralph_dispatch.executor.base import (
    ContainerRuntime,
    ContainerRuntimeError,
    ContainerSpec,
    LogLine,
)
from ralph_dispatch.queue.contracts import read_task_document, write_task_document
from ralph_dispatch.queue.errors import ExecutionError, ReconciliationSkip
from ralph_dispatch.queue.models import JobLogWrite, JobView, RepositoryView
from ralph_dispatch.queue.service import JobQueue

logger = logging.getLogger(__name__)

ITERATION_PATTERN = re.compile(r"Iteration (\d+) of")
CONTAINER_WORKSPACE = "/workspace"
CONTAINER_SSH_DIR = "/root/.ssh"
CONTAINER_AUTH_DIR = "/home/node/.claude"


class ExecutorState(str, Enum):
    """Lifecycle of one executor run."""

    CREATED = "created"
    CONTAINER_BUILT = "container_built"
    STARTED = "started"
    STREAMING = "streaming"
    WAITED = "waited"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class JobExecutor:
    """Drive a single job through create, start, stream, wait and reconcile.

    One instance per job. ``execute`` runs on the worker thread; ``stop`` may be
    called from any other thread (signal timer, CLI) while ``execute`` blocks.
    """

    def __init__(
        self,
        *,
        job: JobView,
        repository: RepositoryView,
        queue: JobQueue,
        runtime: ContainerRuntime,
        settings: Settings,
    ) -> None:
        self.job = job
        self.repository = repository
        self.queue = queue
        self.runtime = runtime
        self.settings = settings
        self.state = ExecutorState.CREATED
        self.iteration = job.iteration
        self.exit_code: int | None = None
        self._container_id: str | None = None
        self._stop_requested = False
        self._lock = threading.Lock()

    @property
    def workspace_dir(self) -> Path:
        return self.settings.worker.repos_root / self.repository.slug

    @property
    def container_id(self) -> str | None:
        with self._lock:
            return self._container_id

    def execute(self) -> JobView:
        """Run the job to completion; raises ``ExecutionError`` on any failure."""

        try:
            return self._run()
        except ContainerRuntimeError as error:
            self.state = ExecutorState.FAILED
            raise ExecutionError(str(error)) from error
        except Exception:
            self.state = ExecutorState.FAILED
            raise
        finally:
            self._remove_container()

    def stop(self) -> None:
        """Ask the runtime to stop the container; safe to call at any time."""

        with self._lock:
            self._stop_requested = True
            container_id = self._container_id
        if container_id is None:
            logger.info("Stop requested for job %s before its container exists", self.job.job_id)
            return
        logger.info(
            "Stopping container %s of job %s (grace %ss)",
            container_id[:12],
            self.job.job_id,
            self.settings.docker.stop_timeout_seconds,
        )
        try:
            self.runtime.stop(
                container_id,
                timeout_seconds=self.settings.docker.stop_timeout_seconds,
            )
        except ContainerRuntimeError as error:
            logger.warning("Failed to stop container %s: %s", container_id[:12], error)

    def build_container_spec(self) -> ContainerSpec:
        """Assemble image, env, binds and limits for this job's sandbox."""

        env = {
            "MAX_ITERATIONS": str(self.job.max_iterations),
            "REPO_NAME": self.repository.name,
        }
        binds = [
            f"{self.workspace_dir}:{CONTAINER_WORKSPACE}",
            f"{self.settings.worker.ssh_dir}:{CONTAINER_SSH_DIR}:ro",
        ]

        auth = self.settings.auth
        if auth.mode is AuthMode.API_KEY:
            if not auth.api_key:
                raise ExecutionError("ANTHROPIC_API_KEY is not set but CLAUDE_AUTH_MODE=api_key")
            env["ANTHROPIC_API_KEY"] = auth.api_key
        elif auth.mode is AuthMode.OAUTH:
            binds.append(f"{auth.auth_dir}:{CONTAINER_AUTH_DIR}:ro")
        else:
            raise ExecutionError(f"Unsupported auth mode: {auth.mode!r}")

        docker = self.settings.docker
        try:
            memory_bytes = docker.memory_bytes
        except ValueError as error:
            raise ExecutionError(str(error)) from error

        return ContainerSpec(
            image=self.repository.docker_image,
            env=env,
            binds=binds,
            working_dir=CONTAINER_WORKSPACE,
            memory_bytes=memory_bytes,
            nano_cpus=docker.nano_cpus,
            network_mode=docker.network_mode,
            labels={"ralph.job_id": self.job.job_id, "ralph.repository": self.repository.slug},
        )

    def _run(self) -> JobView:
        job_id = self.job.job_id
        spec = self.build_container_spec()

        container_id = self.runtime.create(spec)
        with self._lock:
            self._container_id = container_id
        self.state = ExecutorState.CONTAINER_BUILT
        logger.info(
            "Created container %s for job %s (image=%s)",
            container_id[:12],
            job_id,
            spec.image,
        )

        self._materialize_task_document()
        if self._stop_pending():
            raise ExecutionError("Execution stopped before the container was started")

        self.runtime.start(container_id)
        self.state = ExecutorState.STARTED
        # A stop that landed between the check above and start hit a container
        # that was not running yet.
        if self._stop_pending():
            logger.info("Stop requested for job %s while starting; stopping now", job_id)
            self.runtime.stop(
                container_id,
                timeout_seconds=self.settings.docker.stop_timeout_seconds,
            )

        self.state = ExecutorState.STREAMING
        for line in self.runtime.stream_logs(container_id):
            self._handle_line(line)

        exit_code = self.runtime.wait(container_id)
        self.exit_code = exit_code
        self.state = ExecutorState.WAITED
        logger.info("Container %s of job %s exited with %d", container_id[:12], job_id, exit_code)

        self._reconcile_task_document()

        if exit_code != 0:
            raise ExecutionError(f"Container exited with code {exit_code}", exit_code=exit_code)

        completed = self.queue.complete(job_id)
        self.state = ExecutorState.SUCCEEDED
        return completed

    def _stop_pending(self) -> bool:
        with self._lock:
            return self._stop_requested

    def _materialize_task_document(self) -> None:
        workspace = self.workspace_dir
        if not workspace.is_dir():
            raise ExecutionError(f"Workspace directory not found: {workspace}")
        try:
            write_task_document(workspace, self.job.task_document)
        except OSError as error:
            raise ExecutionError(f"Cannot write task document to {workspace}: {error}") from error

    def _handle_line(self, line: LogLine) -> None:
        match = ITERATION_PATTERN.search(line.text)
        if match is not None:
            announced = int(match.group(1))
            if announced > self.iteration:
                self.iteration = announced
                self.queue.update_iteration(self.job.job_id, announced)

        logger.debug("[job %s] [%s] %s", self.job.job_id, line.stream.value, line.text)
        self.queue.append_log(
            JobLogWrite(
                job_id=self.job.job_id,
                iteration=self.iteration,
                stream=line.stream,
                content=line.text,
            ),
        )

    def _reconcile_task_document(self) -> None:
        try:
            document = read_task_document(self.workspace_dir)
        except ReconciliationSkip as skip:
            logger.warning("Keeping stored task document for job %s: %s", self.job.job_id, skip)
            return
        self.queue.update_task_document(self.job.job_id, document)

    def _remove_container(self) -> None:
        container_id = self.container_id
        if container_id is None:
            return
        try:
            self.runtime.remove(container_id)
        except ContainerRuntimeError as error:
            logger.warning("Failed to remove container %s: %s", container_id[:12], error)
