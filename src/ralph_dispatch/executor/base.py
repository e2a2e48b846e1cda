"""Container runtime interface used by the job executor."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Protocol

from ralph_dispatch.queue.models import LogStream


class ContainerRuntimeError(RuntimeError):
    """Container runtime transport or API failure."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(slots=True)
class ContainerSpec:
    """Everything needed to create one sandbox container."""

    image: str
    env: dict[str, str] = field(default_factory=dict)
    binds: list[str] = field(default_factory=list)
    working_dir: str = "/workspace"
    memory_bytes: int | None = None
    nano_cpus: int | None = None
    network_mode: str | None = None
    name: str | None = None
    labels: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class LogLine:
    """One demultiplexed, newline-stripped container output line."""

    stream: LogStream
    text: str


class ContainerRuntime(Protocol):
    """Protocol implemented by container runtime clients."""

    def create(self, spec: ContainerSpec) -> str:
        """Create a container and return its id."""

    def start(self, container_id: str) -> None:
        """Start a created container."""

    def stream_logs(self, container_id: str) -> Iterator[LogLine]:
        """Follow container output until the container stops."""

    def wait(self, container_id: str) -> int:
        """Block until the container exits and return its exit code."""

    def stop(self, container_id: str, *, timeout_seconds: int) -> None:
        """Stop gracefully, killing after ``timeout_seconds``; a gone container is not an error."""

    def remove(self, container_id: str) -> None:
        """Force-remove a container; a gone container is not an error."""
