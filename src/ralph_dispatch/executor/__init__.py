"""Sandbox execution of claimed jobs."""

from ralph_dispatch.executor.base import (
    ContainerRuntime,
    ContainerRuntimeError,
    ContainerSpec,
    LogLine,
)
from ralph_dispatch.executor.docker_runtime import DockerRuntime
from ralph_dispatch.executor.executor import ExecutorState, JobExecutor

__all__ = [
    "ContainerRuntime",
    "ContainerRuntimeError",
    "ContainerSpec",
    "DockerRuntime",
    "ExecutorState",
    "JobExecutor",
    "LogLine",
]
