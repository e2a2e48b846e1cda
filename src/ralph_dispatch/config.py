"""Runtime configuration for the queue, worker and Docker sandbox."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from urllib.parse import urlparse

_MEMORY_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*([bkmgt]?)b?", re.IGNORECASE)
_MEMORY_UNITS = {"": 1, "b": 1, "k": 1024, "m": 1024**2, "g": 1024**3, "t": 1024**4}


class AuthMode(str, Enum):
    """How the agent inside the sandbox authenticates."""

    API_KEY = "api_key"
    OAUTH = "oauth"


@dataclass(slots=True)
class WorkerSettings:
    """Poll loop settings."""

    poll_interval_seconds: float = 5.0
    graceful_shutdown_seconds: float = 5.0
    default_max_iterations: int = 10
    repos_root: Path = Path("/repos")
    ssh_dir: Path = field(default_factory=lambda: Path("~/.ssh").expanduser())


@dataclass(slots=True)
class DockerSettings:
    """Docker Engine connection and sandbox resource limits."""

    host: str = "unix:///var/run/docker.sock"
    memory_limit: str = "4g"
    cpu_limit: float = 2.0
    network_mode: str = "none"
    stop_timeout_seconds: int = 10
    request_timeout_seconds: float = 30.0

    @property
    def memory_bytes(self) -> int:
        return parse_memory_limit(self.memory_limit)

    @property
    def nano_cpus(self) -> int:
        return int(self.cpu_limit * 1_000_000_000)


@dataclass(slots=True)
class AuthSettings:
    """Agent credentials passed into the sandbox."""

    mode: AuthMode = AuthMode.API_KEY
    auth_dir: Path = field(default_factory=lambda: Path("~/.claude-hub/auth").expanduser())
    api_key: str | None = None


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path("data/ralph.db")
    sqlite_busy_timeout_ms: int = 5_000
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    docker: DockerSettings = field(default_factory=DockerSettings)
    auth: AuthSettings = field(default_factory=AuthSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with defaults for a local Docker host."""

        return cls(
            db_path=db_path or Path(os.getenv("RALPH_DB_PATH", "data/ralph.db")),
            sqlite_busy_timeout_ms=int(os.getenv("RALPH_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            worker=WorkerSettings(
                poll_interval_seconds=float(
                    os.getenv("RALPH_WORKER_POLL_INTERVAL_SECONDS", "5.0"),
                ),
                graceful_shutdown_seconds=float(
                    os.getenv("RALPH_WORKER_GRACEFUL_SHUTDOWN_SECONDS", "5.0"),
                ),
                default_max_iterations=int(os.getenv("RALPH_DEFAULT_MAX_ITERATIONS", "10")),
                repos_root=Path(os.getenv("RALPH_REPOS_ROOT", "/repos")).expanduser(),
                ssh_dir=Path(os.getenv("RALPH_SSH_DIR", "~/.ssh")).expanduser(),
            ),
            docker=DockerSettings(
                host=os.getenv("DOCKER_HOST", "unix:///var/run/docker.sock"),
                memory_limit=os.getenv("DOCKER_MEMORY_LIMIT", "4g"),
                cpu_limit=float(os.getenv("DOCKER_CPU_LIMIT", "2")),
                network_mode=os.getenv("DOCKER_NETWORK_MODE", "none"),
                stop_timeout_seconds=int(os.getenv("DOCKER_STOP_TIMEOUT_SECONDS", "10")),
            ),
            auth=AuthSettings(
                mode=_parse_auth_mode(os.getenv("CLAUDE_AUTH_MODE", AuthMode.API_KEY.value)),
                auth_dir=Path(os.getenv("CLAUDE_AUTH_DIR", "~/.claude-hub/auth")).expanduser(),
                api_key=os.getenv("ANTHROPIC_API_KEY") or None,
            ),
        )

    def validate_for_worker(self) -> None:
        """Raise configuration error if the worker cannot run with these settings."""

        if self.worker.poll_interval_seconds <= 0:
            raise ValueError("RALPH_WORKER_POLL_INTERVAL_SECONDS must be > 0.")
        if self.worker.graceful_shutdown_seconds < 0:
            raise ValueError("RALPH_WORKER_GRACEFUL_SHUTDOWN_SECONDS must be >= 0.")
        if self.worker.default_max_iterations <= 0:
            raise ValueError("RALPH_DEFAULT_MAX_ITERATIONS must be > 0.")
        if self.docker.cpu_limit <= 0:
            raise ValueError("DOCKER_CPU_LIMIT must be > 0.")
        if self.docker.stop_timeout_seconds < 0:
            raise ValueError("DOCKER_STOP_TIMEOUT_SECONDS must be >= 0.")
        parse_memory_limit(self.docker.memory_limit)
        _validate_docker_host(self.docker.host)
        if not isinstance(self.auth.mode, AuthMode):
            raise ValueError(f"Unsupported CLAUDE_AUTH_MODE: {self.auth.mode!r}")


def parse_memory_limit(value: str) -> int:
    """Convert a Docker-style memory string such as ``4g`` or ``512m`` to bytes."""

    match = _MEMORY_PATTERN.fullmatch(value.strip())
    if match is None:
        raise ValueError(f"Invalid DOCKER_MEMORY_LIMIT: {value!r}. Expected e.g. '4g' or '512m'.")
    amount = float(match.group(1))
    size = int(amount * _MEMORY_UNITS[match.group(2).lower()])
    if size <= 0:
        raise ValueError(f"DOCKER_MEMORY_LIMIT must be > 0: {value!r}")
    return size


def _parse_auth_mode(value: str) -> AuthMode:
    normalized = value.strip().lower()
    try:
        return AuthMode(normalized)
    except ValueError as error:
        supported = ", ".join(mode.value for mode in AuthMode)
        raise ValueError(
            f"Unsupported CLAUDE_AUTH_MODE: {value!r}. Expected one of: {supported}.",
        ) from error


def _validate_docker_host(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme == "unix" and parsed.path:
        return
    if parsed.scheme in {"tcp", "http", "https"} and parsed.netloc:
        return
    raise ValueError(
        f"Invalid DOCKER_HOST: {value!r}. Expected unix:///path or tcp://host:port.",
    )
