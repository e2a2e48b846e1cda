from __future__ import annotations

from pathlib import Path

import allure
import pytest

from ralph_dispatch.config import (
    AuthMode,
    DockerSettings,
    Settings,
    WorkerSettings,
    parse_memory_limit,
)

pytestmark = [
    allure.epic("Worker"),
    allure.feature("Configuration"),
]


def test_from_env_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "RALPH_DB_PATH",
        "RALPH_WORKER_POLL_INTERVAL_SECONDS",
        "DOCKER_HOST",
        "DOCKER_MEMORY_LIMIT",
        "DOCKER_CPU_LIMIT",
        "DOCKER_NETWORK_MODE",
        "CLAUDE_AUTH_MODE",
        "CLAUDE_AUTH_DIR",
        "ANTHROPIC_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.db_path == Path("data/ralph.db")
    assert settings.worker.poll_interval_seconds == 5.0
    assert settings.docker.host == "unix:///var/run/docker.sock"
    assert settings.docker.memory_bytes == 4 * 1024**3
    assert settings.docker.nano_cpus == 2_000_000_000
    assert settings.docker.network_mode == "none"
    assert settings.auth.mode is AuthMode.API_KEY
    assert settings.auth.api_key is None
    assert settings.auth.auth_dir == Path("~/.claude-hub/auth").expanduser()


def test_from_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("RALPH_WORKER_POLL_INTERVAL_SECONDS", "0.5")
    monkeypatch.setenv("RALPH_REPOS_ROOT", str(tmp_path))
    monkeypatch.setenv("DOCKER_CPU_LIMIT", "1.5")
    monkeypatch.setenv("CLAUDE_AUTH_MODE", "OAuth")
    monkeypatch.setenv("CLAUDE_AUTH_DIR", str(tmp_path / "auth"))

    settings = Settings.from_env(db_path=tmp_path / "custom.db")

    assert settings.db_path == tmp_path / "custom.db"
    assert settings.worker.poll_interval_seconds == 0.5
    assert settings.worker.repos_root == tmp_path
    assert settings.docker.nano_cpus == 1_500_000_000
    assert settings.auth.mode is AuthMode.OAUTH
    assert settings.auth.auth_dir == tmp_path / "auth"


def test_from_env_rejects_unknown_auth_mode(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CLAUDE_AUTH_MODE", "token")

    with pytest.raises(ValueError, match="Unsupported CLAUDE_AUTH_MODE"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("4g", 4 * 1024**3),
        ("512m", 512 * 1024**2),
        ("1024k", 1024 * 1024),
        ("2048", 2048),
        ("1.5G", int(1.5 * 1024**3)),
        ("256mb", 256 * 1024**2),
    ],
)
def test_parse_memory_limit(value: str, expected: int) -> None:
    assert parse_memory_limit(value) == expected


@pytest.mark.parametrize("value", ["", "four gigs", "4x", "0"])
def test_parse_memory_limit_rejects_garbage(value: str) -> None:
    with pytest.raises(ValueError, match="DOCKER_MEMORY_LIMIT"):
        parse_memory_limit(value)


def test_validate_for_worker_accepts_defaults() -> None:
    Settings().validate_for_worker()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(worker=WorkerSettings(poll_interval_seconds=0)), "POLL_INTERVAL"),
        (Settings(docker=DockerSettings(cpu_limit=0)), "DOCKER_CPU_LIMIT"),
        (Settings(docker=DockerSettings(memory_limit="lots")), "DOCKER_MEMORY_LIMIT"),
        (Settings(docker=DockerSettings(host="ssh://box")), "DOCKER_HOST"),
    ],
)
def test_validate_for_worker_rejects(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate_for_worker()
