"""Docker Engine API client over httpx."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any
from urllib.parse import urlparse

import httpx

from ralph_dispatch.executor.base import ContainerRuntimeError, ContainerSpec, LogLine
from ralph_dispatch.executor.demux import iter_log_lines

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
_UNIX_BASE_URL = "http://docker"


class DockerRuntime:
    """Drive containers through the Docker Engine HTTP API."""

    def __init__(
        self,
        host: str = "unix:///var/run/docker.sock",
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._timeout = httpx.Timeout(timeout_seconds, connect=10.0)
        base_url, socket_path = _resolve_host(host)
        if transport is None:
            transport = httpx.HTTPTransport(uds=socket_path)
        self._client = httpx.Client(base_url=base_url, timeout=self._timeout, transport=transport)

    def create(self, spec: ContainerSpec) -> str:
        host_config: dict[str, Any] = {"Binds": list(spec.binds), "AutoRemove": False}
        if spec.memory_bytes is not None:
            host_config["Memory"] = spec.memory_bytes
        if spec.nano_cpus is not None:
            host_config["NanoCpus"] = spec.nano_cpus
        if spec.network_mode is not None:
            host_config["NetworkMode"] = spec.network_mode
        body = {
            "Image": spec.image,
            "Env": [f"{key}={value}" for key, value in spec.env.items()],
            "WorkingDir": spec.working_dir,
            "Labels": dict(spec.labels),
            "Tty": False,
            "AttachStdout": True,
            "AttachStderr": True,
            "HostConfig": host_config,
        }
        params = {"name": spec.name} if spec.name else None
        response = self._request("POST", "/containers/create", params=params, json=body)
        _raise_for_status(response, action=f"create container from {spec.image}")
        container_id = str(response.json()["Id"])
        for warning in response.json().get("Warnings") or []:
            logger.warning("Docker warning for %s: %s", container_id[:12], warning)
        return container_id

    def start(self, container_id: str) -> None:
        response = self._request("POST", f"/containers/{container_id}/start")
        if response.status_code == 304:  # noqa: PLR2004
            return
        _raise_for_status(response, action=f"start container {container_id[:12]}")

    def stream_logs(self, container_id: str) -> Iterator[LogLine]:
        params = {"follow": "1", "stdout": "1", "stderr": "1"}
        try:
            with self._client.stream(
                "GET",
                f"/containers/{container_id}/logs",
                params=params,
                timeout=httpx.Timeout(self._timeout.connect, read=None),
            ) as response:
                if response.is_error:
                    response.read()
                    _raise_for_status(response, action=f"attach logs of {container_id[:12]}")
                yield from iter_log_lines(response.iter_bytes())
        except httpx.HTTPError as error:
            raise ContainerRuntimeError(
                f"Log stream of {container_id[:12]} failed: {error}",
            ) from error

    def wait(self, container_id: str) -> int:
        response = self._request(
            "POST",
            f"/containers/{container_id}/wait",
            timeout=httpx.Timeout(self._timeout.connect, read=None),
        )
        _raise_for_status(response, action=f"wait for container {container_id[:12]}")
        payload = response.json()
        error = payload.get("Error")
        if error and error.get("Message"):
            logger.warning("Docker wait on %s reported: %s", container_id[:12], error["Message"])
        return int(payload["StatusCode"])

    def stop(self, container_id: str, *, timeout_seconds: int) -> None:
        response = self._request(
            "POST",
            f"/containers/{container_id}/stop",
            params={"t": str(timeout_seconds)},
            timeout=httpx.Timeout(self._timeout.connect, read=timeout_seconds + 30.0),
        )
        if response.status_code in {304, 404}:
            logger.debug("Container %s already stopped or gone", container_id[:12])
            return
        _raise_for_status(response, action=f"stop container {container_id[:12]}")

    def remove(self, container_id: str) -> None:
        response = self._request(
            "DELETE",
            f"/containers/{container_id}",
            params={"force": "true"},
        )
        if response.status_code in {404, 409}:
            logger.debug("Container %s already removed or being removed", container_id[:12])
            return
        _raise_for_status(response, action=f"remove container {container_id[:12]}")

    def ping(self) -> bool:
        """Return True when the daemon answers ``/_ping``."""

        try:
            response = self._client.get("/_ping")
        except httpx.HTTPError as error:
            logger.warning("Docker ping failed: %s", error)
            return False
        return response.is_success

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.HTTPError as error:
            raise ContainerRuntimeError(f"Docker request {method} {url} failed: {error}") from error

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> DockerRuntime:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _resolve_host(host: str) -> tuple[str, str | None]:
    """Return the base URL and, for unix sockets, the socket path."""

    parsed = urlparse(host)
    if parsed.scheme == "unix":
        return _UNIX_BASE_URL, parsed.path
    if parsed.scheme in {"tcp", "http"}:
        return f"http://{parsed.netloc}", None
    if parsed.scheme == "https":
        return f"https://{parsed.netloc}", None
    raise ValueError(f"Unsupported DOCKER_HOST: {host!r}")


def _raise_for_status(response: httpx.Response, *, action: str) -> None:
    if response.is_success:
        return
    message = response.text
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("message"):
        message = str(payload["message"])
    raise ContainerRuntimeError(
        f"Failed to {action}: HTTP {response.status_code}: {message.strip()}",
        status_code=response.status_code,
    )
