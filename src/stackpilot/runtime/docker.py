"""Structured calls against the Docker engine and Compose projects.

Engine, container, prune and volume-backup calls go through the Docker SDK.
Compose has no SDK, so pull, restart and log commands shell out to
``docker compose``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

import docker
from docker.errors import DockerException

from stackpilot.errors import ContainerRuntimeError
from stackpilot.utils.process import CommandResult, Runner, run_command

logger = logging.getLogger(__name__)

T = TypeVar("T")

_PRUNE_KINDS = ("container", "image", "volume", "network")


@dataclass(frozen=True)
class ContainerInfo:
    name: str
    image: str
    state: str
    health: str | None = None
    started_at: str = ""

    @property
    def running(self) -> bool:
        return self.state.lower() == "running"

    @classmethod
    def from_attrs(cls, name: str, attrs: dict[str, Any]) -> "ContainerInfo":
        state = attrs.get("State") or {}
        health = state.get("Health") or {}
        return cls(
            name=name,
            image=str((attrs.get("Config") or {}).get("Image", "")),
            state=str(state.get("Status", "")),
            health=str(health["Status"]) if health.get("Status") else None,
            started_at=str(state.get("StartedAt", "")),
        )


class DockerRuntime:
    """Docker SDK client for the engine plus the ``docker compose`` CLI."""

    def __init__(
        self,
        deploy_root: str,
        compose_files: list[str] | None = None,
        timeout: float = 600,
        runner: Runner = run_command,
        compose_command: tuple[str, ...] = ("docker", "compose"),
        client: Any | None = None,
        client_timeout: int = 30,
    ) -> None:
        self._deploy_root = Path(deploy_root)
        self._compose_files = list(compose_files or ["docker-compose.yml"])
        self._timeout = timeout
        self._run = runner
        self._compose = compose_command
        self._client = client
        self._client_timeout = client_timeout

    @property
    def compose_files(self) -> list[str]:
        return list(self._compose_files)

    @property
    def client(self) -> Any:
        if self._client is None:
            try:
                self._client = docker.from_env(timeout=self._client_timeout)
            except DockerException as exc:
                raise ContainerRuntimeError("connect to Docker engine", str(exc)) from exc
        return self._client

    def _call(self, operation: str, call: Callable[[], T]) -> T:
        # requests' transport errors subclass OSError
        try:
            return call()
        except (DockerException, OSError) as exc:
            logger.warning("Docker %s failed: %s", operation, exc)
            raise ContainerRuntimeError(operation, str(exc)) from exc

    def compose(self, compose_file: str, *args: str, timeout: float | None = None) -> CommandResult:
        path = self._deploy_root / compose_file
        return self._run(
            [*self._compose, "-f", str(path), *args],
            timeout=timeout or self._timeout,
            cwd=str(self._deploy_root),
        )

    def engine_info(self) -> dict[str, Any]:
        return self._call("engine info", lambda: self.client.info())

    def list_containers(self) -> list[ContainerInfo]:
        """Running containers with their health status, if one is configured."""
        containers = self._call("list containers", lambda: self.client.containers.list())
        return [ContainerInfo.from_attrs(c.name, c.attrs) for c in containers]

    def compose_pull(self, compose_file: str) -> CommandResult:
        return self.compose(compose_file, "pull")

    def compose_restart(self, compose_file: str, services: tuple[str, ...] = ()) -> CommandResult:
        return self.compose(compose_file, "restart", *services)

    def restart_container(self, name: str) -> None:
        def _restart() -> None:
            self.client.containers.get(name).restart()

        self._call(f"restart {name}", _restart)

    def prune(self, kind: str) -> dict[str, Any]:
        """Prune resources no container references; ``image`` also drops unused tagged images."""
        if kind not in _PRUNE_KINDS:
            raise ValueError(f"Unknown prune target: {kind}")
        client = self.client
        calls: dict[str, Callable[[], dict]] = {
            "container": lambda: client.containers.prune(),
            "image": lambda: client.images.prune(filters={"dangling": False}),
            "volume": lambda: client.volumes.prune(),
            "network": lambda: client.networks.prune(),
        }
        return self._call(f"prune {kind}s", calls[kind]) or {}

    def backup_volume(self, volume: str, dest_dir: str, filename: str, image: str = "alpine") -> None:
        """Archive a volume from a throwaway container that mounts it read-only."""

        def _archive() -> None:
            self.client.containers.run(
                image,
                ["tar", "-czf", f"/backup/{filename}", "-C", "/source", "."],
                volumes={
                    volume: {"bind": "/source", "mode": "ro"},
                    dest_dir: {"bind": "/backup", "mode": "rw"},
                },
                remove=True,
            )

        self._call(f"back up volume {volume}", _archive)

    def compose_log_command(self, compose_file: str, service: str | None = None) -> list[str]:
        cmd = [*self._compose, "-f", str(self._deploy_root / compose_file), "logs", "-f"]
        if service:
            cmd.append(service)
        return cmd

    @staticmethod
    def container_log_command(name: str) -> list[str]:
        return ["docker", "logs", "-f", name]
