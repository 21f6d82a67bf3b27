from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from docker.errors import NotFound

from stackpilot import config
from stackpilot.utils.masking import SECRETS
from stackpilot.utils.process import CommandResult


@pytest.fixture(autouse=True)
def _reset_global_state() -> Iterator[None]:
    SECRETS.clear()
    config._load_settings_cached.cache_clear()
    yield
    SECRETS.clear()
    config._load_settings_cached.cache_clear()


class FakeRunner:
    """Records every command and answers from a prefix table."""

    def __init__(self, responses: dict[tuple[str, ...], CommandResult | Exception] | None = None) -> None:
        self.calls: list[list[str]] = []
        self.kwargs: list[dict] = []
        self.responses = responses or {}

    def __call__(self, cmd, **kwargs) -> CommandResult:
        cmd = list(cmd)
        self.calls.append(cmd)
        self.kwargs.append(kwargs)
        best: tuple[str, ...] | None = None
        for prefix in self.responses:
            if tuple(cmd[: len(prefix)]) == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        if best is None:
            return CommandResult(tuple(cmd), 0, "", "")
        response = self.responses[best]
        if isinstance(response, Exception):
            raise response
        return CommandResult(tuple(cmd), response.returncode, response.stdout, response.stderr)

    def commands_starting(self, *prefix: str) -> list[list[str]]:
        return [cmd for cmd in self.calls if tuple(cmd[: len(prefix)]) == prefix]


class FakeContainer:
    def __init__(self, name: str, state: str = "running", health: str | None = None) -> None:
        self.name = name
        status: dict = {"Status": state, "StartedAt": "2024-06-01T10:00:00Z"}
        if health is not None:
            status["Health"] = {"Status": health}
        self.attrs = {"Config": {"Image": f"{name}:latest"}, "State": status}
        self.restarts = 0

    def restart(self, **kwargs) -> None:
        self.restarts += 1


class _FakeCollection:
    def __init__(self, client: "FakeDockerClient", kind: str) -> None:
        self._client = client
        self._kind = kind

    def prune(self, filters=None) -> dict:
        self._client.record(f"{self._kind}.prune", filters=filters)
        return {"SpaceReclaimed": 1024}


class _FakeContainers(_FakeCollection):
    def list(self, **kwargs) -> list[FakeContainer]:
        self._client.record("containers.list")
        return list(self._client.containers_by_name.values())

    def get(self, name: str) -> FakeContainer:
        self._client.record("containers.get", name=name)
        if name not in self._client.containers_by_name:
            raise NotFound(f"No such container: {name}")
        return self._client.containers_by_name[name]

    def run(self, image, command, **kwargs) -> None:
        self._client.record("containers.run", image=image, command=command, **kwargs)
        if self._client.on_run is not None:
            self._client.on_run(image, command, kwargs)


class FakeDockerClient:
    """Stands in for ``docker.DockerClient``; ``error`` makes every call raise it."""

    def __init__(
        self,
        containers: list[FakeContainer] | None = None,
        info: dict | None = None,
        error: Exception | None = None,
        on_run=None,
    ) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.containers_by_name = {c.name: c for c in containers or []}
        self.info_data = info if info is not None else {"ServerVersion": "24.0", "Containers": len(self.containers_by_name)}
        self.error = error
        self.on_run = on_run
        self.containers = _FakeContainers(self, "containers")
        self.images = _FakeCollection(self, "images")
        self.volumes = _FakeCollection(self, "volumes")
        self.networks = _FakeCollection(self, "networks")

    def record(self, name: str, /, **kwargs) -> None:
        self.calls.append((name, kwargs))
        if self.error is not None:
            raise self.error

    def info(self) -> dict:
        self.record("info")
        return self.info_data

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]


def file_mode(path) -> int:
    return Path(path).stat().st_mode & 0o777


def result(returncode: int = 0, stdout: str = "", stderr: str = "") -> CommandResult:
    return CommandResult((), returncode, stdout, stderr)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()

