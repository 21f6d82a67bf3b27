from __future__ import annotations

import pytest
from conftest import FakeContainer, FakeDockerClient, FakeRunner
from docker.errors import APIError, DockerException

from stackpilot.errors import ContainerRuntimeError
from stackpilot.runtime.docker import ContainerInfo, DockerRuntime


def test_compose_commands_use_deploy_root() -> None:
    runner = FakeRunner()
    runtime = DockerRuntime("/srv/app", ["docker-compose.yml"], runner=runner, client=FakeDockerClient())

    runtime.compose_restart("docker-compose.yml", ("backend",))

    assert runner.calls == [
        ["docker", "compose", "-f", "/srv/app/docker-compose.yml", "restart", "backend"]
    ]
    assert runner.kwargs[0]["cwd"] == "/srv/app"


def test_list_containers_reads_health_from_attrs() -> None:
    client = FakeDockerClient([FakeContainer("backend", health="healthy"), FakeContainer("grafana")])

    containers = DockerRuntime("/srv/app", client=client).list_containers()

    assert [(c.name, c.health, c.running) for c in containers] == [
        ("backend", "healthy", True),
        ("grafana", None, True),
    ]
    assert containers[0].image == "backend:latest"


@pytest.mark.parametrize(
    "kind, call, filters",
    [
        ("container", "containers.prune", None),
        ("image", "images.prune", {"dangling": False}),
        ("volume", "volumes.prune", None),
        ("network", "networks.prune", None),
    ],
)
def test_prune_only_unused(kind: str, call: str, filters) -> None:
    client = FakeDockerClient()

    reclaimed = DockerRuntime("/srv/app", client=client).prune(kind)

    assert client.calls == [(call, {"filters": filters})]
    assert reclaimed["SpaceReclaimed"] == 1024


def test_prune_rejects_unknown_kind() -> None:
    with pytest.raises(ValueError):
        DockerRuntime("/srv/app", client=FakeDockerClient()).prune("system")


def test_backup_volume_mounts_read_only() -> None:
    client = FakeDockerClient()

    DockerRuntime("/srv/app", client=client).backup_volume("db_data", "/backups", "db.tar.gz.partial")

    name, kwargs = client.calls[0]
    assert name == "containers.run"
    assert kwargs["image"] == "alpine"
    assert kwargs["volumes"]["db_data"] == {"bind": "/source", "mode": "ro"}
    assert kwargs["volumes"]["/backups"] == {"bind": "/backup", "mode": "rw"}
    assert kwargs["command"][-4:] == ["/backup/db.tar.gz.partial", "-C", "/source", "."]
    assert kwargs["remove"] is True


def test_restart_unknown_container_is_runtime_error() -> None:
    runtime = DockerRuntime("/srv/app", client=FakeDockerClient([FakeContainer("grafana")]))

    with pytest.raises(ContainerRuntimeError, match="restart ghost"):
        runtime.restart_container("ghost")


@pytest.mark.parametrize(
    "error",
    [APIError("500 Server Error"), ConnectionError("Connection aborted"), DockerException("socket gone")],
)
def test_engine_failures_become_runtime_errors(error: Exception) -> None:
    runtime = DockerRuntime("/srv/app", client=FakeDockerClient(error=error))

    with pytest.raises(ContainerRuntimeError) as excinfo:
        runtime.engine_info()

    assert excinfo.value.operation == "engine info"


def test_unreachable_engine_on_connect(monkeypatch: pytest.MonkeyPatch) -> None:
    def refuse(**kwargs):
        raise DockerException("Error while fetching server API version")

    monkeypatch.setattr("stackpilot.runtime.docker.docker.from_env", refuse)

    with pytest.raises(ContainerRuntimeError, match="connect to Docker engine"):
        DockerRuntime("/srv/app").list_containers()


def test_log_commands_follow() -> None:
    runtime = DockerRuntime("/srv/app", client=FakeDockerClient())

    assert runtime.compose_log_command("docker-compose.yml", "backend")[-3:] == ["logs", "-f", "backend"]
    assert DockerRuntime.container_log_command("grafana") == ["docker", "logs", "-f", "grafana"]


def test_container_info_from_sparse_attrs() -> None:
    info = ContainerInfo.from_attrs("db", {"State": {"Status": "exited"}})

    assert info.running is False
    assert info.health is None
    assert info.image == ""
