from __future__ import annotations

import pytest
from conftest import FakeContainer, FakeDockerClient
from docker.errors import DockerException

from stackpilot.domain.models import HealthState
from stackpilot.health.containers import classify_container_health, runtime_checks
from stackpilot.runtime.docker import DockerRuntime


@pytest.mark.parametrize(
    "health, running, expected",
    [
        ("healthy", True, HealthState.UP),
        ("starting", True, HealthState.DEGRADED),
        ("unhealthy", True, HealthState.DOWN),
        (None, True, HealthState.NO_CHECK_CONFIGURED),
        (None, False, HealthState.DOWN),
    ],
)
def test_classify_container_health(health, running, expected) -> None:
    assert classify_container_health(health, running) is expected


def test_runtime_checks_distinguishes_missing_health_check() -> None:
    client = FakeDockerClient(
        [FakeContainer("backend", health="healthy"), FakeContainer("grafana")],
        info={"ServerVersion": "24.0", "Containers": 3, "ContainersRunning": 2},
    )

    verdicts = runtime_checks(DockerRuntime("/srv/app", client=client))

    by_name = {v.endpoint_name: v for v in verdicts}
    assert by_name["Docker Engine"].state is HealthState.UP
    assert "2 running / 3 total" in by_name["Docker Engine"].detail
    assert by_name["backend"].state is HealthState.UP
    assert by_name["grafana"].state is HealthState.NO_CHECK_CONFIGURED
    assert "no health check" in by_name["grafana"].detail


def test_runtime_checks_engine_down() -> None:
    client = FakeDockerClient(error=DockerException("Cannot connect to the Docker daemon"))

    verdicts = runtime_checks(DockerRuntime("/srv/app", client=client))

    assert [(v.endpoint_name, v.state) for v in verdicts] == [("Docker Engine", HealthState.DOWN)]
    assert "Cannot connect to the Docker daemon" in verdicts[0].detail


def test_runtime_checks_unreachable_on_connect(monkeypatch: pytest.MonkeyPatch) -> None:
    def refuse(**kwargs):
        raise DockerException("Error while fetching server API version")

    monkeypatch.setattr("stackpilot.runtime.docker.docker.from_env", refuse)

    verdicts = runtime_checks(DockerRuntime("/srv/app"))

    assert [(v.endpoint_name, v.state) for v in verdicts] == [("Docker Engine", HealthState.DOWN)]


def test_listing_failure_marks_engine_down() -> None:
    client = FakeDockerClient([FakeContainer("backend")])
    runtime = DockerRuntime("/srv/app", client=client)

    def time_out(**kwargs):
        raise ConnectionError("read timed out")

    client.containers.list = time_out

    verdicts = runtime_checks(runtime)

    assert len(verdicts) == 1
    assert verdicts[0].state is HealthState.DOWN
    assert "container listing failed" in verdicts[0].detail


def test_unhealthy_container_is_down() -> None:
    client = FakeDockerClient([FakeContainer("db", health="unhealthy")])

    verdicts = runtime_checks(DockerRuntime("/srv/app", client=client))

    assert verdicts[-1].state is HealthState.DOWN
    assert "unhealthy" in verdicts[-1].detail
