"""Container engine and per-container health verdicts."""

from __future__ import annotations

import logging

from stackpilot.domain.models import HealthState, HealthVerdict
from stackpilot.errors import CommandError, ContainerRuntimeError
from stackpilot.runtime.docker import DockerRuntime

logger = logging.getLogger(__name__)

ENGINE = "Docker Engine"

_HEALTH_STATES = {
    "healthy": HealthState.UP,
    "starting": HealthState.DEGRADED,
}


def classify_container_health(health: str | None, running: bool = True) -> HealthState:
    """Absent health check is its own state, never DOWN."""
    if not running:
        return HealthState.DOWN
    if health is None:
        return HealthState.NO_CHECK_CONFIGURED
    return _HEALTH_STATES.get(health.lower(), HealthState.DOWN)


def _engine_down(detail: str) -> HealthVerdict:
    return HealthVerdict(endpoint_name=ENGINE, state=HealthState.DOWN, detail=detail, category="runtime")


def runtime_checks(runtime: DockerRuntime) -> list[HealthVerdict]:
    """Engine verdict first, then one per running container; runtime errors become DOWN verdicts."""
    try:
        info = runtime.engine_info()
    except (ContainerRuntimeError, CommandError) as exc:
        return [_engine_down(f"engine not reachable: {exc}")]
    verdicts = [
        HealthVerdict(
            endpoint_name=ENGINE,
            state=HealthState.UP,
            detail=(
                f"server {info.get('ServerVersion', '?')}, "
                f"{info.get('ContainersRunning', '?')} running / "
                f"{info.get('Containers', '?')} total containers"
            ),
            category="runtime",
        )
    ]
    try:
        containers = runtime.list_containers()
    except (ContainerRuntimeError, CommandError) as exc:
        logger.warning("Container listing failed: %s", exc)
        verdicts[0] = _engine_down(f"container listing failed: {exc}")
        return verdicts
    for container in containers:
        state = classify_container_health(container.health, container.running)
        if state is HealthState.NO_CHECK_CONFIGURED:
            detail = f"{container.state}; no health check configured"
        else:
            detail = f"{container.state}; {container.health or 'not running'}"
        verdicts.append(
            HealthVerdict(
                endpoint_name=container.name,
                state=state,
                detail=detail,
                category="container",
            )
        )
    return verdicts
