"""Domain objects for the provisioning-to-operations pipeline."""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class ProvisionSpec(BaseModel):
    """Declarative input handed to the provisioner."""

    github_repo: str
    domain_name: str
    email: str = Field(default="")
    location: str = Field(default="East US")
    vm_size: str = Field(default="Standard_B2s")
    admin_username: str = Field(default="azureuser")
    extra_vars: dict[str, str] = Field(default_factory=dict)

    def terraform_vars(self) -> dict[str, str]:
        values = {
            "github_repo": self.github_repo,
            "domain_name": self.domain_name,
            "email": self.email or f"admin@{self.domain_name}",
            "location": self.location,
            "vm_size": self.vm_size,
            "admin_username": self.admin_username,
        }
        values.update(self.extra_vars)
        return values


@dataclass(frozen=True)
class ProvisionResult:
    address: str
    admin_user: str
    admin_secret: str
    ready: bool
    outputs: Mapping[str, str] = field(default_factory=dict)

    def __repr__(self) -> str:
        return (
            f"ProvisionResult(address={self.address!r}, admin_user={self.admin_user!r}, "
            f"admin_secret='***', ready={self.ready})"
        )


@dataclass(frozen=True)
class ConnectionDescriptor:
    address: str
    admin_user: str
    admin_secret: str
    derived_ssh_command: str

    def __repr__(self) -> str:
        return (
            f"ConnectionDescriptor(address={self.address!r}, admin_user={self.admin_user!r}, "
            f"admin_secret='***', derived_ssh_command={self.derived_ssh_command!r})"
        )


class Expectation(str, enum.Enum):
    STATUS_2XX = "status_2xx"
    READY_PATH = "custom_path_ready"


@dataclass(frozen=True)
class EndpointSpec:
    name: str
    url: str
    expected: Expectation = Expectation.STATUS_2XX
    ready_path: str = ""

    @property
    def probe_url(self) -> str:
        if self.expected is Expectation.READY_PATH and self.ready_path:
            return self.url.rstrip("/") + "/" + self.ready_path.lstrip("/")
        return self.url

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "EndpointSpec":
        ready_path = str(data.get("ready_path") or data.get("readiness_path") or "")
        expected = data.get("expected")
        if expected is None:
            expected = Expectation.READY_PATH if ready_path else Expectation.STATUS_2XX
        return cls(
            name=str(data["name"]),
            url=str(data.get("url") or ""),
            expected=Expectation(expected),
            ready_path=ready_path,
        )


class HealthState(str, enum.Enum):
    UP = "up"
    DEGRADED = "degraded"
    DOWN = "down"
    NO_CHECK_CONFIGURED = "no-check-configured"


@dataclass(frozen=True)
class HealthVerdict:
    endpoint_name: str
    state: HealthState
    detail: str = ""
    category: str = "endpoint"
    latency_ms: float | None = None


@dataclass(frozen=True)
class HealthReport:
    generated_at: datetime
    verdicts: tuple[HealthVerdict, ...]
    report_id: str = field(default_factory=lambda: uuid4().hex)
    extra_sections: tuple[tuple[str, str], ...] = ()

    def down(self) -> list[HealthVerdict]:
        return [v for v in self.verdicts if v.state is HealthState.DOWN]

    def is_healthy(self, treat_no_check_as_healthy: bool = True) -> bool:
        for verdict in self.verdicts:
            if verdict.state is HealthState.DOWN:
                return False
            if verdict.state is HealthState.NO_CHECK_CONFIGURED and not treat_no_check_as_healthy:
                return False
        return True

    def counts(self) -> dict[HealthState, int]:
        totals = {state: 0 for state in HealthState}
        for verdict in self.verdicts:
            totals[verdict.state] += 1
        return totals

    def render_text(self, title: str = "Server Health Report") -> str:
        lines = [
            title,
            f"Generated: {self.generated_at.isoformat()}",
            f"Report ID: {self.report_id}",
            "=" * 40,
        ]
        current = None
        for verdict in self.verdicts:
            if verdict.category != current:
                current = verdict.category
                lines.append("")
                lines.append(f"=== {current.title()} ===")
            line = f"[{verdict.state.value.upper()}] {verdict.endpoint_name}"
            if verdict.detail:
                line += f": {verdict.detail}"
            lines.append(line)
        for heading, body in self.extra_sections:
            lines.append("")
            lines.append(f"=== {heading} ===")
            lines.append(body.rstrip())
        counts = self.counts()
        lines.append("")
        lines.append(
            "Summary: "
            + ", ".join(f"{state.value}={counts[state]}" for state in HealthState)
        )
        return "\n".join(lines) + "\n"


@dataclass(frozen=True)
class BackupArtifact:
    path: str
    created_at: datetime
    source: str

    def age(self, now: datetime) -> timedelta:
        return now - self.created_at


class Stage(str, enum.Enum):
    PROVISION = "provision"
    BRIDGE = "bridge"
    CONVERGENCE = "convergence"
    CONFIGURATION = "configuration"
    VERIFICATION = "verification"


@dataclass(frozen=True)
class PipelineResult:
    succeeded: bool
    completed_stage: Stage | None
    error: Exception | None = None
    descriptor: ConnectionDescriptor | None = None
    report: HealthReport | None = None

    @property
    def failed_stage(self) -> Stage | None:
        if self.succeeded:
            return None
        order = list(Stage)
        if self.completed_stage is None:
            return order[0]
        index = order.index(self.completed_stage)
        return order[index + 1] if index + 1 < len(order) else None


@dataclass(frozen=True)
class HostApplyResult:
    host: str
    ok: bool
    changed: int = 0
    failures: int = 0
    unreachable: int = 0


@dataclass(frozen=True)
class ApplyReport:
    hosts: tuple[HostApplyResult, ...]
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and bool(self.hosts) and all(h.ok for h in self.hosts)

    def failed_hosts(self) -> list[str]:
        return [h.host for h in self.hosts if not h.ok]


class ActionState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class SubStepResult:
    name: str
    ok: bool
    detail: str = ""


@dataclass
class ActionOutcome:
    action: str
    target: str
    state: ActionState = ActionState.IDLE
    steps: list[SubStepResult] = field(default_factory=list)
    artifacts: list[BackupArtifact] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state is ActionState.COMPLETED and all(step.ok for step in self.steps)

    @property
    def failures(self) -> list[SubStepResult]:
        return [step for step in self.steps if not step.ok]

    def record(self, name: str, ok: bool, detail: str = "") -> SubStepResult:
        step = SubStepResult(name=name, ok=ok, detail=detail)
        self.steps.append(step)
        return step
