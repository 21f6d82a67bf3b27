"""Collaborator interfaces the pipeline depends on."""

from __future__ import annotations

from typing import Protocol

from stackpilot.domain.models import (
    ApplyReport,
    ConnectionDescriptor,
    ProvisionResult,
    ProvisionSpec,
)


class Provisioner(Protocol):
    def provision(self, spec: ProvisionSpec) -> ProvisionResult: ...

    def destroy(self) -> None: ...


class ConfigurationApplier(Protocol):
    def apply(
        self,
        descriptor: ConnectionDescriptor,
        inventory_path: str,
        playbook: str,
    ) -> ApplyReport: ...


class ReachabilityProbe(Protocol):
    def __call__(self, descriptor: ConnectionDescriptor) -> bool: ...
