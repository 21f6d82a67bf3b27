"""Provisioning-to-operations handoff pipeline."""

from stackpilot.provisioning.ansible import AnsibleApplier
from stackpilot.provisioning.bridge import bridge, load_descriptor, write_inventory
from stackpilot.provisioning.convergence import (
    ConvergenceWaiter,
    SshReachabilityProbe,
    WaitState,
    check_connectivity,
)
from stackpilot.provisioning.pipeline import StageOrchestrator, check_prerequisites, summarize
from stackpilot.provisioning.terraform import TerraformProvisioner

__all__ = [
    "AnsibleApplier",
    "ConvergenceWaiter",
    "SshReachabilityProbe",
    "StageOrchestrator",
    "TerraformProvisioner",
    "WaitState",
    "bridge",
    "check_connectivity",
    "check_prerequisites",
    "load_descriptor",
    "summarize",
    "write_inventory",
]
