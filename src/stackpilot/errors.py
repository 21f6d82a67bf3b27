"""Classified failures raised by the pipeline and maintenance actions."""

from __future__ import annotations


class StackPilotError(Exception):
    """Base class; ``exit_code`` is what the console returns for this failure."""

    exit_code = 1
    label = "ERROR"


class ProvisionFailure(StackPilotError):
    """Raised when the provisioner errors or reports a not-ready result."""

    exit_code = 10
    label = "PROVISION FAILED"

    def __init__(self, message: str, step: str | None = None) -> None:
        super().__init__(message)
        self.step = step


class IncompleteProvisionError(StackPilotError):
    exit_code = 11
    label = "INCOMPLETE PROVISION"

    def __init__(self, message: str, missing: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.missing = missing


class ConvergenceTimeout(StackPilotError):
    exit_code = 12
    label = "CONVERGENCE TIMEOUT"

    def __init__(self, address: str, timeout: float, attempts: int) -> None:
        super().__init__(
            f"Host {address} did not accept an administrative connection within "
            f"{timeout:g}s ({attempts} probes)"
        )
        self.address = address
        self.timeout = timeout
        self.attempts = attempts


class ConfigurationApplyFailure(StackPilotError):
    exit_code = 13
    label = "CONFIGURATION FAILED"

    def __init__(self, message: str, hosts: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.hosts = hosts


class ProbeFailure(StackPilotError):
    """A single endpoint is down. Recorded as a verdict, never raised out of a report."""

    exit_code = 20
    label = "PROBE FAILED"


class ActionSubStepFailure(StackPilotError):
    exit_code = 21
    label = "ACTION FAILED"

    def __init__(self, action: str, steps: tuple[str, ...]) -> None:
        super().__init__(f"{action}: failed sub-steps: {', '.join(steps)}")
        self.action = action
        self.steps = steps


class ActionAlreadyRunning(StackPilotError):
    exit_code = 22
    label = "ALREADY RUNNING"

    def __init__(self, action: str, target: str) -> None:
        super().__init__(f"{action} is already running for {target}")
        self.action = action
        self.target = target


class CommandError(StackPilotError):
    """An external tool could not be run or did not finish in time."""

    exit_code = 30
    label = "COMMAND FAILED"


class ContainerRuntimeError(StackPilotError):
    """The Docker engine could not be reached or rejected a call."""

    exit_code = 31
    label = "RUNTIME FAILED"

    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(f"{operation}: {reason}")
        self.operation = operation
        self.reason = reason
