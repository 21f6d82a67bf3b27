"""Idempotent maintenance actions: update, backup, cleanup, restart, log tail."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from datetime import datetime

from stackpilot.config import MaintenanceSettings
from stackpilot.domain.models import ActionOutcome, ActionState
from stackpilot.errors import CommandError, ContainerRuntimeError
from stackpilot.maintenance.backup import BackupError, BackupManager
from stackpilot.maintenance.logs import LogTail
from stackpilot.maintenance.registry import ActionRegistry
from stackpilot.runtime.docker import DockerRuntime
from stackpilot.utils.process import CommandResult, Runner, run_command

logger = logging.getLogger(__name__)

_APT_UPDATE_STEPS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("apt update", ("sudo", "-n", "apt-get", "update")),
    ("apt upgrade", ("sudo", "-n", "apt-get", "upgrade", "-y")),
    ("apt autoremove", ("sudo", "-n", "apt-get", "autoremove", "-y")),
    ("apt autoclean", ("sudo", "-n", "apt-get", "autoclean")),
)

_PRUNE_KINDS = ("container", "image", "volume", "network")

ALL_LOGS = "all"
SYSTEM_LOGS = "system"


class UnknownTargetError(ValueError):
    """A log source name that is not configured."""


class MaintenanceActions:
    def __init__(
        self,
        settings: MaintenanceSettings,
        runtime: DockerRuntime,
        backups: BackupManager,
        registry: ActionRegistry | None = None,
        runner: Runner = run_command,
        log_tail_factory: Callable[[Sequence[str]], LogTail] = LogTail,
    ) -> None:
        self._settings = settings
        self._runtime = runtime
        self._backups = backups
        self._registry = registry or ActionRegistry(lock_dir=str(backups.root / ".locks"))
        self._run = runner
        self._log_tail_factory = log_tail_factory

    @property
    def registry(self) -> ActionRegistry:
        return self._registry

    def _step(self, outcome: ActionOutcome, name: str, cmd: Sequence[str]) -> bool:
        """Run one sub-step; failures are recorded, never raised."""
        try:
            result = self._run(list(cmd), timeout=self._settings.command_timeout_seconds)
        except CommandError as exc:
            outcome.record(name, False, str(exc))
            logger.warning("%s: %s failed: %s", outcome.action, name, exc)
            return False
        if result.ok:
            outcome.record(name, True)
            return True
        outcome.record(name, False, result.error_text())
        logger.warning("%s: %s failed: %s", outcome.action, name, result.error_text())
        return False

    def _runtime_step(self, outcome: ActionOutcome, name: str, call: Callable[[], object]) -> bool:
        """Compose calls return a CommandResult; SDK calls raise ContainerRuntimeError."""
        try:
            result = call()
        except (CommandError, ContainerRuntimeError) as exc:
            outcome.record(name, False, str(exc))
            logger.warning("%s: %s failed: %s", outcome.action, name, exc)
            return False
        if isinstance(result, CommandResult) and not result.ok:
            outcome.record(name, False, result.error_text())
            logger.warning("%s: %s failed: %s", outcome.action, name, result.error_text())
            return False
        if isinstance(result, dict) and "SpaceReclaimed" in result:
            outcome.record(name, True, f"reclaimed {result['SpaceReclaimed'] or 0} bytes")
        else:
            outcome.record(name, True)
        return True

    def update(self) -> ActionOutcome:
        with self._registry.guard("update", "host") as outcome:
            for name, cmd in _APT_UPDATE_STEPS:
                self._step(outcome, name, cmd)
            for compose_file in self._runtime.compose_files:
                self._runtime_step(
                    outcome,
                    f"pull images ({compose_file})",
                    lambda f=compose_file: self._runtime.compose_pull(f),
                )
        return outcome

    def backup(self, now: datetime | None = None) -> ActionOutcome:
        target = str(self._backups.root)
        with self._registry.guard("backup", target, cross_process=True) as outcome:
            for tree in self._settings.trees:
                self._backup_one(outcome, f"tree {tree}", lambda t=tree: self._backups.backup_tree(t, now))
            for volume in self._settings.volumes:
                self._backup_one(
                    outcome, f"volume {volume}", lambda v=volume: self._backups.backup_volume(v, now)
                )
            self._retention_step(outcome, now)
        return outcome

    def _backup_one(self, outcome: ActionOutcome, name: str, call: Callable) -> None:
        try:
            artifact = call()
        except (BackupError, CommandError) as exc:
            outcome.record(name, False, str(exc))
            logger.warning("backup: %s failed: %s", name, exc)
            return
        outcome.artifacts.append(artifact)
        outcome.record(name, True, artifact.path)

    def _retention_step(
        self, outcome: ActionOutcome, now: datetime | None, horizon_days: int | None = None
    ) -> None:
        horizon = self._settings.retention_days if horizon_days is None else horizon_days
        try:
            result = self._backups.enforce_retention(horizon, now)
        except OSError as exc:
            outcome.record("retention", False, str(exc))
            return
        outcome.record(
            "retention",
            True,
            f"deleted {len(result.deleted)}, kept {len(result.retained)} "
            f"(horizon {horizon} days)",
        )

    def enforce_retention(
        self, horizon_days: int | None = None, now: datetime | None = None
    ) -> ActionOutcome:
        """Retention pass only; shares the backup lock so it never overlaps a backup."""
        target = str(self._backups.root)
        with self._registry.guard("backup", target, cross_process=True) as outcome:
            self._retention_step(outcome, now, horizon_days)
        return outcome

    def cleanup(self) -> ActionOutcome:
        """Reclaim resources nothing uses; Docker's prune never touches in-use objects."""
        with self._registry.guard("cleanup", "host") as outcome:
            for kind in _PRUNE_KINDS:
                self._runtime_step(outcome, f"prune {kind}s", lambda k=kind: self._runtime.prune(k))
            self._step(
                outcome,
                "vacuum journal",
                ("sudo", "-n", "journalctl", f"--vacuum-time={self._settings.journal_vacuum_days}d"),
            )
            self._step(outcome, "apt clean", ("sudo", "-n", "apt-get", "clean"))
            self._step(outcome, "apt autoremove", ("sudo", "-n", "apt-get", "autoremove", "-y"))
        return outcome

    def restart_targets(self) -> list[str]:
        return [
            *self._settings.restart_groups,
            *self._settings.compose_services,
            *self._settings.standalone_containers,
        ]

    def restart(self, target: str) -> ActionOutcome:
        """Restart one group or one service; nothing else is touched."""
        groups = self._settings.restart_groups
        if (
            target not in groups
            and target not in self._settings.compose_services
            and target not in self._settings.standalone_containers
        ):
            outcome = ActionOutcome(action="restart", target=target, state=ActionState.FAILED)
            outcome.record(
                "resolve target",
                False,
                f"unknown target; choose from: {', '.join(self.restart_targets())}",
            )
            logger.warning("restart: unknown target %s", target)
            return outcome
        with self._registry.guard("restart", target) as outcome:
            if target in groups:
                compose_file = groups[target]
                self._runtime_step(
                    outcome,
                    f"restart group {target}",
                    lambda: self._runtime.compose_restart(compose_file),
                )
            elif target in self._settings.compose_services:
                compose_file = self._runtime.compose_files[0]
                self._runtime_step(
                    outcome,
                    f"restart service {target}",
                    lambda: self._runtime.compose_restart(compose_file, (target,)),
                )
            else:
                self._runtime_step(
                    outcome,
                    f"restart container {target}",
                    lambda: self._runtime.restart_container(target),
                )
        return outcome

    def log_sources(self) -> list[str]:
        return [
            ALL_LOGS,
            *self._settings.compose_services,
            *self._settings.standalone_containers,
            SYSTEM_LOGS,
        ]

    def log_command(self, source: str) -> list[str]:
        if source == ALL_LOGS:
            return self._runtime.compose_log_command(self._runtime.compose_files[0])
        if source == SYSTEM_LOGS:
            return ["sudo", "journalctl", "-f"]
        if source in self._settings.compose_services:
            return self._runtime.compose_log_command(self._runtime.compose_files[0], source)
        if source in self._settings.standalone_containers:
            return self._runtime.container_log_command(source)
        raise UnknownTargetError(
            f"Unknown log source '{source}'; choose from: {', '.join(self.log_sources())}"
        )

    def tail_logs(
        self,
        source: str,
        sink: Callable[[str], None],
        cancel: threading.Event | None = None,
    ) -> ActionOutcome:
        cmd = self.log_command(source)
        with self._registry.guard("logs", source) as outcome:
            with self._log_tail_factory(cmd) as tail:
                try:
                    reason = tail.follow(sink, cancel)
                except KeyboardInterrupt:
                    reason = "cancelled"
            outcome.record(f"follow {source}", True, reason)
        return outcome
