from __future__ import annotations

import fcntl
import os
from pathlib import Path

import pytest

from stackpilot.domain.models import ActionState
from stackpilot.errors import ActionAlreadyRunning
from stackpilot.maintenance.registry import ActionRegistry, lock_name


def test_guard_transitions_to_completed() -> None:
    registry = ActionRegistry()

    with registry.guard("backup", "/backups") as outcome:
        assert registry.state("backup", "/backups") is ActionState.RUNNING
        outcome.record("tree", True)

    assert outcome.state is ActionState.COMPLETED
    assert registry.state("backup", "/backups") is ActionState.COMPLETED


def test_recorded_failure_marks_failed() -> None:
    registry = ActionRegistry()

    with registry.guard("update", "host") as outcome:
        outcome.record("apt update", False, "network unreachable")
        outcome.record("pull images", True)

    assert outcome.state is ActionState.FAILED
    assert [s.name for s in outcome.failures] == ["apt update"]


def test_second_entry_for_same_target_is_rejected() -> None:
    registry = ActionRegistry()

    with registry.guard("restart", "backend"):
        with pytest.raises(ActionAlreadyRunning):
            with registry.guard("restart", "backend"):
                pass
        with registry.guard("restart", "frontend") as other:
            pass

    assert other.state is ActionState.COMPLETED
    assert registry.state("restart", "backend") is ActionState.COMPLETED


def test_exception_marks_failed_and_releases() -> None:
    registry = ActionRegistry()

    with pytest.raises(RuntimeError):
        with registry.guard("cleanup", "host"):
            raise RuntimeError("boom")

    assert registry.state("cleanup", "host") is ActionState.FAILED
    with registry.guard("cleanup", "host") as outcome:
        pass
    assert outcome.state is ActionState.COMPLETED


def test_cross_process_lock_held_elsewhere(tmp_path: Path) -> None:
    registry = ActionRegistry(lock_dir=str(tmp_path))
    lock_path = tmp_path / lock_name("backup", "/backups")
    fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o600)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        with pytest.raises(ActionAlreadyRunning):
            with registry.guard("backup", "/backups", cross_process=True):
                pass
    finally:
        os.close(fd)

    assert registry.state("backup", "/backups") is ActionState.IDLE
    with registry.guard("backup", "/backups", cross_process=True) as outcome:
        pass
    assert outcome.state is ActionState.COMPLETED


def test_lock_name_is_filesystem_safe() -> None:
    assert lock_name("backup", "/home/ops/backups") == "backup-_home_ops_backups.lock"
