from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import patch

from conftest import FakeRunner, result

from stackpilot.config import ResourceThresholds
from stackpilot.domain.models import HealthState
from stackpilot.errors import CommandError
from stackpilot.health.system import (
    disk_checks,
    load_check,
    memory_check,
    performance_snapshot,
    service_checks,
)

THRESHOLDS = ResourceThresholds()
GIB = 1024 ** 3


@patch("stackpilot.health.system.psutil.virtual_memory")
def test_memory_grades(mock_memory) -> None:
    mock_memory.return_value = SimpleNamespace(percent=50.0, used=4 * GIB, total=8 * GIB)
    assert memory_check(THRESHOLDS).state is HealthState.UP

    mock_memory.return_value = SimpleNamespace(percent=90.0, used=7 * GIB, total=8 * GIB)
    assert memory_check(THRESHOLDS).state is HealthState.DEGRADED

    mock_memory.return_value = SimpleNamespace(percent=97.0, used=8 * GIB, total=8 * GIB)
    verdict = memory_check(THRESHOLDS)
    assert verdict.state is HealthState.DOWN
    assert verdict.detail == "97% used (8.0G of 8.0G)"


@patch("stackpilot.health.system.psutil.disk_usage")
@patch("stackpilot.health.system.psutil.disk_partitions")
def test_disk_checks_skip_pseudo_and_duplicate_devices(mock_partitions, mock_usage) -> None:
    mock_partitions.return_value = [
        SimpleNamespace(device="/dev/sda1", mountpoint="/"),
        SimpleNamespace(device="/dev/sda1", mountpoint="/var/lib/docker"),
        SimpleNamespace(device="tmpfs", mountpoint="/run"),
        SimpleNamespace(device="/dev/sdb1", mountpoint="/data"),
    ]
    mock_usage.side_effect = lambda mount: SimpleNamespace(
        percent=85.0 if mount == "/data" else 40.0, used=GIB, total=2 * GIB
    )

    verdicts = disk_checks(THRESHOLDS)

    assert [(v.endpoint_name, v.state) for v in verdicts] == [
        ("Disk /", HealthState.UP),
        ("Disk /data", HealthState.DEGRADED),
    ]


@patch("stackpilot.health.system.psutil.cpu_count", return_value=2)
@patch("stackpilot.health.system.psutil.getloadavg", return_value=(9.0, 4.0, 2.0))
def test_load_is_graded_per_cpu(_mock_load, _mock_cpus) -> None:
    verdict = load_check(THRESHOLDS)
    assert verdict.state is HealthState.DOWN
    assert verdict.detail == "9.00, 4.00, 2.00 on 2 CPUs"


def test_service_checks() -> None:
    runner = FakeRunner(
        {
            ("systemctl", "is-active", "docker"): result(stdout="active\n"),
            ("systemctl", "is-active", "ufw"): result(3, stdout="inactive\n"),
            ("systemctl", "is-active", "ssh"): CommandError("systemctl timed out after 15s"),
        }
    )

    verdicts = service_checks(["docker", "ufw", "ssh"], runner=runner)

    assert [v.state for v in verdicts] == [HealthState.UP, HealthState.DOWN, HealthState.DOWN]
    assert verdicts[1].detail == "not running (inactive)"
    assert all(v.category == "service" for v in verdicts)


@patch("stackpilot.health.system.psutil.net_connections", return_value=[])
@patch("stackpilot.health.system.psutil.process_iter")
def test_performance_snapshot_ranks_processes(mock_iter, _mock_connections) -> None:
    mock_iter.return_value = [
        SimpleNamespace(info={"pid": 1, "name": "idle", "username": "root", "cpu_percent": 0.1, "memory_percent": 0.5}),
        SimpleNamespace(info={"pid": 2, "name": "dockerd", "username": "root", "cpu_percent": 30.0, "memory_percent": 2.0}),
        SimpleNamespace(info={"pid": 3, "name": "postgres", "username": "pg", "cpu_percent": 5.0, "memory_percent": 20.0}),
    ]

    text = performance_snapshot(limit=1)

    cpu_section, memory_section, network = text.split("\n\n")
    assert "dockerd" in cpu_section and "postgres" not in cpu_section
    assert "postgres" in memory_section
    assert "Active connections: 0" in network
