"""Read-only local introspection: memory, disk, load, services, processes."""

from __future__ import annotations

import os
import platform
import socket
import time
from collections.abc import Sequence

import psutil

from stackpilot.config import ResourceThresholds
from stackpilot.domain.models import HealthState, HealthVerdict
from stackpilot.errors import CommandError
from stackpilot.utils.process import Runner, run_command


def _grade(value: float, warn: float, critical: float) -> HealthState:
    if value >= critical:
        return HealthState.DOWN
    if value >= warn:
        return HealthState.DEGRADED
    return HealthState.UP


def _gib(value: float) -> str:
    return f"{value / 1024 ** 3:.1f}G"


def memory_check(thresholds: ResourceThresholds) -> HealthVerdict:
    memory = psutil.virtual_memory()
    return HealthVerdict(
        endpoint_name="Memory",
        state=_grade(memory.percent, thresholds.memory_warn_percent,
                     thresholds.memory_critical_percent),
        detail=f"{memory.percent:.0f}% used ({_gib(memory.used)} of {_gib(memory.total)})",
        category="system",
    )


def disk_checks(thresholds: ResourceThresholds) -> list[HealthVerdict]:
    verdicts = []
    seen: set[str] = set()
    for partition in psutil.disk_partitions(all=False):
        if not partition.device.startswith("/dev/") or partition.device in seen:
            continue
        seen.add(partition.device)
        try:
            usage = psutil.disk_usage(partition.mountpoint)
        except OSError as exc:
            verdicts.append(
                HealthVerdict(
                    endpoint_name=f"Disk {partition.mountpoint}",
                    state=HealthState.DOWN,
                    detail=f"unreadable: {exc.strerror}",
                    category="system",
                )
            )
            continue
        verdicts.append(
            HealthVerdict(
                endpoint_name=f"Disk {partition.mountpoint}",
                state=_grade(usage.percent, thresholds.disk_warn_percent,
                             thresholds.disk_critical_percent),
                detail=f"{usage.percent:.0f}% used ({_gib(usage.used)} of {_gib(usage.total)})",
                category="system",
            )
        )
    return verdicts


def load_check(thresholds: ResourceThresholds) -> HealthVerdict:
    one, five, fifteen = psutil.getloadavg()
    cpus = psutil.cpu_count() or 1
    per_cpu = one / cpus
    return HealthVerdict(
        endpoint_name="Load Average",
        state=_grade(per_cpu, thresholds.load_warn_per_cpu, thresholds.load_critical_per_cpu),
        detail=f"{one:.2f}, {five:.2f}, {fifteen:.2f} on {cpus} CPUs",
        category="system",
    )


def system_checks(thresholds: ResourceThresholds) -> list[HealthVerdict]:
    return [memory_check(thresholds), *disk_checks(thresholds), load_check(thresholds)]


def service_checks(services: Sequence[str], runner: Runner = run_command) -> list[HealthVerdict]:
    verdicts = []
    for service in services:
        try:
            result = runner(["systemctl", "is-active", service], timeout=15)
        except CommandError as exc:
            verdicts.append(
                HealthVerdict(service, HealthState.DOWN, detail=str(exc), category="service")
            )
            continue
        status = result.stdout.strip() or "unknown"
        verdicts.append(
            HealthVerdict(
                endpoint_name=service,
                state=HealthState.UP if result.ok else HealthState.DOWN,
                detail="running" if result.ok else f"not running ({status})",
                category="service",
            )
        )
    return verdicts


def system_information() -> str:
    uptime_hours = (time.time() - psutil.boot_time()) / 3600
    return "\n".join(
        [
            f"Hostname: {socket.gethostname()}",
            f"Kernel: {platform.release()}",
            f"Uptime: {uptime_hours:.1f} hours",
            f"CPUs: {os.cpu_count()}",
        ]
    )


def _top(processes: list[dict], key: str, limit: int) -> list[str]:
    ranked = sorted(processes, key=lambda p: p.get(key) or 0.0, reverse=True)[:limit]
    return [
        f"{p.get('pid'):>7} {p.get('username') or '-':<12} "
        f"{p.get('cpu_percent') or 0.0:>5.1f}% cpu {p.get('memory_percent') or 0.0:>5.1f}% mem "
        f"{p.get('name') or '?'}"
        for p in ranked
    ]


def performance_snapshot(limit: int = 10) -> str:
    """Top processes by CPU and memory plus connection counts, as plain text."""
    processes = [
        proc.info
        for proc in psutil.process_iter(
            ["pid", "name", "username", "cpu_percent", "memory_percent"]
        )
    ]
    lines = [f"CPU usage (top {limit} processes):"]
    lines.extend(_top(processes, "cpu_percent", limit))
    lines.append("")
    lines.append(f"Memory usage (top {limit} processes):")
    lines.extend(_top(processes, "memory_percent", limit))
    lines.append("")
    try:
        connections = psutil.net_connections(kind="inet")
    except (psutil.AccessDenied, PermissionError):
        lines.append("Network statistics: access denied")
    else:
        established = sum(1 for c in connections if c.status == psutil.CONN_ESTABLISHED)
        listening = sum(1 for c in connections if c.status == psutil.CONN_LISTEN)
        lines.append(f"Active connections: {established}")
        lines.append(f"Listening ports: {listening}")
    return "\n".join(lines)
