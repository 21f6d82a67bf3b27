"""Security posture checks: SSH daemon, firewall, failed logins, ports, certificates."""

from __future__ import annotations

from pathlib import Path

import psutil

from stackpilot.domain.models import HealthState, HealthVerdict
from stackpilot.errors import CommandError
from stackpilot.utils.process import Runner, run_command

_SSHD_KEYS = ("PermitRootLogin", "PasswordAuthentication", "Port")
_RISKY_SSHD_VALUES = {"PermitRootLogin": "yes", "PasswordAuthentication": "yes"}


def _verdict(name: str, state: HealthState, detail: str) -> HealthVerdict:
    return HealthVerdict(endpoint_name=name, state=state, detail=detail, category="security")


def parse_sshd_config(text: str) -> dict[str, str]:
    settings: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split(None, 1)
        if len(parts) == 2 and parts[0] in _SSHD_KEYS and parts[0] not in settings:
            # sshd uses the first occurrence of a keyword.
            settings[parts[0]] = parts[1].strip()
    return settings


def sshd_checks(config_path: str) -> list[HealthVerdict]:
    try:
        text = Path(config_path).read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        return [_verdict("SSH Configuration", HealthState.NO_CHECK_CONFIGURED,
                         f"cannot read {config_path}: {exc.strerror}")]
    settings = parse_sshd_config(text)
    verdicts = []
    for key in _SSHD_KEYS:
        value = settings.get(key)
        if value is None:
            verdicts.append(_verdict(f"sshd {key}", HealthState.UP, "default"))
        elif _RISKY_SSHD_VALUES.get(key) == value.lower():
            verdicts.append(_verdict(f"sshd {key}", HealthState.DEGRADED, value))
        else:
            verdicts.append(_verdict(f"sshd {key}", HealthState.UP, value))
    return verdicts


def firewall_check(runner: Runner = run_command) -> HealthVerdict:
    try:
        result = runner(["sudo", "-n", "ufw", "status", "verbose"], timeout=15)
    except CommandError as exc:
        return _verdict("Firewall", HealthState.NO_CHECK_CONFIGURED, str(exc))
    if not result.ok:
        return _verdict("Firewall", HealthState.NO_CHECK_CONFIGURED, result.error_text())
    first = result.stdout.strip().splitlines()[0] if result.stdout.strip() else ""
    if "status: active" in first.lower():
        return _verdict("Firewall", HealthState.UP, first)
    return _verdict("Firewall", HealthState.DOWN, first or "inactive")


def failed_login_check(auth_log_path: str) -> HealthVerdict:
    try:
        with open(auth_log_path, encoding="utf-8", errors="replace") as handle:
            failures = [line.rstrip() for line in handle if "Failed password" in line]
    except OSError as exc:
        return _verdict("Failed Logins", HealthState.NO_CHECK_CONFIGURED,
                        f"cannot read {auth_log_path}: {exc.strerror}")
    if not failures:
        return _verdict("Failed Logins", HealthState.UP, "no recent failed login attempts")
    return _verdict(
        "Failed Logins",
        HealthState.DEGRADED,
        f"{len(failures)} failed password attempts; latest: {failures[-1]}",
    )


def listening_ports_check(limit: int = 20) -> HealthVerdict:
    try:
        connections = psutil.net_connections(kind="inet")
    except (psutil.AccessDenied, PermissionError):
        return _verdict("Open Ports", HealthState.NO_CHECK_CONFIGURED, "access denied")
    ports = sorted({c.laddr.port for c in connections if c.status == psutil.CONN_LISTEN and c.laddr})
    shown = ", ".join(str(port) for port in ports[:limit])
    if len(ports) > limit:
        shown += f" (+{len(ports) - limit} more)"
    return _verdict("Open Ports", HealthState.UP, shown or "none")


def certificate_check(deploy_root: str, cert_dir: str) -> HealthVerdict:
    path = Path(deploy_root) / cert_dir
    if path.is_dir():
        count = sum(1 for _ in path.iterdir())
        return _verdict("SSL Certificates", HealthState.UP, f"{path} ({count} entries)")
    return _verdict("SSL Certificates", HealthState.DEGRADED, f"{path} not found")


def security_checks(
    deploy_root: str,
    cert_dir: str,
    sshd_config_path: str,
    auth_log_path: str,
    runner: Runner = run_command,
) -> list[HealthVerdict]:
    verdicts = sshd_checks(sshd_config_path)
    verdicts.append(firewall_check(runner))
    verdicts.append(failed_login_check(auth_log_path))
    verdicts.append(listening_ports_check())
    verdicts.append(certificate_check(deploy_root, cert_dir))
    return verdicts
