"""Ansible-backed configuration applier."""

from __future__ import annotations

import json
import logging

from stackpilot.domain.models import ApplyReport, ConnectionDescriptor, HostApplyResult
from stackpilot.errors import ConfigurationApplyFailure
from stackpilot.utils.process import Runner, run_command

logger = logging.getLogger(__name__)

_ANSIBLE_ENV = {
    "ANSIBLE_STDOUT_CALLBACK": "json",
    "ANSIBLE_HOST_KEY_CHECKING": "False",
    "ANSIBLE_NOCOLOR": "1",
}


def parse_stats(raw: str, returncode: int) -> ApplyReport:
    """Read per-host ``stats`` from the json stdout callback."""
    start = raw.find("{")
    if start < 0:
        return ApplyReport(hosts=(), returncode=returncode)
    try:
        payload = json.loads(raw[start:])
    except json.JSONDecodeError:
        return ApplyReport(hosts=(), returncode=returncode)

    hosts = []
    for host, stats in (payload.get("stats") or {}).items():
        failures = int(stats.get("failures", 0))
        unreachable = int(stats.get("unreachable", 0))
        hosts.append(
            HostApplyResult(
                host=host,
                ok=failures == 0 and unreachable == 0,
                changed=int(stats.get("changed", 0)),
                failures=failures,
                unreachable=unreachable,
            )
        )
    return ApplyReport(hosts=tuple(hosts), returncode=returncode)


class AnsibleApplier:
    def __init__(self, timeout: float = 3600, runner: Runner = run_command) -> None:
        self._timeout = timeout
        self._run = runner

    def apply(
        self,
        descriptor: ConnectionDescriptor,
        inventory_path: str,
        playbook: str,
    ) -> ApplyReport:
        result = self._run(
            ["ansible-playbook", "-i", inventory_path, playbook],
            timeout=self._timeout,
            env=_ANSIBLE_ENV,
        )
        report = parse_stats(result.stdout, result.returncode)
        if not report.hosts:
            raise ConfigurationApplyFailure(
                f"ansible-playbook produced no host results for {descriptor.address}: "
                f"{result.error_text()}",
                hosts=(descriptor.address,),
            )
        for host in report.hosts:
            logger.info(
                "Host %s: changed=%d failures=%d unreachable=%d",
                host.host,
                host.changed,
                host.failures,
                host.unreachable,
            )
        return report
