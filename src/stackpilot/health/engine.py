"""Compose system, runtime, endpoint and security probes into one report."""

from __future__ import annotations

import logging
from pathlib import Path

import httpx

from stackpilot.config import HealthSettings
from stackpilot.domain.models import HealthReport, HealthVerdict
from stackpilot.health.containers import runtime_checks
from stackpilot.health.endpoints import probe_all
from stackpilot.health.security import security_checks
from stackpilot.health.system import (
    performance_snapshot,
    service_checks,
    system_checks,
    system_information,
)
from stackpilot.runtime.docker import DockerRuntime
from stackpilot.utils.files import atomic_write_text
from stackpilot.utils.process import Runner, run_command
from stackpilot.utils.time import timestamp_slug, utc_now

logger = logging.getLogger(__name__)

REPORT_PREFIX = "health-report-"


class HealthCheckEngine:
    def __init__(
        self,
        settings: HealthSettings,
        deploy_root: str,
        runtime: DockerRuntime,
        runner: Runner = run_command,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._deploy_root = deploy_root
        self._runtime = runtime
        self._run = runner
        self._transport = transport

    @property
    def settings(self) -> HealthSettings:
        return self._settings

    def endpoint_report(self) -> HealthReport:
        return probe_all(
            self._settings.endpoints,
            self._settings.per_probe_timeout_seconds,
            self._settings.max_concurrent_probes,
            transport=self._transport,
        )

    def system_verdicts(self) -> list[HealthVerdict]:
        verdicts = system_checks(self._settings.thresholds)
        verdicts.extend(service_checks(self._settings.critical_services, runner=self._run))
        return verdicts

    def runtime_verdicts(self) -> list[HealthVerdict]:
        return runtime_checks(self._runtime)

    def security_verdicts(self) -> list[HealthVerdict]:
        return security_checks(
            self._deploy_root,
            self._settings.cert_dir,
            self._settings.sshd_config_path,
            self._settings.auth_log_path,
            runner=self._run,
        )

    def system_report(self) -> HealthReport:
        return HealthReport(
            generated_at=utc_now(),
            verdicts=tuple(self.system_verdicts()),
            extra_sections=(("System Information", system_information()),),
        )

    def runtime_report(self) -> HealthReport:
        return HealthReport(generated_at=utc_now(), verdicts=tuple(self.runtime_verdicts()))

    def security_report(self) -> HealthReport:
        return HealthReport(generated_at=utc_now(), verdicts=tuple(self.security_verdicts()))

    def performance_report(self) -> HealthReport:
        return HealthReport(
            generated_at=utc_now(),
            verdicts=(),
            extra_sections=(("Performance Metrics", performance_snapshot()),),
        )

    def quick_check(self) -> HealthReport:
        verdicts = [
            *self.system_verdicts(),
            *self.runtime_verdicts(),
            *self.endpoint_report().verdicts,
        ]
        return HealthReport(generated_at=utc_now(), verdicts=tuple(verdicts))

    def full_report(self) -> HealthReport:
        generated_at = utc_now()
        verdicts = [
            *self.system_verdicts(),
            *self.runtime_verdicts(),
            *self.endpoint_report().verdicts,
            *self.security_verdicts(),
        ]
        return HealthReport(
            generated_at=generated_at,
            verdicts=tuple(verdicts),
            extra_sections=(
                ("System Information", system_information()),
                ("Performance Metrics", performance_snapshot()),
            ),
        )

    def is_healthy(self, report: HealthReport) -> bool:
        return report.is_healthy(self._settings.treat_no_check_as_healthy)


def write_report(report: HealthReport, report_dir: str) -> Path:
    path = Path(report_dir) / f"{REPORT_PREFIX}{timestamp_slug(report.generated_at)}.txt"
    atomic_write_text(path, report.render_text(), mode=0o644)
    logger.info("Health report %s written to %s", report.report_id, path)
    return path
