"""Sequenced provisioning pipeline: provision, bridge, converge, configure, verify."""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable, Sequence
from dataclasses import replace
from urllib.parse import urlsplit, urlunsplit

from stackpilot.config import ConvergenceSettings, PathSettings
from stackpilot.domain.models import (
    ConnectionDescriptor,
    EndpointSpec,
    HealthReport,
    HealthState,
    PipelineResult,
    ProvisionSpec,
    Stage,
)
from stackpilot.errors import (
    CommandError,
    ConfigurationApplyFailure,
    ConvergenceTimeout,
    IncompleteProvisionError,
    ProvisionFailure,
)
from stackpilot.provisioning.bridge import bridge, write_inventory
from stackpilot.provisioning.convergence import ConvergenceWaiter
from stackpilot.provisioning.interfaces import ConfigurationApplier, Provisioner
from stackpilot.utils.console import Console
from stackpilot.utils.process import Runner, run_command

logger = logging.getLogger(__name__)

REQUIRED_TOOLS = ("az", "terraform", "ansible-playbook")

_LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})

Verifier = Callable[[ConnectionDescriptor], HealthReport]


def check_prerequisites(tools: Sequence[str] = REQUIRED_TOOLS) -> list[str]:
    """Return the tools that are not on PATH."""
    return [tool for tool in tools if shutil.which(tool) is None]


def check_cloud_login(runner: Runner = run_command) -> bool:
    """True when the Azure CLI has an active account."""
    try:
        result = runner(["az", "account", "show"], timeout=60)
    except CommandError as exc:
        logger.warning("Azure login check failed: %s", exc)
        return False
    if not result.ok:
        logger.warning("Azure login check failed: %s", result.error_text())
    return result.ok


def retarget_endpoints(specs: Sequence[EndpointSpec], address: str) -> list[EndpointSpec]:
    """Point loopback endpoint URLs at the provisioned host, keeping order."""
    retargeted = []
    for spec in specs:
        if not spec.url:
            retargeted.append(spec)
            continue
        parts = urlsplit(spec.url)
        if parts.hostname in _LOCAL_HOSTS:
            netloc = address if parts.port is None else f"{address}:{parts.port}"
            spec = replace(spec, url=urlunsplit(parts._replace(netloc=netloc)))
        retargeted.append(spec)
    return retargeted


class StageOrchestrator:
    """Runs the stages strictly in order and stops at the first hard failure.

    Nothing is rolled back: a failed run leaves whatever was provisioned in place,
    and the credentials file written after provisioning stays on disk so the
    operator can reach a partially configured host. Destroying infrastructure is a
    separate console command.
    """

    def __init__(
        self,
        provisioner: Provisioner,
        applier: ConfigurationApplier,
        waiter: ConvergenceWaiter,
        paths: PathSettings,
        convergence: ConvergenceSettings,
        verifier: Verifier | None = None,
    ) -> None:
        self._provisioner = provisioner
        self._applier = applier
        self._waiter = waiter
        self._paths = paths
        self._convergence = convergence
        self._verifier = verifier

    def run(self, spec: ProvisionSpec) -> PipelineResult:
        logger.info("Stage %s: starting", Stage.PROVISION.value)
        try:
            result = self._provisioner.provision(spec)
        except ProvisionFailure as exc:
            return self._halt(None, exc)
        except CommandError as exc:
            return self._halt(None, ProvisionFailure(str(exc)))
        if not result.ready:
            return self._halt(
                None, ProvisionFailure("Provisioner did not report a ready result", step="output")
            )

        logger.info("Stage %s: starting", Stage.BRIDGE.value)
        try:
            descriptor = bridge(result, self._paths.credentials_path)
        except IncompleteProvisionError as exc:
            return self._halt(Stage.PROVISION, exc)
        except OSError as exc:
            return self._halt(
                Stage.PROVISION,
                IncompleteProvisionError(f"Could not write credentials: {exc.strerror or exc}"),
            )
        try:
            write_inventory(descriptor, self._paths.inventory_path)
        except OSError as exc:
            return self._halt(
                Stage.PROVISION,
                IncompleteProvisionError(f"Could not write inventory: {exc.strerror}"),
                descriptor,
            )

        logger.info("Stage %s: starting", Stage.CONVERGENCE.value)
        ready = self._waiter.await_ready(
            descriptor,
            timeout=self._convergence.timeout_seconds,
            interval=self._convergence.interval_seconds,
        )
        if not ready:
            return self._halt(
                Stage.BRIDGE,
                ConvergenceTimeout(
                    descriptor.address, self._convergence.timeout_seconds, self._waiter.attempts
                ),
                descriptor,
            )

        logger.info("Stage %s: starting", Stage.CONFIGURATION.value)
        try:
            report = self._applier.apply(
                descriptor, self._paths.inventory_path, self._paths.playbook
            )
        except ConfigurationApplyFailure as exc:
            return self._halt(Stage.CONVERGENCE, exc, descriptor)
        except CommandError as exc:
            return self._halt(
                Stage.CONVERGENCE,
                ConfigurationApplyFailure(str(exc), hosts=(descriptor.address,)),
                descriptor,
            )
        if not report.ok:
            failed = tuple(report.failed_hosts()) or (descriptor.address,)
            return self._halt(
                Stage.CONVERGENCE,
                ConfigurationApplyFailure(
                    f"Configuration failed on {', '.join(failed)} "
                    f"(ansible-playbook exit {report.returncode})",
                    hosts=failed,
                ),
                descriptor,
            )

        health = None
        if self._verifier is not None:
            logger.info("Stage %s: starting", Stage.VERIFICATION.value)
            health = self._verifier(descriptor)
            for verdict in health.down():
                logger.warning("Post-deploy check %s is down: %s",
                               verdict.endpoint_name, verdict.detail)
        return PipelineResult(
            succeeded=True,
            completed_stage=Stage.VERIFICATION if health is not None else Stage.CONFIGURATION,
            descriptor=descriptor,
            report=health,
        )

    def _halt(
        self,
        completed: Stage | None,
        error: Exception,
        descriptor: ConnectionDescriptor | None = None,
    ) -> PipelineResult:
        logger.error(
            "Pipeline halted after %s: %s",
            completed.value if completed else "nothing",
            error,
        )
        return PipelineResult(
            succeeded=False,
            completed_stage=completed,
            error=error,
            descriptor=descriptor,
        )


def application_urls(domain_name: str) -> list[tuple[str, str]]:
    return [
        ("Main App", f"https://{domain_name}"),
        ("Grafana", f"https://{domain_name}/grafana"),
        ("Prometheus", f"https://{domain_name}/prometheus"),
        ("Adminer", f"https://db.{domain_name}"),
        ("cAdvisor", f"https://{domain_name}/cadvisor"),
    ]


def summarize(
    result: PipelineResult,
    console: Console,
    domain_name: str,
    credentials_path: str,
) -> None:
    """Print the partial-state or success summary of a pipeline run."""
    if not result.succeeded:
        label = getattr(result.error, "label", type(result.error).__name__)
        console.error(f"{label}: {result.error}")
        reached = result.completed_stage.value if result.completed_stage else "none"
        failed = result.failed_stage.value if result.failed_stage else "unknown"
        console.warning(f"Furthest completed stage: {reached}; failed stage: {failed}")
        if result.descriptor is not None:
            console.status(f"Credentials saved to {credentials_path}")
            console.status(f"Reach the host manually with: {result.descriptor.derived_ssh_command}")
        console.warning("Infrastructure was not rolled back; run 'destroy' to remove it.")
        return

    descriptor = result.descriptor
    console.section("Deployment Results")
    if descriptor is not None:
        console.line(f"  Public IP: {descriptor.address}")
        console.line(f"  Username: {descriptor.admin_user}")
        console.line(f"  SSH Command: {descriptor.derived_ssh_command}")
        console.line(f"  Credentials file: {credentials_path}")
    if domain_name:
        console.line("")
        console.line("Application URLs (after DNS configuration):")
        for name, url in application_urls(domain_name):
            console.line(f"  {name}: {url}")
        if descriptor is not None:
            console.line("")
            console.warning(f"Point these DNS records at {descriptor.address}:")
            for host in (domain_name, f"www.{domain_name}", f"db.{domain_name}"):
                console.line(f"  - {host}")
    if result.report is not None:
        console.line("")
        console.section("Post-deploy verification")
        for verdict in result.report.verdicts:
            message = f"{verdict.endpoint_name}: {verdict.detail}"
            if verdict.state is HealthState.UP:
                console.success(message)
            else:
                console.warning(message)
    console.success("Deployment completed successfully!")
