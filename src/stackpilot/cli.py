"""Operator console: one subcommand per core operation plus an interactive menu."""

from __future__ import annotations

import argparse
import enum
import logging
import os
import sys
from collections.abc import Callable
from dataclasses import dataclass, field

from stackpilot import __version__
from stackpilot.config import Settings, load_settings
from stackpilot.domain.models import (
    ActionOutcome,
    ConnectionDescriptor,
    HealthReport,
    HealthState,
    ProvisionSpec,
)
from stackpilot.errors import ActionSubStepFailure, CommandError, ProbeFailure, StackPilotError
from stackpilot.health.endpoints import probe_all
from stackpilot.health.engine import HealthCheckEngine, write_report
from stackpilot.logging_utils import configure_logging
from stackpilot.maintenance.actions import MaintenanceActions, UnknownTargetError
from stackpilot.maintenance.backup import BackupManager
from stackpilot.provisioning.ansible import AnsibleApplier
from stackpilot.provisioning.bridge import load_descriptor
from stackpilot.provisioning.convergence import (
    ConvergenceWaiter,
    SshReachabilityProbe,
    check_connectivity,
)
from stackpilot.provisioning.interfaces import Provisioner, ReachabilityProbe
from stackpilot.provisioning.pipeline import (
    StageOrchestrator,
    check_cloud_login,
    check_prerequisites,
    retarget_endpoints,
    summarize,
)
from stackpilot.provisioning.terraform import TerraformProvisioner
from stackpilot.runtime.docker import DockerRuntime
from stackpilot.utils.console import Console
from stackpilot.utils.process import Runner, run_command

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNHEALTHY = 1
EXIT_USAGE = 2


class Command(str, enum.Enum):
    DEPLOY = "deploy"
    TEST = "test"
    DESTROY = "destroy"
    HEALTH = "health"
    UPDATE = "update"
    BACKUP = "backup"
    CLEANUP = "cleanup"
    SECURITY_AUDIT = "security-audit"
    REPORT = "report"
    RESTART = "restart"
    LOGS = "logs"
    INTERACTIVE = "interactive"


_HELP = {
    Command.DEPLOY: "Provision the host, configure it and verify the stack",
    Command.TEST: "Test SSH connectivity to the deployed host",
    Command.DESTROY: "Destroy all provisioned infrastructure",
    Command.HEALTH: "Quick health check of host, containers and endpoints",
    Command.UPDATE: "Update system packages and container images",
    Command.BACKUP: "Back up data volumes and the deployment tree",
    Command.CLEANUP: "Remove unused containers, images, volumes and old logs",
    Command.SECURITY_AUDIT: "Check SSH, firewall, logins, ports and certificates",
    Command.REPORT: "Write a full health report",
    Command.RESTART: "Restart one service group or one service",
    Command.LOGS: "Follow logs for a service (Ctrl+C to stop)",
    Command.INTERACTIVE: "Interactive maintenance menu",
}


@dataclass
class AppContext:
    """Everything a command needs, built once from settings.

    Components are created on first use so commands that never touch Terraform
    or Docker do not need them; tests pass fakes in directly.
    """

    settings: Settings
    console: Console = field(default_factory=Console)
    prompt: Callable[[str], str] = input
    runner: Runner = run_command
    assume_yes: bool = False
    runtime: DockerRuntime | None = None
    engine: HealthCheckEngine | None = None
    actions: MaintenanceActions | None = None
    provisioner: Provisioner | None = None
    probe: ReachabilityProbe | None = None
    orchestrator: StageOrchestrator | None = None

    def get_runtime(self) -> DockerRuntime:
        if self.runtime is None:
            self.runtime = DockerRuntime(
                self.settings.paths.deploy_root,
                self.settings.health.compose_files,
                timeout=self.settings.maintenance.command_timeout_seconds,
                runner=self.runner,
            )
        return self.runtime

    def get_engine(self) -> HealthCheckEngine:
        if self.engine is None:
            self.engine = HealthCheckEngine(
                self.settings.health,
                self.settings.paths.deploy_root,
                self.get_runtime(),
                runner=self.runner,
            )
        return self.engine

    def get_actions(self) -> MaintenanceActions:
        if self.actions is None:
            maintenance = self.settings.maintenance
            backups = BackupManager(
                self.settings.paths.backup_root, self.get_runtime(), image=maintenance.backup_image
            )
            self.actions = MaintenanceActions(
                maintenance, self.get_runtime(), backups, runner=self.runner
            )
        return self.actions

    def get_provisioner(self) -> Provisioner:
        if self.provisioner is None:
            self.provisioner = TerraformProvisioner(
                self.settings.paths.terraform_dir,
                timeout=self.settings.provision.command_timeout_seconds,
                runner=self.runner,
            )
        return self.provisioner

    def get_probe(self) -> ReachabilityProbe:
        if self.probe is None:
            self.probe = SshReachabilityProbe(timeout=self.settings.convergence.probe_timeout_seconds)
        return self.probe

    def verify_deployment(self, descriptor: ConnectionDescriptor) -> HealthReport:
        health = self.settings.health
        return probe_all(
            retarget_endpoints(health.endpoints, descriptor.address),
            health.per_probe_timeout_seconds,
            health.max_concurrent_probes,
        )

    def get_orchestrator(self) -> StageOrchestrator:
        if self.orchestrator is None:
            self.orchestrator = StageOrchestrator(
                self.get_provisioner(),
                AnsibleApplier(
                    timeout=self.settings.convergence.apply_timeout_seconds, runner=self.runner
                ),
                ConvergenceWaiter(self.get_probe()),
                self.settings.paths,
                self.settings.convergence,
                verifier=self.verify_deployment,
            )
        return self.orchestrator

    def confirm(self, question: str) -> bool:
        if self.assume_yes:
            return True
        try:
            reply = self.prompt(f"{question} (y/N): ")
        except EOFError:
            return False
        return reply.strip().lower() in {"y", "yes"}


def print_report(console: Console, report: HealthReport, title: str) -> None:
    console.section(title)
    for verdict in report.verdicts:
        message = f"{verdict.endpoint_name}: {verdict.detail}" if verdict.detail else verdict.endpoint_name
        if verdict.state is HealthState.UP:
            console.success(message)
        elif verdict.state is HealthState.DOWN:
            console.error(message)
        else:
            console.warning(f"{message} ({verdict.state.value})")
    for heading, body in report.extra_sections:
        console.line(f"=== {heading} ===")
        console.line(body)


def _report_status(context: AppContext, report: HealthReport) -> int:
    if context.get_engine().is_healthy(report):
        return EXIT_OK
    down = ", ".join(v.endpoint_name for v in report.down())
    context.console.warning(f"Unhealthy: {down}")
    return EXIT_UNHEALTHY


def print_outcome(console: Console, outcome: ActionOutcome) -> int:
    for step in outcome.steps:
        message = f"{step.name}: {step.detail}" if step.detail else step.name
        if step.ok:
            console.success(message)
        else:
            console.error(message)
    failures = outcome.failures
    if failures:
        error = ActionSubStepFailure(outcome.action, tuple(step.name for step in failures))
        console.error(f"{error.label}: {error}")
        return error.exit_code
    console.success(f"{outcome.action} completed ({outcome.state.value})")
    return EXIT_OK


def _deploy(context: AppContext, target: str | None) -> int:
    console = context.console
    missing = check_prerequisites()
    if missing:
        console.error(f"Missing required tools: {', '.join(missing)}")
        return CommandError.exit_code
    if not check_cloud_login(context.runner):
        console.error("Not logged in to Azure. Run 'az login' first.")
        return CommandError.exit_code
    provision = context.settings.provision
    if not provision.github_repo or not provision.domain_name:
        console.error("GITHUB_REPO and DOMAIN_NAME must be set before deploying")
        return EXIT_USAGE
    console.section("Deployment Configuration")
    console.line(f"  GitHub Repository: {provision.github_repo}")
    console.line(f"  Domain Name: {provision.domain_name}")
    console.line(f"  Email: {provision.email}")
    console.line(f"  Azure Region: {provision.location}")
    console.line(f"  VM Size: {provision.vm_size}")
    if not context.confirm("Proceed with deployment?"):
        console.warning("Deployment cancelled")
        return EXIT_OK
    spec = ProvisionSpec(
        github_repo=provision.github_repo,
        domain_name=provision.domain_name,
        email=provision.email,
        location=provision.location,
        vm_size=provision.vm_size,
        admin_username=provision.admin_username,
    )
    result = context.get_orchestrator().run(spec)
    summarize(result, console, provision.domain_name, context.settings.paths.credentials_path)
    if result.succeeded:
        return EXIT_OK
    return getattr(result.error, "exit_code", EXIT_UNHEALTHY)


def _test(context: AppContext, target: str | None) -> int:
    descriptor = load_descriptor(context.settings.paths.credentials_path)
    context.console.status(f"Testing SSH connectivity to {descriptor.address}...")
    if check_connectivity(descriptor, context.get_probe()):
        context.console.success("SSH connectivity confirmed!")
        return EXIT_OK
    context.console.error("SSH connectivity test failed!")
    return ProbeFailure.exit_code


def _destroy(context: AppContext, target: str | None) -> int:
    context.console.warning("This will destroy all provisioned resources!")
    if not context.confirm("Are you sure?"):
        context.console.status("Destroy cancelled")
        return EXIT_OK
    context.get_provisioner().destroy()
    context.console.success("Resources destroyed successfully!")
    return EXIT_OK


def _health(context: AppContext, target: str | None) -> int:
    report = context.get_engine().quick_check()
    print_report(context.console, report, "Quick Health Check")
    return _report_status(context, report)


def _update(context: AppContext, target: str | None) -> int:
    context.console.section("Updating System and Containers")
    return print_outcome(context.console, context.get_actions().update())


def _backup(context: AppContext, target: str | None) -> int:
    context.console.section("Backing Up Data")
    return print_outcome(context.console, context.get_actions().backup())


def _cleanup(context: AppContext, target: str | None) -> int:
    context.console.section("Cleaning Up System")
    return print_outcome(context.console, context.get_actions().cleanup())


def _security_audit(context: AppContext, target: str | None) -> int:
    report = context.get_engine().security_report()
    print_report(context.console, report, "Security Check")
    return _report_status(context, report)


def _report(context: AppContext, target: str | None) -> int:
    engine = context.get_engine()
    report = engine.full_report()
    context.console.section("Generating Full Health Report")
    context.console.line(report.render_text())
    path = write_report(report, context.settings.paths.report_dir)
    context.console.success(f"Full health report saved to: {path}")
    return _report_status(context, report)


def _restart(context: AppContext, target: str | None) -> int:
    if not target:
        context.console.error("restart needs a target: " + ", ".join(context.get_actions().restart_targets()))
        return EXIT_USAGE
    context.console.section(f"Restarting {target}")
    return print_outcome(context.console, context.get_actions().restart(target))


def _logs(context: AppContext, target: str | None) -> int:
    source = target or "all"
    context.console.section(f"Following {source} logs (Ctrl+C to stop)")
    try:
        outcome = context.get_actions().tail_logs(source, context.console.line)
    except UnknownTargetError as exc:
        context.console.error(str(exc))
        return EXIT_USAGE
    context.console.status(f"Log stream {outcome.steps[-1].detail}" if outcome.steps else "Log stream closed")
    return EXIT_OK


def _interactive(context: AppContext, target: str | None) -> int:
    return run_menu(context)


_HANDLERS: dict[Command, Callable[[AppContext, str | None], int]] = {
    Command.DEPLOY: _deploy,
    Command.TEST: _test,
    Command.DESTROY: _destroy,
    Command.HEALTH: _health,
    Command.UPDATE: _update,
    Command.BACKUP: _backup,
    Command.CLEANUP: _cleanup,
    Command.SECURITY_AUDIT: _security_audit,
    Command.REPORT: _report,
    Command.RESTART: _restart,
    Command.LOGS: _logs,
    Command.INTERACTIVE: _interactive,
}


def dispatch(command: Command, context: AppContext, target: str | None = None) -> int:
    """Run one command and map its outcome to an exit status."""
    try:
        return _HANDLERS[command](context, target)
    except StackPilotError as exc:
        context.console.error(f"{exc.label}: {exc}")
        logger.debug("%s failed", command.value, exc_info=True)
        return exc.exit_code


MENU_TITLE = "Server Maintenance Menu"

MENU_ITEMS: tuple[tuple[str, str], ...] = (
    ("1", "System Health Check"),
    ("2", "Docker Health Check"),
    ("3", "Application Health Check"),
    ("4", "Monitor Logs"),
    ("5", "Restart Services"),
    ("6", "Update System & Containers"),
    ("7", "Backup Data"),
    ("8", "Cleanup System"),
    ("9", "Security Check"),
    ("10", "Performance Metrics"),
    ("11", "Full Health Report"),
    ("0", "Exit"),
)


def _show_menu(console: Console) -> None:
    console.line("=" * 54)
    console.line(MENU_TITLE)
    console.line("=" * 54)
    for key, label in MENU_ITEMS:
        console.line(f"{key + '.':<4}{label}")
    console.line("=" * 54)


def _choose(context: AppContext, title: str, options: list[str]) -> str | None:
    context.console.line(title)
    for index, option in enumerate(options, start=1):
        context.console.line(f"  {index}. {option}")
    reply = context.prompt(f"Select (1-{len(options)}): ").strip()
    if reply.isdigit() and 1 <= int(reply) <= len(options):
        return options[int(reply) - 1]
    context.console.error("Invalid choice")
    return None


def _menu_report(context: AppContext, build: Callable[[], HealthReport], title: str) -> int:
    report = build()
    print_report(context.console, report, title)
    return _report_status(context, report)


def _menu_logs(context: AppContext) -> int:
    source = _choose(context, "Select service to monitor:", context.get_actions().log_sources())
    if source is None:
        return EXIT_USAGE
    try:
        return _logs(context, source)
    except KeyboardInterrupt:
        context.console.status("Log stream cancelled")
        return EXIT_OK


def _menu_restart(context: AppContext) -> int:
    target = _choose(context, "Select what to restart:", context.get_actions().restart_targets())
    if target is None:
        return EXIT_USAGE
    return _restart(context, target)


def _menu_actions(context: AppContext) -> dict[str, Callable[[], int]]:
    engine = context.get_engine
    return {
        "1": lambda: _menu_report(context, lambda: engine().system_report(), "System Health Check"),
        "2": lambda: _menu_report(context, lambda: engine().runtime_report(), "Docker Health Check"),
        "3": lambda: _menu_report(
            context, lambda: engine().endpoint_report(), "Application Health Check"
        ),
        "4": lambda: _menu_logs(context),
        "5": lambda: _menu_restart(context),
        "6": lambda: _update(context, None),
        "7": lambda: _backup(context, None),
        "8": lambda: _cleanup(context, None),
        "9": lambda: _security_audit(context, None),
        "10": lambda: _menu_report(
            context, lambda: engine().performance_report(), "Performance Metrics"
        ),
        "11": lambda: _report(context, None),
    }


def run_menu(context: AppContext) -> int:
    """Loop until the operator picks Exit or closes stdin."""
    console = context.console
    actions = _menu_actions(context)
    while True:
        _show_menu(console)
        try:
            choice = context.prompt("Enter your choice (0-11): ").strip()
        except (EOFError, KeyboardInterrupt):
            console.line()
            return EXIT_OK
        if choice == "0":
            console.success("Goodbye!")
            return EXIT_OK
        action = actions.get(choice)
        if action is None:
            console.error("Invalid choice. Please try again.")
            continue
        try:
            action()
        except StackPilotError as exc:
            console.error(f"{exc.label}: {exc}")
        except EOFError:
            return EXIT_OK
        try:
            context.prompt("Press Enter to continue...")
        except (EOFError, KeyboardInterrupt):
            return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stackpilot",
        description="Provision, configure, verify and maintain a single-host deployment.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True, metavar="command")
    for command in Command:
        p = sub.add_parser(command.value, help=_HELP[command])
        if command in (Command.DEPLOY, Command.DESTROY):
            p.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
        if command is Command.RESTART:
            p.add_argument("target", help="Service group or single service to restart")
        if command is Command.LOGS:
            p.add_argument("target", nargs="?", default="all", help="Log source (default: all)")
    return parser


def _warn_if_root(console: Console) -> None:
    geteuid = getattr(os, "geteuid", None)
    if geteuid is not None and geteuid() == 0:
        console.warning("This tool should not be run as root for most operations")
        console.warning("Some operations may fail or behave differently")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    console = Console()
    try:
        settings = load_settings()
    except RuntimeError as exc:
        console.error(str(exc))
        return EXIT_USAGE
    configure_logging(settings.logging)
    _warn_if_root(console)

    context = AppContext(
        settings=settings,
        console=console,
        assume_yes=getattr(args, "yes", False),
    )
    try:
        return dispatch(Command(args.command), context, getattr(args, "target", None))
    except KeyboardInterrupt:
        console.line()
        console.warning("Interrupted")
        return 130


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
