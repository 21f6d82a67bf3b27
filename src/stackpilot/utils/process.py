"""Subprocess helpers for the external tools stackpilot drives."""

from __future__ import annotations

import logging
import os
import re
import subprocess
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass

from stackpilot.errors import CommandError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120
_SUBCOMMAND = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")


@dataclass(frozen=True)
class CommandResult:
    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def label(self) -> str:
        return describe(self.args)

    def error_text(self, limit: int = 400) -> str:
        text = (self.stderr.strip() or self.stdout.strip())[-limit:]
        return text or f"exit {self.returncode}"


Runner = Callable[..., CommandResult]


def describe(cmd: Sequence[str]) -> str:
    """Tool plus subcommand only; full argument lists may carry secrets."""
    parts = [part for part in cmd if not part.startswith("-")]
    if parts and parts[0] == "sudo":
        parts = parts[1:]
    if not parts:
        return "<empty>"
    if len(parts) > 1 and _SUBCOMMAND.match(parts[1]):
        return f"{parts[0]} {parts[1]}"
    return parts[0]


def run_command(
    cmd: Sequence[str],
    *,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
    input_text: str | None = None,
) -> CommandResult:
    """Run ``cmd`` to completion. Non-zero exits are returned, not raised."""
    merged_env = None
    if env:
        merged_env = dict(os.environ)
        merged_env.update(env)
    logger.debug("Running %s (cwd=%s)", describe(cmd), cwd)
    try:
        completed = subprocess.run(
            list(cmd),
            check=False,
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=cwd,
            env=merged_env,
            input=input_text,
        )
    except subprocess.TimeoutExpired:
        raise CommandError(f"{describe(cmd)} timed out after {timeout:g}s")
    except FileNotFoundError:
        raise CommandError(f"{cmd[0]} is not installed or not on PATH")
    except OSError as exc:
        raise CommandError(f"{describe(cmd)} could not be started: {exc.strerror}") from exc
    result = CommandResult(
        args=tuple(cmd),
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )
    if not result.ok:
        logger.info("%s exited with %d", result.label, result.returncode)
    return result
