"""Terraform-backed provisioner."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from stackpilot.domain.models import ProvisionResult, ProvisionSpec
from stackpilot.errors import ProvisionFailure
from stackpilot.utils.masking import redact_sensitive_fields
from stackpilot.utils.process import CommandResult, Runner, run_command

logger = logging.getLogger(__name__)

PLAN_FILE = "tfplan"

OUTPUT_ADDRESS = "public_ip_address"
OUTPUT_USER = "vm_username"
OUTPUT_SECRET = "vm_password"


def parse_outputs(raw: str) -> ProvisionResult:
    """Map ``terraform output -json`` onto a ProvisionResult.

    Every output is ``{"value": ..., "sensitive": bool, "type": ...}``. The
    result is ready only when address, user and secret are all present.
    """
    try:
        data = json.loads(raw or "{}")
    except json.JSONDecodeError as exc:
        raise ProvisionFailure(f"terraform output is not valid JSON: {exc.msg}", step="output")
    if not isinstance(data, dict):
        raise ProvisionFailure("terraform output must be a JSON object", step="output")

    values: dict[str, str] = {}
    public: dict[str, str] = {}
    for name, entry in data.items():
        value = entry.get("value") if isinstance(entry, dict) else entry
        if value is None:
            continue
        text = value if isinstance(value, str) else json.dumps(value)
        values[name] = text
        if not (isinstance(entry, dict) and entry.get("sensitive")):
            public[name] = text

    address = values.get(OUTPUT_ADDRESS, "")
    user = values.get(OUTPUT_USER, "")
    secret = values.get(OUTPUT_SECRET, "")
    return ProvisionResult(
        address=address,
        admin_user=user,
        admin_secret=secret,
        ready=bool(address and user and secret),
        outputs=redact_sensitive_fields(public),
    )


class TerraformProvisioner:
    """init -> plan -> apply -> output, run in the Terraform working directory."""

    def __init__(
        self,
        terraform_dir: str,
        timeout: float = 1800,
        runner: Runner = run_command,
    ) -> None:
        self._dir = Path(terraform_dir)
        self._timeout = timeout
        self._run = runner

    def _terraform(self, step: str, *args: str) -> CommandResult:
        result = self._run(["terraform", *args], timeout=self._timeout, cwd=str(self._dir))
        if not result.ok:
            raise ProvisionFailure(
                f"terraform {step} failed: {result.error_text()}", step=step
            )
        return result

    def provision(self, spec: ProvisionSpec) -> ProvisionResult:
        plan_path = self._dir / PLAN_FILE
        try:
            self._terraform("init", "init", "-input=false")
            var_args: list[str] = []
            for key, value in spec.terraform_vars().items():
                var_args.extend(["-var", f"{key}={value}"])
            self._terraform("plan", "plan", "-input=false", *var_args, f"-out={PLAN_FILE}")
            self._terraform("apply", "apply", "-input=false", PLAN_FILE)
            output = self._terraform("output", "output", "-json")
        finally:
            plan_path.unlink(missing_ok=True)

        result = parse_outputs(output.stdout)
        logger.info("Terraform outputs: %s", sorted(result.outputs))
        return result

    def destroy(self) -> None:
        self._terraform("destroy", "destroy", "-auto-approve", "-input=false")
