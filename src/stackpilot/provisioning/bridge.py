"""Turn provisioner outputs into a persisted connection descriptor and inventory."""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from dotenv import dotenv_values

from stackpilot.domain.models import ConnectionDescriptor, ProvisionResult
from stackpilot.errors import IncompleteProvisionError
from stackpilot.utils.files import atomic_write_text
from stackpilot.utils.masking import SECRETS

logger = logging.getLogger(__name__)

_KEY_ADDRESS = "VM_IP"
_KEY_USER = "VM_USERNAME"
_KEY_SECRET = "VM_PASSWORD"
_KEY_SSH = "SSH_COMMAND"

SSH_COMMON_ARGS = "-o StrictHostKeyChecking=no -o UserKnownHostsFile=/dev/null"


def derive_ssh_command(address: str, admin_user: str) -> str:
    return f"ssh {admin_user}@{address}"


def _validate(result: ProvisionResult) -> None:
    if not result.ready:
        raise IncompleteProvisionError("Provisioner has not reported completion")
    missing = tuple(
        name
        for name, value in (
            ("address", result.address),
            ("admin_user", result.admin_user),
            ("admin_secret", result.admin_secret),
        )
        if not value or not value.strip()
    )
    if missing:
        raise IncompleteProvisionError(
            f"Provision result is missing: {', '.join(missing)}", missing=missing
        )


def _quote(value: str) -> str:
    # Single-quoted dotenv values only decode backslash and quote escapes.
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def _render(descriptor: ConnectionDescriptor) -> str:
    return "".join(
        f"{key}={_quote(value)}\n"
        for key, value in (
            (_KEY_ADDRESS, descriptor.address),
            (_KEY_USER, descriptor.admin_user),
            (_KEY_SECRET, descriptor.admin_secret),
            (_KEY_SSH, descriptor.derived_ssh_command),
        )
    )


def bridge(result: ProvisionResult, credentials_path: str | Path) -> ConnectionDescriptor:
    """Validate ``result`` and persist it as an owner-only credentials file."""
    _validate(result)
    SECRETS.register(result.admin_secret)
    descriptor = ConnectionDescriptor(
        address=result.address.strip(),
        admin_user=result.admin_user.strip(),
        admin_secret=result.admin_secret,
        derived_ssh_command=derive_ssh_command(result.address.strip(), result.admin_user.strip()),
    )
    path = atomic_write_text(credentials_path, _render(descriptor))
    logger.info("Wrote connection descriptor for %s@%s to %s",
                descriptor.admin_user, descriptor.address, path)
    return descriptor


def load_descriptor(credentials_path: str | Path) -> ConnectionDescriptor:
    path = Path(credentials_path)
    if not path.exists():
        raise IncompleteProvisionError(f"Credentials file not found: {path}")
    values = dotenv_values(path, interpolate=False)
    missing = tuple(
        key for key in (_KEY_ADDRESS, _KEY_USER, _KEY_SECRET) if not values.get(key)
    )
    if missing:
        raise IncompleteProvisionError(
            f"Credentials file {path} is missing: {', '.join(missing)}", missing=missing
        )
    address = str(values[_KEY_ADDRESS])
    user = str(values[_KEY_USER])
    secret = str(values[_KEY_SECRET])
    SECRETS.register(secret)
    return ConnectionDescriptor(
        address=address,
        admin_user=user,
        admin_secret=secret,
        derived_ssh_command=str(values.get(_KEY_SSH) or derive_ssh_command(address, user)),
    )


def render_inventory(descriptor: ConnectionDescriptor) -> str:
    inventory = {
        "all": {
            "hosts": {
                descriptor.address: {
                    "ansible_host": descriptor.address,
                    "ansible_user": descriptor.admin_user,
                    "ansible_password": descriptor.admin_secret,
                    "ansible_become_password": descriptor.admin_secret,
                    "ansible_ssh_common_args": SSH_COMMON_ARGS,
                }
            }
        }
    }
    return yaml.safe_dump(inventory, default_flow_style=False, sort_keys=False)


def write_inventory(descriptor: ConnectionDescriptor, inventory_path: str | Path) -> Path:
    path = atomic_write_text(inventory_path, render_inventory(descriptor))
    logger.info("Wrote inventory for %s to %s", descriptor.address, path)
    return path
