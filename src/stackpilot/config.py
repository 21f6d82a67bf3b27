"""Configuration management for the stackpilot operator console."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from stackpilot.domain.models import EndpointSpec, Expectation

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class PathSettings(BaseModel):
    deploy_root: str = Field(default="~/dojo-task")
    credentials_path: str = Field(default="./vm_credentials.txt")
    inventory_path: str = Field(default="./ansible/inventory.yml")
    backup_root: str = Field(default="~/backups")
    report_dir: str = Field(default="/tmp")
    terraform_dir: str = Field(default=".")
    playbook: str = Field(default="./ansible/playbook.yml")

    @field_validator(
        "deploy_root",
        "credentials_path",
        "inventory_path",
        "backup_root",
        "report_dir",
        "terraform_dir",
        "playbook",
    )
    @classmethod
    def _expand(cls, value: str) -> str:
        return str(Path(value).expanduser())


class ProvisionSettings(BaseModel):
    github_repo: str = Field(default="")
    domain_name: str = Field(default="")
    email: str = Field(default="")
    location: str = Field(default="East US")
    vm_size: str = Field(default="Standard_B2s")
    admin_username: str = Field(default="azureuser")
    command_timeout_seconds: int = Field(default=1800, ge=60, le=7200)


class ConvergenceSettings(BaseModel):
    timeout_seconds: float = Field(default=300.0, gt=0)
    interval_seconds: float = Field(default=5.0, gt=0)
    probe_timeout_seconds: float = Field(default=10.0, gt=0)
    apply_timeout_seconds: int = Field(default=3600, ge=60)

    @model_validator(mode="after")
    def _interval_within_timeout(self) -> "ConvergenceSettings":
        if self.interval_seconds > self.timeout_seconds:
            raise ValueError("interval_seconds must not exceed timeout_seconds")
        return self


class ResourceThresholds(BaseModel):
    memory_warn_percent: float = Field(default=85.0, ge=0, le=100)
    memory_critical_percent: float = Field(default=95.0, ge=0, le=100)
    disk_warn_percent: float = Field(default=80.0, ge=0, le=100)
    disk_critical_percent: float = Field(default=95.0, ge=0, le=100)
    load_warn_per_cpu: float = Field(default=1.5, ge=0)
    load_critical_per_cpu: float = Field(default=4.0, ge=0)


def _default_endpoints() -> list[EndpointSpec]:
    return [
        EndpointSpec(name="Main Application", url="http://localhost:80"),
        EndpointSpec(name="Grafana", url="http://localhost:3000"),
        EndpointSpec(name="Prometheus", url="http://localhost:9090"),
        EndpointSpec(
            name="Loki",
            url="http://localhost:3100",
            expected=Expectation.READY_PATH,
            ready_path="/ready",
        ),
        EndpointSpec(
            name="cAdvisor",
            url="http://localhost:8080",
            expected=Expectation.READY_PATH,
            ready_path="/healthz",
        ),
    ]


class HealthSettings(BaseModel):
    per_probe_timeout_seconds: float = Field(default=5.0, gt=0, le=120)
    max_concurrent_probes: int = Field(default=8, ge=1, le=64)
    endpoints: list[EndpointSpec] = Field(default_factory=_default_endpoints)
    critical_services: list[str] = Field(default_factory=lambda: ["docker", "ufw", "ssh"])
    compose_files: list[str] = Field(
        default_factory=lambda: ["docker-compose.yml", "docker-compose.monitoring.yml"]
    )
    cert_dir: str = Field(default="traefik-certificates")
    sshd_config_path: str = Field(default="/etc/ssh/sshd_config")
    auth_log_path: str = Field(default="/var/log/auth.log")
    thresholds: ResourceThresholds = Field(default_factory=ResourceThresholds)
    treat_no_check_as_healthy: bool = Field(
        default=True,
        description=(
            "If True, containers without a configured health check do not make "
            "a report unhealthy."
        ),
    )

    @field_validator("endpoints", mode="before")
    @classmethod
    def _parse_endpoints(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [
                EndpointSpec.from_mapping(item) if isinstance(item, dict) else item
                for item in value
            ]
        return value


class MaintenanceSettings(BaseModel):
    retention_days: int = Field(default=7, ge=0, le=3650)
    journal_vacuum_days: int = Field(default=7, ge=1, le=3650)
    volumes: list[str] = Field(
        default_factory=lambda: ["dojo-task_db_data", "dojo-task_grafana-data"]
    )
    trees: list[str] = Field(default_factory=lambda: ["~/dojo-task"])
    backup_image: str = Field(default="alpine")
    command_timeout_seconds: int = Field(default=1800, ge=10, le=7200)
    restart_groups: dict[str, str] = Field(
        default_factory=lambda: {
            "app": "docker-compose.yml",
            "monitoring": "docker-compose.monitoring.yml",
        },
        description="Group name -> compose file whose services restart together.",
    )
    compose_services: list[str] = Field(
        default_factory=lambda: ["traefik", "backend", "frontend", "db"]
    )
    standalone_containers: list[str] = Field(
        default_factory=lambda: ["grafana", "prometheus"]
    )

    @field_validator("volumes", "trees", "compose_services", "standalone_containers", mode="before")
    @classmethod
    def _validate_lists(cls, value: Any) -> Any:
        if value is None:
            return []
        return value


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    paths: PathSettings = Field(default_factory=PathSettings)
    provision: ProvisionSettings = Field(default_factory=ProvisionSettings)
    convergence: ConvergenceSettings = Field(default_factory=ConvergenceSettings)
    health: HealthSettings = Field(default_factory=HealthSettings)
    maintenance: MaintenanceSettings = Field(default_factory=MaintenanceSettings)


ENV_KEYS = {
    "config_file": "STACKPILOT_CONFIG",
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "deploy_root": "DEPLOY_DIR",
    "credentials_path": "STACKPILOT_CREDENTIALS_PATH",
    "inventory_path": "STACKPILOT_INVENTORY_PATH",
    "backup_root": "BACKUP_DIR",
    "report_dir": "STACKPILOT_REPORT_DIR",
    "terraform_dir": "TERRAFORM_DIR",
    "playbook": "ANSIBLE_PLAYBOOK",
    "github_repo": "GITHUB_REPO",
    "domain_name": "DOMAIN_NAME",
    "email": "EMAIL",
    "location": "AZURE_REGION",
    "vm_size": "VM_SIZE",
    "admin_username": "VM_ADMIN_USERNAME",
    "convergence_timeout": "CONVERGENCE_TIMEOUT_SECONDS",
    "convergence_interval": "CONVERGENCE_INTERVAL_SECONDS",
    "probe_timeout": "PROBE_TIMEOUT_SECONDS",
    "max_concurrent_probes": "MAX_CONCURRENT_PROBES",
    "retention_days": "BACKUP_RETENTION_DAYS",
    "treat_no_check_as_healthy": "TREAT_NO_CHECK_AS_HEALTHY",
}

_TRUE_VALUES = frozenset({"1", "true", "yes"})


def _split_csv_preserve_case(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise RuntimeError(f"Invalid configuration: {path} must contain a mapping")
    return data


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise RuntimeError(f"Invalid configuration: section '{name}' must be a mapping")
    return dict(value)


def _override(section: dict[str, Any], key: str, env_key: str) -> None:
    value = os.getenv(env_key)
    if value is not None and value.strip() != "":
        section[key] = value.strip()


def build_settings(file_data: dict[str, Any] | None = None) -> Settings:
    """Merge YAML file data with environment overrides into validated settings."""

    data = file_data or {}
    logging_section = _section(data, "logging")
    paths = _section(data, "paths")
    provision = _section(data, "provision")
    convergence = _section(data, "convergence")
    health = _section(data, "health")
    maintenance = _section(data, "maintenance")

    _override(logging_section, "level", ENV_KEYS["log_level"])
    _override(logging_section, "file", ENV_KEYS["log_file"])
    for key in (
        "deploy_root",
        "credentials_path",
        "inventory_path",
        "backup_root",
        "report_dir",
        "terraform_dir",
        "playbook",
    ):
        _override(paths, key, ENV_KEYS[key])
    for key in ("github_repo", "domain_name", "email", "location", "vm_size", "admin_username"):
        _override(provision, key, ENV_KEYS[key])
    if not provision.get("email") and provision.get("domain_name"):
        provision["email"] = f"admin@{provision['domain_name']}"

    convergence["timeout_seconds"] = _env_float(
        ENV_KEYS["convergence_timeout"],
        float(convergence.get("timeout_seconds", ConvergenceSettings().timeout_seconds)),
    )
    convergence["interval_seconds"] = _env_float(
        ENV_KEYS["convergence_interval"],
        float(convergence.get("interval_seconds", ConvergenceSettings().interval_seconds)),
    )
    health["per_probe_timeout_seconds"] = _env_float(
        ENV_KEYS["probe_timeout"],
        float(health.get("per_probe_timeout_seconds", HealthSettings().per_probe_timeout_seconds)),
    )
    health["max_concurrent_probes"] = _env_int(
        ENV_KEYS["max_concurrent_probes"],
        int(health.get("max_concurrent_probes", HealthSettings().max_concurrent_probes)),
    )
    health["treat_no_check_as_healthy"] = _env_bool(
        ENV_KEYS["treat_no_check_as_healthy"],
        bool(health.get("treat_no_check_as_healthy", HealthSettings().treat_no_check_as_healthy)),
    )
    services_env = _split_csv_preserve_case(os.getenv("CRITICAL_SERVICES"))
    if services_env:
        health["critical_services"] = services_env
    maintenance["retention_days"] = _env_int(
        ENV_KEYS["retention_days"],
        int(maintenance.get("retention_days", MaintenanceSettings().retention_days)),
    )
    volumes_env = _split_csv_preserve_case(os.getenv("BACKUP_VOLUMES"))
    if volumes_env:
        maintenance["volumes"] = volumes_env

    settings_data: dict[str, object] = {
        "logging": logging_section,
        "paths": paths,
        "provision": provision,
        "convergence": convergence,
        "health": health,
        "maintenance": maintenance,
    }

    try:
        return Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=Path.cwd() / ".env")
    config_path = Path(os.getenv(ENV_KEYS["config_file"], "./stackpilot.yaml")).expanduser()
    return build_settings(_load_yaml(config_path))
