from __future__ import annotations

from pathlib import Path

import pytest

from stackpilot import config
from stackpilot.domain.models import Expectation


def test_split_csv_preserve_case() -> None:
    assert config._split_csv_preserve_case(" Docker, ufw ,,SSH ") == ["Docker", "ufw", "SSH"]


def test_env_int_invalid_value_returns_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_INT_INVALID", "seven")
    assert config._env_int("TEST_INT_INVALID", 7) == 7


def test_env_float_uses_default_for_blank(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_FLOAT_VALUE", "")
    assert config._env_float("TEST_FLOAT_VALUE", 1.5) == 1.5


def test_env_bool_accepts_yes(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_BOOL", "Yes")
    assert config._env_bool("TEST_BOOL", False) is True


def test_defaults_match_operational_values() -> None:
    settings = config.build_settings({})

    assert settings.convergence.timeout_seconds == 300
    assert settings.convergence.interval_seconds == 5
    assert settings.health.per_probe_timeout_seconds == 5
    assert settings.maintenance.retention_days == 7
    assert settings.health.treat_no_check_as_healthy is True
    names = [spec.name for spec in settings.health.endpoints]
    assert names == ["Main Application", "Grafana", "Prometheus", "Loki", "cAdvisor"]
    assert settings.health.endpoints[3].probe_url == "http://localhost:3100/ready"


def test_yaml_endpoints_are_parsed() -> None:
    settings = config.build_settings(
        {
            "health": {
                "endpoints": [
                    {"name": "api", "url": "http://localhost:8000"},
                    {"name": "loki", "url": "http://localhost:3100", "ready_path": "/ready"},
                    {"name": "worker"},
                ]
            }
        }
    )

    api, loki, worker = settings.health.endpoints
    assert api.expected is Expectation.STATUS_2XX
    assert loki.expected is Expectation.READY_PATH
    assert worker.url == ""


def test_environment_overrides_file(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BACKUP_RETENTION_DAYS", "14")
    monkeypatch.setenv("DOMAIN_NAME", "example.org")
    monkeypatch.setenv("BACKUP_VOLUMES", "db_data, grafana")

    settings = config.build_settings({"maintenance": {"retention_days": 3}})

    assert settings.maintenance.retention_days == 14
    assert settings.maintenance.volumes == ["db_data", "grafana"]
    assert settings.provision.domain_name == "example.org"
    assert settings.provision.email == "admin@example.org"


def test_paths_are_expanded() -> None:
    settings = config.build_settings({"paths": {"backup_root": "~/backups"}})
    assert settings.paths.backup_root == str(Path("~/backups").expanduser())


def test_interval_longer_than_timeout_is_rejected() -> None:
    with pytest.raises(RuntimeError, match="Invalid configuration"):
        config.build_settings({"convergence": {"timeout_seconds": 5, "interval_seconds": 10}})


def test_non_mapping_section_is_rejected() -> None:
    with pytest.raises(RuntimeError, match="section 'health'"):
        config.build_settings({"health": ["not", "a", "mapping"]})


def test_load_settings_reads_yaml_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "load_dotenv", lambda **_: None)
    config_file = tmp_path / "stackpilot.yaml"
    config_file.write_text("maintenance:\n  retention_days: 30\n", encoding="utf-8")
    monkeypatch.setenv("STACKPILOT_CONFIG", str(config_file))
    monkeypatch.delenv("BACKUP_RETENTION_DAYS", raising=False)

    settings = config.load_settings()

    assert settings.maintenance.retention_days == 30
    assert config.load_settings() is settings


def test_load_settings_raises_runtime_error_on_validation(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "load_dotenv", lambda **_: None)
    monkeypatch.setenv("STACKPILOT_CONFIG", "/nonexistent/stackpilot.yaml")
    monkeypatch.setenv("MAX_CONCURRENT_PROBES", "0")

    with pytest.raises(RuntimeError, match="Invalid configuration"):
        config.load_settings()
