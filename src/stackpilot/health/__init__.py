"""Health-check engine."""

from stackpilot.health.containers import classify_container_health, runtime_checks
from stackpilot.health.endpoints import probe_all, probe_endpoints
from stackpilot.health.engine import HealthCheckEngine, write_report

__all__ = [
    "HealthCheckEngine",
    "classify_container_health",
    "probe_all",
    "probe_endpoints",
    "runtime_checks",
    "write_report",
]
