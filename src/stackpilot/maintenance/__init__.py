"""Day-2 maintenance: updates, backups, cleanup, restarts and log streaming."""

from stackpilot.maintenance.actions import MaintenanceActions, UnknownTargetError
from stackpilot.maintenance.backup import BackupError, BackupManager, RetentionResult
from stackpilot.maintenance.logs import LogTail
from stackpilot.maintenance.registry import ActionRegistry

__all__ = [
    "ActionRegistry",
    "BackupError",
    "BackupManager",
    "LogTail",
    "MaintenanceActions",
    "RetentionResult",
    "UnknownTargetError",
]
