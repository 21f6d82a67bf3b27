"""Timestamped backup artifacts and their retention."""

from __future__ import annotations

import logging
import os
import re
import tarfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from stackpilot.domain.models import BackupArtifact
from stackpilot.errors import ContainerRuntimeError
from stackpilot.runtime.docker import DockerRuntime
from stackpilot.utils.time import TIMESTAMP_FORMAT, utc_now

logger = logging.getLogger(__name__)

ARTIFACT_SUFFIX = ".tar.gz"
PARTIAL_SUFFIX = ".partial"

_NAME_RE = re.compile(r"^(?P<source>.+)-(?P<stamp>\d{8}_\d{6})(?:-\d+)?\.tar\.gz$")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class BackupError(Exception):
    """A single backup target could not be archived."""


@dataclass(frozen=True)
class RetentionResult:
    deleted: tuple[str, ...]
    retained: tuple[str, ...]


def source_slug(source: str) -> str:
    name = Path(source).name if "/" in source else source
    return _UNSAFE_CHARS.sub("_", name).strip("_") or "backup"


class BackupManager:
    def __init__(
        self,
        backup_root: str,
        runtime: DockerRuntime | None = None,
        image: str = "alpine",
    ) -> None:
        self._root = Path(backup_root)
        self._runtime = runtime
        self._image = image

    @property
    def root(self) -> Path:
        return self._root

    def _final_path(self, source: str, moment: datetime) -> Path:
        base = f"{source_slug(source)}-{moment.strftime(TIMESTAMP_FORMAT)}"
        candidate = self._root / f"{base}{ARTIFACT_SUFFIX}"
        counter = 1
        while candidate.exists() or Path(str(candidate) + PARTIAL_SUFFIX).exists():
            candidate = self._root / f"{base}-{counter}{ARTIFACT_SUFFIX}"
            counter += 1
        return candidate

    def _publish(self, partial: Path, final: Path, source: str, moment: datetime) -> BackupArtifact:
        os.replace(partial, final)
        logger.info("Backup of %s written to %s", source, final)
        return BackupArtifact(path=str(final), created_at=moment, source=source)

    @staticmethod
    def _discard(partial: Path) -> None:
        try:
            partial.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove partial backup %s: %s", partial, exc)

    def backup_tree(self, tree: str, now: datetime | None = None) -> BackupArtifact:
        """Archive a directory; the final name appears only once the archive is complete."""
        moment = now or utc_now()
        source = Path(tree).expanduser()
        if not source.is_dir():
            raise BackupError(f"{source} is not a directory")
        self._root.mkdir(parents=True, exist_ok=True)
        final = self._final_path(str(source), moment)
        partial = Path(str(final) + PARTIAL_SUFFIX)
        try:
            with tarfile.open(partial, "w:gz") as archive:
                archive.add(source, arcname=source.name)
        except (OSError, tarfile.TarError) as exc:
            self._discard(partial)
            raise BackupError(f"Archiving {source} failed: {exc}") from exc
        return self._publish(partial, final, str(source), moment)

    def backup_volume(self, volume: str, now: datetime | None = None) -> BackupArtifact:
        if self._runtime is None:
            raise BackupError("No container runtime configured for volume backups")
        moment = now or utc_now()
        self._root.mkdir(parents=True, exist_ok=True)
        final = self._final_path(volume, moment)
        partial = Path(str(final) + PARTIAL_SUFFIX)
        try:
            self._runtime.backup_volume(
                volume, str(self._root.resolve()), partial.name, image=self._image
            )
        except ContainerRuntimeError as exc:
            self._discard(partial)
            raise BackupError(f"Backing up volume {volume} failed: {exc.reason}") from exc
        if not partial.exists():
            raise BackupError(f"Backing up volume {volume} produced no archive")
        return self._publish(partial, final, volume, moment)

    def list_artifacts(self) -> list[BackupArtifact]:
        if not self._root.is_dir():
            return []
        artifacts = []
        for path in sorted(self._root.glob(f"*{ARTIFACT_SUFFIX}")):
            if not path.is_file():
                continue
            match = _NAME_RE.match(path.name)
            artifacts.append(
                BackupArtifact(
                    path=str(path),
                    created_at=datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc),
                    source=match.group("source") if match else path.name,
                )
            )
        return artifacts

    def enforce_retention(self, horizon_days: int, now: datetime | None = None) -> RetentionResult:
        """Delete artifacts strictly older than the horizon; keep everything else.

        Age is measured from the file's modification time. Abandoned ``.partial``
        files past the horizon are removed as well.
        """
        moment = now or utc_now()
        horizon = timedelta(days=horizon_days)
        deleted: list[str] = []
        retained: list[str] = []
        for artifact in self.list_artifacts():
            if artifact.age(moment) > horizon:
                Path(artifact.path).unlink(missing_ok=True)
                deleted.append(artifact.path)
                logger.info("Deleted expired backup %s", artifact.path)
            else:
                retained.append(artifact.path)
        if self._root.is_dir():
            for partial in self._root.glob(f"*{PARTIAL_SUFFIX}"):
                mtime = datetime.fromtimestamp(partial.stat().st_mtime, tz=timezone.utc)
                if moment - mtime > horizon:
                    self._discard(partial)
        return RetentionResult(deleted=tuple(deleted), retained=tuple(retained))
