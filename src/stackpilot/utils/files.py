"""Atomic file writes for credential, inventory and report artifacts."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

OWNER_ONLY = 0o600


def atomic_write_text(path: str | Path, text: str, mode: int = OWNER_ONLY) -> Path:
    """Write ``text`` to ``path`` so readers see the old file or the new one, never half.

    The data goes to a temporary file in the same directory, is fsynced, gets its
    permission bits, and is then renamed over the destination.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    try:
        os.fchmod(fd, mode)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
    return target
