"""Per-target single-flight bookkeeping for maintenance actions."""

from __future__ import annotations

import fcntl
import logging
import os
import re
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from stackpilot.domain.models import ActionOutcome, ActionState
from stackpilot.errors import ActionAlreadyRunning

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def lock_name(action: str, target: str) -> str:
    return _UNSAFE_CHARS.sub("_", f"{action}-{target}").strip("_") + ".lock"


@contextmanager
def exclusive_file_lock(path: Path, action: str, target: str) -> Iterator[None]:
    """Non-blocking ``flock``; a second process gets ActionAlreadyRunning."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o600)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            raise ActionAlreadyRunning(action, target) from None
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


class ActionRegistry:
    """``IDLE -> RUNNING -> COMPLETED | FAILED`` per (action, target).

    A pair that is RUNNING cannot be entered again until it finishes.
    """

    def __init__(self, lock_dir: str | None = None) -> None:
        self._lock = threading.Lock()
        self._states: dict[tuple[str, str], ActionState] = {}
        self._lock_dir = Path(lock_dir) if lock_dir else None

    def state(self, action: str, target: str) -> ActionState:
        with self._lock:
            return self._states.get((action, target), ActionState.IDLE)

    def _enter(self, action: str, target: str) -> None:
        with self._lock:
            if self._states.get((action, target)) is ActionState.RUNNING:
                raise ActionAlreadyRunning(action, target)
            self._states[(action, target)] = ActionState.RUNNING

    def _leave(self, action: str, target: str, state: ActionState) -> None:
        with self._lock:
            self._states[(action, target)] = state

    @contextmanager
    def guard(
        self,
        action: str,
        target: str,
        cross_process: bool = False,
    ) -> Iterator[ActionOutcome]:
        self._enter(action, target)
        outcome = ActionOutcome(action=action, target=target, state=ActionState.RUNNING)
        try:
            if cross_process and self._lock_dir is not None:
                with exclusive_file_lock(self._lock_dir / lock_name(action, target), action, target):
                    yield outcome
            else:
                yield outcome
        except ActionAlreadyRunning:
            # Another process holds the target; this run never started.
            outcome.state = ActionState.IDLE
            self._leave(action, target, ActionState.IDLE)
            raise
        except BaseException:
            outcome.state = ActionState.FAILED
            self._leave(action, target, ActionState.FAILED)
            raise
        outcome.state = ActionState.FAILED if outcome.failures else ActionState.COMPLETED
        self._leave(action, target, outcome.state)
        logger.info("%s for %s finished: %s", action, target, outcome.state.value)
