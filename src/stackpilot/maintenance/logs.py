"""Cancellable follow-mode log streaming."""

from __future__ import annotations

import logging
import subprocess
import threading
from collections.abc import Callable, Sequence

from stackpilot.errors import CommandError
from stackpilot.utils.process import describe

logger = logging.getLogger(__name__)

_TERMINATE_GRACE_SECONDS = 5


class LogTail:
    """Follow a log command until the operator cancels or the command exits.

    ``close`` terminates the child process, which ends the stream for the reader;
    it is safe to call from another thread and more than once.
    """

    def __init__(
        self,
        cmd: Sequence[str],
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ) -> None:
        self._cmd = list(cmd)
        self._popen = popen
        self._process: subprocess.Popen | None = None
        self._lock = threading.Lock()
        self._following = False
        self.cancelled = False

    def __enter__(self) -> "LogTail":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def start(self) -> None:
        try:
            self._process = self._popen(
                self._cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                bufsize=1,
            )
        except FileNotFoundError:
            raise CommandError(f"{self._cmd[0]} is not installed or not on PATH")
        logger.info("Following %s", describe(self._cmd))

    def follow(
        self,
        sink: Callable[[str], None],
        cancel: threading.Event | None = None,
    ) -> str:
        """Copy lines to ``sink``. Returns ``"cancelled"`` or ``"exited"``."""
        if self._process is None:
            self.start()
        process = self._process
        if process is None or process.stdout is None:
            raise CommandError(f"{describe(self._cmd)} has no output stream to follow")

        watcher = None
        finished = threading.Event()
        self._following = True
        if cancel is not None:

            def _watch() -> None:
                while not finished.is_set():
                    if cancel.wait(0.2):
                        self.cancelled = True
                        self.close()
                        return

            watcher = threading.Thread(target=_watch, name="log-tail-cancel", daemon=True)
            watcher.start()
        try:
            for line in process.stdout:
                sink(line.rstrip("\n"))
        except (OSError, ValueError):
            # Stream torn down by close().
            if not self.cancelled:
                raise
        finally:
            finished.set()
            if watcher is not None:
                watcher.join(timeout=1)
            self._following = False
            process.stdout.close()
        return "cancelled" if self.cancelled else "exited"

    def close(self) -> None:
        with self._lock:
            process = self._process
            if process is None:
                return
            if process.poll() is None:
                process.terminate()
                try:
                    process.wait(timeout=_TERMINATE_GRACE_SECONDS)
                except subprocess.TimeoutExpired:
                    process.kill()
                    process.wait()
            if process.stdout is not None and not self._following:
                process.stdout.close()
