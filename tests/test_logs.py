from __future__ import annotations

import subprocess
import sys
import threading
import time

import pytest

from stackpilot.errors import CommandError
from stackpilot.maintenance.logs import LogTail


class FakeProcess:
    def __init__(self, lines: list[str]) -> None:
        self.stdout = iter_closeable(lines)
        self.terminated = False
        self.returncode: int | None = None

    def poll(self) -> int | None:
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        self.returncode = -15

    def wait(self, timeout: float | None = None) -> int:
        return self.returncode or 0

    def kill(self) -> None:
        self.returncode = -9


class iter_closeable:
    def __init__(self, lines: list[str]) -> None:
        self._lines = iter(lines)
        self.closed = False

    def __iter__(self):
        return self

    def __next__(self) -> str:
        if self.closed:
            raise ValueError("I/O operation on closed file")
        return next(self._lines)

    def close(self) -> None:
        self.closed = True


def test_follow_copies_lines_until_exit() -> None:
    process = FakeProcess(["one\n", "two\n"])
    seen: list[str] = []

    with LogTail(["docker", "logs", "-f", "grafana"], popen=lambda *a, **k: process) as tail:
        reason = tail.follow(seen.append)

    assert reason == "exited"
    assert seen == ["one", "two"]
    assert process.terminated is True
    assert process.stdout.closed is True


def test_missing_tool_is_command_error() -> None:
    def popen(*args, **kwargs):
        raise FileNotFoundError

    with pytest.raises(CommandError, match="journalctl"):
        LogTail(["journalctl", "-f"], popen=popen).start()


@pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")
def test_cancel_terminates_a_never_ending_stream() -> None:
    cancel = threading.Event()
    seen: list[str] = []

    def sink(line: str) -> None:
        seen.append(line)
        cancel.set()

    cmd = [sys.executable, "-u", "-c", "import time\nprint('first', flush=True)\nwhile True: time.sleep(0.1)"]
    started = time.monotonic()
    tail = LogTail(cmd)
    try:
        reason = tail.follow(sink, cancel)
    finally:
        tail.close()

    assert reason == "cancelled"
    assert seen == ["first"]
    assert time.monotonic() - started < 10
    assert tail._process is not None and tail._process.poll() is not None


def test_close_before_start_is_noop() -> None:
    LogTail(["docker", "logs", "-f", "x"]).close()


def test_close_kills_when_terminate_is_ignored() -> None:
    class Stubborn(FakeProcess):
        def wait(self, timeout: float | None = None) -> int:
            if timeout is not None and self.returncode == -15:
                raise subprocess.TimeoutExpired("tail", timeout)
            return self.returncode or 0

    process = Stubborn([])
    tail = LogTail(["tail", "-f", "x"], popen=lambda *a, **k: process)
    tail.start()

    tail.close()

    assert process.returncode == -9


def test_follow_without_output_stream_raises_command_error() -> None:
    process = FakeProcess([])
    process.stdout = None
    tail = LogTail(["docker", "logs", "-f", "grafana"], popen=lambda *a, **k: process)

    with pytest.raises(CommandError, match="no output stream"):
        tail.follow(print)
