"""Coloured, classified status lines for the operator."""

from __future__ import annotations

import sys
from typing import TextIO

from stackpilot.utils.masking import SECRETS

RED = "\033[0;31m"
GREEN = "\033[0;32m"
YELLOW = "\033[1;33m"
BLUE = "\033[0;34m"
PURPLE = "\033[0;35m"
NC = "\033[0m"


class Console:
    def __init__(self, stream: TextIO | None = None, color: bool | None = None) -> None:
        self._stream = stream or sys.stdout
        if color is None:
            color = hasattr(self._stream, "isatty") and self._stream.isatty()
        self._color = color

    def _emit(self, color: str, label: str, message: str) -> None:
        message = SECRETS.scrub(message)
        if self._color:
            self._stream.write(f"{color}[{label}]{NC} {message}\n")
        else:
            self._stream.write(f"[{label}] {message}\n")
        self._stream.flush()

    def status(self, message: str) -> None:
        self._emit(BLUE, "INFO", message)

    def success(self, message: str) -> None:
        self._emit(GREEN, "SUCCESS", message)

    def warning(self, message: str) -> None:
        self._emit(YELLOW, "WARNING", message)

    def error(self, message: str) -> None:
        self._emit(RED, "ERROR", message)

    def section(self, message: str) -> None:
        self._emit(PURPLE, "SECTION", message)

    def line(self, message: str = "") -> None:
        self._stream.write(SECRETS.scrub(message) + "\n")
        self._stream.flush()
