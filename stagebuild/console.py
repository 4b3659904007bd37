"""Console output with a configurable log level."""
from __future__ import annotations

import sys
import threading


class Console:
    """Simple console output handler with configurable log level.

    Levels: none < error < info < debug. Action descriptions are printed at
    ``info``; the executed command lines only at ``debug`` (verbose).
    """

    LEVELS = {
        "none": 0,
        "error": 1,
        "info": 2,
        "debug": 3,
    }

    def __init__(self, level: str = "info"):
        if level not in self.LEVELS:
            raise ValueError(f"Unknown log level '{level}'. Available: {', '.join(self.LEVELS)}")
        self.level_name = level
        self.level = self.LEVELS[level]
        self._lock = threading.Lock()

    @classmethod
    def for_verbosity(cls, level: str, *, verbose: bool) -> "Console":
        return cls("debug" if verbose else level)

    @property
    def verbose(self) -> bool:
        return self.level >= self.LEVELS["debug"]

    def info(self, message: str) -> None:
        if self.level >= self.LEVELS["info"]:
            self._emit(f"[INFO] {message}")

    def error(self, message: str) -> None:
        if self.level >= self.LEVELS["error"]:
            self._emit(f"[ERROR] {message}", stream=sys.stderr)

    def debug(self, message: str) -> None:
        if self.level >= self.LEVELS["debug"]:
            self._emit(f"[DEBUG] {message}")

    def _emit(self, line: str, *, stream=None) -> None:
        # Workers share the console.
        with self._lock:
            print(line, file=stream or sys.stdout)
