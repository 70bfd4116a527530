from __future__ import annotations

import datetime as dt
import sys
import threading
from pathlib import Path
from typing import Optional, TextIO


class RunLog:
    """Append-only run log shared by the stdout and stderr mirrors.

    The poller and the persistence worker print from different threads, so
    writes go through one lock and every line gets a wall-clock prefix in the
    file. The console output is left untouched.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._handle: Optional[TextIO] = None
        self._at_line_start = True

    def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = self.path.open("a", encoding="utf-8", buffering=1)
        stamp = dt.datetime.now().isoformat(timespec="seconds")
        self._handle.write(f"\n---- recorder started {stamp} ----\n")
        self._at_line_start = True

    def close(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.close()
                self._handle = None

    def write(self, data: str) -> None:
        with self._lock:
            if self._handle is None or not data:
                return
            parts = []
            for line in data.splitlines(keepends=True):
                if self._at_line_start:
                    parts.append(dt.datetime.now().strftime("%H:%M:%S.%f")[:-3] + " ")
                parts.append(line)
                self._at_line_start = line.endswith("\n")
            self._handle.write("".join(parts))

    def flush(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.flush()


class _Mirror:
    """File-like wrapper that forwards to a console stream and the run log."""

    def __init__(self, console: TextIO, run_log: RunLog) -> None:
        self.console = console
        self.run_log = run_log

    def write(self, data: str) -> int:
        self.console.write(data)
        self.run_log.write(data)
        return len(data)

    def flush(self) -> None:
        self.console.flush()
        self.run_log.flush()

    def isatty(self) -> bool:
        return bool(getattr(self.console, "isatty", lambda: False)())

    @property
    def encoding(self) -> str | None:
        return getattr(self.console, "encoding", None)


_active: Optional[RunLog] = None


def configure_runtime_log(log_file: Path) -> Path:
    """Mirror stdout/stderr into ``log_file`` and return its resolved path."""
    global _active
    restore_runtime_streams()
    run_log = RunLog(log_file.expanduser().resolve())
    run_log.open()
    sys.stdout = _Mirror(sys.stdout, run_log)  # type: ignore[assignment]
    sys.stderr = _Mirror(sys.stderr, run_log)  # type: ignore[assignment]
    _active = run_log
    return run_log.path


def restore_runtime_streams() -> None:
    global _active
    for name in ("stdout", "stderr"):
        stream = getattr(sys, name)
        if isinstance(stream, _Mirror):
            setattr(sys, name, stream.console)
    if _active is not None:
        _active.close()
        _active = None
