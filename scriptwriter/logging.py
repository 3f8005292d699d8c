"""Logging helpers: run log, warnings, errors and crash-trace breadcrumbs.

Everything here is best-effort: a failure to log never fails the caller.

Public API:
- crash_trace_file() -> Optional[str]
- breadcrumb(label: str) -> None
- log_run(msg: str) -> None
- log_warning(msg: str) -> None
- log_error_base(msg: str) -> None
- init_run_logs(max_lines: int) -> None
"""
from __future__ import annotations

import os
import sys
import threading
import time
from pathlib import Path
from typing import Optional


def crash_trace_file() -> Optional[str]:
    return os.getenv("SW_CRASH_TRACE_FILE")


def _base_dir() -> Path:
    from .env import get_data_dir  # lazy import to avoid cycles
    return get_data_dir()


def _stamp() -> str:
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime())


def _append(path: Path, line: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(line)


def breadcrumb(label: str) -> None:
    path = crash_trace_file()
    line = f"{_stamp()} pid={os.getpid()} tid={threading.get_ident()} | {label}\n"
    try:
        if path:
            _append(Path(path), line)
    except OSError:
        pass
    log_run(f"BREADCRUMB | {label}")
    if os.getenv("SW_BREADCRUMBS_STDERR", "0") == "1":
        try:
            sys.stderr.write(f"[crumb] {label}\n")
            sys.stderr.flush()
        except (OSError, ValueError):
            pass


def log_run(msg: str) -> None:
    """Append a message to the unified run.log file under the data dir."""
    try:
        _append(_base_dir() / "run.log", f"[{_stamp()}] {msg}\n")
    except OSError:
        pass


def log_warning(msg: str) -> None:
    """Log a warning message to stdout and run.log."""
    text = f"WARNING: {msg}"
    try:
        print(text)
    except (OSError, ValueError):
        pass
    log_run(text)


def log_error_base(msg: str) -> None:
    """Append an error message to run_error.log and run.log."""
    try:
        _append(_base_dir() / "run_error.log", f"[{_stamp()}] {msg}\n")
    except OSError:
        pass
    log_run(f"ERROR: {msg}")
    try:
        print(f"ERROR: {msg}")
    except (OSError, ValueError):
        pass


def init_run_logs(max_lines: int = 5000) -> None:
    """Trim run.log to its last `max_lines` lines at the start of a CLI run."""
    path = _base_dir() / "run.log"
    try:
        if not path.exists():
            return
        lines = path.read_text(encoding="utf-8").splitlines(keepends=True)
        if len(lines) > max_lines:
            path.write_text("".join(lines[-max_lines:]), encoding="utf-8")
    except OSError:
        pass
