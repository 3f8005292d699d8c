"""Utility helpers: text I/O, JSON rendering, ids and truncation.

Public helpers:
- save_text(path, content)
- read_text(path)
- to_text(obj)
- now_iso()
- new_id(prefix)
- brief_summary(text, max_chars)
"""
from __future__ import annotations

import json
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .context import MissingFileError


def save_text(path: str | Path, content: str) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(content, encoding="utf-8")


def read_text(path: str | Path) -> str:
    p = Path(path)
    if not p.exists():
        raise MissingFileError(f"Required file not found: {path}")
    return p.read_text(encoding="utf-8")


def to_text(obj: Any) -> str:
    try:
        return json.dumps(obj, ensure_ascii=False, indent=2, default=str)
    except (TypeError, ValueError):
        return str(obj)


def to_compact_json(obj: Any) -> str:
    """Single-line JSON used when embedding caller data into prompts."""
    try:
        return json.dumps(obj, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return "null"


def now_iso() -> str:
    """UTC timestamp with microseconds; lexical order matches time order."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def new_id(prefix: str) -> str:
    """Time-ordered unique token, e.g. draft_1718000000000000000_3fa2c1."""
    return f"{prefix}_{time.time_ns()}_{uuid.uuid4().hex[:6]}"


def brief_summary(text: str, max_chars: int) -> str:
    """Trim and cut `text` to at most `max_chars` characters, ending with an ellipsis when cut.

    Slicing works on code points, so multi-byte characters are never split.
    """
    text = (text or "").strip()
    if not text or max_chars <= 0 or len(text) <= max_chars:
        return text
    return text[: max_chars - 1].rstrip() + "…"


def as_int(value: Any, default: int) -> int:
    """Lenient int conversion for option/framework values (int, float or numeric string)."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    try:
        s = str(value).strip()
        return int(s) if s else default
    except ValueError:
        return default
