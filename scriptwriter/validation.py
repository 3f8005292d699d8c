"""Acceptance checks used by the pipelines. Each returns (ok, reason)."""
from __future__ import annotations

import math
from typing import Tuple

from .outline import count_meaningful
from .parsing import OutlineParse


def validate_text(output: str) -> Tuple[bool, str]:
    """Text must be non-empty after stripping."""
    if output is None:
        return False, "No output returned (None)"
    if str(output).strip() == "":
        return False, "Empty output not allowed"
    return True, "ok"


def required_meaningful(start: int, end: int, ratio: float) -> int:
    """Chapters in [start, end] that need a title and a summary for a batch to pass."""
    size = end - start + 1
    if size <= 0:
        return 0
    return max(1, math.ceil(size * ratio - 1e-9))


def validate_outline_batch(parsed: OutlineParse, start: int, end: int, ratio: float = 0.7) -> Tuple[bool, str]:
    """A batch passes when enough chapters in range carry both a title and a summary."""
    if not parsed.ok:
        return False, f"unparsable outline output (method={parsed.method})"
    have = count_meaningful(parsed.outline, start, end)
    need = required_meaningful(start, end, ratio)
    if have >= need:
        return True, "ok"
    return False, f"only {have}/{end - start + 1} meaningful chapters in range {start}-{end} (need {need})"
