"""Resume helpers: where the next outline batch starts and how far it reaches."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .config import BATCH_SIZE_MAX, BATCH_SIZES, MAX_FILL_BATCH
from .outline import ChapterOutline, first_incomplete_chapter


def choose_batch_size(total: int) -> int:
    for bound, size in BATCH_SIZES:
        if total <= bound:
            return size
    return BATCH_SIZE_MAX


@dataclass(frozen=True)
class FillRange:
    start: int
    end: int
    total: int

    @property
    def complete(self) -> bool:
        return self.start > self.total

    @property
    def empty(self) -> bool:
        return self.start > self.end

    @property
    def size(self) -> int:
        return max(0, self.end - self.start + 1)


def next_fill_range(outline: ChapterOutline, total: int, batch_size: Optional[int] = None) -> FillRange:
    """Range of the next batch, always searching from chapter 1.

    batch_size is clamped to 1..20; None or non-positive uses choose_batch_size(total).
    """
    size = batch_size if batch_size and batch_size > 0 else choose_batch_size(total)
    size = max(1, min(MAX_FILL_BATCH, size))
    start = first_incomplete_chapter(outline, total)
    end = min(start + size - 1, total)
    return FillRange(start=start, end=end, total=total)
