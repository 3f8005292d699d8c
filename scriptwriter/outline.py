"""Chapter outline value types, the normalizer, and the persisted ChapterDraftRecord.

Public API:
- OutlineChapter, ChapterOutline
- default_title(index) -> "Chapter N"
- normalize_outline(outline, desired) -> ChapterOutline
- merge_additive(base, incoming, start, end) -> ChapterOutline
- count_meaningful(outline, start, end) -> int
- first_incomplete_chapter(outline, total) -> int
- chapter_count_from_framework(framework) -> int  (0 means unset)
- format_outline_context(outline, start, window) -> str
- ChapterDraftRecord / ChapterDraftEntry with load_record/save_record
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from .config import CHAPTER_DRAFT_FILE, MAX_CHAPTERS, MIN_DEFAULT_CHAPTERS
from .context import NotFoundError
from .utils import as_int, brief_summary


@dataclass(frozen=True)
class OutlineChapter:
    index: int
    title: str = ""
    summary: str = ""
    outline: str = ""

    def is_meaningful(self) -> bool:
        return bool(self.title.strip()) and bool(self.summary.strip())

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "title": self.title, "summary": self.summary, "outline": self.outline}


@dataclass(frozen=True)
class ChapterOutline:
    version: str = "v1"
    chapters: List[OutlineChapter] = field(default_factory=list)

    def by_index(self) -> Dict[int, OutlineChapter]:
        out: Dict[int, OutlineChapter] = {}
        for ch in self.chapters:
            out.setdefault(ch.index, ch)
        return out

    def get(self, index: int) -> Optional[OutlineChapter]:
        return self.by_index().get(index)

    def to_dict(self) -> Dict[str, Any]:
        return {"version": self.version, "chapters": [c.to_dict() for c in self.chapters]}


def default_title(index: int) -> str:
    return f"Chapter {index}"


def clamp_chapters(n: int) -> int:
    return max(1, min(MAX_CHAPTERS, int(n)))


def normalize_outline(outline: Optional[ChapterOutline], desired: int = 0) -> ChapterOutline:
    """Pad/trim `outline` to exactly `target` chapters numbered 1..target.

    target = desired if positive, else max(existing, 8); clamped to [1, 300].
    First occurrence wins on duplicate indices. Pure and idempotent.
    """
    outline = outline or ChapterOutline()
    target = desired if desired > 0 else max(len(outline.chapters), MIN_DEFAULT_CHAPTERS)
    target = clamp_chapters(target)

    by_idx: Dict[int, OutlineChapter] = {}
    for ch in outline.chapters:
        if ch.index <= 0 or ch.index in by_idx:
            continue
        by_idx[ch.index] = ch

    chapters: List[OutlineChapter] = []
    for i in range(1, target + 1):
        ch = by_idx.get(i)
        if ch is None:
            chapters.append(OutlineChapter(index=i, title=default_title(i)))
            continue
        chapters.append(OutlineChapter(
            index=i,
            title=ch.title.strip() or default_title(i),
            summary=ch.summary.strip(),
            outline=ch.outline.strip(),
        ))
    version = (outline.version or "").strip() or "v1"
    return ChapterOutline(version=version, chapters=chapters)


def _title_is_empty(ch: OutlineChapter) -> bool:
    t = ch.title.strip()
    return not t or t == default_title(ch.index)


def merge_additive(base: ChapterOutline, incoming: ChapterOutline, start: int = 1, end: Optional[int] = None) -> ChapterOutline:
    """Fold `incoming` into `base` without overwriting any non-empty field.

    Only chapters with start <= index <= end are considered. A synthesized
    "Chapter N" title counts as empty so a placeholder never blocks a real one.
    """
    merged: Dict[int, OutlineChapter] = {}
    order: List[int] = []
    for ch in base.chapters:
        if ch.index not in merged:
            merged[ch.index] = ch
            order.append(ch.index)

    for ch in incoming.chapters:
        if ch.index <= 0 or ch.index < start or (end is not None and ch.index > end):
            continue
        cur = merged.get(ch.index)
        if cur is None:
            merged[ch.index] = ch
            order.append(ch.index)
            continue
        merged[ch.index] = replace(
            cur,
            title=ch.title if _title_is_empty(cur) and ch.title.strip() else cur.title,
            summary=ch.summary if not cur.summary.strip() else cur.summary,
            outline=ch.outline if not cur.outline.strip() else cur.outline,
        )
    return ChapterOutline(version=base.version or incoming.version or "v1", chapters=[merged[i] for i in order])


def count_meaningful(outline: ChapterOutline, start: int, end: int) -> int:
    seen = set()
    n = 0
    for ch in outline.chapters:
        if ch.index < start or ch.index > end or ch.index in seen:
            continue
        seen.add(ch.index)
        if ch.is_meaningful():
            n += 1
    return n


def first_incomplete_chapter(outline: ChapterOutline, total: int) -> int:
    """Return the first index in 1..total lacking a title or summary, or total + 1."""
    by_idx = outline.by_index()
    for i in range(1, total + 1):
        ch = by_idx.get(i)
        if ch is None or not ch.is_meaningful():
            return i
    return total + 1


def chapter_count_from_framework(framework: Optional[Dict[str, Any]]) -> int:
    """Desired chapter count from framework["chapter_count"]; 0 when unset or invalid."""
    if not isinstance(framework, dict):
        return 0
    n = as_int(framework.get("chapter_count"), 0)
    if n <= 0:
        return 0
    return clamp_chapters(n)


def format_outline_context(outline: ChapterOutline, start: int, window: int = 6) -> str:
    """Recap of up to `window` chapters immediately before `start`.

    Chapters with no title, summary or beats are skipped.
    """
    if start <= 1 or window <= 0:
        return ""
    by_idx = outline.by_index()
    lines: List[str] = []
    for i in range(max(1, start - window), start):
        ch = by_idx.get(i)
        if ch is None:
            continue
        title, summary, beats = ch.title.strip(), ch.summary.strip(), ch.outline.strip()
        if not (title or summary or beats):
            continue
        lines.append(f"- Chapter {i} {title}".rstrip())
        if summary:
            lines.append("  summary: " + brief_summary(summary, 220))
        if beats:
            lines.append("  outline: " + brief_summary(beats.replace("\n", " "), 260))
    return "\n".join(lines).strip()


# ---------------------------
# ChapterDraftRecord
# ---------------------------

@dataclass
class ChapterDraftEntry:
    index: int
    title: str = ""
    summary: str = ""
    outline: str = ""
    user_draft: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "title": self.title,
            "summary": self.summary,
            "outline": self.outline,
            "user_draft": self.user_draft,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChapterDraftEntry":
        return cls(
            index=as_int(data.get("index"), 0),
            title=str(data.get("title") or ""),
            summary=str(data.get("summary") or ""),
            outline=str(data.get("outline") or ""),
            user_draft=str(data.get("user_draft") or ""),
        )


@dataclass
class ChapterDraftRecord:
    version: str = "v1"
    chapters: List[ChapterDraftEntry] = field(default_factory=list)

    def entry(self, index: int) -> Optional[ChapterDraftEntry]:
        for ch in self.chapters:
            if ch.index == index:
                return ch
        return None

    def to_outline(self) -> ChapterOutline:
        return ChapterOutline(
            version=self.version or "v1",
            chapters=[OutlineChapter(c.index, c.title, c.summary, c.outline) for c in self.chapters if c.index > 0],
        )

    def apply_outline(self, outline: ChapterOutline) -> None:
        """Upsert outline fields chapter by chapter; user_draft is never touched."""
        self.version = outline.version or self.version or "v1"
        for ch in outline.chapters:
            cur = self.entry(ch.index)
            if cur is None:
                self.chapters.append(ChapterDraftEntry(ch.index, ch.title, ch.summary, ch.outline))
            else:
                cur.title, cur.summary, cur.outline = ch.title, ch.summary, ch.outline
        self.chapters.sort(key=lambda c: c.index)

    def upsert_user_draft(self, index: int, text: str) -> None:
        cur = self.entry(index)
        if cur is None:
            self.chapters.append(ChapterDraftEntry(index=index, title=default_title(index), user_draft=text))
            self.chapters.sort(key=lambda c: c.index)
        else:
            cur.user_draft = text

    def to_dict(self) -> Dict[str, Any]:
        return {"version": self.version, "chapters": [c.to_dict() for c in self.chapters]}

    @classmethod
    def from_dict(cls, data: Any) -> "ChapterDraftRecord":
        if not isinstance(data, dict):
            return cls()
        chapters = [ChapterDraftEntry.from_dict(c) for c in (data.get("chapters") or []) if isinstance(c, dict)]
        return cls(version=str(data.get("version") or "v1"), chapters=chapters)


def load_record(store, project_id: str) -> ChapterDraftRecord:
    """Load chapter_draft.json; a missing file is an empty record."""
    try:
        return ChapterDraftRecord.from_dict(store.load(project_id, CHAPTER_DRAFT_FILE))
    except NotFoundError:
        return ChapterDraftRecord()


def save_record(store, project_id: str, record: ChapterDraftRecord) -> None:
    store.save(project_id, CHAPTER_DRAFT_FILE, record.to_dict())
