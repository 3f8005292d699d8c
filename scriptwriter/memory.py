"""Memory index (facts, open threads, foreshadowing, character state) and chapter summaries.

Both are derived indices folded from command output. Merges are append-only
and deduplicate on exact trimmed text. Writes to these files are advisory:
callers record the outcome as an AdvisoryWrite instead of failing.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .config import MEMORY_FILE, SUMMARIES_FILE, SUMMARY_MAX_CHARS, SUMMARY_MAX_OPTIONS
from .context import NotFoundError, SWError
from .logging import log_warning
from .utils import as_int, brief_summary, new_id, now_iso


@dataclass
class AdvisoryWrite:
    """Outcome of a best-effort side write."""

    name: str
    ok: bool = True
    error: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "ok": self.ok, "error": self.error}


def advisory(name: str, fn: Callable[[], Any]) -> AdvisoryWrite:
    """Run `fn`; a store or I/O failure is logged and reported instead of raised."""
    try:
        fn()
        return AdvisoryWrite(name=name)
    except (SWError, OSError, ValueError, TypeError) as e:
        log_warning(f"advisory write '{name}' failed: {e}")
        return AdvisoryWrite(name=name, ok=False, error=str(e))


def _string_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


@dataclass
class MemoryIndex:
    version: int = 1
    updated_at: str = ""
    facts: List[Dict[str, Any]] = field(default_factory=list)
    open_threads: List[Dict[str, Any]] = field(default_factory=list)
    foreshadowing: List[Dict[str, Any]] = field(default_factory=list)
    character_state: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def _has(items: List[Dict[str, Any]], text: str) -> bool:
        return any(str(it.get("text") or "").strip() == text for it in items)

    def merge(self, update: Optional[Dict[str, Any]]) -> int:
        """Fold a memory_update mapping in; returns the number of new entries."""
        if not isinstance(update, dict):
            return 0
        added = 0
        for text in _string_list(update.get("added_facts")):
            text = text.strip()
            if text and not self._has(self.facts, text):
                self.facts.append({"id": new_id("fact"), "text": text, "tags": [], "confidence": 0.8})
                added += 1
        for text in _string_list(update.get("open_threads")):
            text = text.strip()
            if text and not self._has(self.open_threads, text):
                self.open_threads.append({"id": new_id("thread"), "text": text, "status": "open"})
                added += 1
        for text in _string_list(update.get("foreshadowing")):
            text = text.strip()
            if text and not self._has(self.foreshadowing, text):
                self.foreshadowing.append({"id": new_id("foreshadow"), "text": text, "status": "planned"})
                added += 1
        cs = update.get("character_state")
        if isinstance(cs, dict):
            self.character_state.update(cs)
        self.updated_at = now_iso()
        return added

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "updated_at": self.updated_at,
            "facts": self.facts,
            "character_state": self.character_state,
            "open_threads": self.open_threads,
            "foreshadowing": self.foreshadowing,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "MemoryIndex":
        if not isinstance(data, dict):
            return cls()

        def _items(key: str) -> List[Dict[str, Any]]:
            return [x for x in (data.get(key) or []) if isinstance(x, dict)]

        cs = data.get("character_state")
        return cls(
            version=as_int(data.get("version"), 1),
            updated_at=str(data.get("updated_at") or ""),
            facts=_items("facts"),
            open_threads=_items("open_threads"),
            foreshadowing=_items("foreshadowing"),
            character_state=dict(cs) if isinstance(cs, dict) else {},
        )


def load_memory(store, project_id: str) -> MemoryIndex:
    try:
        return MemoryIndex.from_dict(store.load(project_id, MEMORY_FILE))
    except NotFoundError:
        return MemoryIndex(updated_at=now_iso())


def apply_memory_update(store, project_id: str, update: Optional[Dict[str, Any]]) -> MemoryIndex:
    mem = load_memory(store, project_id)
    if not update:
        return mem
    mem.merge(update)
    store.save(project_id, MEMORY_FILE, mem.to_dict())
    return mem


# ---------------------------
# Chapter summaries
# ---------------------------

@dataclass
class ChapterSummary:
    chapter: int
    draft_id: str = ""
    summary: str = ""
    conflict_state: str = ""
    next_options: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chapter": self.chapter,
            "draft_id": self.draft_id,
            "summary": self.summary,
            "conflict_state": self.conflict_state,
            "next_options": self.next_options,
        }


@dataclass
class ChapterSummaryIndex:
    items: List[ChapterSummary] = field(default_factory=list)

    def get(self, chapter: int) -> Optional[ChapterSummary]:
        for it in self.items:
            if it.chapter == chapter:
                return it
        return None

    def update(self, chapter: int, draft_id: str, main_text: str, branches: Optional[List[Dict[str, str]]] = None) -> ChapterSummary:
        """Overwrite the entry for `chapter` from command output."""
        chapter = chapter if chapter > 0 else 1
        item = ChapterSummary(
            chapter=chapter,
            draft_id=draft_id,
            summary=brief_summary(main_text, SUMMARY_MAX_CHARS),
            next_options=[dict(b) for b in (branches or [])][:SUMMARY_MAX_OPTIONS],
        )
        for i, it in enumerate(self.items):
            if it.chapter == chapter:
                self.items[i] = item
                return item
        self.items.append(item)
        return item

    def to_dict(self) -> Dict[str, Any]:
        return {"items": [it.to_dict() for it in self.items]}

    @classmethod
    def from_dict(cls, data: Any) -> "ChapterSummaryIndex":
        if not isinstance(data, dict):
            return cls()
        items = []
        for raw in data.get("items") or []:
            if not isinstance(raw, dict):
                continue
            opts = raw.get("next_options")
            items.append(ChapterSummary(
                chapter=as_int(raw.get("chapter"), 0),
                draft_id=str(raw.get("draft_id") or ""),
                summary=str(raw.get("summary") or ""),
                conflict_state=str(raw.get("conflict_state") or ""),
                next_options=[o for o in opts if isinstance(o, dict)] if isinstance(opts, list) else [],
            ))
        return cls(items=items)


def load_summaries(store, project_id: str) -> ChapterSummaryIndex:
    try:
        return ChapterSummaryIndex.from_dict(store.load(project_id, SUMMARIES_FILE))
    except NotFoundError:
        return ChapterSummaryIndex()


def apply_summary_update(store, project_id: str, chapter: int, draft_id: str, main_text: str, branches=None) -> ChapterSummary:
    sums = load_summaries(store, project_id)
    item = sums.update(chapter, draft_id, main_text, branches)
    store.save(project_id, SUMMARIES_FILE, sums.to_dict())
    return item
