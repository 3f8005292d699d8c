"""Immutable draft snapshots (chapter -> scene -> text) and the active pointer.

Every edit produces a new Draft built copy-on-write from a base draft with
exactly one scene's text replaced. Drafts are never modified after they are
written; the project's `state.active_draft_id` is the only mutable pointer.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .config import DRAFTS_DIR
from .context import DraftNotFoundError, NotFoundError, SWError
from .logging import breadcrumb, log_run
from .project import Project, ProjectRepository
from .utils import as_int, new_id, now_iso


@dataclass(frozen=True)
class Scene:
    index: int
    text: str = ""
    title: str = ""


@dataclass(frozen=True)
class Chapter:
    index: int
    scenes: Tuple[Scene, ...] = ()
    title: str = ""


@dataclass(frozen=True)
class DraftContent:
    chapters: Tuple[Chapter, ...] = ()

    def chapter(self, index: int) -> Optional[Chapter]:
        for ch in self.chapters:
            if ch.index == index:
                return ch
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chapters": [
                {
                    "index": ch.index,
                    "title": ch.title,
                    "scenes": [{"index": sc.index, "title": sc.title, "text": sc.text} for sc in ch.scenes],
                }
                for ch in self.chapters
            ]
        }

    @classmethod
    def from_dict(cls, data: Any) -> "DraftContent":
        if not isinstance(data, dict):
            return cls()
        chapters = []
        for ch in data.get("chapters") or []:
            if not isinstance(ch, dict):
                continue
            scenes = tuple(
                Scene(index=as_int(sc.get("index"), 0), text=str(sc.get("text") or ""), title=str(sc.get("title") or ""))
                for sc in (ch.get("scenes") or [])
                if isinstance(sc, dict)
            )
            chapters.append(Chapter(index=as_int(ch.get("index"), 0), scenes=scenes, title=str(ch.get("title") or "")))
        return cls(chapters=tuple(chapters))


@dataclass(frozen=True)
class DraftNotes:
    user_prompt: str = ""
    ai_summary: str = ""


@dataclass(frozen=True)
class Draft:
    draft_id: str
    created_at: str
    content: DraftContent = field(default_factory=DraftContent)
    notes: DraftNotes = field(default_factory=DraftNotes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "draft_id": self.draft_id,
            "created_at": self.created_at,
            "content": self.content.to_dict(),
            "notes": {"user_prompt": self.notes.user_prompt, "ai_summary": self.notes.ai_summary},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Draft":
        notes = data.get("notes") if isinstance(data.get("notes"), dict) else {}
        return cls(
            draft_id=str(data.get("draft_id") or ""),
            created_at=str(data.get("created_at") or ""),
            content=DraftContent.from_dict(data.get("content")),
            notes=DraftNotes(user_prompt=str(notes.get("user_prompt") or ""), ai_summary=str(notes.get("ai_summary") or "")),
        )


@dataclass(frozen=True)
class DraftMeta:
    draft_id: str
    created_at: str
    user_prompt: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"draft_id": self.draft_id, "created_at": self.created_at, "user_prompt": self.user_prompt}


def update_draft_content(base: Optional[Draft], chapter: int, scene: int, text: str, chapter_title: str = "") -> DraftContent:
    """Copy `base` content and replace the text of one scene, appending chapter/scene if absent.

    `chapter_title` is only used when the chapter has to be appended.
    """
    chapters: List[Chapter] = list(base.content.chapters) if base is not None else []
    pos = next((i for i, ch in enumerate(chapters) if ch.index == chapter), -1)
    if pos < 0:
        chapters.append(Chapter(index=chapter, title=chapter_title))
        pos = len(chapters) - 1
    target = chapters[pos]
    scenes = list(target.scenes)
    spos = next((i for i, sc in enumerate(scenes) if sc.index == scene), -1)
    if spos < 0:
        scenes.append(Scene(index=scene, text=text))
    else:
        old = scenes[spos]
        scenes[spos] = Scene(index=old.index, text=text, title=old.title)
    chapters[pos] = Chapter(index=target.index, scenes=tuple(scenes), title=target.title)
    return DraftContent(chapters=tuple(chapters))


def extract_scene_text(draft: Optional[Draft], chapter: int, scene: int) -> str:
    """Text of chapter/scene; falls back to the first scene of the first chapter, else ""."""
    if draft is None:
        return ""
    ch = draft.content.chapter(chapter)
    if ch is not None:
        for sc in ch.scenes:
            if sc.index == scene:
                return sc.text
    chapters = draft.content.chapters
    if chapters and chapters[0].scenes:
        return chapters[0].scenes[0].text
    return ""


def _draft_name(draft_id: str) -> str:
    return f"{DRAFTS_DIR}/{draft_id}.json"


class DraftStore:
    def __init__(self, store, projects: ProjectRepository) -> None:
        self.store = store
        self.projects = projects

    def load(self, project_id: str, draft_id: str) -> Draft:
        did = (draft_id or "").strip()
        if not did or "/" in did:
            raise DraftNotFoundError(f"draft not found: {draft_id!r}")
        try:
            data = self.store.load(project_id, _draft_name(did))
        except NotFoundError:
            raise DraftNotFoundError(f"draft not found: {did}")
        if not isinstance(data, dict):
            raise SWError(f"draft {did} is not an object")
        return Draft.from_dict(data)

    def active_draft(self, project: Project) -> Optional[Draft]:
        """The draft the project points at, or None when unset or missing."""
        did = project.state.active_draft_id
        if not did:
            return None
        try:
            return self.load(project.id, did)
        except DraftNotFoundError:
            breadcrumb(f"drafts:active_missing project={project.id} draft={did}")
            return None

    def create_snapshot(
        self,
        project: Project,
        base: Optional[Draft],
        chapter: int,
        scene: int,
        text: str,
        *,
        user_prompt: str = "",
        ai_summary: str = "",
        segment: int = 0,
        chapter_title: str = "",
    ) -> Draft:
        """Write a new immutable draft, then move the project's pointer and cursor to it.

        Both writes are canonical; failures propagate.
        """
        chapter = chapter if chapter > 0 else 1
        scene = scene if scene > 0 else 1
        draft = Draft(
            draft_id=new_id("draft"),
            created_at=now_iso(),
            content=update_draft_content(base, chapter, scene, text, chapter_title),
            notes=DraftNotes(user_prompt=user_prompt, ai_summary=ai_summary),
        )
        self.store.save(project.id, _draft_name(draft.draft_id), draft.to_dict())
        self.projects.set_pointer(project, draft.draft_id, chapter, scene, segment)
        log_run(f"Draft snapshot | project={project.id} draft={draft.draft_id} ch={chapter} sc={scene} base={base.draft_id if base else '-'}")
        return draft

    def rewind(self, project: Project, draft_id: str) -> Project:
        """Repoint the project at an existing draft; cursor moves to its first chapter/scene."""
        if not (draft_id or "").strip():
            raise DraftNotFoundError("draft_id is required")
        draft = self.load(project.id, draft_id)
        chapter, scene = 1, 1
        if draft.content.chapters:
            first = draft.content.chapters[0]
            chapter = first.index if first.index > 0 else 1
            if first.scenes and first.scenes[0].index > 0:
                scene = first.scenes[0].index
        self.projects.set_pointer(project, draft.draft_id, chapter, scene, 0)
        log_run(f"Draft rewind | project={project.id} draft={draft.draft_id}")
        return project

    def list_metas(self, project_id: str) -> List[DraftMeta]:
        """Draft listing, newest first. Unreadable files are skipped."""
        metas: List[DraftMeta] = []
        for name in self.store.list(project_id, DRAFTS_DIR):
            base = name.rsplit("/", 1)[-1]
            if not base.startswith("draft_"):
                continue
            try:
                data = self.store.load(project_id, name)
            except SWError:
                continue
            if not isinstance(data, dict):
                continue
            d = Draft.from_dict(data)
            metas.append(DraftMeta(draft_id=d.draft_id, created_at=d.created_at, user_prompt=d.notes.user_prompt))
        metas.sort(key=lambda m: (m.created_at, m.draft_id), reverse=True)
        return metas
