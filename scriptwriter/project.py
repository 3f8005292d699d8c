"""Projects: the top-level record holding the framework and the active-draft pointer.

A project is one directory in the blob store with `project.json` plus the
side files created alongside it (memory, summaries, workflow, chapter draft).
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import (
    CHAPTER_DRAFT_FILE,
    MEMORY_FILE,
    PROJECT_FILE,
    RECOMMENDED_COMMANDS,
    SUMMARIES_FILE,
    WORKFLOW_FILE,
)
from .context import NotFoundError, ProjectNotFoundError, SWError
from .logging import log_run, log_warning
from .utils import as_int, now_iso, new_id


@dataclass
class Cursor:
    chapter: int = 1
    scene: int = 1
    segment: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"chapter": self.chapter, "scene": self.scene, "segment": self.segment}

    @classmethod
    def from_dict(cls, data: Any) -> "Cursor":
        if not isinstance(data, dict):
            return cls()
        return cls(
            chapter=as_int(data.get("chapter"), 1),
            scene=as_int(data.get("scene"), 1),
            segment=as_int(data.get("segment"), 0),
        )


@dataclass
class ProjectState:
    active_draft_id: str = ""
    cursor: Cursor = field(default_factory=Cursor)

    def to_dict(self) -> Dict[str, Any]:
        return {"active_draft_id": self.active_draft_id, "cursor": self.cursor.to_dict()}

    @classmethod
    def from_dict(cls, data: Any) -> "ProjectState":
        if not isinstance(data, dict):
            return cls()
        return cls(
            active_draft_id=str(data.get("active_draft_id") or ""),
            cursor=Cursor.from_dict(data.get("cursor")),
        )


@dataclass
class Project:
    id: str
    title: str
    type: str = "novel"
    created_at: str = ""
    updated_at: str = ""
    framework: Dict[str, Any] = field(default_factory=dict)
    recommended_commands: List[Dict[str, str]] = field(default_factory=list)
    state: ProjectState = field(default_factory=ProjectState)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "type": self.type,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "framework": self.framework,
            "recommended_commands": self.recommended_commands,
            "state": self.state.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        framework = data.get("framework")
        commands = data.get("recommended_commands")
        return cls(
            id=str(data.get("id") or ""),
            title=str(data.get("title") or ""),
            type=str(data.get("type") or "novel"),
            created_at=str(data.get("created_at") or ""),
            updated_at=str(data.get("updated_at") or ""),
            framework=framework if isinstance(framework, dict) else {},
            recommended_commands=commands if isinstance(commands, list) else [],
            state=ProjectState.from_dict(data.get("state")),
        )


def _empty_side_files() -> Dict[str, Any]:
    return {
        MEMORY_FILE: {"version": 1, "updated_at": now_iso(), "facts": [], "character_state": {}, "open_threads": [], "foreshadowing": []},
        SUMMARIES_FILE: {"items": []},
        WORKFLOW_FILE: {"items": []},
        CHAPTER_DRAFT_FILE: {"version": "v1", "chapters": []},
    }


class ProjectRepository:
    def __init__(self, store) -> None:
        self.store = store

    def create(self, title: str, type_: str = "", framework: Optional[Dict[str, Any]] = None) -> Project:
        if not (title or "").strip():
            raise SWError("title is required")
        now = now_iso()
        project = Project(
            id=new_id("script"),
            title=title.strip(),
            type=(type_ or "").strip() or "novel",
            created_at=now,
            updated_at=now,
            framework=dict(framework or {}),
            recommended_commands=copy.deepcopy(RECOMMENDED_COMMANDS),
        )
        self.store.save(project.id, PROJECT_FILE, project.to_dict())
        for name, value in _empty_side_files().items():
            try:
                self.store.save(project.id, name, value)
            except (OSError, SWError) as e:
                log_warning(f"create_project: side file {name} not initialized for {project.id}: {e}")
        log_run(f"Project created | id={project.id} type={project.type}")
        return project

    def get(self, project_id: str) -> Project:
        if not (project_id or "").strip():
            raise ProjectNotFoundError("project id is required")
        try:
            data = self.store.load(project_id, PROJECT_FILE)
        except NotFoundError:
            raise ProjectNotFoundError(f"project not found: {project_id}")
        if not isinstance(data, dict):
            raise SWError(f"project.json of {project_id} is not an object")
        return Project.from_dict(data)

    def save(self, project: Project, *, touch: bool = True) -> None:
        if touch:
            project.updated_at = now_iso()
        self.store.save(project.id, PROJECT_FILE, project.to_dict())

    def list(self) -> List[Project]:
        """All readable projects, most recently updated first."""
        out: List[Project] = []
        for pid in self.store.list_projects():
            try:
                out.append(self.get(pid))
            except SWError:
                continue
        out.sort(key=lambda p: p.updated_at, reverse=True)
        return out

    def update_basics(self, project_id: str, *, title: str = "", type_: str = "", framework: Optional[Dict[str, Any]] = None) -> Project:
        project = self.get(project_id)
        if (title or "").strip():
            project.title = title.strip()
        if (type_ or "").strip():
            project.type = type_.strip()
        if framework is not None:
            project.framework = dict(framework)
        self.save(project)
        return project

    def delete(self, project_id: str) -> None:
        self.get(project_id)
        try:
            self.store.delete_project(project_id)
        except NotFoundError:
            raise ProjectNotFoundError(f"project not found: {project_id}")
        log_run(f"Project deleted | id={project_id}")

    def set_pointer(self, project: Project, draft_id: str, chapter: int, scene: int, segment: int = 0) -> Project:
        """Repoint the active draft and cursor, then persist. Failures propagate."""
        project.state.active_draft_id = draft_id
        project.state.cursor = Cursor(chapter=chapter, scene=scene, segment=segment)
        self.save(project)
        return project
