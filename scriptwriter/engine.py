"""Engine facade: one object owning the collaborators, one method per operation.

The completion service and the blob store are injected; everything else is
built from them. Each generating call gets its own PipelineContext carrying
the cancel token and progress callback for that call only.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from .config import Settings, WORKFLOW_BRIEF_CHARS
from .context import CancelToken, CompletionNotReadyError, SWError
from .drafts import Draft, DraftMeta, DraftStore
from .export import ExportResult, export_draft, write_export
from .logging import log_run
from .memory import AdvisoryWrite, ChapterSummaryIndex, MemoryIndex, advisory, load_memory, load_summaries
from .outline import ChapterOutline, load_record, normalize_outline, save_record
from .pipelines.command import CommandRequest, CommandResult, Target, run_command
from .pipelines.common import PipelineContext, ProgressFn
from .pipelines.outline_batch import InitialResult, generate_initial
from .pipelines.outline_fill import FillResult, fill_outline_next, fill_total, fill_until_complete
from .project import Project, ProjectRepository
from .store import BlobStore, FileBlobStore
from .utils import brief_summary
from .workflow import append_item, load_items, make_item


class ScriptEngine:
    def __init__(self, completion, store: Optional[BlobStore] = None, settings: Optional[Settings] = None) -> None:
        self.completion = completion
        self.store = store if store is not None else FileBlobStore()
        self.settings = settings if settings is not None else Settings.from_env()
        self.projects = ProjectRepository(self.store)
        self.drafts = DraftStore(self.store, self.projects)

    def _context(self, project_id: str, cancel: Optional[CancelToken], progress: Optional[ProgressFn]) -> PipelineContext:
        is_ready = getattr(self.completion, "is_ready", None)
        if callable(is_ready) and not is_ready():
            raise CompletionNotReadyError("completion service is not configured (set OPENAI_API_KEY or AZURE_OPENAI_API_KEY)")
        return PipelineContext(
            completion=self.completion,
            store=self.store,
            settings=self.settings,
            cancel=cancel,
            progress=progress,
            project_id=project_id,
        )

    # Projects

    def create_project(self, title: str, type_: str = "", framework: Optional[Dict[str, Any]] = None) -> Project:
        return self.projects.create(title, type_, framework)

    def get_project(self, project_id: str) -> Project:
        return self.projects.get(project_id)

    def list_projects(self) -> List[Project]:
        return self.projects.list()

    def update_project(self, project_id: str, *, title: str = "", type_: str = "", framework: Optional[Dict[str, Any]] = None) -> Project:
        return self.projects.update_basics(project_id, title=title, type_=type_, framework=framework)

    def delete_project(self, project_id: str) -> None:
        self.projects.delete(project_id)

    # Generation

    def generate_initial(
        self,
        project_id: str,
        *,
        cancel: Optional[CancelToken] = None,
        progress: Optional[ProgressFn] = None,
        with_beats: bool = True,
    ) -> InitialResult:
        project = self.projects.get(project_id)
        ctx = self._context(project.id, cancel, progress)
        return generate_initial(ctx, self.drafts, project, with_beats=with_beats)

    def fill_outline_next(
        self,
        project_id: str,
        batch_size: Optional[int] = None,
        *,
        cancel: Optional[CancelToken] = None,
        progress: Optional[ProgressFn] = None,
    ) -> FillResult:
        project = self.projects.get(project_id)
        ctx = self._context(project.id, cancel, progress)
        return fill_outline_next(ctx, project, batch_size)

    def fill_until_complete(
        self,
        project_id: str,
        batch_size: Optional[int] = None,
        *,
        max_rounds: int = 0,
        cancel: Optional[CancelToken] = None,
        progress: Optional[ProgressFn] = None,
    ) -> List[FillResult]:
        project = self.projects.get(project_id)
        ctx = self._context(project.id, cancel, progress)
        return fill_until_complete(ctx, project, batch_size, max_rounds)

    def command(
        self,
        project_id: str,
        req: CommandRequest,
        *,
        cancel: Optional[CancelToken] = None,
        progress: Optional[ProgressFn] = None,
    ) -> CommandResult:
        project = self.projects.get(project_id)
        ctx = self._context(project.id, cancel, progress)
        return run_command(ctx, self.drafts, project, req)

    # Drafts

    def manual_edit(
        self,
        project_id: str,
        text: str,
        target: Optional[Target] = None,
        *,
        base_draft_id: str = "",
        user_prompt: str = "",
        sync_user_draft: bool = False,
    ) -> Draft:
        """Snapshot caller-supplied text for one scene without calling the completion service.

        The snapshot and pointer are canonical; the user_draft sync and the
        workflow item are advisory.
        """
        project = self.projects.get(project_id)
        target = (target or Target()).resolved()
        base_id = (base_draft_id or "").strip() or project.state.active_draft_id
        base = self.drafts.load(project.id, base_id) if base_id else None
        note = (user_prompt or "").strip() or "manual_edit"
        draft = self.drafts.create_snapshot(
            project, base, target.chapter, target.scene, text,
            user_prompt=note, segment=target.segment,
        )
        if sync_user_draft:
            def _sync() -> None:
                record = load_record(self.store, project.id)
                record.upsert_user_draft(target.chapter, (text or "").strip())
                save_record(self.store, project.id, record)
            advisory("chapter_draft", _sync)
        item = make_item(
            "manual_edit",
            draft_id=draft.draft_id,
            assist_mode="manual",
            user_input=note,
            command="manual_edit",
            target=target.to_dict(),
            output={"main_text": brief_summary(text, WORKFLOW_BRIEF_CHARS)},
        )
        advisory("workflow", lambda: append_item(self.store, project.id, item))
        return draft

    def rewind(self, project_id: str, draft_id: str) -> Project:
        project = self.projects.get(project_id)
        return self.drafts.rewind(project, draft_id)

    def list_drafts(self, project_id: str) -> List[DraftMeta]:
        self.projects.get(project_id)
        return self.drafts.list_metas(project_id)

    def load_draft(self, project_id: str, draft_id: str = "") -> Optional[Draft]:
        """A specific draft, or the active one when `draft_id` is empty."""
        project = self.projects.get(project_id)
        if (draft_id or "").strip():
            return self.drafts.load(project.id, draft_id)
        return self.drafts.active_draft(project)

    # Outline and side files

    def load_outline(self, project_id: str) -> ChapterOutline:
        project = self.projects.get(project_id)
        record = load_record(self.store, project.id)
        outline = record.to_outline()
        return normalize_outline(outline, fill_total(project.framework, outline))

    def update_chapter_user_draft(self, project_id: str, chapter: int, text: str) -> AdvisoryWrite:
        if chapter <= 0:
            raise SWError("chapter must be positive")
        project = self.projects.get(project_id)
        record = load_record(self.store, project.id)
        record.upsert_user_draft(chapter, (text or "").strip())
        save_record(self.store, project.id, record)
        log_run(f"User draft updated | project={project.id} chapter={chapter}")
        return advisory("project", lambda: self.projects.save(project))

    def load_memory(self, project_id: str) -> MemoryIndex:
        self.projects.get(project_id)
        return load_memory(self.store, project_id)

    def load_summaries(self, project_id: str) -> ChapterSummaryIndex:
        self.projects.get(project_id)
        return load_summaries(self.store, project_id)

    def load_workflow(self, project_id: str, limit: int = 0) -> List[Dict[str, Any]]:
        self.projects.get(project_id)
        return load_items(self.store, project_id, limit)

    # Export

    def export(self, project_id: str, fmt: str = "markdown", *, include_appendix: bool = False, save: bool = True) -> ExportResult:
        """Render the active draft; with `save`, also write it under the project's exports/ directory."""
        project = self.projects.get(project_id)
        result = export_draft(self.store, project, self.drafts.active_draft(project), fmt, include_appendix)
        root = getattr(self.store, "root", None)
        if save and root is not None:
            write_export(result, root / project.id / "exports")
        log_run(f"Export | project={project.id} format={result.format} bytes={result.size}")
        return result
