"""Batch outline generation and the initial "outline first, then prose" run.

A batch asks the completion service for chapters [start, end] only, parses
the reply with the resilient parser, and retries until enough chapters in
range are meaningful. The result is merged additively into the canonical
outline and re-normalized to the desired chapter count.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..config import (
    BATCH_TOKEN_BUDGET_MAX,
    BATCH_TOKEN_BUDGETS,
    EMPTY_BEATS_TEXT,
    INITIAL_DEFAULT_CHAPTERS,
    MAX_CHAPTERS,
    MIN_DEFAULT_CHAPTERS,
)
from ..drafts import Draft, DraftStore
from ..logging import log_run
from ..memory import AdvisoryWrite, advisory, apply_summary_update
from ..outline import (
    ChapterOutline,
    OutlineChapter,
    chapter_count_from_framework,
    default_title,
    load_record,
    merge_additive,
    normalize_outline,
    save_record,
)
from ..parsing import OutlineParse, parse_outline
from ..project import Project
from ..resume import choose_batch_size
from ..templates import build_outline_range_prompt, build_scene_beats_prompt, build_system_prompt
from ..validation import validate_outline_batch, validate_text
from .common import PipelineContext, call_with_acceptance, env_for, llm_call

__all__ = [
    "choose_batch_size",
    "estimate_batch_max_tokens",
    "initial_total",
    "BatchResult",
    "generate_outline_batch",
    "merge_batch",
    "InitialResult",
    "generate_initial",
]


def estimate_batch_max_tokens(batch_size: int) -> int:
    for bound, budget in BATCH_TOKEN_BUDGETS:
        if batch_size <= bound:
            return budget
    return BATCH_TOKEN_BUDGET_MAX


def initial_total(framework: Optional[Dict[str, Any]]) -> int:
    """Framework chapter count, else 20; clamped to [8, 300]."""
    total = chapter_count_from_framework(framework) or INITIAL_DEFAULT_CHAPTERS
    return max(MIN_DEFAULT_CHAPTERS, min(MAX_CHAPTERS, total))


@dataclass
class BatchResult:
    start: int
    end: int
    outline: Optional[ChapterOutline]
    accepted: bool
    attempts: int
    reason: str = ""

    @property
    def parsed(self) -> bool:
        return self.outline is not None


def _parse(raw: str) -> Tuple[bool, OutlineParse]:
    p = parse_outline(raw)
    return p.ok, p


def generate_outline_batch(
    ctx: PipelineContext,
    framework: Optional[Dict[str, Any]],
    start: int,
    end: int,
    total: int,
    *,
    context: str = "",
    system: Optional[str] = None,
) -> BatchResult:
    """Generate outline entries for [start, end]; entries outside the range are dropped."""
    size = end - start + 1
    model, temp, max_tokens = env_for("OUTLINE", default_temp=0.7, default_max_tokens=estimate_batch_max_tokens(size))
    prompt = build_outline_range_prompt(framework, start, end, total, context)
    ratio = ctx.settings.accept_ratio
    result = call_with_acceptance(
        ctx,
        system if system is not None else build_system_prompt(),
        prompt,
        step=f"outline_{start:03d}_{end:03d}",
        model=model,
        temperature=temp,
        max_tokens=max_tokens,
        parse=_parse,
        validator=lambda p: validate_outline_batch(p, start, end, ratio),
    )
    part = None
    if result.value is not None:
        src = result.value.outline
        part = ChapterOutline(version=src.version, chapters=[c for c in src.chapters if start <= c.index <= end])
    log_run(
        f"Outline batch | project={ctx.project_id or '-'} range={start}-{end} total={total} "
        f"accepted={result.accepted} attempts={result.attempts} chapters={len(part.chapters) if part else 0}"
    )
    return BatchResult(start, end, part, result.accepted, result.attempts, result.reason)


def merge_batch(base: ChapterOutline, batch: BatchResult, total: int) -> ChapterOutline:
    """Normalize base, fold the batch in additively, re-normalize to `total`."""
    merged = normalize_outline(base, total)
    if batch.outline is not None:
        merged = merge_additive(merged, batch.outline, batch.start, batch.end)
    return normalize_outline(merged, total)


@dataclass
class InitialResult:
    outline: ChapterOutline
    batch: BatchResult
    draft: Optional[Draft] = None
    advisories: List[AdvisoryWrite] = field(default_factory=list)

    @property
    def draft_id(self) -> str:
        return self.draft.draft_id if self.draft else ""


def generate_initial(ctx: PipelineContext, drafts: DraftStore, project: Project, *, with_beats: bool = True) -> InitialResult:
    """Outline the first batch, persist it, then write chapter 1 scene 1 key beats as a snapshot.

    The chapter draft record is canonical (write failures propagate); the
    chapter 1 summary is advisory.
    """
    ctx.project_id = project.id
    ctx.report(5, "loading project")
    total = initial_total(project.framework)
    end = min(total, choose_batch_size(total))
    system = build_system_prompt(project.title)

    ctx.report(25, f"generating outline (chapters 1-{end} of {total})")
    batch = generate_outline_batch(ctx, project.framework, 1, end, total, system=system)

    record = load_record(ctx.store, project.id)
    outline = merge_batch(record.to_outline(), batch, total)
    record.apply_outline(outline)
    save_record(ctx.store, project.id, record)
    result = InitialResult(outline=outline, batch=batch)

    if not with_beats:
        ctx.report(100, "outline ready")
        return result

    ctx.report(60, "generating key beats for chapter 1 scene 1")
    ch1 = outline.chapters[0] if outline.chapters else OutlineChapter(index=1, title=default_title(1))
    model, temp, max_tokens = env_for("SCENE_BEATS", default_temp=0.6, default_max_tokens=900)
    beats = llm_call(
        ctx, system, build_scene_beats_prompt(project.framework, ch1),
        step="scene_beats_001_001", model=model, temperature=temp, max_tokens=max_tokens,
    ).strip()
    ok, reason = validate_text(beats)
    if not ok:
        log_run(f"scene beats rejected ({reason}); using placeholder")
        beats = EMPTY_BEATS_TEXT

    ctx.report(85, "writing draft and updating state")
    draft = drafts.create_snapshot(project, None, 1, 1, beats, user_prompt="generate_initial", chapter_title=ch1.title)
    result.draft = draft
    result.advisories.append(advisory(
        "chapter_summaries",
        lambda: apply_summary_update(ctx.store, project.id, 1, draft.draft_id, beats, []),
    ))
    ctx.report(100, "done")
    return result
