"""Resumable outline fill: "continue filling the outline from wherever it left off".

Each call searches from chapter 1 for the first chapter lacking a title or a
summary, generates one batch from there, merges it additively and persists
the chapter draft record with every user_draft untouched.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from ..config import COMMAND_FILL_OUTLINE, INITIAL_DEFAULT_CHAPTERS, MAX_CHAPTERS
from ..logging import log_run
from ..memory import AdvisoryWrite, advisory
from ..outline import ChapterOutline, chapter_count_from_framework, format_outline_context, load_record, normalize_outline, save_record
from ..project import Project
from ..resume import next_fill_range
from ..templates import build_system_prompt
from ..workflow import append_item, make_item
from .common import PipelineContext
from .outline_batch import generate_outline_batch, merge_batch

STATUS_COMPLETE = "complete"
STATUS_NOOP = "noop"
STATUS_FILLED = "filled"
STATUS_FAILED = "failed"


@dataclass
class FillResult:
    status: str
    start: int = 0
    end: int = 0
    total: int = 0
    message: str = ""
    outline: Optional[ChapterOutline] = None
    workflow_item_id: str = ""
    advisories: List[AdvisoryWrite] = field(default_factory=list)

    @property
    def done(self) -> bool:
        return self.status == STATUS_COMPLETE


def fill_total(framework, record_outline: ChapterOutline) -> int:
    """Desired total: the framework chapter count, else the highest recorded index, else 20."""
    n = chapter_count_from_framework(framework)
    if n > 0:
        return n
    highest = max((c.index for c in record_outline.chapters), default=0)
    return min(MAX_CHAPTERS, highest) if highest > 0 else INITIAL_DEFAULT_CHAPTERS


def fill_outline_next(ctx: PipelineContext, project: Project, batch_size: Optional[int] = None) -> FillResult:
    ctx.project_id = project.id
    record = load_record(ctx.store, project.id)
    total = fill_total(project.framework, record.to_outline())
    current = normalize_outline(record.to_outline(), total)

    rng = next_fill_range(current, total, batch_size)
    if rng.complete:
        return FillResult(STATUS_COMPLETE, total=total, message=f"Outline complete: {total} chapters.", outline=current)
    if rng.empty:
        return FillResult(STATUS_NOOP, rng.start, rng.end, total, "Chapters in this range already exist; nothing to fill.", current)

    ctx.report(10, f"filling outline chapters {rng.start}-{rng.end} of {total}")
    context = format_outline_context(current, rng.start, ctx.settings.context_window)
    batch = generate_outline_batch(
        ctx, project.framework, rng.start, rng.end, total,
        context=context, system=build_system_prompt(project.title),
    )
    if not batch.parsed:
        log_run(f"Outline fill failed | project={project.id} range={rng.start}-{rng.end}")
        return FillResult(STATUS_FAILED, rng.start, rng.end, total, "Outline fill failed: model output could not be parsed; please retry.", current)

    merged = merge_batch(current, batch, total)
    record.apply_outline(merged)
    save_record(ctx.store, project.id, record)

    message = f"Filled outline chapters {rng.start}-{rng.end} (run again to continue)."
    result = FillResult(STATUS_FILLED, rng.start, rng.end, total, message, merged)
    item = make_item(
        "fill_outline",
        assist_mode="system",
        command=COMMAND_FILL_OUTLINE,
        target={"chapter": rng.start, "scene": 0, "segment": 0},
        output={"main_text": message},
    )
    adv = advisory("workflow", lambda: append_item(ctx.store, project.id, item))
    result.advisories.append(adv)
    if adv.ok:
        result.workflow_item_id = item["id"]
    ctx.report(100, message)
    return result


def fill_until_complete(ctx: PipelineContext, project: Project, batch_size: Optional[int] = None, max_rounds: int = 0) -> List[FillResult]:
    """Repeat fills until complete, a fill fails, or a round makes no progress."""
    results: List[FillResult] = []
    prev_start = 0
    rounds = 0
    while True:
        res = fill_outline_next(ctx, project, batch_size)
        results.append(res)
        rounds += 1
        if res.status in (STATUS_COMPLETE, STATUS_NOOP, STATUS_FAILED):
            break
        if res.start == prev_start:
            log_run(f"Outline fill stalled | project={project.id} start={res.start}")
            break
        prev_start = res.start
        if max_rounds and rounds >= max_rounds:
            break
    return results
