"""Command pipeline: one writing-assist instruction -> one new draft snapshot.

Steps:
1. resolve target chapter/scene (default 1/1)
2. current scene text from the active draft
3. expand_scene only: previous chapter user_draft + current chapter outline
4. build one prompt, one completion call (no retries)
5. parse the reply with fallbacks (structured, main_text salvage, prose, placeholder)
6. new snapshot + project pointer (canonical; failures propagate)
7-10. memory, chapter summary, expansion user_draft, workflow item (advisory)

A completion error aborts before anything is written. A parse failure still
commits a snapshot holding the placeholder text.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..config import COMMAND_EXPAND_SCENE, COMMAND_FILL_OUTLINE, PARSE_FAILED_TEXT
from ..drafts import DraftStore, extract_scene_text
from ..logging import log_run
from ..memory import AdvisoryWrite, advisory, apply_memory_update, apply_summary_update
from ..outline import load_record, save_record
from ..parsing import CommandReply, parse_command_reply
from ..project import Project
from ..templates import build_command_prompt, build_system_prompt
from ..utils import as_int
from ..workflow import append_item, make_item
from .common import PipelineContext, env_for, llm_call
from .outline_fill import FillResult, fill_outline_next


@dataclass
class Target:
    chapter: int = 1
    scene: int = 1
    segment: int = 0

    def resolved(self) -> "Target":
        return Target(
            chapter=self.chapter if self.chapter > 0 else 1,
            scene=self.scene if self.scene > 0 else 1,
            segment=max(0, self.segment),
        )

    def to_dict(self) -> Dict[str, int]:
        return {"chapter": self.chapter, "scene": self.scene, "segment": self.segment}

    @classmethod
    def from_dict(cls, data: Any) -> "Target":
        if not isinstance(data, dict):
            return cls()
        return cls(as_int(data.get("chapter"), 1), as_int(data.get("scene"), 1), as_int(data.get("segment"), 0))


@dataclass
class CommandRequest:
    command: str = ""
    user_input: str = ""
    assist_mode: str = ""
    target: Target = field(default_factory=Target)
    options: Dict[str, Any] = field(default_factory=dict)

    def command_id(self) -> str:
        opts = self.options or {}
        raw = opts.get("command_id") or opts.get("commandId") or ""
        return str(raw).strip().lower()


@dataclass
class CommandOutput:
    main_text: str = ""
    environment: str = ""
    dialogue_variants: List[str] = field(default_factory=list)
    subtext: str = ""
    branches: List[Dict[str, str]] = field(default_factory=list)

    @classmethod
    def from_reply(cls, reply: CommandReply) -> "CommandOutput":
        return cls(reply.main_text, reply.environment, list(reply.dialogue_variants), reply.subtext, list(reply.branches))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "main_text": self.main_text,
            "environment": self.environment,
            "dialogue_variants": self.dialogue_variants,
            "subtext": self.subtext,
            "branches": self.branches,
        }


@dataclass
class CommandResult:
    draft_id: str
    output: CommandOutput
    workflow_item_id: str = ""
    memory_update: Dict[str, Any] = field(default_factory=dict)
    parsed: bool = True
    parse_method: str = ""
    fill: Optional[FillResult] = None
    advisories: List[AdvisoryWrite] = field(default_factory=list)


def expand_scene_context(store, project_id: str, chapter: int) -> Tuple[str, str]:
    """(previous chapter user_draft, current chapter outline) from the chapter draft record."""
    record = load_record(store, project_id)
    prev = record.entry(chapter - 1)
    cur = record.entry(chapter)
    return (prev.user_draft.strip() if prev else "", cur.outline.strip() if cur else "")


def _fill_as_command(ctx: PipelineContext, project: Project, req: CommandRequest) -> CommandResult:
    batch = req.options.get("batch_size")
    fill = fill_outline_next(ctx, project, as_int(batch, 0) or None)
    return CommandResult(
        draft_id="",
        output=CommandOutput(main_text=fill.message),
        workflow_item_id=fill.workflow_item_id,
        fill=fill,
        advisories=list(fill.advisories),
    )


def run_command(ctx: PipelineContext, drafts: DraftStore, project: Project, req: CommandRequest) -> CommandResult:
    ctx.project_id = project.id
    assist_mode = (req.assist_mode or "").strip() or "inspiration"
    target = req.target.resolved()
    command_id = req.command_id()
    if command_id == COMMAND_FILL_OUTLINE:
        return _fill_as_command(ctx, project, req)
    is_expand = command_id == COMMAND_EXPAND_SCENE

    base = drafts.active_draft(project)
    current_text = extract_scene_text(base, target.chapter, target.scene)

    prev_draft: Optional[str] = None
    cur_outline: Optional[str] = None
    if is_expand:
        prev_draft, cur_outline = expand_scene_context(ctx.store, project.id, target.chapter)

    sample = "\n".join(x for x in (req.command, req.user_input, current_text, prev_draft or "", cur_outline or "") if x)
    system = build_system_prompt(sample)
    prompt = build_command_prompt(
        assist_mode=assist_mode,
        command=req.command,
        user_input=req.user_input,
        current_text=current_text,
        framework=project.framework,
        options=req.options,
        prev_user_draft=prev_draft,
        current_outline=cur_outline,
    )
    step = "EXPAND_SCENE" if is_expand else "COMMAND"
    model, temp, max_tokens = env_for(step, default_temp=0.8, default_max_tokens=2400 if is_expand else 1200)
    ctx.report(20, "calling completion service")
    raw = llm_call(
        ctx, system, prompt,
        step=f"{step.lower()}_{target.chapter:03d}_{target.scene:03d}",
        model=model, temperature=temp, max_tokens=max_tokens,
    )

    parsed = parse_command_reply(raw)
    output = CommandOutput.from_reply(parsed.reply)
    if not parsed.ok or not output.main_text:
        output.main_text = PARSE_FAILED_TEXT
    memory_update = parsed.reply.memory_update if parsed.ok else {}

    ctx.report(70, "writing draft snapshot")
    draft = drafts.create_snapshot(
        project, base, target.chapter, target.scene, output.main_text,
        user_prompt=req.user_input, segment=target.segment,
    )
    result = CommandResult(
        draft_id=draft.draft_id,
        output=output,
        memory_update=memory_update,
        parsed=parsed.ok,
        parse_method=parsed.method,
    )

    if memory_update:
        result.advisories.append(advisory("memory", lambda: apply_memory_update(ctx.store, project.id, memory_update)))
    result.advisories.append(advisory(
        "chapter_summaries",
        lambda: apply_summary_update(ctx.store, project.id, target.chapter, draft.draft_id, output.main_text, output.branches),
    ))
    if is_expand:
        def _sync_user_draft() -> None:
            record = load_record(ctx.store, project.id)
            record.upsert_user_draft(target.chapter, output.main_text.strip())
            save_record(ctx.store, project.id, record)
        result.advisories.append(advisory("chapter_draft", _sync_user_draft))

    item = make_item(
        "command",
        draft_id=draft.draft_id,
        assist_mode=assist_mode,
        user_input=req.user_input,
        command=req.command,
        target=target.to_dict(),
        output=output.to_dict(),
    )
    adv = advisory("workflow", lambda: append_item(ctx.store, project.id, item))
    result.advisories.append(adv)
    if adv.ok:
        result.workflow_item_id = item["id"]

    log_run(
        f"Command | project={project.id} mode={assist_mode} id={command_id or '-'} "
        f"target={target.chapter}/{target.scene} parsed={parsed.ok}({parsed.method}) draft={draft.draft_id}"
    )
    ctx.report(100, "done")
    return result
