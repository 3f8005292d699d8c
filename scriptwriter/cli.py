"""Scriptwriter CLI entrypoint.

Usage:
  scriptwriter create --title T [--type novel] [--framework framework.yaml]
  scriptwriter generate <project_id> [--no-beats] [--timeout S] [--log-llm]
  scriptwriter fill <project_id> [--batch N] [--all] [--max-rounds N]
  scriptwriter command <project_id> --input TEXT [--command TEXT] [--command-id ID] [--chapter N --scene N]
  scriptwriter edit <project_id> --file scene.txt [--chapter N --scene N] [--base DRAFT] [--sync-user-draft]
  scriptwriter rewind <project_id> <draft_id>
  scriptwriter drafts|outline|memory|summaries|workflow|show|delete <project_id>
  scriptwriter user-draft <project_id> <chapter> --file text.txt
  scriptwriter export <project_id> [--format markdown|txt|html] [--appendix] [--no-save]
  scriptwriter list | env

Results are printed as JSON on stdout; progress goes to stderr.
"""
from __future__ import annotations

import argparse
import dataclasses
import os
import sys
from typing import Any, Dict, List, Optional

from .config import Settings
from .context import CancelToken, SWError, load_yaml
from .engine import ScriptEngine
from .env import collect_program_env_snapshot, load_env
from .llm import OpenAICompletionService
from .logging import breadcrumb as _breadcrumb, init_run_logs as _init_run_logs, log_error_base as _log_error_base, log_run as _log_run
from .pipelines.command import CommandRequest, Target
from .utils import read_text, to_text


def _add_target(p: argparse.ArgumentParser) -> None:
    p.add_argument("--chapter", type=int, default=1)
    p.add_argument("--scene", type=int, default=1)
    p.add_argument("--segment", type=int, default=0)


def _parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="scriptwriter", description="Scriptwriter CLI")
    parser.add_argument("--data-dir", dest="data_dir", help="Override SW_DATA_DIR for this run")
    parser.add_argument("--log-llm", action="store_true", dest="log_llm", help="Write LLM prompt/response transcripts")
    sub = parser.add_subparsers(dest="cmd")

    p = sub.add_parser("create", help="Create a project")
    p.add_argument("--title", required=True)
    p.add_argument("--type", dest="type_", default="")
    p.add_argument("--framework", help="YAML file with premise, genre, chapter_count, ...")

    sub.add_parser("list", help="List projects")
    sub.add_parser("env", help="Show the effective configuration (secrets masked)")
    for name in ("show", "delete", "drafts", "outline", "memory", "summaries"):
        sub.add_parser(name).add_argument("project_id")

    p = sub.add_parser("workflow", help="Show workflow history")
    p.add_argument("project_id")
    p.add_argument("--limit", type=int, default=0)

    p = sub.add_parser("generate", help="Outline the first batch and write chapter 1 key beats")
    p.add_argument("project_id")
    p.add_argument("--no-beats", action="store_true", dest="no_beats")
    p.add_argument("--timeout", type=float, default=0.0)

    p = sub.add_parser("fill", help="Continue filling the outline")
    p.add_argument("project_id")
    p.add_argument("--batch", type=int, default=0)
    p.add_argument("--all", action="store_true", dest="all_", help="Repeat until the outline is complete")
    p.add_argument("--max-rounds", type=int, default=0, dest="max_rounds")
    p.add_argument("--timeout", type=float, default=0.0)

    p = sub.add_parser("command", help="Run one writing-assist command")
    p.add_argument("project_id")
    p.add_argument("--input", dest="user_input", default="")
    p.add_argument("--command", dest="command", default="")
    p.add_argument("--mode", dest="assist_mode", default="")
    p.add_argument("--command-id", dest="command_id", default="")
    p.add_argument("--option", action="append", default=[], help="key=value, repeatable")
    p.add_argument("--timeout", type=float, default=0.0)
    _add_target(p)

    p = sub.add_parser("edit", help="Snapshot manually edited scene text")
    p.add_argument("project_id")
    p.add_argument("--file", dest="text_file")
    p.add_argument("--text", default=None)
    p.add_argument("--base", dest="base_draft_id", default="")
    p.add_argument("--note", dest="user_prompt", default="")
    p.add_argument("--sync-user-draft", action="store_true", dest="sync_user_draft")
    _add_target(p)

    p = sub.add_parser("rewind", help="Point the project at an earlier draft")
    p.add_argument("project_id")
    p.add_argument("draft_id")

    p = sub.add_parser("user-draft", help="Set a chapter's user draft")
    p.add_argument("project_id")
    p.add_argument("chapter", type=int)
    p.add_argument("--file", dest="text_file")
    p.add_argument("--text", default=None)

    p = sub.add_parser("export", help="Export the active draft")
    p.add_argument("project_id")
    p.add_argument("--format", dest="fmt", default="markdown", choices=["markdown", "txt", "html"])
    p.add_argument("--appendix", action="store_true")
    p.add_argument("--no-save", action="store_true", dest="no_save")
    p.add_argument("--print", action="store_true", dest="print_content")

    return parser.parse_args(argv)


def _text_arg(ns: argparse.Namespace) -> str:
    if ns.text is not None:
        return ns.text
    if ns.text_file:
        return read_text(ns.text_file)
    raise SWError("either --text or --file is required")


def _options(pairs: List[str], command_id: str) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise SWError(f"Invalid --option {pair!r}; expected key=value")
        out[key.strip()] = value.strip()
    if command_id:
        out["command_id"] = command_id
    return out


def _progress(percent: int, message: str) -> None:
    print(f"[{percent:3d}%] {message}", file=sys.stderr)


def _cancel(timeout: float) -> Optional[CancelToken]:
    return CancelToken.with_timeout(timeout) if timeout and timeout > 0 else None


def _emit(obj: Any) -> None:
    print(to_text(obj))


def _build_engine(ns: argparse.Namespace) -> ScriptEngine:
    settings = Settings.from_env()
    if ns.log_llm:
        settings = dataclasses.replace(settings, log_llm=True)
    return ScriptEngine(OpenAICompletionService.from_env(), settings=settings)


def _dispatch(ns: argparse.Namespace, engine: ScriptEngine) -> int:
    cmd = ns.cmd
    if cmd == "create":
        framework = load_yaml(ns.framework) if ns.framework else {}
        if framework is not None and not isinstance(framework, dict):
            raise SWError(f"Framework file {ns.framework} must contain a mapping")
        _emit(engine.create_project(ns.title, ns.type_, framework or {}).to_dict())
    elif cmd == "list":
        _emit([{"id": p.id, "title": p.title, "type": p.type, "updated_at": p.updated_at} for p in engine.list_projects()])
    elif cmd == "env":
        _emit(collect_program_env_snapshot())
    elif cmd == "show":
        _emit(engine.get_project(ns.project_id).to_dict())
    elif cmd == "delete":
        engine.delete_project(ns.project_id)
        _emit({"deleted": ns.project_id})
    elif cmd == "drafts":
        _emit([m.to_dict() for m in engine.list_drafts(ns.project_id)])
    elif cmd == "outline":
        _emit(engine.load_outline(ns.project_id).to_dict())
    elif cmd == "memory":
        _emit(engine.load_memory(ns.project_id).to_dict())
    elif cmd == "summaries":
        _emit(engine.load_summaries(ns.project_id).to_dict())
    elif cmd == "workflow":
        _emit(engine.load_workflow(ns.project_id, ns.limit))
    elif cmd == "generate":
        res = engine.generate_initial(ns.project_id, cancel=_cancel(ns.timeout), progress=_progress, with_beats=not ns.no_beats)
        _emit({
            "draft_id": res.draft_id,
            "outline": res.outline.to_dict(),
            "accepted": res.batch.accepted,
            "attempts": res.batch.attempts,
            "advisories": [a.to_dict() for a in res.advisories],
        })
    elif cmd == "fill":
        batch = ns.batch if ns.batch > 0 else None
        if ns.all_:
            results = engine.fill_until_complete(ns.project_id, batch, max_rounds=ns.max_rounds, cancel=_cancel(ns.timeout), progress=_progress)
        else:
            results = [engine.fill_outline_next(ns.project_id, batch, cancel=_cancel(ns.timeout), progress=_progress)]
        _emit([{"status": r.status, "start": r.start, "end": r.end, "total": r.total, "message": r.message} for r in results])
        if results and results[-1].status == "failed":
            return 3
    elif cmd == "command":
        req = CommandRequest(
            command=ns.command,
            user_input=ns.user_input,
            assist_mode=ns.assist_mode,
            target=Target(ns.chapter, ns.scene, ns.segment),
            options=_options(ns.option, ns.command_id),
        )
        res = engine.command(ns.project_id, req, cancel=_cancel(ns.timeout), progress=_progress)
        _emit({
            "draft_id": res.draft_id,
            "workflow_item_id": res.workflow_item_id,
            "parsed": res.parsed,
            "parse_method": res.parse_method,
            "output": res.output.to_dict(),
            "memory_update": res.memory_update,
            "advisories": [a.to_dict() for a in res.advisories],
        })
    elif cmd == "edit":
        draft = engine.manual_edit(
            ns.project_id,
            _text_arg(ns),
            Target(ns.chapter, ns.scene, ns.segment),
            base_draft_id=ns.base_draft_id,
            user_prompt=ns.user_prompt,
            sync_user_draft=ns.sync_user_draft,
        )
        _emit({"draft_id": draft.draft_id, "created_at": draft.created_at})
    elif cmd == "rewind":
        project = engine.rewind(ns.project_id, ns.draft_id)
        _emit(project.state.to_dict())
    elif cmd == "user-draft":
        adv = engine.update_chapter_user_draft(ns.project_id, ns.chapter, _text_arg(ns))
        _emit({"chapter": ns.chapter, "project_touched": adv.ok})
    elif cmd == "export":
        res = engine.export(ns.project_id, ns.fmt, include_appendix=ns.appendix, save=not ns.no_save)
        if ns.print_content or ns.no_save:
            print(res.content)
        else:
            _emit(res.to_dict())
    else:
        print("No command executed. Run `scriptwriter --help` for usage.")
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    load_env()
    ns = _parse_args(list(sys.argv[1:] if argv is None else argv))
    if ns.data_dir:
        os.environ["SW_DATA_DIR"] = str(ns.data_dir)
    _init_run_logs()
    _log_run(f"=== START RUN === cmd={ns.cmd or '-'}")
    _breadcrumb(f"cli:{ns.cmd or 'none'}")
    try:
        return _dispatch(ns, _build_engine(ns))
    except SWError as e:
        _log_error_base(f"{ns.cmd}: {type(e).__name__}: {e}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
