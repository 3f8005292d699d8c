"""Shared helpers for pipelines.

Contains the per-call pipeline context, the cancellation-aware completion
call with optional transcripts, and the retry-until-accepted loop used by
outline batches.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Generic, Optional, Tuple, TypeVar

from ..artifacts import transcript_path, write_transcript
from ..config import Settings
from ..context import CancelToken, CompletionTransportError, check_cancelled
from ..env import env_for as _env_for
from ..llm import CompletionService, build_messages
from ..logging import breadcrumb as _breadcrumb, log_run as _log_run, log_warning as _log_warning
from ..utils import new_id

T = TypeVar("T")

ProgressFn = Callable[[int, str], None]


@dataclass
class PipelineContext:
    """Collaborators and per-call controls handed to every pipeline."""

    completion: CompletionService
    store: object
    settings: Settings = field(default_factory=Settings)
    cancel: Optional[CancelToken] = None
    progress: Optional[ProgressFn] = None
    project_id: str = ""
    run_id: str = field(default_factory=lambda: new_id("run"))

    def transcript_base(self) -> Optional[Path]:
        """Transcripts live beside the project blobs when the store has a filesystem root."""
        root = getattr(self.store, "root", None)
        return Path(root) if root is not None else None

    def report(self, percent: int, message: str) -> None:
        if self.progress is None:
            return
        self.progress(max(0, min(100, int(percent))), message)


def env_for(step_key: str, *, default_temp: float = 0.7, default_max_tokens: int = 1200) -> Tuple[Optional[str], float, int]:
    return _env_for(step_key, default_temp=default_temp, default_max_tokens=default_max_tokens)


def llm_call(
    ctx: PipelineContext,
    system: str,
    user: str,
    *,
    step: str,
    model: Optional[str],
    temperature: float,
    max_tokens: int,
    attempt: int = 1,
) -> str:
    """One completion call: cancellation check, request, optional transcript."""
    check_cancelled(ctx.cancel, f"{step} attempt {attempt}")
    _log_run(f"LLM ctx | project={ctx.project_id or '-'} step={step} attempt={attempt}")
    out = ctx.completion.complete(build_messages(system, user), temperature=temperature, max_tokens=max_tokens, model=model)
    out = out or ""
    if ctx.settings.log_llm and ctx.project_id:
        path = transcript_path(ctx.project_id, step, attempt, base=ctx.transcript_base(), run_id=ctx.run_id)
        write_transcript(path, system, user, out)
    return out


@dataclass
class Accepted(Generic[T]):
    value: Optional[T]
    accepted: bool
    attempts: int
    reason: str = ""


def call_with_acceptance(
    ctx: PipelineContext,
    system: str,
    user: str,
    *,
    step: str,
    model: Optional[str],
    temperature: float,
    max_tokens: int,
    parse: Callable[[str], Tuple[bool, T]],
    validator: Callable[[T], Tuple[bool, str]],
    max_attempts: Optional[int] = None,
) -> Accepted[T]:
    """Call until `validator` accepts a parsed reply, up to max_attempts.

    - unparsable replies are skipped; the last parsed value is the fallback
    - a transport error consumes the attempt; if no attempt ever returned,
      the last transport error is raised
    - cancellation and not-ready errors propagate immediately
    """
    attempts = max(1, max_attempts or ctx.settings.max_attempts)
    last: Optional[T] = None
    last_reason = ""
    last_err: Optional[CompletionTransportError] = None
    any_reply = False
    for attempt in range(1, attempts + 1):
        try:
            raw = llm_call(ctx, system, user, step=step, model=model, temperature=temperature, max_tokens=max_tokens, attempt=attempt)
        except CompletionTransportError as e:
            last_err = e
            _log_warning(f"{step}: attempt {attempt}/{attempts} transport failure: {e}")
            continue
        any_reply = True
        ok, value = parse(raw)
        if not ok:
            last_reason = "unparsable output"
            _breadcrumb(f"{step}:attempt={attempt} unparsable")
            continue
        last = value
        accepted, reason = validator(value)
        if accepted:
            _breadcrumb(f"{step}:attempt={attempt} accepted")
            return Accepted(value, True, attempt, "ok")
        last_reason = reason
        _breadcrumb(f"{step}:attempt={attempt} rejected reason={reason}")
    if not any_reply and last_err is not None:
        raise last_err
    _log_run(f"{step}: no accepted reply after {attempts} attempts ({last_reason}); using fallback={last is not None}")
    return Accepted(last, False, attempts, last_reason)
