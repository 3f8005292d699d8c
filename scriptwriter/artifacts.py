"""LLM transcript files: one prompt/response record per completion call.

Written only when SW_LOG_LLM=1, under <store root>/<project>/transcripts/
(the data dir when the store has no filesystem root).
"""
from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, List, Optional

from .env import get_data_dir
from .logging import log_warning
from .utils import read_text, save_text

SYSTEM_HDR = "=== SYSTEM ==="
USER_HDR = "=== USER ==="
RESPONSE_HDR = "=== RESPONSE ==="


def transcript_dir(project_id: str, base: Optional[Path] = None) -> Path:
    return (base or get_data_dir()) / project_id / "transcripts"


def transcript_path(project_id: str, step: str, attempt: int, base: Optional[Path] = None, run_id: str = "") -> Path:
    """<run id>_<step>_attempt<N>.txt; the run id is unique per engine call."""
    safe = re.sub(r"[^A-Za-z0-9_.\-]+", "_", step).strip("_") or "step"
    name = f"{safe}_attempt{attempt}.txt"
    if run_id:
        name = f"{run_id}_{name}"
    return transcript_dir(project_id, base) / name


def format_transcript(system: str, user: str, response: str) -> str:
    return (
        f"{SYSTEM_HDR}\n{system or ''}\n\n"
        f"{USER_HDR}\n{user}\n\n"
        f"{RESPONSE_HDR}\n{response}\n"
    )


def write_transcript(path: Path, system: str, user: str, response: str) -> None:
    try:
        save_text(path, format_transcript(system, user, response))
    except OSError as e:
        log_warning(f"transcript not written to {path}: {e}")


def read_transcript(path: str | Path) -> Dict[str, str]:
    text = read_text(path)
    parts: Dict[str, str] = {"system": "", "user": "", "response": ""}
    pattern = re.compile(rf"^({re.escape(SYSTEM_HDR)}|{re.escape(USER_HDR)}|{re.escape(RESPONSE_HDR)})$", re.M)
    marks = list(pattern.finditer(text))
    keys = {SYSTEM_HDR: "system", USER_HDR: "user", RESPONSE_HDR: "response"}
    for i, m in enumerate(marks):
        end = marks[i + 1].start() if i + 1 < len(marks) else len(text)
        parts[keys[m.group(1)]] = text[m.end() + 1:end].rstrip("\n")
    return parts


def list_transcripts(project_id: str, base: Optional[Path] = None) -> List[Path]:
    d = transcript_dir(project_id, base)
    if not d.exists():
        return []
    return sorted(p for p in d.iterdir() if p.suffix == ".txt")
