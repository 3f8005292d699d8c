"""Prompt templates and prompt builders.

Templates use "[KEY]" placeholders filled by `fill_template`. Each built-in
template can be overridden by a file `<SW_PROMPTS_DIR>/<name>_prompt.md`.

Builders:
- build_system_prompt(sample_text)
- build_outline_range_prompt(framework, start, end, total, context)
- build_scene_beats_prompt(framework, chapter)
- build_command_prompt(...)
"""
from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, Optional

from .env import env_str
from .logging import breadcrumb
from .outline import OutlineChapter
from .utils import read_text, to_compact_json

SYSTEM_TEMPLATE = """You are a professional creative writing assistant. Strictly follow the user's settings and constraints.

Output requirements:
[LANGUAGE_LINE]
- If JSON is requested: output strict JSON only, no extra commentary."""

OUTLINE_RANGE_TEMPLATE = """Please generate the outline JSON, but output ONLY chapters [START]-[END] (total [TOTAL] chapters).

[framework_json]
[FRAMEWORK_JSON]

Requirements:
- Output strict JSON only (no extra text)
- Output ONLY chapters with index=[START]..[END] (inclusive); do not include other chapters
- Proportional pacing: chapters [START]-[END] cover only their share of the whole story (do NOT conclude the ending early)
- Each chapter summary should be ONE sentence describing the key conflict or turning point (no long prose)
- Each chapter outline should be 2-4 key beats (separated by \\n; one sentence per line; keep it short)

JSON schema:
{
  "version": "v1",
  "chapters": [
    {"index":1,"title":"...","summary":"...","outline":"- ...\\n- ..."}
  ]
}
"""

OUTLINE_CONTEXT_TEMPLATE = """
[existing_outline_context]
[CONTEXT]

Continuity:
- New chapters must follow naturally from the plot and foreshadowing in existing_outline_context.
- Do not rewrite the core events of existing chapters; only complete chapters [START]-[END].
"""

SCENE_BEATS_TEMPLATE = """Please output ONLY the key beats for Chapter [CHAPTER], Scene 1 (slow pacing; do NOT rush).

[framework_json]
[FRAMEWORK_JSON]

[chapter]
[CHAPTER_JSON]

Output requirements:
- Output plain text only (no JSON, no title, no explanation)
- Use 6-10 bullet points (one sentence each), covering: goal, conflict, information gap, action, dialogue hook, foreshadowing
- Do not conclude the whole story; no ending; do not skip ahead
"""

COMMAND_TEMPLATE = """Please perform writing assistance based on the following information.

[assist_mode]
[ASSIST_MODE]

[command]
[COMMAND]

[user_input]
[USER_INPUT]

[current_text]
[CURRENT_TEXT]
[EXTRA_CONTEXT][framework_json]
[FRAMEWORK_JSON]

[options_json]
[OPTIONS_JSON]

Output strict JSON only (no extra text).

Requirements:
- main_text is required and must be readable prose (do NOT put JSON inside main_text).
- For chapter completion: main_text is the current chapter draft, consistent with the previous chapter and following the current outline.
- branches are optional; when provided: at most 3 items, each concise.
- memory_update is optional and must be VERY small (at most 3 entries per list); omit if unsure.

JSON schema:
{
  "main_text": "...",
  "branches": [{"id":"opt_1","text":"..."}],
  "memory_update": {
    "added_facts": ["..."],
    "open_threads": ["..."],
    "foreshadowing": ["..."],
    "character_state": {"character_id": {"key": "value"}}
  }
}
"""

EXPAND_CONTEXT_TEMPLATE = """
[previous_chapter_user_draft]
[PREV_USER_DRAFT]

[current_chapter_outline]
[CURRENT_OUTLINE]

"""

BUILTIN_TEMPLATES: Dict[str, str] = {
    "system": SYSTEM_TEMPLATE,
    "outline_range": OUTLINE_RANGE_TEMPLATE,
    "outline_context": OUTLINE_CONTEXT_TEMPLATE,
    "scene_beats": SCENE_BEATS_TEMPLATE,
    "command": COMMAND_TEMPLATE,
    "expand_context": EXPAND_CONTEXT_TEMPLATE,
}


def fill_template(template: str, replacements: Dict[str, str]) -> str:
    """Single pass: placeholder text inside a replacement value is left alone."""
    if not replacements:
        return template
    pattern = re.compile("|".join(re.escape(k) for k in sorted(replacements, key=len, reverse=True)))
    return pattern.sub(lambda m: replacements[m.group(0)], template)


def prompt_key_from_filename(filename: str) -> str:
    base = Path(filename).name
    if base.lower().endswith(".md"):
        base = base[:-3]
    if base.lower().endswith("_prompt"):
        base = base[:-7]
    return re.sub(r"[^A-Za-z0-9]+", "_", base).strip("_").upper()


def load_template(name: str) -> str:
    """Built-in template `name`, unless SW_PROMPTS_DIR holds `<name>_prompt.md`."""
    prompts_dir = env_str("SW_PROMPTS_DIR")
    if prompts_dir:
        path = Path(prompts_dir) / f"{name}_prompt.md"
        if path.exists():
            breadcrumb(f"templates:override {path}")
            return read_text(path)
    return BUILTIN_TEMPLATES[name]


def is_english_text(text: str) -> bool:
    """True when ASCII letters are more than half of the letters, CJK ideographs and digits."""
    letters = cjk = valid = 0
    for ch in text or "":
        if ("a" <= ch <= "z") or ("A" <= ch <= "Z"):
            letters += 1
            valid += 1
        elif "一" <= ch <= "鿿":
            cjk += 1
            valid += 1
        elif "0" <= ch <= "9":
            valid += 1
    if valid == 0:
        return False
    return letters / valid > 0.5


def build_system_prompt(sample_text: str = "") -> str:
    sample = (sample_text or "").strip()
    if not sample or is_english_text(sample):
        language_line = "- Respond in English."
    else:
        language_line = "- Use the same language as the user's request; if unclear, use English."
    return fill_template(load_template("system"), {"[LANGUAGE_LINE]": language_line})


def build_outline_range_prompt(framework: Optional[Dict[str, Any]], start: int, end: int, total: int, context: str = "") -> str:
    start = max(1, start)
    end = max(start, end)
    total = min(max(total, end), 300)
    reps = {
        "[START]": str(start),
        "[END]": str(end),
        "[TOTAL]": str(total),
        "[FRAMEWORK_JSON]": to_compact_json(framework or {}),
    }
    prompt = fill_template(load_template("outline_range"), reps)
    context = (context or "").strip()
    if context:
        reps["[CONTEXT]"] = context
        prompt += fill_template(load_template("outline_context"), reps)
    return prompt


def build_scene_beats_prompt(framework: Optional[Dict[str, Any]], chapter: OutlineChapter) -> str:
    return fill_template(load_template("scene_beats"), {
        "[CHAPTER]": str(chapter.index),
        "[FRAMEWORK_JSON]": to_compact_json(framework or {}),
        "[CHAPTER_JSON]": to_compact_json(chapter.to_dict()),
    })


def build_command_prompt(
    *,
    assist_mode: str,
    command: str,
    user_input: str,
    current_text: str,
    framework: Optional[Dict[str, Any]],
    options: Optional[Dict[str, Any]],
    prev_user_draft: Optional[str] = None,
    current_outline: Optional[str] = None,
) -> str:
    extra = ""
    if prev_user_draft is not None or current_outline is not None:
        extra = fill_template(load_template("expand_context"), {
            "[PREV_USER_DRAFT]": prev_user_draft or "",
            "[CURRENT_OUTLINE]": current_outline or "",
        })
    return fill_template(load_template("command"), {
        "[ASSIST_MODE]": assist_mode,
        "[COMMAND]": command,
        "[USER_INPUT]": user_input,
        "[CURRENT_TEXT]": current_text,
        "[EXTRA_CONTEXT]": extra,
        "[FRAMEWORK_JSON]": to_compact_json(framework or {}),
        "[OPTIONS_JSON]": to_compact_json(options or {}),
    })
