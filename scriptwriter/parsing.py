"""Best-effort recovery of structured data from completion-service output.

Completion replies are *meant* to be JSON but arrive wrapped in code fences,
surrounded by commentary, or cut off mid-array when the service hits its
output limit. Every function here returns the most complete value it can and
never raises for malformed input; "nothing recoverable" is an ordinary result
with ``ok == False``.

Order of attempts (first success wins):
1. strip a fenced-code wrapper
2. parse the cleaned text directly
3. parse the span between the first '{' and the last '}'
4. outlines only: scan the "chapters" array for complete objects
5. single string fields: read one JSON string literal after "field":
6. not JSON-shaped at all: the cleaned text is plain prose
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from .outline import ChapterOutline, OutlineChapter

RawText = Union[str, bytes, bytearray, None]

_WS = " \t\r\n"


def _as_str(raw: RawText) -> str:
    if raw is None:
        return ""
    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw).decode("utf-8", errors="replace")
    return str(raw)


def strip_code_fences(text: RawText) -> str:
    """Remove a ```lang ... ``` wrapper: drop the first line and the last fence."""
    s = _as_str(text).strip()
    if s.startswith("```"):
        nl = s.find("\n")
        if nl >= 0:
            s = s[nl + 1:].strip()
        # single-line replies keep the opening fence; only a later one closes
        end = s.rfind("```")
        if end >= 0 and (nl >= 0 or end > 0):
            s = s[:end].strip()
    return s.strip()


def extract_json_object_text(raw: RawText) -> str:
    """Return the span from the first '{' to the last '}', or "" if there is none."""
    s = _as_str(raw).strip()
    start = s.find("{")
    end = s.rfind("}")
    if start < 0 or end <= start:
        return ""
    return s[start:end + 1].strip()


def looks_like_json(text: RawText) -> bool:
    s = _as_str(text).strip()
    return s.startswith("{") or s.startswith("[")


def try_json(text: str) -> Tuple[bool, Any]:
    if not text:
        return False, None
    try:
        return True, json.loads(text)
    except (ValueError, RecursionError):
        return False, None


# ---------------------------
# Scanner
# ---------------------------

def scan_object_end(s: str, start: int) -> int:
    """Return the index of the '}' closing the object opened at s[start], or -1.

    Three states: outside a string, inside a string, inside a string right
    after a backslash. Depth only changes outside strings.
    """
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(s)):
        ch = s[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return -1


def iter_array_objects(s: str, key: str) -> Iterator[str]:
    """Yield the text of each complete object in the array stored under `key`.

    Works on truncated documents: iteration stops at the first object that is
    never closed, and everything before it is still yielded.
    """
    key_idx = s.find(f'"{key}"')
    if key_idx < 0:
        return
    bracket = s.find("[", key_idx)
    if bracket < 0:
        return
    pos = bracket + 1
    while pos < len(s):
        obj_start = s.find("{", pos)
        if obj_start < 0:
            return
        obj_end = scan_object_end(s, obj_start)
        if obj_end < 0:
            return
        yield s[obj_start:obj_end + 1]
        pos = obj_end + 1


def recover_array_objects(raw: RawText, key: str) -> List[Dict[str, Any]]:
    """Parse every complete object of a possibly truncated JSON array."""
    out: List[Dict[str, Any]] = []
    for candidate in iter_array_objects(strip_code_fences(raw), key):
        ok, value = try_json(candidate)
        if ok and isinstance(value, dict):
            out.append(value)
    return out


def _read_string_literal(s: str, i: int) -> Optional[str]:
    """Decode the JSON string literal starting at s[i] (which must be '"')."""
    if i >= len(s) or s[i] != '"':
        return None
    start = i
    i += 1
    escaped = False
    closed = False
    while i < len(s):
        ch = s[i]
        i += 1
        if escaped:
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == '"':
            closed = True
            break
    if not closed:
        return None
    ok, value = try_json(s[start:i])
    if not ok or not isinstance(value, str):
        return None
    return value


def extract_string_field(raw: RawText, field_name: str) -> Tuple[str, bool]:
    """Read the string value of `"field_name": "..."` even if the rest of the text is broken.

    Returns (value, ok); empty values count as not found.
    """
    s = strip_code_fences(raw)
    needle = f'"{field_name}"'
    idx = s.find(needle)
    if idx < 0:
        return "", False
    colon = s.find(":", idx + len(needle))
    if colon < 0:
        return "", False
    i = colon + 1
    while i < len(s) and s[i] in _WS:
        i += 1
    value = _read_string_literal(s, i)
    if value is None:
        return "", False
    value = value.strip()
    if not value:
        return "", False
    return value, True


# ---------------------------
# Outline parsing
# ---------------------------

def _scalar_text(value: Any) -> str:
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    return ""


def _coerce_text(value: Any) -> str:
    """Scalars as text; a flat list of scalars newline-joined. Nested containers are skipped."""
    if isinstance(value, list):
        parts = (_scalar_text(v) for v in value)
        return "\n".join(p for p in parts if p)
    return _scalar_text(value)


def _coerce_index(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def chapter_from_obj(obj: Any) -> Optional[OutlineChapter]:
    if not isinstance(obj, dict):
        return None
    idx = _coerce_index(obj.get("index"))
    if idx is None:
        return None
    return OutlineChapter(
        index=idx,
        title=_coerce_text(obj.get("title")),
        summary=_coerce_text(obj.get("summary")),
        outline=_coerce_text(obj.get("outline")),
    )


def outline_from_obj(obj: Any) -> Optional[ChapterOutline]:
    if not isinstance(obj, dict):
        return None
    chapters: List[OutlineChapter] = []
    raw_chapters = obj.get("chapters")
    if isinstance(raw_chapters, list):
        for item in raw_chapters:
            ch = chapter_from_obj(item)
            if ch is not None:
                chapters.append(ch)
    version = obj.get("version")
    version = version.strip() if isinstance(version, str) and version.strip() else "v1"
    return ChapterOutline(version=version, chapters=chapters)


@dataclass
class OutlineParse:
    outline: ChapterOutline
    ok: bool
    method: str = "none"
    prose: str = ""


def parse_outline(raw: RawText) -> OutlineParse:
    """Recover a chapter outline from raw completion text. Never raises."""
    clean = strip_code_fences(raw)
    if not clean:
        return OutlineParse(ChapterOutline(), False)

    ok, value = try_json(clean)
    if ok:
        parsed = outline_from_obj(value)
        if parsed is not None:
            return OutlineParse(parsed, True, "direct")

    obj_text = extract_json_object_text(clean)
    if obj_text:
        ok, value = try_json(obj_text)
        if ok:
            parsed = outline_from_obj(value)
            if parsed is not None:
                return OutlineParse(parsed, True, "braces")

    chapters = []
    for obj in recover_array_objects(clean, "chapters"):
        ch = chapter_from_obj(obj)
        if ch is not None and ch.index > 0:
            chapters.append(ch)
    if chapters:
        version, found = extract_string_field(clean, "version")
        return OutlineParse(ChapterOutline(version=version if found else "v1", chapters=chapters), True, "scan")

    prose = "" if looks_like_json(clean) else clean
    return OutlineParse(ChapterOutline(), False, "prose" if prose else "none", prose)


# ---------------------------
# Command reply parsing
# ---------------------------

@dataclass
class CommandReply:
    main_text: str = ""
    environment: str = ""
    dialogue_variants: List[str] = field(default_factory=list)
    subtext: str = ""
    branches: List[Dict[str, str]] = field(default_factory=list)
    memory_update: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ReplyParse:
    reply: CommandReply
    ok: bool
    method: str = "none"


def _coerce_branches(value: Any) -> List[Dict[str, str]]:
    out: List[Dict[str, str]] = []
    if not isinstance(value, list):
        return out
    for i, item in enumerate(value, start=1):
        if isinstance(item, dict):
            text = _coerce_text(item.get("text")).strip()
            bid = _coerce_text(item.get("id")).strip() or f"opt_{i}"
        else:
            text = _coerce_text(item).strip()
            bid = f"opt_{i}"
        if text:
            out.append({"id": bid, "text": text})
    return out


def reply_from_obj(obj: Any) -> Optional[CommandReply]:
    if not isinstance(obj, dict):
        return None
    variants = obj.get("dialogue_variants")
    mem = obj.get("memory_update")
    return CommandReply(
        main_text=_coerce_text(obj.get("main_text")).strip(),
        environment=_coerce_text(obj.get("environment")).strip(),
        dialogue_variants=[t for t in (_coerce_text(v) for v in variants) if t] if isinstance(variants, list) else [],
        subtext=_coerce_text(obj.get("subtext")).strip(),
        branches=_coerce_branches(obj.get("branches")),
        memory_update=mem if isinstance(mem, dict) else {},
    )


def parse_command_reply(raw: RawText) -> ReplyParse:
    """Recover a command reply; ok is False only when no main_text could be found.

    Fallback chain: structured parse, salvaged "main_text" string, plain
    prose. When all three fail the reply is empty and the caller decides on a
    placeholder.
    """
    clean = strip_code_fences(raw)
    if not clean:
        return ReplyParse(CommandReply(), False)

    for method, text in (("direct", clean), ("braces", extract_json_object_text(clean))):
        ok, value = try_json(text)
        if ok:
            reply = reply_from_obj(value)
            if reply is not None and reply.main_text:
                return ReplyParse(reply, True, method)

    main_text, found = extract_string_field(clean, "main_text")
    if found:
        return ReplyParse(CommandReply(main_text=main_text), True, "field")
    if not looks_like_json(clean):
        return ReplyParse(CommandReply(main_text=clean), True, "prose")
    return ReplyParse(CommandReply(), False)
