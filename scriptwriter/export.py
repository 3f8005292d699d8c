"""Render the active draft as markdown, plain text or an HTML document.

The optional appendix adds memory.json, chapter_summaries.json and
chapter_draft.json as pretty JSON after the manuscript.
"""
from __future__ import annotations

import html
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from .config import CHAPTER_DRAFT_FILE, MEMORY_FILE, SUMMARIES_FILE
from .context import SWError
from .drafts import Draft
from .project import Project
from .utils import new_id, now_iso, save_text, to_text

FORMATS = {"markdown": "md", "txt": "txt", "html": "html"}


@dataclass
class ExportResult:
    project_id: str
    title: str
    format: str
    content: str
    generated_at: str
    file_name: str
    path: str = ""

    @property
    def size(self) -> int:
        return len(self.content.encode("utf-8"))

    def to_dict(self):
        return {
            "project_id": self.project_id,
            "title": self.title,
            "format": self.format,
            "generated_at": self.generated_at,
            "file_name": self.file_name,
            "path": self.path,
            "size": self.size,
        }


def _chapter_title(ch) -> str:
    return ch.title.strip() or f"Chapter {ch.index}"


def build_markdown(project: Project, draft: Draft) -> str:
    out: List[str] = []
    if project.title:
        out.append(f"# {project.title}\n\n")
    for ch in sorted(draft.content.chapters, key=lambda c: c.index):
        out.append(f"## {_chapter_title(ch)}\n\n")
        for sc in sorted(ch.scenes, key=lambda s: s.index):
            out.append(f"### {sc.title.strip() or f'Scene {sc.index}'}\n\n")
            out.append(sc.text.strip() + "\n\n")
    return "".join(out)


def build_txt(project: Project, draft: Draft) -> str:
    out: List[str] = []
    if project.title:
        out.append(f"{project.title}\n\n")
    for ch in sorted(draft.content.chapters, key=lambda c: c.index):
        out.append(f"{_chapter_title(ch)}\n\n")
        for sc in sorted(ch.scenes, key=lambda s: s.index):
            out.append(sc.text.strip() + "\n\n")
    return "".join(out)


def render_html_document(text: str) -> str:
    return (
        "<!doctype html>\n"
        "<html>\n"
        "<head>\n"
        "  <meta charset=\"utf-8\">\n"
        "  <meta name=\"viewport\" content=\"width=device-width, initial-scale=1\">\n"
        "  <title>Export</title>\n"
        "</head>\n"
        "<body>\n"
        f"<pre>{html.escape(text)}</pre>\n"
        "</body>\n"
        "</html>\n"
    )


def _appendix_sections(store, project_id: str) -> List[Tuple[str, object]]:
    sections = []
    for name in (MEMORY_FILE, SUMMARIES_FILE, CHAPTER_DRAFT_FILE):
        try:
            sections.append((name, store.load(project_id, name)))
        except SWError:
            continue
    return sections


def append_appendix(store, project_id: str, fmt: str, content: str) -> str:
    sections = _appendix_sections(store, project_id)
    if not sections:
        return content
    body = content.rstrip("\n")
    if fmt == "txt":
        parts = [body, "\n\n==== Appendix ====\n"]
        for name, value in sections:
            parts.append(f"\n[{name.rsplit('.', 1)[0]}]\n{to_text(value)}\n")
        parts.append("\n")
        return "".join(parts)
    parts = [body, "\n\n---\n\n## Appendix\n\n"]
    for name, value in sections:
        parts.append(f"### {name}\n\n```json\n{to_text(value)}\n```\n\n")
    return "".join(parts)


def export_draft(store, project: Project, draft: Optional[Draft], fmt: str = "markdown", include_appendix: bool = False) -> ExportResult:
    if draft is None:
        raise SWError("no active draft")
    fmt = (fmt or "").strip().lower() or "markdown"
    if fmt not in FORMATS:
        fmt = "markdown"
    if fmt == "txt":
        content = build_txt(project, draft)
        if include_appendix:
            content = append_appendix(store, project.id, "txt", content)
    else:
        content = build_markdown(project, draft)
        if include_appendix:
            content = append_appendix(store, project.id, "markdown", content)
        if fmt == "html":
            content = render_html_document(content)
    file_name = f"{new_id(project.id)}.{FORMATS[fmt]}"
    return ExportResult(project.id, project.title, fmt, content, now_iso(), file_name)


def write_export(result: ExportResult, directory: str | Path) -> ExportResult:
    """Save the rendered content as `<directory>/<file_name>` and record the path."""
    path = Path(directory) / result.file_name
    save_text(path, result.content)
    result.path = str(path)
    return result
