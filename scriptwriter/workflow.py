"""Append-only workflow/history log (workflow_items.json).

Informational only: the generation logic never reads it back. Each new item
depends on the previous item's id so a UI can replay the chain.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from .config import WORKFLOW_FILE
from .context import NotFoundError
from .utils import new_id, now_iso


def load_items(store, project_id: str, limit: int = 0) -> List[Dict[str, Any]]:
    """Items oldest first; `limit` > 0 keeps only the most recent ones."""
    try:
        data = store.load(project_id, WORKFLOW_FILE)
    except NotFoundError:
        return []
    items = data.get("items") if isinstance(data, dict) else None
    items = [it for it in (items or []) if isinstance(it, dict)]
    if limit > 0:
        items = items[-limit:]
    return items


def make_item(
    type_: str,
    *,
    draft_id: str = "",
    assist_mode: str = "",
    user_input: str = "",
    command: str = "",
    target: Optional[Dict[str, int]] = None,
    output: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    return {
        "id": new_id("wf"),
        "type": type_,
        "created_at": now_iso(),
        "draft_id": draft_id,
        "refs": {"depends_on": []},
        "assist_mode": assist_mode,
        "user_input": user_input,
        "command": command,
        "target": dict(target or {}),
        "output": dict(output or {}),
    }


def append_item(store, project_id: str, item: Dict[str, Any]) -> Dict[str, Any]:
    items = load_items(store, project_id)
    if items:
        prev = str(items[-1].get("id") or "").strip()
        refs = item.setdefault("refs", {})
        if prev and not refs.get("depends_on"):
            refs["depends_on"] = [prev]
    items.append(item)
    store.save(project_id, WORKFLOW_FILE, {"items": items})
    return item
