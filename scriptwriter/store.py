"""Durable JSON blob store.

The engine only needs named JSON values grouped by project id:

- save(project_id, name, value)
- load(project_id, name) -> value, raising NotFoundError when absent
- list(project_id, prefix) -> names under a sub-directory such as "drafts"
- list_projects() / delete_project(project_id)

FileBlobStore keeps one directory per project under a root directory.
Writes go through a temporary file and os.replace so a crash never leaves a
half-written blob behind. No transactional guarantees exist across files.
"""
from __future__ import annotations

import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, List, Optional, Protocol

from .context import NotFoundError, SWError
from .env import get_data_dir


class BlobStore(Protocol):
    def save(self, project_id: str, name: str, value: Any) -> None: ...

    def load(self, project_id: str, name: str) -> Any: ...

    def list(self, project_id: str, prefix: str) -> List[str]: ...

    def list_projects(self) -> List[str]: ...

    def delete_project(self, project_id: str) -> None: ...


def _check_segment(value: str, what: str) -> str:
    v = (value or "").strip()
    if not v or v in (".", "..") or "\\" in v or v.startswith("/"):
        raise SWError(f"Invalid {what}: {value!r}")
    if any(part in ("", ".", "..") for part in v.split("/")):
        raise SWError(f"Invalid {what}: {value!r}")
    return v


class FileBlobStore:
    def __init__(self, root: Optional[str | Path] = None) -> None:
        self.root = Path(root) if root is not None else get_data_dir()

    def _path(self, project_id: str, name: str) -> Path:
        pid = _check_segment(project_id, "project id")
        if "/" in pid:
            raise SWError(f"Invalid project id: {project_id!r}")
        return self.root / pid / _check_segment(name, "blob name")

    def save(self, project_id: str, name: str, value: Any) -> None:
        path = self._path(project_id, name)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = json.dumps(value, ensure_ascii=False, indent=2, default=str)
        fd, tmp = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=str(path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
            os.replace(tmp, path)
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise

    def load(self, project_id: str, name: str) -> Any:
        path = self._path(project_id, name)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise NotFoundError(f"{project_id}/{name} not found")
        try:
            return json.loads(text)
        except ValueError as e:
            raise SWError(f"Corrupt JSON blob {project_id}/{name}: {e}")

    def list(self, project_id: str, prefix: str) -> List[str]:
        d = self._path(project_id, prefix)
        if not d.is_dir():
            return []
        return sorted(f"{prefix}/{p.name}" for p in d.iterdir() if p.is_file() and p.suffix == ".json" and not p.name.startswith(".tmp_"))

    def list_projects(self) -> List[str]:
        if not self.root.is_dir():
            return []
        return sorted(p.name for p in self.root.iterdir() if p.is_dir())

    def delete_project(self, project_id: str) -> None:
        d = self.root / _check_segment(project_id, "project id")
        if not d.is_dir():
            raise NotFoundError(f"{project_id} not found")
        shutil.rmtree(d)
