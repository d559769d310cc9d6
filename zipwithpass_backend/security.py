from __future__ import annotations

import re
import uuid
from pathlib import Path

from .config import DEFAULT_FILENAME


_WORKSPACE_ID_RE = re.compile(r"^[0-9a-f]{32}$")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")


def new_workspace_id() -> str:
    return uuid.uuid4().hex


def is_workspace_id(name: str) -> bool:
    """True for names produced by new_workspace_id (uuid4, hex form)."""
    if not isinstance(name, str) or not _WORKSPACE_ID_RE.match(name):
        return False
    try:
        return uuid.UUID(hex=name).version == 4
    except ValueError:
        return False


def is_safe_basename(name: str) -> bool:
    """Allow only simple filenames (no directories, no control characters)."""
    if not isinstance(name, str) or not name:
        return False
    if name in (".", ".."):
        return False
    if name != Path(name).name:
        return False
    if "/" in name or "\\" in name:
        return False
    if _CONTROL_CHARS_RE.search(name):
        return False
    return True


def upload_basename(raw: str | None) -> str:
    """Reduce a client-declared filename to a base name safe to create in a workspace.

    Browsers may send full paths (C:\\Users\\..\\a.txt); only the last component
    is kept. Anything empty or unusable falls back to DEFAULT_FILENAME.
    """
    if not raw:
        return DEFAULT_FILENAME
    name = re.split(r"[/\\]", raw)[-1]
    if not name.strip() or not is_safe_basename(name):
        return DEFAULT_FILENAME
    return name


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir."""
    base_dir = base_dir.resolve()
    candidate = base_dir
    for part in parts:
        candidate = candidate / part
    resolved = candidate.resolve()
    if resolved == base_dir:
        return resolved
    if base_dir not in resolved.parents:
        raise ValueError("Path traversal attempt")
    return resolved
