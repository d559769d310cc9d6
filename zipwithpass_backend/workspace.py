from __future__ import annotations

import shutil
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

import structlog

from . import config
from .errors import ResourceError
from .security import is_workspace_id, new_workspace_id


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Workspace:
    workspace_id: str
    root: Path
    files_dir: Path
    output_dir: Path


def _workspace_for(root: Path, workspace_id: str) -> Workspace:
    ws_root = root / workspace_id
    return Workspace(
        workspace_id=workspace_id,
        root=ws_root,
        files_dir=ws_root / config.FILES_SUBDIR,
        output_dir=ws_root / config.OUTPUT_SUBDIR,
    )


def acquire(root: Path | None = None) -> Workspace:
    """Create a new, empty, uniquely named workspace under root."""
    base = (root or config.WORKSPACES_ROOT).resolve()
    try:
        base.mkdir(parents=True, exist_ok=True)
        ws = _workspace_for(base, new_workspace_id())
        # exist_ok=False: a collision must never hand out someone else's directory.
        ws.root.mkdir(mode=0o700)
    except OSError as exc:
        logger.error("workspace_acquire_failed", error=type(exc).__name__)
        raise ResourceError("Failed to create temporary directory") from exc

    try:
        ws.files_dir.mkdir()
        ws.output_dir.mkdir()
    except OSError as exc:
        release(ws)
        logger.error("workspace_acquire_failed", error=type(exc).__name__)
        raise ResourceError("Failed to create temporary directory") from exc

    logger.debug("workspace_acquired", workspace_id=ws.workspace_id)
    return ws


def release(ws: Workspace) -> None:
    """Recursively remove the workspace and everything inside it."""
    try:
        shutil.rmtree(ws.root)
    except FileNotFoundError:
        pass
    except OSError as exc:
        # Called from finally blocks.
        logger.error("workspace_release_failed", workspace_id=ws.workspace_id, error=type(exc).__name__)
        return
    logger.debug("workspace_released", workspace_id=ws.workspace_id)


@contextmanager
def ephemeral_workspace(root: Path | None = None) -> Iterator[Workspace]:
    """Scoped workspace: released exactly once on every exit path, cancellation included."""
    ws = acquire(root)
    try:
        yield ws
    finally:
        release(ws)


def list_files(ws: Workspace) -> list[str]:
    """Names of the regular files physically present in the workspace's files dir."""
    try:
        return sorted(p.name for p in ws.files_dir.iterdir() if p.is_file())
    except OSError as exc:
        logger.error("workspace_list_failed", workspace_id=ws.workspace_id, error=type(exc).__name__)
        raise ResourceError("Failed to read temporary directory") from exc


def delete_stale_workspaces(root: Path | None = None, max_age_seconds: float | None = None) -> int:
    """Delete leftover workspaces older than max_age_seconds.

    Only directories named like our workspace ids are touched. Live requests
    always release their own workspace; leftovers only exist after a crash.
    Returns the number of deleted workspaces.
    """
    base = root or config.WORKSPACES_ROOT
    if max_age_seconds is None:
        max_age_seconds = config.STALE_WORKSPACE_SECONDS
    if not base.exists():
        return 0

    cutoff = time.time() - max(0.0, float(max_age_seconds))
    deleted = 0
    for child in base.iterdir():
        if not child.is_dir() or not is_workspace_id(child.name):
            continue
        try:
            if child.stat().st_mtime > cutoff:
                continue
        except FileNotFoundError:
            continue
        shutil.rmtree(child, ignore_errors=True)
        deleted += 1
    return deleted
