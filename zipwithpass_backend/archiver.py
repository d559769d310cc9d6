"""Archiving capability: turn the staged files into one password-protected ZIP.

The pipeline only sees the Archiver interface. ZipCommandArchiver shells out
to Info-ZIP; PyzipperArchiver builds a WinZip-AES archive in-process and so
never exposes the password on a command line.
"""
from __future__ import annotations

import asyncio
import contextlib
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Sequence

import pyzipper
import structlog

from . import config
from .errors import ArchiveFailure, WorkspaceIOError
from .security import safe_join
from .workspace import Workspace


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ArchiveArtifact:
    name: str
    data: bytes


class Archiver(Protocol):
    async def create(
        self,
        ws: Workspace,
        file_names: Sequence[str],
        password: str,
        archive_name: str,
    ) -> ArchiveArtifact:
        ...


def _output_path(ws: Workspace, archive_name: str) -> Path:
    try:
        return safe_join(ws.output_dir, archive_name)
    except ValueError as exc:
        raise ArchiveFailure() from exc


def read_artifact(ws: Workspace, path: Path, archive_name: str) -> ArchiveArtifact:
    try:
        data = path.read_bytes()
    except OSError as exc:
        logger.error("artifact_read_failed", workspace_id=ws.workspace_id, error=type(exc).__name__)
        raise WorkspaceIOError("Failed to read ZIP file") from exc
    return ArchiveArtifact(name=archive_name, data=data)


class ZipCommandArchiver:
    """Runs `zip -j -P <password>` with the workspace files dir as cwd.

    Info-ZIP has no way to take the password other than argv (-e needs a tty),
    so the password is visible in the process list while zip runs.
    """

    def __init__(self, executable: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self.executable = executable or config.ZIP_EXECUTABLE
        self.timeout = config.ARCHIVE_TIMEOUT_SECONDS if timeout is None else timeout

    def build_command(self, output: Path, password: str, file_names: Sequence[str]) -> list[str]:
        # -j: store base names only. -nw: no wildcard expansion of our names.
        # "./" keeps a name like "-T" from being parsed as an option.
        return [
            self.executable,
            "-q",
            "-j",
            "-nw",
            "-P",
            password,
            str(output),
            *[f"./{name}" for name in file_names],
        ]

    async def create(
        self,
        ws: Workspace,
        file_names: Sequence[str],
        password: str,
        archive_name: str,
    ) -> ArchiveArtifact:
        output = _output_path(ws, archive_name)
        cmd = self.build_command(output, password, file_names)

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(ws.files_dir),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except (OSError, ValueError) as exc:
            logger.error("archiver_spawn_failed", workspace_id=ws.workspace_id, error=type(exc).__name__)
            raise ArchiveFailure() from exc

        try:
            if self.timeout and self.timeout > 0:
                await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
            else:
                await proc.communicate()
        except asyncio.TimeoutError as exc:
            await _kill(proc)
            logger.error("archiver_timeout", workspace_id=ws.workspace_id, timeout=self.timeout)
            raise ArchiveFailure() from exc
        except asyncio.CancelledError:
            await _kill(proc)
            logger.warning("archiver_cancelled", workspace_id=ws.workspace_id)
            raise

        if proc.returncode != 0:
            logger.error("archiver_failed", workspace_id=ws.workspace_id, returncode=proc.returncode)
            raise ArchiveFailure()

        logger.info("archiver_succeeded", workspace_id=ws.workspace_id, files=len(file_names))
        return read_artifact(ws, _locate_output(output), archive_name)


def _locate_output(output: Path) -> Path:
    # Info-ZIP appends ".zip" when the archive name has no extension.
    if not output.exists() and not output.suffix:
        appended = output.with_name(output.name + ".zip")
        if appended.exists():
            return appended
    return output


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
    # Reap so no zombie outlives the request.
    await asyncio.shield(proc.wait())


class PyzipperArchiver:
    """WinZip-AES (256 bit) + deflate, built in a worker thread."""

    def __init__(self, compression: int = pyzipper.ZIP_DEFLATED) -> None:
        self.compression = compression

    def _write(self, ws: Workspace, output: Path, file_names: Sequence[str], password: str) -> None:
        with pyzipper.AESZipFile(
            str(output),
            "w",
            compression=self.compression,
            encryption=pyzipper.WZ_AES,
        ) as zf:
            zf.setpassword(password.encode("utf-8"))
            for name in file_names:
                zf.write(str(safe_join(ws.files_dir, name)), arcname=name)

    async def create(
        self,
        ws: Workspace,
        file_names: Sequence[str],
        password: str,
        archive_name: str,
    ) -> ArchiveArtifact:
        output = _output_path(ws, archive_name)
        worker = asyncio.ensure_future(asyncio.to_thread(self._write, ws, output, file_names, password))
        try:
            await asyncio.shield(worker)
        except asyncio.CancelledError:
            # The thread cannot be interrupted; it must finish before the workspace is removed.
            await asyncio.wait({worker})
            if not worker.cancelled():
                worker.exception()
            logger.warning("archiver_cancelled", workspace_id=ws.workspace_id)
            raise
        except (OSError, ValueError, RuntimeError) as exc:
            logger.error("archiver_failed", workspace_id=ws.workspace_id, error=type(exc).__name__)
            raise ArchiveFailure() from exc

        logger.info("archiver_succeeded", workspace_id=ws.workspace_id, files=len(file_names))
        return read_artifact(ws, output, archive_name)


def build_archiver(kind: Optional[str] = None) -> Archiver:
    kind = (kind or config.ARCHIVER).lower()
    if kind == "zip":
        return ZipCommandArchiver()
    if kind == "pyzipper":
        return PyzipperArchiver()
    raise ValueError(f"Unknown archiver: {kind!r}")
