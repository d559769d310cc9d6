"""Stream a multipart/form-data body into a workspace.

The body is fed to the python-multipart push parser chunk by chunk. Parser
callbacks only queue events; the queue is drained after every chunk so each
piece of file data is written to disk before the next chunk is pulled.
"""
from __future__ import annotations

import contextlib
from dataclasses import dataclass, field
from typing import IO, AsyncIterator, Optional

import structlog
from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from . import config
from .errors import PayloadTooLarge, ValidationError, WorkspaceIOError
from .security import safe_join, upload_basename
from .workspace import Workspace, list_files


logger = structlog.get_logger(__name__)

MALFORMED_MESSAGE = "Malformed multipart body"


def _safe_decode(raw: bytes, charset: str = "utf-8") -> str:
    try:
        return raw.decode(charset)
    except (UnicodeDecodeError, LookupError):
        return raw.decode("latin-1")


@dataclass
class _Part:
    headers: list[tuple[bytes, bytes]] = field(default_factory=list)
    field_name: str = ""
    filename: Optional[str] = None
    is_file: bool = False


class _PartCollector:
    """Receives python-multipart callbacks and queues what has to be written."""

    def __init__(self) -> None:
        self.part = _Part()
        self.header_name = b""
        self.header_value = b""
        self.events: list[tuple[str, object]] = []
        self.ended = False
        self.error: Optional[str] = None

    def on_part_begin(self) -> None:
        self.part = _Part()

    def on_header_field(self, data: bytes, start: int, end: int) -> None:
        self.header_name += data[start:end]

    def on_header_value(self, data: bytes, start: int, end: int) -> None:
        self.header_value += data[start:end]

    def on_header_end(self) -> None:
        self.part.headers.append((self.header_name.lower(), self.header_value))
        self.header_name = b""
        self.header_value = b""

    def on_headers_finished(self) -> None:
        disposition = b""
        for name, value in self.part.headers:
            if name == b"content-disposition":
                disposition = value
        _, options = parse_options_header(disposition)
        if b"name" not in options:
            self.error = 'Part without a Content-Disposition "name"'
            return
        self.part.field_name = _safe_decode(options[b"name"])
        if self.part.field_name != config.FILES_FIELD:
            return
        self.part.is_file = True
        raw_filename = options.get(b"filename")
        self.part.filename = upload_basename(_safe_decode(raw_filename) if raw_filename else None)
        self.events.append(("open", self.part.filename))

    def on_part_data(self, data: bytes, start: int, end: int) -> None:
        if self.part.is_file:
            self.events.append(("data", bytes(data[start:end])))

    def on_part_end(self) -> None:
        if self.part.is_file:
            self.events.append(("close", None))

    def on_end(self) -> None:
        self.ended = True

    def callbacks(self) -> dict:
        return {
            "on_part_begin": self.on_part_begin,
            "on_part_data": self.on_part_data,
            "on_part_end": self.on_part_end,
            "on_header_field": self.on_header_field,
            "on_header_value": self.on_header_value,
            "on_header_end": self.on_header_end,
            "on_headers_finished": self.on_headers_finished,
            "on_end": self.on_end,
        }


def _boundary_from(content_type: str) -> bytes:
    ctype, params = parse_options_header(content_type or "")
    if ctype.lower() != b"multipart/form-data":
        raise ValidationError(MALFORMED_MESSAGE)
    boundary = params.get(b"boundary")
    if not boundary:
        raise ValidationError(MALFORMED_MESSAGE)
    return boundary


class _PartWriter:
    """Owns the currently open destination file; at most one at a time."""

    def __init__(self, ws: Workspace) -> None:
        self.ws = ws
        self.handle: Optional[IO[bytes]] = None

    def open(self, filename: str) -> None:
        self.close()
        try:
            dest = safe_join(self.ws.files_dir, filename)
            # Same name twice: the later part overwrites the earlier one.
            self.handle = open(dest, "wb")
        except (OSError, ValueError) as exc:
            logger.error("upload_create_failed", workspace_id=self.ws.workspace_id, error=type(exc).__name__)
            raise WorkspaceIOError("Failed to create uploaded file") from exc

    def write(self, data: bytes) -> None:
        if self.handle is None:
            return
        try:
            self.handle.write(data)
        except OSError as exc:
            logger.error("upload_write_failed", workspace_id=self.ws.workspace_id, error=type(exc).__name__)
            raise WorkspaceIOError("Failed to write uploaded file") from exc

    def close(self) -> None:
        if self.handle is None:
            return
        handle, self.handle = self.handle, None
        try:
            handle.close()
        except OSError as exc:
            raise WorkspaceIOError("Failed to write uploaded file") from exc


async def materialize(chunks: AsyncIterator[bytes], content_type: str, ws: Workspace) -> list[str]:
    """Write every `files` part of the body into ws; return the names now present.

    Other parts are skipped. A part without a filename is stored under
    DEFAULT_FILENAME. The result comes from the directory listing, so parts
    that overwrote each other are reported once.
    """
    boundary = _boundary_from(content_type)
    collector = _PartCollector()
    parser = MultipartParser(boundary, collector.callbacks())
    writer = _PartWriter(ws)
    received = 0
    limit = config.MAX_UPLOAD_BYTES

    try:
        async for chunk in chunks:
            if not chunk:
                continue
            received += len(chunk)
            if limit > 0 and received > limit:
                raise PayloadTooLarge()
            try:
                parser.write(chunk)
            except MultipartParseError as exc:
                raise ValidationError(MALFORMED_MESSAGE) from exc
            if collector.error:
                logger.info("upload_rejected", workspace_id=ws.workspace_id, reason=collector.error)
                raise ValidationError(MALFORMED_MESSAGE)

            for kind, payload in collector.events:
                if kind == "open":
                    writer.open(payload)
                elif kind == "data":
                    writer.write(payload)
                else:
                    writer.close()
            collector.events.clear()

        try:
            parser.finalize()
        except MultipartParseError as exc:
            raise ValidationError(MALFORMED_MESSAGE) from exc
        if not collector.ended:
            raise ValidationError(MALFORMED_MESSAGE)
    finally:
        if writer.handle is not None:
            with contextlib.suppress(OSError):
                writer.handle.close()

    names = list_files(ws)
    logger.info("upload_materialized", workspace_id=ws.workspace_id, files=len(names), bytes=received)
    return names
