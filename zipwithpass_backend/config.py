from __future__ import annotations

import os
import tempfile
from pathlib import Path


# Parent directory for all request workspaces.
# Default: a dedicated folder under the OS temp dir.
# Override with env var ZIPPASS_WORKSPACES_ROOT.
_root_raw = os.environ.get("ZIPPASS_WORKSPACES_ROOT")
if _root_raw and _root_raw.strip():
    WORKSPACES_ROOT = Path(_root_raw)
else:
    WORKSPACES_ROOT = Path(tempfile.gettempdir()) / "zipwithpass"
WORKSPACES_ROOT = WORKSPACES_ROOT.resolve()

# Archiving backend: "zip" shells out to Info-ZIP, "pyzipper" encrypts in-process.
ARCHIVER = os.environ.get("ZIPPASS_ARCHIVER", "zip").strip().lower()
ZIP_EXECUTABLE = os.environ.get("ZIPPASS_ZIP_EXECUTABLE", "zip")

# 0 disables the timeout.
ARCHIVE_TIMEOUT_SECONDS = float(os.environ.get("ZIPPASS_ARCHIVE_TIMEOUT_SECONDS", "120"))

# Request body cap; 0 disables it.
MAX_UPLOAD_BYTES = int(os.environ.get("ZIPPASS_MAX_UPLOAD_BYTES", str(100 * 1024 * 1024)))  # 100MB

# Leftover workspaces older than this are removed at startup.
STALE_WORKSPACE_SECONDS = int(os.environ.get("ZIPPASS_STALE_WORKSPACE_SECONDS", "3600"))

LOG_LEVEL = os.environ.get("ZIPPASS_LOG_LEVEL", "INFO").strip().upper()
LOG_FORMAT = os.environ.get("ZIPPASS_LOG_FORMAT", "console").strip().lower()

HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "8080"))

FILES_FIELD = "files"
DEFAULT_FILENAME = "file"
DEFAULT_ARCHIVE_NAME = "protected.zip"
CHUNK_SIZE = 64 * 1024

FILES_SUBDIR = "files"
OUTPUT_SUBDIR = "output"
