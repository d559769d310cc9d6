"""Failure categories for the upload-to-archive pipeline.

Each category carries the HTTP status and the fixed, client-safe message the
endpoint replies with. Messages never include paths or the password.
"""
from __future__ import annotations


class ZipServiceError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ZipServiceError):
    """Client-caused; the request is rejected before or instead of archiving."""

    status_code = 400
    default_message = "Bad request"


class PayloadTooLarge(ZipServiceError):
    status_code = 413
    default_message = "Upload too large"


class ResourceError(ZipServiceError):
    """Workspace could not be allocated or listed."""

    default_message = "Failed to prepare temporary directory"


class WorkspaceIOError(ZipServiceError):
    """A file inside the workspace could not be created, written or read."""

    default_message = "Failed to write uploaded file"


class ArchiveFailure(ZipServiceError):
    """The archiving capability reported failure; partial output is discarded."""

    default_message = "Failed to create ZIP file"
