"""Shared pytest fixtures for the ZIP service test suite.

Provides:
- workspaces_root: per-test directory the app allocates workspaces under
- archiver: archiving capability injected into the app (pyzipper by default)
- client: AsyncClient with both dependencies overridden
- multipart: builder for hand-framed multipart/form-data bodies
"""

import pytest
from httpx import ASGITransport, AsyncClient

from server import app, get_archiver, get_workspaces_root
from zipwithpass_backend.archiver import PyzipperArchiver


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def workspaces_root(tmp_path):
    return tmp_path / "workspaces"


@pytest.fixture
def archiver():
    return PyzipperArchiver()


@pytest.fixture
async def client(workspaces_root, archiver):
    app.dependency_overrides[get_workspaces_root] = lambda: workspaces_root
    app.dependency_overrides[get_archiver] = lambda: archiver

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def multipart():
    """Build (body, content_type) from (field_name, filename_or_None, data) parts.

    A filename of None omits the filename parameter entirely, which httpx
    cannot express.
    """

    def _build(parts, boundary="zipwithpass-test-boundary"):
        chunks = []
        for name, filename, data in parts:
            disposition = f'form-data; name="{name}"'
            if filename is not None:
                disposition += f'; filename="{filename}"'
            chunks.append(f"--{boundary}\r\n".encode())
            chunks.append(f"Content-Disposition: {disposition}\r\n".encode())
            chunks.append(b"Content-Type: application/octet-stream\r\n\r\n")
            chunks.append(data)
            chunks.append(b"\r\n")
        chunks.append(f"--{boundary}--\r\n".encode())
        return b"".join(chunks), f"multipart/form-data; boundary={boundary}"

    return _build


@pytest.fixture
def leftover(workspaces_root):
    """Entries remaining under the workspaces root."""

    def _list():
        if not workspaces_root.exists():
            return []
        return list(workspaces_root.iterdir())

    return _list
