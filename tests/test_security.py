"""Tests for filename and workspace-id hygiene."""

from pathlib import Path

import pytest

from zipwithpass_backend.security import (
    is_safe_basename,
    is_workspace_id,
    new_workspace_id,
    safe_join,
    upload_basename,
)


class TestUploadBasename:
    """Client-declared filenames are reduced to a safe base name."""

    def test_plain_name_kept(self) -> None:
        assert upload_basename("report.pdf") == "report.pdf"

    def test_missing_or_empty_defaults(self) -> None:
        assert upload_basename(None) == "file"
        assert upload_basename("") == "file"
        assert upload_basename("   ") == "file"

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("dir/sub/a.txt", "a.txt"),
            ("../../etc/passwd", "passwd"),
            ("C:\\Users\\me\\b.txt", "b.txt"),
            ("/abs/path/c.bin", "c.bin"),
        ],
    )
    def test_directory_components_stripped(self, raw: str, expected: str) -> None:
        assert upload_basename(raw) == expected

    @pytest.mark.parametrize("raw", ["..", ".", "dir/..", "bad\x00name", "trailing/"])
    def test_unusable_names_default(self, raw: str) -> None:
        assert upload_basename(raw) == "file"

    def test_surrounding_spaces_kept(self) -> None:
        assert upload_basename(" a.txt ") == " a.txt "


class TestIsSafeBasename:
    def test_accepts_simple_names(self) -> None:
        assert is_safe_basename("protected.zip")
        assert is_safe_basename("archive")

    @pytest.mark.parametrize("name", ["", ".", "..", "a/b.zip", "a\\b.zip", "x\r\nSet-Cookie: y"])
    def test_rejects(self, name: str) -> None:
        assert not is_safe_basename(name)


class TestSafeJoin:
    def test_stays_inside(self, tmp_path: Path) -> None:
        assert safe_join(tmp_path, "a.txt") == (tmp_path / "a.txt").resolve()

    def test_traversal_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            safe_join(tmp_path, "..", "escape.txt")


class TestWorkspaceId:
    def test_generated_ids_are_recognised(self) -> None:
        assert is_workspace_id(new_workspace_id())

    def test_ids_are_unique(self) -> None:
        assert len({new_workspace_id() for _ in range(100)}) == 100

    @pytest.mark.parametrize("name", ["sessions", "", "0" * 32, "not-a-uuid-at-all-but-32-chars!!"])
    def test_foreign_names_rejected(self, name: str) -> None:
        assert not is_workspace_id(name)
