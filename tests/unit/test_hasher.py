"""Tests for the SHA-256 helpers used for checksums and stamps."""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from binforge.core.hasher import file_checksum, path_checksum, sha256_hex, tree_checksum


class TestSha256:
    def test_sha256_hex_matches_hashlib(self):
        assert sha256_hex(b"binforge") == hashlib.sha256(b"binforge").hexdigest()

    def test_file_checksum_is_digest_of_bytes(self, tmp_dir: Path):
        path = tmp_dir / "payload.zip"
        path.write_bytes(b"\x00" * (3 * 1024 * 1024 + 7))
        assert file_checksum(path) == sha256_hex(path.read_bytes())


class TestTreeChecksum:
    def _tree(self, root: Path, files: dict[str, bytes]) -> Path:
        for rel, data in files.items():
            path = root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        return root

    def test_same_content_same_digest(self, tmp_dir: Path):
        files = {"Info.plist": b"plist", "ios-arm64/Lib.framework/Lib": b"bin"}
        a = self._tree(tmp_dir / "a", files)
        b = self._tree(tmp_dir / "b", dict(reversed(list(files.items()))))
        assert tree_checksum(a) == tree_checksum(b)

    def test_content_change_changes_digest(self, tmp_dir: Path):
        a = self._tree(tmp_dir / "a", {"Lib": b"one"})
        before = tree_checksum(a)
        (a / "Lib").write_bytes(b"two")
        assert tree_checksum(a) != before

    def test_rename_changes_digest(self, tmp_dir: Path):
        a = self._tree(tmp_dir / "a", {"Lib": b"same"})
        b = self._tree(tmp_dir / "b", {"Other": b"same"})
        assert tree_checksum(a) != tree_checksum(b)


class TestPathChecksum:
    def test_file_and_directory(self, tmp_dir: Path):
        f = tmp_dir / "file"
        f.write_bytes(b"data")
        d = tmp_dir / "dir"
        d.mkdir()
        (d / "x").write_bytes(b"data")
        assert path_checksum(f) == sha256_hex(b"data")
        assert path_checksum(d) == tree_checksum(d)

    def test_missing_path_raises(self, tmp_dir: Path):
        with pytest.raises(FileNotFoundError):
            path_checksum(tmp_dir / "missing")
