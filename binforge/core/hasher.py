"""SHA-256 helpers for payload checksums and cache stamps.

The same digest is used for manifest checksums, version stamps and download
verification, so every caller goes through these functions.
"""

from __future__ import annotations

import hashlib
from pathlib import Path

_CHUNK_SIZE = 1024 * 1024


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def file_checksum(path: Path) -> str:
    """SHA-256 of a file's bytes, read in chunks."""
    digest = hashlib.sha256()
    with Path(path).open("rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def tree_checksum(path: Path) -> str:
    """SHA-256 over a directory's sorted ``relative-path:file-digest`` lines.

    Framework bundles are directories; this gives them a stable digest that
    does not depend on filesystem enumeration order or timestamps.
    """
    root = Path(path)
    lines = [
        f"{child.relative_to(root).as_posix()}:{file_checksum(child)}"
        for child in sorted(root.rglob("*"))
        if child.is_file()
    ]
    return sha256_hex("\n".join(lines).encode("utf-8"))


def path_checksum(path: Path) -> str:
    """Checksum a payload that is either a single file or a directory tree.

    Raises
    ------
    FileNotFoundError
        If *path* does not exist.
    """
    path = Path(path)
    if path.is_dir():
        return tree_checksum(path)
    if not path.exists():
        raise FileNotFoundError(f"Cannot checksum missing path: {path}")
    return file_checksum(path)
