"""Artifact models: build outputs, compressed payloads and cached references."""

from __future__ import annotations

from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname

from pydantic import BaseModel, ConfigDict, PrivateAttr

from binforge.core.hasher import path_checksum


class Artifact(BaseModel):
    """A concrete build output on disk for one product of one dependency.

    ``parent_name`` is the owning dependency; it is kept for provenance and
    for partitioning cache paths.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    parent_name: str
    version: str
    path: Path

    @property
    def cache_key(self) -> tuple[str, str]:
        return (self.name, self.version)


class CompressedArtifact(Artifact):
    """An Artifact repackaged into a single zip payload.

    The checksum is computed on first access and then memoized.
    """

    _checksum: str | None = PrivateAttr(default=None)

    @property
    def checksum(self) -> str:
        if self._checksum is None:
            self._checksum = path_checksum(self.path)
        return self._checksum


class CachedArtifact(BaseModel):
    """The durable, addressable record of an artifact in the cache.

    ``url`` is either a ``file://`` URL (local cache) or a remote URL.
    ``checksum`` is always set for a freshly uploaded payload and may be
    ``None`` for a reference synthesized from an existing remote entry.
    ``local_path`` points at the payload the checksum was computed from,
    when one exists on this machine. ``version`` is the cache key version the
    reference was made for.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    parent_name: str
    url: str
    checksum: str | None = None
    local_path: Path | None = None
    version: str | None = None

    @classmethod
    def from_local_path(
        cls,
        name: str,
        parent_name: str,
        url: str,
        local_path: Path,
        version: str | None = None,
    ) -> CachedArtifact:
        """Build a reference whose checksum is taken from *local_path*."""
        return cls(
            name=name,
            parent_name=parent_name,
            url=url,
            version=version,
            checksum=path_checksum(local_path),
            local_path=local_path,
        )

    @property
    def is_file_url(self) -> bool:
        return urlparse(self.url).scheme == "file"

    @property
    def file_path(self) -> Path | None:
        """Filesystem path for ``file://`` URLs, else ``None``."""
        if not self.is_file_url:
            return None
        return Path(url2pathname(urlparse(self.url).path))
