"""Filesystem cache engine.

Layout: ``{root}/{product}/{product}-{version}.{extension}``. Entries are
plain copies of the artifact (file or directory); nothing is compressed.
"""

from __future__ import annotations

import logging
from pathlib import Path

from binforge.core.errors import CacheNotFoundError, CacheTransportError, CacheWriteError
from binforge.core.shell import copy_path, remove_path
from binforge.models.artifacts import Artifact, CachedArtifact

logger = logging.getLogger(__name__)


class LocalCacheEngine:
    """Cache engine backed by a directory on the local filesystem.

    Parameters
    ----------
    root:
        Cache directory. Relative paths resolve against *base_dir*.
    base_dir:
        Project directory used to anchor a relative *root*.
    extension:
        Artifact extension used in entry names.
    """

    requires_compression = False

    def __init__(
        self,
        root: Path,
        *,
        base_dir: Path | None = None,
        extension: str = "xcframework",
    ) -> None:
        root = Path(root)
        if not root.is_absolute():
            root = (base_dir or Path.cwd()) / root
        self.root = root.resolve()
        self.extension = extension

    def local_path(self, product: str, version: str) -> Path:
        return self.root / product / f"{product}-{version}.{self.extension}"

    def download_url(self, product: str, version: str) -> str:
        return self.local_path(product, version).as_uri()

    def exists(self, product: str, version: str) -> bool:
        return self.local_path(product, version).exists()

    def put(self, artifact: Artifact) -> CachedArtifact:
        cache_path = self.local_path(artifact.name, artifact.version)
        logger.debug("Copying %s to %s", artifact.path, cache_path)
        try:
            remove_path(cache_path)
            cache_path.parent.mkdir(parents=True, exist_ok=True)
            copy_path(artifact.path, cache_path)
        except OSError as exc:
            raise CacheWriteError(
                f"Failed to cache {artifact.name}-{artifact.version} at {cache_path}: {exc}"
            ) from exc

        return CachedArtifact.from_local_path(
            name=artifact.name,
            parent_name=artifact.parent_name,
            url=cache_path.as_uri(),
            local_path=cache_path,
            version=artifact.version,
        )

    def get(
        self, product: str, parent_name: str, version: str, destination: Path
    ) -> Artifact:
        cache_path = self.local_path(product, version)
        if not cache_path.exists():
            raise CacheNotFoundError(product, version)
        try:
            remove_path(destination)
            destination.parent.mkdir(parents=True, exist_ok=True)
            copy_path(cache_path, destination)
        except OSError as exc:
            raise CacheTransportError(
                f"Failed to copy {product}-{version} from {cache_path}: {exc}"
            ) from exc

        return Artifact(
            name=product,
            parent_name=parent_name,
            version=version,
            path=destination,
        )
