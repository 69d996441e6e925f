"""The cache engine capability shared by every backend.

Any object with ``download_url``, ``exists``, ``get``, ``put`` and a
``requires_compression`` flag satisfies the protocol. Every operation is
keyed by the ``(product, version)`` cache key.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from binforge.models.artifacts import Artifact, CachedArtifact


@runtime_checkable
class CacheEngine(Protocol):
    """Protocol for cache backends.

    ``exists`` must only read metadata; it never transfers payload bytes.
    ``get`` raises ``CacheNotFoundError`` for an absent key. ``put``
    overwrites whatever is stored under the key.
    Engines that hold connections may also define ``close``.
    """

    requires_compression: bool

    def download_url(self, product: str, version: str) -> str:
        """Deterministic location of the payload for a cache key. No I/O."""
        ...

    def exists(self, product: str, version: str) -> bool:
        ...

    def get(
        self, product: str, parent_name: str, version: str, destination: Path
    ) -> Artifact:
        ...

    def put(self, artifact: Artifact) -> CachedArtifact:
        ...
