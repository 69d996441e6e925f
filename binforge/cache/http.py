"""Generic HTTP cache engine (HEAD / GET / PUT).

Layout: ``{base_url}/{product}/{product}-{version}.{extension}.zip`` with each
path segment percent-encoded. Payloads travel as zip archives, so the
delegator compresses artifacts before handing them to ``put``.
"""

from __future__ import annotations

import logging
import shutil
import threading
from collections.abc import Iterator
from pathlib import Path
from typing import BinaryIO
from urllib.parse import quote

import httpx

from binforge.core.errors import CacheNotFoundError, CacheTransportError
from binforge.core.hasher import path_checksum
from binforge.models.artifacts import Artifact, CachedArtifact, CompressedArtifact

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024


def _iter_file(fh: BinaryIO) -> Iterator[bytes]:
    for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
        yield chunk


class HTTPCacheEngine:
    """Cache engine speaking plain HTTP against a single base URL.

    Parameters
    ----------
    url:
        Base URL under which entries are stored.
    extension:
        Artifact extension used in entry names (``.zip`` is appended).
    client:
        Optional pre-configured ``httpx.Client``; one is created on first
        use otherwise.
    timeout:
        Request timeout in seconds for the default client.
    """

    requires_compression = True

    # Status codes that mean "no such entry" for an existence check
    missing_statuses: tuple[int, ...] = (404, 410)

    def __init__(
        self,
        url: str,
        *,
        extension: str = "xcframework",
        client: httpx.Client | None = None,
        timeout: float = 300.0,
    ) -> None:
        self.url = url.rstrip("/")
        self.extension = extension
        self._client = client
        self._owns_client = client is None
        self._client_lock = threading.Lock()
        self._timeout = timeout

    # ------------------------------------------------------------------
    # URLs
    # ------------------------------------------------------------------

    @property
    def upload_base_url(self) -> str:
        return self.url

    @property
    def download_base_url(self) -> str:
        return self.url

    def entry_path(self, product: str, version: str) -> str:
        encoded_product = quote(product, safe="")
        encoded_version = quote(version, safe="")
        return (
            f"{encoded_product}/"
            f"{encoded_product}-{encoded_version}.{self.extension}.zip"
        )

    def download_url(self, product: str, version: str) -> str:
        return f"{self.download_base_url}/{self.entry_path(product, version)}"

    def upload_url(self, product: str, version: str) -> str:
        return f"{self.upload_base_url}/{self.entry_path(product, version)}"

    def upload_headers(self) -> dict[str, str]:
        return {"Content-Type": "application/zip"}

    # ------------------------------------------------------------------
    # Client
    # ------------------------------------------------------------------

    @property
    def client(self) -> httpx.Client:
        with self._client_lock:
            if self._client is None:
                self._client = httpx.Client(timeout=self._timeout, follow_redirects=True)
            return self._client

    def close(self) -> None:
        """Close the client this engine created; injected clients stay open."""
        with self._client_lock:
            if self._client is not None and self._owns_client:
                self._client.close()
                self._client = None

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def exists(self, product: str, version: str) -> bool:
        url = self.download_url(product, version)
        try:
            response = self.client.head(url)
        except httpx.HTTPError as exc:
            raise CacheTransportError(f"HEAD {url} failed: {exc}") from exc

        if response.status_code < 400:
            return True
        if response.status_code in self.missing_statuses:
            return False
        raise CacheTransportError(
            f"HEAD {url} failed",
            status_code=response.status_code,
            body=response.text,
        )

    def get(
        self, product: str, parent_name: str, version: str, destination: Path
    ) -> Artifact:
        url = self.download_url(product, version)
        partial = destination.with_name(destination.name + ".part")
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self.client.stream("GET", url) as response:
                if response.status_code in self.missing_statuses:
                    raise CacheNotFoundError(product, version)
                if response.status_code >= 400:
                    response.read()
                    raise CacheTransportError(
                        f"GET {url} failed",
                        status_code=response.status_code,
                        body=response.text,
                    )
                with partial.open("wb") as fh:
                    for chunk in response.iter_bytes():
                        fh.write(chunk)
        except httpx.HTTPError as exc:
            partial.unlink(missing_ok=True)
            raise CacheTransportError(f"GET {url} failed: {exc}") from exc

        shutil.move(str(partial), str(destination))
        return CompressedArtifact(
            name=product,
            parent_name=parent_name,
            version=version,
            path=destination,
        )

    def put(self, artifact: Artifact) -> CachedArtifact:
        url = self.upload_url(artifact.name, artifact.version)
        path = artifact.path
        if not path.is_file():
            raise CacheTransportError(
                f"Cannot upload {artifact.name}: {path} is not a file"
            )

        headers = self.upload_headers()
        headers["Content-Length"] = str(path.stat().st_size)
        logger.debug("PUT %s (%s bytes)", url, headers["Content-Length"])
        try:
            with path.open("rb") as fh:
                response = self.client.put(url, content=_iter_file(fh), headers=headers)
        except httpx.HTTPError as exc:
            raise CacheTransportError(f"PUT {url} failed: {exc}") from exc

        if response.status_code >= 400:
            raise CacheTransportError(
                f"PUT {url} failed",
                status_code=response.status_code,
                body=response.text,
            )

        checksum = (
            artifact.checksum
            if isinstance(artifact, CompressedArtifact)
            else path_checksum(path)
        )
        return CachedArtifact(
            name=artifact.name,
            parent_name=artifact.parent_name,
            url=self.download_url(artifact.name, artifact.version),
            checksum=checksum,
            local_path=path,
            version=artifact.version,
        )
