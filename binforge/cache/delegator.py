"""Cache delegator — one configured engine plus run-scoped policy.

The delegator adds three things on top of a raw engine:

* existence results are memoized for the lifetime of the run;
* ``upload`` skips artifacts that are already cached unless forced, and
  compresses payloads for engines that require it;
* every transferred payload gets a version stamp
  (``{build_path}/.version-{product}-{version}`` holding its SHA-256) so a
  later ``get`` can skip a download whose result is already on disk.
"""

from __future__ import annotations

import logging
import os
import threading
import zipfile
from concurrent.futures import Future
from pathlib import Path

from binforge.cache.base import CacheEngine
from binforge.cache.http import HTTPCacheEngine
from binforge.cache.local import LocalCacheEngine
from binforge.cache.s3 import S3CacheEngine
from binforge.config import BinforgeSettings
from binforge.core.concurrency import map_settled
from binforge.core.errors import (
    ChecksumMismatchError,
    CompressionError,
    ConfigurationError,
)
from binforge.core.hasher import path_checksum
from binforge.models.artifacts import Artifact, CachedArtifact, CompressedArtifact
from binforge.models.config import ProjectConfig

logger = logging.getLogger(__name__)

# Fixed timestamp so identical trees always zip to identical bytes
_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


def create_engine(
    config: ProjectConfig, settings: BinforgeSettings | None = None
) -> CacheEngine:
    """Instantiate the single cache engine named by the project config.

    Raises
    ------
    ConfigurationError
        If no backend, or more than one, is configured.
    """
    settings = settings or BinforgeSettings()
    configured = config.cache.configured
    if not configured:
        raise ConfigurationError("At least one cache engine must be specified")
    if len(configured) > 1:
        raise ConfigurationError(
            f"Exactly one cache engine must be specified, got: {', '.join(configured)}"
        )

    cache = config.cache
    if cache.local is not None:
        return LocalCacheEngine(
            cache.local.path,
            base_dir=config.directory,
            extension=config.artifact_extension,
        )
    if cache.http is not None:
        return HTTPCacheEngine(
            cache.http.url,
            extension=config.artifact_extension,
            timeout=settings.http_timeout_seconds,
        )
    assert cache.s3 is not None
    return S3CacheEngine(
        cache.s3.bucket,
        path=cache.s3.path,
        cdn_url=cache.s3.cdn_url,
        extension=config.artifact_extension,
        timeout=settings.http_timeout_seconds,
    )


def _zip_tree(source: Path, target: Path) -> None:
    """Zip *source* (file or directory) so it unpacks as ``source.name``.

    Symbolic links are stored as links rather than followed, so a
    versioned macOS framework (``Versions/Current -> A``) keeps its
    layout and its binary is stored once.
    """
    base = source.parent
    with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        if source.is_symlink() or not source.is_dir():
            _zip_entry(archive, source, base)
            return
        archive.writestr(_zip_info(f"{source.name}/", source), b"")
        for root, dirs, files in os.walk(source, followlinks=False):
            dirs.sort()
            for name in sorted(dirs + files):
                _zip_entry(archive, Path(root) / name, base)


def _zip_entry(archive: zipfile.ZipFile, path: Path, base: Path) -> None:
    arcname = path.relative_to(base).as_posix()
    if path.is_symlink():
        archive.writestr(_zip_info(arcname, path), os.readlink(path).encode())
    elif path.is_dir():
        archive.writestr(_zip_info(f"{arcname}/", path), b"")
    else:
        archive.writestr(
            _zip_info(arcname, path),
            path.read_bytes(),
            compress_type=zipfile.ZIP_DEFLATED,
        )


def _zip_info(arcname: str, path: Path) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(arcname, date_time=_ZIP_EPOCH)
    info.create_system = 3  # unix, so extractors honour the mode bits
    info.external_attr = (os.lstat(path).st_mode & 0xFFFF) << 16
    return info


class CacheDelegator:
    """Wraps exactly one cache engine for the duration of a run.

    Parameters
    ----------
    engine:
        The configured cache engine.
    build_path:
        Directory holding build outputs and version stamps.
    upload_concurrency:
        Maximum number of uploads in flight.
    """

    def __init__(
        self,
        engine: CacheEngine,
        build_path: Path,
        *,
        upload_concurrency: int = 1,
    ) -> None:
        self.engine = engine
        self.build_path = Path(build_path)
        self.upload_concurrency = upload_concurrency
        self._exists_lock = threading.Lock()
        self._exists_cache: dict[str, Future[bool]] = {}

    @classmethod
    def from_config(
        cls, config: ProjectConfig, settings: BinforgeSettings | None = None
    ) -> CacheDelegator:
        settings = settings or BinforgeSettings()
        return cls(
            create_engine(config, settings),
            config.build_path,
            upload_concurrency=settings.upload_concurrency,
        )

    @property
    def requires_compression(self) -> bool:
        return self.engine.requires_compression

    def download_url(self, product: str, version: str) -> str:
        return self.engine.download_url(product, version)

    def close(self) -> None:
        """Release the engine's connections, for engines that hold any."""
        close = getattr(self.engine, "close", None)
        if close is not None:
            close()

    # ------------------------------------------------------------------
    # Existence
    # ------------------------------------------------------------------

    def exists(self, product: str, version: str) -> bool:
        """Memoized existence check keyed by ``{product}-{version}``.

        Concurrent callers asking for the same key share one check.
        """
        key = f"{product}-{version}"
        with self._exists_lock:
            future = self._exists_cache.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._exists_cache[key] = future

        if not owner:
            return future.result()

        logger.debug("Checking if %s exists", key)
        try:
            result = self.engine.exists(product, version)
        except BaseException as exc:
            with self._exists_lock:
                self._exists_cache.pop(key, None)
            future.set_exception(exc)
            raise
        future.set_result(result)
        return result

    def _remember(self, product: str, version: str, exists: bool) -> None:
        future: Future[bool] = Future()
        future.set_result(exists)
        with self._exists_lock:
            self._exists_cache[f"{product}-{version}"] = future

    # ------------------------------------------------------------------
    # Version stamps
    # ------------------------------------------------------------------

    def version_stamp_path(self, product: str, version: str) -> Path:
        return self.build_path / f".version-{product}-{version}"

    def read_version_stamp(self, product: str, version: str) -> str | None:
        path = self.version_stamp_path(product, version)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8").strip()

    def _write_version_stamp(self, product: str, version: str, checksum: str) -> None:
        path = self.version_stamp_path(product, version)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(checksum, encoding="utf-8")

    # ------------------------------------------------------------------
    # Get / put
    # ------------------------------------------------------------------

    def get(
        self,
        product: str,
        parent_name: str,
        version: str,
        destination: Path,
        *,
        expected_checksum: str | None = None,
    ) -> Artifact:
        """Fetch a cache entry into *destination*.

        The transfer is skipped when *destination* already holds the payload
        recorded in the version stamp. When *expected_checksum* is given the
        payload must match it.
        """
        if self.requires_compression and destination.suffix != ".zip":
            destination = destination.with_name(f"{destination.name}.zip")

        stamp = self.read_version_stamp(product, version)
        if destination.exists() and stamp is not None and path_checksum(destination) == stamp:
            logger.debug("Using previously fetched %s-%s", product, version)
            self._verify(product, stamp, expected_checksum)
            artifact_cls = CompressedArtifact if self.requires_compression else Artifact
            return artifact_cls(
                name=product,
                parent_name=parent_name,
                version=version,
                path=destination,
            )

        logger.info("Fetching %s-%s", product, version)
        artifact = self.engine.get(product, parent_name, version, destination)
        checksum = path_checksum(artifact.path)
        self._verify(product, checksum, expected_checksum)
        self._write_version_stamp(product, version, checksum)
        return artifact

    @staticmethod
    def _verify(product: str, actual: str, expected: str | None) -> None:
        if expected is not None and actual != expected:
            raise ChecksumMismatchError(product, expected, actual)

    def put(self, artifact: Artifact) -> CachedArtifact:
        logger.debug("Caching %s-%s", artifact.name, artifact.version)
        cached = self.engine.put(artifact)
        checksum = cached.checksum or path_checksum(artifact.path)
        self._write_version_stamp(artifact.name, artifact.version, checksum)
        self._remember(artifact.name, artifact.version, True)
        return cached

    # ------------------------------------------------------------------
    # Upload policy
    # ------------------------------------------------------------------

    def upload(
        self, artifacts: list[Artifact], *, force: bool = False, skip_clean: bool = False
    ) -> list[CachedArtifact]:
        """Make every artifact available in the cache.

        Already cached artifacts are referenced, not re-sent, unless *force*
        is set. All scheduled uploads settle before the first failure (in
        input order) is raised. Results keep the input order.
        """

        def _upload_one(artifact: Artifact) -> CachedArtifact:
            if not force and self.exists(artifact.name, artifact.version):
                logger.debug("%s-%s already cached", artifact.name, artifact.version)
                return CachedArtifact(
                    name=artifact.name,
                    parent_name=artifact.parent_name,
                    url=self.download_url(artifact.name, artifact.version),
                    version=artifact.version,
                )

            logger.info("Uploading %s...", artifact.name)
            payload = (
                self.compress(artifact, skip_clean=skip_clean)
                if self.requires_compression
                else artifact
            )
            return self.put(payload)

        return map_settled(
            _upload_one,
            artifacts,
            max_workers=self.upload_concurrency,
            thread_name_prefix="binforge-upload",
        )

    def compress(self, artifact: Artifact, *, skip_clean: bool = False) -> CompressedArtifact:
        """Zip an artifact next to itself as ``{path}.zip``.

        A stale zip at the target is deleted first unless *skip_clean* is
        set, in which case it is reused as-is.
        """
        if isinstance(artifact, CompressedArtifact):
            return artifact

        compressed = CompressedArtifact(
            name=artifact.name,
            parent_name=artifact.parent_name,
            version=artifact.version,
            path=artifact.path.with_name(f"{artifact.path.name}.zip"),
        )

        if compressed.path.exists():
            if skip_clean:
                return compressed
            compressed.path.unlink()

        if not artifact.path.exists():
            raise CompressionError(artifact.name, artifact.path, "source does not exist")

        logger.info("Compressing %s...", artifact.name)
        try:
            _zip_tree(artifact.path, compressed.path)
        except (OSError, zipfile.BadZipFile) as exc:
            compressed.path.unlink(missing_ok=True)
            raise CompressionError(artifact.name, artifact.path, str(exc)) from exc

        return compressed
