"""Prebuilt binary dependencies: download, verify, extract, collect bundles.

Downloads land in the scratch directory next to a checksum stamp
(``.binary-{name}-{version}``) so an unchanged archive is never fetched
twice. The product names found in an archive are remembered in
``.binary-products-{name}-{version}``; until that file exists the dependency
resolves without sub-products and is always fetched.

Archives that ship universal iOS ``.framework`` bundles instead of XCFrameworks
are converted through the toolchain (one thinned archive per SDK).
"""

from __future__ import annotations

import logging
import shutil
import tarfile
import threading
import zipfile
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

import httpx

from binforge.core.errors import BuildError, ChecksumMismatchError
from binforge.core.hasher import file_checksum
from binforge.core.shell import copy_path, remove_path
from binforge.models.artifacts import Artifact
from binforge.models.config import Architecture, Platform, ProcessorOptions, ProjectConfig
from binforge.models.dependencies import BinaryDependency, ResolvedProduct
from binforge.processors.base import selected_platforms
from binforge.processors.toolchain import Toolchain

logger = logging.getLogger(__name__)

_ARCHIVE_SUFFIXES = (".tar.gz", ".tgz", ".tar", ".zip")

_ARCHITECTURE_SDKS = {arch.value: arch.sdk for arch in Architecture}


def _archive_name(url: str) -> str:
    return PurePosixPath(urlparse(url).path).name


def _strip_archive_suffix(name: str) -> str:
    for suffix in _ARCHIVE_SUFFIXES:
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


class BinaryKind:
    """Resolve / fetch / cleanup for ``binaries`` in the project file."""

    kind = "binary"

    def __init__(
        self,
        dependencies: list[BinaryDependency],
        *,
        config: ProjectConfig,
        options: ProcessorOptions,
        scratch_dir: Path,
        toolchain: Toolchain | None = None,
        client: httpx.Client | None = None,
        timeout: float = 300.0,
    ) -> None:
        self.dependencies = dependencies
        self.config = config
        self.options = options
        self.scratch_dir = Path(scratch_dir)
        self.toolchain = toolchain
        self._client = client
        self._owns_client = client is None
        self._client_lock = threading.Lock()
        self._timeout = timeout

    # ------------------------------------------------------------------
    # Pipeline operations
    # ------------------------------------------------------------------

    def pre_process(self) -> list[tuple[BinaryDependency, ResolvedProduct]]:
        logger.info("Processing binary dependencies...")
        return [
            (
                dependency,
                ResolvedProduct(
                    name=dependency.name,
                    version=dependency.version,
                    product_names=self.cached_product_names(dependency),
                ),
            )
            for dependency in self.dependencies
        ]

    def process(
        self, dependency: BinaryDependency, resolved: ResolvedProduct
    ) -> list[Artifact]:
        archive = self._fetch(dependency)
        try:
            extracted = self._extract(dependency, archive)
        except (OSError, tarfile.TarError, zipfile.BadZipFile) as exc:
            logger.debug("Error decompressing %s, downloading again: %s", archive, exc)
            archive = self._download(dependency)
            extracted = self._extract(dependency, archive)

        artifacts = self._collect(dependency, extracted)
        if not artifacts:
            artifacts = self._convert_frameworks(dependency, extracted)
        if not artifacts:
            raise BuildError(
                dependency.name,
                f"no .{self.config.artifact_extension} bundles found in {archive.name}",
            )
        self._remember_product_names(dependency, [a.name for a in artifacts])
        return artifacts

    def post_process(self) -> None:
        with self._client_lock:
            if self._client is not None and self._owns_client:
                self._client.close()
                self._client = None

    # ------------------------------------------------------------------
    # Product name cache
    # ------------------------------------------------------------------

    def _product_names_path(self, dependency: BinaryDependency) -> Path:
        return self.scratch_dir / f".binary-products-{dependency.name}-{dependency.version}"

    def cached_product_names(self, dependency: BinaryDependency) -> tuple[str, ...] | None:
        path = self._product_names_path(dependency)
        if not path.exists():
            return None
        names = [
            name
            for name in path.read_text(encoding="utf-8").strip().split(",")
            if name and name not in dependency.excludes
        ]
        return tuple(names) or None

    def _remember_product_names(self, dependency: BinaryDependency, names: list[str]) -> None:
        if names and all(names):
            path = self._product_names_path(dependency)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(",".join(names), encoding="utf-8")

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    @property
    def client(self) -> httpx.Client:
        with self._client_lock:
            if self._client is None:
                self._client = httpx.Client(timeout=self._timeout, follow_redirects=True)
            return self._client

    def _archive_path(self, dependency: BinaryDependency) -> Path:
        return self.scratch_dir / _archive_name(dependency.url)

    def _stamp_path(self, dependency: BinaryDependency) -> Path:
        return self.scratch_dir / f".binary-{dependency.name}-{dependency.version}"

    def _fetch(self, dependency: BinaryDependency) -> Path:
        archive = self._archive_path(dependency)
        stamp = self._stamp_path(dependency)
        if archive.exists() and stamp.exists():
            if file_checksum(archive) == stamp.read_text(encoding="utf-8").strip():
                logger.debug("Reusing downloaded %s", archive.name)
                return archive
        return self._download(dependency)

    def _download(self, dependency: BinaryDependency) -> Path:
        archive = self._archive_path(dependency)
        partial = archive.with_name(archive.name + ".part")
        archive.parent.mkdir(parents=True, exist_ok=True)
        remove_path(archive)

        logger.info("Downloading %s...", archive.name)
        try:
            with self.client.stream("GET", dependency.url) as response:
                if response.status_code >= 400:
                    raise BuildError(
                        dependency.name,
                        f"download of {dependency.url} failed with status {response.status_code}",
                    )
                with partial.open("wb") as fh:
                    for chunk in response.iter_bytes():
                        fh.write(chunk)
        except httpx.HTTPError as exc:
            partial.unlink(missing_ok=True)
            raise BuildError(dependency.name, f"download of {dependency.url} failed: {exc}") from exc

        shutil.move(str(partial), str(archive))
        checksum = file_checksum(archive)
        if dependency.checksum is not None and checksum != dependency.checksum:
            archive.unlink()
            raise ChecksumMismatchError(dependency.name, dependency.checksum, checksum)
        self._stamp_path(dependency).write_text(checksum, encoding="utf-8")
        return archive

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def _extract(self, dependency: BinaryDependency, archive: Path) -> Path:
        target = self.scratch_dir / _strip_archive_suffix(archive.name)
        if self.options.skip_clean and target.exists():
            return target
        remove_path(target)

        logger.info("Decompressing %s...", archive.name)
        name = archive.name
        if name.endswith(".zip"):
            with zipfile.ZipFile(archive) as zf:
                zf.extractall(target)
        elif name.endswith((".tar.gz", ".tgz", ".tar")):
            with tarfile.open(archive) as tf:
                tf.extractall(target, filter="data")
        else:
            raise BuildError(
                dependency.name, f'Unsupported archive extension for "{archive.name}"'
            )
        return target

    def _collect(self, dependency: BinaryDependency, extracted: Path) -> list[Artifact]:
        suffix = f".{self.config.artifact_extension}"
        bundles = [path for path in sorted(extracted.rglob(f"*{suffix}")) if path.is_dir()]
        # Ignore bundles nested inside another bundle
        bundles = [
            path for path in bundles
            if not any(parent.suffix == suffix for parent in path.parents)
        ]

        artifacts: list[Artifact] = []
        seen: set[str] = set()
        for bundle in bundles:
            name = bundle.stem
            if name in dependency.excludes or name in seen:
                continue
            seen.add(name)
            target = self.config.artifact_path(name)
            remove_path(target)
            target.parent.mkdir(parents=True, exist_ok=True)
            copy_path(bundle, target)
            artifacts.append(
                Artifact(
                    name=name,
                    parent_name=dependency.name,
                    version=dependency.version,
                    path=target,
                )
            )
        return artifacts

    # ------------------------------------------------------------------
    # Universal framework conversion
    # ------------------------------------------------------------------

    def _convert_frameworks(
        self, dependency: BinaryDependency, extracted: Path
    ) -> list[Artifact]:
        """Turn universal iOS ``.framework`` bundles into XCFrameworks.

        Used only when an archive ships no XCFramework. Each framework is
        copied into one archive per iOS SDK and its binary is thinned to the
        slices belonging to that SDK before the XCFramework is assembled.
        """
        frameworks = [
            path for path in sorted(extracted.rglob("*.framework"))
            if path.is_dir()
            and path.stem not in dependency.excludes
            and not any(parent.suffix == ".framework" for parent in path.parents)
        ]
        if not frameworks:
            return []
        if self.toolchain is None:
            raise BuildError(dependency.name, "no toolchain to convert .framework bundles")

        platforms = selected_platforms(self.config, self.options)
        unsupported = [p.value for p in platforms if p is not Platform.IOS]
        if unsupported:
            raise BuildError(
                dependency.name,
                "universal frameworks can only be converted for ios, not "
                + ", ".join(unsupported),
            )

        artifacts: list[Artifact] = []
        for framework in frameworks:
            name = framework.stem
            logger.info("Converting %s to an XCFramework...", framework.name)
            binary = framework / name
            architectures = self.toolchain.binary_architectures(binary)

            archives: list[Path] = []
            for sdk in Platform.IOS.sdks:
                keep = [arch for arch in architectures if _ARCHITECTURE_SDKS.get(arch) == sdk]
                if not keep:
                    raise BuildError(name, f"{framework.name} has no {sdk} slice")
                archive = self.scratch_dir / f"{name}-{sdk}.xcarchive"
                target = archive / "Products/Library/Frameworks" / framework.name
                remove_path(archive)
                target.parent.mkdir(parents=True)
                copy_path(framework, target)
                self.toolchain.thin_binary(
                    binary, [arch for arch in architectures if arch not in keep], target / name
                )
                archives.append(archive)

            output = self.config.artifact_path(name)
            output.parent.mkdir(parents=True, exist_ok=True)
            self.toolchain.create_xcframework(name, archives, output)
            for archive in archives:
                remove_path(archive)
            artifacts.append(
                Artifact(
                    name=name,
                    parent_name=dependency.name,
                    version=dependency.version,
                    path=output,
                )
            )
        return artifacts
