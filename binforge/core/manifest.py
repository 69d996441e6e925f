"""Package.swift manifest synchronization.

The manifest published alongside the cache lists one ``.library`` product
and one ``.binaryTarget`` per cached artifact. Updating it is a
read-modify-write: entries for uploaded artifacts are replaced, other
entries are kept (or dropped with ``remove_missing``), and the file is only
rewritten when its text actually changes.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Callable
from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname

from pydantic import BaseModel, ConfigDict

from binforge.core.errors import ConfigurationError
from binforge.core.hasher import path_checksum
from binforge.models.artifacts import CachedArtifact
from binforge.models.config import Platform

logger = logging.getLogger(__name__)

MANIFEST_FILE_NAME = "Package.swift"
TOOLS_VERSION = "5.6"

_INDENT = " " * 8

_BINARY_TARGET = re.compile(
    r"\.binaryTarget\(\s*"
    r'name:\s*"(?P<name>[^"]+)"\s*,\s*'
    r'(?:url:\s*"(?P<url>[^"]+)"\s*,\s*checksum:\s*"(?P<checksum>[^"]+)"'
    r'|path:\s*"(?P<path>[^"]+)")'
    r"\s*\)"
)
_PLATFORM = re.compile(r'\.(?P<platform>iOS|macOS|tvOS)\((?:\.v(?P<major>\d+)|"(?P<version>[^"]+)")\)')
_PACKAGE_NAME = re.compile(r'Package\(\s*name:\s*"(?P<name>[^"]+)"')


class BinaryTarget(BaseModel):
    """One ``.binaryTarget`` entry; ``url`` may be a ``file://`` URL."""

    model_config = ConfigDict(frozen=True)

    name: str
    url: str
    checksum: str | None = None

    @property
    def is_file_url(self) -> bool:
        return urlparse(self.url).scheme == "file"

    def render(self, relative_to: Path) -> str:
        lines = [f"{_INDENT}.binaryTarget(", f'{_INDENT}    name: "{self.name}",']
        if self.is_file_url:
            path = Path(url2pathname(urlparse(self.url).path))
            relative = Path(os.path.relpath(path, relative_to)).as_posix()
            lines.append(f'{_INDENT}    path: "{relative}"')
        else:
            if self.checksum is None:
                raise ConfigurationError(f"Missing checksum for {self.name}")
            lines.append(f'{_INDENT}    url: "{self.url}",')
            lines.append(f'{_INDENT}    checksum: "{self.checksum}"')
        lines.append(f"{_INDENT})")
        return "\n".join(lines)


class ParsedManifest(BaseModel):
    """What can be read back from an existing manifest."""

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    platforms: dict[Platform, str] = {}
    targets: tuple[BinaryTarget, ...] = ()

    def target(self, name: str) -> BinaryTarget | None:
        return next((t for t in self.targets if t.name == name), None)


def parse_manifest(text: str, directory: Path) -> ParsedManifest:
    """Read the package name, platforms and binary targets from *text*.

    ``path:`` targets are turned back into ``file://`` URLs anchored at
    *directory*.
    """
    name_match = _PACKAGE_NAME.search(text)

    platforms: dict[Platform, str] = {}
    for match in _PLATFORM.finditer(text):
        version = match["version"] or f"{match['major']}.0"
        platforms[Platform.parse(match["platform"])] = version

    targets: list[BinaryTarget] = []
    for match in _BINARY_TARGET.finditer(text):
        if match["path"] is not None:
            url = (directory / match["path"]).resolve().as_uri()
            targets.append(BinaryTarget(name=match["name"], url=url))
        else:
            targets.append(
                BinaryTarget(name=match["name"], url=match["url"], checksum=match["checksum"])
            )

    return ParsedManifest(
        name=name_match["name"] if name_match else None,
        platforms=platforms,
        targets=tuple(targets),
    )


def _render_platform(platform: Platform, version: str) -> str:
    major, _, minor = version.partition(".")
    if major.isdigit() and minor.strip("0.") == "":
        return f".{platform.package_name}(.v{major})"
    return f'.{platform.package_name}("{version}")'


class PackageManifest:
    """A ``Package.swift`` listing cached artifacts as binary targets.

    Parameters
    ----------
    path:
        The manifest file, or the directory that contains it.
    name:
        Package name written into the manifest.
    platforms:
        Minimum deployment targets keyed by platform.
    artifacts:
        Cache references to list. They replace prior entries of the same
        name.
    remove_missing:
        Drop prior entries that are not in *artifacts*.
    build_path:
        Build directory searched for ``{name}.{extension}.zip`` payloads
        when a remote entry has no checksum.
    extension:
        Artifact extension used for that lookup.
    version_stamp:
        Returns the recorded payload checksum for ``(product, version)``.
        A build directory zip is only trusted when it hashes to the stamp of
        the exact version being referenced.
    """

    def __init__(
        self,
        path: Path,
        name: str,
        platforms: dict[Platform, str],
        artifacts: list[CachedArtifact],
        *,
        remove_missing: bool = False,
        build_path: Path | None = None,
        extension: str = "xcframework",
        version_stamp: Callable[[str, str], str | None] | None = None,
    ) -> None:
        path = Path(path)
        self.path = path if path.name == MANIFEST_FILE_NAME else path / MANIFEST_FILE_NAME
        self.name = name
        self.platforms = dict(platforms)
        self.artifacts = list(artifacts)
        self.remove_missing = remove_missing
        self.build_path = build_path
        self.extension = extension
        self.version_stamp = version_stamp
        self.existing = ParsedManifest()
        self.targets: list[BinaryTarget] = []

    @classmethod
    def load(
        cls,
        path: Path,
        name: str,
        platforms: dict[Platform, str],
        artifacts: list[CachedArtifact],
        remove_missing: bool = False,
        *,
        build_path: Path | None = None,
        extension: str = "xcframework",
        version_stamp: Callable[[str, str], str | None] | None = None,
    ) -> PackageManifest:
        """Create a manifest and merge it with the file on disk, if any."""
        manifest = cls(
            path,
            name,
            platforms,
            artifacts,
            remove_missing=remove_missing,
            build_path=build_path,
            extension=extension,
            version_stamp=version_stamp,
        )
        manifest.read()
        return manifest

    @property
    def directory(self) -> Path:
        return self.path.parent

    # ------------------------------------------------------------------
    # Read / merge
    # ------------------------------------------------------------------

    def read(self) -> None:
        """Re-read the file on disk and recompute the target list.

        Raises
        ------
        ConfigurationError
            If a remote artifact has no checksum that can be derived.
        """
        if self.path.exists():
            self.existing = parse_manifest(
                self.path.read_text(encoding="utf-8"), self.directory.resolve()
            )
        else:
            self.existing = ParsedManifest()

        by_name: dict[str, CachedArtifact] = {}
        for artifact in self.artifacts:
            by_name.setdefault(artifact.name, artifact)

        targets: dict[str, BinaryTarget] = {}
        for prior in self.existing.targets:
            if prior.name not in by_name and not self.remove_missing:
                targets[prior.name] = prior
        for name, artifact in by_name.items():
            targets[name] = BinaryTarget(
                name=name, url=artifact.url, checksum=self._checksum_for(artifact)
            )

        self.targets = [targets[name] for name in sorted(targets)]

    def _checksum_for(self, artifact: CachedArtifact) -> str | None:
        if artifact.checksum is not None:
            return artifact.checksum

        prior = self.existing.target(artifact.name)
        if prior is not None and prior.checksum is not None:
            if artifact.local_path is not None and artifact.local_path.exists():
                # Only a byte-identical payload may keep the old checksum
                if path_checksum(artifact.local_path) == prior.checksum:
                    return prior.checksum
            elif prior.url == artifact.url:
                return prior.checksum

        if artifact.is_file_url:
            return None

        checksum = self._build_payload_checksum(artifact)
        if checksum is not None:
            return checksum

        raise ConfigurationError(f"Missing checksum for {artifact.name}")

    def _build_payload_checksum(self, artifact: CachedArtifact) -> str | None:
        """Checksum of the zip left in the build directory, provided it is the
        payload recorded for this exact product version."""
        if self.build_path is None or self.version_stamp is None or artifact.version is None:
            return None
        payload = self.build_path / f"{artifact.name}.{self.extension}.zip"
        stamp = self.version_stamp(artifact.name, artifact.version)
        if stamp is None or not payload.exists():
            return None
        checksum = path_checksum(payload)
        if checksum != stamp:
            logger.debug(
                "%s does not hold %s-%s; not using its checksum",
                payload, artifact.name, artifact.version,
            )
            return None
        return checksum

    # ------------------------------------------------------------------
    # Render / write
    # ------------------------------------------------------------------

    def render(self) -> str:
        relative_to = self.directory.resolve()
        platforms = ",\n".join(
            f"{_INDENT}{_render_platform(platform, self.platforms[platform])}"
            for platform in Platform
            if platform in self.platforms
        )
        products = ",\n".join(
            f'{_INDENT}.library(name: "{t.name}", targets: ["{t.name}"])'
            for t in self.targets
        )
        targets = ",\n".join(t.render(relative_to) for t in self.targets)
        return (
            f"// swift-tools-version: {TOOLS_VERSION}\n"
            "import PackageDescription\n"
            "\n"
            "let package = Package(\n"
            f'    name: "{self.name}",\n'
            "    platforms: [\n"
            f"{platforms}\n"
            "    ],\n"
            "    products: [\n"
            f"{products}\n"
            "    ],\n"
            "    targets: [\n"
            f"{targets}\n"
            "    ]\n"
            ")\n"
        )

    def needs_write(self) -> bool:
        if not self.path.exists():
            return True
        return self.path.read_text(encoding="utf-8") != self.render()

    def write(self) -> bool:
        """Write the manifest if its content changed; return whether it did."""
        text = self.render()
        if self.path.exists() and self.path.read_text(encoding="utf-8") == text:
            logger.debug("%s is up to date", self.path)
            return False

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(text, encoding="utf-8")
        logger.info("Updated %s", self.path)
        return True
