"""Runner — drives build, upload and manifest sync for one project.

``Runner.run()`` is the single run-to-completion entry point used by the
CLI. Kinds are processed one after another (packages, binaries, pods); the
first failing kind stops the run and later kinds are never started.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from binforge.cache.delegator import CacheDelegator
from binforge.config import BinforgeSettings
from binforge.core.manifest import PackageManifest
from binforge.models.artifacts import Artifact, CachedArtifact
from binforge.models.config import ProcessorOptions, ProjectConfig
from binforge.processors import KIND_ORDER, DependencyProcessor, create_kind
from binforge.processors.toolchain import Toolchain

logger = logging.getLogger(__name__)

_KIND_FIELDS = {"package": "packages", "binary": "binaries", "pod": "pods"}


class RunResult(BaseModel):
    """Outcome of one ``Runner.run()`` call."""

    model_config = ConfigDict(frozen=True)

    artifacts: list[Artifact] = Field(default_factory=list)
    cached: list[CachedArtifact] = Field(default_factory=list)
    manifest_path: Path | None = None
    manifest_updated: bool = False


class Runner:
    """Wires configuration, cache and dependency kinds together.

    Parameters
    ----------
    config:
        The loaded project configuration.
    options:
        Per-run processor policy.
    settings:
        Process settings (scratch directory, concurrency, timeouts).
    cache:
        Cache delegator. Built from *config* when omitted.
    toolchain:
        Build tool wrapper handed to the package and pod kinds.
    """

    def __init__(
        self,
        config: ProjectConfig,
        options: ProcessorOptions,
        *,
        settings: BinforgeSettings | None = None,
        cache: CacheDelegator | None = None,
        toolchain: Toolchain | None = None,
    ) -> None:
        self.config = config
        self.options = options
        self.settings = settings or BinforgeSettings()
        self.cache = cache or CacheDelegator.from_config(config, self.settings)
        self.toolchain = toolchain

    def build(self, only: Iterable[str] | None = None) -> list[Artifact]:
        """Build or reuse every configured dependency, kind by kind."""
        only = list(only) if only is not None else None
        artifacts: list[Artifact] = []
        for kind_name in KIND_ORDER:
            if not getattr(self.config, _KIND_FIELDS[kind_name]):
                continue
            kind = create_kind(
                kind_name, self.config, self.options, self.settings, self.toolchain
            )
            processor = DependencyProcessor(
                kind, config=self.config, options=self.options, cache=self.cache
            )
            artifacts.extend(processor.process(only))
        return artifacts

    def upload(self, artifacts: list[Artifact], *, force: bool = False) -> list[CachedArtifact]:
        return self.cache.upload(artifacts, force=force, skip_clean=self.options.skip_clean)

    def update_manifest(
        self, cached: list[CachedArtifact], path: Path, *, remove_missing: bool = False
    ) -> bool:
        """Synchronize the manifest at *path*; return whether it was rewritten."""
        manifest = PackageManifest.load(
            path,
            self.config.name,
            self.config.platform_versions,
            cached,
            remove_missing,
            build_path=self.config.build_path,
            extension=self.config.artifact_extension,
            version_stamp=self.cache.read_version_stamp,
        )
        return manifest.write()

    def run(
        self,
        *,
        only: Iterable[str] | None = None,
        upload: bool = False,
        force_upload: bool = False,
        manifest_path: Path | None = None,
        remove_missing: bool = False,
    ) -> RunResult:
        """Build, then optionally upload and synchronize the manifest.

        The cache engine's connections are released when the run ends,
        whether it succeeds or fails.
        """
        try:
            artifacts = self.build(only)
            logger.info("Built %d artifacts", len(artifacts))
            if not upload:
                return RunResult(artifacts=artifacts)

            cached = self.upload(artifacts, force=force_upload)
            path = manifest_path or self.config.directory
            updated = self.update_manifest(cached, path, remove_missing=remove_missing)
        finally:
            self.cache.close()
        return RunResult(
            artifacts=artifacts,
            cached=cached,
            manifest_path=path,
            manifest_updated=updated,
        )
