"""Generic dependency processing pipeline.

Each dependency kind supplies three operations through the
``DependencyKind`` protocol; ``DependencyProcessor`` composes them the same
way for every kind:

    pre_process -> (existence checks -> process) per product -> post_process

Products run concurrently. Builds for one kind go through a gate because the
external toolchain workspace is shared and cannot be re-entered.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, Protocol, runtime_checkable

from binforge.cache.delegator import CacheDelegator
from binforge.core.concurrency import Gate, map_fail_fast
from binforge.core.errors import (
    BuildError,
    ChecksumMismatchError,
    ResolutionError,
)
from binforge.models.artifacts import Artifact
from binforge.models.config import Platform, ProcessorOptions, ProjectConfig
from binforge.models.dependencies import ResolvedProduct

logger = logging.getLogger(__name__)

# (declared dependency or None for transitive ones, resolution result)
ResolvedEntry = tuple[Any, ResolvedProduct]


def selected_platforms(config: ProjectConfig, options: ProcessorOptions) -> list[Platform]:
    """Platforms to build for: the run's selection, else the project's."""
    if options.platforms:
        return list(options.platforms)
    return config.platforms


@runtime_checkable
class DependencyKind(Protocol):
    """Protocol for the kind-specific half of the pipeline.

    ``pre_process`` may be slow (it can shell out to a package manager).
    ``process`` builds or fetches every artifact of one resolved product
    and writes them to ``<build dir>/<product>.<extension>``.
    ``post_process`` is a cleanup hook called exactly once per run.
    """

    kind: str

    def pre_process(self) -> list[ResolvedEntry]:
        ...

    def process(self, dependency: Any, resolved: ResolvedProduct) -> list[Artifact]:
        ...

    def post_process(self) -> None:
        ...


class DependencyProcessor:
    """Drives one ``DependencyKind`` through the pipeline.

    Parameters
    ----------
    kind:
        The kind-specific resolve / build / cleanup implementation.
    config:
        Project configuration (build directory, artifact extension).
    options:
        Run policy: force mode and concurrency caps.
    cache:
        Delegator consulted to skip products that are already cached.
    """

    def __init__(
        self,
        kind: DependencyKind,
        *,
        config: ProjectConfig,
        options: ProcessorOptions,
        cache: CacheDelegator,
    ) -> None:
        self.kind = kind
        self.config = config
        self.options = options
        self.cache = cache
        self._build_gate = Gate(options.build_concurrency)

    def process(self, only: Iterable[str] | None = None) -> list[Artifact]:
        """Resolve, build or reuse, and clean up; return artifacts in
        declaration order.

        Parameters
        ----------
        only:
            Restrict the run to these dependency names.

        Raises
        ------
        ResolutionError
            If the kind's resolve step fails.
        BuildError
            If building any product fails. Products not yet started are
            cancelled; running ones finish first.
        """
        entries = self._resolve()
        entries = self._select(entries, only)
        logger.info("Processing %d %s dependencies...", len(entries), self.kind.kind)

        try:
            nested = map_fail_fast(
                self._process_entry,
                entries,
                max_workers=self.options.product_concurrency,
                thread_name_prefix=f"binforge-{self.kind.kind}",
            )
        except Exception:
            try:
                self.kind.post_process()
            except Exception:
                logger.exception("Cleanup of %s dependencies failed", self.kind.kind)
            raise
        self.kind.post_process()

        artifacts: list[Artifact] = []
        seen: set[str] = set()
        for group in nested:
            for artifact in group:
                if artifact.name in seen:
                    continue
                seen.add(artifact.name)
                artifacts.append(artifact)
        return artifacts

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _resolve(self) -> list[ResolvedEntry]:
        try:
            return list(self.kind.pre_process())
        except ResolutionError:
            raise
        except Exception as exc:
            raise ResolutionError(self.kind.kind, str(exc)) from exc

    @staticmethod
    def _select(
        entries: list[ResolvedEntry], only: Iterable[str] | None
    ) -> list[ResolvedEntry]:
        wanted = set(only) if only is not None else None
        selected: list[ResolvedEntry] = []
        seen: set[str] = set()
        for dependency, resolved in entries:
            if resolved.name in seen:
                continue
            if wanted is not None:
                dependency_name = getattr(dependency, "name", None)
                if resolved.name not in wanted and dependency_name not in wanted:
                    continue
            seen.add(resolved.name)
            selected.append((dependency, resolved))
        return selected

    def _process_entry(self, entry: ResolvedEntry) -> list[Artifact]:
        dependency, resolved = entry
        if resolved.product_names is None:
            return self._build(dependency, resolved)

        missing = self._missing_products(resolved)
        if missing:
            logger.debug(
                "%s is missing %s from the cache", resolved.name, ", ".join(missing)
            )
            return self._build(dependency, resolved)

        logger.info("%s is already cached", resolved.name)
        return [self._existing_artifact(resolved, name) for name in resolved.product_names]

    def _missing_products(self, resolved: ResolvedProduct) -> list[str]:
        names = list(resolved.product_names or ())
        if self.options.force:
            return names

        def _is_missing(name: str) -> bool:
            return not self.cache.exists(name, resolved.version_for(name))

        flags = map_fail_fast(
            _is_missing,
            names,
            max_workers=self.options.existence_check_concurrency,
            thread_name_prefix="binforge-exists",
        )
        return [name for name, missing in zip(names, flags) if missing]

    def _existing_artifact(self, resolved: ResolvedProduct, name: str) -> Artifact:
        path = self.config.artifact_path(name)
        if not path.exists():
            # The cache entry is authoritative; the local copy is not needed
            logger.debug("No local build of %s at %s; using cached entry", name, path)
        return Artifact(
            name=name,
            parent_name=resolved.name,
            version=resolved.version_for(name),
            path=path,
        )

    def _build(self, dependency: Any, resolved: ResolvedProduct) -> list[Artifact]:
        with self._build_gate.hold():
            logger.info("Building %s...", resolved.name)
            try:
                return list(self.kind.process(dependency, resolved))
            except (BuildError, ChecksumMismatchError):
                raise
            except Exception as exc:
                raise BuildError(resolved.name, str(exc)) from exc
