"""Source packages: resolve with SwiftPM, archive per SDK, assemble bundles."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from binforge.core.errors import BuildError
from binforge.core.shell import copy_path, working_copy
from binforge.models.artifacts import Artifact
from binforge.models.config import ProcessorOptions, ProjectConfig
from binforge.models.dependencies import PackageDependency, ResolvedProduct
from binforge.processors.base import selected_platforms
from binforge.processors.headers import install_headers
from binforge.processors.toolchain import (
    Toolchain,
    archived_framework_names,
    force_dynamic_library,
)

logger = logging.getLogger(__name__)


class PackageKind:
    """Resolve / build / cleanup for ``packages`` in the project file.

    Every checked out package (transitive ones included) becomes one resolved
    product whose sub-products are its library products. Builds run against
    a throwaway copy of the checkout because the manifest is rewritten.
    """

    kind = "package"

    def __init__(
        self,
        dependencies: list[PackageDependency],
        *,
        config: ProjectConfig,
        options: ProcessorOptions,
        toolchain: Toolchain,
        scratch_dir: Path,
    ) -> None:
        self.dependencies = dependencies
        self.config = config
        self.options = options
        self.toolchain = toolchain
        self.scratch_dir = Path(scratch_dir)

    @property
    def workspace(self) -> Path:
        return self.scratch_dir / "Packages" / self.config.name

    @property
    def derived_data_path(self) -> Path:
        return self.scratch_dir / "DerivedData" / self.config.name

    # ------------------------------------------------------------------
    # Pipeline operations
    # ------------------------------------------------------------------

    def pre_process(self) -> list[tuple[PackageDependency | None, ResolvedProduct]]:
        if not self.dependencies:
            return []

        logger.info("Resolving package dependencies...")
        checkouts = self.toolchain.resolve_packages(self.dependencies, self.workspace)
        declared = {dep.name.lower(): dep for dep in self.dependencies}

        return [
            (
                declared.get(checkout.name.lower()),
                ResolvedProduct(
                    name=checkout.name,
                    version=checkout.version,
                    product_names=checkout.product_names,
                    metadata={"path": str(checkout.path)},
                ),
            )
            for checkout in checkouts
        ]

    def process(
        self, dependency: PackageDependency | None, resolved: ResolvedProduct
    ) -> list[Artifact]:
        checkout = Path(resolved.metadata["path"])
        build_settings = dependency.additional_build_settings if dependency else {}
        platforms = selected_platforms(self.config, self.options)
        if not platforms:
            raise BuildError(resolved.name, "no platforms to build for")

        artifacts: list[Artifact] = []
        with working_copy(checkout, scratch_dir=self.scratch_dir / "work") as path:
            _hide_projects(path)
            manifest = path / "Package.swift"

            for product in resolved.product_names or ():
                manifest.write_text(
                    force_dynamic_library(manifest.read_text(encoding="utf-8"), product),
                    encoding="utf-8",
                )

                archives: list[Path] = []
                for platform in platforms:
                    for sdk in platform.sdks:
                        archive_path = self.config.build_path / f"{product}-{sdk}.xcarchive"
                        if not (self.options.skip_clean and archive_path.exists()):
                            logger.info("Building %s-%s...", product, sdk)
                            self.toolchain.archive(
                                product,
                                source=path,
                                sdk=sdk,
                                archive_path=archive_path,
                                derived_data_path=self.derived_data_path,
                                build_settings=build_settings,
                            )
                        self._copy_modules_and_headers(
                            archive_path, sdk, resolved.name, path
                        )
                        archives.append(archive_path)

                output = self.config.artifact_path(product)
                logger.info("Creating %s...", output.name)
                self.toolchain.create_xcframework(product, archives, output)
                artifacts.append(
                    Artifact(
                        name=product,
                        parent_name=resolved.name,
                        version=resolved.version_for(product),
                        path=output,
                    )
                )
        return artifacts

    def post_process(self) -> None:
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _copy_modules_and_headers(
        self, archive_path: Path, sdk: str, package_name: str, package_path: Path
    ) -> None:
        """Complete each archived framework with what xcodebuild leaves in
        derived data for package products.

        A Swift target gets its ``.swiftmodule``. A target without one is
        treated as Objective-C and gets ``Headers`` plus a framework module
        map. A ``{name}_{name}.bundle`` of resources is copied in either way.
        """
        for name in archived_framework_names(archive_path):
            framework = archive_path / "Products/Library/Frameworks" / f"{name}.framework"
            intermediates = (
                self.derived_data_path / "Build/Intermediates.noindex/ArchiveIntermediates" / name
            )
            release = intermediates / "BuildProductsPath" / f"Release-{sdk}"
            module = release / f"{name}.swiftmodule"
            modules = framework / "Modules"
            modules.mkdir(parents=True, exist_ok=True)

            if module.exists():
                target = modules / module.name
                if not target.exists():
                    shutil.copytree(module, target)
            else:
                layouts = self.toolchain.product_targets(package_path, name)
                generated = (
                    intermediates
                    / "IntermediateBuildFilesPath"
                    / f"{package_name}.build"
                    / f"Release-{sdk}"
                    / f"{name}.build"
                )
                module_map = _first_module_map(generated, recursive=False)
                if module_map is None:
                    # Fall back to a module map shipped with the target sources
                    own = [layout for layout in layouts if layout.name == name]
                    if own:
                        module_map = _first_module_map(own[0].path, recursive=True)
                install_headers(
                    framework, name, module_map, [layout.public_headers for layout in layouts]
                )

            bundle = release / f"{name}_{name}.bundle"
            if bundle.exists() and not (framework / bundle.name).exists():
                copy_path(bundle, framework / bundle.name)


def _first_module_map(directory: Path, *, recursive: bool) -> Path | None:
    if not directory.is_dir():
        return None
    found = directory.rglob("*.modulemap") if recursive else directory.glob("*.modulemap")
    return next(iter(sorted(found)), None)


def _hide_projects(path: Path) -> None:
    # xcodebuild prefers a project over Package.swift in the same directory
    for pattern in ("*.xcodeproj", "*.xcworkspace"):
        for project in path.glob(pattern):
            project.rename(project.with_name(f"{project.name}.bak"))
