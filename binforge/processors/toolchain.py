"""Thin wrapper around the platform build tools (swift, xcodebuild, pod).

Processors only talk to the ``Toolchain`` protocol so tests can substitute
a fake that writes files instead of compiling anything.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
from pathlib import Path
from typing import Protocol, runtime_checkable

import yaml
from pydantic import BaseModel, ConfigDict

from binforge.core.errors import ResolutionError
from binforge.core.shell import remove_path, run_command
from binforge.models.dependencies import PackageDependency

logger = logging.getLogger(__name__)

DEFAULT_BUILD_SETTINGS: dict[str, str] = {
    "BUILD_LIBRARY_FOR_DISTRIBUTION": "YES",
    "DEBUG_INFORMATION_FORMAT": "dwarf-with-dsym",
    "ENABLE_TESTABILITY": "YES",
    "INSTALL_PATH": "/Library/Frameworks",
    "OTHER_SWIFT_FLAGS": "-no-verify-emitted-module-interface",
    "SKIP_INSTALL": "NO",
    "SWIFT_COMPILATION_MODE": "wholemodule",
}


class CheckedOutPackage(BaseModel):
    """A package checkout produced by package resolution."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    path: Path
    product_names: tuple[str, ...]


class TargetLayout(BaseModel):
    """Source layout of one SwiftPM target, as declared in its manifest."""

    model_config = ConfigDict(frozen=True)

    name: str
    path: Path
    public_headers: Path


@runtime_checkable
class Toolchain(Protocol):
    def resolve_packages(
        self, dependencies: list[PackageDependency], workspace: Path
    ) -> list[CheckedOutPackage]:
        ...

    def generate_project(
        self, workspace: Path, name: str, targets: dict[str, str]
    ) -> Path:
        ...

    def install_pods(self, workspace: Path) -> None:
        ...

    def archive(
        self,
        scheme: str,
        *,
        source: Path,
        sdk: str,
        archive_path: Path,
        derived_data_path: Path,
        build_settings: dict[str, str] | None = None,
    ) -> Path:
        ...

    def create_xcframework(
        self, product_name: str, archive_paths: list[Path], output: Path
    ) -> Path:
        ...

    def binary_architectures(self, binary: Path) -> list[str]:
        ...

    def thin_binary(self, binary: Path, remove: list[str], output: Path) -> None:
        ...

    def product_targets(self, package_path: Path, product: str) -> list[TargetLayout]:
        ...


def _requirement_clause(requirement: dict[str, str]) -> str:
    (kind, value), = requirement.items()
    return {
        "from": f'from: "{value}"',
        "exact": f'exact: "{value}"',
        "revision": f'revision: "{value}"',
        "branch": f'branch: "{value}"',
    }[kind]


def render_resolution_manifest(name: str, dependencies: list[PackageDependency]) -> str:
    """Package.swift that exists only to make SwiftPM resolve *dependencies*."""
    lines = ",\n".join(
        f'        .package(url: "{dep.url}", {_requirement_clause(dep.version_requirement)})'
        for dep in dependencies
    )
    return (
        "// swift-tools-version: 5.6\n"
        "import PackageDescription\n\n"
        "let package = Package(\n"
        f'    name: "{name}",\n'
        "    dependencies: [\n"
        f"{lines}\n"
        "    ]\n"
        ")\n"
    )


class XcodeToolchain:
    """Default toolchain backed by ``swift``, ``xcodebuild`` and ``pod``."""

    def resolve_packages(
        self, dependencies: list[PackageDependency], workspace: Path
    ) -> list[CheckedOutPackage]:
        workspace.mkdir(parents=True, exist_ok=True)
        (workspace / "Package.swift").write_text(
            render_resolution_manifest(workspace.name, dependencies), encoding="utf-8"
        )
        run_command(["swift", "package", "resolve"], cwd=workspace)

        state_path = workspace / ".build" / "workspace-state.json"
        try:
            state = json.loads(state_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ResolutionError("package", f"Cannot read {state_path}: {exc}") from exc

        packages: list[CheckedOutPackage] = []
        for entry in state.get("object", {}).get("dependencies", []):
            checkout = entry.get("state", {}).get("checkoutState", {})
            path = workspace / ".build" / "checkouts" / entry["subpath"]
            packages.append(
                CheckedOutPackage(
                    name=entry["packageRef"]["name"],
                    version=checkout.get("version") or checkout["revision"],
                    path=path,
                    product_names=self._library_products(path),
                )
            )
        return packages

    @staticmethod
    def _library_products(package_path: Path) -> tuple[str, ...]:
        output = run_command(
            ["swift", "package", "dump-package", "--package-path", str(package_path)]
        )
        manifest = json.loads(output)
        return tuple(
            product["name"]
            for product in manifest.get("products", [])
            if "library" in product.get("type", {})
        )

    def generate_project(
        self, workspace: Path, name: str, targets: dict[str, str]
    ) -> Path:
        """Generate ``{name}.xcodeproj`` with one empty framework target and
        scheme per entry of *targets* (target name -> platform name)."""
        workspace.mkdir(parents=True, exist_ok=True)
        spec = {
            "name": name,
            "targets": {
                target: {"type": "framework", "platform": platform, "sources": []}
                for target, platform in targets.items()
            },
            "schemes": {
                target: {
                    "build": {"targets": {target: "all"}},
                    "archive": {"config": "Release"},
                }
                for target in targets
            },
        }
        spec_path = workspace / "project.yml"
        spec_path.write_text(yaml.safe_dump(spec, sort_keys=False), encoding="utf-8")

        project_path = workspace / f"{name}.xcodeproj"
        remove_path(project_path)
        run_command(["xcodegen", "generate", "--spec", str(spec_path)], cwd=workspace)
        return project_path

    def install_pods(self, workspace: Path) -> None:
        run_command(["pod", "install"], cwd=workspace)

    def archive(
        self,
        scheme: str,
        *,
        source: Path,
        sdk: str,
        archive_path: Path,
        derived_data_path: Path,
        build_settings: dict[str, str] | None = None,
    ) -> Path:
        settings = {**DEFAULT_BUILD_SETTINGS, **(build_settings or {})}
        args = ["xcodebuild", "archive"]
        if source.suffix == ".xcworkspace":
            args += ["-workspace", str(source)]
        elif source.suffix == ".xcodeproj":
            args += ["-project", str(source)]
        args += [
            "-scheme", scheme,
            "-sdk", sdk,
            "-archivePath", str(archive_path),
            "-derivedDataPath", str(derived_data_path),
        ]
        args += [f"{key}={value}" for key, value in sorted(settings.items())]

        remove_path(archive_path)
        is_project = source.suffix in (".xcworkspace", ".xcodeproj")
        run_command(args, cwd=source.parent if is_project else source)
        return archive_path

    def create_xcframework(
        self, product_name: str, archive_paths: list[Path], output: Path
    ) -> Path:
        if not archive_paths:
            raise ValueError("Cannot create an XCFramework from zero archives")
        args = ["xcodebuild", "-create-xcframework"]
        for archive_path in archive_paths:
            framework = archive_path / "Products/Library/Frameworks" / f"{product_name}.framework"
            args += ["-framework", str(framework)]
            dsym = archive_path / "dSYMs" / f"{product_name}.framework.dSYM"
            if dsym.exists():
                args += ["-debug-symbols", str(dsym)]
        args += ["-output", str(output)]

        remove_path(output)
        run_command(args, cwd=output.parent)
        return output

    def binary_architectures(self, binary: Path) -> list[str]:
        """Architectures of a (possibly universal) binary, via ``lipo -info``."""
        output = run_command(["xcrun", "lipo", "-info", str(binary)])
        return output.rsplit(":", 1)[-1].split()

    def thin_binary(self, binary: Path, remove: list[str], output: Path) -> None:
        if not remove:
            shutil.copyfile(binary, output)
            return
        args = ["xcrun", "lipo", str(binary)]
        for arch in remove:
            args += ["-remove", arch]
        args += ["-output", str(output)]
        run_command(args)

    def product_targets(self, package_path: Path, product: str) -> list[TargetLayout]:
        """Targets making up *product*, followed by the local targets they
        depend on, each with its source and public header directories."""
        output = run_command(
            ["swift", "package", "dump-package", "--package-path", str(package_path)]
        )
        manifest = json.loads(output)
        targets = {target["name"]: target for target in manifest.get("targets", [])}
        names = next(
            (
                list(p.get("targets", []))
                for p in manifest.get("products", [])
                if p["name"] == product
            ),
            [],
        )

        layouts: list[TargetLayout] = []
        seen: set[str] = set()
        while names:
            name = names.pop(0)
            target = targets.get(name)
            if target is None or name in seen:
                continue
            seen.add(name)
            path = package_path / (target.get("path") or f"Sources/{name}")
            layouts.append(
                TargetLayout(
                    name=name,
                    path=path,
                    public_headers=path / (target.get("publicHeadersPath") or "include"),
                )
            )
            for dependency in target.get("dependencies", []):
                for key in ("byName", "target"):
                    if key in dependency:
                        names.append(dependency[key][0])
        return layouts


def archived_framework_names(archive_path: Path) -> list[str]:
    """Names of the frameworks an archive produced."""
    frameworks = archive_path / "Products/Library/Frameworks"
    if not frameworks.exists():
        return []
    return sorted(path.stem for path in frameworks.glob("*.framework"))


_LIBRARY_DECL = r'(\.library\([\n\r\s]*name\s?:\s"{scheme}"[^,]*,)'


def force_dynamic_library(manifest_text: str, scheme: str) -> str:
    """Rewrite a Package.swift so library *scheme* is built as a dynamic
    framework (any explicit ``type:`` is replaced with ``.dynamic``)."""
    decl = _LIBRARY_DECL.format(scheme=re.escape(scheme))
    for linkage in ("static", "dynamic"):
        manifest_text = re.sub(
            decl + rf"[^,]*type: \.{linkage}[^,]*,", r"\1", manifest_text
        )
    return re.sub(decl, r"\1 type: .dynamic,", manifest_text)
