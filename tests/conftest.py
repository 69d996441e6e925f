"""Shared test fixtures for binforge."""

from __future__ import annotations

import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from binforge.cache.delegator import CacheDelegator
from binforge.cache.local import LocalCacheEngine
from binforge.models.artifacts import Artifact
from binforge.models.config import (
    CacheConfig,
    LocalCacheConfig,
    ProcessorOptions,
    ProjectConfig,
)
from binforge.models.dependencies import ResolvedProduct
from binforge.processors.toolchain import CheckedOutPackage, TargetLayout


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def project_dir(tmp_dir: Path) -> Path:
    path = tmp_dir / "project"
    path.mkdir()
    return path


@pytest.fixture
def cache_root(tmp_dir: Path) -> Path:
    return tmp_dir / "cache"


@pytest.fixture
def make_config(project_dir: Path, cache_root: Path) -> Callable[..., ProjectConfig]:
    """Factory fixture: a ProjectConfig backed by a local cache."""

    def _factory(**overrides: Any) -> ProjectConfig:
        defaults: dict[str, Any] = {
            "name": "TestProject",
            "cache": CacheConfig(local=LocalCacheConfig(path=cache_root)),
            "deployment_target": {"ios": "12.0"},
            "directory": project_dir,
        }
        defaults.update(overrides)
        config = ProjectConfig(**defaults)
        config.build_path.mkdir(parents=True, exist_ok=True)
        return config

    return _factory


@pytest.fixture
def config(make_config: Callable[..., ProjectConfig]) -> ProjectConfig:
    return make_config()


@pytest.fixture
def local_engine(cache_root: Path) -> LocalCacheEngine:
    return LocalCacheEngine(cache_root)


@pytest.fixture
def delegator(local_engine: LocalCacheEngine, config: ProjectConfig) -> CacheDelegator:
    return CacheDelegator(local_engine, config.build_path)


@pytest.fixture
def options() -> ProcessorOptions:
    return ProcessorOptions()


@pytest.fixture
def make_artifact(config: ProjectConfig) -> Callable[..., Artifact]:
    """Factory fixture: write a payload at the conventional build path."""

    def _factory(
        name: str = "Product1",
        parent_name: str = "Package1",
        version: str = "1.0.0",
        content: bytes | None = None,
    ) -> Artifact:
        path = config.artifact_path(name)
        path.write_bytes(content if content is not None else f"{name}-{version}".encode())
        return Artifact(name=name, parent_name=parent_name, version=version, path=path)

    return _factory


# ---------------------------------------------------------------------------
# Fakes for the kind-specific half of the pipeline
# ---------------------------------------------------------------------------


class RecordingKind:
    """DependencyKind fake: resolves to fixed products and writes payloads.

    ``products`` maps a resolved product name to its sub-product names (or
    ``None``). ``fail`` names products whose ``process`` call raises.
    """

    kind = "fake"

    def __init__(
        self,
        config: ProjectConfig,
        products: dict[str, tuple[str, ...] | None],
        *,
        version: str = "1.0.0",
        fail: set[str] | None = None,
        resolve_error: Exception | None = None,
    ) -> None:
        self.config = config
        self.products = products
        self.version = version
        self.fail = fail or set()
        self.resolve_error = resolve_error
        self.process_calls: list[str] = []
        self.post_process_calls = 0
        self._lock = threading.Lock()

    def pre_process(self) -> list[tuple[Any, ResolvedProduct]]:
        if self.resolve_error is not None:
            raise self.resolve_error
        return [
            (None, ResolvedProduct(name=name, version=self.version, product_names=names))
            for name, names in self.products.items()
        ]

    def process(self, dependency: Any, resolved: ResolvedProduct) -> list[Artifact]:
        with self._lock:
            self.process_calls.append(resolved.name)
        if resolved.name in self.fail:
            raise ValueError(f"{resolved.name} exploded")

        artifacts = []
        for name in resolved.product_names or (resolved.name,):
            path = self.config.artifact_path(name)
            path.write_bytes(f"{name}-{resolved.version}".encode())
            artifacts.append(
                Artifact(
                    name=name,
                    parent_name=resolved.name,
                    version=resolved.version_for(name),
                    path=path,
                )
            )
        return artifacts

    def post_process(self) -> None:
        self.post_process_calls += 1


@pytest.fixture
def recording_kind() -> type[RecordingKind]:
    return RecordingKind


class FakeToolchain:
    """Toolchain fake that writes plausible archive and bundle trees."""

    def __init__(
        self,
        packages: list[CheckedOutPackage] | None = None,
        frameworks: dict[str, list[str]] | None = None,
        lock_text: str = "",
        architectures: dict[str, list[str]] | None = None,
        targets: dict[str, list[TargetLayout]] | None = None,
    ) -> None:
        self.packages = packages or []
        # scheme -> frameworks its archive contains
        self.frameworks = frameworks or {}
        self.lock_text = lock_text
        # binary name -> slices it carries
        self.architectures = architectures or {}
        # product -> source layout of its targets
        self.targets = targets or {}
        self.calls: list[tuple[str, ...]] = []

    def resolve_packages(self, dependencies, workspace: Path) -> list[CheckedOutPackage]:
        self.calls.append(("resolve", *(d.name for d in dependencies)))
        return self.packages

    def generate_project(self, workspace: Path, name: str, targets: dict[str, str]) -> Path:
        self.calls.append(("generate", name, *targets))
        workspace.mkdir(parents=True, exist_ok=True)
        project = workspace / f"{name}.xcodeproj"
        project.mkdir(exist_ok=True)
        return project

    def install_pods(self, workspace: Path) -> None:
        self.calls.append(("install",))
        (workspace / "Podfile.lock").write_text(self.lock_text, encoding="utf-8")

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
        self.calls.append(("archive", scheme, sdk))
        frameworks = archive_path / "Products/Library/Frameworks"
        frameworks.mkdir(parents=True, exist_ok=True)
        for name in self.frameworks.get(scheme, [scheme]):
            binary = frameworks / f"{name}.framework" / name
            binary.parent.mkdir(parents=True, exist_ok=True)
            binary.write_bytes(f"{name}-{sdk}".encode())
        return archive_path

    def create_xcframework(
        self, product_name: str, archive_paths: list[Path], output: Path
    ) -> Path:
        self.calls.append(("xcframework", product_name, str(len(archive_paths))))
        output.mkdir(parents=True, exist_ok=True)
        (output / "Info.plist").write_text(product_name, encoding="utf-8")
        return output

    def binary_architectures(self, binary: Path) -> list[str]:
        return list(self.architectures.get(binary.name, ["arm64", "x86_64"]))

    def thin_binary(self, binary: Path, remove: list[str], output: Path) -> None:
        self.calls.append(("lipo", binary.name, *remove))
        kept = [a for a in self.binary_architectures(binary) if a not in remove]
        output.write_text(" ".join(kept), encoding="utf-8")

    def product_targets(self, package_path: Path, product: str) -> list[TargetLayout]:
        # Layouts are given relative to the package root
        return [
            TargetLayout(
                name=layout.name,
                path=package_path / layout.path,
                public_headers=package_path / layout.public_headers,
            )
            for layout in self.targets.get(product, [])
        ]


@pytest.fixture
def fake_toolchain() -> type[FakeToolchain]:
    return FakeToolchain
