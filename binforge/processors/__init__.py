"""Dependency processors: the generic pipeline and the three kinds."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from binforge.config import BinforgeSettings
from binforge.models.config import ProcessorOptions, ProjectConfig
from binforge.processors.base import DependencyKind, DependencyProcessor, selected_platforms
from binforge.processors.binary import BinaryKind
from binforge.processors.package import PackageKind
from binforge.processors.pod import PodKind
from binforge.processors.toolchain import Toolchain, XcodeToolchain

# Kinds run in this order
KIND_ORDER: tuple[str, ...] = ("package", "binary", "pod")


def _package(config, options, settings, toolchain) -> DependencyKind:
    return PackageKind(
        config.packages,
        config=config,
        options=options,
        toolchain=toolchain,
        scratch_dir=Path(settings.cache_dir),
    )


def _binary(config, options, settings, toolchain) -> DependencyKind:
    return BinaryKind(
        config.binaries,
        config=config,
        options=options,
        scratch_dir=Path(settings.cache_dir),
        toolchain=toolchain,
        timeout=settings.http_timeout_seconds,
    )


def _pod(config, options, settings, toolchain) -> DependencyKind:
    return PodKind(
        config.pods,
        config=config,
        options=options,
        toolchain=toolchain,
        scratch_dir=Path(settings.cache_dir),
    )


KIND_FACTORIES: dict[
    str,
    Callable[[ProjectConfig, ProcessorOptions, BinforgeSettings, Toolchain], DependencyKind],
] = {
    "package": _package,
    "binary": _binary,
    "pod": _pod,
}


def create_kind(
    name: str,
    config: ProjectConfig,
    options: ProcessorOptions,
    settings: BinforgeSettings,
    toolchain: Toolchain | None = None,
) -> DependencyKind:
    """Instantiate the kind registered under *name*."""
    try:
        factory = KIND_FACTORIES[name]
    except KeyError:
        raise ValueError(f"Unknown dependency kind: {name}") from None
    return factory(config, options, settings, toolchain or XcodeToolchain())


__all__ = [
    "BinaryKind",
    "DependencyKind",
    "DependencyProcessor",
    "KIND_FACTORIES",
    "KIND_ORDER",
    "PackageKind",
    "PodKind",
    "Toolchain",
    "XcodeToolchain",
    "create_kind",
    "selected_platforms",
]
