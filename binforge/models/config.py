"""Project and processor configuration models.

``ProjectConfig`` is loaded once from ``binforge.yml`` and passed explicitly
to every component; there is no module-level current configuration.
"""

from __future__ import annotations

import enum
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from binforge.config import BinforgeSettings
from binforge.core.errors import ConfigurationError
from binforge.models.dependencies import (
    BinaryDependency,
    PackageDependency,
    PodDependency,
)

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "binforge.yml"


class Platform(str, enum.Enum):
    """Deployment platforms and the SDKs each one is archived for."""

    IOS = "ios"
    MACOS = "macos"
    TVOS = "tvos"

    @classmethod
    def parse(cls, value: str) -> Platform:
        key = value.strip().lower()
        aliases = {"mac": "macos", "osx": "macos"}
        try:
            return cls(aliases.get(key, key))
        except ValueError:
            raise ConfigurationError(f'Invalid platform "{value}"') from None

    @property
    def sdks(self) -> tuple[str, ...]:
        return {
            Platform.IOS: ("iphoneos", "iphonesimulator"),
            Platform.MACOS: ("macosx",),
            Platform.TVOS: ("appletvos", "appletvsimulator"),
        }[self]

    @property
    def package_name(self) -> str:
        """Name used for this platform in a ``Package.swift`` manifest."""
        return {
            Platform.IOS: "iOS",
            Platform.MACOS: "macOS",
            Platform.TVOS: "tvOS",
        }[self]


class Architecture(str, enum.Enum):
    """Slices a universal iOS binary can carry."""

    ARMV7 = "armv7"
    I386 = "i386"
    X86_64 = "x86_64"
    ARM64 = "arm64"

    @property
    def sdk(self) -> str:
        if self in (Architecture.ARMV7, Architecture.ARM64):
            return "iphoneos"
        return "iphonesimulator"


# ---------------------------------------------------------------------------
# Cache backend configuration
# ---------------------------------------------------------------------------


class LocalCacheConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: Path


class HTTPCacheConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str


class S3CacheConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    bucket: str
    path: str | None = None
    cdn_url: str | None = Field(default=None, alias="cdnUrl")


class CacheConfig(BaseModel):
    """Exactly one cache backend must be configured."""

    model_config = ConfigDict(frozen=True)

    local: LocalCacheConfig | None = None
    http: HTTPCacheConfig | None = None
    s3: S3CacheConfig | None = None

    @property
    def configured(self) -> list[str]:
        return [
            name
            for name in ("local", "http", "s3")
            if getattr(self, name) is not None
        ]


# ---------------------------------------------------------------------------
# Project
# ---------------------------------------------------------------------------


class ProjectConfig(BaseModel):
    """Project-level configuration loaded from ``binforge.yml``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    cache: CacheConfig
    deployment_target: dict[str, str] = Field(default_factory=dict)
    binaries: list[BinaryDependency] = Field(default_factory=list)
    packages: list[PackageDependency] = Field(default_factory=list)
    pods: list[PodDependency] = Field(default_factory=list)
    build_directory: Path | None = None
    artifact_extension: str = "xcframework"
    # Directory containing the project file; relative paths resolve here
    directory: Path = Field(default_factory=Path.cwd)

    @model_validator(mode="after")
    def _check_unique_names(self) -> ProjectConfig:
        for kind in ("binaries", "packages", "pods"):
            names = [dep.name for dep in getattr(self, kind)]
            duplicates = sorted({n for n in names if names.count(n) > 1})
            if duplicates:
                raise ValueError(
                    f"Duplicate {kind} names: {', '.join(duplicates)}"
                )
        return self

    @property
    def build_path(self) -> Path:
        if self.build_directory is None:
            return self.directory / ".binforge"
        if self.build_directory.is_absolute():
            return self.build_directory
        return self.directory / self.build_directory

    @property
    def platform_versions(self) -> dict[Platform, str]:
        return {
            Platform.parse(key): value
            for key, value in self.deployment_target.items()
        }

    @property
    def platforms(self) -> list[Platform]:
        return list(self.platform_versions)

    def artifact_path(self, product_name: str) -> Path:
        """Conventional build output location for a product."""
        return self.build_path / f"{product_name}.{self.artifact_extension}"


def load_project_config(
    path: Path | None = None, *, build_directory: Path | None = None
) -> ProjectConfig:
    """Read and validate a project file.

    Parameters
    ----------
    path:
        A ``binforge.yml`` file or the directory containing one. Defaults
        to the current directory.
    build_directory:
        Overrides the file's ``build_directory``.

    Raises
    ------
    ConfigurationError
        If the file is missing, is not valid YAML, or fails validation.
    """
    path = Path(path) if path is not None else Path.cwd()
    if path.is_dir():
        path = path / CONFIG_FILE_NAME
    if not path.exists():
        raise ConfigurationError(f"Couldn't find config file at path: {path}")

    try:
        raw: Any = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Error reading config file at {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config file at {path} must contain a mapping")

    raw.setdefault("directory", path.parent.resolve())
    if build_directory is not None:
        raw["build_directory"] = build_directory

    try:
        config = ProjectConfig.model_validate(raw)
        # Validate platform keys up front
        config.platform_versions
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid config file at {path}:\n{exc}") from exc

    config.build_path.mkdir(parents=True, exist_ok=True)
    logger.debug("Loaded project %s from %s", config.name, path)
    return config


class ProcessorOptions(BaseModel):
    """Per-run policy shared by every dependency kind."""

    model_config = ConfigDict(frozen=True)

    platforms: tuple[Platform, ...] = ()
    force: bool = False
    skip_clean: bool = False
    product_concurrency: int | None = None
    existence_check_concurrency: int = 2
    build_concurrency: int = 1

    @classmethod
    def from_settings(
        cls,
        settings: BinforgeSettings,
        *,
        platforms: list[Platform] | tuple[Platform, ...] = (),
        force: bool = False,
        skip_clean: bool = False,
    ) -> ProcessorOptions:
        return cls(
            platforms=tuple(platforms),
            force=force,
            skip_clean=skip_clean,
            product_concurrency=settings.product_concurrency,
            existence_check_concurrency=settings.existence_check_concurrency,
            build_concurrency=settings.build_concurrency,
        )
