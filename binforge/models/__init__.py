"""binforge data models — all Pydantic v2, all frozen (immutable)."""

from binforge.models.artifacts import Artifact, CachedArtifact, CompressedArtifact
from binforge.models.config import (
    CacheConfig,
    HTTPCacheConfig,
    LocalCacheConfig,
    Platform,
    ProcessorOptions,
    ProjectConfig,
    S3CacheConfig,
    load_project_config,
)
from binforge.models.dependencies import (
    BinaryDependency,
    Dependency,
    PackageDependency,
    PodDependency,
    ResolvedProduct,
)

__all__ = [
    # artifacts
    "Artifact",
    "CompressedArtifact",
    "CachedArtifact",
    # dependencies
    "Dependency",
    "PackageDependency",
    "BinaryDependency",
    "PodDependency",
    "ResolvedProduct",
    # config
    "Platform",
    "CacheConfig",
    "LocalCacheConfig",
    "HTTPCacheConfig",
    "S3CacheConfig",
    "ProjectConfig",
    "ProcessorOptions",
    "load_project_config",
]
