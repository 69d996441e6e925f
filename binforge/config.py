"""Process configuration — env-driven settings.

Reads from a .env file and BINFORGE_* environment variables. Project-level
settings (dependencies, cache backend, platforms) live in ``binforge.yml``
and are modelled by ``binforge.models.config.ProjectConfig``.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_cache_dir() -> Path:
    return Path.home() / ".cache" / "binforge"


class BinforgeSettings(BaseSettings):
    """Process settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export BINFORGE_LOG_LEVEL=DEBUG
        export BINFORGE_UPLOAD_CONCURRENCY=4
        export BINFORGE_CACHE_DIR=/tmp/binforge

    Or via .env file::

        BINFORGE_BUILD_CONCURRENCY=1
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="BINFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"

    # Scratch area for downloads, resolved checkouts and working copies
    cache_dir: Path = Field(default_factory=_default_cache_dir)

    # Concurrency caps (None = unbounded)
    product_concurrency: int | None = None
    existence_check_concurrency: int = 2
    build_concurrency: int = 1
    upload_concurrency: int = 1

    http_timeout_seconds: float = 300.0
