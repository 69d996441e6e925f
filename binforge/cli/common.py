"""Helpers shared by the CLI commands: logging, config loading, output."""

from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from binforge.config import BinforgeSettings
from binforge.models.artifacts import Artifact, CachedArtifact
from binforge.models.config import Platform, ProjectConfig, load_project_config

console = Console()


def setup_logging(level: str | None, settings: BinforgeSettings) -> None:
    """Route all log records through a single RichHandler."""
    name = (level or settings.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def split_names(value: str | None) -> list[str] | None:
    """Parse a comma-separated filter; ``None`` means no filter."""
    if not value:
        return None
    names = [name.strip() for name in value.split(",") if name.strip()]
    return names or None


def parse_platforms(value: str | None) -> list[Platform]:
    return [Platform.parse(name) for name in split_names(value) or []]


def load_config(config: Path | None, build_path: Path | None) -> ProjectConfig:
    return load_project_config(config, build_directory=build_path)


def artifacts_table(artifacts: list[Artifact]) -> Table:
    table = Table(title="Artifacts")
    table.add_column("Product", style="cyan")
    table.add_column("Dependency")
    table.add_column("Version", style="green")
    table.add_column("Path", style="dim")
    for artifact in artifacts:
        table.add_row(artifact.name, artifact.parent_name, artifact.version, str(artifact.path))
    return table


def cached_table(cached: list[CachedArtifact]) -> Table:
    table = Table(title="Cached")
    table.add_column("Product", style="cyan")
    table.add_column("Dependency")
    table.add_column("URL")
    table.add_column("Checksum", style="dim")
    for entry in cached:
        checksum = entry.checksum[:12] if entry.checksum else "[dim]-[/dim]"
        table.add_row(entry.name, entry.parent_name, entry.url, checksum)
    return table
