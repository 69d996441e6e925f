"""``binforge upload [DEPENDENCIES]`` — build, upload, update the manifest.

Artifacts already in the cache are referenced rather than re-sent unless
``--force-upload`` is given. The ``Package.swift`` manifest is rewritten
only when its content changes.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from binforge.cli.common import (
    cached_table,
    console,
    load_config,
    parse_platforms,
    setup_logging,
    split_names,
)
from binforge.config import BinforgeSettings
from binforge.core.errors import BinforgeError
from binforge.core.runner import Runner
from binforge.models.config import ProcessorOptions


def upload_cmd(
    dependencies: Optional[str] = typer.Argument(
        None,
        help="Comma-separated dependency names to upload (default: all).",
    ),
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to binforge.yml or its directory."
    ),
    build_path: Optional[Path] = typer.Option(
        None, "--build-path", help="Override the build directory."
    ),
    platforms: Optional[str] = typer.Option(
        None, "--platforms", "-p", help="Comma-separated platforms to build for."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Rebuild products even if they are already cached."
    ),
    force_upload: bool = typer.Option(
        False, "--force-upload", help="Upload artifacts even if they are already cached."
    ),
    skip_clean: bool = typer.Option(
        False, "--skip-clean", help="Reuse archives and zips left by a previous run."
    ),
    manifest: Optional[Path] = typer.Option(
        None,
        "--manifest",
        "-m",
        help="Package.swift to update (default: next to binforge.yml).",
    ),
    remove_missing: bool = typer.Option(
        False,
        "--remove-missing",
        help="Drop manifest entries for products not produced by this run.",
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Log level (default: BINFORGE_LOG_LEVEL or INFO)."
    ),
) -> None:
    """Build, upload and publish every configured dependency."""
    settings = BinforgeSettings()
    setup_logging(log_level, settings)

    try:
        project = load_config(config, build_path)
        options = ProcessorOptions.from_settings(
            settings,
            platforms=parse_platforms(platforms),
            force=force,
            skip_clean=skip_clean,
        )
        result = Runner(project, options, settings=settings).run(
            only=split_names(dependencies),
            upload=True,
            force_upload=force_upload,
            manifest_path=manifest,
            remove_missing=remove_missing,
        )
    except BinforgeError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1)

    console.print(cached_table(result.cached))
    if result.manifest_updated:
        console.print(f"[bold green]Updated manifest at {result.manifest_path}[/bold green]")
    else:
        console.print(f"[dim]Manifest at {result.manifest_path} is up to date.[/dim]")
