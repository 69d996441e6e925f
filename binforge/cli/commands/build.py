"""``binforge build [DEPENDENCIES]`` — build or fetch dependencies.

Products already present in the cache are not rebuilt unless ``--force``
is given. Nothing is uploaded.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from binforge.cli.common import (
    artifacts_table,
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


def build_cmd(
    dependencies: Optional[str] = typer.Argument(
        None,
        help="Comma-separated dependency names to build (default: all).",
    ),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to binforge.yml or the directory containing it.",
    ),
    build_path: Optional[Path] = typer.Option(
        None,
        "--build-path",
        help="Override the build directory.",
    ),
    platforms: Optional[str] = typer.Option(
        None,
        "--platforms",
        "-p",
        help="Comma-separated platforms to build for (default: deployment targets).",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Rebuild products even if they are already cached.",
    ),
    skip_clean: bool = typer.Option(
        False,
        "--skip-clean",
        help="Reuse archives and extracted downloads left by a previous run.",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Log level (default: BINFORGE_LOG_LEVEL or INFO).",
    ),
) -> None:
    """Build or fetch every configured dependency."""
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
            only=split_names(dependencies)
        )
    except BinforgeError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1)

    console.print(artifacts_table(result.artifacts))
    console.print(f"[bold green]Built {len(result.artifacts)} artifacts.[/bold green]")
