"""``binforge cache-url PRODUCT VERSION`` — print a cache entry's URL."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from binforge.cli.common import console, load_config
from binforge.config import BinforgeSettings
from binforge.cache.delegator import create_engine
from binforge.core.errors import BinforgeError


def cache_url_cmd(
    product: str = typer.Argument(..., help="Product name."),
    version: str = typer.Argument(..., help="Product version."),
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to binforge.yml or its directory."
    ),
) -> None:
    """Print the download URL the configured cache uses for PRODUCT-VERSION."""
    try:
        project = load_config(config, None)
        engine = create_engine(project, BinforgeSettings())
    except BinforgeError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1)

    typer.echo(engine.download_url(product, version))
