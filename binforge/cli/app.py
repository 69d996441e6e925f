"""Main Typer application — imports and registers all CLI commands.

Entry point: ``binforge`` (configured via pyproject.toml console_scripts).
"""

from __future__ import annotations

import typer

from binforge.cli.commands.build import build_cmd
from binforge.cli.commands.cache_url import cache_url_cmd
from binforge.cli.commands.upload import upload_cmd

app = typer.Typer(
    name="binforge",
    help="Build, cache and publish prebuilt binary dependencies.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="build", help="Build or fetch some or all dependencies.")(build_cmd)
app.command(name="upload", help="Build, upload and update the package manifest.")(upload_cmd)
app.command(name="cache-url", help="Print the cache URL of a product version.")(cache_url_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
