"""binforge CLI — Typer-based command-line interface.

Provides the ``binforge`` command with subcommands for building
dependencies, uploading them to the cache and looking up cache URLs.

All output uses Rich for formatted terminal display.
"""
