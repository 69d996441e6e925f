"""External command execution and scoped working copies."""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
import tempfile
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from pathlib import Path

from binforge.core.errors import CommandError

logger = logging.getLogger(__name__)


def run_command(
    args: Sequence[str],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> str:
    """Run a command to completion and return its stdout.

    Output is logged at DEBUG once the command finishes.

    Raises
    ------
    CommandError
        If the command cannot be started or exits non-zero.
    """
    command = shlex.join(args)
    logger.debug("$ %s", command)
    try:
        completed = subprocess.run(
            list(args),
            cwd=cwd,
            env=dict(env) if env is not None else None,
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as exc:
        raise CommandError(command, 127, str(exc)) from exc

    for line in completed.stdout.splitlines():
        logger.debug(line)
    if completed.returncode != 0:
        raise CommandError(command, completed.returncode, completed.stderr)
    return completed.stdout


def remove_path(path: Path) -> None:
    """Delete a file, symlink or directory tree if it exists."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


@contextmanager
def working_copy(source: Path, *, scratch_dir: Path | None = None) -> Iterator[Path]:
    """Copy *source* into a throwaway directory for the duration of a block.

    The copy may be mutated freely; it is deleted on every exit path and the
    original checkout is never touched.
    """
    if scratch_dir is not None:
        scratch_dir.mkdir(parents=True, exist_ok=True)
    parent = Path(tempfile.mkdtemp(prefix="binforge-", dir=scratch_dir))
    target = parent / source.name
    try:
        shutil.copytree(source, target, symlinks=True)
        yield target
    finally:
        shutil.rmtree(parent, ignore_errors=True)


def copy_path(source: Path, target: Path) -> None:
    """Copy a file or directory tree to *target* (which must not exist)."""
    if source.is_dir():
        shutil.copytree(source, target, symlinks=True)
    else:
        shutil.copy2(source, target)
