"""Public headers and module maps for frameworks built from C-family targets.

xcodebuild archives an Objective-C package product as a framework with
neither a ``Headers`` directory nor a framework module map. Both are
reconstructed here from the module map SwiftPM generated (or the one the
package ships), falling back to the targets' public header directories.
"""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)

_UMBRELLA = re.compile(r'umbrella (?:header )?"(.*)"')
_LOCAL_IMPORT = re.compile(r'^#import "(.*)\.h"', re.MULTILINE)


def umbrella_path(module_map: Path) -> Path | None:
    """Umbrella header or directory declared by *module_map*, if any.

    Relative paths are taken relative to the module map's directory.
    """
    match = _UMBRELLA.search(module_map.read_text(encoding="utf-8"))
    if match is None:
        return None
    path = Path(match.group(1))
    return path if path.is_absolute() else module_map.parent / path


def header_closure(header: Path, framework: str, source_dir: Path) -> list[Path]:
    """*header* followed by every header it imports, transitively.

    Both ``#import "X.h"`` and ``#import <framework/X.h>`` are followed and
    resolved against *source_dir*; imports of other frameworks are not.
    """
    framework_import = re.compile(
        rf"^#import <{re.escape(framework)}/(.*)\.h>", re.MULTILINE
    )
    seen: list[Path] = []
    pending = [header]
    while pending:
        current = pending.pop(0)
        if current in seen or not current.exists():
            continue
        seen.append(current)
        text = current.read_text(encoding="utf-8", errors="replace")
        for match in [*_LOCAL_IMPORT.finditer(text), *framework_import.finditer(text)]:
            pending.append(source_dir / f"{match.group(1)}.h")
    return seen


def _copy_headers(headers: list[Path], destination: Path) -> None:
    if headers:
        destination.mkdir(parents=True, exist_ok=True)
    for header in headers:
        target = destination / header.name
        if not target.exists():
            # Symlinked headers are copied as the file they point to
            shutil.copyfile(header, target)


def install_umbrella_headers(framework_path: Path, name: str, umbrella: Path) -> str:
    """Fill ``Headers`` from an umbrella header or directory and return the
    framework module map for it.

    An umbrella header is copied with its quoted imports rewritten to
    ``<name/X.h>``. For an umbrella directory a ``{name}.h`` importing every
    header in it is generated instead.
    """
    headers = framework_path / "Headers"
    headers.mkdir(parents=True, exist_ok=True)

    if umbrella.is_file():
        source_dir = umbrella.parent
        text = _LOCAL_IMPORT.sub(
            lambda m: f"#import <{name}/{m.group(1)}.h>",
            umbrella.read_text(encoding="utf-8"),
        )
        (headers / umbrella.name).write_text(text, encoding="utf-8")
        root = umbrella
    else:
        source_dir = umbrella / name if (umbrella / name).is_dir() else umbrella
        root = headers / f"{name}.h"
        root.write_text(
            "".join(f"#import <{name}/{h.name}>\n" for h in sorted(source_dir.glob("*.h"))),
            encoding="utf-8",
        )

    _copy_headers(header_closure(root, name, source_dir), headers)
    return (
        f"framework module {name} {{\n"
        f'    umbrella header "{root.name}"\n'
        "\n"
        "    export *\n"
        "    module * { export * }\n"
        "}\n"
    )


def install_public_headers(framework_path: Path, name: str, header_dirs: list[Path]) -> str:
    """Copy every ``*.h`` under *header_dirs* into ``Headers`` and return a
    module map listing them one by one."""
    found = [
        header
        for directory in header_dirs
        if directory.is_dir()
        for header in sorted(directory.rglob("*.h"))
    ]
    _copy_headers(found, framework_path / "Headers")

    listed = dict.fromkeys(header.name for header in found)
    lines = "".join(f'    header "{header}"\n' for header in listed)
    return f"framework module {name} {{\n{lines}\n    export *\n}}\n"


def install_headers(
    framework_path: Path,
    name: str,
    module_map: Path | None,
    public_headers: list[Path],
) -> Path:
    """Write ``Headers`` and ``Modules/module.modulemap`` into a framework.

    Parameters
    ----------
    framework_path:
        The archived ``{name}.framework`` directory.
    name:
        Framework (and module) name.
    module_map:
        The generated or package-provided module map, when one was found.
    public_headers:
        Public header directories of the product's targets, used when there
        is no module map.

    Returns
    -------
    Path
        The module map written.
    """
    if module_map is not None:
        umbrella = umbrella_path(module_map)
        if umbrella is not None:
            content = install_umbrella_headers(framework_path, name, umbrella)
        else:
            logger.debug("No umbrella in %s, exporting %s as-is", module_map, name)
            content = f"module {name} {{ export * }}\n"
    else:
        content = install_public_headers(framework_path, name, public_headers)

    target = framework_path / "Modules" / "module.modulemap"
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    return target
