"""Tests for the pure helpers around the build toolchain."""

from __future__ import annotations

from pathlib import Path

import pytest

from binforge.core.errors import CommandError
from binforge.core.shell import run_command, working_copy
from binforge.models.dependencies import PackageDependency
from binforge.processors.toolchain import (
    XcodeToolchain,
    archived_framework_names,
    force_dynamic_library,
    render_resolution_manifest,
)


class TestForceDynamicLibrary:
    def test_adds_dynamic_type(self):
        text = '.library(name: "Lib", targets: ["Lib"])'
        assert force_dynamic_library(text, "Lib") == (
            '.library(name: "Lib", type: .dynamic, targets: ["Lib"])'
        )

    @pytest.mark.parametrize("linkage", ["static", "dynamic"])
    def test_replaces_existing_type(self, linkage: str):
        text = f'.library(\n    name: "Lib",\n    type: .{linkage},\n    targets: ["Lib"])'
        result = force_dynamic_library(text, "Lib")
        assert result.count("type:") == 1
        assert "type: .dynamic," in result

    def test_other_products_untouched(self):
        text = '.library(name: "Other", targets: ["Other"])'
        assert force_dynamic_library(text, "Lib") == text


class TestResolutionManifest:
    def test_requirements(self):
        deps = [
            PackageDependency.model_validate({"name": "A", "url": "https://g/a", "from": "1.0.0"}),
            PackageDependency(name="B", url="https://g/b", branch="main"),
        ]
        text = render_resolution_manifest("Host", deps)
        assert 'name: "Host"' in text
        assert '.package(url: "https://g/a", from: "1.0.0")' in text
        assert '.package(url: "https://g/b", branch: "main")' in text


class TestArchives:
    def test_archived_framework_names(self, tmp_dir: Path):
        frameworks = tmp_dir / "A.xcarchive" / "Products/Library/Frameworks"
        (frameworks / "B.framework").mkdir(parents=True)
        (frameworks / "A.framework").mkdir()
        assert archived_framework_names(tmp_dir / "A.xcarchive") == ["A", "B"]
        assert archived_framework_names(tmp_dir / "missing") == []

    def test_create_xcframework_needs_archives(self, tmp_dir: Path):
        with pytest.raises(ValueError):
            XcodeToolchain().create_xcframework("A", [], tmp_dir / "A.xcframework")


class _Commands:
    """Stands in for ``run_command`` and records every invocation."""

    def __init__(self, output: str = "") -> None:
        self.output = output
        self.calls: list[list[str]] = []

    def __call__(self, args, cwd=None, **kwargs) -> str:
        self.calls.append(list(args))
        return self.output


_DUMP_PACKAGE = """
{
  "products": [{"name": "Kit", "targets": ["Kit"], "type": {"library": ["automatic"]}}],
  "targets": [
    {"name": "Kit", "path": null, "publicHeadersPath": null,
     "dependencies": [{"byName": ["KitCore", null]}, {"product": ["Other", "other", null]}]},
    {"name": "KitCore", "path": "Core", "publicHeadersPath": "Public",
     "dependencies": [{"target": ["Kit", null]}]},
    {"name": "KitTests", "path": null, "publicHeadersPath": null, "dependencies": []}
  ]
}
"""


class TestXcodeToolchainCommands:
    @pytest.mark.parametrize(
        "output, expected",
        [
            ("Architectures in the fat file: Kit are: armv7 arm64 x86_64\n", ["armv7", "arm64", "x86_64"]),
            ("Non-fat file: Kit is architecture: arm64\n", ["arm64"]),
        ],
    )
    def test_binary_architectures(self, monkeypatch, output, expected):
        commands = _Commands(output)
        monkeypatch.setattr("binforge.processors.toolchain.run_command", commands)
        assert XcodeToolchain().binary_architectures(Path("Kit")) == expected
        assert commands.calls == [["xcrun", "lipo", "-info", "Kit"]]

    def test_thin_binary(self, monkeypatch):
        commands = _Commands()
        monkeypatch.setattr("binforge.processors.toolchain.run_command", commands)
        XcodeToolchain().thin_binary(Path("in/Kit"), ["i386", "x86_64"], Path("out/Kit"))
        assert commands.calls == [
            ["xcrun", "lipo", "in/Kit", "-remove", "i386", "-remove", "x86_64", "-output", "out/Kit"]
        ]

    def test_thin_binary_with_nothing_to_remove_copies(self, monkeypatch, tmp_dir: Path):
        commands = _Commands()
        monkeypatch.setattr("binforge.processors.toolchain.run_command", commands)
        (tmp_dir / "Kit").write_bytes(b"arm64 only")
        XcodeToolchain().thin_binary(tmp_dir / "Kit", [], tmp_dir / "Thin")
        assert commands.calls == []
        assert (tmp_dir / "Thin").read_bytes() == b"arm64 only"

    def test_product_targets_follow_local_dependencies(self, monkeypatch, tmp_dir: Path):
        monkeypatch.setattr(
            "binforge.processors.toolchain.run_command", _Commands(_DUMP_PACKAGE)
        )
        layouts = XcodeToolchain().product_targets(tmp_dir, "Kit")

        assert [(t.name, t.path, t.public_headers) for t in layouts] == [
            ("Kit", tmp_dir / "Sources/Kit", tmp_dir / "Sources/Kit/include"),
            ("KitCore", tmp_dir / "Core", tmp_dir / "Core/Public"),
        ]
        assert XcodeToolchain().product_targets(tmp_dir, "Unknown") == []


class TestShell:
    def test_run_command_returns_stdout(self):
        assert run_command(["echo", "hello"]).strip() == "hello"

    def test_non_zero_exit(self):
        with pytest.raises(CommandError) as info:
            run_command(["sh", "-c", "echo oops >&2; exit 3"])
        assert info.value.status == 3
        assert "oops" in info.value.stderr

    def test_missing_executable(self):
        with pytest.raises(CommandError) as info:
            run_command(["binforge-no-such-tool"])
        assert info.value.status == 127

    def test_working_copy_is_removed_on_error(self, tmp_dir: Path):
        source = tmp_dir / "src"
        source.mkdir()
        (source / "file").write_text("original")

        with pytest.raises(RuntimeError):
            with working_copy(source) as copy:
                (copy / "file").write_text("mutated")
                raise RuntimeError("build failed")

        assert not copy.exists()
        assert (source / "file").read_text() == "original"
