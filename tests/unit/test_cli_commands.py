"""Unit tests for the CLI — command registration, output and exit codes."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from binforge.cli.app import app
from binforge.core.errors import BuildError
from binforge.core.runner import RunResult
from binforge.models.artifacts import Artifact, CachedArtifact

runner = CliRunner()

_CONFIG = """\
name: CliProject
cache:
  local:
    path: cache
deployment_target:
  ios: "12.0"
"""


@pytest.fixture
def cli_project(project_dir: Path, tmp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    (project_dir / "binforge.yml").write_text(_CONFIG, encoding="utf-8")
    monkeypatch.setenv("BINFORGE_CACHE_DIR", str(tmp_dir / "scratch"))
    return project_dir


class _StubRunner:
    """Stands in for Runner; records the run() arguments."""

    calls: list[dict] = []
    result = RunResult()
    error: Exception | None = None

    def __init__(self, config, options, *, settings=None, **kwargs):
        self.options = options

    def run(self, **kwargs):
        _StubRunner.calls.append({"options": self.options, **kwargs})
        if _StubRunner.error is not None:
            raise _StubRunner.error
        return _StubRunner.result


@pytest.fixture
def stub_runner(monkeypatch: pytest.MonkeyPatch) -> type[_StubRunner]:
    _StubRunner.calls = []
    _StubRunner.result = RunResult()
    _StubRunner.error = None
    monkeypatch.setattr("binforge.cli.commands.build.Runner", _StubRunner)
    monkeypatch.setattr("binforge.cli.commands.upload.Runner", _StubRunner)
    return _StubRunner


class TestCliApp:
    """The CLI must register all expected commands and show help."""

    def test_package_keeps_cli_subpackage(self):
        import binforge
        import binforge.cli.commands.build as build_module

        assert binforge.cli.commands.build is build_module
        assert binforge.cli.app.app is app

    def test_help_flag(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "build" in result.output
        assert "upload" in result.output
        assert "cache-url" in result.output

    @pytest.mark.parametrize("command", ["build", "upload", "cache-url"])
    def test_command_help(self, command: str):
        assert runner.invoke(app, [command, "--help"]).exit_code == 0


class TestBuildCommand:
    def test_missing_config_exits_non_zero(self, tmp_dir: Path):
        result = runner.invoke(app, ["build", "--config", str(tmp_dir / "nowhere")])
        assert result.exit_code == 1
        assert "Couldn't find config file" in result.output

    def test_empty_project_builds_nothing(self, cli_project: Path):
        result = runner.invoke(app, ["build", "--config", str(cli_project)])
        assert result.exit_code == 0, result.output
        assert "Built 0 artifacts" in result.output

    def test_flags_reach_the_runner(self, cli_project: Path, stub_runner, tmp_dir: Path):
        stub_runner.result = RunResult(artifacts=[
            Artifact(name="Lib", parent_name="Pkg", version="1.0", path=tmp_dir / "Lib.xcframework"),
        ])
        result = runner.invoke(
            app,
            ["build", "Pkg, Other", "--config", str(cli_project),
             "--platforms", "ios,mac", "--force", "--skip-clean"],
        )
        assert result.exit_code == 0, result.output
        assert "Lib" in result.output

        [call] = stub_runner.calls
        assert call["only"] == ["Pkg", "Other"]
        assert [p.value for p in call["options"].platforms] == ["ios", "macos"]
        assert call["options"].force is True
        assert call["options"].skip_clean is True

    def test_build_error_exits_non_zero(self, cli_project: Path, stub_runner):
        stub_runner.error = BuildError("Lib", "xcodebuild failed")
        result = runner.invoke(app, ["build", "--config", str(cli_project)])
        assert result.exit_code == 1
        assert "Failed to build Lib" in result.output

    def test_invalid_platform(self, cli_project: Path):
        result = runner.invoke(
            app, ["build", "--config", str(cli_project), "--platforms", "watchos"]
        )
        assert result.exit_code == 1
        assert "Invalid platform" in result.output


class TestUploadCommand:
    def test_upload_options(self, cli_project: Path, stub_runner, tmp_dir: Path):
        manifest = tmp_dir / "Package.swift"
        stub_runner.result = RunResult(
            cached=[CachedArtifact(name="Lib", parent_name="Pkg", url="https://c.test/Lib.zip")],
            manifest_path=manifest,
            manifest_updated=True,
        )
        result = runner.invoke(
            app,
            ["upload", "--config", str(cli_project), "--force-upload",
             "--manifest", str(manifest), "--remove-missing"],
        )
        assert result.exit_code == 0, result.output
        assert "Updated manifest" in result.output

        [call] = stub_runner.calls
        assert call["upload"] is True
        assert call["force_upload"] is True
        assert call["remove_missing"] is True
        assert call["manifest_path"] == manifest

    def test_empty_project_writes_manifest(self, cli_project: Path):
        result = runner.invoke(app, ["upload", "--config", str(cli_project)])
        assert result.exit_code == 0, result.output
        assert (cli_project / "Package.swift").exists()


class TestCacheUrlCommand:
    def test_prints_local_url(self, cli_project: Path):
        result = runner.invoke(
            app, ["cache-url", "Lib", "1.0", "--config", str(cli_project)]
        )
        assert result.exit_code == 0, result.output
        assert result.output.strip().endswith("cache/Lib/Lib-1.0.xcframework")
        assert result.output.startswith("file://")
