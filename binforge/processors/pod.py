"""CocoaPods dependencies: generate a host project, install, archive schemes.

Every pod gets one framework target and scheme per platform
(``{pod}-{platform}``) in a generated project; ``pod install`` then
integrates the pod into that target and the resulting workspace is archived
per SDK.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from binforge.core.errors import BuildError, ResolutionError
from binforge.models.artifacts import Artifact
from binforge.models.config import Platform, ProcessorOptions, ProjectConfig
from binforge.models.dependencies import PodDependency, ResolvedProduct
from binforge.processors.base import selected_platforms
from binforge.processors.toolchain import Toolchain, archived_framework_names

logger = logging.getLogger(__name__)

_LOCK_ENTRY = re.compile(r"^(?P<indent>\s*)- \"?(?P<name>[^\s\"]+) \((?P<version>[^)]*)\)\"?:?\s*$")


def parse_lock_pods(lock_text: str) -> dict[str, tuple[str, list[str]]]:
    """Parse the ``PODS:`` section of a ``Podfile.lock``.

    Returns ``{pod: (version, [dependency pod names])}``. Subspecs
    (``Firebase/Core``) are folded into their root pod.
    """
    pods: dict[str, tuple[str, list[str]]] = {}
    current: str | None = None
    in_pods = False
    for line in lock_text.splitlines():
        if not line.startswith(" "):
            in_pods = line.strip() == "PODS:"
            current = None
            continue
        if not in_pods:
            continue
        match = _LOCK_ENTRY.match(line)
        if match is None:
            continue
        name = match["name"].split("/")[0]
        if len(match["indent"]) <= 2:
            version = match["version"].split(" ")[-1]
            pods.setdefault(name, (version, []))
            current = name
        elif current is not None and name != current:
            deps = pods[current][1]
            if name not in deps:
                deps.append(name)
    return pods


def lock_version(lock_text: str, name: str) -> str | None:
    """First ``- {name} (version)`` entry in a lock file."""
    match = re.search(rf"- {re.escape(name)}\s\((.*)\)", lock_text)
    if match is None:
        return None
    return match.group(1).split(" ")[-1]


class PodKind:
    """Resolve / build / cleanup for ``pods`` in the project file."""

    kind = "pod"

    def __init__(
        self,
        dependencies: list[PodDependency],
        *,
        config: ProjectConfig,
        options: ProcessorOptions,
        toolchain: Toolchain,
        scratch_dir: Path,
    ) -> None:
        self.dependencies = dependencies
        self.config = config
        self.options = options
        self.toolchain = toolchain
        self.scratch_dir = Path(scratch_dir)

    @property
    def workspace(self) -> Path:
        return self.scratch_dir / "Pods" / self.config.name

    @property
    def project_name(self) -> str:
        return f"{self.config.name}-Pods"

    @property
    def derived_data_path(self) -> Path:
        return self.scratch_dir / "DerivedData" / self.project_name

    def _platform_versions(self) -> dict[Platform, str]:
        versions = self.config.platform_versions
        return {
            platform: versions[platform]
            for platform in selected_platforms(self.config, self.options)
            if platform in versions
        }

    # ------------------------------------------------------------------
    # Pipeline operations
    # ------------------------------------------------------------------

    def pre_process(self) -> list[tuple[PodDependency, ResolvedProduct]]:
        if not self.dependencies:
            return []

        platforms = self._platform_versions()
        project = self.toolchain.generate_project(
            self.workspace,
            self.project_name,
            {
                f"{dep.name}-{platform.value}": platform.package_name
                for dep in self.dependencies
                for platform in platforms
            },
        )
        podfile = self.workspace / "Podfile"
        podfile.write_text(render_podfile(project, self.dependencies, platforms), encoding="utf-8")

        logger.info("Installing Pods...")
        self.toolchain.install_pods(self.workspace)

        lock_path = self.workspace / "Podfile.lock"
        try:
            lock_text = lock_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ResolutionError("pod", f"Cannot read {lock_path}: {exc}") from exc

        pods = parse_lock_pods(lock_text)
        return [(dep, self._resolve(dep, lock_text, pods)) for dep in self.dependencies]

    def process(self, dependency: PodDependency, resolved: ResolvedProduct) -> list[Artifact]:
        platforms = list(self._platform_versions())
        if not platforms:
            raise BuildError(resolved.name, "no platforms to build for")

        workspace = self.workspace / f"{self.project_name}.xcworkspace"
        archives: list[Path] = []
        for platform in platforms:
            scheme = f"{resolved.name}-{platform.value}"
            for sdk in platform.sdks:
                archive_path = self.config.build_path / f"{scheme}-{sdk}.xcarchive"
                if not (self.options.skip_clean and archive_path.exists()):
                    logger.info("Building %s-%s...", scheme, sdk)
                    self.toolchain.archive(
                        scheme,
                        source=workspace,
                        sdk=sdk,
                        archive_path=archive_path,
                        derived_data_path=self.derived_data_path,
                        build_settings=dependency.additional_build_settings,
                    )
                archives.append(archive_path)

        wanted = set(resolved.product_names or ())
        artifacts: list[Artifact] = []
        for name in resolved.product_names or ():
            sources = [a for a in archives if name in archived_framework_names(a)]
            if not sources:
                logger.debug("%s produced no %s framework", resolved.name, name)
                continue
            output = self.config.artifact_path(name)
            if not (self.options.skip_clean and output.exists()):
                logger.info("Creating %s...", output.name)
                self.toolchain.create_xcframework(name, sources, output)
            artifacts.append(
                Artifact(
                    name=name,
                    parent_name=resolved.name,
                    version=resolved.version_for(name),
                    path=output,
                )
            )

        if wanted and not artifacts:
            raise BuildError(resolved.name, "archives contain none of the expected frameworks")
        return artifacts

    def post_process(self) -> None:
        return None

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    @staticmethod
    def _resolve(
        dependency: PodDependency,
        lock_text: str,
        pods: dict[str, tuple[str, list[str]]],
    ) -> ResolvedProduct:
        if dependency.name in pods:
            version = pods[dependency.name][0]
        else:
            version = lock_version(lock_text, dependency.name)
        if version is None:
            raise ResolutionError("pod", f"Missing version for {dependency.name}")

        if dependency.products:
            names = list(dependency.products)
        else:
            names = _pod_closure(dependency.name, pods)
        names = [name for name in names if name not in dependency.excludes]

        return ResolvedProduct(
            name=dependency.name,
            version=version,
            product_names=tuple(names),
            versions={
                name: pods[name][0] if name in pods else version for name in names
            },
        )


def _pod_closure(root: str, pods: dict[str, tuple[str, list[str]]]) -> list[str]:
    """*root* followed by every pod it pulls in, depth first."""
    ordered: list[str] = []
    stack = [root]
    while stack:
        name = stack.pop()
        if name in ordered:
            continue
        ordered.append(name)
        stack.extend(reversed(pods.get(name, ("", []))[1]))
    return ordered


def render_podfile(
    project: Path, dependencies: list[PodDependency], platforms: dict[Platform, str]
) -> str:
    blocks = [
        f"target '{dep.name}-{platform.value}' do\n"
        f"    platform :{platform.value}, '{version}'\n"
        f"    {dep.podfile_line()}\n"
        "end"
        for dep in dependencies
        for platform, version in platforms.items()
    ]
    return "use_frameworks!\n" f"project '{project}'\n\n" + "\n\n".join(blocks) + "\n"
