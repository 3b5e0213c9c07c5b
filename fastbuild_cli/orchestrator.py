"""Change-impact resolution and build orchestration for one changed path."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from . import config
from .build_manager import BuildManager
from .cmake_parser import DescriptorGraphStore
from .config_manager import (
    CMakeConfig,
    CsprojConfig,
    WorkspaceConfig,
    check_required_version,
    load_workspace_config,
)
from .csproj_processor import ManifestRewriter
from .errors import ConfigurationError
from .models import DescriptorGraphCache, DescriptorNode, RunOutcome, RunState
from .output import OutputSink
from .path_finder import find_manifest, find_workspace_directory, is_relative_to
from .runner import CommandRunner, SubprocessRunner

logger = logging.getLogger(__name__)


# ===================================================================
# Affected target resolution
# ===================================================================

def _relative_key(path: Path, base_directory: Path) -> str:
    relative = path.resolve().relative_to(base_directory.resolve()).as_posix()
    return "" if relative == "." else relative


def seed_targets(graph: DescriptorGraphCache, path: Path, base_directory: Path) -> List[DescriptorNode]:
    """Nodes directly affected by a change to *path* (which lies under *base_directory*).

    A directory matches the descriptors whose directory is a suffix of it on
    a path-component boundary; a file matches the nodes listing it as a
    source and the descriptor file itself.
    """
    key = _relative_key(path, base_directory)
    if path.is_dir():
        return [
            n for n in graph.nodes
            if n.cmake_directory == key
            or (n.cmake_directory and key.endswith("/" + n.cmake_directory))
        ]
    absolute = path.resolve().as_posix()
    return [
        n for n in graph.nodes
        if key in n.source_files or absolute in n.source_files or n.cmake_path == key
    ]


def _is_ignored(node: DescriptorNode, ignore: List[str]) -> bool:
    return any(token and (token in node.project_name or token in node.cmake_path) for token in ignore)


def expand_targets(
    graph: DescriptorGraphCache,
    seeds: List[DescriptorNode],
    ignore: List[str],
    sink: Optional[OutputSink] = None,
) -> List[DescriptorNode]:
    """Filter ignored nodes and append reverse dependencies, breadth first.

    The list grows while it is walked with an index cursor, so appended
    dependents are filtered and expanded in turn. An ignored node is
    dropped before its ``used_by`` edges are followed.
    """
    targets: List[DescriptorNode] = []
    for seed in seeds:
        if seed not in targets:
            targets.append(seed)

    i = 0
    while i < len(targets):
        node = targets[i]
        if _is_ignored(node, ignore):
            if sink is not None:
                sink.debug(f"[Ignore] {node.project_name}")
            targets.pop(i)
            continue

        for name in node.used_by:
            dependent = graph.find(name)
            if dependent is not None and dependent not in targets:
                targets.append(dependent)
        i += 1
    return targets


# ===================================================================
# Orchestrator
# ===================================================================

class FastBuildOrchestrator:
    """Drives one run: config, domain detection, build, and publish."""

    def __init__(
        self,
        sink: OutputSink,
        runner: Optional[CommandRunner] = None,
        compatibility_mode: Optional[bool] = None,
        packages_directory: Optional[Path] = None,
    ) -> None:
        self.sink = sink
        self.runner = runner or SubprocessRunner(sink)
        self.compatibility_mode = (
            config.compatibility_mode() if compatibility_mode is None else compatibility_mode
        )
        self.packages_directory = packages_directory or config.NUGET_PACKAGES_DIR
        self.state = RunState.IDLE

    def _fail(self, message: str, handled: bool = False, **kwargs) -> RunOutcome:
        self.sink.error(message)
        self.state = RunState.FAILED
        return RunOutcome(RunState.FAILED, handled=handled, message=message, **kwargs)

    def process(self, path: Path) -> RunOutcome:
        self.state = RunState.IDLE
        path = path.resolve()

        workspace = find_workspace_directory(path)
        if workspace is None:
            return self._fail(f"{config.WORKSPACE_DIR_NAME} directory not found.")

        try:
            workspace_config = load_workspace_config(workspace)
            check_required_version(workspace_config)
        except ConfigurationError as exc:
            return self._fail(str(exc))
        self.state = RunState.CONFIG_RESOLVED

        if is_relative_to(path, workspace):
            return self._fail(f"File is inside {config.WORKSPACE_DIR_NAME} directory.")

        build_manager = BuildManager(self.runner, self.sink, workspace)
        self.state = RunState.DOMAIN_DETECTED

        managed = path.suffix in config.MANIFEST_EXTENSIONS | config.MANAGED_SOURCE_EXTENSIONS
        logger.debug("Domain for %s: %s", path, "managed" if managed else "native")
        if not managed:
            outcome = self._native_flow(workspace_config.cmake, path, workspace, build_manager)
            if outcome is not None:
                return outcome

        return self._manifest_flow(workspace_config, path, workspace, build_manager)

    # ------------------------------------------------------------------
    # Native flow
    # ------------------------------------------------------------------

    def _native_flow(
        self,
        cmake: Optional[CMakeConfig],
        path: Path,
        workspace: Path,
        build_manager: BuildManager,
    ) -> Optional[RunOutcome]:
        """Build and publish native targets; None when the path is not handled here."""
        if cmake is None or cmake.build is None or not cmake.build.command:
            self.sink.debug("CMake build is not configured.")
            return None
        if not cmake.build.base_directory:
            self.sink.debug("CMake base directory not configured.")
            return None

        base_directory = (workspace.parent / cmake.build.base_directory).resolve()
        if not base_directory.is_dir():
            self.sink.error(f"CMake base directory not found: {base_directory}")
            return None
        if not is_relative_to(path, base_directory):
            return None

        self.state = RunState.NATIVE_FLOW
        store = DescriptorGraphStore(self.sink)
        graph = store.get_graph(base_directory, workspace / config.TMP_DIR_NAME)

        seeds = seed_targets(graph, path, base_directory)
        if not seeds:
            return None

        targets = expand_targets(graph, seeds, cmake.build.ignore, self.sink)
        built: List[str] = []
        for node in targets:
            self.sink.info(f"Building CMake {node.project_name}...")
            if not build_manager.build_cmake(
                cmake.build.command, base_directory, node.project_name, node.cmake_directory,
            ):
                return self._fail(
                    f"Build failed for {node.project_name}.", handled=True, built=built,
                )
            built.append(node.project_name)
        self.state = RunState.BUILT

        shared = [n for n in targets if n.shared]
        published: List[str] = []
        if not shared:
            self.sink.debug("Nothing to publish, no shared project were build.")
        elif cmake.publish is None or not cmake.publish.usable:
            self.sink.debug("CMake publish is not configured.")
        else:
            self.sink.info("Publishing...")
            for node in shared:
                if not build_manager.publish_cmake(cmake.publish.command, cmake.publish.files, node.project_name):
                    return self._fail(
                        f"Publish failed for {node.project_name}.",
                        handled=True, built=built, published=published,
                    )
                published.append(node.project_name)
            self.state = RunState.PUBLISHED

        self.state = RunState.DONE
        return RunOutcome(RunState.DONE, handled=True, built=built, published=published)

    # ------------------------------------------------------------------
    # Manifest flow
    # ------------------------------------------------------------------

    def _manifest_flow(
        self,
        workspace_config: WorkspaceConfig,
        path: Path,
        workspace: Path,
        build_manager: BuildManager,
    ) -> RunOutcome:
        csproj: Optional[CsprojConfig] = workspace_config.csproj
        if csproj is None or csproj.publish is None or not csproj.publish.usable:
            return self._fail("No matching target found: managed build is not configured.")

        manifest = find_manifest(path, self.compatibility_mode)
        if manifest is None:
            return self._fail("No .csproj file found in parent directories.")
        self.state = RunState.MANIFEST_FLOW
        self.sink.info(f"Found file: {manifest}.")

        if csproj.check is not None and csproj.check.usable:
            if not build_manager.check_csproj(csproj.check.command, csproj.check.files):
                return self._fail("Check command failed.", handled=True)

        self.sink.info("Creating FastBuild projects...")
        rewriter = ManifestRewriter(
            self.sink, build_manager, workspace / config.SDK_DIR_NAME, self.packages_directory,
        )
        result = rewriter.rewrite(
            manifest,
            {csproj.root_token: str(workspace.parent)},
            self.compatibility_mode,
        )
        if result is None or result.generated_path is None:
            return self._fail("Failed to create .fastbuild.csproj file.", handled=True)
        if not result.package_id:
            return self._fail(f"Failed to get package id for {result.generated_path}.", handled=True)

        self.sink.info(f"Building: {result.generated_path}...")
        if not build_manager.build_csproj(result.generated_path, result.dependencies_changed):
            return self._fail(f"Build failed for {result.generated_path.name}.", handled=True)
        self.state = RunState.BUILT
        built = [result.package_id]

        self.sink.info(f"Publishing: {result.package_id}...")
        if not build_manager.publish_csproj(csproj.publish.command, csproj.publish.files, result.package_id):
            return self._fail(f"Publish failed for {result.package_id}.", handled=True, built=built)
        self.state = RunState.DONE
        return RunOutcome(RunState.DONE, handled=True, built=built, published=[result.package_id])
