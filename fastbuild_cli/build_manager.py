"""Compose and run build, restore, check, and publish commands."""

from __future__ import annotations

import platform
import shutil
from pathlib import Path
from typing import Dict, List, Optional

from .config import BUILD_DIR_NAME, DOTNET_COMMAND
from .output import OutputSink
from .runner import CommandRunner

TEMPLATE_MARKER = ".template"

PROJECT_NAME_TOKEN = "{{PROJECT_NAME}}"
CMAKE_DIRECTORY_TOKEN = "{{CMAKE_DIRECTORY}}"
ROOT_DIRECTORY_TOKEN = "{{ROOT_DIRECTORY}}"
RUNTIME_IDENTIFIER_TOKEN = "{{RUNTIME_IDENTIFIER}}"
PACKAGE_TOKEN = "{{PACKAGE}}"

_OS_NAMES = {"windows": "win", "darwin": "osx", "linux": "linux"}
_ARCH_NAMES = {
    "x86_64": "x64", "amd64": "x64",
    "i386": "x86", "i686": "x86", "x86": "x86",
    "arm64": "arm64", "aarch64": "arm64",
    "armv7l": "arm", "arm": "arm",
}


def runtime_identifier() -> str:
    """Return a .NET style runtime identifier such as ``linux-x64``."""
    system = platform.system().lower()
    machine = platform.machine().lower()
    return f"{_OS_NAMES.get(system, system)}-{_ARCH_NAMES.get(machine, machine)}"


def substitute_tokens(text: str, replacements: Dict[str, str]) -> str:
    for token, value in replacements.items():
        text = text.replace(token, value)
    return text


class BuildManager:
    """Drives the toolchains through a :class:`CommandRunner`."""

    def __init__(self, runner: CommandRunner, sink: OutputSink, workspace_directory: Path) -> None:
        self.runner = runner
        self.sink = sink
        self.workspace_directory = workspace_directory
        self.root_directory = workspace_directory.parent
        self.staging_directory = workspace_directory / BUILD_DIR_NAME

    def common_tokens(self) -> Dict[str, str]:
        return {
            ROOT_DIRECTORY_TOKEN: str(self.root_directory),
            RUNTIME_IDENTIFIER_TOKEN: runtime_identifier(),
        }

    # ------------------------------------------------------------------
    # Native
    # ------------------------------------------------------------------

    def build_cmake(self, command: str, base_directory: Path, project_name: str, cmake_directory: str) -> bool:
        command = substitute_tokens(command, {
            **self.common_tokens(),
            PROJECT_NAME_TOKEN: project_name,
            CMAKE_DIRECTORY_TOKEN: cmake_directory,
        })
        return self.runner.run(command, base_directory)

    def publish_cmake(self, command: str, files: List[str], project_name: str) -> bool:
        return self.stage_and_run(command, files, {PROJECT_NAME_TOKEN: project_name})

    # ------------------------------------------------------------------
    # Managed
    # ------------------------------------------------------------------

    def build_csproj(self, manifest_path: Path, needs_restore: bool) -> bool:
        command = f'{DOTNET_COMMAND} build "{manifest_path}"'
        if not needs_restore:
            command += " --no-restore"
        return self.runner.run(command, manifest_path.parent)

    def restore_csproj(self, manifest_path: Path, working_directory: Optional[Path] = None) -> bool:
        return self.runner.run(
            f'{DOTNET_COMMAND} restore "{manifest_path}"',
            working_directory or manifest_path.parent,
        )

    def check_csproj(self, command: str, files: List[str]) -> bool:
        return self.stage_and_run(command, files, {})

    def publish_csproj(self, command: str, files: List[str], package_id: str) -> bool:
        return self.stage_and_run(command, files, {PACKAGE_TOKEN: package_id})

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    def stage_files(self, files: List[str], replacements: Dict[str, str]) -> bool:
        """Copy configured files from the workspace into the staging directory.

        Template files (name contains ``.template``) are always rendered with
        *replacements* and written without the marker. Other files are copied
        only when the staged copy is missing or older than the source.
        """
        self.staging_directory.mkdir(parents=True, exist_ok=True)
        for file_name in files:
            source = self.workspace_directory / file_name
            if not source.is_file():
                self.sink.error(f"File from config not found: {source}")
                return False

            try:
                if TEMPLATE_MARKER in file_name:
                    destination = self.staging_directory / file_name.replace(TEMPLATE_MARKER, "")
                    destination.parent.mkdir(parents=True, exist_ok=True)
                    content = source.read_text(encoding="utf-8")
                    destination.write_text(substitute_tokens(content, replacements), encoding="utf-8")
                else:
                    destination = self.staging_directory / file_name
                    destination.parent.mkdir(parents=True, exist_ok=True)
                    if not destination.exists() or source.stat().st_mtime > destination.stat().st_mtime:
                        shutil.copy2(source, destination)
            except OSError as exc:
                self.sink.error(f"Failed to stage {file_name}: {exc}")
                return False
        return True

    def stage_and_run(self, command: str, files: List[str], extra_tokens: Dict[str, str]) -> bool:
        replacements = {**self.common_tokens(), **extra_tokens}
        if not self.stage_files(files, replacements):
            return False
        return self.runner.run(substitute_tokens(command, replacements), self.staging_directory)
