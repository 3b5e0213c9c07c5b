"""Runtime settings for FastBuild, mostly read from the environment."""

from __future__ import annotations

import os
from pathlib import Path

WORKSPACE_DIR_NAME = ".fastbuild"
CONFIG_FILE_NAME = "config.json"
TMP_DIR_NAME = "_Tmp"
SDK_DIR_NAME = "_Sdk"
BUILD_DIR_NAME = "_Build"

CACHE_FILE_NAME = "CMakeCache.json"
CACHE_SCHEMA = 1
DESCRIPTOR_FILE_NAME = "CMakeLists.txt"

MANIFEST_EXTENSIONS = {".csproj"}
MANAGED_SOURCE_EXTENSIONS = {".cs"}
GENERATED_MARKER = ".fastbuild"
VERSION_PIN_FILE_NAME = "global.json"

# Token used in ProjectReference paths to point at the workspace root
DEFAULT_ROOT_TOKEN = "$(GeneXusWorkingCopy)"

# Target framework for the throwaway project used to restore an SDK package
SDK_RESTORE_TARGET_FRAMEWORK = "net8.0"

DOTNET_COMMAND = os.environ.get("FASTBUILD_DOTNET", "dotnet")
NUGET_PACKAGES_DIR = Path(
    os.environ.get("NUGET_PACKAGES", str(Path.home() / ".nuget" / "packages"))
).expanduser()


def compatibility_mode() -> bool:
    """Return True when FASTBUILD_COMPATIBILITY_MODE is set to ``true``."""
    return os.environ.get("FASTBUILD_COMPATIBILITY_MODE", "").lower() == "true"
