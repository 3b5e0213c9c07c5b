"""Upward directory searches for the workspace, manifests, and version pins."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

from .config import (
    GENERATED_MARKER,
    MANIFEST_EXTENSIONS,
    VERSION_PIN_FILE_NAME,
    WORKSPACE_DIR_NAME,
)


def _walk_up(start: Path, check: Callable[[Path], Optional[Path]]) -> Optional[Path]:
    directory: Optional[Path] = start
    while directory is not None:
        found = check(directory)
        if found is not None:
            return found
        parent = directory.parent
        directory = parent if parent != directory else None
    return None


def _start_directory(path: Path) -> Path:
    path = path.resolve()
    return path if path.is_dir() else path.parent


def is_generated_manifest(path: Path) -> bool:
    return path.stem.endswith(GENERATED_MARKER)


def generated_manifest_path(path: Path) -> Path:
    """``App.csproj`` -> ``App.fastbuild.csproj``."""
    return path.with_name(f"{path.stem}{GENERATED_MARKER}{path.suffix}")


def find_workspace_directory(path: Path) -> Optional[Path]:
    """Return the nearest enclosing ``.fastbuild`` directory."""
    def check(directory: Path) -> Optional[Path]:
        candidate = directory / WORKSPACE_DIR_NAME
        return candidate if candidate.is_dir() else None

    return _walk_up(_start_directory(path), check)


def _manifest_in(directory: Path) -> Optional[Path]:
    if directory.name == WORKSPACE_DIR_NAME:
        return None
    for candidate in sorted(directory.iterdir()):
        if (
            candidate.is_file()
            and candidate.suffix in MANIFEST_EXTENSIONS
            and not is_generated_manifest(candidate)
        ):
            return candidate
    return None


def find_manifest(path: Path, compatibility_mode: bool = False) -> Optional[Path]:
    """Return the nearest project manifest at or above *path*.

    In compatibility mode the search always starts at the parent
    directory, even when *path* is itself a directory.
    """
    path = path.resolve()
    start = path.parent if compatibility_mode else _start_directory(path)
    return _walk_up(start, _manifest_in)


def find_version_pin_file(path: Path) -> Optional[Path]:
    def check(directory: Path) -> Optional[Path]:
        candidate = directory / VERSION_PIN_FILE_NAME
        return candidate if candidate.is_file() else None

    return _walk_up(_start_directory(path), check)


def is_relative_to(path: Path, parent: Path) -> bool:
    try:
        path.resolve().relative_to(parent.resolve())
    except ValueError:
        return False
    return True
