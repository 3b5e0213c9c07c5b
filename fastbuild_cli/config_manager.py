"""Workspace configuration loader for ``.fastbuild/config.json``.

Property names are case-insensitive: every key is lowered before the
payload is validated against the pydantic models below.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from . import __version__
from .config import CONFIG_FILE_NAME, DEFAULT_ROOT_TOKEN
from .errors import ConfigurationError

_VERSION_RE = re.compile(r"^\d+(\.\d+){1,3}$")


class _Section(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CommandConfig(_Section):
    files: List[str] = Field(default_factory=list)
    command: Optional[str] = None

    @property
    def usable(self) -> bool:
        return bool(self.command)


class CMakeBuildConfig(_Section):
    base_directory: Optional[str] = Field(default=None, alias="basedirectory")
    ignore: List[str] = Field(default_factory=list)
    command: Optional[str] = None


class CMakeConfig(_Section):
    build: Optional[CMakeBuildConfig] = None
    publish: Optional[CommandConfig] = None


class CsprojConfig(_Section):
    check: Optional[CommandConfig] = None
    publish: Optional[CommandConfig] = None
    root_token: str = Field(default=DEFAULT_ROOT_TOKEN, alias="roottoken")


class WorkspaceConfig(_Section):
    requires: Optional[str] = None
    cmake: Optional[CMakeConfig] = None
    csproj: Optional[CsprojConfig] = None


def _lower_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_lower_keys(v) for v in value]
    return value


def parse_version(text: str) -> Tuple[int, ...]:
    """Parse ``major.minor[.build[.revision]]`` into a comparable tuple."""
    text = text.strip()
    if not _VERSION_RE.match(text):
        raise ConfigurationError("Invalid required version format.")
    parts = [int(p) for p in text.split(".")]
    return tuple(parts + [0] * (4 - len(parts)))


def load_workspace_config(workspace_directory: Path) -> WorkspaceConfig:
    """Load and validate the configuration stored in *workspace_directory*.

    Raises:
        ConfigurationError: if the file is missing, not JSON, or does not
            match the expected shape.
    """
    config_file = workspace_directory / CONFIG_FILE_NAME
    if not config_file.is_file():
        raise ConfigurationError(f"{workspace_directory.name}/{CONFIG_FILE_NAME} not found.")

    try:
        payload = json.loads(config_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid JSON in {config_file}: {exc}") from exc

    if not isinstance(payload, dict):
        raise ConfigurationError(f"Invalid configuration in {config_file}: expected an object.")

    try:
        return WorkspaceConfig.model_validate(_lower_keys(payload))
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration in {config_file}: {exc}") from exc


def check_required_version(config: WorkspaceConfig, current: str = __version__) -> None:
    """Raise ConfigurationError when the tool is older than ``requires``."""
    if config.requires is None:
        return
    required = parse_version(config.requires)
    if parse_version(current) < required:
        raise ConfigurationError(
            f"Current Fast Build version ({current}) is lower than the required "
            f"version in your config ({config.requires})."
        )
