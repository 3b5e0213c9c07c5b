"""Tests for workspace configuration loading."""

from pathlib import Path

import pytest

from fastbuild_cli.config import DEFAULT_ROOT_TOKEN
from fastbuild_cli.config_manager import (
    WorkspaceConfig,
    check_required_version,
    load_workspace_config,
    parse_version,
)
from fastbuild_cli.errors import ConfigurationError

from conftest import make_workspace, write_file


class TestLoadWorkspaceConfig:
    """Tests for reading .fastbuild/config.json."""

    def test_keys_are_case_insensitive(self, temp_dir: Path):
        workspace = make_workspace(temp_dir, {
            "Requires": "1.2",
            "CMake": {
                "Build": {"BaseDirectory": "src/native", "IGNORE": ["Test"], "Command": "make {{PROJECT_NAME}}"},
                "publish": {"files": ["a.sh"], "command": "sh a.sh"},
            },
            "csproj": {"RootToken": "$(Root)", "Publish": {"Command": "dotnet nuget push"}},
        })

        config = load_workspace_config(workspace)

        assert config.requires == "1.2"
        assert config.cmake.build.base_directory == "src/native"
        assert config.cmake.build.ignore == ["Test"]
        assert config.cmake.publish.files == ["a.sh"]
        assert config.csproj.root_token == "$(Root)"
        assert config.csproj.publish.usable
        assert config.csproj.check is None

    def test_defaults(self, temp_dir: Path):
        config = load_workspace_config(make_workspace(temp_dir, {"csproj": {}}))
        assert config.cmake is None
        assert config.csproj.root_token == DEFAULT_ROOT_TOKEN

    def test_command_without_text_is_not_usable(self, temp_dir: Path):
        config = load_workspace_config(make_workspace(temp_dir, {"csproj": {"publish": {"files": ["x"]}}}))
        assert not config.csproj.publish.usable

    def test_missing_file(self, temp_dir: Path):
        (temp_dir / ".fastbuild").mkdir()
        with pytest.raises(ConfigurationError, match="config.json not found"):
            load_workspace_config(temp_dir / ".fastbuild")

    def test_invalid_json(self, temp_dir: Path):
        write_file(temp_dir / ".fastbuild" / "config.json", "{cmake:")
        with pytest.raises(ConfigurationError, match="Invalid JSON"):
            load_workspace_config(temp_dir / ".fastbuild")

    def test_not_an_object(self, temp_dir: Path):
        write_file(temp_dir / ".fastbuild" / "config.json", "[]")
        with pytest.raises(ConfigurationError, match="expected an object"):
            load_workspace_config(temp_dir / ".fastbuild")

    def test_wrong_shape(self, temp_dir: Path):
        workspace = make_workspace(temp_dir, {"cmake": {"build": {"ignore": 5}}})
        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            load_workspace_config(workspace)


class TestRequiredVersion:
    """Tests for the ``requires`` gate."""

    @pytest.mark.parametrize("text,expected", [
        ("1.4", (1, 4, 0, 0)),
        ("1.4.2", (1, 4, 2, 0)),
        ("2.0.0.7", (2, 0, 0, 7)),
    ])
    def test_parse_version(self, text, expected):
        assert parse_version(text) == expected

    @pytest.mark.parametrize("text", ["1", "v1.2", "1.2.3.4.5", "1.x", ""])
    def test_invalid_version(self, text):
        with pytest.raises(ConfigurationError, match="Invalid required version format."):
            parse_version(text)

    def test_no_requirement(self):
        check_required_version(WorkspaceConfig(), current="0.1")

    def test_satisfied(self):
        check_required_version(WorkspaceConfig(requires="1.4"), current="1.4.0")
        check_required_version(WorkspaceConfig(requires="1.3.9"), current="1.4")

    def test_too_old(self):
        with pytest.raises(ConfigurationError, match=r"\(1.3\) is lower than the required version"):
            check_required_version(WorkspaceConfig(requires="1.3.1"), current="1.3")
