"""Pytest configuration and fixtures for FastBuild CLI tests."""

import json
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Generator, List, Optional, Tuple

import pytest

from fastbuild_cli.output import OutputSink
from fastbuild_cli.runner import CommandRunner


class RecordingSink(OutputSink):
    """Sink that keeps messages in memory instead of printing them."""

    def __init__(self) -> None:
        super().__init__()
        self.messages: List[Tuple[str, str]] = []

    def output(self, message: str) -> None:
        self.messages.append(("output", message))

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def debug(self, message: str) -> None:
        self.messages.append(("debug", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    def process_error(self, message: str) -> None:
        self.messages.append(("process_error", message))

    def of(self, kind: str) -> List[str]:
        return [m for k, m in self.messages if k == kind]


class FakeRunner(CommandRunner):
    """Records commands and reports failure for any command containing *fail_on*."""

    def __init__(self, fail_on: Optional[str] = None) -> None:
        self.fail_on = fail_on
        self.calls: List[Tuple[str, Path]] = []

    def run(self, command, working_directory) -> bool:
        self.calls.append((command, Path(working_directory)))
        return not (self.fail_on and self.fail_on in command)

    @property
    def commands(self) -> List[str]:
        return [c for c, _ in self.calls]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp()).resolve()
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


def write_file(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def make_workspace(root: Path, config: Dict) -> Path:
    """Create ``root/.fastbuild/config.json`` and return the .fastbuild directory."""
    workspace = root / ".fastbuild"
    workspace.mkdir(parents=True, exist_ok=True)
    (workspace / "config.json").write_text(json.dumps(config), encoding="utf-8")
    return workspace


@pytest.fixture
def native_workspace(temp_dir: Path) -> Path:
    """Workspace with Core <- App and Core <- Tests under ``native/``."""
    make_workspace(temp_dir, {
        "cmake": {
            "build": {
                "baseDirectory": "native",
                "ignore": ["Tests"],
                "command": "cmake --build build --target {{PROJECT_NAME}} -- -C {{CMAKE_DIRECTORY}}",
            },
            "publish": {"files": ["publish.sh"], "command": "sh publish.sh {{PROJECT_NAME}}"},
        },
    })
    write_file(temp_dir / ".fastbuild" / "publish.sh", "echo publish\n")
    write_file(temp_dir / "native" / "core" / "CMakeLists.txt", (
        "add_library(Core STATIC core.cpp util.cpp)\n"
    ))
    write_file(temp_dir / "native" / "core" / "core.cpp", "int core() { return 1; }\n")
    write_file(temp_dir / "native" / "app" / "CMakeLists.txt", (
        "add_library(App SHARED app.cpp)\n"
        "target_link_libraries(App\n"
        "    Core\n"
        ")\n"
    ))
    write_file(temp_dir / "native" / "tests" / "CMakeLists.txt", (
        "add_executable(Tests tests.cpp)\n"
        "target_link_libraries(Tests PRIVATE Core)\n"
    ))
    return temp_dir
