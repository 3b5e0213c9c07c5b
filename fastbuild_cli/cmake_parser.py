"""CMakeLists.txt scanner and the cached native dependency graph.

Each descriptor is read by a line scanner with two states, ``NORMAL`` and
``LINK_BLOCK`` (inside a ``target_link_libraries(...)`` call), and an
explicit variable table fed by ``set(...)``.  The parsed descriptors are
then resolved into :class:`~fastbuild_cli.models.DescriptorNode` objects
with reverse ``used_by`` edges and persisted as JSON under
``.fastbuild/_Tmp``.

The cache is only invalidated by a schema bump; edits to descriptors are
not detected here.
"""

from __future__ import annotations

import json
import logging
import os
import re
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .config import CACHE_FILE_NAME, CACHE_SCHEMA, DESCRIPTOR_FILE_NAME
from .models import DescriptorGraphCache, DescriptorNode, ParsedDescriptor
from .output import OutputSink

logger = logging.getLogger(__name__)

_VARIABLE_USE_RE = re.compile(r"\$\{(\w+)\}")
_LINK_START_RE = re.compile(r"target_link_libraries\s*\(", re.IGNORECASE)
_SET_RE = re.compile(r"^set\s*\(\s*(\w+)\s+(.+?)\s*\)\s*$", re.IGNORECASE)
_PROJECT_RE = re.compile(r"^project\s*\(\s*([\w.-]+)", re.IGNORECASE)
_ADD_LIBRARY_RE = re.compile(r"add_library\s*\(\s*(\S+)\s+(STATIC|SHARED)\b(.*)", re.IGNORECASE)
_ADD_EXECUTABLE_RE = re.compile(r"add_executable\s*\(\s*([^\s)]+)(.*)", re.IGNORECASE)
_QUOTED_SOURCE_RE = re.compile(r'"([^"]*\.\w+)"')
_FILE_TOKEN_RE = re.compile(r".*\.\w+$")

_LINK_KEYWORDS = {
    "PUBLIC", "PRIVATE", "INTERFACE",
    "LINK_PUBLIC", "LINK_PRIVATE", "LINK_INTERFACE_LIBRARIES",
    "DEBUG", "OPTIMIZED", "GENERAL",
}

# Bound on nested ${} expansion so self-referencing values cannot loop forever
MAX_SUBSTITUTION_PASSES = 32


# ===================================================================
# Descriptor scanner
# ===================================================================

class ScanState(Enum):
    NORMAL = "normal"
    LINK_BLOCK = "link_block"


def substitute_variables(line: str, variables: Dict[str, str]) -> str:
    """Expand ``${name}`` references known to *variables*.

    Expansion repeats until nothing known is left; unknown references are
    kept verbatim.
    """
    def replace(match: re.Match) -> str:
        return variables.get(match.group(1), match.group(0))

    for _ in range(MAX_SUBSTITUTION_PASSES):
        expanded = _VARIABLE_USE_RE.sub(replace, line)
        if expanded == line:
            break
        line = expanded
    return line


def _strip_quotes(token: str) -> str:
    if len(token) >= 2 and token.startswith('"') and token.endswith('"'):
        return token[1:-1]
    return token


class DescriptorScanner:
    """Single-pass scanner over the lines of one CMakeLists.txt."""

    def __init__(self, cmake_path: Path) -> None:
        self.result = ParsedDescriptor(cmake_path=cmake_path)
        self.variables: Dict[str, str] = {
            "CMAKE_CURRENT_SOURCE_DIR": str(cmake_path.resolve().parent),
            "CMAKE_CURRENT_LIST_DIR": str(cmake_path.resolve().parent),
        }
        self.state = ScanState.NORMAL
        self._expect_target = False

    def scan(self, lines: Iterable[str]) -> ParsedDescriptor:
        for raw in lines:
            line = raw.split("#", 1)[0].strip()
            if not line:
                continue
            self.feed(substitute_variables(line, self.variables))
        return self.result

    def feed(self, line: str) -> None:
        if self.state is ScanState.LINK_BLOCK:
            self._feed_link_block(line)
            return

        start = _LINK_START_RE.search(line)
        if start:
            self.state = ScanState.LINK_BLOCK
            self._expect_target = True
            self._feed_link_block(line[start.end():])
            return

        match = _SET_RE.match(line)
        if match:
            self.variables[match.group(1).strip()] = _strip_quotes(match.group(2).strip())
            return

        match = _PROJECT_RE.match(line)
        if match:
            self.variables["PROJECT_NAME"] = match.group(1)
            return

        match = _ADD_LIBRARY_RE.search(line)
        if match:
            self.result.project_name = match.group(1).strip()
            self.result.library_type = match.group(2).upper()
            self._add_inline_sources(match.group(3))
            return

        match = _ADD_EXECUTABLE_RE.search(line)
        if match:
            # A library declared in the same descriptor takes precedence
            if self.result.library_type not in ("STATIC", "SHARED"):
                self.result.project_name = match.group(1).strip()
                self.result.library_type = "EXECUTABLE"
            self._add_inline_sources(match.group(2))
            return

        for source in _QUOTED_SOURCE_RE.findall(line):
            if not source.startswith("$"):
                self._add_source(source)

    def _feed_link_block(self, text: str) -> None:
        closed = ")" in text
        if closed:
            text = text.split(")", 1)[0]
            self.state = ScanState.NORMAL

        for token in text.split():
            token = _strip_quotes(token)
            if self._expect_target:
                self._expect_target = False
                continue
            if token.startswith(("-", "$")) or token.upper() in _LINK_KEYWORDS:
                continue
            if token not in self.result.libraries:
                self.result.libraries.append(token)

    def _add_inline_sources(self, text: str) -> None:
        for token in text.split(")", 1)[0].split():
            token = _strip_quotes(token)
            if token.startswith("$") or not _FILE_TOKEN_RE.match(token):
                continue
            self._add_source(token)

    def _add_source(self, source: str) -> None:
        if source not in self.result.source_files:
            self.result.source_files.append(source)


def parse_descriptor(cmake_path: Path) -> ParsedDescriptor:
    """Parse one descriptor file.

    Raises:
        OSError: if the file cannot be read.
    """
    lines = cmake_path.read_text(encoding="utf-8", errors="ignore").splitlines()
    return DescriptorScanner(cmake_path).scan(lines)


# ===================================================================
# Graph resolution
# ===================================================================

def _to_relative(path: str, base_directory: Path) -> str:
    candidate = Path(path)
    try:
        return candidate.relative_to(base_directory).as_posix()
    except ValueError:
        return candidate.as_posix()


def build_nodes(base_directory: Path, parsed: List[ParsedDescriptor]) -> List[DescriptorNode]:
    """Resolve parsed descriptors into nodes with ``used_by`` edges."""
    base_directory = base_directory.resolve()
    named: List[ParsedDescriptor] = []
    seen: Dict[str, ParsedDescriptor] = {}
    for info in parsed:
        if not info.project_name:
            logger.debug("No target declared in %s", info.cmake_path)
            continue
        if info.project_name in seen:
            logger.warning(
                "Duplicate project '%s' in %s, keeping %s",
                info.project_name, info.cmake_path, seen[info.project_name].cmake_path,
            )
            continue
        seen[info.project_name] = info
        named.append(info)

    nodes: List[DescriptorNode] = []
    for info in named:
        descriptor_dir = str(Path(info.cmake_path).resolve().parent)
        sources = [
            _to_relative(os.path.normpath(os.path.join(descriptor_dir, source)), base_directory)
            for source in info.source_files
        ]
        used_by = [
            other.project_name
            for other in named
            if other is not info and info.project_name in other.libraries
        ]
        nodes.append(
            DescriptorNode(
                cmake_path=_to_relative(str(Path(info.cmake_path).resolve()), base_directory),
                project_name=info.project_name,
                shared=info.library_type == "SHARED",
                source_files=sources,
                used_by=used_by,
            )
        )
    return nodes


# ===================================================================
# Persistent cache
# ===================================================================

class DescriptorGraphStore:
    """Loads, rebuilds, and persists the descriptor graph cache."""

    def __init__(self, sink: OutputSink, schema: int = CACHE_SCHEMA) -> None:
        self.sink = sink
        self.schema = schema

    @staticmethod
    def cache_file(cache_directory: Path) -> Path:
        return cache_directory / CACHE_FILE_NAME

    def load(self, cache_directory: Path) -> Optional[DescriptorGraphCache]:
        path = self.cache_file(cache_directory)
        if not path.exists():
            return None
        try:
            return DescriptorGraphCache.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError, TypeError, AttributeError) as exc:
            logger.warning("Ignoring unreadable graph cache %s: %s", path, exc)
            return None

    def save(self, cache: DescriptorGraphCache, cache_directory: Path) -> None:
        cache_directory.mkdir(parents=True, exist_ok=True)
        self.cache_file(cache_directory).write_text(
            json.dumps(cache.to_dict(), indent=2), encoding="utf-8",
        )

    def rebuild(self, base_directory: Path) -> Optional[DescriptorGraphCache]:
        """Parse every descriptor below *base_directory*; None if there are none."""
        self.sink.info(f"Reading {DESCRIPTOR_FILE_NAME} files...")
        descriptors = sorted(base_directory.rglob(DESCRIPTOR_FILE_NAME))
        if not descriptors:
            self.sink.error(f"No {DESCRIPTOR_FILE_NAME} file found in CMake base directory.")
            return None

        parsed: List[ParsedDescriptor] = []
        for cmake_path in descriptors:
            self.sink.debug(f"Parsing {cmake_path}")
            try:
                parsed.append(parse_descriptor(cmake_path))
            except OSError as exc:
                self.sink.error(f"Failed to read {cmake_path}: {exc}")

        return DescriptorGraphCache(
            schema=self.schema,
            nodes=build_nodes(base_directory, parsed),
        )

    def get_graph(self, base_directory: Path, cache_directory: Path) -> DescriptorGraphCache:
        cache = self.load(cache_directory)
        if cache is not None and cache.schema == self.schema:
            return cache

        rebuilt = self.rebuild(base_directory)
        if rebuilt is None:
            return DescriptorGraphCache()

        try:
            self.save(rebuilt, cache_directory)
        except OSError as exc:
            self.sink.error(f"Failed to write graph cache: {exc}")
        return rebuilt
