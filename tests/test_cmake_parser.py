"""Tests for the CMakeLists.txt scanner and the descriptor graph cache."""

import json
import logging
from pathlib import Path

from fastbuild_cli.cmake_parser import (
    DescriptorGraphStore,
    DescriptorScanner,
    ScanState,
    build_nodes,
    parse_descriptor,
    substitute_variables,
)
from fastbuild_cli.config import CACHE_SCHEMA
from fastbuild_cli.models import DescriptorGraphCache, DescriptorNode

from conftest import write_file


def scan(temp_dir: Path, text: str):
    path = write_file(temp_dir / "CMakeLists.txt", text)
    return parse_descriptor(path)


class TestVariableSubstitution:
    """Tests for ${name} expansion."""

    def test_known_variable_is_replaced(self):
        assert substitute_variables('"${X}/a.cpp"', {"X": "1.0"}) == '"1.0/a.cpp"'

    def test_unknown_variable_is_kept(self):
        assert substitute_variables("${MISSING}/a.cpp", {"X": "1"}) == "${MISSING}/a.cpp"

    def test_nested_expansion(self):
        variables = {"A": "${B}", "B": "src"}
        assert substitute_variables("${A}/x.cpp", variables) == "src/x.cpp"

    def test_self_reference_terminates(self):
        result = substitute_variables("${A}", {"A": "x${A}"})
        assert result.startswith("x")

    def test_set_then_use(self, temp_dir: Path):
        """A set() value is used by later lines."""
        info = scan(temp_dir, 'set(X "1.0")\nadd_library(Foo SHARED "${X}/a.cpp")\n')
        assert info.source_files == ["1.0/a.cpp"]

    def test_project_name_variable(self, temp_dir: Path):
        info = scan(temp_dir, "project(Engine)\nadd_library(${PROJECT_NAME} STATIC e.cpp)\n")
        assert info.project_name == "Engine"


class TestDescriptorScanner:
    """Tests for target, source, and link parsing."""

    def test_add_library_shared_with_inline_sources(self, temp_dir: Path):
        info = scan(temp_dir, "add_library(Foo SHARED a.cpp b.cpp)\n")
        assert info.project_name == "Foo"
        assert info.library_type == "SHARED"
        assert info.source_files == ["a.cpp", "b.cpp"]

    def test_single_line_link_libraries(self, temp_dir: Path):
        info = scan(temp_dir, "add_library(Foo SHARED a.cpp)\ntarget_link_libraries(Foo Bar)\n")
        assert info.libraries == ["Bar"]

    def test_multi_line_link_block(self, temp_dir: Path):
        info = scan(temp_dir, (
            "add_library(Foo STATIC a.cpp)\n"
            "target_link_libraries(Foo PRIVATE\n"
            "    Bar\n"
            "    -lpthread\n"
            "    ${UNKNOWN_LIB}\n"
            "    Baz # trailing comment\n"
            ")\n"
            '"after.cpp"\n'
        ))
        assert info.libraries == ["Bar", "Baz"]
        assert info.source_files == ["a.cpp", "after.cpp"]

    def test_link_block_state_resets(self):
        scanner = DescriptorScanner(Path("CMakeLists.txt"))
        scanner.feed("target_link_libraries(Foo")
        assert scanner.state is ScanState.LINK_BLOCK
        scanner.feed("Bar)")
        assert scanner.state is ScanState.NORMAL
        assert scanner.result.libraries == ["Bar"]

    def test_quoted_sources(self, temp_dir: Path):
        info = scan(temp_dir, (
            "add_library(Foo STATIC\n"
            '    "src/one.cpp" "src/two.cpp"\n'
            '    "${NOT_SET}/three.cpp"\n'
            ")\n"
        ))
        assert info.source_files == ["src/one.cpp", "src/two.cpp"]

    def test_comments_are_ignored(self, temp_dir: Path):
        info = scan(temp_dir, '# add_library(Old SHARED old.cpp)\nadd_library(New STATIC "n.cpp") # SHARED\n')
        assert info.project_name == "New"
        assert info.library_type == "STATIC"

    def test_last_library_declaration_wins(self, temp_dir: Path):
        info = scan(temp_dir, "add_library(A STATIC a.cpp)\nadd_library(B SHARED b.cpp)\n")
        assert info.project_name == "B"
        assert info.library_type == "SHARED"

    def test_executable_does_not_override_library(self, temp_dir: Path):
        info = scan(temp_dir, "add_library(Lib SHARED l.cpp)\nadd_executable(Tool t.cpp)\n")
        assert info.project_name == "Lib"
        assert "t.cpp" in info.source_files


class TestGraphResolution:
    """Tests for node construction and used_by edges."""

    def test_used_by_edges(self, temp_dir: Path):
        write_file(temp_dir / "foo" / "CMakeLists.txt", (
            "add_library(Foo SHARED a.cpp b.cpp)\ntarget_link_libraries(Foo Bar)\n"
        ))
        write_file(temp_dir / "bar" / "CMakeLists.txt", "add_library(Bar STATIC bar.cpp)\n")
        parsed = [parse_descriptor(p) for p in sorted(temp_dir.rglob("CMakeLists.txt"))]

        nodes = {n.project_name: n for n in build_nodes(temp_dir, parsed)}

        assert nodes["Foo"].shared is True
        assert nodes["Foo"].source_files == ["foo/a.cpp", "foo/b.cpp"]
        assert nodes["Foo"].cmake_path == "foo/CMakeLists.txt"
        assert nodes["Bar"].used_by == ["Foo"]
        assert nodes["Foo"].used_by == []

    def test_sources_are_normalized(self, temp_dir: Path):
        write_file(temp_dir / "lib" / "CMakeLists.txt", 'add_library(Lib STATIC "../shared/s.cpp")\n')
        parsed = [parse_descriptor(temp_dir / "lib" / "CMakeLists.txt")]
        (node,) = build_nodes(temp_dir, parsed)
        assert node.source_files == ["shared/s.cpp"]

    def test_duplicate_name_keeps_first_and_warns(self, temp_dir: Path, caplog):
        write_file(temp_dir / "a" / "CMakeLists.txt", "add_library(Dup STATIC a.cpp)\n")
        write_file(temp_dir / "b" / "CMakeLists.txt", "add_library(Dup SHARED b.cpp)\n")
        parsed = [parse_descriptor(p) for p in sorted(temp_dir.rglob("CMakeLists.txt"))]

        with caplog.at_level(logging.WARNING, logger="fastbuild_cli.cmake_parser"):
            (node,) = build_nodes(temp_dir, parsed)

        assert node.cmake_path == "a/CMakeLists.txt"
        assert node.shared is False
        assert any("Duplicate project 'Dup'" in r.getMessage() for r in caplog.records)

    def test_nameless_descriptors_are_skipped(self, temp_dir: Path):
        write_file(temp_dir / "CMakeLists.txt", "add_subdirectory(lib)\n")
        parsed = [parse_descriptor(temp_dir / "CMakeLists.txt")]
        assert build_nodes(temp_dir, parsed) == []


class TestDescriptorGraphStore:
    """Tests for the persisted cache."""

    def test_round_trip(self, temp_dir: Path, sink):
        cache = DescriptorGraphCache(
            schema=CACHE_SCHEMA,
            nodes=[
                DescriptorNode("core/CMakeLists.txt", "Core", False, ["core/a.cpp"], ["App"]),
                DescriptorNode("app/CMakeLists.txt", "App", True, ["app/b.cpp"], []),
            ],
        )
        store = DescriptorGraphStore(sink)
        store.save(cache, temp_dir / "_Tmp")

        assert store.load(temp_dir / "_Tmp") == cache

    def test_cache_file_format(self, native_workspace: Path, sink):
        store = DescriptorGraphStore(sink)
        store.get_graph(native_workspace / "native", native_workspace / ".fastbuild" / "_Tmp")

        payload = json.loads((native_workspace / ".fastbuild" / "_Tmp" / "CMakeCache.json").read_text())
        assert payload["schema"] == CACHE_SCHEMA
        core = next(item for item in payload["list"] if item["projectName"] == "Core")
        assert set(core) == {"cmakePath", "projectName", "shared", "sourceFiles", "usedBy"}
        assert sorted(core["usedBy"]) == ["App", "Tests"]

    def test_cache_is_reused_without_freshness_check(self, native_workspace: Path, sink):
        base = native_workspace / "native"
        cache_dir = native_workspace / ".fastbuild" / "_Tmp"
        store = DescriptorGraphStore(sink)
        first = store.get_graph(base, cache_dir)

        write_file(base / "extra" / "CMakeLists.txt", "add_library(Extra STATIC x.cpp)\n")
        second = store.get_graph(base, cache_dir)

        assert second == first
        assert second.find("Extra") is None

    def test_schema_mismatch_forces_rebuild(self, native_workspace: Path, sink):
        base = native_workspace / "native"
        cache_dir = native_workspace / ".fastbuild" / "_Tmp"
        DescriptorGraphStore(sink, schema=0).save(DescriptorGraphCache(schema=0), cache_dir)

        graph = DescriptorGraphStore(sink).get_graph(base, cache_dir)

        assert graph.schema == CACHE_SCHEMA
        assert graph.find("Core") is not None

    def test_corrupt_cache_is_rebuilt(self, native_workspace: Path, sink):
        cache_dir = native_workspace / ".fastbuild" / "_Tmp"
        write_file(cache_dir / "CMakeCache.json", "{not json")

        graph = DescriptorGraphStore(sink).get_graph(native_workspace / "native", cache_dir)

        assert len(graph.nodes) == 3

    def test_no_descriptors(self, temp_dir: Path, sink):
        (temp_dir / "empty").mkdir()
        graph = DescriptorGraphStore(sink).get_graph(temp_dir / "empty", temp_dir / "_Tmp")

        assert graph.nodes == []
        assert any("No CMakeLists.txt" in m for m in sink.of("error"))
        assert not (temp_dir / "_Tmp" / "CMakeCache.json").exists()
