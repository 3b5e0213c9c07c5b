"""Core data models shared by the parser, rewriter, and orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional


@dataclass
class ParsedDescriptor:
    """Raw result of scanning one CMakeLists.txt, before graph resolution."""
    cmake_path: Path
    project_name: str = ""
    library_type: str = ""
    source_files: List[str] = field(default_factory=list)
    libraries: List[str] = field(default_factory=list)


@dataclass
class DescriptorNode:
    cmake_path: str
    project_name: str
    shared: bool = False
    source_files: List[str] = field(default_factory=list)
    used_by: List[str] = field(default_factory=list)

    @property
    def cmake_directory(self) -> str:
        """Directory of the descriptor, relative to the native base directory."""
        parent = PurePosixPath(self.cmake_path).parent.as_posix()
        return "" if parent == "." else parent

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cmakePath": self.cmake_path,
            "projectName": self.project_name,
            "shared": self.shared,
            "sourceFiles": list(self.source_files),
            "usedBy": list(self.used_by),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "DescriptorNode":
        return cls(
            cmake_path=payload.get("cmakePath", ""),
            project_name=payload.get("projectName", ""),
            shared=bool(payload.get("shared", False)),
            source_files=list(payload.get("sourceFiles", [])),
            used_by=list(payload.get("usedBy", [])),
        )


@dataclass
class DescriptorGraphCache:
    schema: int = 0
    nodes: List[DescriptorNode] = field(default_factory=list)

    def find(self, project_name: str) -> Optional[DescriptorNode]:
        for node in self.nodes:
            if node.project_name == project_name:
                return node
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {"schema": self.schema, "list": [n.to_dict() for n in self.nodes]}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "DescriptorGraphCache":
        return cls(
            schema=int(payload.get("schema", 0)),
            nodes=[DescriptorNode.from_dict(item) for item in payload.get("list", [])],
        )


@dataclass
class RewriteResult:
    """Outcome of rewriting a manifest graph into its fast-build variant."""
    generated_path: Optional[Path]
    package_id: Optional[str]
    was_written: bool = False
    dependencies_changed: bool = False
    # Generated manifests and props files written during this run
    written_files: List[Path] = field(default_factory=list)


class RunState(str, Enum):
    IDLE = "idle"
    CONFIG_RESOLVED = "config_resolved"
    DOMAIN_DETECTED = "domain_detected"
    NATIVE_FLOW = "native_flow"
    MANIFEST_FLOW = "manifest_flow"
    BUILT = "built"
    PUBLISHED = "published"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RunOutcome:
    """Final state of one orchestrator run."""
    state: RunState
    handled: bool = False
    message: str = ""
    built: List[str] = field(default_factory=list)
    published: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.state == RunState.DONE
