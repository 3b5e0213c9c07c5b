"""Rewrite project manifests into self-contained ``*.fastbuild.csproj`` variants.

The rewriter walks the project-reference graph with an explicit worklist
and a visited set keyed by absolute source path, so reference cycles and
shared references are each processed exactly once.  For every manifest it:

- redirects a non-Microsoft SDK to a locally rewritten ``Sdk.props``
  (restoring the SDK package first when it is not installed),
- injects ``RootNamespace``/``AssemblyName`` and, outside compatibility
  mode, a few build-speed properties,
- points every ``ProjectReference`` at the referenced project's generated
  counterpart,
- detects whether the set of ``PackageReference`` entries changed.

The generated file is only written when the source is newer than it (or
an SDK redirect forces it).
"""

from __future__ import annotations

import json
import logging
import os
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from .build_manager import BuildManager
from .config import NUGET_PACKAGES_DIR, SDK_RESTORE_TARGET_FRAMEWORK
from .errors import DependencyResolutionError, FastBuildError, ParseError
from .models import RewriteResult
from .output import OutputSink
from .path_finder import find_version_pin_file, generated_manifest_path

logger = logging.getLogger(__name__)

DEFAULT_SDK = "Microsoft.NET.Sdk"
SDK_PROPS = "Sdk.props"
SDK_TARGETS = "Sdk.targets"

PERFORMANCE_PROPERTIES = {
    "TreatWarningsAsErrors": "false",
    "RestoreUseStaticGraphEvaluation": "true",
    "IsPackable": "false",
}
REMOVED_PERFORMANCE_PROPERTIES = ("ProduceReferenceAssembly",)


# ===================================================================
# Document model
# ===================================================================

class ProjectDocument:
    """Typed view over an MSBuild project or props XML document."""

    def __init__(self, root: ET.Element) -> None:
        self.root = root
        if root.tag.startswith("{"):
            self.namespace = root.tag[1:root.tag.index("}")]
        else:
            self.namespace = ""

    @classmethod
    def parse(cls, text: str, source: str = "<string>") -> "ProjectDocument":
        parser = ET.XMLParser(target=ET.TreeBuilder(insert_comments=True))
        try:
            return cls(ET.fromstring(text, parser=parser))
        except ET.ParseError as exc:
            raise ParseError(f"Invalid XML in {source}: {exc}") from exc

    @classmethod
    def load(cls, path: Path) -> "ProjectDocument":
        return cls.parse(path.read_text(encoding="utf-8-sig"), str(path))

    def _tag(self, name: str) -> str:
        return f"{{{self.namespace}}}{name}" if self.namespace else name

    def _element(self, name: str, **attributes: str) -> ET.Element:
        return ET.Element(self._tag(name), attributes)

    # -- SDK ------------------------------------------------------------

    @property
    def sdk(self) -> Optional[str]:
        return self.root.get("Sdk")

    @sdk.setter
    def sdk(self, value: str) -> None:
        self.root.set("Sdk", value)

    def prepend_import(self, project: str, sdk: Optional[str] = None) -> None:
        element = self._element("Import", Project=project)
        if sdk:
            element.set("Sdk", sdk)
        self.root.insert(0, element)

    def append_import(self, project: str, sdk: Optional[str] = None) -> None:
        element = self._element("Import", Project=project)
        if sdk:
            element.set("Sdk", sdk)
        self.root.append(element)

    def sdk_props_import(self) -> Optional[ET.Element]:
        """First top-level ``<Import Project="Sdk.props" Sdk="...">``."""
        for element in self.root.findall(self._tag("Import")):
            if element.get("Project") == SDK_PROPS and element.get("Sdk") is not None:
                return element
        return None

    # -- Properties -----------------------------------------------------

    def _find_property(self, name: str) -> Optional[ET.Element]:
        for group in self.root.iter(self._tag("PropertyGroup")):
            element = group.find(self._tag(name))
            if element is not None:
                return element
        return None

    def _first_property_group(self) -> ET.Element:
        group = self.root.find(self._tag("PropertyGroup"))
        if group is None:
            group = self._element("PropertyGroup")
            self.root.append(group)
        return group

    def get_property(self, name: str) -> Optional[str]:
        element = self._find_property(name)
        if element is None:
            return None
        return element.text or ""

    def add_property(self, name: str, value: str) -> str:
        """Add *name* unless it exists; return the effective value."""
        current = self.get_property(name)
        if current is not None:
            return current
        element = self._element(name)
        element.text = value
        self._first_property_group().append(element)
        return value

    def set_property(self, name: str, value: str) -> None:
        element = self._find_property(name)
        if element is None:
            element = self._element(name)
            self._first_property_group().append(element)
        element.text = value

    def remove_property(self, name: str) -> None:
        for group in self.root.iter(self._tag("PropertyGroup")):
            element = group.find(self._tag(name))
            if element is not None:
                group.remove(element)
                return

    # -- References -----------------------------------------------------

    def project_references(self) -> List[ET.Element]:
        return list(self.root.iter(self._tag("ProjectReference")))

    def package_references(self) -> List[Tuple[str, str]]:
        """Sorted, de-duplicated ``(package, version)`` pairs."""
        packages = set()
        for element in self.root.iter(self._tag("PackageReference")):
            version = element.get("Version")
            if version is None:
                child = element.find(self._tag("Version"))
                version = (child.text or "") if child is not None else ""
            packages.add((element.get("Include", ""), version.strip()))
        return sorted(packages)

    def to_string(self) -> str:
        ET.indent(self.root, space="  ")
        if self.namespace:
            # Serialize the default namespace without an ns0: prefix
            ET.register_namespace("", self.namespace)
        return ET.tostring(self.root, encoding="unicode")


# ===================================================================
# Rewriter
# ===================================================================

@dataclass
class _WorkItem:
    source_path: Path
    generated_path: Path
    pin_origin: Path
    sdk_mode: bool = False


@dataclass
class _Visit:
    package_id: Optional[str]
    written: bool
    dependencies_changed: bool
    children: List[_WorkItem] = field(default_factory=list)


def _split_sdk(value: str) -> Tuple[str, Optional[str]]:
    """``My.Sdk/1.2.3`` -> ``("My.Sdk", "1.2.3")``."""
    name, _, version = value.partition("/")
    return name.strip(), (version.strip() or None)


class ManifestRewriter:
    """Produces fast-build variants of a manifest and everything it references."""

    def __init__(
        self,
        sink: OutputSink,
        build_manager: BuildManager,
        sdk_directory: Path,
        packages_directory: Path = NUGET_PACKAGES_DIR,
    ) -> None:
        self.sink = sink
        self.build_manager = build_manager
        self.sdk_directory = sdk_directory
        self.packages_directory = packages_directory
        self._pins: Dict[Path, Dict[str, str]] = {}

    def rewrite(
        self,
        manifest_path: Path,
        replacements: Dict[str, str],
        compatibility_mode: bool = False,
    ) -> Optional[RewriteResult]:
        """Rewrite *manifest_path* and its reference graph.

        Returns None when the top-level manifest itself could not be
        processed. Failures in referenced manifests are reported and skipped.
        """
        self.sdk_directory.mkdir(parents=True, exist_ok=True)
        manifest_path = manifest_path.resolve()
        root = _WorkItem(manifest_path, generated_manifest_path(manifest_path), manifest_path)

        visited: Set[Path] = set()
        visits: Dict[Path, Optional[_Visit]] = {}
        written: List[Path] = []
        stack: List[_WorkItem] = [root]
        while stack:
            item = stack.pop()
            if item.source_path in visited:
                self.sink.debug(f"Skipping already processed file: {item.source_path}")
                continue
            visited.add(item.source_path)

            visit = self._visit(item, visited, replacements, compatibility_mode)
            visits[item.source_path] = visit
            if visit is not None:
                if visit.written:
                    written.append(item.generated_path)
                stack.extend(reversed(visit.children))

        root_visit = visits.get(manifest_path)
        if root_visit is None:
            return None

        done = [v for v in visits.values() if v is not None]
        return RewriteResult(
            generated_path=root.generated_path,
            package_id=root_visit.package_id,
            was_written=root_visit.written,
            dependencies_changed=any(v.dependencies_changed for v in done),
            written_files=written,
        )

    # ------------------------------------------------------------------
    # Single manifest
    # ------------------------------------------------------------------

    def _visit(
        self,
        item: _WorkItem,
        visited: Set[Path],
        replacements: Dict[str, str],
        compatibility_mode: bool,
    ) -> Optional[_Visit]:
        try:
            return self._process(item, visited, replacements, compatibility_mode)
        except (FastBuildError, OSError, ValueError) as exc:
            self.sink.error(f"Processing {item.source_path}: {exc}")
            return None

    def _process(
        self,
        item: _WorkItem,
        visited: Set[Path],
        replacements: Dict[str, str],
        compatibility_mode: bool,
    ) -> _Visit:
        source, generated = item.source_path, item.generated_path
        stale = not generated.exists() or source.stat().st_mtime > generated.stat().st_mtime
        if stale:
            self.sink.debug(f"Updating FastBuild project for {source}")
        else:
            self.sink.debug(f"Processing project references for {source}")

        doc = ProjectDocument.load(source)
        children: List[_WorkItem] = []

        if item.sdk_mode:
            element = doc.sdk_props_import()
            if element is not None and not element.get("Sdk", "").startswith("Microsoft"):
                props = self._redirect_sdk(element.get("Sdk", ""), item.pin_origin, children)
                element.set("Project", str(props))
                del element.attrib["Sdk"]
                stale = True
        else:
            sdk = doc.sdk
            if sdk is not None and not sdk.startswith("Microsoft."):
                doc.sdk = DEFAULT_SDK
                props = self._redirect_sdk(sdk, item.pin_origin, children)
                doc.prepend_import(str(props))
                doc.append_import(SDK_TARGETS, sdk)
                stale = True

        package_id: Optional[str] = None
        if not item.sdk_mode:
            project_name = source.stem
            doc.add_property("RootNamespace", project_name)
            assembly_name = doc.add_property("AssemblyName", project_name)
            package_id = doc.get_property("PackageId") or assembly_name

            if not compatibility_mode:
                for name, value in PERFORMANCE_PROPERTIES.items():
                    doc.set_property(name, value)
                for name in REMOVED_PERFORMANCE_PROPERTIES:
                    doc.remove_property(name)

        for reference in doc.project_references():
            include = reference.get("Include")
            if not include:
                continue
            include = include.replace("\\", "/")
            for token, value in replacements.items():
                include = include.replace(token, value)

            target = Path(os.path.normpath(os.path.join(source.parent, include))).resolve()
            target_generated = generated_manifest_path(target)
            reference.set("Include", str(target_generated))

            if target in visited:
                self.sink.debug(f"Skipping already processed reference: {target}")
            elif target.is_file():
                children.append(_WorkItem(target, target_generated, target))
            else:
                self.sink.error(f"Referenced project does not exist: {target}")

        new_content = doc.to_string()
        dependencies_changed = self._dependencies_changed(doc, generated)

        if stale:
            generated.write_text(new_content, encoding="utf-8")
            self.sink.info(f"File has been saved to {generated}")

        return _Visit(package_id, stale, dependencies_changed, children)

    def _dependencies_changed(self, doc: ProjectDocument, generated: Path) -> bool:
        if not generated.exists():
            return True
        try:
            previous = ProjectDocument.load(generated).package_references()
        except ParseError as exc:
            logger.debug("Previous generated manifest unreadable: %s", exc)
            return True
        return previous != doc.package_references()

    # ------------------------------------------------------------------
    # SDK redirection
    # ------------------------------------------------------------------

    def _version_pins(self, origin: Path) -> Dict[str, str]:
        pin_file = find_version_pin_file(origin)
        if pin_file is None:
            raise DependencyResolutionError(f"global.json file not found for {origin}")
        if pin_file not in self._pins:
            try:
                payload = json.loads(pin_file.read_text(encoding="utf-8-sig"))
            except json.JSONDecodeError as exc:
                raise DependencyResolutionError(f"Invalid JSON in {pin_file}: {exc}") from exc
            sdks = payload.get("msbuild-sdks") or {}
            self._pins[pin_file] = {
                str(name).lower(): value
                for name, value in sdks.items()
                if isinstance(value, str)
            }
        return self._pins[pin_file]

    def _resolve_sdk_version(self, sdk: str, version: Optional[str], origin: Path) -> str:
        if version:
            return version
        pins = self._version_pins(origin)
        if sdk.lower() not in pins:
            raise DependencyResolutionError(f"Version not found for {sdk} in global.json")
        return pins[sdk.lower()]

    def _redirect_sdk(self, sdk_value: str, origin: Path, children: List[_WorkItem]) -> Path:
        """Ensure the SDK's Sdk.props is installed and queue it for rewriting.

        Returns the path of the generated props file that replaces the
        named SDK reference.
        """
        sdk, pinned = _split_sdk(sdk_value)
        version = self._resolve_sdk_version(sdk, pinned, origin)
        entry_point = self.packages_directory / sdk.lower() / version / "Sdk" / SDK_PROPS

        if not entry_point.is_file():
            self.sink.debug(f"File not found: {entry_point}, trying to restore it...")
            restore_project = self.sdk_directory / f"{sdk}.fastbuild.csproj"
            restore_project.write_text(
                f'<Project Sdk="{sdk}/{version}"><PropertyGroup>'
                f"<TargetFramework>{SDK_RESTORE_TARGET_FRAMEWORK}</TargetFramework>"
                f"</PropertyGroup></Project>",
                encoding="utf-8",
            )
            self.build_manager.restore_csproj(restore_project, self.sdk_directory)
            if not entry_point.is_file():
                raise DependencyResolutionError(f"File not found: {entry_point}")

        generated_props = self.sdk_directory / f"{sdk}.fastbuild.props"
        children.append(_WorkItem(entry_point, generated_props, origin, sdk_mode=True))
        return generated_props
