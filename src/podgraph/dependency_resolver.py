"""
Dependency graph resolution for Podfile.lock files.

A Podfile.lock lists every pod in a flat ``PODS`` table, each with its direct
children, and the project's direct dependencies in a ``DEPENDENCIES`` table.
Children and direct dependencies are usually mentioned without a version.
Resolution completes every mention from the authoritative PODS entry of the
same pod and expands the direct dependencies into a full graph.

Resolution runs in two phases over an index built once per lock file:

1. Horizontal completion: every PODS entry is merged with all other mentions
   of the same pod, so its version and children are maximal.
2. Root expansion: every direct dependency is merged with its PODS entry and
   its children are expanded recursively, depth first.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from .cache_manager import PodSpecCache
from .cli_config import get_config
from .dependency import Identifier, PackageReference, join_namespace
from .error_handling import (
    CyclicDependencyError,
    ErrorCategory,
    Issue,
    MissingDependencyVersionError,
    PodgraphError,
    Severity,
    create_and_log_issue,
)
from .package import Package
from .parsers import (
    POD_TYPE,
    PodSpec,
    parse_lock_table,
    read_lock_file,
    read_podspec_file,
    read_lock_tables,
)
from .structured_logging import log_resolution_complete, log_resolution_start

ReferenceKey = Tuple[str, str]


def merge_references(primary: PackageReference, secondary: PackageReference) -> PackageReference:
    """
    Complete ``primary`` from ``secondary``.

    The primary version wins when non-empty, otherwise the secondary version is
    taken. The same holds for the dependency set.

    Raises:
        ValueError: If the references name different pods
    """
    if primary.key != secondary.key:
        raise ValueError("Cannot merge references for different packages.")

    return PackageReference(
        id=primary.id.with_version(primary.id.version or secondary.id.version),
        dependencies=primary.dependencies or secondary.dependencies,
        constraint=primary.constraint,
    )


class ReferenceIndex:
    """
    The maximal information known about each pod of a PODS table.

    Keyed by (namespace, name). The version comes from the first top-level
    entry that carries one, falling back to the first versioned nested
    mention. The children are the union of children over all mentions.
    """

    def __init__(self, pods: Iterable[PackageReference]):
        self._order: List[ReferenceKey] = []
        self._types: Dict[ReferenceKey, str] = {}
        self._versions: Dict[ReferenceKey, str] = {}
        self._top_level_versions: Set[ReferenceKey] = set()
        self._children: Dict[ReferenceKey, Dict[ReferenceKey, PackageReference]] = {}
        self._authoritative: List[ReferenceKey] = []
        self._records: Dict[ReferenceKey, PackageReference] = {}

        for pod in pods:
            self._absorb(pod, top_level=True)

    def _absorb(self, reference: PackageReference, top_level: bool) -> None:
        key = reference.key
        if key not in self._types:
            self._order.append(key)
            self._types[key] = reference.id.type
            self._children[key] = {}

        if top_level and key not in self._authoritative:
            self._authoritative.append(key)

        version = reference.id.version
        if version:
            if key not in self._versions or (top_level and key not in self._top_level_versions):
                self._versions[key] = version
                if top_level:
                    self._top_level_versions.add(key)

        children = self._children[key]
        for child in sorted(reference.dependencies):
            children.setdefault(child.key, child)
            self._absorb(child, top_level=False)

    @property
    def authoritative_keys(self) -> List[ReferenceKey]:
        """Keys of the pods that have their own PODS entry, in table order."""
        return list(self._authoritative)

    def lookup(self, key: ReferenceKey) -> Optional[PackageReference]:
        """Return the maximal record for a pod, or None if it has no PODS entry."""
        if key not in self._authoritative and key not in self._versions:
            return None

        record = self._records.get(key)
        if record is None:
            namespace, name = key
            record = PackageReference(
                id=Identifier(self._types[key], namespace, name, self._versions.get(key, "")),
                dependencies=frozenset(self._children[key].values()),
            )
            self._records[key] = record
        return record

    def __contains__(self, key: ReferenceKey) -> bool:
        return self.lookup(key) is not None

    def __len__(self) -> int:
        return len(self._authoritative)


class LockfileResolver:
    """
    Expands references against a ``ReferenceIndex``.

    Expanded nodes are memoized, so every pod reachable over several paths is
    represented by one shared node. A resolver holds no state shared with
    other resolvers and may be used for one lock file at a time.
    """

    def __init__(self, pods: Iterable[PackageReference], max_depth: Optional[int] = None):
        self.index = ReferenceIndex(pods)
        self.max_depth = max_depth
        self.issues: List[Issue] = []
        self._issue_messages: Set[str] = set()
        self._expanded: Dict[Identifier, PackageReference] = {}

    def resolve_pods(self) -> List[PackageReference]:
        """
        Return the deduplicated PODS table, sorted, every entry fully expanded.

        Raises:
            CyclicDependencyError: If the table contains a dependency cycle
        """
        resolved = []
        for key in self.index.authoritative_keys:
            record = self.index.lookup(key)
            resolved.append(self._expand(record, []))
        return sorted(resolved)

    def resolve_root(self, root: PackageReference) -> PackageReference:
        """
        Merge a direct dependency with its PODS entry and expand its children.

        Raises:
            MissingDependencyVersionError: If the root has no version and no PODS entry
            CyclicDependencyError: If expansion runs into a cycle
        """
        return self._expand(root, [])

    def resolve_dependencies(self, roots: Iterable[PackageReference]) -> FrozenSet[PackageReference]:
        """Resolve all direct dependencies; see ``resolve_root`` for errors."""
        return frozenset(self.resolve_root(root) for root in roots)

    def _expand(self, reference: PackageReference, path: List[ReferenceKey]) -> PackageReference:
        key = reference.key
        if key in path:
            raise CyclicDependencyError(_display_path(path + [key]))
        if self.max_depth is not None and len(path) >= self.max_depth:
            raise CyclicDependencyError(
                _display_path(path + [key]),
                reason=f"Dependency depth exceeds {self.max_depth}",
            )

        record = self.index.lookup(key)
        if record is None:
            if not reference.id.version:
                raise MissingDependencyVersionError(*key)
            merged = reference
        else:
            merged = merge_references(reference, record)

        # A reference with its own children is not interchangeable with others.
        memoizable = not reference.dependencies or reference is record
        if memoizable and merged.id in self._expanded:
            return self._expanded[merged.id]

        children = []
        path.append(key)
        try:
            for child in sorted(merged.dependencies):
                try:
                    children.append(self._expand(child, path))
                except MissingDependencyVersionError as e:
                    self._add_issue(f"Dropping dependency of '{merged.id.to_coordinates()}': {e}")
        finally:
            path.pop()

        node = PackageReference(id=merged.id, dependencies=frozenset(children))
        if memoizable:
            self._expanded[merged.id] = node
        return node

    def _add_issue(self, message: str, severity: Severity = Severity.ERROR) -> None:
        if message in self._issue_messages:
            return
        self._issue_messages.add(message)
        self.issues.append(create_and_log_issue("dependency_resolver", message, severity))


def _display_path(path: List[ReferenceKey]) -> List[str]:
    return [join_namespace(namespace, name) for namespace, name in path]


@dataclass
class ResolvedLockfile:
    """Outcome of resolving the PODS and DEPENDENCIES tables of one lock file."""

    pods: List[PackageReference] = field(default_factory=list)
    dependencies: FrozenSet[PackageReference] = frozenset()
    issues: List[Issue] = field(default_factory=list)

    def all_references(self) -> List[PackageReference]:
        """Every node of the resolved graph, each identifier once, sorted."""
        nodes: Dict[Identifier, PackageReference] = {}
        for top in list(self.pods) + sorted(self.dependencies):
            for node in top.walk():
                nodes.setdefault(node.id, node)
        return sorted(nodes.values())


def resolve_lockfile(
    pods: List[PackageReference],
    dependencies: List[PackageReference],
    max_depth: Optional[int] = None,
) -> ResolvedLockfile:
    """
    Resolve parsed lock-file tables into a complete dependency graph.

    Pods and direct dependencies that cannot be resolved are left out and
    reported as issues, so the rest of the graph stays usable.
    """
    resolver = LockfileResolver(pods, max_depth)
    result = ResolvedLockfile()

    resolved_pods: Dict[Identifier, PackageReference] = {}
    for key in resolver.index.authoritative_keys:
        try:
            node = resolver.resolve_root(resolver.index.lookup(key))
        except PodgraphError as e:
            result.issues.append(_root_issue("PODS", key, e))
            continue
        resolved_pods[node.id] = node
    result.pods = sorted(resolved_pods.values())

    resolved_roots: Dict[Identifier, PackageReference] = {}
    for root in dependencies:
        try:
            node = resolver.resolve_root(root)
        except PodgraphError as e:
            result.issues.append(_root_issue("DEPENDENCIES", root.key, e))
            continue
        resolved_roots.setdefault(node.id, node)
    result.dependencies = frozenset(resolved_roots.values())

    result.issues = resolver.issues + result.issues
    return result


def _root_issue(table: str, key: ReferenceKey, error: PodgraphError) -> Issue:
    return create_and_log_issue(
        "dependency_resolver",
        f"Cannot resolve '{join_namespace(*key)}' from table {table}: {error}",
        Severity.ERROR,
        ErrorCategory.RESOLUTION,
        exception=error,
    )


def parse_podfile_lock(
    content: str, package_type: str = POD_TYPE, max_depth: Optional[int] = None
) -> ResolvedLockfile:
    """Parse and resolve Podfile.lock YAML content."""
    tables = read_lock_tables(content)
    pods, pod_issues = parse_lock_table(tables.pods, "PODS", package_type)
    dependencies, dependency_issues = parse_lock_table(tables.dependencies, "DEPENDENCIES", package_type)

    resolved = resolve_lockfile(pods, dependencies, max_depth)
    resolved.issues = pod_issues + dependency_issues + resolved.issues
    return resolved


class PodSpecSource(ABC):
    """Supplies podspec JSON documents, e.g. from a specs repository checkout."""

    @abstractmethod
    def fetch(self, pod_name: str, version: str) -> Optional[str]:
        """Return the podspec JSON for a pod version, or None if unknown."""


class DirectoryPodSpecSource(PodSpecSource):
    """
    Reads podspecs from a directory.

    Looks for ``<root>/<name>/<version>/<name>.podspec.json`` first and then
    for ``<root>/<name>.podspec.json``.
    """

    def __init__(self, root: str):
        self.root = Path(root)

    def fetch(self, pod_name: str, version: str) -> Optional[str]:
        """
        Raises:
            ValueError: If a podspec file exists but cannot be read safely
        """
        candidates = [
            self.root / pod_name / version / f"{pod_name}.podspec.json",
            self.root / f"{pod_name}.podspec.json",
        ]
        for candidate in candidates:
            if candidate.is_file():
                return read_podspec_file(str(candidate))
        return None


class PackageBuilder:
    """Creates one ``Package`` per resolved pod from podspec metadata."""

    def __init__(self, source: Optional[PodSpecSource] = None, cache: Optional[PodSpecCache] = None):
        self.source = source
        self.cache = cache if cache is not None else PodSpecCache()
        self.issues: List[Issue] = []

    def build(self, references: Iterable[PackageReference]) -> Dict[Identifier, Package]:
        """Return packages keyed by full identifier, one per distinct node."""
        packages: Dict[Identifier, Package] = {}
        for reference in references:
            for node in reference.walk():
                if node.id not in packages:
                    packages[node.id] = self._package_for(node.id)
        return packages

    def _package_for(self, pkg_id: Identifier) -> Package:
        if self.source is None:
            return Package(id=pkg_id)

        pod_name = pkg_id.namespace or pkg_id.name
        specs = self.cache.get_or_load(pod_name, pkg_id.version, self._load_specs)
        if not specs:
            return Package(id=pkg_id)

        full_name = join_namespace(pkg_id.namespace, pkg_id.name)
        spec = next((s for s in specs if s.identifier.name == full_name), specs[0])

        return Package(
            id=pkg_id,
            declared_licenses=frozenset([spec.declared_license]) if spec.declared_license else frozenset(),
            description=spec.description,
            homepage_url=spec.homepage_url,
            binary_artifact=spec.remote_artifact,
            vcs=spec.vcs,
        )

    def _load_specs(self, pod_name: str, version: str) -> Optional[List[PodSpec]]:
        try:
            content = self.source.fetch(pod_name, version)
        except (OSError, ValueError) as e:
            self._add_issue(f"Failed to read podspec of '{pod_name}' {version}: {e}", e)
            return None

        if content is None:
            self._add_issue(f"No podspec found for '{pod_name}' {version}.")
            return None

        try:
            return PodSpec.from_json(content)
        except ValueError as e:
            self._add_issue(f"Invalid podspec of '{pod_name}' {version}: {e}", e)
            return None

    def _add_issue(self, message: str, exception: Optional[Exception] = None) -> None:
        self.issues.append(
            create_and_log_issue(
                "dependency_resolver", message, Severity.ERROR, ErrorCategory.RESOLUTION, exception
            )
        )


@dataclass
class ProjectAnalyzerResult:
    """Packages, direct dependency graph and issues of one analyzed project."""

    project_id: Identifier
    definition_file: str
    packages: Dict[Identifier, Package] = field(default_factory=dict)
    dependencies: FrozenSet[PackageReference] = frozenset()
    issues: List[Issue] = field(default_factory=list)

    @property
    def sorted_packages(self) -> List[Package]:
        return [self.packages[pkg_id] for pkg_id in sorted(self.packages)]

    @property
    def has_errors(self) -> bool:
        return any(issue.severity == Severity.ERROR for issue in self.issues)

    def to_dict(self) -> dict:
        return {
            "project": {
                "id": self.project_id.to_coordinates(),
                "definition_file": self.definition_file,
                "dependencies": [dep.to_dict() for dep in sorted(self.dependencies)],
            },
            "packages": [package.to_dict() for package in self.sorted_packages],
            "issues": [issue.to_dict() for issue in self.issues],
        }


def analyze_podfile_lock(
    file_path: str,
    source: Optional[PodSpecSource] = None,
    cache: Optional[PodSpecCache] = None,
) -> ProjectAnalyzerResult:
    """
    Analyze one Podfile.lock: resolve its graph and build its packages.

    Raises:
        ValueError: If the file cannot be read or is not a lock file
    """
    config = get_config()
    package_type = config.analyzer.package_type
    start = time.time()

    tables = read_lock_file(file_path)
    log_resolution_start(file_path, len(tables.pods), len(tables.dependencies))

    pods, pod_issues = parse_lock_table(tables.pods, "PODS", package_type)
    dependencies, dependency_issues = parse_lock_table(tables.dependencies, "DEPENDENCIES", package_type)
    resolved = resolve_lockfile(pods, dependencies, config.analyzer.max_dependency_depth)

    builder = PackageBuilder(source, cache)
    packages = builder.build(list(resolved.pods) + sorted(resolved.dependencies))

    path = Path(file_path).resolve()
    result = ProjectAnalyzerResult(
        project_id=Identifier(package_type, "", path.parent.name, ""),
        definition_file=path.name,
        packages=packages,
        dependencies=resolved.dependencies,
        issues=pod_issues + dependency_issues + resolved.issues + builder.issues,
    )

    log_resolution_complete(
        file_path, int((time.time() - start) * 1000), len(result.packages), len(result.issues)
    )
    return result
