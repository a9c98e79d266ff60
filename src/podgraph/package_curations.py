"""
Package curations for podgraph.

A curation corrects the metadata of a package family, optionally restricted to
one version or a version range. Curations are loaded once from YAML or JSON
files and matched against resolved identifiers in load order.
"""

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

import semantic_version

from .dependency import Identifier
from .error_handling import ErrorCategory, get_error_handler, log_parsing_error
from .package import Package, RemoteArtifact, VcsInfo, VcsType
from .parsers import expand_record_paths, read_record_file
from .structured_logging import log_curations_applied, log_curations_loaded

_RANGE_OPERATORS = ("^", "~", "<", ">", "=", "*", ",", "|")

# Ivy / Maven style intervals: [1.0,2.0], (1.0,2.0), [1.0,), (,2.0]
_IVY_RANGE_PATTERN = re.compile(r"^\s*([\[(])\s*([^,\s]*)\s*,\s*([^,\s]*)\s*([\])])\s*$")


class PredicateKind(Enum):
    """How a curation restricts the versions it applies to."""

    NONE = "none"
    EXACT = "exact"
    RANGE = "range"


def _ivy_to_simple_spec(version_range: str) -> Optional[str]:
    match = _IVY_RANGE_PATTERN.match(version_range)
    if not match:
        return None

    opening, lower, upper, closing = match.groups()
    if not lower and not upper:
        return None

    clauses = []
    if lower:
        clauses.append(f"{'>=' if opening == '[' else '>'}{lower}")
    if upper:
        clauses.append(f"{'<=' if closing == ']' else '<'}{upper}")
    return ",".join(clauses)


@dataclass(frozen=True)
class VersionPredicate:
    """The version part of a curation id, classified once at construction."""

    text: str = ""
    kind: PredicateKind = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "kind", self.classify(self.text))

    @staticmethod
    def classify(text: str) -> PredicateKind:
        version = (text or "").strip()
        if not version:
            return PredicateKind.NONE
        if version[0] in "[(" or " - " in version:
            return PredicateKind.RANGE
        if any(operator in version for operator in _RANGE_OPERATORS):
            return PredicateKind.RANGE
        return PredicateKind.EXACT

    def _parse_range(self):
        """Parse the range text, or return None when it is not understood."""
        version_range = self.text.strip()

        simple = _ivy_to_simple_spec(version_range)
        if simple is not None:
            try:
                return semantic_version.SimpleSpec(simple)
            except ValueError:
                return None

        try:
            return semantic_version.NpmSpec(version_range)
        except ValueError:
            try:
                return semantic_version.SimpleSpec(version_range)
            except ValueError:
                return None

    def matches(self, version: str) -> bool:
        if self.kind is PredicateKind.NONE:
            return True
        if self.kind is PredicateKind.EXACT:
            return version == self.text

        spec = self._parse_range()
        if spec is None:
            get_error_handler().debug(
                ErrorCategory.CURATION,
                f"Unparsable version range '{self.text}' matches no version",
                "package_curations",
                "matches",
            )
            return False

        try:
            parsed = semantic_version.Version(version)
        except ValueError:
            get_error_handler().debug(
                ErrorCategory.CURATION,
                f"Version '{version}' is not a semantic version and cannot satisfy range '{self.text}'",
                "package_curations",
                "matches",
            )
            return False

        return spec.match(parsed)


@dataclass(frozen=True)
class VcsInfoCurationData:
    """VCS fields a curation may override. ``None`` leaves a field untouched."""

    type: Optional[VcsType] = None
    url: Optional[str] = None
    revision: Optional[str] = None
    path: Optional[str] = None

    def apply(self, vcs: VcsInfo) -> VcsInfo:
        return VcsInfo(
            type=self.type if self.type is not None else vcs.type,
            url=self.url if self.url is not None else vcs.url,
            revision=self.revision if self.revision is not None else vcs.revision,
            path=self.path if self.path is not None else vcs.path,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VcsInfoCurationData":
        if not isinstance(data, dict):
            raise ValueError("'vcs' must be a mapping")
        return cls(
            type=VcsType.from_string(data["type"]) if data.get("type") is not None else None,
            url=_optional_str(data, "url"),
            revision=_optional_str(data, "revision"),
            path=_optional_str(data, "path"),
        )


def _optional_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    return None if value is None else str(value)


def _optional_str_set(data: Dict[str, Any], key: str) -> Optional[FrozenSet[str]]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, str):
        return frozenset([value])
    if not isinstance(value, list):
        raise ValueError(f"'{key}' must be a string or a list of strings")
    return frozenset(str(item) for item in value)


@dataclass(frozen=True)
class PackageCurationData:
    """Metadata overrides carried by a curation."""

    comment: Optional[str] = None
    concluded_license: Optional[str] = None
    declared_licenses: Optional[FrozenSet[str]] = None
    authors: Optional[FrozenSet[str]] = None
    description: Optional[str] = None
    homepage_url: Optional[str] = None
    binary_artifact: Optional[RemoteArtifact] = None
    source_artifact: Optional[RemoteArtifact] = None
    vcs: Optional[VcsInfoCurationData] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PackageCurationData":
        if not isinstance(data, dict):
            raise ValueError("'curations' must be a mapping")

        binary_artifact = data.get("binary_artifact")
        source_artifact = data.get("source_artifact")
        vcs = data.get("vcs")

        return cls(
            comment=_optional_str(data, "comment"),
            concluded_license=_optional_str(data, "concluded_license"),
            declared_licenses=_optional_str_set(data, "declared_licenses"),
            authors=_optional_str_set(data, "authors"),
            description=_optional_str(data, "description"),
            homepage_url=_optional_str(data, "homepage_url"),
            binary_artifact=RemoteArtifact.from_dict(binary_artifact) if binary_artifact is not None else None,
            source_artifact=RemoteArtifact.from_dict(source_artifact) if source_artifact is not None else None,
            vcs=VcsInfoCurationData.from_dict(vcs) if vcs is not None else None,
        )


@dataclass(frozen=True)
class CuratedPackage:
    """A package together with the curations folded into it, in order."""

    package: Package
    curations: Tuple["PackageCuration", ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        result = self.package.to_dict()
        result["curations"] = [
            {"id": curation.id.to_coordinates(), "comment": curation.data.comment}
            for curation in self.curations
        ]
        return result


@dataclass(frozen=True)
class PackageCuration:
    """A metadata correction scoped to a package family and a version predicate."""

    id: Identifier
    data: PackageCurationData
    predicate: VersionPredicate = field(init=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "predicate", VersionPredicate(self.id.version))

    def is_applicable(self, pkg_id: Identifier) -> bool:
        """
        Check whether this curation covers ``pkg_id``.

        Type, namespace and name must be equal; the version must satisfy the
        curation's version predicate.
        """
        if self.id.identity != pkg_id.identity:
            return False
        return self.predicate.matches(pkg_id.version)

    def apply(self, target: CuratedPackage) -> CuratedPackage:
        """
        Return ``target`` with every field this curation sets overridden.

        Raises:
            ValueError: If the curation does not apply to the package
        """
        package = target.package
        if not self.is_applicable(package.id):
            raise ValueError(
                f"Package curation identifier '{self.id}' does not match package identifier '{package.id}'."
            )

        data = self.data
        curated = replace(
            package,
            concluded_license=(
                data.concluded_license if data.concluded_license is not None else package.concluded_license
            ),
            declared_licenses=(
                data.declared_licenses if data.declared_licenses is not None else package.declared_licenses
            ),
            authors=data.authors if data.authors is not None else package.authors,
            description=data.description if data.description is not None else package.description,
            homepage_url=data.homepage_url if data.homepage_url is not None else package.homepage_url,
            binary_artifact=data.binary_artifact if data.binary_artifact is not None else package.binary_artifact,
            source_artifact=data.source_artifact if data.source_artifact is not None else package.source_artifact,
            vcs=data.vcs.apply(package.vcs) if data.vcs is not None else package.vcs,
        )
        return CuratedPackage(package=curated, curations=target.curations + (self,))

    @classmethod
    def from_dict(cls, record: Dict[str, Any]) -> "PackageCuration":
        """
        Build a curation from ``{"id": "Type:namespace:name:version", "curations": {...}}``.

        Raises:
            ValueError: If the record does not have that shape
        """
        if not isinstance(record, dict):
            raise ValueError(f"Curation record must be a mapping, got {type(record).__name__}")
        if "id" not in record:
            raise ValueError("Curation record has no 'id'")

        return cls(
            id=Identifier.from_coordinates(record["id"]),
            data=PackageCurationData.from_dict(record.get("curations") or {}),
        )


def curate_package(package: Package, curations: Iterable[PackageCuration]) -> CuratedPackage:
    """Fold ``curations`` into ``package`` in order; later curations win."""
    curated = CuratedPackage(package=package)
    for curation in curations:
        curated = curation.apply(curated)

    if curated.curations:
        log_curations_applied(package.id.to_coordinates(), len(curated.curations))
    return curated


class FilePackageCurationProvider:
    """
    Curations loaded from YAML or JSON files.

    Files are read in the given order, with directories expanded to their
    record files. A file that cannot be read and a record that cannot be
    validated are each skipped with a warning.
    """

    def __init__(self, paths: Iterable[str]):
        self.error_handler = get_error_handler()
        self.failed_sources: List[str] = []
        self.package_curations: List[PackageCuration] = []

        files = expand_record_paths(paths)
        for file_path in files:
            self.package_curations.extend(self._load_file(str(file_path)))

        log_curations_loaded(len(files), len(self.package_curations), len(self.failed_sources))

    def _load_file(self, file_path: str) -> List[PackageCuration]:
        try:
            records = read_record_file(file_path)
        except ValueError as e:
            self.failed_sources.append(file_path)
            log_parsing_error(
                f"Failed parsing package curations: {e}",
                "package_curations",
                "_load_file",
                file_path=file_path,
                exception=e,
                category=ErrorCategory.CURATION,
            )
            return []

        curations = []
        for index, record in enumerate(records):
            try:
                curations.append(PackageCuration.from_dict(record))
            except ValueError as e:
                log_parsing_error(
                    f"Skipping package curation #{index + 1}: {e}",
                    "package_curations",
                    "_load_file",
                    file_path=file_path,
                    exception=e,
                    category=ErrorCategory.CURATION,
                )
        return curations

    def get_curations_for(self, pkg_id: Identifier) -> List[PackageCuration]:
        """Return every applicable curation, in load order."""
        return [curation for curation in self.package_curations if curation.is_applicable(pkg_id)]

    def curate(self, package: Package) -> CuratedPackage:
        return curate_package(package, self.get_curations_for(package.id))
