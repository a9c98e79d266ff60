"""
Package configurations for podgraph.

A package configuration attaches path excludes and license finding curations
to one package, scoped to either a source artifact or a VCS checkout. Which
configurations apply is decided from the package identifier and the concrete
provenance of the fetched sources.
"""

import fnmatch
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .dependency import Identifier
from .error_handling import (
    AmbiguousCurationScopeError,
    ErrorCategory,
    get_error_handler,
    log_parsing_error,
)
from .package import (
    ArtifactProvenance,
    Provenance,
    RepositoryProvenance,
    VcsInfo,
    VcsType,
    replace_credentials_in_uri,
)
from .parsers import expand_record_paths, read_record_file
from .structured_logging import get_configuration_logger, log_configuration_match


class PathExcludeReason(Enum):
    """Why a path is excluded from license and copyright findings."""

    BUILD_TOOL_OF = "BUILD_TOOL_OF"
    DATA_FILE_OF = "DATA_FILE_OF"
    DOCUMENTATION_OF = "DOCUMENTATION_OF"
    EXAMPLE_OF = "EXAMPLE_OF"
    OPTIONAL_COMPONENT_OF = "OPTIONAL_COMPONENT_OF"
    OTHER = "OTHER"
    PROVIDED_BY = "PROVIDED_BY"
    TEST_OF = "TEST_OF"
    TEST_TOOL_OF = "TEST_TOOL_OF"


class LicenseFindingCurationReason(Enum):
    """Why a detected license finding is corrected."""

    CODE = "CODE"
    DATA_OF = "DATA_OF"
    DOCUMENTATION_OF = "DOCUMENTATION_OF"
    INCORRECT = "INCORRECT"
    NOT_DETECTED = "NOT_DETECTED"
    REFERENCE = "REFERENCE"


def _parse_enum(enum_type, value: Any, field_name: str):
    try:
        return enum_type(str(value).strip().upper())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValueError(f"Invalid {field_name} '{value}', expected one of: {allowed}")


def _require_str(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"'{key}' must be a non-empty string")
    return value


def _optional_list(data: Dict[str, Any], key: str) -> List[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{key}' must be a list")
    return value


@dataclass(frozen=True)
class PathExclude:
    """A glob pattern of paths to exclude, with the reason for excluding them."""

    pattern: str
    reason: PathExcludeReason
    comment: str = ""

    def matches(self, path: str) -> bool:
        return fnmatch.fnmatchcase(path, self.pattern)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PathExclude":
        if not isinstance(data, dict):
            raise ValueError("A path exclude must be a mapping")
        return cls(
            pattern=_require_str(data, "pattern"),
            reason=_parse_enum(PathExcludeReason, data.get("reason"), "path exclude reason"),
            comment=str(data.get("comment") or ""),
        )


def _parse_start_lines(value: Any) -> Tuple[int, ...]:
    if value is None or value == "":
        return ()
    if isinstance(value, int):
        return (value,)
    if isinstance(value, str):
        items = [item.strip() for item in value.split(",") if item.strip()]
    elif isinstance(value, list):
        items = value
    else:
        raise ValueError("'start_lines' must be a number, a comma separated string or a list")

    try:
        return tuple(int(item) for item in items)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid 'start_lines' value: {value!r}")


@dataclass(frozen=True)
class LicenseFindingCuration:
    """Replaces a detected license at matching locations with a concluded one."""

    path: str
    concluded_license: str
    reason: LicenseFindingCurationReason
    start_lines: Tuple[int, ...] = ()
    line_count: Optional[int] = None
    detected_license: Optional[str] = None
    comment: str = ""

    def matches(self, path: str, start_line: int, line_count: int, detected_license: str) -> bool:
        """Check whether a license finding at the given location is covered."""
        if not fnmatch.fnmatchcase(path, self.path):
            return False
        if self.start_lines and start_line not in self.start_lines:
            return False
        if self.line_count is not None and line_count != self.line_count:
            return False
        return self.detected_license is None or detected_license == self.detected_license

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LicenseFindingCuration":
        if not isinstance(data, dict):
            raise ValueError("A license finding curation must be a mapping")

        line_count = data.get("line_count")
        if line_count is not None and not isinstance(line_count, int):
            raise ValueError("'line_count' must be a number")

        detected = data.get("detected_license")
        return cls(
            path=_require_str(data, "path"),
            concluded_license=_require_str(data, "concluded_license"),
            reason=_parse_enum(LicenseFindingCurationReason, data.get("reason"), "license finding curation reason"),
            start_lines=_parse_start_lines(data.get("start_lines")),
            line_count=line_count,
            detected_license=str(detected) if detected is not None else None,
            comment=str(data.get("comment") or ""),
        )


@dataclass(frozen=True)
class VcsMatcher:
    """
    Matches a VCS checkout by type, URL, resolved revision and, for GitRepo
    manifests, the path inside the checkout.

    Raises:
        AmbiguousCurationScopeError: If url or revision is blank, or the path
            is missing for GitRepo or given for any other type
    """

    type: VcsType
    url: str
    revision: str
    path: Optional[str] = None

    def __post_init__(self):
        if not self.url.strip() or not self.revision.strip():
            raise AmbiguousCurationScopeError("A VCS matcher requires a non-blank url and revision.")

        if self.type is VcsType.GIT_REPO:
            if self.path is None or not self.path.strip():
                raise AmbiguousCurationScopeError(
                    "Matching against Git-Repo VCS info requires a non-blank path."
                )
        elif self.path is not None:
            raise AmbiguousCurationScopeError(
                "A path must only be specified for matching Git-Repo VCS info."
            )

    def matches(self, vcs_info: VcsInfo, resolved_revision: str) -> bool:
        if self.type is not vcs_info.type:
            return False
        if replace_credentials_in_uri(self.url) != replace_credentials_in_uri(vcs_info.url):
            return False
        if self.path is not None and self.path != vcs_info.path:
            return False
        return self.revision == resolved_revision

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VcsMatcher":
        if not isinstance(data, dict):
            raise ValueError("'vcs' must be a mapping")
        path = data.get("path")
        return cls(
            type=VcsType.from_string(data.get("type")),
            url=str(data.get("url") or ""),
            revision=str(data.get("revision") or ""),
            path=str(path) if path is not None else None,
        )


@dataclass(frozen=True)
class PackageConfiguration:
    """
    Path excludes and license finding curations for one package.

    Exactly one of ``source_artifact_url`` and ``vcs`` must be set.
    """

    id: Identifier
    source_artifact_url: Optional[str] = None
    vcs: Optional[VcsMatcher] = None
    path_excludes: Tuple[PathExclude, ...] = ()
    license_finding_curations: Tuple[LicenseFindingCuration, ...] = ()

    def __post_init__(self):
        if (self.source_artifact_url is None) == (self.vcs is None):
            raise AmbiguousCurationScopeError(
                "A package configuration can either apply to a source artifact or to a VCS, "
                "not to neither or both."
            )
        object.__setattr__(self, "path_excludes", tuple(self.path_excludes))
        object.__setattr__(self, "license_finding_curations", tuple(self.license_finding_curations))

    def matches(self, other_id: Identifier, provenance: Provenance) -> bool:
        if self.id != other_id:
            return False

        if isinstance(provenance, ArtifactProvenance):
            return self.source_artifact_url is not None and self.source_artifact_url == provenance.source_artifact.url
        if isinstance(provenance, RepositoryProvenance):
            return self.vcs is not None and self.vcs.matches(provenance.vcs_info, provenance.resolved_revision)
        return False

    def is_path_excluded(self, path: str) -> bool:
        return any(path_exclude.matches(path) for path_exclude in self.path_excludes)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"id": self.id.to_coordinates()}
        if self.source_artifact_url is not None:
            result["source_artifact_url"] = self.source_artifact_url
        if self.vcs is not None:
            result["vcs"] = {
                "type": self.vcs.type.value,
                "url": replace_credentials_in_uri(self.vcs.url),
                "revision": self.vcs.revision,
            }
            if self.vcs.path is not None:
                result["vcs"]["path"] = self.vcs.path
        result["path_excludes"] = [
            {"pattern": exclude.pattern, "reason": exclude.reason.value, "comment": exclude.comment}
            for exclude in self.path_excludes
        ]
        result["license_finding_curations"] = [
            {
                "path": curation.path,
                "start_lines": list(curation.start_lines),
                "line_count": curation.line_count,
                "detected_license": curation.detected_license,
                "concluded_license": curation.concluded_license,
                "reason": curation.reason.value,
                "comment": curation.comment,
            }
            for curation in self.license_finding_curations
        ]
        return result

    @classmethod
    def from_dict(cls, record: Dict[str, Any]) -> "PackageConfiguration":
        """
        Build a configuration from a deserialized record.

        Raises:
            ValueError: If a field is missing or invalid
            AmbiguousCurationScopeError: If the scope is not exactly one of
                ``source_artifact_url`` and ``vcs``
        """
        if not isinstance(record, dict):
            raise ValueError(f"Package configuration must be a mapping, got {type(record).__name__}")
        if "id" not in record:
            raise ValueError("Package configuration has no 'id'")

        vcs_data = record.get("vcs")
        source_artifact_url = record.get("source_artifact_url")
        return cls(
            id=Identifier.from_coordinates(record["id"]),
            source_artifact_url=str(source_artifact_url) if source_artifact_url is not None else None,
            vcs=VcsMatcher.from_dict(vcs_data) if vcs_data is not None else None,
            path_excludes=tuple(PathExclude.from_dict(item) for item in _optional_list(record, "path_excludes")),
            license_finding_curations=tuple(
                LicenseFindingCuration.from_dict(item) for item in _optional_list(record, "license_finding_curations")
            ),
        )


class FilePackageConfigurationProvider:
    """
    Package configurations loaded from YAML or JSON files.

    Invalid files and invalid records are skipped with a warning; the
    remaining records keep their load order.
    """

    def __init__(self, paths: Iterable[str]):
        self.error_handler = get_error_handler()
        self.failed_sources: List[str] = []
        self.package_configurations: List[PackageConfiguration] = []

        files = expand_record_paths(paths)
        for file_path in files:
            self.package_configurations.extend(self._load_file(str(file_path)))

        get_configuration_logger().info(
            "configurations_loaded",
            source_count=len(files),
            configuration_count=len(self.package_configurations),
            failed_sources=len(self.failed_sources),
        )

    def _load_file(self, file_path: str) -> List[PackageConfiguration]:
        try:
            records = read_record_file(file_path)
        except ValueError as e:
            self.failed_sources.append(file_path)
            log_parsing_error(
                f"Failed parsing package configurations: {e}",
                "package_configuration",
                "_load_file",
                file_path=file_path,
                exception=e,
                category=ErrorCategory.CONFIGURATION,
            )
            return []

        configurations = []
        for index, record in enumerate(records):
            try:
                configurations.append(PackageConfiguration.from_dict(record))
            except ValueError as e:
                log_parsing_error(
                    f"Skipping package configuration #{index + 1}: {e}",
                    "package_configuration",
                    "_load_file",
                    file_path=file_path,
                    exception=e,
                    category=ErrorCategory.CONFIGURATION,
                )
        return configurations

    def get_package_configurations(self, pkg_id: Identifier, provenance: Provenance) -> List[PackageConfiguration]:
        """Return every configuration matching the package and provenance, in load order."""
        matching = [
            configuration
            for configuration in self.package_configurations
            if configuration.matches(pkg_id, provenance)
        ]
        log_configuration_match(pkg_id.to_coordinates(), provenance.describe(), len(matching))
        return matching

    def get_package_configuration(self, pkg_id: Identifier, provenance: Provenance) -> Optional[PackageConfiguration]:
        """
        Return the single matching configuration.

        When several configurations match, the first loaded one is returned
        and a warning is logged.
        """
        matching = self.get_package_configurations(pkg_id, provenance)
        if len(matching) > 1:
            self.error_handler.warning(
                ErrorCategory.CONFIGURATION,
                f"{len(matching)} package configurations match '{pkg_id}', using the first one",
                "package_configuration",
                "get_package_configuration",
            )
        return matching[0] if matching else None
