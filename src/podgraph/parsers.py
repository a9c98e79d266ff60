import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

import yaml

from .cli_config import get_config
from .dependency import Identifier, PackageReference, join_namespace
from .error_handling import (
    ErrorCategory,
    Issue,
    MalformedEntryError,
    Severity,
    create_and_log_issue,
    get_error_handler,
)
from .package import (
    EMPTY_REMOTE_ARTIFACT,
    EMPTY_VCS_INFO,
    RemoteArtifact,
    VcsInfo,
    VcsType,
)

POD_TYPE = "Pod"

# A pinned version inside parentheses, e.g. "(0.27.3)". Operator constraints
# such as "(= 0.27.3)" or "(~> 3.0)" contain whitespace and do not match.
_VERSION_PATTERN = re.compile(r"\((\S+)\)")


def _validate_file_path(file_path: str) -> Path:
    """
    Validate a path before reading it.

    Args:
        file_path: The file path to validate

    Returns:
        Path: Validated and resolved path object

    Raises:
        ValueError: If path is invalid or unsafe
    """
    if not file_path or not isinstance(file_path, str):
        raise ValueError("File path must be a non-empty string")

    try:
        path = Path(file_path).resolve()
    except (OSError, ValueError) as e:
        raise ValueError(f"Invalid file path: {e}")

    if not path.exists():
        raise ValueError(f"File does not exist: {path}")

    if not path.is_file():
        raise ValueError(f"Path is not a file: {path}")

    config = get_config()
    allowed_extensions = set(config.security.allowed_file_extensions)
    if path.suffix.lower() not in allowed_extensions:
        raise ValueError(f"File type not allowed: {path.suffix}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise ValueError(f"Cannot access file: {e}")

    max_file_size = config.security.max_file_size_bytes
    if file_size > max_file_size:
        raise ValueError(f"File too large: {file_size} bytes (max: {max_file_size})")

    return path


def _safe_read_file(file_path: str) -> str:
    """
    Read a validated file as UTF-8 text.

    Raises:
        ValueError: If file cannot be read safely
    """
    validated_path = _validate_file_path(file_path)
    try:
        with open(validated_path, encoding="utf-8") as f:
            return f.read()
    except UnicodeDecodeError:
        raise ValueError("File contains invalid UTF-8 characters")
    except PermissionError:
        raise ValueError("Permission denied reading file")
    except OSError as e:
        raise ValueError(f"Error reading file: {e}")


def split_entry_text(text: str) -> Tuple[str, str, str, str]:
    """
    Decompose ``"Namespace/Name (constraint)"``.

    Returns:
        Tuple of (namespace, name, version, constraint). ``constraint`` is the
        raw parenthesized text, ``version`` the pinned version found in it or
        an empty string.
    """
    name_part, separator, raw_constraint = text.partition(" (")
    name_part = name_part.strip()

    constraint = f"({raw_constraint}".strip() if separator else ""
    match = _VERSION_PATTERN.search(constraint) if constraint else None
    version = match.group(1) if match else ""

    segments = name_part.split("/")
    if len(segments) >= 2:
        namespace = segments[0]
        name = "/".join(segments[1:])
    else:
        namespace = ""
        name = name_part

    return namespace, name, version, constraint


def parse_lock_entry(entry: Any, package_type: str = POD_TYPE) -> PackageReference:
    """
    Parse one lock-file entry into a ``PackageReference``.

    An entry is either a string ``"Namespace/Name (constraint)"`` or a mapping
    with a single such key whose value lists child entries of the same shape.

    Raises:
        MalformedEntryError: If the entry has neither shape or a blank name
    """
    if isinstance(entry, dict):
        if len(entry) != 1:
            raise MalformedEntryError(entry, "a mapping entry must have exactly one key")
        text, children = next(iter(entry.items()))
        if children is None:
            children = []
        if not isinstance(children, list):
            raise MalformedEntryError(entry, "child entries must be a list")
        dependencies = frozenset(parse_lock_entry(child, package_type) for child in children)
    elif isinstance(entry, str):
        text = entry
        dependencies = frozenset()
    else:
        raise MalformedEntryError(entry, f"unsupported entry type {type(entry).__name__}")

    if not isinstance(text, str):
        raise MalformedEntryError(entry, "entry name must be a string")

    namespace, name, version, constraint = split_entry_text(text)
    if not name:
        raise MalformedEntryError(entry, "entry has no package name")

    if constraint and not version:
        get_error_handler().debug(
            ErrorCategory.PARSING,
            f"No pinned version in constraint '{constraint}' of '{text}'",
            "parsers",
            "parse_lock_entry",
        )

    return PackageReference(
        id=Identifier(type=package_type, namespace=namespace, name=name, version=version),
        dependencies=dependencies,
        constraint=constraint,
    )


def parse_lock_table(
    entries: Optional[Iterable[Any]], table_name: str, package_type: str = POD_TYPE
) -> Tuple[List[PackageReference], List[Issue]]:
    """
    Parse every entry of a lock-file table.

    Malformed entries are skipped and reported as warning issues.
    """
    references: List[PackageReference] = []
    issues: List[Issue] = []

    for entry in entries or []:
        try:
            references.append(parse_lock_entry(entry, package_type))
        except MalformedEntryError as e:
            issues.append(
                create_and_log_issue(
                    "parsers",
                    f"Skipping entry of table {table_name}: {e}",
                    Severity.WARNING,
                    ErrorCategory.PARSING,
                )
            )

    return references, issues


@dataclass
class LockTables:
    """The raw PODS and DEPENDENCIES tables of a lock file."""

    pods: List[Any] = field(default_factory=list)
    dependencies: List[Any] = field(default_factory=list)


def read_lock_tables(content: str) -> LockTables:
    """
    Read the ``PODS`` and ``DEPENDENCIES`` tables from Podfile.lock YAML.

    Raises:
        ValueError: If the content is not valid YAML or lacks the tables
    """
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        get_error_handler().error(
            ErrorCategory.PARSING,
            f"Invalid YAML format in lock file: {e}",
            "parsers",
            "read_lock_tables",
            exception=e,
        )
        raise ValueError(f"Invalid YAML format: {e}")

    if not isinstance(data, dict):
        raise ValueError("Lock file must contain a YAML mapping")

    pods = data.get("PODS") or []
    dependencies = data.get("DEPENDENCIES") or []
    if not isinstance(pods, list) or not isinstance(dependencies, list):
        raise ValueError("PODS and DEPENDENCIES must be YAML sequences")

    return LockTables(pods=pods, dependencies=dependencies)


def read_lock_file(file_path: str) -> LockTables:
    """Validate, read and split a Podfile.lock file into its tables."""
    return read_lock_tables(_safe_read_file(file_path))


@dataclass(frozen=True)
class PodSubSpec:
    name: str
    dependencies: FrozenSet[str] = frozenset()
    overrides: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "PodSubSpec":
        if not isinstance(data, dict) or not isinstance(data.get("name"), str):
            raise ValueError("A subspec must be an object with a 'name'")

        raw_dependencies = data.get("dependencies") or []
        # Real podspecs map dependency names to constraint lists.
        if isinstance(raw_dependencies, dict):
            dependencies = frozenset(raw_dependencies.keys())
        else:
            dependencies = frozenset(str(dep) for dep in raw_dependencies)

        overrides = {key: data[key] for key in ("license", "homepage", "summary", "source") if key in data}
        return cls(name=data["name"], dependencies=dependencies, overrides=overrides)


@dataclass(frozen=True)
class PodSpec:
    """Podspec-level metadata of one pod or subspec."""

    namespace: Optional[str]
    name: str
    version: str
    homepage_url: str = ""
    declared_license: str = ""
    description: str = ""
    vcs: VcsInfo = EMPTY_VCS_INFO
    remote_artifact: RemoteArtifact = EMPTY_REMOTE_ARTIFACT
    dependencies: FrozenSet[str] = frozenset()

    @property
    def identifier(self) -> Identifier:
        return Identifier(POD_TYPE, "", join_namespace(self.namespace or "", self.name), self.version)

    def merge(self, other: "PodSpec") -> "PodSpec":
        """
        Complete this spec from ``other``: every empty field takes the other's value.

        Raises:
            ValueError: If the specs describe different pods
        """
        if (self.namespace, self.name, self.version) != (other.namespace, other.name, other.version):
            raise ValueError("Cannot merge specs for different pods.")

        return PodSpec(
            namespace=self.namespace,
            name=self.name,
            version=self.version,
            homepage_url=self.homepage_url or other.homepage_url,
            declared_license=self.declared_license or other.declared_license,
            description=self.description or other.description,
            vcs=self.vcs if not self.vcs.is_empty else other.vcs,
            remote_artifact=self.remote_artifact if not self.remote_artifact.is_empty else other.remote_artifact,
            dependencies=self.dependencies or other.dependencies,
        )

    @classmethod
    def from_json(cls, content: str) -> List["PodSpec"]:
        """
        Parse podspec JSON into the root spec followed by one spec per subspec.

        Subspecs inherit license, homepage, summary and source from the root
        spec unless they declare their own.

        Raises:
            ValueError: If the JSON is invalid or lacks name/version
        """
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON format in podspec: {e}")

        if not isinstance(data, dict):
            raise ValueError("Podspec JSON must be an object")

        name = data.get("name")
        version = data.get("version")
        if not isinstance(name, str) or not isinstance(version, str):
            raise ValueError("Podspec JSON requires string 'name' and 'version'")

        root = PodSpec(namespace=None, name=name, version=version, **_metadata_fields(data))

        specs = [root]
        for subspec_data in data.get("subspecs") or []:
            subspec = PodSubSpec.from_json(subspec_data)
            own = PodSpec(
                namespace=name,
                name=subspec.name,
                version=version,
                dependencies=subspec.dependencies,
                **_metadata_fields(subspec.overrides),
            )
            specs.append(own.merge(_as_subspec(root, subspec.name)))

        return specs


def _as_subspec(root: PodSpec, subspec_name: str) -> PodSpec:
    return PodSpec(
        namespace=root.name,
        name=subspec_name,
        version=root.version,
        homepage_url=root.homepage_url,
        declared_license=root.declared_license,
        description=root.description,
        vcs=root.vcs,
        remote_artifact=root.remote_artifact,
    )


def _metadata_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    source = data.get("source") or {}
    if not isinstance(source, dict):
        source = {}

    vcs = EMPTY_VCS_INFO
    git_url = source.get("git")
    if isinstance(git_url, str) and git_url:
        vcs = VcsInfo(type=VcsType.GIT, url=git_url, revision=str(source.get("tag") or ""))

    remote_artifact = EMPTY_REMOTE_ARTIFACT
    http_url = source.get("http")
    if isinstance(http_url, str) and http_url:
        remote_artifact = RemoteArtifact(url=http_url)

    license_node = data.get("license")
    if isinstance(license_node, dict):
        declared_license = str(license_node.get("type") or "")
    else:
        declared_license = str(license_node or "")

    return {
        "homepage_url": str(data.get("homepage") or ""),
        "declared_license": declared_license,
        "description": str(data.get("summary") or ""),
        "vcs": vcs,
        "remote_artifact": remote_artifact,
    }


def read_podspec_file(file_path: str) -> str:
    """
    Validate and read a ``.podspec.json`` file.

    Raises:
        ValueError: If the file fails validation or is not UTF-8 text
    """
    return _safe_read_file(file_path)


def parse_podspec_file(file_path: str) -> List[PodSpec]:
    """Validate, read and parse a ``.podspec.json`` file."""
    try:
        return PodSpec.from_json(read_podspec_file(file_path))
    except ValueError as e:
        get_error_handler().error(
            ErrorCategory.PARSING,
            f"Error processing podspec: {e}",
            "parsers",
            "parse_podspec_file",
            exception=e,
            source_file=Path(file_path).name,
        )
        raise


RECORD_FILE_EXTENSIONS = (".yml", ".yaml", ".json")


def expand_record_paths(paths: Iterable[str]) -> List[Path]:
    """
    Expand files and directories into the list of record files to load.

    A directory contributes its YAML and JSON files in sorted order; the
    relative order of the given paths is kept.
    """
    files: List[Path] = []
    for raw_path in paths:
        path = Path(raw_path)
        if path.is_dir():
            files.extend(
                sorted(
                    child
                    for child in path.iterdir()
                    if child.is_file() and child.suffix.lower() in RECORD_FILE_EXTENSIONS
                )
            )
        else:
            files.append(path)
    return files


def read_record_file(file_path: str) -> List[Any]:
    """
    Read a YAML or JSON file holding a list of records.

    An empty file yields no records.

    Raises:
        ValueError: If the file cannot be read or does not hold a list
    """
    content = _safe_read_file(file_path)

    try:
        if Path(file_path).suffix.lower() == ".json":
            data = json.loads(content) if content.strip() else None
        else:
            data = yaml.safe_load(content)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ValueError(f"Invalid record file format: {e}")

    if data is None:
        return []
    if not isinstance(data, list):
        raise ValueError("Record file must contain a list of records")
    return data
