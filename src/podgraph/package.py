"""
Package metadata model.

Describes where a package comes from (VCS checkout or source artifact) and the
metadata that curations can correct.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional
from urllib.parse import urlsplit, urlunsplit

from .dependency import Identifier


class VcsType(Enum):
    """Version control systems a checkout can come from."""

    GIT = "Git"
    GIT_REPO = "GitRepo"
    MERCURIAL = "Mercurial"
    SUBVERSION = "Subversion"
    CVS = "CVS"
    UNKNOWN = ""

    @classmethod
    def from_string(cls, value: Optional[str]) -> "VcsType":
        """Parse a VCS type name case-insensitively; unknown names map to UNKNOWN."""
        if isinstance(value, VcsType):
            return value
        if value is not None and not isinstance(value, str):
            raise ValueError(f"VCS type must be a string, not {type(value).__name__}")
        normalized = (value or "").strip().lower().replace("-", "").replace("_", "")
        for vcs_type in cls:
            if vcs_type.value.lower() == normalized:
                return vcs_type
        return cls.UNKNOWN


def replace_credentials_in_uri(url: str) -> str:
    """Return ``url`` with any ``user:password@`` part removed."""
    if not url:
        return url

    parts = urlsplit(url)
    if not parts.netloc or "@" not in parts.netloc:
        return url

    host = parts.netloc.rsplit("@", 1)[1]
    return urlunsplit((parts.scheme, host, parts.path, parts.query, parts.fragment))


@dataclass(frozen=True)
class VcsInfo:
    """A VCS location as declared by package metadata."""

    type: VcsType = VcsType.UNKNOWN
    url: str = ""
    revision: str = ""
    path: str = ""

    @property
    def is_empty(self) -> bool:
        return self == EMPTY_VCS_INFO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "url": self.url,
            "revision": self.revision,
            "path": self.path,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VcsInfo":
        return cls(
            type=VcsType.from_string(data.get("type")),
            url=str(data.get("url") or ""),
            revision=str(data.get("revision") or ""),
            path=str(data.get("path") or ""),
        )


EMPTY_VCS_INFO = VcsInfo()


@dataclass(frozen=True)
class Hash:
    value: str = ""
    algorithm: str = ""


@dataclass(frozen=True)
class RemoteArtifact:
    """A downloadable artifact, e.g. a source archive."""

    url: str = ""
    hash: Hash = field(default_factory=Hash)

    @property
    def is_empty(self) -> bool:
        return not self.url

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "hash": {"value": self.hash.value, "algorithm": self.hash.algorithm},
        }

    @classmethod
    def from_dict(cls, data: Any) -> "RemoteArtifact":
        if isinstance(data, str):
            return cls(url=data)
        if not isinstance(data, dict):
            raise ValueError(f"An artifact must be a URL or a mapping, not {type(data).__name__}")
        hash_data = data.get("hash") or {}
        if isinstance(hash_data, str):
            hash_value = Hash(value=hash_data)
        elif not isinstance(hash_data, dict):
            raise ValueError("An artifact hash must be a string or a mapping")
        else:
            hash_value = Hash(
                value=str(hash_data.get("value") or ""),
                algorithm=str(hash_data.get("algorithm") or ""),
            )
        return cls(url=str(data.get("url") or ""), hash=hash_value)


EMPTY_REMOTE_ARTIFACT = RemoteArtifact()


@dataclass(frozen=True)
class Package:
    """Metadata of one resolved third-party package."""

    id: Identifier
    declared_licenses: FrozenSet[str] = frozenset()
    concluded_license: Optional[str] = None
    authors: FrozenSet[str] = frozenset()
    description: str = ""
    homepage_url: str = ""
    binary_artifact: RemoteArtifact = EMPTY_REMOTE_ARTIFACT
    source_artifact: RemoteArtifact = EMPTY_REMOTE_ARTIFACT
    vcs: VcsInfo = EMPTY_VCS_INFO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id.to_coordinates(),
            "declared_licenses": sorted(self.declared_licenses),
            "concluded_license": self.concluded_license,
            "authors": sorted(self.authors),
            "description": self.description,
            "homepage_url": self.homepage_url,
            "binary_artifact": self.binary_artifact.to_dict(),
            "source_artifact": self.source_artifact.to_dict(),
            "vcs": self.vcs.to_dict(),
        }


class Provenance:
    """Where the source code of a package was fetched from."""

    def describe(self) -> str:
        return "unknown"


@dataclass(frozen=True)
class UnknownProvenance(Provenance):
    pass


@dataclass(frozen=True)
class ArtifactProvenance(Provenance):
    source_artifact: RemoteArtifact

    def describe(self) -> str:
        return replace_credentials_in_uri(self.source_artifact.url)


@dataclass(frozen=True)
class RepositoryProvenance(Provenance):
    vcs_info: VcsInfo
    resolved_revision: str

    def describe(self) -> str:
        return f"{replace_credentials_in_uri(self.vcs_info.url)}@{self.resolved_revision}"
