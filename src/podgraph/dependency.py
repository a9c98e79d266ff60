"""Package coordinates and dependency references shared by every podgraph module."""

from dataclasses import dataclass, field, replace
from typing import FrozenSet, Iterable, Iterator, Set, Tuple


def join_namespace(namespace: str, name: str) -> str:
    """Return ``namespace/name``, or just ``name`` when the namespace is blank."""
    if not namespace or not namespace.strip():
        return name or ""
    return f"{namespace}/{name or ''}"


@dataclass(frozen=True, order=True)
class Identifier:
    """A package coordinate. Ordered by (type, namespace, name, version)."""

    type: str
    namespace: str
    name: str
    version: str

    @property
    def identity(self) -> Tuple[str, str, str]:
        """The version-independent (type, namespace, name) triple."""
        return (self.type, self.namespace, self.name)

    @property
    def display_name(self) -> str:
        return join_namespace(self.namespace, self.name)

    def with_version(self, version: str) -> "Identifier":
        return replace(self, version=version)

    def to_coordinates(self) -> str:
        return f"{self.type}:{self.namespace}:{self.name}:{self.version}"

    @classmethod
    def from_coordinates(cls, coordinates: str) -> "Identifier":
        """
        Parse ``Type:namespace:name:version``.

        The version part may itself contain colons and may be omitted.

        Raises:
            ValueError: If fewer than three parts are present
        """
        if not isinstance(coordinates, str):
            raise ValueError(f"Identifier coordinates must be a string, got {type(coordinates).__name__}")

        parts = coordinates.strip().split(":", 3)
        if len(parts) < 3 or not parts[0] or not parts[2]:
            raise ValueError(
                f"Invalid identifier '{coordinates}', expected 'Type:namespace:name:version'"
            )

        version = parts[3] if len(parts) == 4 else ""
        return cls(type=parts[0], namespace=parts[1], name=parts[2], version=version)

    def __str__(self) -> str:
        return self.to_coordinates()


@dataclass(frozen=True, order=True)
class PackageReference:
    """
    A node in a dependency graph.

    Equality, hashing and ordering only consider ``id``, so a set of references
    holds at most one node per identifier.
    """

    id: Identifier
    dependencies: FrozenSet["PackageReference"] = field(
        default_factory=frozenset, compare=False
    )
    constraint: str = field(default="", compare=False)

    def __post_init__(self):
        if not isinstance(self.dependencies, frozenset):
            object.__setattr__(self, "dependencies", frozenset(self.dependencies))

    @property
    def key(self) -> Tuple[str, str]:
        """Lookup key used when resolving references against the PODS table."""
        return (self.id.namespace, self.id.name)

    def with_version(self, version: str) -> "PackageReference":
        return replace(self, id=self.id.with_version(version))

    def with_dependencies(self, dependencies: Iterable["PackageReference"]) -> "PackageReference":
        return replace(self, dependencies=frozenset(dependencies))

    def sorted_dependencies(self):
        return sorted(self.dependencies)

    def walk(self) -> Iterator["PackageReference"]:
        """Yield this node and every node below it, each identifier once."""
        seen: Set[Identifier] = set()
        stack = [self]
        while stack:
            node = stack.pop()
            if node.id in seen:
                continue
            seen.add(node.id)
            yield node
            stack.extend(sorted(node.dependencies, reverse=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id.to_coordinates(),
            "dependencies": [dep.to_dict() for dep in self.sorted_dependencies()],
        }
