from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

REQUESTED_BY_MAX_LENGTH = 10


@dataclass(frozen=True)
class PackageRef:
    """A package name and installed version, addressed as ``name:version``."""

    name: str
    version: str

    @property
    def key(self) -> str:
        return f"{self.name}:{self.version}"

    @classmethod
    def from_key(cls, key: str) -> "PackageRef":
        name, _, version = key.partition(":")
        return cls(name=name, version=version)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PackageRef":
        """Build from a pipdeptree-style package record."""
        return cls(
            name=data.get("key") or "",
            version=data.get("installed_version") or "",
        )


@dataclass(frozen=True)
class RawDependencyEntry:
    """One package and its direct children, as reported by the package manager."""

    package: PackageRef
    dependencies: List[PackageRef] = field(default_factory=list)
    package_name: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawDependencyEntry":
        package = data.get("package") or {}
        return cls(
            package=PackageRef.from_dict(package),
            dependencies=[PackageRef.from_dict(d) for d in data.get("dependencies") or []],
            package_name=package.get("package_name") or "",
        )


@dataclass
class Dependency:
    """A resolved dependency record of the build metadata."""

    id: str
    type: str = ""
    requested_by: List[List[str]] = field(default_factory=list)
    checksum: Dict[str, str] = field(default_factory=dict)

    def node_has_loop(self) -> bool:
        """Whether this dependency already appears among its own ancestors."""
        return any(self.id in chain for chain in self.requested_by)

    def update_requested_by(
        self,
        parent_id: str,
        parent_requested_by: List[List[str]],
        limit: Optional[int] = None,
    ) -> int:
        """
        Record a chain for every chain of the parent, with the parent in front.

        Chains already recorded are not stored twice.

        Args:
            parent_id: Id of the dependency that requested this one
            parent_requested_by: The parent's own chains
            limit: Stop once this many chains are recorded

        Returns:
            int: Number of chains actually added
        """
        added = 0
        for parent_chain in parent_requested_by:
            if limit is not None and len(self.requested_by) >= limit:
                break
            chain = [parent_id, *parent_chain]
            if chain not in self.requested_by:
                self.requested_by.append(chain)
                added += 1
        return added

    def copy(self) -> "Dependency":
        return Dependency(
            id=self.id,
            type=self.type,
            requested_by=[list(chain) for chain in self.requested_by],
            checksum=dict(self.checksum),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id}
        if self.type:
            data["type"] = self.type
        if self.checksum:
            data["checksum"] = dict(self.checksum)
        data["requestedBy"] = [list(chain) for chain in self.requested_by]
        return data
