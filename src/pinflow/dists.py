"""Resolved distributions and the annotated graph node built from them.

``ResolvedDist`` is a closed union: every consumer dispatches over the
variants with ``match`` and ends in ``assert_never``, so adding a variant
makes a type checker point at each place that has to learn about it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple, Union, assert_never

from packaging.version import Version

from .models import ArtifactDescriptor, HashDigest, NodeKey, PackageMetadata, PackageName


@dataclass(frozen=True)
class InstalledDist:
    name: PackageName
    version: Version
    location: Optional[str] = None

    def display(self) -> str:
        return f"{self.name}=={self.version}"


@dataclass(frozen=True)
class RegistryBuiltDist:
    name: PackageName
    version: Version
    wheels: Tuple[ArtifactDescriptor, ...]
    index: str
    sdist: Optional[ArtifactDescriptor] = None

    def best_wheel(self) -> ArtifactDescriptor:
        return self.wheels[0]

    def display(self) -> str:
        return f"{self.name}=={self.version}"


@dataclass(frozen=True)
class DirectUrlBuiltDist:
    name: PackageName
    version: Version
    url: str

    def display(self) -> str:
        return f"{self.name} @ {self.url}"


@dataclass(frozen=True)
class PathBuiltDist:
    name: PackageName
    version: Version
    path: str

    def display(self) -> str:
        return f"{self.name} @ file://{self.path}"


@dataclass(frozen=True)
class RegistrySourceDist:
    name: PackageName
    version: Version
    sdist: ArtifactDescriptor
    index: str

    def display(self) -> str:
        return f"{self.name}=={self.version}"


@dataclass(frozen=True)
class DirectUrlSourceDist:
    name: PackageName
    version: Version
    url: str

    def display(self) -> str:
        return f"{self.name} @ {self.url}"


@dataclass(frozen=True)
class GitSourceDist:
    name: PackageName
    version: Version
    url: str
    rev: Optional[str] = None

    def display(self) -> str:
        suffix = f"@{self.rev}" if self.rev else ""
        return f"{self.name} @ git+{self.url}{suffix}"


@dataclass(frozen=True)
class PathSourceDist:
    name: PackageName
    version: Version
    path: str

    def display(self) -> str:
        return f"{self.name} @ file://{self.path}"


@dataclass(frozen=True)
class DirectorySourceDist:
    name: PackageName
    version: Version
    path: str
    editable: bool = False

    def display(self) -> str:
        prefix = "-e " if self.editable else ""
        return f"{prefix}{self.name} @ file://{self.path}"


BuiltDist = Union[RegistryBuiltDist, DirectUrlBuiltDist, PathBuiltDist]
SourceDist = Union[RegistrySourceDist, DirectUrlSourceDist, GitSourceDist, PathSourceDist, DirectorySourceDist]
ResolvedDist = Union[InstalledDist, BuiltDist, SourceDist]


def dist_index(dist: ResolvedDist) -> Optional[str]:
    """Return the index a distribution came from, if it came from a registry."""
    match dist:
        case RegistryBuiltDist():
            return dist.best_wheel().index or dist.index
        case RegistrySourceDist():
            return dist.index
        case InstalledDist() | DirectUrlBuiltDist() | PathBuiltDist():
            return None
        case DirectUrlSourceDist() | GitSourceDist() | PathSourceDist() | DirectorySourceDist():
            return None
        case _:
            assert_never(dist)


def needs_build(dist: ResolvedDist) -> bool:
    """Whether installing *dist* requires running a build backend."""
    match dist:
        case RegistrySourceDist() | DirectUrlSourceDist() | GitSourceDist() | PathSourceDist() | DirectorySourceDist():
            return True
        case InstalledDist() | RegistryBuiltDist() | DirectUrlBuiltDist() | PathBuiltDist():
            return False
        case _:
            assert_never(dist)


def dist_kind(dist: ResolvedDist) -> str:
    match dist:
        case InstalledDist():
            return "installed"
        case RegistryBuiltDist():
            return "registry-wheel"
        case DirectUrlBuiltDist():
            return "url-wheel"
        case PathBuiltDist():
            return "path-wheel"
        case RegistrySourceDist():
            return "registry-sdist"
        case DirectUrlSourceDist():
            return "url-sdist"
        case GitSourceDist():
            return "git"
        case PathSourceDist():
            return "path-sdist"
        case DirectorySourceDist():
            return "directory"
        case _:
            assert_never(dist)


@dataclass(frozen=True)
class AnnotatedDist:
    """A pinned package with its resolved distribution and metadata.

    The same (name, version) requested plainly and through an extra or a
    dependency group yields distinct nodes that share one metadata record.
    """

    dist: ResolvedDist
    name: PackageName
    version: Version
    extra: Optional[str] = None
    group: Optional[str] = None
    hashes: Tuple[HashDigest, ...] = ()
    metadata: Optional[PackageMetadata] = field(default=None, compare=False)

    def is_base(self) -> bool:
        """True for the plain install node, false for extra or group nodes."""
        return self.extra is None and self.group is None

    def index(self) -> Optional[str]:
        return dist_index(self.dist)

    @property
    def key(self) -> NodeKey:
        return NodeKey(self.name, self.version, self.extra, self.group)

    def display(self) -> str:
        return self.dist.display()

    def __str__(self) -> str:  # type: ignore[override]
        return self.display()
