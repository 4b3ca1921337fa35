"""Dataclasses shared across resolver components."""
from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, FrozenSet, Iterable, Mapping, Optional, Tuple, Union
from urllib.parse import unquote, urlparse

from packaging.markers import Marker
from packaging.requirements import InvalidRequirement
from packaging.requirements import Requirement as Pep508Requirement
from packaging.utils import canonicalize_name
from packaging.version import Version

from .constants import SDIST_SUFFIXES, WHEEL_SUFFIX
from .versions import VersionSet, mentions_prerelease, parse_specifiers

if TYPE_CHECKING:
    from .metadata import MarkerEnvironment


class PackageName(str):
    """A PEP 503 normalized package name; ``Foo_Bar`` and ``foo-bar`` are equal."""

    def __new__(cls, value: str) -> "PackageName":
        if isinstance(value, PackageName):
            return value
        return super().__new__(cls, canonicalize_name(value))


def normalize_extra(value: str) -> str:
    return str(canonicalize_name(value))


# Explicit (non-registry) sources -------------------------------------------


@dataclass(frozen=True)
class DirectUrlSource:
    url: str


@dataclass(frozen=True)
class GitSource:
    url: str
    rev: Optional[str] = None


@dataclass(frozen=True)
class PathSource:
    path: str


@dataclass(frozen=True)
class DirectorySource:
    path: str
    editable: bool = False


Source = Union[DirectUrlSource, GitSource, PathSource, DirectorySource]

_ARCHIVE_SUFFIXES = (WHEEL_SUFFIX,) + SDIST_SUFFIXES


def source_from_url(url: str) -> Source:
    if url.startswith("git+"):
        location = url[len("git+"):]
        parsed = urlparse(location)
        rev: Optional[str] = None
        if "@" in parsed.path:
            path, rev = parsed.path.rsplit("@", 1)
            location = parsed._replace(path=path).geturl()
        return GitSource(url=location, rev=rev)
    parsed = urlparse(url)
    if parsed.scheme == "file":
        path = unquote(parsed.path)
        if path.endswith(_ARCHIVE_SUFFIXES):
            return PathSource(path=path)
        return DirectorySource(path=path)
    return DirectUrlSource(url=url)


# Requirements --------------------------------------------------------------

_EXTRA_MARKER_RE = re.compile(r"""extra\s*==\s*['"]([^'"]+)['"]""")


@dataclass(frozen=True)
class Requirement:
    name: PackageName
    versions: VersionSet = field(default_factory=VersionSet.full)
    extras: FrozenSet[str] = frozenset()
    groups: FrozenSet[str] = frozenset()
    active: bool = True
    source: Optional[Source] = None
    prerelease_explicit: bool = False
    specifier: str = ""

    @classmethod
    def parse(
        cls,
        text: str,
        environment: Optional["MarkerEnvironment"] = None,
        extra: Optional[str] = None,
        groups: Iterable[str] = (),
    ) -> "Requirement":
        try:
            parsed = Pep508Requirement(text)
        except InvalidRequirement as exc:
            raise ValueError(f"Invalid requirement {text!r}: {exc}") from exc
        active = True
        if parsed.marker is not None and environment is not None:
            active = environment.evaluate(parsed.marker, extra=extra)
        return cls.build(
            name=parsed.name,
            specifier=str(parsed.specifier),
            extras=parsed.extras,
            groups=groups,
            active=active,
            url=parsed.url,
        )

    @classmethod
    def build(
        cls,
        name: str,
        specifier: str = "",
        extras: Iterable[str] = (),
        groups: Iterable[str] = (),
        active: bool = True,
        url: Optional[str] = None,
        source: Optional[Source] = None,
    ) -> "Requirement":
        if source is None and url:
            source = source_from_url(url)
        return cls(
            name=PackageName(name),
            versions=parse_specifiers(specifier),
            extras=frozenset(normalize_extra(item) for item in extras),
            groups=frozenset(normalize_extra(item) for item in groups),
            active=active,
            source=source,
            prerelease_explicit=mentions_prerelease(specifier),
            specifier=specifier or "",
        )

    def display_name(self) -> str:
        activated = sorted(self.extras) + [f":{group}" for group in sorted(self.groups)]
        return f"{self.name}[{','.join(activated)}]" if activated else str(self.name)

    def __str__(self) -> str:  # type: ignore[override]
        return f"{self.display_name()}{self.specifier}"


def marker_extras(marker: Optional[Marker]) -> Tuple[str, ...]:
    """Extras named in a ``extra == "..."`` clause of *marker*."""
    if marker is None:
        return ()
    return tuple(dict.fromkeys(normalize_extra(item) for item in _EXTRA_MARKER_RE.findall(str(marker))))


# Metadata records ----------------------------------------------------------


@dataclass(frozen=True, eq=False)
class PackageMetadata:
    """Dependency metadata for one (name, version).

    Records are created once per run and shared by reference between every
    graph node that needs them; they are never mutated after creation.
    """

    name: PackageName
    version: Version
    requirements: Tuple[Requirement, ...] = ()
    extras: Mapping[str, Tuple[Requirement, ...]] = field(default_factory=dict)
    groups: Mapping[str, Tuple[Requirement, ...]] = field(default_factory=dict)
    build_requires: Tuple[Requirement, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "extras", MappingProxyType(dict(self.extras)))
        object.__setattr__(self, "groups", MappingProxyType(dict(self.groups)))

    def active_requirements(self) -> Tuple[Requirement, ...]:
        return tuple(requirement for requirement in self.requirements if requirement.active)

    def extra_requirements(self, extra: str) -> Tuple[Requirement, ...]:
        return tuple(requirement for requirement in self.extras.get(extra, ()) if requirement.active)

    def group_requirements(self, group: str) -> Tuple[Requirement, ...]:
        return tuple(requirement for requirement in self.groups.get(group, ()) if requirement.active)


# Artifacts -----------------------------------------------------------------


class ArtifactKind(str, enum.Enum):
    BUILT = "built"
    SOURCE = "source"


@dataclass(frozen=True)
class HashDigest:
    algorithm: str
    digest: str

    @classmethod
    def parse(cls, text: str) -> "HashDigest":
        algorithm, sep, digest = text.partition(":")
        if not sep or not digest:
            raise ValueError(f"Hash must look like 'algorithm:digest', got {text!r}")
        return cls(algorithm=algorithm.lower(), digest=digest.lower())

    def __str__(self) -> str:  # type: ignore[override]
        return f"{self.algorithm}:{self.digest}"


@dataclass(frozen=True)
class ArtifactDescriptor:
    filename: str
    url: str
    kind: ArtifactKind
    tags: Tuple[str, ...] = ()
    hashes: Tuple[HashDigest, ...] = ()
    index: str = ""

    def digest(self, algorithm: str) -> Optional[HashDigest]:
        for item in self.hashes:
            if item.algorithm == algorithm:
                return item
        return None


@dataclass(frozen=True)
class NodeKey:
    """Identity of a resolution graph node: (name, version, extra, group)."""

    name: PackageName
    version: Version
    extra: Optional[str] = None
    group: Optional[str] = None

    def sort_key(self) -> Tuple:
        return (str(self.name), self.version, self.extra or "", self.group or "")

    def __str__(self) -> str:  # type: ignore[override]
        label = str(self.name)
        if self.extra:
            label += f"[{self.extra}]"
        if self.group:
            label += f":{self.group}"
        return f"{label}=={self.version}"


