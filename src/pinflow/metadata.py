"""Metadata and index providers the solver and selector consume."""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

import requests
from packaging.markers import Marker
from packaging.requirements import InvalidRequirement
from packaging.requirements import Requirement as Pep508Requirement
from packaging.utils import InvalidWheelFilename, parse_wheel_filename
from packaging.version import InvalidVersion, Version

from .cache import MetadataCache
from .constants import DEFAULT_INDEX, WHEEL_SUFFIX
from .exceptions import FetchError, MetadataError
from .fetchers import fetch_project, fetch_release
from .models import (
    ArtifactDescriptor,
    ArtifactKind,
    HashDigest,
    PackageMetadata,
    PackageName,
    Requirement,
    marker_extras,
    normalize_extra,
)
from .versions import parse_version

logger = logging.getLogger(__name__)


class MetadataProvider(Protocol):
    def list_versions(self, name: PackageName) -> Iterable[Version]: ...

    def get_metadata(self, name: PackageName, version: Version) -> PackageMetadata: ...


class IndexProvider(Protocol):
    @property
    def indexes(self) -> Sequence[str]: ...

    def list_artifacts(self, index: str, name: PackageName, version: Version) -> Sequence[ArtifactDescriptor]: ...


class MarkerEnvironment:
    """Evaluates PEP 508 markers against the target environment.

    Without overrides the running interpreter is the target.
    """

    def __init__(self, overrides: Optional[Mapping[str, str]] = None):
        self.overrides = dict(overrides or {})

    def evaluate(self, marker: Marker | str | None, extra: Optional[str] = None) -> bool:
        if marker is None:
            return True
        if isinstance(marker, str):
            marker = Marker(marker)
        environment = dict(self.overrides)
        environment["extra"] = extra or ""
        return marker.evaluate(environment)


# Helpers ---------------------------------------------------------------------


def split_requires_dist(
    lines: Iterable[str],
    environment: MarkerEnvironment,
    provides_extra: Iterable[str] = (),
) -> Tuple[Tuple[Requirement, ...], Dict[str, Tuple[Requirement, ...]]]:
    """Split ``Requires-Dist`` lines into base requirements and per-extra ones."""

    base: List[Requirement] = []
    extras: Dict[str, List[Requirement]] = {normalize_extra(name): [] for name in provides_extra}
    for line in lines:
        try:
            parsed = Pep508Requirement(line)
        except InvalidRequirement as exc:
            raise MetadataError(f"Invalid requirement {line!r}: {exc}") from exc
        named = marker_extras(parsed.marker)
        try:
            if not named:
                base.append(Requirement.parse(line, environment))
                continue
            for extra in named:
                extras.setdefault(extra, []).append(Requirement.parse(line, environment, extra=extra))
        except ValueError as exc:
            raise MetadataError(f"Invalid requirement {line!r}: {exc}") from exc
    return tuple(base), {name: tuple(items) for name, items in extras.items()}


def _parse_requirement_list(entries: object, environment: MarkerEnvironment) -> Tuple[Requirement, ...]:
    if not entries:
        return ()
    if isinstance(entries, str):
        entries = [entries]
    if not isinstance(entries, list):
        raise MetadataError(f"Expected a list of requirements, got {entries!r}")
    try:
        return tuple(Requirement.parse(str(entry), environment) for entry in entries)
    except ValueError as exc:
        raise MetadataError(str(exc)) from exc


def describe_artifact(
    filename: str,
    url: str = "",
    hashes: Iterable[HashDigest] = (),
    index: str = "",
) -> ArtifactDescriptor:
    if filename.endswith(WHEEL_SUFFIX):
        try:
            _, _, _, tags = parse_wheel_filename(filename)
        except InvalidWheelFilename as exc:
            raise MetadataError(f"Invalid wheel filename {filename!r}") from exc
        return ArtifactDescriptor(
            filename=filename,
            url=url,
            kind=ArtifactKind.BUILT,
            tags=tuple(sorted(str(tag) for tag in tags)),
            hashes=tuple(hashes),
            index=index,
        )
    return ArtifactDescriptor(filename=filename, url=url, kind=ArtifactKind.SOURCE, hashes=tuple(hashes), index=index)


# In-memory provider ------------------------------------------------------------


class InMemoryProvider:
    """Dictionary-backed provider for offline project files and tests."""

    def __init__(self, records: Iterable[PackageMetadata] = ()):
        self._listing: Dict[PackageName, List[Version]] = {}
        self._records: Dict[Tuple[PackageName, Version], PackageMetadata] = {}
        self._failures: Dict[Tuple[PackageName, Optional[Version]], Exception] = {}
        self._lock = threading.Lock()
        self.fetches: List[Tuple[PackageName, Optional[Version]]] = []
        for record in records:
            self.add(record)

    def _list(self, name: PackageName, version: Version) -> None:
        listing = self._listing.setdefault(name, [])
        if version not in listing:
            listing.append(version)

    def add(self, record: PackageMetadata) -> None:
        self._list(record.name, record.version)
        self._records[(record.name, record.version)] = record

    def fail(self, name: str, version: Optional[str], error: Exception) -> None:
        """Make ``get_metadata`` (or ``list_versions`` when *version* is None) raise *error*."""
        package = PackageName(name)
        parsed = parse_version(version) if version is not None else None
        if parsed is not None:
            self._list(package, parsed)
        self._failures[(package, parsed)] = error

    def _record(self, name: PackageName, version: Optional[Version]) -> None:
        with self._lock:
            self.fetches.append((name, version))

    def list_versions(self, name: PackageName) -> List[Version]:
        name = PackageName(name)
        self._record(name, None)
        failure = self._failures.get((name, None))
        if failure is not None:
            raise failure
        return list(self._listing.get(name, ()))

    def get_metadata(self, name: PackageName, version: Version) -> PackageMetadata:
        name = PackageName(name)
        self._record(name, version)
        failure = self._failures.get((name, version))
        if failure is not None:
            raise failure
        record = self._records.get((name, version))
        if record is None:
            raise FetchError(f"No metadata for {name}=={version}")
        return record


class InMemoryIndex:
    def __init__(self, indexes: Sequence[str] = ("default",)):
        self._indexes = list(indexes)
        self._artifacts: Dict[Tuple[str, PackageName, Version], List[ArtifactDescriptor]] = {}

    @property
    def indexes(self) -> Sequence[str]:
        return tuple(self._indexes)

    def add(self, name: str, version: str | Version, artifact: ArtifactDescriptor, index: Optional[str] = None) -> None:
        index = index or artifact.index or self._indexes[0]
        if index not in self._indexes:
            self._indexes.append(index)
        key = (index, PackageName(name), parse_version(version))
        self._artifacts.setdefault(key, []).append(artifact)

    def list_artifacts(self, index: str, name: PackageName, version: Version) -> Sequence[ArtifactDescriptor]:
        return tuple(self._artifacts.get((index, PackageName(name), version), ()))


def load_offline_packages(
    data: Mapping[str, Any],
    environment: Optional[MarkerEnvironment] = None,
    indexes: Sequence[str] = ("default",),
) -> Tuple[InMemoryProvider, InMemoryIndex]:
    """Build an in-memory provider and index from a ``packages:`` mapping.

    Each package maps version strings to an entry with optional
    ``requires``, ``extras``, ``groups``, ``build-requires``, ``artifacts``
    and ``unavailable`` keys.
    """

    environment = environment or MarkerEnvironment()
    provider = InMemoryProvider()
    index = InMemoryIndex(indexes)
    for raw_name, versions in (data or {}).items():
        name = PackageName(str(raw_name))
        if not isinstance(versions, Mapping):
            raise MetadataError(f"Package {raw_name!r} must map versions to metadata")
        for raw_version, entry in versions.items():
            version = parse_version(str(raw_version))
            entry = entry or {}
            if entry.get("unavailable"):
                provider.fail(name, str(version), FetchError(str(entry["unavailable"])))
            else:
                provider.add(
                    PackageMetadata(
                        name=name,
                        version=version,
                        requirements=_parse_requirement_list(entry.get("requires"), environment),
                        extras={
                            normalize_extra(extra): _parse_requirement_list(items, environment)
                            for extra, items in (entry.get("extras") or {}).items()
                        },
                        groups={
                            normalize_extra(group): _parse_requirement_list(items, environment)
                            for group, items in (entry.get("groups") or {}).items()
                        },
                        build_requires=_parse_requirement_list(entry.get("build-requires"), environment),
                    )
                )
            for artifact in entry.get("artifacts") or []:
                if isinstance(artifact, str):
                    artifact = {"filename": artifact}
                descriptor = describe_artifact(
                    filename=artifact["filename"],
                    url=artifact.get("url", ""),
                    hashes=[HashDigest.parse(item) for item in artifact.get("hashes") or []],
                    index=artifact.get("index", ""),
                )
                index.add(name, version, descriptor, index=artifact.get("index"))
    return provider, index


# PyPI JSON API -----------------------------------------------------------------


class PypiMetadataProvider:
    """Reads the PyPI JSON API of each configured index, first match wins.

    The provider is called from fetch worker threads. Each thread gets its
    own session from *session_factory*, since ``requests.Session`` is not
    safe to share between threads.
    """

    def __init__(
        self,
        indexes: Sequence[str] = (DEFAULT_INDEX,),
        cache_root: Path | str = "cache",
        environment: Optional[MarkerEnvironment] = None,
        session_factory: Optional[Callable[[], requests.Session]] = None,
        refresh: bool = False,
    ):
        self.indexes = list(indexes) or [DEFAULT_INDEX]
        self.cache = MetadataCache(Path(cache_root), enabled=not refresh)
        self.cache.ensure()
        self.environment = environment or MarkerEnvironment()
        self._projects: Dict[Tuple[str, PackageName], Optional[Dict]] = {}
        self._lock = threading.Lock()
        self._session_factory = session_factory or requests.Session
        self._local = threading.local()
        self._sessions: List[requests.Session] = []

    @property
    def session(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._session_factory()
            self._local.session = session
            with self._lock:
                self._sessions.append(session)
        return session

    def close(self) -> None:
        with self._lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()

    def project(self, index: str, name: PackageName) -> Optional[Dict]:
        key = (index, name)
        with self._lock:
            if key in self._projects:
                return self._projects[key]
        namespace = f"projects-{index}"
        raw = self.cache.load(namespace, name)
        if raw is None:
            raw = fetch_project(name, index, session=self.session)
            if raw is not None:
                self.cache.store(namespace, name, raw)
        with self._lock:
            self._projects[key] = raw
        return raw

    def _locate(self, name: PackageName) -> Optional[Tuple[str, Dict]]:
        for index in self.indexes:
            payload = self.project(index, name)
            if payload is not None:
                return index, payload
        return None

    def list_versions(self, name: PackageName) -> List[Version]:
        located = self._locate(PackageName(name))
        if located is None:
            return []
        _, payload = located
        versions: List[Version] = []
        for raw, files in (payload.get("releases") or {}).items():
            if files and all(item.get("yanked") for item in files):
                continue
            try:
                versions.append(Version(raw))
            except InvalidVersion:
                logger.debug("Skipping invalid version %r of %s", raw, name)
        return versions

    def get_metadata(self, name: PackageName, version: Version) -> PackageMetadata:
        name = PackageName(name)
        located = self._locate(name)
        if located is None:
            raise FetchError(f"{name} is not available on any index")
        index, _ = located
        namespace = f"releases-{index}"
        key = f"{name}-{version}"
        raw = self.cache.load(namespace, key)
        if raw is None:
            raw = fetch_release(name, str(version), index, session=self.session)
            if raw is None:
                raise FetchError(f"{name}=={version} not found on {index}")
            self.cache.store(namespace, key, raw)
        info = raw.get("info") or {}
        requirements, extras = split_requires_dist(
            info.get("requires_dist") or [],
            self.environment,
            provides_extra=info.get("provides_extra") or [],
        )
        return PackageMetadata(name=name, version=version, requirements=requirements, extras=extras)


class PypiIndexProvider:
    """Artifact listings taken from the same JSON payloads as the metadata."""

    def __init__(self, metadata: PypiMetadataProvider):
        self.metadata = metadata

    @property
    def indexes(self) -> Sequence[str]:
        return tuple(self.metadata.indexes)

    def list_artifacts(self, index: str, name: PackageName, version: Version) -> Sequence[ArtifactDescriptor]:
        payload = self.metadata.project(index, PackageName(name))
        if payload is None:
            return ()
        artifacts: List[ArtifactDescriptor] = []
        for raw, files in (payload.get("releases") or {}).items():
            try:
                if Version(raw) != version:
                    continue
            except InvalidVersion:
                continue
            for item in files:
                if item.get("yanked"):
                    continue
                hashes = [HashDigest(algorithm, digest) for algorithm, digest in sorted((item.get("digests") or {}).items())]
                artifacts.append(describe_artifact(item["filename"], url=item.get("url", ""), hashes=hashes, index=index))
        return tuple(artifacts)
