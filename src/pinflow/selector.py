"""Turn a resolved (name, version) into one concrete distribution."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple, Union, assert_never

from packaging.tags import Tag, parse_tag, sys_tags
from packaging.utils import InvalidWheelFilename, parse_wheel_filename
from packaging.version import Version

from .constants import DEFAULT_FETCH_WORKERS, DEFAULT_HASH_ALGORITHM, WHEEL_SUFFIX
from .dists import (
    DirectorySourceDist,
    DirectUrlBuiltDist,
    DirectUrlSourceDist,
    GitSourceDist,
    InstalledDist,
    PathBuiltDist,
    PathSourceDist,
    RegistryBuiltDist,
    RegistrySourceDist,
    ResolvedDist,
)
from .exceptions import SelectionError
from .metadata import IndexProvider
from .models import (
    ArtifactDescriptor,
    ArtifactKind,
    DirectorySource,
    DirectUrlSource,
    GitSource,
    HashDigest,
    PackageName,
    PathSource,
    Source,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HashPolicy:
    """When ``required``, artifacts must carry a digest for ``algorithm``.

    ``expected`` pins the acceptable digests per package; a candidate whose
    digest is not among them is rejected.
    """

    required: bool = False
    algorithm: str = DEFAULT_HASH_ALGORITHM
    expected: Mapping[PackageName, FrozenSet[HashDigest]] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        required: bool = False,
        algorithm: str = DEFAULT_HASH_ALGORITHM,
        expected: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> "HashPolicy":
        pinned = {
            PackageName(name): frozenset(HashDigest.parse(item) for item in digests)
            for name, digests in (expected or {}).items()
        }
        return cls(required=required, algorithm=algorithm.lower(), expected=pinned)

    def expected_for(self, name: PackageName) -> FrozenSet[HashDigest]:
        return self.expected.get(name, frozenset())

    def problem(self, name: PackageName, artifact: ArtifactDescriptor) -> Optional[str]:
        """Why *artifact* fails verification, or ``None`` if it passes."""
        if not self.required:
            return None
        digest = artifact.digest(self.algorithm)
        if digest is None:
            return f"no {self.algorithm} hash"
        expected = self.expected_for(name)
        if expected and digest not in expected:
            return f"hash mismatch ({digest})"
        return None


@dataclass(frozen=True)
class Selection:
    dist: ResolvedDist
    hashes: Tuple[HashDigest, ...] = ()


def _expand_tags(values: Iterable[Union[str, Tag]]) -> List[Tag]:
    expanded: List[Tag] = []
    for value in values:
        if isinstance(value, Tag):
            expanded.append(value)
        else:
            expanded.extend(sorted(parse_tag(value), key=str))
    return expanded


class DistributionSelector:
    def __init__(
        self,
        index: IndexProvider,
        sources: Optional[Mapping[PackageName, Source]] = None,
        installed: Optional[Mapping[PackageName, Version]] = None,
        supported_tags: Optional[Sequence[Union[str, Tag]]] = None,
        hash_policy: Optional[HashPolicy] = None,
        max_workers: int = DEFAULT_FETCH_WORKERS,
    ):
        self.index = index
        self.sources = {PackageName(name): source for name, source in (sources or {}).items()}
        self.installed = {PackageName(name): version for name, version in (installed or {}).items()}
        self.hash_policy = hash_policy or HashPolicy()
        self.max_workers = max_workers
        tags = _expand_tags(supported_tags) if supported_tags is not None else list(sys_tags())
        self._tag_rank: Dict[Tag, int] = {}
        for rank, tag in enumerate(tags):
            self._tag_rank.setdefault(tag, rank)

    # Single package -------------------------------------------------------

    def select(self, name: PackageName, version: Version) -> Selection:
        name = PackageName(name)
        source = self.sources.get(name)
        if source is not None:
            return self._from_source(name, version, source)
        if self.installed.get(name) == version:
            return Selection(InstalledDist(name, version))
        return self._from_indexes(name, version)

    def _wheel_rank(self, artifact: ArtifactDescriptor) -> Optional[int]:
        if artifact.tags:
            tags = _expand_tags(artifact.tags)
        else:
            try:
                tags = list(parse_wheel_filename(artifact.filename)[3])
            except InvalidWheelFilename:
                return None
        ranks = [self._tag_rank[tag] for tag in tags if tag in self._tag_rank]
        return min(ranks) if ranks else None

    def _from_indexes(self, name: PackageName, version: Version) -> Selection:
        rejected: List[str] = []
        hash_rejections = 0
        for index in self.index.indexes:
            wheels: List[Tuple[int, str, ArtifactDescriptor]] = []
            sdists: List[ArtifactDescriptor] = []
            for artifact in self.index.list_artifacts(index, name, version):
                problem = self.hash_policy.problem(name, artifact)
                if problem is not None:
                    hash_rejections += 1
                    rejected.append(f"{artifact.filename}: {problem}")
                    continue
                if artifact.kind is ArtifactKind.BUILT:
                    rank = self._wheel_rank(artifact)
                    if rank is None:
                        rejected.append(f"{artifact.filename}: no compatible tag")
                        continue
                    wheels.append((rank, artifact.filename, artifact))
                else:
                    sdists.append(artifact)
            sdists.sort(key=lambda item: item.filename)
            if wheels:
                wheels.sort(key=lambda item: (item[0], item[1]))
                ordered = tuple(artifact for _, _, artifact in wheels)
                sdist = sdists[0] if sdists else None
                logger.debug("%s==%s: wheel %s from %s", name, version, ordered[0].filename, index)
                dist = RegistryBuiltDist(name, version, ordered, index, sdist)
                return Selection(dist, self._collect_hashes(ordered + ((sdist,) if sdist else ())))
            if sdists:
                logger.debug("%s==%s: source %s from %s", name, version, sdists[0].filename, index)
                return Selection(RegistrySourceDist(name, version, sdists[0], index), self._collect_hashes(sdists[:1]))
        if rejected and hash_rejections == len(rejected):
            raise SelectionError(str(name), str(version), "no distribution passed hash verification", rejected)
        raise SelectionError(str(name), str(version), "no distribution found", rejected or None)

    def _collect_hashes(self, artifacts: Iterable[ArtifactDescriptor]) -> Tuple[HashDigest, ...]:
        found: Dict[HashDigest, None] = {}
        for artifact in artifacts:
            for digest in artifact.hashes:
                if not self.hash_policy.required or digest.algorithm == self.hash_policy.algorithm:
                    found[digest] = None
        return tuple(sorted(found, key=str))

    def _pinned_hashes(self, name: PackageName, version: Version, hashable: bool) -> Tuple[HashDigest, ...]:
        expected = self.hash_policy.expected_for(name)
        if not self.hash_policy.required:
            return tuple(sorted(expected, key=str))
        if not hashable:
            raise SelectionError(str(name), str(version), "hashes cannot be verified for this source")
        matching = tuple(sorted((item for item in expected if item.algorithm == self.hash_policy.algorithm), key=str))
        if not matching:
            raise SelectionError(str(name), str(version), f"no {self.hash_policy.algorithm} hash pinned for direct source")
        return matching

    def _from_source(self, name: PackageName, version: Version, source: Source) -> Selection:
        match source:
            case DirectUrlSource(url=url):
                hashes = self._pinned_hashes(name, version, hashable=True)
                if url.split("#", 1)[0].endswith(WHEEL_SUFFIX):
                    return Selection(DirectUrlBuiltDist(name, version, url), hashes)
                return Selection(DirectUrlSourceDist(name, version, url), hashes)
            case PathSource(path=path):
                hashes = self._pinned_hashes(name, version, hashable=True)
                if path.endswith(WHEEL_SUFFIX):
                    return Selection(PathBuiltDist(name, version, path), hashes)
                return Selection(PathSourceDist(name, version, path), hashes)
            case GitSource(url=url, rev=rev):
                return Selection(GitSourceDist(name, version, url, rev), self._pinned_hashes(name, version, hashable=False))
            case DirectorySource(path=path, editable=editable):
                hashes = self._pinned_hashes(name, version, hashable=False)
                return Selection(DirectorySourceDist(name, version, path, editable), hashes)
            case _:
                assert_never(source)

    # Many packages --------------------------------------------------------

    def select_all(
        self, pins: Iterable[Tuple[PackageName, Version]]
    ) -> Dict[Tuple[PackageName, Version], Union[Selection, SelectionError]]:
        """Select every pin; failures are returned in place of a selection.

        Pins are independent of each other, so they are selected in
        parallel. The result follows the input order.
        """

        ordered = list(pins)

        def attempt(pin: Tuple[PackageName, Version]) -> Union[Selection, SelectionError]:
            try:
                return self.select(*pin)
            except SelectionError as exc:
                return exc

        if self.max_workers > 1 and len(ordered) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="pinflow-select") as pool:
                outcomes = list(pool.map(attempt, ordered))
        else:
            outcomes = [attempt(pin) for pin in ordered]
        return dict(zip(ordered, outcomes))
