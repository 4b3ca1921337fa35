"""Conflict-driven version solver.

The search follows the PubGrub scheme: unit propagation over learned
incompatibilities, conflict resolution that derives a new incompatibility
and backjumps to the level it implicates, and one decision at a time for
the undecided package with the fewest remaining candidates.
"""
from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from packaging.version import Version

from .constants import DEFAULT_FETCH_WORKERS
from .exceptions import FetchError, MetadataError, Unsatisfiable
from .fetching import FetchPool
from .incompatibility import (
    ROOT,
    ROOT_VERSION,
    ConflictCause,
    DependencyCause,
    Incompatibility,
    NoVersionsCause,
    Relation,
    RootCause,
    SolverPackage,
    Term,
    UnavailableCause,
)
from .metadata import MetadataProvider
from .models import PackageMetadata, PackageName, Requirement
from .partial_solution import PartialSolution
from .versions import PrereleasePolicy, VersionSet, filter_candidates

logger = logging.getLogger(__name__)


class SolverState(enum.Enum):
    PROPAGATING = "propagating"
    CONFLICT_FOUND = "conflict-found"
    BACKTRACKING = "backtracking"
    SATISFIED = "satisfied"
    UNSATISFIABLE = "unsatisfiable"


_TRANSITIONS = {
    SolverState.PROPAGATING: {SolverState.PROPAGATING, SolverState.CONFLICT_FOUND, SolverState.SATISFIED},
    SolverState.CONFLICT_FOUND: {SolverState.BACKTRACKING, SolverState.UNSATISFIABLE},
    SolverState.BACKTRACKING: {SolverState.PROPAGATING},
    SolverState.SATISFIED: set(),
    SolverState.UNSATISFIABLE: set(),
}


class _Conflict:
    pass


_CONFLICT = _Conflict()


@dataclass
class SolverOptions:
    prereleases: PrereleasePolicy = PrereleasePolicy.IF_NECESSARY_OR_EXPLICIT
    max_workers: int = DEFAULT_FETCH_WORKERS


@dataclass
class SolverResult:
    """A complete assignment, in decision order, and the metadata behind it."""

    assignment: Dict[SolverPackage, Version]
    metadata: Dict[Tuple[PackageName, Version], PackageMetadata]
    root_requirements: Tuple[Requirement, ...]
    root_groups: Dict[str, Tuple[Requirement, ...]] = field(default_factory=dict)
    attempted_solutions: int = 1
    duration: float = 0.0
    unavailable: Dict[PackageName, Dict[Version, str]] = field(default_factory=dict)

    def versions(self) -> Dict[PackageName, Version]:
        """One version per real package."""
        return {package.name: version for package, version in self.assignment.items() if package.is_base}

    def packages(self) -> List[SolverPackage]:
        return [package for package in self.assignment if not package.is_root]


class VersionSolver:
    def __init__(
        self,
        requirements: Sequence[Requirement],
        provider: MetadataProvider,
        options: Optional[SolverOptions] = None,
        excluded: Optional[Mapping[PackageName, Iterable[Version]]] = None,
        groups: Optional[Mapping[str, Sequence[Requirement]]] = None,
    ):
        self.requirements = tuple(requirements)
        # Active dependency groups of the project itself.
        self.groups = {name: tuple(items) for name, items in (groups or {}).items()}
        self.provider = provider
        self.options = options or SolverOptions()
        self.excluded = {PackageName(name): tuple(versions) for name, versions in (excluded or {}).items()}
        self.state = SolverState.PROPAGATING
        self._solution = PartialSolution()
        self._incompatibilities: Dict[SolverPackage, List[Incompatibility]] = {}
        self._unavailable: Dict[SolverPackage, Dict[Version, str]] = {}
        self._listing_errors: Dict[PackageName, str] = {}
        self._explicit_prereleases: Set[PackageName] = set()
        self._pool: Optional[FetchPool] = None

    # Public ---------------------------------------------------------------

    def solve(self) -> SolverResult:
        start = time.time()
        self._pool = FetchPool(self.provider, max_workers=self.options.max_workers)
        try:
            self._add_incompatibility(
                Incompatibility([Term(ROOT, VersionSet.exact(ROOT_VERSION), False)], RootCause())
            )
            for name, versions in self.excluded.items():
                for version in versions:
                    self._mark_unavailable(SolverPackage(name), version, "excluded after selection failed")
            next_package: Optional[SolverPackage] = ROOT
            while next_package is not None:
                self._propagate(next_package)
                next_package = self._choose_package_version()
            self._transition(SolverState.SATISFIED)
            result = SolverResult(
                assignment=self._solution.decisions,
                metadata={},
                root_requirements=self.requirements,
                root_groups=dict(self.groups),
                attempted_solutions=self._solution.attempted_solutions,
                duration=time.time() - start,
                unavailable=self._unavailable_by_name(),
            )
            fetched = self._pool.fetched_metadata()
            for package, version in result.assignment.items():
                if not package.is_root:
                    result.metadata[(package.name, version)] = fetched[(package.name, version)]
            logger.info(
                "Resolved %d packages in %.2fs after %d attempt(s)",
                len(result.versions()),
                result.duration,
                result.attempted_solutions,
            )
            return result
        finally:
            self._pool.close()

    # State ----------------------------------------------------------------

    def _transition(self, state: SolverState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"[BUG] illegal solver transition {self.state.value} -> {state.value}")
        if state is not self.state:
            logger.debug("solver: %s -> %s", self.state.value, state.value)
        self.state = state

    def _add_incompatibility(self, incompatibility: Incompatibility) -> None:
        logger.debug("fact: %s", incompatibility)
        for term in incompatibility.terms:
            self._incompatibilities.setdefault(term.package, []).append(incompatibility)

    def _mark_unavailable(self, package: SolverPackage, version: Version, reason: str) -> None:
        # Scoped to the solver package: a broken extra must not hide the base version.
        self._unavailable.setdefault(package, {})[version] = reason
        self._add_incompatibility(
            Incompatibility([Term(package, VersionSet.exact(version), True)], UnavailableCause(reason))
        )

    def _unavailable_by_name(self) -> Dict[PackageName, Dict[Version, str]]:
        merged: Dict[PackageName, Dict[Version, str]] = {}
        for package in sorted(self._unavailable, key=SolverPackage.sort_key):
            merged.setdefault(package.name, {}).update(self._unavailable[package])
        return merged

    # Propagation ----------------------------------------------------------

    def _propagate(self, package: SolverPackage) -> None:
        changed: Dict[SolverPackage, None] = {package: None}
        while changed:
            package = next(iter(changed))
            del changed[package]
            # Newest first: recently learned facts tend to fire sooner.
            for incompatibility in reversed(self._incompatibilities.get(package, [])):
                result = self._propagate_incompatibility(incompatibility)
                if result is _CONFLICT:
                    self._transition(SolverState.CONFLICT_FOUND)
                    root_cause = self._resolve_conflict(incompatibility)
                    self._transition(SolverState.PROPAGATING)
                    changed.clear()
                    derived = self._propagate_incompatibility(root_cause)
                    if not isinstance(derived, SolverPackage):
                        raise RuntimeError(f"[BUG] {root_cause} did not propagate after backjumping")
                    changed[derived] = None
                    break
                if isinstance(result, SolverPackage):
                    changed[result] = None

    def _propagate_incompatibility(self, incompatibility: Incompatibility) -> Union[SolverPackage, _Conflict, None]:
        unsatisfied: Optional[Term] = None
        for term in incompatibility.terms:
            relation = self._solution.relation(term)
            if relation is Relation.DISJOINT:
                return None
            if relation is Relation.OVERLAPPING:
                if unsatisfied is not None:
                    return None
                unsatisfied = term
        if unsatisfied is None:
            return _CONFLICT
        logger.debug("derived: %s", unsatisfied.inverse())
        self._solution.derive(unsatisfied.inverse(), incompatibility)
        return unsatisfied.package

    def _resolve_conflict(self, incompatibility: Incompatibility) -> Incompatibility:
        logger.debug("conflict: %s", incompatibility)
        new_incompatibility = False
        while not incompatibility.is_failure():
            most_recent_term: Optional[Term] = None
            most_recent_satisfier = None
            difference: Optional[Term] = None
            previous_satisfier_level = 1

            for term in incompatibility.terms:
                satisfier = self._solution.satisfier(term)
                if most_recent_satisfier is None:
                    most_recent_term = term
                    most_recent_satisfier = satisfier
                elif most_recent_satisfier.index < satisfier.index:
                    previous_satisfier_level = max(previous_satisfier_level, most_recent_satisfier.decision_level)
                    most_recent_term = term
                    most_recent_satisfier = satisfier
                    difference = None
                else:
                    previous_satisfier_level = max(previous_satisfier_level, satisfier.decision_level)

                if most_recent_term == term:
                    # The satisfier may be broader than the term; what lies
                    # outside the term was settled by an earlier assignment.
                    difference = most_recent_satisfier.term.difference(most_recent_term)
                    if difference is not None:
                        previous_satisfier_level = max(
                            previous_satisfier_level,
                            self._solution.satisfier(difference.inverse()).decision_level,
                        )

            assert most_recent_satisfier is not None and most_recent_term is not None
            if previous_satisfier_level < most_recent_satisfier.decision_level or most_recent_satisfier.cause is None:
                self._transition(SolverState.BACKTRACKING)
                logger.debug("backjump to level %d", previous_satisfier_level)
                self._solution.backtrack(previous_satisfier_level)
                if new_incompatibility:
                    self._add_incompatibility(incompatibility)
                return incompatibility

            terms = [term for term in incompatibility.terms if term != most_recent_term]
            terms.extend(
                term for term in most_recent_satisfier.cause.terms if term.package != most_recent_satisfier.term.package
            )
            if difference is not None:
                terms.append(difference.inverse())
            incompatibility = Incompatibility(terms, ConflictCause(incompatibility, most_recent_satisfier.cause))
            new_incompatibility = True
            logger.debug("learned: %s", incompatibility)

        self._transition(SolverState.UNSATISFIABLE)
        raise Unsatisfiable(incompatibility)

    # Decisions ------------------------------------------------------------

    def _candidates(self, package: SolverPackage, term: Term) -> List[Version]:
        """Acceptable versions for *package* within *term*, highest first."""
        if package.is_root:
            return [ROOT_VERSION] if term.versions.contains(ROOT_VERSION) else []
        assert self._pool is not None
        try:
            listing = self._pool.versions(package.name)
        except FetchError as exc:
            self._listing_errors[package.name] = str(exc)
            return []
        unavailable = self._unavailable.get(package, {})
        candidates = filter_candidates(
            (version for version in listing if version not in unavailable),
            term.versions,
            self.options.prereleases,
            explicit=package.name in self._explicit_prereleases,
        )
        return sorted(set(candidates), reverse=True)

    def _choose_package_version(self) -> Optional[SolverPackage]:
        undecided = self._solution.undecided()
        if not undecided:
            return None
        assert self._pool is not None
        self._pool.prefetch_versions(package.name for package, _ in undecided if not package.is_root)

        ranked: List[Tuple[Tuple, SolverPackage, Term, List[Version]]] = []
        for package, term in undecided:
            candidates = self._candidates(package, term)
            if candidates and not package.is_root:
                self._pool.prefetch_metadata(package.name, candidates[0])
            ranked.append(((len(candidates), package.sort_key()), package, term, candidates))
        ranked.sort(key=lambda item: (not item[1].is_root, item[0]))
        _, package, term, candidates = ranked[0]

        if not candidates:
            reason = self._listing_errors.get(package.name)
            if reason is not None:
                cause: Union[UnavailableCause, NoVersionsCause] = UnavailableCause(reason)
            else:
                cause = NoVersionsCause()
            self._add_incompatibility(Incompatibility([Term(package, term.versions, True)], cause))
            return package

        version = candidates[0]
        try:
            dependencies = self._dependencies_for(package, version)
        except (FetchError, MetadataError) as exc:
            logger.warning("%s==%s is unavailable: %s", package, version, exc)
            self._mark_unavailable(package, version, str(exc))
            return package

        conflict = False
        for dependency, versions in dependencies:
            incompatibility = Incompatibility(
                [Term(package, VersionSet.exact(version), True), Term(dependency, versions, False)],
                DependencyCause(),
            )
            self._add_incompatibility(incompatibility)
            # If the other terms already hold, picking this version would
            # conflict immediately; let propagation steer elsewhere.
            conflict = conflict or all(
                term.package == package or self._solution.satisfies(term) for term in incompatibility.terms
            )
        self._pool.prefetch_versions(dependency.name for dependency, _ in dependencies)
        if not conflict:
            logger.debug("decision: %s==%s", package, version)
            self._solution.decide(package, version)
        return package

    def _dependencies_for(self, package: SolverPackage, version: Version) -> List[Tuple[SolverPackage, VersionSet]]:
        if package.is_root:
            requirements = list(self.requirements)
            for group in self.groups.values():
                requirements.extend(group)
            return self._targets(package, version, requirements)
        assert self._pool is not None
        metadata = self._pool.metadata(package.name, version)
        pinned: List[Tuple[SolverPackage, VersionSet]] = []
        if package.extra is not None:
            if package.extra not in metadata.extras:
                logger.warning("%s==%s does not provide the extra %r", package.name, version, package.extra)
            requirements = metadata.extra_requirements(package.extra)
            pinned.append((package.base(), VersionSet.exact(version)))
        elif package.group is not None:
            if package.group not in metadata.groups:
                logger.warning("%s==%s does not define the group %r", package.name, version, package.group)
            requirements = metadata.group_requirements(package.group)
            pinned.append((package.base(), VersionSet.exact(version)))
        else:
            requirements = metadata.active_requirements()
        return pinned + self._targets(package, version, requirements)

    def _targets(
        self,
        package: SolverPackage,
        version: Version,
        requirements: Iterable[Requirement],
    ) -> List[Tuple[SolverPackage, VersionSet]]:
        merged: Dict[SolverPackage, VersionSet] = {}
        for requirement in requirements:
            if not requirement.active:
                continue
            if requirement.prerelease_explicit:
                self._explicit_prereleases.add(requirement.name)
            targets = [SolverPackage(requirement.name, extra=extra) for extra in sorted(requirement.extras)]
            targets.extend(SolverPackage(requirement.name, group=group) for group in sorted(requirement.groups))
            if not targets:
                targets = [SolverPackage(requirement.name)]
            for target in targets:
                if target == package:
                    raise MetadataError(f"{package}=={version} declares a requirement on itself")
                current = merged.get(target, VersionSet.full())
                merged[target] = current.intersect(requirement.versions)
        for target, versions in merged.items():
            if versions.is_empty():
                raise MetadataError(f"{package}=={version} requires {target} with an empty version range")
        return list(merged.items())


def solve(
    requirements: Sequence[Requirement],
    provider: MetadataProvider,
    options: Optional[SolverOptions] = None,
    excluded: Optional[Mapping[PackageName, Iterable[Version]]] = None,
    groups: Optional[Mapping[str, Sequence[Requirement]]] = None,
) -> SolverResult:
    return VersionSolver(requirements, provider, options=options, excluded=excluded, groups=groups).solve()
