"""Solve, select distributions, and build the resolution graph."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from packaging.version import Version

from .constants import DEFAULT_FETCH_WORKERS, DEFAULT_HASH_ALGORITHM
from .exceptions import SelectionError, Unsatisfiable
from .graph import GraphBuilder, GraphOptions, ResolutionGraph
from .metadata import IndexProvider, MetadataProvider
from .models import PackageName, Requirement, Source
from .selector import DistributionSelector, HashPolicy, Selection
from .solver import SolverOptions, SolverResult, VersionSolver
from .versions import PrereleasePolicy, parse_version

logger = logging.getLogger(__name__)


@dataclass
class ResolveOptions:
    prereleases: PrereleasePolicy = PrereleasePolicy.IF_NECESSARY_OR_EXPLICIT
    require_hashes: bool = False
    hash_algorithm: str = DEFAULT_HASH_ALGORITHM
    hashes: Dict[str, List[str]] = field(default_factory=dict)
    allow_runtime_cycles: bool = True
    supported_tags: Optional[List[str]] = None
    installed: Dict[str, str] = field(default_factory=dict)
    max_workers: int = DEFAULT_FETCH_WORKERS


@dataclass
class Resolution:
    graph: ResolutionGraph
    solver: SolverResult
    excluded: Dict[PackageName, List[Version]] = field(default_factory=dict)
    attempts: int = 1


def collect_sources(result: SolverResult) -> Dict[PackageName, Source]:
    """Explicit sources named by any requirement in the resolution.

    The project's own requirements win over those found in dependency
    metadata; otherwise the first one seen is used.
    """

    sources: Dict[PackageName, Source] = {}
    requirements: List[Requirement] = list(result.root_requirements)
    for group in result.root_groups.values():
        requirements.extend(group)
    for key in sorted(result.metadata, key=lambda item: (str(item[0]), item[1])):
        metadata = result.metadata[key]
        requirements.extend(metadata.requirements)
        for items in metadata.extras.values():
            requirements.extend(items)
        for items in metadata.groups.values():
            requirements.extend(items)
    for requirement in requirements:
        if requirement.source is not None and requirement.active:
            sources.setdefault(requirement.name, requirement.source)
    return sources


def resolve(
    requirements: Sequence[Requirement],
    provider: MetadataProvider,
    index: IndexProvider,
    options: Optional[ResolveOptions] = None,
    groups: Optional[Mapping[str, Sequence[Requirement]]] = None,
) -> Resolution:
    """Resolve *requirements* into a graph of concrete distributions.

    A version whose distribution cannot be selected is excluded and the
    solver runs again; each round excludes at least one more version, so the
    loop ends either with a full selection or with the solver giving up.
    """

    options = options or ResolveOptions()
    hash_policy = HashPolicy.build(
        required=options.require_hashes,
        algorithm=options.hash_algorithm,
        expected=options.hashes,
    )
    installed = {PackageName(name): parse_version(version) for name, version in options.installed.items()}
    solver_options = SolverOptions(prereleases=options.prereleases, max_workers=options.max_workers)

    excluded: Dict[PackageName, List[Version]] = {}
    last_failure: Optional[SelectionError] = None
    attempts = 0
    while True:
        attempts += 1
        try:
            result = VersionSolver(requirements, provider, solver_options, excluded=excluded, groups=groups).solve()
        except Unsatisfiable as exc:
            if last_failure is not None:
                raise last_failure from exc
            raise

        selector = DistributionSelector(
            index,
            sources=collect_sources(result),
            installed=installed,
            supported_tags=options.supported_tags,
            hash_policy=hash_policy,
            max_workers=options.max_workers,
        )
        outcomes = selector.select_all(result.versions().items())
        selections: Dict[Tuple[PackageName, Version], Selection] = {}
        failures: List[Tuple[PackageName, Version, SelectionError]] = []
        for (name, version), outcome in outcomes.items():
            if isinstance(outcome, SelectionError):
                failures.append((name, version, outcome))
            else:
                selections[(name, version)] = outcome
        if not failures:
            break
        for name, version, failure in failures:
            logger.warning("Excluding %s==%s: %s", name, version, failure.message)
            excluded.setdefault(name, []).append(version)
        last_failure = failures[0][2]

    graph = GraphBuilder(result, selections, GraphOptions(allow_runtime_cycles=options.allow_runtime_cycles)).build()
    return Resolution(graph=graph, solver=result, excluded=excluded, attempts=attempts)
