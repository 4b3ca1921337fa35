"""The resolution graph: pinned distributions and the edges that pulled them in."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, Optional, Tuple, Union

import networkx as nx
from packaging.version import Version

from .dists import AnnotatedDist, needs_build
from .exceptions import CycleError, ResolutionError
from .models import NodeKey, PackageName, Requirement, normalize_extra
from .selector import Selection
from .solver import SolverResult

logger = logging.getLogger(__name__)


class EdgeKind(str, enum.Enum):
    RUNTIME = "runtime"
    BUILD = "build"


@dataclass(frozen=True)
class EdgeTag:
    """Why an edge exists.

    ``extra``/``group`` name the extra or dependency group of the *source*
    node that activates the edge; both are ``None`` for unconditional edges.
    """

    extra: Optional[str] = None
    group: Optional[str] = None
    kind: EdgeKind = EdgeKind.RUNTIME

    def sort_key(self) -> Tuple[str, str, str]:
        return (self.kind.value, self.extra or "", self.group or "")

    def __str__(self) -> str:
        parts = [] if self.kind is EdgeKind.RUNTIME else [self.kind.value]
        if self.extra:
            parts.append(f"extra={self.extra}")
        if self.group:
            parts.append(f"group={self.group}")
        return ",".join(parts)


class RootNode:
    """The project being resolved; it has no distribution."""

    _instance: Optional["RootNode"] = None

    def __new__(cls) -> "RootNode":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def sort_key(self) -> Tuple:
        return ("",)

    def __repr__(self) -> str:
        return "<root>"

    __str__ = __repr__


ROOT_NODE = RootNode()
GraphNode = Union[RootNode, NodeKey]
NodeRef = Union[AnnotatedDist, NodeKey, RootNode]


def _key(node: NodeRef) -> GraphNode:
    if isinstance(node, AnnotatedDist):
        return node.key
    return node


class ResolutionGraph:
    """A read-only view over the resolved plan.

    Nodes are keyed by (name, version, extra, group); the plain node and
    every extra or group node of one package share a single metadata
    record. All listings come back in a stable order.
    """

    def __init__(self) -> None:
        self._graph = nx.MultiDiGraph()
        self._graph.add_node(ROOT_NODE)

    # Construction (used by GraphBuilder) -----------------------------------

    def _add_node(self, dist: AnnotatedDist) -> None:
        self._graph.add_node(dist.key, dist=dist)

    def _add_edge(self, source: GraphNode, target: NodeKey, tag: EdgeTag) -> None:
        self._graph.add_edge(source, target, key=tag)

    # Queries --------------------------------------------------------------

    def __len__(self) -> int:
        return self._graph.number_of_nodes() - 1

    def __contains__(self, node: object) -> bool:
        if isinstance(node, AnnotatedDist):
            node = node.key
        return isinstance(node, NodeKey) and node in self._graph

    def __iter__(self) -> Iterator[AnnotatedDist]:
        return iter(self.nodes())

    def _dist(self, key: NodeKey) -> AnnotatedDist:
        return self._graph.nodes[key]["dist"]

    def _require(self, node: NodeRef) -> GraphNode:
        key = _key(node)
        if key not in self._graph:
            raise KeyError(f"{key} is not part of the resolution")
        return key

    def nodes(self) -> List[AnnotatedDist]:
        keys = [key for key in self._graph.nodes if isinstance(key, NodeKey)]
        return [self._dist(key) for key in sorted(keys, key=NodeKey.sort_key)]

    def roots(self) -> List[AnnotatedDist]:
        """Direct requirements of the project."""
        return [dist for dist, _ in self.children(ROOT_NODE)]

    def children(self, node: NodeRef) -> List[Tuple[AnnotatedDist, EdgeTag]]:
        key = self._require(node)
        found = [(self._dist(target), tag) for _, target, tag in self._graph.out_edges(key, keys=True)]
        return sorted(found, key=lambda item: (item[0].key.sort_key(), item[1].sort_key()))

    def parents(self, node: NodeRef) -> List[Tuple[Optional[AnnotatedDist], EdgeTag]]:
        """Incoming edges; the project itself appears as ``None``."""
        key = self._require(node)
        found: List[Tuple[Optional[AnnotatedDist], EdgeTag]] = []
        for source, _, tag in self._graph.in_edges(key, keys=True):
            found.append((None if source is ROOT_NODE else self._dist(source), tag))
        return sorted(found, key=lambda item: (item[0].key.sort_key() if item[0] is not None else ("",), item[1].sort_key()))

    def edges(self) -> List[Tuple[GraphNode, NodeKey, EdgeTag]]:
        found = list(self._graph.edges(keys=True))
        return sorted(found, key=lambda item: (item[0].sort_key(), item[1].sort_key(), item[2].sort_key()))

    def get(self, name: str, extra: Optional[str] = None, group: Optional[str] = None) -> Optional[AnnotatedDist]:
        name = PackageName(name)
        extra = normalize_extra(extra) if extra else None
        group = normalize_extra(group) if group else None
        for key in self._graph.nodes:
            if isinstance(key, NodeKey) and key.name == name and key.extra == extra and key.group == group:
                return self._dist(key)
        return None

    def versions(self) -> Dict[PackageName, Version]:
        return {dist.name: dist.version for dist in self.nodes()}


@dataclass
class GraphOptions:
    allow_runtime_cycles: bool = True


class GraphBuilder:
    """Assemble a ResolutionGraph from a solver result and its selections."""

    def __init__(
        self,
        result: SolverResult,
        selections: Mapping[Tuple[PackageName, Version], Selection],
        options: Optional[GraphOptions] = None,
    ):
        self.result = result
        self.selections = selections
        self.options = options or GraphOptions()
        self._versions = result.versions()

    def build(self) -> ResolutionGraph:
        graph = ResolutionGraph()
        for package in self.result.packages():
            version = self.result.assignment[package]
            selection = self.selections.get((package.name, version))
            if selection is None:
                raise ResolutionError(f"No distribution was selected for {package.name}=={version}")
            graph._add_node(
                AnnotatedDist(
                    dist=selection.dist,
                    name=package.name,
                    version=version,
                    extra=package.extra,
                    group=package.group,
                    hashes=selection.hashes,
                    metadata=self.result.metadata.get((package.name, version)),
                )
            )

        for requirement in self.result.root_requirements:
            self._connect(graph, ROOT_NODE, requirement, EdgeTag())
        for group, requirements in self.result.root_groups.items():
            for requirement in requirements:
                self._connect(graph, ROOT_NODE, requirement, EdgeTag(group=group))

        for dist in list(graph.nodes()):
            metadata = dist.metadata
            if metadata is None:
                continue
            for requirement in metadata.active_requirements():
                self._connect(graph, dist.key, requirement, EdgeTag())
            if dist.extra is not None:
                for requirement in metadata.extra_requirements(dist.extra):
                    self._connect(graph, dist.key, requirement, EdgeTag(extra=dist.extra))
            if dist.group is not None:
                for requirement in metadata.group_requirements(dist.group):
                    self._connect(graph, dist.key, requirement, EdgeTag(group=dist.group))

        self._prune(graph)
        self._add_build_edges(graph)
        self._check_cycles(graph)
        logger.info("Resolution graph has %d nodes and %d edges", len(graph), len(graph.edges()))
        return graph

    def _targets(self, requirement: Requirement) -> List[NodeKey]:
        version = self._versions.get(requirement.name)
        if version is None:
            raise ResolutionError(f"{requirement} is missing from the resolution")
        if not requirement.versions.contains(version):
            raise ResolutionError(f"{requirement} is not satisfied by {requirement.name}=={version}")
        keys = [NodeKey(requirement.name, version, extra=extra) for extra in sorted(requirement.extras)]
        keys.extend(NodeKey(requirement.name, version, group=group) for group in sorted(requirement.groups))
        return keys or [NodeKey(requirement.name, version)]

    def _connect(self, graph: ResolutionGraph, source: GraphNode, requirement: Requirement, tag: EdgeTag) -> None:
        if not requirement.active:
            return
        for target in self._targets(requirement):
            if target not in graph:
                raise ResolutionError(f"{target} is required by {source} but was not resolved")
            graph._add_edge(source, target, tag)

    def _prune(self, graph: ResolutionGraph) -> None:
        reachable = nx.descendants(graph._graph, ROOT_NODE)
        unreachable = [key for key in graph._graph.nodes if key is not ROOT_NODE and key not in reachable]
        for key in unreachable:
            logger.debug("Dropping %s: not reachable from the project", key)
        graph._graph.remove_nodes_from(unreachable)

    def _add_build_edges(self, graph: ResolutionGraph) -> None:
        for dist in graph.nodes():
            if dist.metadata is None or not needs_build(dist.dist):
                continue
            for requirement in dist.metadata.build_requires:
                if not requirement.active:
                    continue
                version = self._versions.get(requirement.name)
                if version is None or not requirement.versions.contains(version):
                    # Satisfied by an isolated build environment instead.
                    continue
                target = NodeKey(requirement.name, version)
                if target in graph:
                    graph._add_edge(dist.key, target, EdgeTag(kind=EdgeKind.BUILD))

    def _check_cycles(self, graph: ResolutionGraph) -> None:
        for source, target, tag in graph.edges():
            if tag.kind is not EdgeKind.BUILD:
                continue
            if source == target:
                raise CycleError([str(source), str(target)])
            if nx.has_path(graph._graph, target, source):
                path = nx.shortest_path(graph._graph, target, source)
                raise CycleError([str(source)] + [str(node) for node in path])

        if self.options.allow_runtime_cycles:
            return
        runtime = nx.DiGraph()
        for source, target, tag in graph.edges():
            if tag.kind is EdgeKind.RUNTIME and isinstance(source, NodeKey) and source.extra is None and source.group is None:
                runtime.add_edge(source, target)
        try:
            cycle = nx.find_cycle(runtime)
        except nx.NetworkXNoCycle:
            return
        nodes = [str(edge[0]) for edge in cycle] + [str(cycle[0][0])]
        raise CycleError(nodes, message="Runtime dependency cycle detected")
