"""Formatting helpers for presenting resolution results and failures."""
from __future__ import annotations

import json
from typing import TYPE_CHECKING, Dict, List, Optional

from .dists import AnnotatedDist, dist_kind, needs_build
from .graph import ROOT_NODE, EdgeKind, ResolutionGraph
from .incompatibility import ConflictCause, Incompatibility

if TYPE_CHECKING:
    from .resolution import Resolution


# Failure explanations ----------------------------------------------------------


def explain(incompatibility: Incompatibility) -> List[Incompatibility]:
    """Flatten the derivation of *incompatibility* in post-order.

    Each incompatibility appears once, after both of the facts it was
    derived from, so external causes always precede their consequences and
    the final entry is *incompatibility* itself.
    """

    ordered: List[Incompatibility] = []
    seen: set = set()
    stack: List[tuple] = [(incompatibility, False)]
    while stack:
        node, expanded = stack.pop()
        if id(node) in seen:
            continue
        if expanded or not isinstance(node.cause, ConflictCause):
            seen.add(id(node))
            ordered.append(node)
            continue
        stack.append((node, True))
        stack.append((node.cause.right, False))
        stack.append((node.cause.left, False))
    return ordered


def _reference(node: Incompatibility, numbers: Dict[int, int]) -> str:
    number = numbers.get(id(node))
    return f"{node} ({number})" if number is not None else str(node)


def render_explanation(incompatibility: Incompatibility) -> str:
    """Render the trail as numbered "Because ..., ..." lines."""
    lines: List[str] = []
    numbers: Dict[int, int] = {}
    for node in explain(incompatibility):
        if not isinstance(node.cause, ConflictCause):
            continue
        left = _reference(node.cause.left, numbers)
        right = _reference(node.cause.right, numbers)
        numbers[id(node)] = len(lines) + 1
        lines.append(f"({numbers[id(node)]}) Because {left} and {right}, {node}.")
    if not lines:
        lines.append(f"(1) Because {incompatibility}, version solving failed.")
    return "\n".join(lines)


# Resolution listings -------------------------------------------------------------


def _provenance(graph: ResolutionGraph, dist: AnnotatedDist) -> List[str]:
    via: List[str] = []
    for parent, tag in graph.parents(dist):
        if tag.kind is EdgeKind.BUILD:
            continue
        label = "the project" if parent is None else str(parent.key)
        if tag.extra or tag.group:
            label += f" ({tag})"
        via.append(label)
    return via


def _format_node(graph: ResolutionGraph, dist: AnnotatedDist) -> List[str]:
    details: List[str] = [dist_kind(dist.dist)]
    index = dist.index()
    if index:
        details.append(index)
    lines = [f"  - {dist.key} [{', '.join(details)}]"]
    if dist.display() != f"{dist.name}=={dist.version}":
        lines.append(f"    from {dist.display()}")
    via = _provenance(graph, dist)
    if via:
        lines.append(f"    via {', '.join(via)}")
    builds = [str(child.key) for child, tag in graph.children(dist) if tag.kind is EdgeKind.BUILD]
    if builds:
        lines.append(f"    builds with {', '.join(builds)}")
    for digest in dist.hashes:
        lines.append(f"    --hash={digest}")
    return lines


def generate_text(resolution: "Resolution") -> str:
    graph = resolution.graph
    lines: List[str] = [f"Resolved {len(graph.versions())} packages:"]
    for dist in graph.nodes():
        lines.extend(_format_node(graph, dist))
    if resolution.excluded:
        lines.append("")
        lines.append("Versions skipped because no distribution could be selected:")
        for name in sorted(resolution.excluded):
            versions = ", ".join(str(version) for version in resolution.excluded[name])
            lines.append(f"  - {name}: {versions}")
    return "\n".join(lines)


def _node_to_dict(graph: ResolutionGraph, dist: AnnotatedDist) -> Dict[str, object]:
    return {
        "name": str(dist.name),
        "version": str(dist.version),
        "extra": dist.extra,
        "group": dist.group,
        "kind": dist_kind(dist.dist),
        "source": dist.display(),
        "index": dist.index(),
        "needs_build": needs_build(dist.dist),
        "hashes": [str(digest) for digest in dist.hashes],
        "dependencies": [
            {
                "node": str(child.key),
                "kind": tag.kind.value,
                "extra": tag.extra,
                "group": tag.group,
            }
            for child, tag in graph.children(dist)
        ],
    }


def generate_json(resolution: "Resolution", project: Optional[str] = None) -> str:
    graph = resolution.graph
    payload = {
        "project": project,
        "roots": [
            {"node": str(target), "extra": tag.extra, "group": tag.group}
            for source, target, tag in graph.edges()
            if source is ROOT_NODE
        ],
        "packages": [_node_to_dict(graph, dist) for dist in graph.nodes()],
        "excluded": {
            str(name): [str(version) for version in versions] for name, versions in sorted(resolution.excluded.items())
        },
        "attempted_solutions": resolution.solver.attempted_solutions,
    }
    return json.dumps(payload, indent=2)
