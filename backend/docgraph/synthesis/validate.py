"""Final checks on a merged graph before it is returned or stored.

Problems found here never fail a run. They are fixed where the fix is
unambiguous (edges pointing at missing nodes, isolated nodes when removal is
enabled) and otherwise reported as warnings on the result.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Sequence

from docgraph.core.logging import ctx, get_logger
from docgraph.synthesis.merge import render_mermaid
from docgraph.synthesis.types import GraphEdge, GraphNode

logger = get_logger(__name__)

_HEADER_RE = re.compile(r"^flowchart (TD|TB|BT|LR|RL)$")
_NODE_RE = re.compile(r'^\s+(\w+)\["((?:[^"\\]|\\.)*)"\]$')
_EDGE_RE = re.compile(r'^\s+(\w+) -->\|"((?:[^"\\]|\\.)*)"\| (\w+)$')


@dataclass(slots=True)
class ValidationReport:
    nodes: list[GraphNode]
    edges: list[GraphEdge]
    mermaid_code: str
    orphaned_edges_removed: int = 0
    isolated_nodes: list[str] = field(default_factory=list)
    isolated_nodes_removed: int = 0
    mermaid_problems: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def find_isolated_nodes(nodes: Sequence[GraphNode], edges: Sequence[GraphEdge]) -> list[str]:
    """Ids of nodes that no edge touches, in node order."""
    connected = {edge.source for edge in edges} | {edge.target for edge in edges}
    return [node.id for node in nodes if node.id not in connected]


def check_mermaid(code: str, nodes: Sequence[GraphNode], edges: Sequence[GraphEdge]) -> list[str]:
    """Structural check of rendered Mermaid against the graph it came from.

    Returns a list of problems; empty means every node is declared exactly
    once, every link joins declared nodes and the link count matches.
    """
    problems: list[str] = []
    lines = code.splitlines()
    if not lines or not _HEADER_RE.match(lines[0].strip()):
        problems.append('must start with a "flowchart" directive')

    declared: set[str] = set()
    links: list[tuple[int, str, str]] = []
    for number, line in enumerate(lines[1:], start=2):
        if not line.strip():
            continue
        node = _NODE_RE.match(line)
        if node:
            if node.group(1) in declared:
                problems.append(f"line {number}: node {node.group(1)} declared twice")
            declared.add(node.group(1))
            continue
        edge = _EDGE_RE.match(line)
        if edge:
            links.append((number, edge.group(1), edge.group(3)))
            continue
        problems.append(f"line {number}: unrecognized statement")

    for number, source, target in links:
        for endpoint in (source, target):
            if endpoint not in declared:
                problems.append(f"line {number}: link references undeclared node {endpoint}")
    missing = [node.id for node in nodes if node.id not in declared]
    if missing:
        problems.append(f"nodes missing from output: {', '.join(missing)}")
    if len(links) != len(edges):
        problems.append(f"expected {len(edges)} links, found {len(links)}")
    return problems


def validate_graph(
    nodes: Sequence[GraphNode],
    edges: Sequence[GraphEdge],
    *,
    min_nodes: int,
    max_nodes: int,
    remove_isolated: bool = False,
) -> ValidationReport:
    warnings: list[str] = []

    node_ids = {node.id for node in nodes}
    kept_edges = [edge for edge in edges if edge.source in node_ids and edge.target in node_ids]
    orphaned = len(edges) - len(kept_edges)
    if orphaned:
        warnings.append(f"Removed {orphaned} orphaned edges during validation")

    kept_nodes = list(nodes)
    isolated = find_isolated_nodes(kept_nodes, kept_edges)
    removed = 0
    # a graph made only of isolated nodes is kept whole
    if isolated and remove_isolated and len(isolated) < len(kept_nodes):
        dropped = set(isolated)
        kept_nodes = [node for node in kept_nodes if node.id not in dropped]
        removed = len(isolated)
        warnings.append(f"Removed {removed} isolated nodes (no connections)")
    elif isolated:
        warnings.append(f"Found {len(isolated)} isolated nodes (no connections)")

    count = len(kept_nodes)
    floor = min(min_nodes, max_nodes)
    if count < floor:
        warnings.append(f"Graph has too few nodes ({count} < {floor})")
    if count > max_nodes:
        warnings.append(f"Graph has too many nodes ({count} > {max_nodes})")

    mermaid_code = render_mermaid(kept_nodes, kept_edges)
    problems = check_mermaid(mermaid_code, kept_nodes, kept_edges)
    if problems:
        logger.warning("Rendered Mermaid failed validation", extra=ctx(problems=problems))
        warnings.extend(f"Mermaid output: {problem}" for problem in problems)

    logger.info(
        "Graph validated",
        extra=ctx(
            nodes=count,
            edges=len(kept_edges),
            orphaned_edges_removed=orphaned,
            isolated_nodes=len(isolated),
            isolated_nodes_removed=removed,
            warnings=len(warnings),
        ),
    )
    return ValidationReport(
        nodes=kept_nodes,
        edges=kept_edges,
        mermaid_code=mermaid_code,
        orphaned_edges_removed=orphaned,
        isolated_nodes=isolated,
        isolated_nodes_removed=removed,
        mermaid_problems=problems,
        warnings=warnings,
    )


__all__ = ["ValidationReport", "check_mermaid", "find_isolated_nodes", "validate_graph"]
