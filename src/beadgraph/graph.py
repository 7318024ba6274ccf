"""Assemble rooted dependency graphs from a flat issue list."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from .models import Dependency, Edge, Graph, Issue

logger = logging.getLogger(__name__)


def _coerce(issue: Issue | dict[str, Any]) -> Issue:
    if isinstance(issue, Issue):
        return issue
    return Issue.from_raw(issue)


def build_graphs(issues: Iterable[Issue | dict[str, Any]]) -> list[Graph]:
    """Return one graph per root issue.

    A root is an issue with no blockers. When nothing qualifies (every issue
    sits in a cycle, or depends on ids outside the input) every issue becomes
    a root, so non-empty input always yields at least one graph.
    """
    by_id: dict[str, Issue] = {}
    for raw in issues:
        issue = _coerce(raw)
        by_id[issue.id] = issue
    if not by_id:
        return []

    # Insertion order of by_id is first-seen order; values are last-seen records.
    ordered = list(by_id.values())

    depends_on: dict[str, set[str]] = {}
    depended_by: dict[str, set[str]] = {}
    dependencies: list[Dependency] = []
    seen_edges: set[tuple[str, str]] = set()
    for issue in ordered:
        blockers = depends_on.setdefault(issue.id, set())
        for dep_id in issue.dependencies:
            blockers.add(dep_id)
            depended_by.setdefault(dep_id, set()).add(issue.id)
            key = (issue.id, dep_id)
            if key in seen_edges:
                continue
            seen_edges.add(key)
            dependencies.append(Dependency(issue_id=issue.id, depends_on_id=dep_id))

    roots = [issue for issue in ordered if not depends_on.get(issue.id)]
    if not roots:
        logger.debug("no natural roots among %d issues; using all", len(ordered))
        roots = ordered

    return [
        Graph(root=root, issues=ordered, dependencies=dependencies, issue_map=by_id)
        for root in roots
    ]


def graphs_to_json(graphs: list[Graph]) -> list[dict[str, Any]]:
    return [graph.to_json() for graph in graphs]


def dependency_to_edge(dep: Dependency) -> Edge:
    # Blocker first: the edge runs from depends_on_id to issue_id.
    return Edge(
        id=f"{dep.depends_on_id}-{dep.issue_id}",
        source=dep.depends_on_id,
        target=dep.issue_id,
    )


def dependencies_to_edges(dependencies: Iterable[Dependency]) -> list[Edge]:
    edges: list[Edge] = []
    skipped = 0
    for dep in dependencies:
        if not dep.issue_id or not dep.depends_on_id:
            skipped += 1
            continue
        edges.append(dependency_to_edge(dep))
    if skipped:
        logger.warning("found %d dependencies with missing source/target", skipped)
    return edges


def issue_summary(issue: Issue) -> dict[str, Any]:
    return {
        "issueId": issue.id,
        "title": issue.title,
        "status": issue.status,
        "type": issue.type or "task",
        "priority": issue.priority if issue.priority is not None else 2,
    }


def issues_to_nodes(issues: Iterable[Issue]) -> list[tuple[str, dict[str, Any]]]:
    """Layout input for ``layout.layout``: ``(id, data)`` pairs."""
    return [(issue.id, issue_summary(issue)) for issue in issues]
