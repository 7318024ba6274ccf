"""Composition root: tracker + per-directory sync controllers + graph views."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import BeadgraphConfig
from .graph import build_graphs, dependencies_to_edges, issues_to_nodes
from .layout import LayoutOptions, layout
from .models import Graph, Issue
from .sync import SyncController, SyncRegistry
from .tracker import (
    BeadsTracker,
    CreateIssueInput,
    IssueTracker,
    TrackerResult,
    UpdateIssueInput,
)

logger = logging.getLogger(__name__)


def find_repo_root(start: Path | None = None) -> Path:
    """Walk up to find a .git directory."""
    p = (start or Path.cwd()).resolve()
    while p != p.parent:
        if (p / ".git").exists():
            return p
        p = p.parent
    return (start or Path.cwd()).resolve()


@dataclass(frozen=True)
class PositionedGraph:
    graphs: list[Graph]
    nodes: list[dict[str, Any]]
    edges: list[dict[str, str]]

    def to_json(self) -> dict[str, Any]:
        return {
            "graphs": [graph.to_json() for graph in self.graphs],
            "nodes": self.nodes,
            "edges": self.edges,
        }


class GraphService:
    def __init__(
        self,
        config: BeadgraphConfig,
        *,
        tracker: IssueTracker | None = None,
        registry: SyncRegistry | None = None,
    ) -> None:
        self.config = config
        self.repo_root = config.repo_root
        self.tracker: IssueTracker = tracker or BeadsTracker(
            config.repo_root, binary=config.bd_binary
        )
        self.registry = registry or SyncRegistry()

    def _new_controller(self, cwd: Path) -> SyncController:
        return SyncController(
            cwd,
            self.tracker,
            debounce_ms=self.config.sync.debounce_ms,
            no_push=self.config.sync.no_push,
            storage_path=self.config.sync.storage_path,
            sync_timeout=self.config.sync.timeout_s,
        )

    @property
    def controller(self) -> SyncController:
        return self.registry.get(self.repo_root, self._new_controller)

    def close(self) -> None:
        self.registry.reset()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def list_issues(self) -> TrackerResult[list[Issue]]:
        return self.tracker.list_issues()

    def graphs(self) -> TrackerResult[list[Graph]]:
        listed = self.tracker.list_issues()
        if not listed.ok:
            return TrackerResult(False, error=listed.error)
        return TrackerResult.success(build_graphs(listed.data or []))

    def positioned(self, options: LayoutOptions | None = None) -> TrackerResult[PositionedGraph]:
        built = self.graphs()
        if not built.ok:
            return TrackerResult(False, error=built.error)
        graphs = built.data or []
        if not graphs:
            return TrackerResult.success(PositionedGraph([], [], []))
        shared = graphs[0]
        edges = dependencies_to_edges(shared.dependencies)
        placed = layout(
            issues_to_nodes(shared.issues),
            edges,
            options or self.config.layout,
        )
        return TrackerResult.success(
            PositionedGraph(
                graphs,
                [node.to_json() for node in placed],
                [edge.to_json() for edge in edges],
            )
        )

    # ------------------------------------------------------------------
    # Mutations: each success queues a debounced commit + sync
    # ------------------------------------------------------------------

    def _after(self, result: TrackerResult[Any], message: str) -> TrackerResult[Any]:
        if result.ok:
            logger.debug("queueing sync: %s", message)
            self.controller.enqueue(message)
        return result

    def create_issue(self, data: CreateIssueInput) -> TrackerResult[Issue]:
        result = self.tracker.create_issue(data)
        return self._after(result, f"Create issue: {data.title.strip() if data.title else ''}")

    def update_issue(self, issue_id: str, data: UpdateIssueInput) -> TrackerResult[Issue]:
        return self._after(self.tracker.update_issue(issue_id, data), f"Update issue: {issue_id}")

    def close_issue(self, issue_id: str, reason: str | None = None) -> TrackerResult[Issue]:
        return self._after(self.tracker.close_issue(issue_id, reason), f"Close issue: {issue_id}")

    def add_dependency(self, blocked_id: str, blocker_id: str):
        return self._after(
            self.tracker.add_dependency(blocked_id, blocker_id),
            f"Add dependency: {blocked_id} blocked by {blocker_id}",
        )

    def remove_dependency(self, blocked_id: str, blocker_id: str) -> TrackerResult[None]:
        return self._after(
            self.tracker.remove_dependency(blocked_id, blocker_id),
            f"Remove dependency: {blocked_id} no longer blocked by {blocker_id}",
        )

    def sync_now(self, message: str | None = None) -> bool:
        """Flush now, keeping an already-queued message unless one is given.

        Returns True when a flush ran.
        """
        controller = self.controller
        if message or not controller.state.pending:
            controller.enqueue(message or "Sync beads")
        return controller.flush()
