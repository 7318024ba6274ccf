"""Data types for issues, dependencies, graphs and laid-out nodes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

ISSUE_STATUSES = ("open", "in_progress", "closed")
ISSUE_TYPES = ("task", "bug", "feature")
ISSUE_PRIORITIES = (0, 1, 2, 3)


def blocker_id(entry: Any) -> str | None:
    """Normalize one dependency-list entry to the blocker's id.

    bd emits either bare ids or relationship records depending on the
    command (``list`` vs ``show``).
    """
    if isinstance(entry, str):
        return entry or None
    if isinstance(entry, dict):
        value = entry.get("depends_on_id") or entry.get("id")
        return str(value) if value else None
    return None


def _count(value: Any, fallback: int) -> int:
    if isinstance(value, bool):
        return fallback
    try:
        return int(value)
    except (TypeError, ValueError):
        return fallback


def _entries(value: Any) -> list[Any]:
    return value if isinstance(value, (list, tuple)) else []


@dataclass(frozen=True)
class Issue:
    """Transient copy of a tracker issue.

    Maps to bd JSON output, with ``issue_type`` renamed to ``type``.

    Attributes:
        id: Opaque, tracker-assigned id (e.g. "bead-a1b")
        status: open, in_progress or closed
        type: task, bug or feature; None when bd omits it
        priority: 0 (highest) to 3; None when bd omits it
        dependencies: blocker ids this issue depends on
    """

    id: str
    title: str = ""
    status: str = "open"
    type: str | None = None
    priority: int | None = None
    description: str | None = None
    assignee: str | None = None
    created_at: str = ""
    updated_at: str = ""
    dependency_count: int = 0
    dependent_count: int = 0
    dependencies: tuple[str, ...] = ()

    @classmethod
    def from_raw(cls, data: dict[str, Any]) -> Issue:
        raw_deps = _entries(data.get("dependencies"))
        deps = tuple(
            dep for dep in (blocker_id(entry) for entry in raw_deps) if dep is not None
        )
        raw_dependents = _entries(data.get("dependents"))
        dependency_count = data.get("dependency_count")
        dependent_count = data.get("dependent_count")
        return cls(
            id=str(data.get("id", "")),
            title=data.get("title") or "",
            status=data.get("status") or "open",
            type=data.get("issue_type", data.get("type")),
            priority=data.get("priority"),
            description=data.get("description"),
            assignee=data.get("assignee"),
            created_at=data.get("created_at") or "",
            updated_at=data.get("updated_at") or "",
            dependency_count=_count(dependency_count, len(raw_deps)),
            dependent_count=_count(dependent_count, len(raw_dependents)),
            dependencies=deps,
        )

    def to_json(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "type": self.type,
            "priority": self.priority,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "dependency_count": self.dependency_count,
            "dependent_count": self.dependent_count,
        }
        if self.description is not None:
            out["description"] = self.description
        if self.assignee is not None:
            out["assignee"] = self.assignee
        if self.dependencies:
            out["dependencies"] = list(self.dependencies)
        return out


@dataclass(frozen=True)
class Dependency:
    issue_id: str  # blocked
    depends_on_id: str  # blocker
    type: str = "blocks"
    created_at: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.issue_id, self.depends_on_id)

    @classmethod
    def from_raw(cls, data: dict[str, Any]) -> Dependency:
        return cls(
            issue_id=str(data.get("issue_id", "")),
            depends_on_id=str(data.get("depends_on_id", "")),
            type=data.get("type") or "blocks",
            created_at=data.get("created_at"),
        )

    def to_json(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "issue_id": self.issue_id,
            "depends_on_id": self.depends_on_id,
            "type": self.type,
        }
        if self.created_at is not None:
            out["created_at"] = self.created_at
        return out


@dataclass(frozen=True)
class Graph:
    """One rooted view over a shared issue set.

    Every graph returned by a single build shares ``issues``,
    ``dependencies`` and ``issue_map``; only ``root`` varies.
    """

    root: Issue
    issues: list[Issue]
    dependencies: list[Dependency]
    issue_map: dict[str, Issue]

    def to_json(self) -> dict[str, Any]:
        return {
            "Root": self.root.to_json(),
            "Issues": [issue.to_json() for issue in self.issues],
            "Dependencies": [dep.to_json() for dep in self.dependencies],
            "IssueMap": {key: issue.to_json() for key, issue in self.issue_map.items()},
        }


@dataclass(frozen=True)
class IssueGraph:
    """Flattened graph as reported by the tracker's ``graph`` command."""

    issues: list[Issue] = field(default_factory=list)
    dependencies: list[Dependency] = field(default_factory=list)
    issue_map: dict[str, Issue] = field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        return {
            "issues": [issue.to_json() for issue in self.issues],
            "dependencies": [dep.to_json() for dep in self.dependencies],
            "issueMap": {key: issue.to_json() for key, issue in self.issue_map.items()},
        }


@dataclass(frozen=True)
class Edge:
    id: str
    source: str
    target: str

    def to_json(self) -> dict[str, str]:
        return {"id": self.id, "source": self.source, "target": self.target}


@dataclass(frozen=True)
class LayoutNode:
    id: str
    x: float
    y: float
    layer: int
    data: Any = None

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "position": {"x": self.x, "y": self.y},
            "layer": self.layer,
            "data": self.data,
        }
