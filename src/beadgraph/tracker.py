"""Issue tracker gateway: the bd CLI and an in-memory stand-in.

Every operation returns a :class:`TrackerResult` instead of raising. bd's
free-text failures are normalized onto :class:`ErrorKind` by keyword.
"""

from __future__ import annotations

import logging
import os
import random
import string
import subprocess
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Generic, Protocol, TypeVar

from .errors import DEPENDENCY_ERRORS, ErrorKind, TrackerError, normalize_error
from .models import (
    ISSUE_PRIORITIES,
    ISSUE_STATUSES,
    ISSUE_TYPES,
    Dependency,
    Issue,
    IssueGraph,
)
from .util import ProcessResult, parse_json_output, run_process, utc_now_iso

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Closing goes through close_issue, never through update.
UPDATABLE_STATUSES = tuple(s for s in ISSUE_STATUSES if s != "closed")


@dataclass(frozen=True)
class TrackerResult(Generic[T]):
    ok: bool
    data: T | None = None
    error: TrackerError | None = None

    @classmethod
    def success(cls, data: T | None = None) -> TrackerResult[T]:
        return cls(True, data=data)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> TrackerResult[T]:
        return cls(False, error=TrackerError(kind, message))


@dataclass(frozen=True)
class CreateIssueInput:
    title: str
    description: str | None = None
    type: str | None = None
    priority: int | None = None


@dataclass(frozen=True)
class UpdateIssueInput:
    title: str | None = None
    description: str | None = None
    type: str | None = None
    priority: int | None = None
    status: str | None = None
    assignee: str | None = None


def validate_create(data: CreateIssueInput) -> TrackerError | None:
    if not data.title or not data.title.strip():
        return TrackerError(ErrorKind.VALIDATION, "Title is required")
    return _validate_fields(data.type, data.priority)


def validate_update(data: UpdateIssueInput) -> TrackerError | None:
    if data.title is not None and not data.title.strip():
        return TrackerError(ErrorKind.VALIDATION, "Title cannot be empty")
    if data.status is not None and data.status not in UPDATABLE_STATUSES:
        return TrackerError(
            ErrorKind.VALIDATION,
            f"Invalid status: {data.status}. Must be open or in_progress",
        )
    return _validate_fields(data.type, data.priority)


def _validate_fields(issue_type: str | None, priority: int | None) -> TrackerError | None:
    if issue_type is not None and issue_type not in ISSUE_TYPES:
        return TrackerError(
            ErrorKind.VALIDATION,
            f"Invalid type: {issue_type}. Must be task, bug, or feature",
        )
    if priority is not None and (isinstance(priority, bool) or priority not in ISSUE_PRIORITIES):
        return TrackerError(
            ErrorKind.VALIDATION,
            f"Invalid priority: {priority}. Must be 0, 1, 2, or 3",
        )
    return None


class IssueTracker(Protocol):
    def list_issues(self) -> TrackerResult[list[Issue]]: ...

    def get_issue(self, issue_id: str) -> TrackerResult[Issue]: ...

    def create_issue(self, data: CreateIssueInput) -> TrackerResult[Issue]: ...

    def update_issue(self, issue_id: str, data: UpdateIssueInput) -> TrackerResult[Issue]: ...

    def close_issue(self, issue_id: str, reason: str | None = None) -> TrackerResult[Issue]: ...

    def add_dependency(self, blocked_id: str, blocker_id: str) -> TrackerResult[Dependency]: ...

    def remove_dependency(self, blocked_id: str, blocker_id: str) -> TrackerResult[None]: ...

    def get_graph(self) -> TrackerResult[IssueGraph]: ...

    def sync(
        self,
        *,
        import_only: bool = False,
        no_push: bool = False,
        timeout: float | None = None,
    ) -> TrackerResult[None]: ...


# ---------------------------------------------------------------------------
# bd CLI
# ---------------------------------------------------------------------------


class BdCommandFailed(RuntimeError):
    pass


def _failure_message(result: ProcessResult) -> str:
    stdout = result.stdout.strip()
    stderr = result.stderr.strip()
    output = stdout or stderr
    try:
        parsed = parse_json_output(output)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict) and parsed.get("error"):
        return str(parsed["error"])
    return stderr or stdout or f"bd command failed with code {result.returncode}"


def _single(payload: Any) -> dict[str, Any] | None:
    """bd show/update/close wrap their issue in a one-element array."""
    if isinstance(payload, list):
        return payload[0] if payload and isinstance(payload[0], dict) else None
    if isinstance(payload, dict):
        return payload
    return None


@dataclass
class BeadsTracker:
    cwd: Path
    binary: str = "bd"

    def _run(self, args: list[str], *, timeout: float | None = None) -> str:
        argv = [self.binary, *args]
        env = {**os.environ, "BD_NO_DAEMON": "true"}
        logger.debug("running %s in %s", " ".join(argv), self.cwd)
        try:
            result = run_process(argv, cwd=self.cwd, env=env, timeout=timeout)
        except FileNotFoundError as exc:
            raise BdCommandFailed(f"{self.binary} is not installed or not on PATH") from exc
        # bd can exit 0 on failure in no-daemon mode; an "Error" prefix on stderr is authoritative.
        if result.returncode == 0 and not result.stderr.strip().startswith("Error"):
            return result.stdout
        raise BdCommandFailed(_failure_message(result))

    def _run_json(self, args: list[str]) -> Any:
        return parse_json_output(self._run(args))

    def list_issues(self) -> TrackerResult[list[Issue]]:
        try:
            payload = self._run_json(["list", "--json"])
        except (BdCommandFailed, ValueError) as exc:
            return TrackerResult(False, error=normalize_error(str(exc)))
        rows = payload if isinstance(payload, list) else []
        return TrackerResult.success([Issue.from_raw(row) for row in rows if isinstance(row, dict)])

    def _issue_command(self, args: list[str]) -> TrackerResult[Issue]:
        try:
            payload = self._run_json(args)
        except (BdCommandFailed, ValueError) as exc:
            return TrackerResult(False, error=normalize_error(str(exc)))
        row = _single(payload)
        if row is None:
            return TrackerResult.failure(ErrorKind.NOT_FOUND, "Issue not found")
        return TrackerResult.success(Issue.from_raw(row))

    def get_issue(self, issue_id: str) -> TrackerResult[Issue]:
        return self._issue_command(["show", issue_id, "--json"])

    def create_issue(self, data: CreateIssueInput) -> TrackerResult[Issue]:
        error = validate_create(data)
        if error is not None:
            return TrackerResult(False, error=error)

        args = ["create", data.title.strip(), "--json"]
        if data.description:
            args += ["--description", data.description]
        if data.type:
            args += ["--type", data.type]
        if data.priority is not None:
            args += ["--priority", str(data.priority)]
        try:
            payload = self._run_json(args)
        except (BdCommandFailed, ValueError) as exc:
            return TrackerResult(False, error=normalize_error(str(exc)))
        row = _single(payload)
        if row is None:
            return TrackerResult.failure(ErrorKind.UNKNOWN, "bd create returned no issue")
        return TrackerResult.success(Issue.from_raw(row))

    def update_issue(self, issue_id: str, data: UpdateIssueInput) -> TrackerResult[Issue]:
        error = validate_update(data)
        if error is not None:
            return TrackerResult(False, error=error)

        args = ["update", issue_id]
        if data.title:
            args += ["--title", data.title]
        if data.description:
            args += ["--description", data.description]
        if data.type:
            args += ["--type", data.type]
        if data.priority is not None:
            args += ["--priority", str(data.priority)]
        if data.status:
            args += ["--status", data.status]
        if data.assignee:
            args += ["--assignee", data.assignee]
        args.append("--json")
        return self._issue_command(args)

    def close_issue(self, issue_id: str, reason: str | None = None) -> TrackerResult[Issue]:
        args = ["close", issue_id, "--json"]
        if reason:
            args += ["--reason", reason]
        return self._issue_command(args)

    def add_dependency(self, blocked_id: str, blocker_id: str) -> TrackerResult[Dependency]:
        try:
            payload = self._run_json(["dep", "add", blocked_id, blocker_id, "--json"])
        except (BdCommandFailed, ValueError) as exc:
            return TrackerResult(False, error=normalize_error(str(exc), DEPENDENCY_ERRORS))
        dep = Dependency(issue_id=blocked_id, depends_on_id=blocker_id)
        if isinstance(payload, dict) and payload.get("issue_id"):
            dep = Dependency.from_raw(payload)
        return TrackerResult.success(dep)

    def remove_dependency(self, blocked_id: str, blocker_id: str) -> TrackerResult[None]:
        try:
            self._run(["dep", "remove", blocked_id, blocker_id, "--json"])
        except BdCommandFailed as exc:
            error = normalize_error(str(exc))
            if error.kind is ErrorKind.NOT_FOUND:
                error = TrackerError(ErrorKind.NOT_FOUND, "Dependency not found")
            return TrackerResult(False, error=error)
        return TrackerResult.success()

    def get_graph(self) -> TrackerResult[IssueGraph]:
        try:
            output = self._run(["graph", "--all", "--json"])
        except BdCommandFailed as exc:
            return TrackerResult(False, error=normalize_error(str(exc)))

        if output.strip() == "No open issues found" or "[" not in output or "{" not in output:
            return TrackerResult.success(IssueGraph())
        try:
            entries = parse_json_output(output)
        except ValueError as exc:
            return TrackerResult.failure(ErrorKind.UNKNOWN, str(exc))
        if isinstance(entries, dict):
            entries = [entries]

        issues: list[Issue] = []
        issue_map: dict[str, Issue] = {}
        dependencies: list[Dependency] = []
        seen: set[tuple[str, str]] = set()
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            for raw in entry.get("Issues") or []:
                issue = Issue.from_raw(raw)
                if issue.id not in issue_map:
                    issues.append(issue)
                    issue_map[issue.id] = issue
            for raw in entry.get("Dependencies") or []:
                dep = Dependency.from_raw(raw)
                if dep.key not in seen:
                    seen.add(dep.key)
                    dependencies.append(dep)
        return TrackerResult.success(IssueGraph(issues, dependencies, issue_map))

    def sync(
        self,
        *,
        import_only: bool = False,
        no_push: bool = False,
        timeout: float | None = None,
    ) -> TrackerResult[None]:
        args = ["sync"]
        if import_only:
            args.append("--import-only")
        if no_push:
            args.append("--no-push")
        logger.info("running %s %s in %s", self.binary, " ".join(args), self.cwd)
        try:
            output = self._run(args, timeout=timeout)
        except BdCommandFailed as exc:
            logger.error("bd sync failed: %s", exc)
            return TrackerResult.failure(ErrorKind.SYNC_FAILURE, str(exc))
        except subprocess.TimeoutExpired:
            message = f"bd sync timed out after {timeout}s"
            logger.error(message)
            return TrackerResult.failure(ErrorKind.SYNC_FAILURE, message)
        logger.debug("bd sync output: %s", output.strip())
        return TrackerResult.success()


# ---------------------------------------------------------------------------
# In-memory tracker
# ---------------------------------------------------------------------------


def _generate_id() -> str:
    chars = string.ascii_lowercase + string.digits
    return "bead-" + "".join(random.choice(chars) for _ in range(3))


@dataclass
class MemoryTracker:
    """In-memory tracker mirroring bd's validation rules and error messages.

    Adding a dependency runs cycle detection, including self-dependencies.
    """

    cwd: Path | None = None
    issues: dict[str, Issue] = field(default_factory=dict)
    dependencies: list[Dependency] = field(default_factory=list)
    sync_calls: list[dict[str, Any]] = field(default_factory=list)
    sync_error: str | None = None

    def reset(self) -> None:
        self.issues.clear()
        self.dependencies = []
        self.sync_calls = []

    def seed(self, issues: list[Issue], dependencies: list[Dependency] | None = None) -> None:
        self.reset()
        for issue in issues:
            self.issues[issue.id] = issue
        self.dependencies = list(dependencies or [])
        self._refresh_counts()

    def _refresh_counts(self) -> None:
        blockers: dict[str, list[str]] = {issue_id: [] for issue_id in self.issues}
        dependents: dict[str, int] = {issue_id: 0 for issue_id in self.issues}
        for dep in self.dependencies:
            if dep.issue_id in blockers:
                blockers[dep.issue_id].append(dep.depends_on_id)
            if dep.depends_on_id in dependents:
                dependents[dep.depends_on_id] += 1
        for issue_id, issue in self.issues.items():
            self.issues[issue_id] = replace(
                issue,
                dependencies=tuple(blockers[issue_id]),
                dependency_count=len(blockers[issue_id]),
                dependent_count=dependents[issue_id],
            )

    def _would_cycle(self, blocked_id: str, blocker_id: str) -> bool:
        if blocked_id == blocker_id:
            return True
        depends_on: dict[str, list[str]] = {}
        for dep in self.dependencies:
            depends_on.setdefault(dep.issue_id, []).append(dep.depends_on_id)
        # A cycle exists if the blocker already (transitively) depends on the blocked issue.
        stack = [blocker_id]
        seen: set[str] = set()
        while stack:
            current = stack.pop()
            if current == blocked_id:
                return True
            if current in seen:
                continue
            seen.add(current)
            stack.extend(depends_on.get(current, ()))
        return False

    def list_issues(self) -> TrackerResult[list[Issue]]:
        return TrackerResult.success(list(self.issues.values()))

    def get_issue(self, issue_id: str) -> TrackerResult[Issue]:
        issue = self.issues.get(issue_id)
        if issue is None:
            return TrackerResult.failure(ErrorKind.NOT_FOUND, "Issue not found")
        return TrackerResult.success(issue)

    def create_issue(self, data: CreateIssueInput) -> TrackerResult[Issue]:
        error = validate_create(data)
        if error is not None:
            return TrackerResult(False, error=error)
        issue_id = _generate_id()
        while issue_id in self.issues:
            issue_id = _generate_id()
        now = utc_now_iso()
        issue = Issue(
            id=issue_id,
            title=data.title.strip(),
            status="open",
            type=data.type or "task",
            priority=data.priority if data.priority is not None else 2,
            description=data.description,
            created_at=now,
            updated_at=now,
        )
        self.issues[issue_id] = issue
        return TrackerResult.success(issue)

    def update_issue(self, issue_id: str, data: UpdateIssueInput) -> TrackerResult[Issue]:
        issue = self.issues.get(issue_id)
        if issue is None:
            return TrackerResult.failure(ErrorKind.NOT_FOUND, "Issue not found")
        error = validate_update(data)
        if error is not None:
            return TrackerResult(False, error=error)
        changes = {
            key: value
            for key, value in (
                ("title", data.title.strip() if data.title else None),
                ("description", data.description),
                ("type", data.type),
                ("priority", data.priority),
                ("status", data.status),
                ("assignee", data.assignee),
            )
            if value is not None
        }
        updated = replace(issue, updated_at=utc_now_iso(), **changes)
        self.issues[issue_id] = updated
        return TrackerResult.success(updated)

    def close_issue(self, issue_id: str, reason: str | None = None) -> TrackerResult[Issue]:
        issue = self.issues.get(issue_id)
        if issue is None:
            return TrackerResult.failure(ErrorKind.NOT_FOUND, "Issue not found")
        updated = replace(issue, status="closed", updated_at=utc_now_iso())
        self.issues[issue_id] = updated
        return TrackerResult.success(updated)

    def add_dependency(self, blocked_id: str, blocker_id: str) -> TrackerResult[Dependency]:
        if blocked_id not in self.issues or blocker_id not in self.issues:
            return TrackerResult.failure(ErrorKind.NOT_FOUND, "Issue not found")
        if any(dep.key == (blocked_id, blocker_id) for dep in self.dependencies):
            return TrackerResult.failure(ErrorKind.DUPLICATE, "Dependency already exists")
        if self._would_cycle(blocked_id, blocker_id):
            return TrackerResult.failure(
                ErrorKind.CYCLE, "Adding this dependency would create a cycle"
            )
        dep = Dependency(issue_id=blocked_id, depends_on_id=blocker_id, created_at=utc_now_iso())
        self.dependencies.append(dep)
        self._refresh_counts()
        return TrackerResult.success(dep)

    def remove_dependency(self, blocked_id: str, blocker_id: str) -> TrackerResult[None]:
        before = len(self.dependencies)
        self.dependencies = [
            dep for dep in self.dependencies if dep.key != (blocked_id, blocker_id)
        ]
        if len(self.dependencies) == before:
            return TrackerResult.failure(ErrorKind.NOT_FOUND, "Dependency not found")
        self._refresh_counts()
        return TrackerResult.success()

    def get_graph(self) -> TrackerResult[IssueGraph]:
        issues = list(self.issues.values())
        return TrackerResult.success(
            IssueGraph(issues, list(self.dependencies), {i.id: i for i in issues})
        )

    def sync(
        self,
        *,
        import_only: bool = False,
        no_push: bool = False,
        timeout: float | None = None,
    ) -> TrackerResult[None]:
        self.sync_calls.append({"import_only": import_only, "no_push": no_push})
        if self.sync_error is not None:
            return TrackerResult.failure(ErrorKind.SYNC_FAILURE, self.sync_error)
        return TrackerResult.success()
