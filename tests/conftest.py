from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable

import pytest

from beadgraph.models import Dependency, Issue
from beadgraph.tracker import MemoryTracker
from beadgraph.util import CommandError


class FakeGit:
    """Records git calls instead of spawning processes."""

    def __init__(self) -> None:
        self.staged = True
        self.commit_error: str | None = None
        self.calls: list[tuple[str, str]] = []
        self.commits: list[str] = []

    def add(self, path: str) -> None:
        self.calls.append(("add", path))

    def has_staged_changes(self) -> bool:
        self.calls.append(("diff", "--cached"))
        return self.staged

    def commit(self, message: str) -> None:
        self.calls.append(("commit", message))
        if self.commit_error is not None:
            raise CommandError(["git", "commit", "-m", message], 1, "", self.commit_error)
        self.commits.append(message)


def wait_for(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def fake_git() -> FakeGit:
    return FakeGit()


@pytest.fixture
def patched_git(monkeypatch: pytest.MonkeyPatch, fake_git: FakeGit) -> FakeGit:
    """Every SyncController built without an explicit gateway gets ``fake_git``."""
    monkeypatch.setattr("beadgraph.sync.GitGateway", lambda cwd, **kwargs: fake_git)
    return fake_git


@pytest.fixture
def tracker() -> MemoryTracker:
    t = MemoryTracker()
    t.seed(
        [
            Issue(id="bead-aaa", title="Design schema", type="feature", priority=1),
            Issue(id="bead-bbb", title="Write migration", type="task", priority=2),
            Issue(id="bead-ccc", title="Ship it", type="task", priority=2),
        ],
        [
            Dependency(issue_id="bead-bbb", depends_on_id="bead-aaa"),
            Dependency(issue_id="bead-ccc", depends_on_id="bead-bbb"),
        ],
    )
    return t


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    (tmp_path / ".git").mkdir()
    return tmp_path


@pytest.fixture(autouse=True)
def _reset_package_logger():
    yield
    logger = logging.getLogger("beadgraph")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
