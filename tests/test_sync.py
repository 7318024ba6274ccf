from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest
from conftest import FakeGit, wait_for

from beadgraph.events import STATUS_CHANGE, SYNC_COMPLETE, SYNC_ERROR
from beadgraph.sync import (
    DEFAULT_COMMIT_MESSAGE,
    Phase,
    SyncController,
    SyncRegistry,
    SyncState,
    SyncStatus,
    Trigger,
    advance,
)
from beadgraph.tracker import MemoryTracker


def _controller(
    tmp_path: Path,
    git: FakeGit,
    tracker: MemoryTracker | None = None,
    *,
    debounce_ms: int = 100,
) -> SyncController:
    return SyncController(tmp_path, tracker or MemoryTracker(), git=git, debounce_ms=debounce_ms)


def _record(controller: SyncController) -> list[tuple[str, dict]]:
    seen: list[tuple[str, dict]] = []
    for name in (STATUS_CHANGE, SYNC_COMPLETE, SYNC_ERROR):
        controller.on(name, lambda payload, name=name: seen.append((name, payload)))
    return seen


class TestAdvance:
    def test_enqueue_sets_pending_message(self) -> None:
        state = advance(SyncState(), Trigger.ENQUEUE, message="Create issue: x")
        assert state.pending
        assert state.pending_message == "Create issue: x"
        assert state.phase is Phase.PENDING

    def test_enqueue_without_message_uses_default(self) -> None:
        state = advance(SyncState(), Trigger.ENQUEUE)
        assert state.pending_message == DEFAULT_COMMIT_MESSAGE

    def test_begin_without_pending_is_a_noop(self) -> None:
        state = SyncState()
        assert advance(state, Trigger.BEGIN) is state

    def test_begin_while_syncing_is_a_noop(self) -> None:
        state = SyncState(status=SyncStatus.SYNCING, pending_message="later")
        assert advance(state, Trigger.BEGIN) is state

    def test_begin_claims_pending_message(self) -> None:
        state = advance(SyncState(pending_message="m"), Trigger.BEGIN)
        assert state.status is SyncStatus.SYNCING
        assert not state.pending
        assert state.phase is Phase.FLUSHING

    def test_succeed_clears_error_and_stamps_time(self) -> None:
        syncing = SyncState(status=SyncStatus.SYNCING, last_error="old")
        state = advance(syncing, Trigger.SUCCEED, now=1234)
        assert state.status is SyncStatus.IDLE
        assert state.last_sync == 1234
        assert state.last_error is None

    def test_fail_records_error(self) -> None:
        syncing = SyncState(status=SyncStatus.SYNCING, last_sync=99)
        state = advance(syncing, Trigger.FAIL, error="boom")
        assert state.status is SyncStatus.ERROR
        assert state.last_error == "boom"
        assert state.last_sync == 99
        assert state.phase is Phase.ERROR

    def test_pending_message_survives_a_finish(self) -> None:
        syncing = SyncState(status=SyncStatus.SYNCING, pending_message="queued mid-flush")
        state = advance(syncing, Trigger.SUCCEED, now=1)
        assert state.pending_message == "queued mid-flush"
        assert state.phase is Phase.PENDING

    def test_to_json(self) -> None:
        state = SyncState(status=SyncStatus.ERROR, last_sync=5, last_error="x")
        assert state.to_json() == {
            "status": "error",
            "phase": "error",
            "lastSync": 5,
            "lastError": "x",
            "pending": False,
        }


def test_rapid_enqueues_collapse_into_one_flush(tmp_path: Path, fake_git: FakeGit) -> None:
    tracker = MemoryTracker()
    controller = _controller(tmp_path, fake_git, tracker)
    flushes: list[bool] = []
    original = controller.flush

    def spy() -> bool:
        ran = original()
        flushes.append(ran)
        return ran

    controller.flush = spy  # type: ignore[method-assign]

    controller.enqueue("first")
    controller.enqueue("second")
    controller.enqueue("third")

    assert wait_for(lambda: len(tracker.sync_calls) == 1)
    time.sleep(0.3)
    assert flushes == [True]
    assert fake_git.commits == ["third"]
    assert len(tracker.sync_calls) == 1
    assert tracker.sync_calls[0]["no_push"] is True


def test_flush_with_nothing_pending_does_nothing(tmp_path: Path, fake_git: FakeGit) -> None:
    tracker = MemoryTracker()
    controller = _controller(tmp_path, fake_git, tracker)
    seen = _record(controller)

    assert controller.flush() is False
    assert seen == []
    assert fake_git.calls == []
    assert tracker.sync_calls == []


def test_successful_flush(tmp_path: Path, fake_git: FakeGit) -> None:
    controller = _controller(tmp_path, fake_git)
    seen = _record(controller)
    before = int(time.time() * 1000)

    controller.enqueue("Create issue: docs")
    assert controller.flush() is True

    state = controller.state
    assert state.status is SyncStatus.IDLE
    assert state.last_error is None
    assert state.last_sync is not None and state.last_sync >= before
    assert not state.pending
    assert fake_git.calls[0] == ("add", ".beads")
    assert fake_git.commits == ["Create issue: docs"]

    names = [name for name, _ in seen]
    assert names == [STATUS_CHANGE, STATUS_CHANGE, SYNC_COMPLETE]
    assert seen[0][1]["status"] == "syncing"
    assert seen[1][1]["status"] == "idle"
    assert seen[2][1]["timestamp"] == state.last_sync
    controller.stop()


def test_commit_is_skipped_when_nothing_is_staged(tmp_path: Path, fake_git: FakeGit) -> None:
    fake_git.staged = False
    tracker = MemoryTracker()
    controller = _controller(tmp_path, fake_git, tracker)

    controller.enqueue("noop")
    controller.flush()

    assert fake_git.commits == []
    assert ("commit", "noop") not in fake_git.calls
    assert len(tracker.sync_calls) == 1
    assert controller.state.status is SyncStatus.IDLE


def test_tracker_sync_failure_moves_to_error_and_next_enqueue_retries(
    tmp_path: Path, fake_git: FakeGit
) -> None:
    tracker = MemoryTracker(sync_error="merge conflict in issues.jsonl")
    controller = _controller(tmp_path, fake_git, tracker, debounce_ms=20)
    seen = _record(controller)

    controller.enqueue("first")
    assert wait_for(lambda: controller.state.status is SyncStatus.ERROR)
    assert controller.state.last_error == "merge conflict in issues.jsonl"
    assert (SYNC_ERROR, {"error": "merge conflict in issues.jsonl"}) in seen

    tracker.sync_error = None
    controller.enqueue("second")
    assert wait_for(lambda: controller.state.status is SyncStatus.IDLE)
    assert controller.state.last_error is None
    assert len(tracker.sync_calls) == 2
    assert fake_git.commits == ["first", "second"]


def test_commit_failure_surfaces_git_stderr(tmp_path: Path, fake_git: FakeGit) -> None:
    fake_git.commit_error = "fatal: unable to auto-detect email address"
    tracker = MemoryTracker()
    controller = _controller(tmp_path, fake_git, tracker)

    controller.enqueue("x")
    assert controller.flush() is True

    assert controller.state.status is SyncStatus.ERROR
    assert controller.state.last_error == "fatal: unable to auto-detect email address"
    assert tracker.sync_calls == []


def test_unexpected_exception_is_contained(tmp_path: Path, fake_git: FakeGit) -> None:
    def explode(path: str) -> None:
        raise OSError("disk full")

    fake_git.add = explode  # type: ignore[method-assign]
    controller = _controller(tmp_path, fake_git)

    controller.enqueue("x")
    assert controller.flush() is True
    assert controller.state.status is SyncStatus.ERROR
    assert controller.state.last_error == "disk full"


def test_stop_cancels_pending_timer(tmp_path: Path, fake_git: FakeGit) -> None:
    tracker = MemoryTracker()
    controller = _controller(tmp_path, fake_git, tracker, debounce_ms=50)

    controller.enqueue("x")
    controller.stop()
    time.sleep(0.2)

    assert tracker.sync_calls == []
    assert controller.state.pending


def test_unsubscribe_stops_delivery(tmp_path: Path, fake_git: FakeGit) -> None:
    controller = _controller(tmp_path, fake_git)
    seen: list[dict] = []
    unsubscribe = controller.on(SYNC_COMPLETE, seen.append)
    unsubscribe()

    controller.enqueue("x")
    controller.flush()
    assert seen == []

def test_enqueue_during_flush_waits_for_the_next_flush(tmp_path: Path, fake_git: FakeGit) -> None:
    started = threading.Event()
    release = threading.Event()
    add = fake_git.add

    def slow_add(path: str) -> None:
        add(path)
        started.set()
        release.wait(3)

    fake_git.add = slow_add  # type: ignore[method-assign]
    tracker = MemoryTracker()
    controller = _controller(tmp_path, fake_git, tracker, debounce_ms=10_000)

    controller.enqueue("first")
    worker = threading.Thread(target=controller.flush)
    worker.start()
    assert started.wait(3)

    controller.enqueue("second")
    assert controller.flush() is False
    assert controller.state.status is SyncStatus.SYNCING

    release.set()
    worker.join(3)
    assert not worker.is_alive()

    state = controller.state
    assert fake_git.commits == ["first"]
    assert len(tracker.sync_calls) == 1
    assert state.status is SyncStatus.IDLE
    assert state.pending
    assert state.pending_message == "second"

    assert controller.flush() is True
    assert fake_git.commits == ["first", "second"]
    controller.stop()



class TestRegistry:
    def test_one_controller_per_canonical_directory(self, tmp_path: Path) -> None:
        (tmp_path / "a").mkdir()
        (tmp_path / "b").mkdir()
        registry = SyncRegistry()
        created: list[Path] = []

        def factory(cwd: Path) -> SyncController:
            created.append(cwd)
            return SyncController(cwd, MemoryTracker(), git=FakeGit())

        first = registry.get(tmp_path / "a", factory)
        again = registry.get(str(tmp_path / "b" / ".." / "a"), factory)
        other = registry.get(tmp_path / "b", factory)

        assert first is again
        assert other is not first
        assert created == [(tmp_path / "a").resolve(), (tmp_path / "b").resolve()]
        assert len(registry) == 2
        assert registry.peek(tmp_path / "a") is first

    def test_reset_discards_controllers(self, tmp_path: Path) -> None:
        registry = SyncRegistry()
        registry.get(tmp_path, lambda cwd: SyncController(cwd, MemoryTracker(), git=FakeGit()))
        registry.reset()
        assert len(registry) == 0
        assert registry.peek(tmp_path) is None


def test_controllers_for_different_directories_are_independent(tmp_path: Path) -> None:
    git_a, git_b = FakeGit(), FakeGit()
    a = SyncController(tmp_path / "a", MemoryTracker(), git=git_a, debounce_ms=10_000)
    b = SyncController(tmp_path / "b", MemoryTracker(), git=git_b, debounce_ms=10_000)

    a.enqueue("only a")
    assert b.flush() is False
    assert a.flush() is True
    assert git_a.commits == ["only a"]
    assert git_b.commits == []


@pytest.mark.parametrize("trigger", [Trigger.SUCCEED, Trigger.FAIL])
def test_finish_outside_a_flush_is_ignored(trigger: Trigger) -> None:
    state = SyncState()
    assert advance(state, trigger, error="x") is state
