"""Debounced, single-flight commit-and-sync for one working directory.

After a change the controller waits for a quiet period, then:

1. stages the tracker's storage directory
2. commits, if anything was staged
3. runs ``bd sync`` to pull and merge (push is left to callers that hold
   credentials unless ``no_push`` is off)

Conflict resolution is bd's own three-way merge; nothing here reimplements it.
"""

from __future__ import annotations

import logging
import subprocess
import threading
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from .errors import SyncFailure
from .events import STATUS_CHANGE, SYNC_COMPLETE, SYNC_ERROR, SYNC_EVENTS, Handler, Signal, Unsubscribe
from .git import GitGateway
from .tracker import IssueTracker
from .util import CommandError, now_ms

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 2000
DEFAULT_COMMIT_MESSAGE = "Update beads"


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


class Phase(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    FLUSHING = "flushing"
    ERROR = "error"


class Trigger(str, Enum):
    ENQUEUE = "enqueue"
    BEGIN = "begin"
    SUCCEED = "succeed"
    FAIL = "fail"


@dataclass(frozen=True)
class SyncState:
    status: SyncStatus = SyncStatus.IDLE
    last_sync: int | None = None
    last_error: str | None = None
    pending_message: str | None = None

    @property
    def pending(self) -> bool:
        return self.pending_message is not None

    @property
    def phase(self) -> Phase:
        if self.status is SyncStatus.SYNCING:
            return Phase.FLUSHING
        if self.pending:
            return Phase.PENDING
        if self.status is SyncStatus.ERROR:
            return Phase.ERROR
        return Phase.IDLE

    def to_json(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "phase": self.phase.value,
            "lastSync": self.last_sync,
            "lastError": self.last_error,
            "pending": self.pending,
        }


def advance(
    state: SyncState,
    trigger: Trigger,
    *,
    message: str | None = None,
    error: str | None = None,
    now: int | None = None,
) -> SyncState:
    """Pure transition function. Returns ``state`` itself when ``trigger`` is a no-op."""
    if trigger is Trigger.ENQUEUE:
        # Last write wins; a message arriving mid-flush waits for the next flush.
        return replace(state, pending_message=message or DEFAULT_COMMIT_MESSAGE)
    if trigger is Trigger.BEGIN:
        if not state.pending or state.status is SyncStatus.SYNCING:
            return state
        return replace(state, status=SyncStatus.SYNCING, pending_message=None)
    if trigger is Trigger.SUCCEED:
        if state.status is not SyncStatus.SYNCING:
            return state
        return replace(
            state,
            status=SyncStatus.IDLE,
            last_sync=now if now is not None else now_ms(),
            last_error=None,
        )
    if trigger is Trigger.FAIL:
        if state.status is not SyncStatus.SYNCING:
            return state
        return replace(state, status=SyncStatus.ERROR, last_error=error or "Unknown error")
    raise ValueError(f"unknown trigger {trigger!r}")


class SyncController:
    def __init__(
        self,
        cwd: Path,
        tracker: IssueTracker,
        *,
        git: GitGateway | None = None,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        no_push: bool = True,
        storage_path: str = ".beads",
        sync_timeout: float | None = None,
    ) -> None:
        self.cwd = cwd
        self.tracker = tracker
        self.git = git or GitGateway(cwd, timeout=sync_timeout)
        self.debounce_ms = debounce_ms
        self.no_push = no_push
        self.storage_path = storage_path
        # None means the external calls may block indefinitely.
        self.sync_timeout = sync_timeout
        self.events = Signal(SYNC_EVENTS)
        self._state = SyncState()
        self._timer: threading.Timer | None = None
        self._lock = threading.Lock()

    @property
    def state(self) -> SyncState:
        with self._lock:
            return self._state

    def on(self, event: str, handler: Handler) -> Unsubscribe:
        return self.events.on(event, handler)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _announce(self, before: SyncState, after: SyncState) -> None:
        if after.status is not before.status:
            self.events.emit(STATUS_CHANGE, {"status": after.status.value, "state": after.to_json()})

    def enqueue(self, message: str) -> None:
        """Queue a sync; rapid calls collapse into one flush after the quiet period."""
        with self._lock:
            self._state = advance(self._state, Trigger.ENQUEUE, message=message)
            self._cancel_timer()
            timer = threading.Timer(self.debounce_ms / 1000, self._on_timer)
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _on_timer(self) -> None:
        with self._lock:
            if self._timer is not None and self._timer is threading.current_thread():
                self._timer = None
        self.flush()

    def stop(self) -> None:
        """Cancel a pending timer. An in-flight flush is left to finish."""
        with self._lock:
            self._cancel_timer()

    def flush(self) -> bool:
        """Run the pending sync now. Returns False when there was nothing to do."""
        with self._lock:
            before = self._state
            after = advance(before, Trigger.BEGIN)
            if after is before:
                return False
            message = before.pending_message or DEFAULT_COMMIT_MESSAGE
            self._state = after
            self._cancel_timer()
        self._announce(before, after)

        try:
            self._run_steps(message)
        except SyncFailure as exc:
            self._finish(Trigger.FAIL, error=exc.message)
            logger.error("sync failed in %s (%s): %s", self.cwd, exc.step, exc.message)
        except Exception as exc:
            self._finish(Trigger.FAIL, error=str(exc) or type(exc).__name__)
            logger.exception("sync failed in %s", self.cwd)
        else:
            self._finish(Trigger.SUCCEED)
        return True

    def _run_steps(self, message: str) -> None:
        try:
            self.git.add(self.storage_path)
            if self.git.has_staged_changes():
                self.git.commit(message)
                logger.info("committed beads changes: %s", message)
        except CommandError as exc:
            raise SyncFailure("commit", exc.detail) from exc
        except subprocess.TimeoutExpired as exc:
            raise SyncFailure("commit", f"git timed out after {exc.timeout}s") from exc

        result = self.tracker.sync(no_push=self.no_push, timeout=self.sync_timeout)
        if not result.ok:
            detail = result.error.message if result.error else "bd sync failed"
            raise SyncFailure("sync", detail)
        logger.info("bd sync completed in %s", self.cwd)

    def _finish(self, trigger: Trigger, *, error: str | None = None) -> None:
        with self._lock:
            before = self._state
            after = advance(before, trigger, error=error)
            self._state = after
        self._announce(before, after)
        if trigger is Trigger.SUCCEED:
            self.events.emit(SYNC_COMPLETE, {"timestamp": after.last_sync})
        else:
            self.events.emit(SYNC_ERROR, {"error": after.last_error})


ControllerFactory = Callable[[Path], SyncController]


class SyncRegistry:
    """One controller per working directory, keyed by resolved path.

    Owned by the composition root; ``reset`` tears everything down.
    """

    def __init__(self) -> None:
        self._controllers: dict[Path, SyncController] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key(cwd: Path | str) -> Path:
        return Path(cwd).resolve()

    def get(self, cwd: Path | str, create: ControllerFactory) -> SyncController:
        key = self.key(cwd)
        with self._lock:
            controller = self._controllers.get(key)
            if controller is None:
                controller = create(key)
                self._controllers[key] = controller
            return controller

    def peek(self, cwd: Path | str) -> SyncController | None:
        with self._lock:
            return self._controllers.get(self.key(cwd))

    def reset(self) -> None:
        with self._lock:
            controllers = list(self._controllers.values())
            self._controllers.clear()
        for controller in controllers:
            controller.stop()

    def __len__(self) -> int:
        with self._lock:
            return len(self._controllers)
