from __future__ import annotations

import logging
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], None]
Unsubscribe = Callable[[], None]

STATUS_CHANGE = "status_change"
SYNC_COMPLETE = "sync_complete"
SYNC_ERROR = "sync_error"
SYNC_EVENTS = (STATUS_CHANGE, SYNC_COMPLETE, SYNC_ERROR)


class Signal:
    """Named-event publish/subscribe with unsubscribe handles.

    Handlers run synchronously on the emitting thread. A handler that raises
    is logged and skipped; the remaining handlers still run.
    """

    def __init__(self, names: tuple[str, ...]) -> None:
        self._names = names
        self._handlers: dict[str, list[Handler]] = {name: [] for name in names}
        self._lock = threading.Lock()

    def on(self, name: str, handler: Handler) -> Unsubscribe:
        if name not in self._handlers:
            raise ValueError(f"unknown event {name!r}; expected one of {self._names}")
        with self._lock:
            self._handlers[name].append(handler)

        def unsubscribe() -> None:
            with self._lock:
                try:
                    self._handlers[name].remove(handler)
                except ValueError:
                    pass

        return unsubscribe

    def emit(self, name: str, payload: dict[str, Any]) -> None:
        with self._lock:
            handlers = list(self._handlers.get(name, ()))
        for handler in handlers:
            try:
                handler(payload)
            except Exception:
                logger.exception("%s handler failed", name)

    def handler_count(self, name: str) -> int:
        with self._lock:
            return len(self._handlers.get(name, ()))
