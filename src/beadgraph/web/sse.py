"""SSE event broadcaster: relays sync controller events to subscribers."""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, AsyncIterator

from ..events import SYNC_EVENTS, Unsubscribe
from ..sync import SyncController


class EventBroadcaster:
    """Fans controller events out to per-client queues, plus a heartbeat.

    Controller events fire on timer threads; they are handed to the event
    loop with ``call_soon_threadsafe``.
    """

    def __init__(self, *, heartbeat_s: float = 15.0) -> None:
        self.heartbeat_s = heartbeat_s
        self._subscribers: list[asyncio.Queue] = []
        self._unsubscribers: list[Unsubscribe] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._running = False
        self._task: asyncio.Task | None = None

    def attach(self, controller: SyncController) -> None:
        for name in SYNC_EVENTS:
            self._unsubscribers.append(
                controller.on(name, lambda payload, name=name: self._from_thread(name, payload))
            )

    def start(self) -> asyncio.Task:
        self._loop = asyncio.get_running_loop()
        self._running = True
        self._task = asyncio.create_task(self._heartbeat_loop())
        return self._task

    def stop(self) -> None:
        self._running = False
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        if self._task is not None:
            self._task.cancel()

    def subscribe(self) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=256)
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        try:
            self._subscribers.remove(q)
        except ValueError:
            pass

    def broadcast(self, event: str, data: dict[str, Any]) -> None:
        payload = f"event: {event}\ndata: {json.dumps(data)}\n\n"
        dead: list[asyncio.Queue] = []
        for q in self._subscribers:
            try:
                q.put_nowait(payload)
            except asyncio.QueueFull:
                dead.append(q)
        for q in dead:
            self._subscribers.remove(q)

    def _from_thread(self, event: str, data: dict[str, Any]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self.broadcast, event, data)

    async def _heartbeat_loop(self) -> None:
        while self._running:
            self.broadcast("heartbeat", {"ts": int(time.time())})
            await asyncio.sleep(self.heartbeat_s)

    async def iter_events(self) -> AsyncIterator[str]:
        q = self.subscribe()
        try:
            while True:
                payload = await q.get()
                yield payload
        finally:
            self.unsubscribe(q)
