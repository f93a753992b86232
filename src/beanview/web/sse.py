"""SSE event broadcaster: watches the beans directory and pushes refreshes."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import AsyncIterator

from ..view import BeanView, ViewRegistry

logger = logging.getLogger(__name__)

Signature = tuple[tuple[str, int], ...]


def pane_summary(view: BeanView) -> dict:
    return {
        "name": view.pane.name,
        "title": view.title(show_counts=False),
        "count": view.visible_count,
        "filter": view.filter.describe(),
        "sort": view.sort_mode,
        "error": view.last_error,
        "flat": view.pane.flat,
        "accepts_drops": view.pane.accepts_drops,
    }


def dir_signature(root: Path | None) -> Signature:
    if root is None or not root.is_dir():
        return ()
    out: list[tuple[str, int]] = []
    for path in sorted(root.glob("*.md")):
        try:
            out.append((path.name, path.stat().st_mtime_ns))
        except FileNotFoundError:
            continue
    return tuple(out)


class EventBroadcaster:
    """Polls the beans directory at 1 Hz and broadcasts pane refreshes via SSE.

    A change is debounced: the directory has to stay quiet for
    ``debounce_ms`` before the views refresh, so a burst of writes costs a
    single refresh.
    """

    def __init__(
        self,
        registry: ViewRegistry,
        *,
        watch_dir: Path | None = None,
        debounce_ms: int = 300,
        interval: float = 1.0,
    ) -> None:
        self.registry = registry
        self.watch_dir = watch_dir
        self.debounce_ms = debounce_ms
        self.interval = interval
        self._subscribers: list[asyncio.Queue] = []
        self._running = False
        self._task: asyncio.Task | None = None

    def start(self) -> asyncio.Task:
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        return self._task

    def stop(self) -> None:
        self._running = False

    def subscribe(self) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=256)
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        try:
            self._subscribers.remove(q)
        except ValueError:
            pass

    def broadcast(self, event: str, data: dict) -> None:
        payload = f"event: {event}\ndata: {json.dumps(data)}\n\n"
        dead: list[asyncio.Queue] = []
        for q in self._subscribers:
            try:
                q.put_nowait(payload)
            except asyncio.QueueFull:
                dead.append(q)
        for q in dead:
            self._subscribers.remove(q)

    async def refresh(self) -> None:
        await self.registry.refresh_all()
        self.broadcast(
            "refresh",
            {"panes": [pane_summary(view) for view in self.registry]},
        )

    async def _settle(self, signature: Signature) -> Signature:
        while True:
            await asyncio.sleep(self.debounce_ms / 1000)
            current = dir_signature(self.watch_dir)
            if current == signature:
                return current
            signature = current

    async def _poll_loop(self) -> None:
        seen = dir_signature(self.watch_dir)
        while self._running:
            try:
                current = dir_signature(self.watch_dir)
                if current != seen:
                    seen = await self._settle(current)
                    logger.debug("beans directory changed; refreshing views")
                    await self.refresh()
                self.broadcast("heartbeat", {"ts": int(time.time())})
            except OSError as exc:
                logger.warning("watching %s failed: %s", self.watch_dir, exc)

            await asyncio.sleep(self.interval)

    async def iter_events(self) -> AsyncIterator[str]:
        q = self.subscribe()
        try:
            while True:
                payload = await q.get()
                yield payload
        finally:
            self.unsubscribe(q)
