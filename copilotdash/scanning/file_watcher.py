"""Debounced transcript watcher built on watchfiles.

Each changed transcript path owns one pending timer; a newer notification
for the same path replaces it, so only the last write in a burst is
reparsed. ``stop()`` is synchronous and voids every pending timer and
in-flight dispatch.
"""
from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path, PurePath
from typing import Awaitable, Callable, Optional

from watchfiles import Change, awatch

from copilotdash import config

logger = logging.getLogger("copilotdash.watcher")

_SESSION_FILE_RE = re.compile(config.SESSION_FILE_PATTERN)

ChangeHandler = Callable[[Path], Awaitable[None]]


def is_session_transcript(path: str | Path) -> bool:
    """True for paths shaped like <anything>/chatSessions/<hex-id>.json."""
    candidate = PurePath(path)
    return candidate.parent.name == config.CHAT_SESSIONS_DIR and bool(_SESSION_FILE_RE.match(candidate.name))


def session_change_filter(change: Change, path: str) -> bool:
    """watchfiles filter: transcript creates and modifications only."""
    if change not in (Change.added, Change.modified):
        return False
    return is_session_transcript(path)


class SessionFileWatcher:
    """Background watcher that reparses transcripts after a quiet period."""

    def __init__(
        self,
        roots: list[Path],
        on_change: ChangeHandler,
        debounce_ms: int = config.DEBOUNCE_MS,
    ):
        self._roots = list(roots)
        self._on_change = on_change
        self._debounce_s = max(0, debounce_ms) / 1000.0
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._inflight: set[asyncio.Task] = set()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending_paths(self) -> list[str]:
        return sorted(self._timers)

    def start(self) -> None:
        """Start watching in a background task. Requires a running event loop."""
        if self._running:
            logger.warning("Session watcher already running")
            return
        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self._running = True

        watch_paths = [root for root in self._roots if root.exists()]
        if not watch_paths:
            logger.warning("No storage roots exist, session watcher has nothing to monitor")
            return

        self._task = self._loop.create_task(self._watch_loop(watch_paths))
        logger.info(f"Session watcher started on {len(watch_paths)} storage roots")

    def stop(self) -> None:
        """Stop watching and void every pending or in-flight notification."""
        if not self._running:
            return
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        for task in list(self._inflight):
            task.cancel()
        self._inflight.clear()
        if self._task is not None:
            self._task.cancel()
            self._task = None
        logger.info("Session watcher stopped")

    def notify(self, path: str | Path) -> None:
        """Schedule a debounced reparse of ``path``; resets any pending timer."""
        if not self._running or self._loop is None:
            return
        key = str(path)
        previous = self._timers.pop(key, None)
        if previous is not None:
            previous.cancel()
        self._timers[key] = self._loop.call_later(self._debounce_s, self._fire, key)

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        if not self._running or self._loop is None:
            return
        task = self._loop.create_task(self._dispatch(Path(key)))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _dispatch(self, path: Path) -> None:
        try:
            await self._on_change(path)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error handling change for {path}: {e}")

    async def _watch_loop(self, watch_paths: list[Path]) -> None:
        logger.info(f"Watching {config.SESSION_WATCH_GLOB} under {[str(p) for p in watch_paths]}")
        try:
            async for changes in awatch(
                *watch_paths,
                watch_filter=session_change_filter,
                stop_event=self._stop_event,
            ):
                if not self._running:
                    break
                for _change, path_str in changes:
                    self.notify(path_str)
        except asyncio.CancelledError:
            logger.debug("Session watcher task cancelled")
        except Exception as e:
            logger.error(f"Session watcher error: {e}")
