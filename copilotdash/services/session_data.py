"""Session data service: scanner and transformer behind one event store.

Events are kept by deterministic id, so rescanning the same files is
idempotent and a reparsed transcript replaces its own events.
"""
from __future__ import annotations

import inspect
import logging
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from copilotdash import observability as otel
from copilotdash.analytics.compute import sort_events
from copilotdash.errors import ConfigurationError
from copilotdash.models import SessionScanResult, SessionScanStats, UsageEvent, WatcherStatus
from copilotdash.scanning.scanner import ChatSessionScanner
from copilotdash.services.usage_state import UsageStateStore
from copilotdash.transform.transformer import SessionTransformer

logger = logging.getLogger("copilotdash.services")

EventsCallback = Callable[[list[UsageEvent]], Any]


@runtime_checkable
class SessionDataSource(Protocol):
    """What the analytics engine needs from the orchestration layer."""

    async def initialize(self) -> None: ...

    async def scan_all_data(self) -> tuple[list[UsageEvent], SessionScanStats]: ...

    async def get_session_events(self) -> list[UsageEvent]: ...

    async def retransform(self) -> list[UsageEvent]: ...

    def get_session_scan_results(self) -> list[SessionScanResult]: ...

    def on_session_events_updated(self, callback: EventsCallback) -> None: ...

    def remove_session_events_callback(self, callback: EventsCallback) -> None: ...

    def stop_real_time_updates(self) -> None: ...

    def get_watcher_status(self) -> WatcherStatus: ...

    def dispose(self) -> None: ...


async def dispatch_callbacks(callbacks: list[Callable[..., Any]], *args: Any) -> None:
    """Invoke sync or async callbacks in order; one failing never blocks the rest."""
    for callback in list(callbacks):
        try:
            outcome = callback(*args)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error(f"Subscriber {getattr(callback, '__name__', callback)!r} failed: {e}")


class SessionDataService:
    def __init__(
        self,
        scanner: ChatSessionScanner,
        transformer: SessionTransformer,
        *,
        state_store: Optional[UsageStateStore] = None,
        enable_watching: bool = True,
    ):
        if scanner is None:
            raise ConfigurationError("SessionDataService requires a scanner")
        if transformer is None:
            raise ConfigurationError("SessionDataService requires a transformer")
        self.scanner = scanner
        self.transformer = transformer
        self.state_store = state_store
        self._enable_watching = enable_watching
        self._events: dict[str, UsageEvent] = {}
        self._event_ids_by_session: dict[str, set[str]] = {}
        self._scan_results: dict[str, SessionScanResult] = {}
        self._callbacks: list[EventsCallback] = []
        self._initialized = False

    async def initialize(self) -> None:
        """Run the first full scan, then start real-time updates."""
        if self._initialized:
            return
        await self.scan_all_data()
        self.start_real_time_updates()
        self._initialized = True
        logger.info(f"Session data service initialized with {len(self._events)} events")

    async def _include_prompts(self) -> Optional[bool]:
        """Current privacy flag from persisted settings; None defers to the transformer."""
        if self.state_store is None:
            return None
        return (await self.state_store.get_settings()).includePrompts

    def _rebuild(self, results: list[SessionScanResult], include_prompts: Optional[bool]) -> list[UsageEvent]:
        events = self.transformer.transform_scan_results(results, include_prompts=include_prompts)
        self._scan_results = {r.sessionFilePath: r for r in results}
        self._events = {}
        self._event_ids_by_session = {}
        for event in events:
            self._store(event)
        return sort_events(self._events.values())

    async def scan_all_data(self) -> tuple[list[UsageEvent], SessionScanStats]:
        results, stats = await self.scanner.scan_all()
        events = self._rebuild(results, await self._include_prompts())
        otel.record_ingestion("full_scan", len(events))
        return events, stats

    async def retransform(self) -> list[UsageEvent]:
        """Rebuild every event from the transcripts already held, without rescanning."""
        events = self._rebuild(list(self._scan_results.values()), await self._include_prompts())
        logger.info(f"Re-transformed {len(self._scan_results)} sessions into {len(events)} events")
        return events

    def _store(self, event: UsageEvent) -> None:
        self._events[event.id] = event
        self._event_ids_by_session.setdefault(event.sessionId, set()).add(event.id)

    def apply_scan_result(self, result: SessionScanResult, include_prompts: Optional[bool] = None) -> list[UsageEvent]:
        """Replace one session's events with those of a freshly parsed transcript."""
        session_id = result.session.sessionId
        for event_id in self._event_ids_by_session.pop(session_id, set()):
            self._events.pop(event_id, None)
        events = self.transformer.transform_session(result, include_prompts=include_prompts)
        for event in events:
            self._store(event)
        self._scan_results[result.sessionFilePath] = result
        otel.record_ingestion("watch", len(events))
        return sort_events(events)

    async def _handle_session_change(self, result: SessionScanResult) -> None:
        events = self.apply_scan_result(result, await self._include_prompts())
        logger.info(f"Session {result.session.sessionId} updated ({len(events)} events)")
        await dispatch_callbacks(self._callbacks, events)

    async def get_session_events(self) -> list[UsageEvent]:
        return sort_events(self._events.values())

    def get_session_scan_results(self) -> list[SessionScanResult]:
        return list(self._scan_results.values())

    def on_session_events_updated(self, callback: EventsCallback) -> None:
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def remove_session_events_callback(self, callback: EventsCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def start_real_time_updates(self) -> None:
        if self._enable_watching:
            self.scanner.watch(self._handle_session_change)

    def stop_real_time_updates(self) -> None:
        self.scanner.stop_watching()

    def get_watcher_status(self) -> WatcherStatus:
        scanner_status = self.scanner.get_watcher_status()
        return WatcherStatus(
            isWatching=scanner_status.isWatching,
            callbackCount=scanner_status.callbackCount,
            sessionCallbackCount=len(self._callbacks),
        )

    def dispose(self) -> None:
        self.stop_real_time_updates()
        self._callbacks.clear()
        self._initialized = False
