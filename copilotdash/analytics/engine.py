"""Analytics engine: cached event snapshots and aggregate views.

Two caches are kept, one for event snapshots and one for computed
results. Any new data clears both; entries are never patched in place.
Cache reads and writes happen without awaiting in between, and a
generation counter keeps a snapshot fetched before an invalidation from
being cached after it.
"""
from __future__ import annotations

import hashlib
import json
import logging
import time
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Callable, Optional

from copilotdash import config
from copilotdash import observability as otel
from copilotdash.analytics import compute
from copilotdash.analytics.cache import TTLCache
from copilotdash.errors import ConfigurationError, SessionScanError
from copilotdash.models import (
    AnalyticsQuery,
    AnalyticsResult,
    DateRange,
    QuickStats,
    SessionScanStats,
    StorageStats,
    UsageEvent,
    UsageSettings,
    WatcherStatus,
)
from copilotdash.services.session_data import EventsCallback, SessionDataSource, dispatch_callbacks
from copilotdash.services.usage_state import UsageStateStore

logger = logging.getLogger("copilotdash.analytics")

ALL_EVENTS_KEY = "all-events"
STORAGE_STATS_KEY = "storage-stats"


def _query_hash(query: AnalyticsQuery) -> str:
    return hashlib.sha256(query.model_dump_json().encode("utf-8")).hexdigest()[:16]


class AnalyticsEngine:
    def __init__(
        self,
        data_source: SessionDataSource,
        state_store: UsageStateStore,
        *,
        cache_ttl_seconds: float = config.CACHE_TTL_SECONDS,
        max_cache_entries: int = config.MAX_CACHE_ENTRIES,
        tz: tzinfo = timezone.utc,
        clock: Callable[[], float] = time.monotonic,
        now: Optional[Callable[[], datetime]] = None,
    ):
        if data_source is None:
            raise ConfigurationError("AnalyticsEngine requires an initialized session data source")
        if state_store is None:
            raise ConfigurationError("AnalyticsEngine requires a usage state store")
        self.data_source = data_source
        self.state_store = state_store
        self.tz = tz
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.events_cache = TTLCache(cache_ttl_seconds, max_cache_entries, clock=clock)
        self.analytics_cache = TTLCache(cache_ttl_seconds, max_cache_entries, clock=clock)
        self._generation = 0
        self._callbacks: list[EventsCallback] = []
        self._subscribed = False

    def initialize(self) -> None:
        """Subscribe to streamed events from the data source."""
        if self._subscribed:
            return
        self.data_source.on_session_events_updated(self._handle_new_events)
        self._subscribed = True

    # ── Cache control ──────────────────────────────────────────────

    @property
    def generation(self) -> int:
        return self._generation

    def invalidate_caches(self) -> None:
        self._generation += 1
        self.events_cache.clear()
        self.analytics_cache.clear()
        logger.debug(f"Analytics caches invalidated (generation {self._generation})")

    async def _handle_new_events(self, events: list[UsageEvent]) -> None:
        self.invalidate_caches()
        logger.info(f"Received {len(events)} streamed events; caches cleared")
        await dispatch_callbacks(self._callbacks, events)

    # ── Events ─────────────────────────────────────────────────────

    @staticmethod
    def _events_key(date_range: Optional[DateRange]) -> str:
        if date_range is None:
            return ALL_EVENTS_KEY
        return f"events-{date_range.start.isoformat()}-{date_range.end.isoformat()}"

    async def _retention_cutoff(self) -> Optional[datetime]:
        settings = await self.state_store.get_settings()
        if not settings.autoCleanup:
            return None
        return self._now() - timedelta(days=settings.retentionDays)

    async def get_events(self, date_range: Optional[DateRange] = None) -> list[UsageEvent]:
        """Events sorted by timestamp, optionally limited to an inclusive range."""
        key = self._events_key(date_range)
        cached = self.events_cache.get(key)
        if cached is not None:
            return list(cached)

        generation = self._generation
        events = await self.data_source.get_session_events()
        cutoff = await self._retention_cutoff()

        selected: list[UsageEvent] = []
        for event in compute.sort_events(events):
            moment = compute.event_time(event)
            if cutoff is not None and moment < cutoff:
                continue
            if date_range is not None and (moment < date_range.start or moment > date_range.end):
                continue
            selected.append(event)

        if generation == self._generation:
            self.events_cache.set(key, selected)
        else:
            logger.debug(f"Skipping cache fill for {key}: data changed during fetch")
        return list(selected)

    async def get_current_session_events(self) -> list[UsageEvent]:
        return await self.data_source.get_session_events()

    # ── Aggregates ─────────────────────────────────────────────────

    def calculate_analytics(self, events: list[UsageEvent], query: AnalyticsQuery) -> AnalyticsResult:
        key = f"analytics-{_query_hash(query)}-{compute.events_fingerprint(events)}"
        cached = self.analytics_cache.get(key)
        if cached is not None:
            return cached

        with otel.start_span("copilotdash.calculate_analytics", {"events": len(events)}):
            result = compute.calculate_analytics(events, query, tz=self.tz, now=self._now())
        self.analytics_cache.set(key, result)
        return result

    def calculate_quick_stats(self, events: list[UsageEvent]) -> QuickStats:
        key = f"quick-stats-{compute.events_fingerprint(events)}"
        cached = self.analytics_cache.get(key)
        if cached is not None:
            return cached
        result = compute.calculate_quick_stats(events, now=self._now(), tz=self.tz)
        self.analytics_cache.set(key, result)
        return result

    async def get_storage_stats(self) -> StorageStats:
        cached = self.analytics_cache.get(STORAGE_STATS_KEY)
        if cached is not None:
            return cached

        generation = self._generation
        events = await self.get_events()
        payload = json.dumps([e.model_dump() for e in events])
        stats = StorageStats(
            totalEvents=len(events),
            oldestEvent=events[0].timestamp if events else None,
            newestEvent=events[-1].timestamp if events else None,
            storageSize=len(payload.encode("utf-8")),
        )
        if generation == self._generation:
            self.analytics_cache.set(STORAGE_STATS_KEY, stats)
        return stats

    # ── Scanning and state ─────────────────────────────────────────

    async def scan_chat_sessions(self) -> tuple[list[UsageEvent], SessionScanStats]:
        try:
            events, stats = await self.data_source.scan_all_data()
        except Exception as e:
            raise SessionScanError(f"Session scan failed: {e}") from e

        self.invalidate_caches()
        await self.state_store.save_scan_stats(stats)
        await self.state_store.record_events(len(events), now=self._now())
        logger.info(f"Session scan stored: {len(events)} events from {stats.totalSessions} sessions")
        return events, stats

    async def get_session_scan_stats(self) -> Optional[SessionScanStats]:
        return await self.state_store.get_scan_stats()

    async def get_settings(self) -> UsageSettings:
        return await self.state_store.get_settings()

    async def update_settings(self, changes: dict[str, Any]) -> UsageSettings:
        settings = await self.state_store.update_settings(changes)
        if "includePrompts" in changes:
            # Held events must not keep prompts once the flag is turned off.
            await self.data_source.retransform()
        # Retention settings change which events are visible.
        self.invalidate_caches()
        return settings

    async def clear_storage(self) -> dict[str, int]:
        self.invalidate_caches()
        events = await self.data_source.get_session_events()
        await self.state_store.reset_index(now=self._now())
        logger.info(f"Storage cleared ({len(events)} events dropped from the index)")
        return {"deletedFiles": 0, "deletedEvents": len(events)}

    # ── Subscriptions and watcher ──────────────────────────────────

    def on_session_events_updated(self, callback: EventsCallback) -> None:
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def remove_session_event_callback(self, callback: EventsCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def stop_session_watcher(self) -> None:
        self.data_source.stop_real_time_updates()

    def get_session_watcher_status(self) -> WatcherStatus:
        status = self.data_source.get_watcher_status()
        return WatcherStatus(
            isWatching=status.isWatching,
            callbackCount=status.callbackCount,
            sessionCallbackCount=len(self._callbacks),
        )

    def dispose(self) -> None:
        if self._subscribed:
            self.data_source.remove_session_events_callback(self._handle_new_events)
            self._subscribed = False
        self._callbacks.clear()
        self.invalidate_caches()
