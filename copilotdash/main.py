"""CopilotDash entry point and composition root.

Components are built in dependency order and handed their collaborators
explicitly: storage, then scanner and transformer, then the session data
service, then the analytics engine.
"""
from __future__ import annotations

import asyncio
import logging
import signal
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timezone, tzinfo
from pathlib import Path
from typing import Any, AsyncIterator, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from copilotdash import config
from copilotdash.analytics.engine import AnalyticsEngine
from copilotdash.db import connection, migrations
from copilotdash.db.factory import get_state_repository
from copilotdash.db.repositories.base import StateRepository
from copilotdash.models import UsageEvent, UsageSettings
from copilotdash.observability import initialize as initialize_observability, shutdown as shutdown_observability
from copilotdash.scanning.scanner import ChatSessionScanner
from copilotdash.services.session_data import SessionDataService
from copilotdash.services.usage_state import UsageStateStore
from copilotdash.settings_file import load_usage_settings
from copilotdash.transform.transformer import SessionTransformer

logger = logging.getLogger("copilotdash")


@dataclass
class AppServices:
    scanner: ChatSessionScanner
    transformer: SessionTransformer
    data_service: SessionDataService
    state_store: UsageStateStore
    engine: AnalyticsEngine
    db: Any = None


def resolve_timezone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown analytics timezone {name!r}, using UTC")
        return timezone.utc


def default_settings() -> UsageSettings:
    """Settings used until the user saves their own; the env flag seeds includePrompts."""
    settings = load_usage_settings(config.SETTINGS_FILE) if config.SETTINGS_FILE else UsageSettings()
    if config.INCLUDE_PROMPTS:
        settings = settings.model_copy(update={"includePrompts": True})
    return settings


async def build_services(
    *,
    storage_roots: Optional[list[Path]] = None,
    state_repository: Optional[StateRepository] = None,
) -> AppServices:
    """Construct every component; performs no scan and starts no watcher."""
    db = None
    if state_repository is None:
        db = await connection.get_connection()
        await migrations.run_migrations(db)
        state_repository = get_state_repository(db)

    state_store = UsageStateStore(state_repository, default_settings())

    scanner = ChatSessionScanner(storage_roots)
    transformer = SessionTransformer(extension_version=config.EXTENSION_VERSION)
    # The stored includePrompts setting is read again on every transform.
    data_service = SessionDataService(
        scanner,
        transformer,
        state_store=state_store,
        enable_watching=config.ENABLE_WATCHING,
    )
    engine = AnalyticsEngine(
        data_service,
        state_store,
        cache_ttl_seconds=config.CACHE_TTL_SECONDS,
        max_cache_entries=config.MAX_CACHE_ENTRIES,
        tz=resolve_timezone(config.ANALYTICS_TZ),
    )
    return AppServices(
        scanner=scanner,
        transformer=transformer,
        data_service=data_service,
        state_store=state_store,
        engine=engine,
        db=db,
    )


@asynccontextmanager
async def lifespan(
    *,
    storage_roots: Optional[list[Path]] = None,
    state_repository: Optional[StateRepository] = None,
) -> AsyncIterator[AppServices]:
    """Startup / shutdown lifecycle."""
    logger.info("CopilotDash starting up")
    initialize_observability()
    services = await build_services(storage_roots=storage_roots, state_repository=state_repository)
    try:
        services.engine.initialize()
        events, stats = await services.engine.scan_chat_sessions()
        logger.info(
            f"Initial scan: {len(events)} events from {stats.totalSessions} sessions "
            f"({stats.errorFiles} unreadable files)"
        )
        services.data_service.start_real_time_updates()
        yield services
    finally:
        logger.info("CopilotDash shutting down")
        services.engine.dispose()
        services.data_service.dispose()
        shutdown_observability()
        if services.db is not None:
            await connection.close_connection()


async def _log_quick_stats(engine: AnalyticsEngine) -> None:
    events = await engine.get_events()
    stats = engine.calculate_quick_stats(events)
    logger.info(
        f"Usage: {stats.eventsToday} today, {stats.eventsThisWeek} this week, "
        f"{stats.eventsThisMonth} this month; top language {stats.topLanguage}, "
        f"top model {stats.topModel}; last event {stats.lastEventTime or 'never'}"
    )


async def run(stop_event: Optional[asyncio.Event] = None) -> None:
    stop = stop_event or asyncio.Event()
    async with lifespan() as services:
        engine = services.engine

        async def _on_update(events: list[UsageEvent]) -> None:
            logger.info(f"{len(events)} events refreshed from a changed transcript")
            await _log_quick_stats(engine)

        engine.on_session_events_updated(_on_update)
        await _log_quick_stats(engine)
        await stop.wait()


def main() -> None:
    logging.basicConfig(level=logging.INFO)

    async def _main() -> None:
        stop = asyncio.Event()
        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, stop.set)
        await run(stop)

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
