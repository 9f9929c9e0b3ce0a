"""Persisted usage index, settings and scan statistics."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import ValidationError

from copilotdash.date_utils import format_iso
from copilotdash.db.repositories.base import StateRepository
from copilotdash.errors import ConfigurationError
from copilotdash.models import SessionScanStats, UsageIndex, UsageSettings

logger = logging.getLogger("copilotdash.services")

USAGE_INDEX_KEY = "copilot-usage-index"
SESSION_SCAN_KEY = "copilot-session-scan-stats"


class UsageStateStore:
    """Reads and writes the two fixed state documents."""

    def __init__(self, repository: StateRepository, default_settings: Optional[UsageSettings] = None):
        if repository is None:
            raise ConfigurationError("UsageStateStore requires a state repository")
        self._repo = repository
        self.default_settings = default_settings or UsageSettings()

    def _fresh_index(self) -> UsageIndex:
        return UsageIndex(settings=self.default_settings.model_copy())

    async def get_index(self) -> UsageIndex:
        raw = await self._repo.get(USAGE_INDEX_KEY)
        if raw is None:
            return self._fresh_index()
        merged: dict[str, Any] = dict(raw)
        # Stored settings win over defaults field by field.
        merged["settings"] = {**self.default_settings.model_dump(), **(raw.get("settings") or {})}
        try:
            return UsageIndex.model_validate(merged)
        except ValidationError as e:
            logger.warning(f"Stored usage index is invalid, using defaults: {e.error_count()} errors")
            return self._fresh_index()

    async def save_index(self, index: UsageIndex) -> None:
        await self._repo.set(USAGE_INDEX_KEY, index.model_dump())

    async def get_settings(self) -> UsageSettings:
        return (await self.get_index()).settings

    async def update_settings(self, changes: dict[str, Any]) -> UsageSettings:
        index = await self.get_index()
        index.settings = UsageSettings.model_validate({**index.settings.model_dump(), **changes})
        await self.save_index(index)
        return index.settings

    async def record_events(self, total_events: int, now: Optional[datetime] = None) -> None:
        index = await self.get_index()
        index.totalEvents = total_events
        index.lastUpdate = format_iso(now or datetime.now(timezone.utc))
        await self.save_index(index)

    async def reset_index(self, now: Optional[datetime] = None) -> UsageIndex:
        index = self._fresh_index()
        index.lastUpdate = format_iso(now or datetime.now(timezone.utc))
        await self.save_index(index)
        return index

    async def get_scan_stats(self) -> Optional[SessionScanStats]:
        raw = await self._repo.get(SESSION_SCAN_KEY)
        if raw is None:
            return None
        try:
            return SessionScanStats.model_validate(raw)
        except ValidationError:
            logger.warning("Stored scan statistics are invalid; ignoring")
            return None

    async def save_scan_stats(self, stats: SessionScanStats) -> None:
        await self._repo.set(SESSION_SCAN_KEY, stats.model_dump())
