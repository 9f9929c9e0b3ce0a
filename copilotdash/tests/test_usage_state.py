import unittest
from datetime import datetime, timezone

import aiosqlite

from copilotdash.db import migrations
from copilotdash.db.factory import get_state_repository
from copilotdash.db.repositories.state import InMemoryStateRepository, SqliteStateRepository
from copilotdash.models import SessionScanStats, UsageSettings
from copilotdash.services.usage_state import USAGE_INDEX_KEY, UsageStateStore


class SqliteStateRepositoryTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        await migrations.run_migrations(self.db)
        await migrations.run_migrations(self.db)
        self.repo = get_state_repository(self.db)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_factory_returns_sqlite_repository(self) -> None:
        self.assertIsInstance(self.repo, SqliteStateRepository)

    async def test_set_get_overwrite_delete(self) -> None:
        self.assertIsNone(await self.repo.get("k"))
        await self.repo.set("k", {"a": 1})
        await self.repo.set("k", {"a": 2})
        self.assertEqual(await self.repo.get("k"), {"a": 2})
        self.assertEqual(await self.repo.keys(), ["k"])
        await self.repo.delete("k")
        self.assertIsNone(await self.repo.get("k"))

    async def test_store_round_trip_through_sqlite(self) -> None:
        store = UsageStateStore(self.repo)
        await store.save_scan_stats(SessionScanStats(totalSessions=4, scannedFiles=5, errorFiles=1))
        stats = await store.get_scan_stats()
        self.assertEqual((stats.totalSessions, stats.errorFiles), (4, 1))


class UsageStateStoreTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.repo = InMemoryStateRepository()
        self.store = UsageStateStore(self.repo, UsageSettings(retentionDays=30))

    async def test_defaults_when_nothing_stored(self) -> None:
        index = await self.store.get_index()
        self.assertEqual(index.totalEvents, 0)
        self.assertEqual(index.settings.retentionDays, 30)
        self.assertIsNone(await self.store.get_scan_stats())

    async def test_stored_settings_win_field_by_field(self) -> None:
        await self.repo.set(USAGE_INDEX_KEY, {"totalEvents": 7, "settings": {"autoCleanup": False}})
        settings = await self.store.get_settings()
        self.assertFalse(settings.autoCleanup)
        self.assertEqual(settings.retentionDays, 30)

    async def test_update_settings_persists(self) -> None:
        updated = await self.store.update_settings({"includePrompts": True})
        self.assertTrue(updated.includePrompts)
        self.assertTrue((await self.repo.get(USAGE_INDEX_KEY))["settings"]["includePrompts"])

    async def test_record_and_reset(self) -> None:
        now = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
        await self.store.update_settings({"retentionDays": 5})
        await self.store.record_events(42, now=now)
        index = await self.store.get_index()
        self.assertEqual(index.totalEvents, 42)
        self.assertEqual(index.lastUpdate, "2024-03-01T12:00:00.000Z")

        reset = await self.store.reset_index(now=now)
        self.assertEqual(reset.totalEvents, 0)
        self.assertEqual((await self.store.get_settings()).retentionDays, 30)

    async def test_corrupt_documents_fall_back(self) -> None:
        await self.repo.set(USAGE_INDEX_KEY, {"totalEvents": "lots"})
        await self.repo.set("copilot-session-scan-stats", {"totalSessions": "many"})
        self.assertEqual((await self.store.get_index()).totalEvents, 0)
        self.assertIsNone(await self.store.get_scan_stats())


if __name__ == "__main__":
    unittest.main()
