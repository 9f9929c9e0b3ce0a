import unittest
from datetime import datetime, timezone
from unittest import mock

from copilotdash.db.repositories.state import InMemoryStateRepository
from copilotdash.errors import ConfigurationError
from copilotdash.models import ChatSession, SessionScanResult, SessionScanStats, WatcherStatus
from copilotdash.services.session_data import SessionDataService
from copilotdash.services.usage_state import UsageStateStore
from copilotdash.transform.transformer import SessionTransformer


def _result(session_id: str, request_ids: list[str], path: str | None = None) -> SessionScanResult:
    session = ChatSession.model_validate(
        {
            "version": 3,
            "sessionId": session_id,
            "creationDate": 1700000000000,
            "requests": [
                {
                    "requestId": rid,
                    "timestamp": 1700000000000 + 1000 * i,
                    "message": {"text": "hello"},
                    "response": [{"value": "hi"}],
                }
                for i, rid in enumerate(request_ids)
            ],
        }
    )
    return SessionScanResult(
        sessionFilePath=path or f"/x/workspaceStorage/h/chatSessions/{session_id}.json",
        session=session,
        lastModified=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


class FakeScanner:
    def __init__(self, results: list[SessionScanResult]):
        self.results = results
        self.subscribers: list = []
        self.stopped = 0

    async def scan_all(self):
        return list(self.results), SessionScanStats(totalSessions=len(self.results), scannedFiles=len(self.results))

    def watch(self, callback) -> None:
        self.subscribers.append(callback)

    def stop_watching(self) -> None:
        self.stopped += 1
        self.subscribers.clear()

    def get_watcher_status(self) -> WatcherStatus:
        return WatcherStatus(isWatching=bool(self.subscribers), callbackCount=len(self.subscribers))


class SessionDataServiceTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.scanner = FakeScanner([_result("aaaa", ["r1", "r2"]), _result("bbbb", ["r1"])])
        self.service = SessionDataService(self.scanner, SessionTransformer())

    def test_missing_collaborators_are_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            SessionDataService(None, SessionTransformer())
        with self.assertRaises(ConfigurationError):
            SessionDataService(self.scanner, None)

    async def test_rescan_is_idempotent(self) -> None:
        first, stats = await self.service.scan_all_data()
        second, _ = await self.service.scan_all_data()
        self.assertEqual(len(first), 3)
        self.assertEqual([e.id for e in first], [e.id for e in second])
        self.assertEqual(stats.totalSessions, 2)
        self.assertEqual(len(await self.service.get_session_events()), 3)

    async def test_duplicate_transcripts_collapse_by_id(self) -> None:
        self.scanner.results.append(_result("aaaa", ["r1"], path="/y/workspaceStorage/h/chatSessions/aaaa.json"))
        events, _ = await self.service.scan_all_data()
        self.assertEqual(len(events), 3)
        self.assertEqual(len(self.service.get_session_scan_results()), 3)

    async def test_initialize_scans_and_subscribes_once(self) -> None:
        await self.service.initialize()
        await self.service.initialize()
        self.assertEqual(len(self.scanner.subscribers), 1)
        status = self.service.get_watcher_status()
        self.assertTrue(status.isWatching)

    async def test_disabled_watching_does_not_subscribe(self) -> None:
        service = SessionDataService(self.scanner, SessionTransformer(), enable_watching=False)
        await service.initialize()
        self.assertEqual(self.scanner.subscribers, [])

    async def test_change_replaces_session_events_and_notifies(self) -> None:
        await self.service.initialize()
        received: list[list] = []
        async_cb = mock.AsyncMock()
        self.service.on_session_events_updated(received.append)
        self.service.on_session_events_updated(async_cb)

        await self.scanner.subscribers[0](_result("aaaa", ["r3"]))

        events = await self.service.get_session_events()
        self.assertEqual(sorted(e.sessionId for e in events), ["aaaa", "bbbb"])
        self.assertEqual(len(events), 2)
        self.assertEqual(len(received), 1)
        self.assertEqual(len(received[0]), 1)
        async_cb.assert_awaited_once()

    async def test_failing_subscriber_does_not_block_others(self) -> None:
        await self.service.initialize()
        received: list = []

        def broken(events) -> None:
            raise RuntimeError("boom")

        self.service.on_session_events_updated(broken)
        self.service.on_session_events_updated(received.append)
        with self.assertLogs("copilotdash.services", level="ERROR"):
            await self.scanner.subscribers[0](_result("bbbb", ["r1"]))
        self.assertEqual(len(received), 1)

    async def test_remove_callback_and_dispose(self) -> None:
        await self.service.initialize()
        callback = mock.Mock()
        self.service.on_session_events_updated(callback)
        self.service.remove_session_events_callback(callback)
        self.assertEqual(self.service.get_watcher_status().sessionCallbackCount, 0)

        self.service.dispose()
        self.assertEqual(self.scanner.stopped, 1)
        self.assertFalse(self.service.get_watcher_status().isWatching)


class PromptSettingTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.scanner = FakeScanner([_result("aaaa", ["r1"])])
        self.store = UsageStateStore(InMemoryStateRepository())
        self.service = SessionDataService(
            self.scanner,
            SessionTransformer(include_prompts=True),
            state_store=self.store,
        )

    async def test_stored_setting_overrides_transformer_default(self) -> None:
        events, _ = await self.service.scan_all_data()
        self.assertIsNone(events[0].userPrompt)

    async def test_watched_change_reads_current_setting(self) -> None:
        await self.service.initialize()
        await self.store.update_settings({"includePrompts": True})
        await self.scanner.subscribers[0](_result("aaaa", ["r2"]))
        events = await self.service.get_session_events()
        self.assertEqual([e.userPrompt for e in events], ["hello"])

    async def test_retransform_strips_prompts_without_rescanning(self) -> None:
        await self.store.update_settings({"includePrompts": True})
        events, _ = await self.service.scan_all_data()
        self.assertEqual(events[0].userPrompt, "hello")

        self.scanner.results = []
        await self.store.update_settings({"includePrompts": False})
        events = await self.service.retransform()
        self.assertEqual(len(events), 1)
        self.assertIsNone(events[0].userPrompt)


if __name__ == "__main__":
    unittest.main()
