import unittest
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from copilotdash.analytics.compute import (
    calculate_analytics,
    calculate_day_of_week_distribution,
    calculate_event_type_distribution,
    calculate_hourly_distribution,
    calculate_instance_session_analytics,
    calculate_language_metrics,
    calculate_quick_stats,
    calculate_session_analytics,
    calculate_time_series,
    calculate_window_session_analytics,
    events_fingerprint,
    filter_events,
)
from copilotdash.models import AnalyticsQuery, DateRange, UsageEvent


def _event(
    event_id: str,
    timestamp: str,
    *,
    session: str = "s1",
    event_type: str = "chat",
    language: str | None = None,
    model: str | None = None,
    instance: str = "vscode-2024010110",
    window: str | None = "window-aaaa",
    host: str = "exthost-s1",
    duration: float | None = None,
    tokens: int = 0,
) -> UsageEvent:
    return UsageEvent(
        id=event_id,
        timestamp=timestamp,
        type=event_type,
        instanceSessionId=instance,
        windowId=window,
        extensionHostSessionId=host,
        sessionId=session,
        workspaceId="ws",
        duration=duration,
        tokensUsed=tokens,
        model=model,
        language=language,
    )


def _range(start: str, end: str) -> DateRange:
    return DateRange(start=datetime.fromisoformat(start), end=datetime.fromisoformat(end))


EVENTS = [
    _event("e1", "2024-01-01T10:00:00.000Z", event_type="edit", language="python", model="gpt-4o", duration=100, tokens=10),
    _event("e2", "2024-01-01T10:30:00.000Z", event_type="chat", language="python", model="gpt-4o", duration=300, tokens=20),
    _event("e3", "2024-01-03T23:15:00.000Z", session="s2", event_type="explain", model="o1", host="exthost-s2", tokens=5),
    _event("e4", "2024-01-06T08:00:00.000Z", session="s3", language="go", instance="vscode-2024010608", window="window-bbbb", host="exthost-s3"),
]


class FilterTests(unittest.TestCase):
    def test_bounds_are_inclusive(self) -> None:
        query = AnalyticsQuery(dateRange=_range("2024-01-01T10:00:00", "2024-01-03T23:15:00"))
        self.assertEqual([e.id for e in filter_events(EVENTS, query)], ["e1", "e2", "e3"])

    def test_allow_lists(self) -> None:
        query = AnalyticsQuery(
            dateRange=_range("2024-01-01T00:00:00", "2024-01-31T00:00:00"),
            languages=["python", "go"],
            eventTypes=["chat"],
        )
        self.assertEqual([e.id for e in filter_events(EVENTS, query)], ["e2", "e4"])

    def test_model_filter_excludes_events_without_model(self) -> None:
        query = AnalyticsQuery(dateRange=_range("2024-01-01T00:00:00", "2024-01-31T00:00:00"), models=["o1"])
        self.assertEqual([e.id for e in filter_events(EVENTS, query)], ["e3"])


class DimensionTests(unittest.TestCase):
    def test_time_series_has_one_point_per_day(self) -> None:
        points = calculate_time_series(EVENTS, _range("2024-01-01T00:00:00", "2024-01-07T23:59:59"))
        self.assertEqual(len(points), 7)
        self.assertEqual(points[0].timestamp, "2024-01-01")
        self.assertEqual([p.value for p in points], [2, 0, 1, 0, 0, 1, 0])

    def test_empty_time_series_is_zero_filled(self) -> None:
        points = calculate_time_series([], _range("2024-02-01T00:00:00", "2024-02-03T00:00:00"))
        self.assertEqual([(p.timestamp, p.value) for p in points], [("2024-02-01", 0), ("2024-02-02", 0), ("2024-02-03", 0)])

    def test_time_series_uses_analytics_timezone(self) -> None:
        points = calculate_time_series(
            [EVENTS[2]],
            _range("2024-01-03T00:00:00", "2024-01-04T23:00:00"),
            tz=ZoneInfo("Europe/Berlin"),
        )
        self.assertEqual([(p.timestamp, p.value) for p in points], [("2024-01-03", 0), ("2024-01-04", 1), ("2024-01-05", 0)])

    def test_language_percentages_sum_to_100(self) -> None:
        metrics = calculate_language_metrics(EVENTS)
        self.assertEqual(metrics[0].language, "python")
        self.assertEqual(metrics[0].eventCount, 2)
        self.assertEqual(metrics[0].averageDuration, 200)
        self.assertIn("unknown", {m.language for m in metrics})
        self.assertAlmostEqual(sum(m.percentage for m in metrics), 100.0)

    def test_empty_distributions_are_zero(self) -> None:
        self.assertEqual(calculate_event_type_distribution([]), [])
        hourly = calculate_hourly_distribution([])
        self.assertEqual(len(hourly), 24)
        self.assertTrue(all(h.percentage == 0 for h in hourly))

    def test_hourly_and_weekday_are_ordered(self) -> None:
        hourly = calculate_hourly_distribution(EVENTS)
        self.assertEqual([h.hour for h in hourly], list(range(24)))
        self.assertEqual(hourly[10].eventCount, 2)
        self.assertAlmostEqual(sum(h.percentage for h in hourly), 100.0)

        weekdays = calculate_day_of_week_distribution(EVENTS)
        self.assertEqual([d.dayOfWeek for d in weekdays], list(range(7)))
        self.assertEqual(weekdays[0].dayName, "Sunday")
        # 2024-01-01 was a Monday and 2024-01-06 a Saturday.
        self.assertEqual(weekdays[1].eventCount, 2)
        self.assertEqual(weekdays[6].eventCount, 1)


class GroupingTests(unittest.TestCase):
    def test_session_analytics_newest_first(self) -> None:
        sessions = calculate_session_analytics(EVENTS)
        self.assertEqual([s.sessionId for s in sessions], ["s3", "s2", "s1"])
        s1 = sessions[-1]
        self.assertEqual(s1.eventCount, 2)
        self.assertEqual(s1.duration, 30 * 60 * 1000)
        self.assertEqual(s1.endTime, "2024-01-01T10:30:00.000Z")
        self.assertEqual(s1.uniqueModels, ["gpt-4o"])
        self.assertIsNone(sessions[0].endTime)
        self.assertEqual(sessions[0].duration, 0)

    def test_instance_restarts_are_distinct_hosts_minus_one(self) -> None:
        instances = calculate_instance_session_analytics(EVENTS)
        by_id = {i.instanceSessionId: i for i in instances}
        self.assertEqual(by_id["vscode-2024010110"].extensionHostRestarts, 1)
        self.assertEqual(by_id["vscode-2024010110"].windowCount, 1)
        self.assertEqual(by_id["vscode-2024010608"].extensionHostRestarts, 0)

    def test_window_grouping_skips_events_without_window(self) -> None:
        events = EVENTS + [_event("e5", "2024-01-07T00:00:00.000Z", window=None)]
        windows = calculate_window_session_analytics(events)
        self.assertEqual(sum(w.eventCount for w in windows), 4)
        self.assertEqual(windows[0].windowId, "window-bbbb")
        self.assertEqual(windows[1].extensionHostSessions, 2)


class CalculateAnalyticsTests(unittest.TestCase):
    def test_full_result(self) -> None:
        query = AnalyticsQuery(dateRange=_range("2024-01-01T00:00:00", "2024-01-02T00:00:00"))
        result = calculate_analytics(EVENTS, query, now=datetime(2024, 1, 10, tzinfo=timezone.utc))
        self.assertEqual(result.aggregatedMetrics.totalEvents, 2)
        self.assertEqual(result.aggregatedMetrics.uniqueSessions, 1)
        self.assertEqual(result.aggregatedMetrics.totalTokensUsed, 30)
        self.assertEqual(result.aggregatedMetrics.averageDuration, 200)
        self.assertEqual(len(result.timeSeriesData), 2)
        self.assertEqual(result.generatedAt, "2024-01-10T00:00:00.000Z")

    def test_empty_result(self) -> None:
        query = AnalyticsQuery(dateRange=_range("2023-01-01T00:00:00", "2023-01-01T00:00:00"))
        result = calculate_analytics(EVENTS, query)
        self.assertEqual(result.aggregatedMetrics.totalEvents, 0)
        self.assertEqual(result.aggregatedMetrics.averageEventsPerSession, 0)
        self.assertEqual(result.languageMetrics, [])
        self.assertEqual(result.sessionAnalytics, [])


class QuickStatsTests(unittest.TestCase):
    def test_counters_and_tops(self) -> None:
        now = datetime(2024, 1, 6, 9, 0, tzinfo=timezone.utc)  # Saturday
        events = EVENTS + [_event("e0", "2023-12-30T12:00:00.000Z", session="s0")]
        stats = calculate_quick_stats(events, now=now)
        self.assertEqual(stats.totalEvents, 5)
        self.assertEqual(stats.eventsToday, 1)
        self.assertEqual(stats.eventsThisWeek, 4)
        self.assertEqual(stats.eventsThisMonth, 4)
        self.assertEqual(stats.topLanguage, "python")
        self.assertEqual(stats.topModel, "gpt-4o")
        self.assertEqual(stats.lastEventTime, "1 hour ago")

    def test_unknown_values_never_top(self) -> None:
        stats = calculate_quick_stats(
            [_event("x1", "2024-01-01T00:00:00.000Z"), _event("x2", "2024-01-01T00:01:00.000Z")],
            now=datetime(2024, 1, 1, 0, 1, 30, tzinfo=timezone.utc),
        )
        self.assertEqual(stats.topLanguage, "None")
        self.assertEqual(stats.topModel, "None")
        self.assertEqual(stats.lastEventTime, "Just now")
        self.assertEqual(stats.averageSessionDuration, "1m")

    def test_no_events(self) -> None:
        stats = calculate_quick_stats([], now=datetime(2024, 1, 1, tzinfo=timezone.utc))
        self.assertEqual(stats.totalEvents, 0)
        self.assertIsNone(stats.lastEventTime)
        self.assertEqual(stats.averageSessionDuration, "0ms")


class FingerprintTests(unittest.TestCase):
    def test_interior_changes_keep_the_fingerprint(self) -> None:
        changed = list(EVENTS)
        changed[1] = _event("other", "2024-01-02T00:00:00.000Z")
        self.assertEqual(events_fingerprint(EVENTS), events_fingerprint(changed))
        self.assertEqual(events_fingerprint([]), "0")
        self.assertNotEqual(events_fingerprint(EVENTS), events_fingerprint(EVENTS[:3]))


if __name__ == "__main__":
    unittest.main()
