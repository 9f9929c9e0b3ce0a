"""Pure aggregate computations over normalized usage events.

Nothing here touches a cache or awaits; every function maps a snapshot of
events (plus a query) to fresh result models.
"""
from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Callable, Iterable, Optional, Sequence

from copilotdash.date_utils import (
    day_key,
    format_duration,
    format_iso,
    format_relative_time,
    iso_to_epoch_ms,
    iter_days,
    js_day_of_week,
    parse_iso,
)
from copilotdash.models import (
    AggregatedMetrics,
    AnalyticsQuery,
    AnalyticsResult,
    DateRange,
    DayOfWeekDistribution,
    EventTypeDistribution,
    HourlyDistribution,
    InstanceSessionAnalytics,
    LanguageUsageMetric,
    ModelUsageMetric,
    QuickStats,
    SessionAnalytics,
    TimeSeriesDataPoint,
    UsageEvent,
    WindowSessionAnalytics,
)

DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")
UNKNOWN_LANGUAGE = "unknown"
UNKNOWN_MODEL = "Unknown"


def event_time(event: UsageEvent) -> datetime:
    parsed = parse_iso(event.timestamp)
    return parsed if parsed is not None else datetime.fromtimestamp(0, tz=timezone.utc)


def _percentage(count: int, total: int) -> float:
    return (count / total) * 100 if total > 0 else 0.0


def sort_events(events: Iterable[UsageEvent]) -> list[UsageEvent]:
    return sorted(events, key=lambda e: iso_to_epoch_ms(e.timestamp))


def events_fingerprint(events: Sequence[UsageEvent]) -> str:
    """Cheap identity for an event snapshot: count plus boundary timestamps.

    Interior changes that keep the count and both ends are invisible here.
    """
    if not events:
        return "0"
    return f"{len(events)}-{events[0].timestamp}-{events[-1].timestamp}"


def _allowed(values: Optional[list[str]], value: Optional[str]) -> bool:
    if not values:
        return True
    return value is not None and value in values


def filter_events(events: Iterable[UsageEvent], query: AnalyticsQuery) -> list[UsageEvent]:
    start, end = query.dateRange.start, query.dateRange.end
    filtered: list[UsageEvent] = []
    for event in events:
        moment = event_time(event)
        if moment < start or moment > end:
            continue
        if not _allowed(query.eventTypes, event.type):
            continue
        if not _allowed(query.languages, event.language):
            continue
        if not _allowed(query.models, event.model):
            continue
        if not _allowed(query.sessionIds, event.sessionId):
            continue
        filtered.append(event)
    return filtered


def calculate_aggregated_metrics(events: Sequence[UsageEvent]) -> AggregatedMetrics:
    unique_sessions = len({e.sessionId for e in events})
    total_duration = sum(e.duration or 0 for e in events)
    total_tokens = sum(e.tokensUsed or 0 for e in events)
    count = len(events)
    return AggregatedMetrics(
        totalEvents=count,
        uniqueSessions=unique_sessions,
        averageEventsPerSession=count / unique_sessions if unique_sessions else 0.0,
        totalDuration=total_duration,
        averageDuration=total_duration / count if count else 0.0,
        totalTokensUsed=total_tokens,
        averageTokensPerEvent=total_tokens / count if count else 0.0,
    )


def calculate_time_series(
    events: Sequence[UsageEvent],
    date_range: DateRange,
    tz: tzinfo = timezone.utc,
) -> list[TimeSeriesDataPoint]:
    """One zero-filled point per calendar day of the range, both ends inclusive."""
    counts: dict[str, int] = {}
    for day in iter_days(date_range.start.astimezone(tz).date(), date_range.end.astimezone(tz).date()):
        counts[day_key(day)] = 0
    for event in events:
        key = day_key(event_time(event).astimezone(tz))
        counts[key] = counts.get(key, 0) + 1
    return [TimeSeriesDataPoint(timestamp=key, value=counts[key]) for key in sorted(counts)]


def _grouped_usage(events: Sequence[UsageEvent], key: Callable[[UsageEvent], str]) -> dict[str, dict[str, float]]:
    groups: dict[str, dict[str, float]] = {}
    for event in events:
        bucket = groups.setdefault(key(event), {"count": 0, "duration": 0.0, "tokens": 0})
        bucket["count"] += 1
        bucket["duration"] += event.duration or 0
        bucket["tokens"] += event.tokensUsed or 0
    return groups


def calculate_language_metrics(events: Sequence[UsageEvent]) -> list[LanguageUsageMetric]:
    total = len(events)
    groups = _grouped_usage(events, lambda e: e.language or UNKNOWN_LANGUAGE)
    metrics = [
        LanguageUsageMetric(
            language=language,
            eventCount=int(data["count"]),
            percentage=_percentage(int(data["count"]), total),
            averageDuration=data["duration"] / data["count"],
            totalTokens=int(data["tokens"]),
        )
        for language, data in groups.items()
    ]
    return sorted(metrics, key=lambda m: m.eventCount, reverse=True)


def calculate_model_metrics(events: Sequence[UsageEvent]) -> list[ModelUsageMetric]:
    total = len(events)
    groups = _grouped_usage(events, lambda e: e.model or UNKNOWN_MODEL)
    metrics = [
        ModelUsageMetric(
            model=model,
            eventCount=int(data["count"]),
            percentage=_percentage(int(data["count"]), total),
            averageDuration=data["duration"] / data["count"],
            totalTokens=int(data["tokens"]),
            # Transcripts only record completed exchanges.
            successRate=100.0,
        )
        for model, data in groups.items()
    ]
    return sorted(metrics, key=lambda m: m.eventCount, reverse=True)


def calculate_event_type_distribution(events: Sequence[UsageEvent]) -> list[EventTypeDistribution]:
    total = len(events)
    counts = Counter(e.type for e in events)
    distribution = [
        EventTypeDistribution(type=event_type, count=count, percentage=_percentage(count, total))
        for event_type, count in counts.items()
    ]
    return sorted(distribution, key=lambda d: d.count, reverse=True)


def calculate_hourly_distribution(
    events: Sequence[UsageEvent],
    tz: tzinfo = timezone.utc,
) -> list[HourlyDistribution]:
    total = len(events)
    counts = Counter(event_time(e).astimezone(tz).hour for e in events)
    return [
        HourlyDistribution(hour=hour, eventCount=counts.get(hour, 0), percentage=_percentage(counts.get(hour, 0), total))
        for hour in range(24)
    ]


def calculate_day_of_week_distribution(
    events: Sequence[UsageEvent],
    tz: tzinfo = timezone.utc,
) -> list[DayOfWeekDistribution]:
    total = len(events)
    counts = Counter(js_day_of_week(event_time(e).astimezone(tz)) for e in events)
    return [
        DayOfWeekDistribution(
            dayOfWeek=day,
            dayName=DAY_NAMES[day],
            eventCount=counts.get(day, 0),
            percentage=_percentage(counts.get(day, 0), total),
        )
        for day in range(7)
    ]


def _span(events: list[UsageEvent]) -> tuple[str, Optional[str], float]:
    """Start, end (only for multi-event groups) and duration in ms of a group."""
    ordered = sort_events(events)
    start = ordered[0].timestamp
    end = ordered[-1].timestamp
    duration = iso_to_epoch_ms(end) - iso_to_epoch_ms(start)
    return start, (end if len(ordered) > 1 else None), duration


def _unique(values: Iterable[Optional[str]]) -> list[str]:
    seen: list[str] = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


def _newest_first(items: list, start_of: Callable) -> list:
    return sorted(items, key=lambda item: iso_to_epoch_ms(start_of(item)), reverse=True)


def calculate_session_analytics(events: Sequence[UsageEvent]) -> list[SessionAnalytics]:
    groups: dict[str, list[UsageEvent]] = {}
    for event in events:
        groups.setdefault(event.sessionId, []).append(event)

    sessions: list[SessionAnalytics] = []
    for session_id, group in groups.items():
        start, end, duration = _span(group)
        first = group[0]
        sessions.append(
            SessionAnalytics(
                sessionId=session_id,
                instanceSessionId=first.instanceSessionId,
                windowId=first.windowId,
                extensionHostSessionId=first.extensionHostSessionId,
                startTime=start,
                endTime=end,
                duration=duration,
                eventCount=len(group),
                uniqueLanguages=_unique(e.language for e in sort_events(group)),
                uniqueModels=_unique(e.model for e in sort_events(group)),
                workspaceId=first.workspaceId,
            )
        )
    return _newest_first(sessions, lambda s: s.startTime)


def calculate_instance_session_analytics(events: Sequence[UsageEvent]) -> list[InstanceSessionAnalytics]:
    groups: dict[str, list[UsageEvent]] = {}
    for event in events:
        groups.setdefault(event.instanceSessionId, []).append(event)

    instances: list[InstanceSessionAnalytics] = []
    for instance_id, group in groups.items():
        start, end, duration = _span(group)
        windows = {e.windowId for e in group if e.windowId}
        hosts = {e.extensionHostSessionId for e in group}
        instances.append(
            InstanceSessionAnalytics(
                instanceSessionId=instance_id,
                startTime=start,
                endTime=end,
                duration=duration,
                eventCount=len(group),
                windowCount=len(windows),
                extensionHostRestarts=len(hosts) - 1,
                workspaceIds=_unique(e.workspaceId for e in group),
                uniqueLanguages=_unique(e.language for e in sort_events(group)),
                uniqueModels=_unique(e.model for e in sort_events(group)),
            )
        )
    return _newest_first(instances, lambda s: s.startTime)


def calculate_window_session_analytics(events: Sequence[UsageEvent]) -> list[WindowSessionAnalytics]:
    groups: dict[tuple[str, str], list[UsageEvent]] = {}
    for event in events:
        if not event.windowId:
            continue
        groups.setdefault((event.instanceSessionId, event.windowId), []).append(event)

    windows: list[WindowSessionAnalytics] = []
    for (instance_id, window_id), group in groups.items():
        start, end, duration = _span(group)
        windows.append(
            WindowSessionAnalytics(
                windowId=window_id,
                instanceSessionId=instance_id,
                startTime=start,
                endTime=end,
                duration=duration,
                eventCount=len(group),
                extensionHostSessions=len({e.extensionHostSessionId for e in group}),
                workspaceId=group[0].workspaceId,
                uniqueLanguages=_unique(e.language for e in sort_events(group)),
                uniqueModels=_unique(e.model for e in sort_events(group)),
            )
        )
    return _newest_first(windows, lambda s: s.startTime)


def calculate_analytics(
    events: Sequence[UsageEvent],
    query: AnalyticsQuery,
    tz: tzinfo = timezone.utc,
    now: Optional[datetime] = None,
) -> AnalyticsResult:
    filtered = filter_events(events, query)
    return AnalyticsResult(
        query=query,
        aggregatedMetrics=calculate_aggregated_metrics(filtered),
        timeSeriesData=calculate_time_series(filtered, query.dateRange, tz),
        languageMetrics=calculate_language_metrics(filtered),
        modelMetrics=calculate_model_metrics(filtered),
        eventTypeDistribution=calculate_event_type_distribution(filtered),
        hourlyDistribution=calculate_hourly_distribution(filtered, tz),
        dayOfWeekDistribution=calculate_day_of_week_distribution(filtered, tz),
        sessionAnalytics=calculate_session_analytics(filtered),
        instanceSessionAnalytics=calculate_instance_session_analytics(filtered),
        windowSessionAnalytics=calculate_window_session_analytics(filtered),
        generatedAt=format_iso(now or datetime.now(timezone.utc)),
    )


def calculate_quick_stats(
    events: Sequence[UsageEvent],
    now: Optional[datetime] = None,
    tz: tzinfo = timezone.utc,
) -> QuickStats:
    """Dashboard counters for today, this week (from Sunday) and this month."""
    current = (now or datetime.now(timezone.utc)).astimezone(tz)
    today = current.replace(hour=0, minute=0, second=0, microsecond=0)
    week_start = today - timedelta(days=js_day_of_week(today))
    month_start = today.replace(day=1)

    times = [event_time(e) for e in events]
    sessions = calculate_session_analytics(events)
    average_duration = sum(s.duration for s in sessions) / len(sessions) if sessions else 0.0

    top_language = next(
        (m.language for m in calculate_language_metrics(events) if m.language != UNKNOWN_LANGUAGE),
        "None",
    )
    top_model = next(
        (m.model for m in calculate_model_metrics(events) if m.model != UNKNOWN_MODEL),
        "None",
    )

    return QuickStats(
        totalEvents=len(events),
        eventsToday=sum(1 for t in times if t >= today),
        eventsThisWeek=sum(1 for t in times if t >= week_start),
        eventsThisMonth=sum(1 for t in times if t >= month_start),
        averageSessionDuration=format_duration(average_duration),
        topLanguage=top_language,
        topModel=top_model,
        lastEventTime=format_relative_time(max(times), current) if times else None,
    )
