"""Shared timestamp conversion and human formatting helpers."""
from __future__ import annotations

import math
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any


def epoch_ms_to_datetime(value: float) -> datetime:
    return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)


def format_iso(value: datetime) -> str:
    """Render a datetime as UTC ISO-8601 with millisecond precision and a Z suffix.

    Every event timestamp goes through here, so lexical comparison of the
    resulting strings matches chronological order.
    """
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    millis = dt.microsecond // 1000
    return dt.strftime("%Y-%m-%dT%H:%M:%S") + f".{millis:03d}Z"


def epoch_ms_to_iso(value: float) -> str:
    # Floor to whole milliseconds before conversion to avoid float rounding drift.
    ms = int(math.floor(value))
    base = datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(milliseconds=ms)
    return format_iso(base)


def parse_iso(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def iso_to_epoch_ms(value: str) -> float:
    parsed = parse_iso(value)
    if parsed is None:
        return 0.0
    return parsed.timestamp() * 1000.0


def day_key(value: datetime | date) -> str:
    return value.isoformat()[:10]


def iter_days(start: date, end: date):
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def js_day_of_week(value: datetime) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (value.weekday() + 1) % 7


def to_zone(value: datetime, zone: tzinfo) -> datetime:
    return value.astimezone(zone)


def js_round(value: float) -> int:
    """Round half up, matching the rounding used for token estimates."""
    return int(math.floor(value + 0.5))


def format_duration(ms: float) -> str:
    if ms < 1000:
        return f"{js_round(ms)}ms"
    if ms < 60_000:
        return f"{js_round(ms / 1000)}s"
    if ms < 3_600_000:
        return f"{js_round(ms / 60_000)}m"
    return f"{js_round(ms / 3_600_000)}h"


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'} ago"


def format_relative_time(value: datetime, now: datetime) -> str:
    diff_ms = (now - value).total_seconds() * 1000
    minutes = int(diff_ms // 60_000)
    hours = int(diff_ms // 3_600_000)
    days = int(diff_ms // 86_400_000)

    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return _plural(minutes, "minute")
    if hours < 24:
        return _plural(hours, "hour")
    return _plural(days, "day")
