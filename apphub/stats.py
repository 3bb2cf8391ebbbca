"""
Usage statistics over a user's access history.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Literal, Optional

from apphub.types import AccessRecord

Period = Literal["week", "month", "allTime"]

PERIOD_DAYS = {"week": 7, "month": 30}
TOP_APPS_LIMIT = 5


@dataclass
class TopApp:
    id: str
    name: str
    icon: str
    count: int


@dataclass
class UsageStats:
    total_accesses: int = 0
    most_active_hour: int = 0
    most_active_day: int = 0
    hourly_activity: list[int] = field(default_factory=lambda: [0] * 24)
    daily_activity: list[int] = field(default_factory=lambda: [0] * 7)
    top_apps: list[TopApp] = field(default_factory=list)


def _weekday(moment: datetime) -> int:
    # 0 = Sunday
    return (moment.weekday() + 1) % 7


def period_start(period: Period, now: Optional[datetime] = None) -> Optional[float]:
    """Epoch seconds where `period` begins, or None for allTime."""
    days = PERIOD_DAYS.get(period)
    if days is None:
        return None
    now = now or datetime.now(timezone.utc)
    return (now - timedelta(days=days)).timestamp()


def compute_usage_stats(
    records: list[AccessRecord],
    now: Optional[datetime] = None,
    tz: tzinfo = timezone.utc,
) -> UsageStats:
    """
    Aggregate access records into hourly/daily buckets and top apps.

    Ties for the busiest hour or day resolve to the lowest index. Top apps
    keep the order in which records list them when counts tie.
    """
    now = now or datetime.now(tz)
    stats = UsageStats()
    if not records:
        stats.most_active_day = _weekday(now.astimezone(tz))
        return stats

    counts: Counter[str] = Counter()
    latest: dict[str, AccessRecord] = {}
    for record in records:
        moment = datetime.fromtimestamp(record.timestamp, tz=tz)
        stats.hourly_activity[moment.hour] += 1
        stats.daily_activity[_weekday(moment)] += 1
        counts[record.app_id] += 1
        latest.setdefault(record.app_id, record)

    stats.total_accesses = len(records)
    stats.most_active_hour = max(range(24), key=lambda h: stats.hourly_activity[h])
    stats.most_active_day = max(range(7), key=lambda d: stats.daily_activity[d])
    ranked = sorted(counts, key=lambda app_id: -counts[app_id])
    stats.top_apps = [
        TopApp(
            id=app_id,
            name=latest[app_id].name,
            icon=latest[app_id].icon,
            count=counts[app_id],
        )
        for app_id in ranked[:TOP_APPS_LIMIT]
    ]
    return stats
