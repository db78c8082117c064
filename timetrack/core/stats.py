"""Productivity statistics over a window of activities.

Activities are re-categorized through the rule engine (manual overrides
stay sticky) and bucketed by category, application, hour of day and
calendar day. Idle activities are not counted.
"""

from collections import OrderedDict
from datetime import datetime
from typing import TYPE_CHECKING, Iterable, Optional

from timetrack.core.models import (
    UNCATEGORIZED_ID,
    Activity,
    AppUsage,
    CategoryBreakdown,
    DailyTrendPoint,
    HourlyBucket,
    ProductivityStats,
)

if TYPE_CHECKING:
    from timetrack.core.rules import RuleEngine

PRODUCTIVE = "productive"
DISTRACTING = "distracting"
UNCATEGORIZED = "uncategorized"


def calculate_productivity_stats(
    engine: "RuleEngine",
    activities: Iterable[Activity],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    top_n: int = 10,
) -> ProductivityStats:
    """Aggregate *activities* whose start time falls within [start, end]."""
    selected = [
        a for a in activities
        if not a.is_idle
        and (start is None or a.start_time >= start)
        and (end is None or a.start_time <= end)
    ]

    total = productive = distracting = uncategorized = 0
    by_category: "OrderedDict[str, int]" = OrderedDict()
    by_app: "OrderedDict[str, list]" = OrderedDict()   # app -> [seconds, category_id]
    hourly = [HourlyBucket(hour=h) for h in range(24)]
    by_day: dict[str, list[int]] = {}                    # date -> [total, productive]

    for activity in selected:
        seconds = max(0, int(activity.duration))
        category_id = engine.categorize(activity, activity_id=activity.id, remember=False).category_id
        kind = _classify(engine, category_id)

        total += seconds
        by_category[category_id] = by_category.get(category_id, 0) + seconds

        app = by_app.setdefault(activity.application_name, [0, category_id])
        app[0] += seconds

        bucket = hourly[activity.start_time.hour]
        day = by_day.setdefault(activity.start_time.date().isoformat(), [0, 0])
        day[0] += seconds

        if kind == PRODUCTIVE:
            productive += seconds
            bucket.productive_seconds += seconds
            day[1] += seconds
        elif kind == DISTRACTING:
            distracting += seconds
            bucket.distracting_seconds += seconds
        else:
            uncategorized += seconds
            bucket.uncategorized_seconds += seconds

    categorized = total - uncategorized
    score = round(productive / categorized * 100) if categorized > 0 else 0

    breakdown = []
    for category_id, seconds in by_category.items():
        category = engine.get_category(category_id)
        breakdown.append(
            CategoryBreakdown(
                category_id=category_id,
                category_name=category.name if category else category_id,
                color=category.color if category else "#9CA3AF",
                total_seconds=seconds,
                percentage=_percent(seconds, total),
                is_productivity=category.is_productivity if category else False,
            )
        )
    breakdown.sort(key=lambda b: -b.total_seconds)

    apps = [
        AppUsage(app_name=name, category_id=cid, total_seconds=seconds,
                 percentage=_percent(seconds, total))
        for name, (seconds, cid) in by_app.items()
    ]
    apps.sort(key=lambda a: -a.total_seconds)

    trend = [
        DailyTrendPoint(
            date=date,
            productivity_score=_percent(day_productive, day_total),
            total_seconds=day_total,
            productive_seconds=day_productive,
        )
        for date, (day_total, day_productive) in sorted(by_day.items())
    ]

    return ProductivityStats(
        total_time=total,
        productive_time=productive,
        distracting_time=distracting,
        uncategorized_time=uncategorized,
        productivity_score=score,
        category_breakdown=breakdown,
        top_apps=apps[:top_n],
        hourly_breakdown=hourly,
        daily_trend=trend,
    )


def _classify(engine: "RuleEngine", category_id: str) -> str:
    if category_id == UNCATEGORIZED_ID:
        return UNCATEGORIZED
    category = engine.get_category(category_id)
    if category is None:
        return UNCATEGORIZED
    return PRODUCTIVE if category.is_productivity else DISTRACTING


def _percent(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    return round(part / whole * 100)
