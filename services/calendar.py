"""Calendar views: action items collected from case important dates.

Everything here is a pure function over already-loaded :class:`Case` objects.
Day boundaries are naive server-local midnights and every window is half-open,
so an entry stamped exactly at midnight belongs to the day that starts there.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from services.models import ActionItem, Case

DAYS_IN_WEEK = 7

WEEKDAY_NAMES = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)


def weekday_name(day: date) -> str:
    return WEEKDAY_NAMES[day.weekday()]


def _window(day: date, days: int) -> Tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    try:
        return start, start + timedelta(days=days)
    except OverflowError as exc:
        raise ValueError(f"{day.isoformat()} is too close to the end of the calendar") from exc


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    """Half-open window of one day; raises ``ValueError`` past the last representable day."""
    return _window(day, 1)


def week_bounds(week_start: date) -> Tuple[datetime, datetime]:
    return _window(week_start, DAYS_IN_WEEK)


def _collect(cases: Iterable[Case], start: datetime, end: datetime) -> List[ActionItem]:
    items = [
        ActionItem.from_entry(case, entry)
        for case in cases
        for entry in case.important_dates
        if start <= entry.date < end
    ]
    # sorted() is stable: equal timestamps keep case/entry order
    return sorted(items, key=lambda item: item.timestamp)


def items_for_day(cases: Iterable[Case], day: date) -> List[ActionItem]:
    """Action items falling on ``day``, earliest first."""
    start, end = day_bounds(day)
    return _collect(cases, start, end)


def items_for_week(cases: Iterable[Case], week_start: date) -> List[Dict[str, Any]]:
    """Seven day buckets starting at ``week_start``; empty days keep an empty list."""
    cases = list(cases)
    buckets = []
    for offset in range(DAYS_IN_WEEK):
        day = week_start + timedelta(days=offset)
        buckets.append(
            {
                "date": day,
                "dayOfWeek": weekday_name(day),
                "actionItems": items_for_day(cases, day),
            }
        )
    return buckets


def day_view(cases: Iterable[Case], day: date) -> Dict[str, Any]:
    items = items_for_day(cases, day)
    return {
        "date": day.isoformat(),
        "dayOfWeek": weekday_name(day),
        "actionItems": [item.to_dict() for item in items],
        "total": len(items),
    }


def today_view(cases: Iterable[Case], today: Optional[date] = None) -> Dict[str, Any]:
    return day_view(cases, today or date.today())


def week_view(cases: Iterable[Case], week_start: date) -> Dict[str, Any]:
    return {
        "weekStart": week_start.isoformat(),
        "weekEnd": (week_start + timedelta(days=DAYS_IN_WEEK)).isoformat(),
        "days": [
            {
                "date": bucket["date"].isoformat(),
                "dayOfWeek": bucket["dayOfWeek"],
                "actionItems": [item.to_dict() for item in bucket["actionItems"]],
            }
            for bucket in items_for_week(cases, week_start)
        ],
    }


def parse_day(raw: str) -> date:
    """Parse a ``YYYY-MM-DD`` path segment; raises ``ValueError`` when malformed."""
    return datetime.strptime((raw or "").strip(), "%Y-%m-%d").date()
