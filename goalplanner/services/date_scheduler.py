"""Map plan day indexes onto calendar dates."""
from __future__ import annotations

from datetime import date, datetime, timedelta, tzinfo
from typing import List, Optional, Union
from zoneinfo import ZoneInfo

SATURDAY = 5

DateLike = Union[date, str]


def parse_target_date(value: Optional[DateLike]) -> Optional[date]:
    """Accept a date, an ISO date string, or an ISO datetime string."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = value.strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError as exc:
        raise ValueError(f"Invalid target date: {value!r}") from exc


def plan_start_date(timezone_name: str = "UTC", now: Optional[datetime] = None) -> date:
    """Today's date in the planner timezone (time of day dropped)."""
    tz: tzinfo = ZoneInfo(timezone_name)
    current = now.astimezone(tz) if now else datetime.now(tz)
    return current.date()


def eligible_days(
    start_date: date,
    target_date: DateLike,
    skip_weekends: bool = False,
    limit: Optional[int] = None,
) -> List[date]:
    """Schedulable days from start_date through target_date inclusive.

    Collection stops after ``limit`` days when one is given.
    """
    target = parse_target_date(target_date)
    days: List[date] = []
    current = start_date
    while current <= target:
        if not (skip_weekends and current.weekday() >= SATURDAY):
            days.append(current)
            if limit is not None and len(days) >= limit:
                break
        # date.max has no successor
        if current == target:
            break
        current += timedelta(days=1)
    return days


def calculate_task_date(
    day_index: int,
    start_date: date,
    target_date: Optional[DateLike] = None,
    skip_weekends: bool = False,
) -> date:
    """Return the calendar date for a 1-based plan day.

    Without a target date days are spaced uniformly and weekends are not
    skipped. With one, the index picks from the eligible days up to the
    deadline and clamps to the last eligible day (or start_date when there
    are none).
    """
    if day_index < 1:
        raise ValueError("day_index must be >= 1")

    if parse_target_date(target_date) is None:
        return start_date + timedelta(days=day_index - 1)

    days = eligible_days(start_date, target_date, skip_weekends, limit=day_index)
    if not days:
        return start_date
    if day_index > len(days):
        return days[-1]
    return days[day_index - 1]


def days_until(target_date: DateLike, today: date) -> int:
    """Whole days from today to the target (at least one)."""
    target = parse_target_date(target_date)
    return max(1, (target - today).days)
