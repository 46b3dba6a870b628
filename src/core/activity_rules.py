"""Activity status rules — pure business logic.

"Missed" is never stored: it is projected at read time from the stored
status, the activity's end time and the current clock. Everything here
returns new objects and leaves its inputs untouched.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime

from src.data.models import Activity, ActivityStatus, Category

logger = logging.getLogger(__name__)


@dataclass
class DailyProgress:
    """Completion figures of a single day."""

    total: int
    done: int
    percent: float


def parse_local_datetime(date_str: str | None, time_str: str | None) -> datetime | None:
    """Combine "YYYY-MM-DD" and "HH:MM" into a naive local datetime.

    Returns None when either part is missing or malformed.
    """
    if not date_str or not time_str:
        return None
    try:
        return datetime.strptime(f"{date_str.strip()} {time_str.strip()[:5]}", "%Y-%m-%d %H:%M")
    except ValueError:
        logger.debug("Unparseable date/time: %r %r", date_str, time_str)
        return None


def project_status(activity: Activity, now: datetime) -> Activity:
    """Return the activity as it should be shown at `now`.

    A not-done activity whose end time has passed reads as Missed. The
    returned copy is never persisted by this module.
    """
    if activity.status in (ActivityStatus.DONE, ActivityStatus.MISSED):
        return activity

    end_at = parse_local_datetime(activity.date, activity.end_time)
    if end_at is not None and end_at < now:
        return replace(activity, status=ActivityStatus.MISSED.value)
    return activity


def project_activities(activities: list[Activity], now: datetime) -> list[Activity]:
    return [project_status(a, now) for a in activities]


def toggle_status(activity: Activity) -> Activity:
    """Flip Pending and Done. A Missed activity cannot be toggled."""
    if activity.status == ActivityStatus.MISSED:
        return activity
    if activity.status == ActivityStatus.DONE:
        return replace(activity, status=ActivityStatus.PENDING.value)
    return replace(activity, status=ActivityStatus.DONE.value)


def apply_category(activity: Activity, category: Category) -> Activity:
    """Assign a category, copying its current priority onto the activity."""
    return replace(activity, category=category.name, priority=category.priority)


def daily_progress(activities: list[Activity], day: str, now: datetime) -> DailyProgress:
    """Share of the day's activities that are done, on projected statuses."""
    daily = [a for a in project_activities(activities, now) if a.date == day]
    done = sum(1 for a in daily if a.status == ActivityStatus.DONE)
    percent = (done / len(daily)) * 100 if daily else 0.0
    return DailyProgress(total=len(daily), done=done, percent=percent)
