"""Reminder trigger calculator — pure business logic.

Derives the two reminder instants of an activity (start and end) from its
date and time-of-day fields, relative to a given "now".

No I/O: this module only transforms data.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from src.core.activity_rules import parse_local_datetime
from src.data.models import Activity

_MIDNIGHT = "00:00"


@dataclass
class TriggerPlan:
    """Which reminders to register for an activity.

    `start_at` / `end_at` are only set when they lie in the future.
    `expired` means the end instant has already passed and the expiry
    notice should be shown right away.
    """

    start_at: datetime | None = None
    end_at: datetime | None = None
    expired: bool = False

    @property
    def is_empty(self) -> bool:
        return self.start_at is None and self.end_at is None and not self.expired


def _trigger_instant(date_str: str | None, time_str: str | None) -> datetime | None:
    if not date_str:
        return None
    return parse_local_datetime(date_str, time_str or _MIDNIGHT)


def compute_triggers(activity: Activity, now: datetime) -> TriggerPlan:
    """Compute the reminder plan of `activity` at `now`.

    A missing time-of-day means midnight of the activity date. A trigger
    whose date is missing or malformed is skipped silently.
    """
    plan = TriggerPlan()

    start_at = _trigger_instant(activity.date, activity.start_time)
    if start_at is not None and start_at > now:
        plan.start_at = start_at

    end_at = _trigger_instant(activity.date, activity.end_time)
    if end_at is not None:
        if end_at > now:
            plan.end_at = end_at
        else:
            plan.expired = True

    return plan
