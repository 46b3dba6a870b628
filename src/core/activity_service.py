"""
Routine Tracker — UI-Agnostic Activity Service.

Orchestrates the activity flows a screen needs: store the change in the
local database first, then keep the reminders in step with it. Reminder
failures never fail the flow; storage failures do.

Reminder handles are kept in memory per activity id, and only while at
least one reminder is pending. They are not persisted, so reminders
scheduled before a restart cannot be cancelled after it. Handles of
reminders that already fired stay until the activity is next edited,
toggled or removed; cancelling them then is a logged no-op.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from src.core.activity_rules import (
    DailyProgress,
    apply_category,
    daily_progress,
    project_activities,
    project_status,
    toggle_status,
)
from src.data.db import NotFoundError
from src.data.models import ActivityStatus, NotificationHandles

if TYPE_CHECKING:
    from src.core.notification_scheduler import NotificationScheduler
    from src.data.db import ActivityDB, CategoryDB
    from src.data.models import Activity, Category

logger = logging.getLogger(__name__)


class ActivityService:
    """Activity flows of a signed-in user."""

    def __init__(
        self,
        activity_db: ActivityDB,
        category_db: CategoryDB,
        scheduler: NotificationScheduler,
    ) -> None:
        self._activity_db = activity_db
        self._category_db = category_db
        self._scheduler = scheduler
        self._handles: dict[int, NotificationHandles] = {}

    def handles_for(self, activity_id: int) -> NotificationHandles | None:
        return self._handles.get(activity_id)

    def _remember(self, activity_id: int, handles: NotificationHandles) -> None:
        if handles.start_id is None and handles.end_id is None:
            self._handles.pop(activity_id, None)
        else:
            self._handles[activity_id] = handles

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_for_day(
        self, user_id: int, day: str, now: datetime | None = None,
    ) -> list[Activity]:
        """The user's activities on `day`, with Missed projected at `now`."""
        if now is None:
            now = datetime.now()
        activities = project_activities(self._activity_db.list_activities(user_id), now)
        return [a for a in activities if a.date == day]

    def daily_progress(
        self, user_id: int, day: str, now: datetime | None = None,
    ) -> DailyProgress:
        if now is None:
            now = datetime.now()
        return daily_progress(self._activity_db.list_activities(user_id), day, now)

    def categories(self, user_id: int) -> list[Category]:
        """The user's categories, seeding the defaults on first access."""
        return self._category_db.ensure_default_categories(user_id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def add_activity(
        self, user_id: int, activity: Activity, now: datetime | None = None,
    ) -> Activity:
        """Store a new activity, then schedule its reminders."""
        if not activity.name.strip() or not activity.date:
            raise ValueError("Activity name and date are required")

        created = self._activity_db.create_activity(user_id, activity)
        self._remember(created.id, await self._scheduler.schedule_activity(created, now))
        return created

    async def edit_activity(
        self,
        user_id: int,
        activity_id: int,
        activity: Activity,
        now: datetime | None = None,
    ) -> bool:
        """Overwrite an activity and reschedule its reminders.

        Returns False when the user owns no such activity.
        """
        if not activity.name.strip() or not activity.date:
            raise ValueError("Activity name and date are required")

        found = self._activity_db.update_activity(activity_id, activity, user_id=user_id)
        if not found:
            return False

        await self._scheduler.cancel_activity(self._handles.pop(activity_id, None))
        if activity.status != ActivityStatus.DONE:
            stored = self._activity_db.get_activity(activity_id, user_id=user_id)
            if stored is not None:
                self._remember(activity_id, await self._scheduler.schedule_activity(stored, now))
        return True

    async def toggle_activity(
        self, user_id: int, activity_id: int, now: datetime | None = None,
    ) -> Activity:
        """Flip Pending/Done and persist it. Missed activities stay as they are."""
        if now is None:
            now = datetime.now()

        stored = self._activity_db.get_activity(activity_id, user_id=user_id)
        if stored is None:
            raise NotFoundError(f"Activity {activity_id} not found")

        current = project_status(stored, now)
        if current.status == ActivityStatus.MISSED:
            return current

        toggled = toggle_status(current)
        self._activity_db.set_status(activity_id, toggled.status, user_id=user_id)

        await self._scheduler.cancel_activity(self._handles.pop(activity_id, None))
        if toggled.status == ActivityStatus.PENDING:
            self._remember(activity_id, await self._scheduler.schedule_activity(toggled, now))
        return toggled

    async def remove_activity(self, user_id: int, activity_id: int) -> bool:
        """Delete an activity and cancel its reminders."""
        deleted = self._activity_db.delete_activity(activity_id, user_id=user_id)
        await self._scheduler.cancel_activity(self._handles.pop(activity_id, None))
        return deleted

    def assign_category(
        self, user_id: int, activity_id: int, category_id: int,
    ) -> Activity:
        """Attach a category, copying its priority as of now."""
        activity = self._activity_db.get_activity(activity_id, user_id=user_id)
        if activity is None:
            raise NotFoundError(f"Activity {activity_id} not found")

        category = self._category_db.get_category(category_id)
        if category is None or category.user_id != user_id:
            raise NotFoundError(f"Category {category_id} not found")

        updated = apply_category(activity, category)
        self._activity_db.update_activity(activity_id, updated, user_id=user_id)
        logger.info(
            "Activity #%d assigned to category '%s' (%s)",
            activity_id, category.name, category.priority,
        )
        return updated
