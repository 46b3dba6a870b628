"""
Routine Tracker — Activity Reminders.

Turns an activity into at most two one-shot notifications: "Activity
Started" at its start time and "Activity Expired" at its end time. An end
time that already passed is announced immediately instead.

Reminders are fire-and-forget: every notifier failure is logged and
absorbed, never surfaced to the caller. This module is provider-agnostic:
it depends on the NotificationPort protocol only.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from src.core.trigger_calculator import compute_triggers
from src.data.models import NotificationHandles, ScheduledNotification

if TYPE_CHECKING:
    from src.data.models import Activity
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

_STARTED_TITLE = "Activity Started"
_EXPIRED_TITLE = "Activity Expired"
_FALLBACK_NAME = "Your activity"


class NotificationScheduler:
    """Schedules and cancels the reminders of activities."""

    def __init__(self, notifier: NotificationPort) -> None:
        self._notifier = notifier

    async def schedule_activity(
        self, activity: Activity, now: datetime | None = None,
    ) -> NotificationHandles:
        """Register the start/end reminders of `activity`.

        Returns the handles of what was actually scheduled; a handle stays
        None when its trigger was skipped, already past, or failed.
        """
        if now is None:
            now = datetime.now()

        plan = compute_triggers(activity, now)
        name = activity.name or _FALLBACK_NAME
        handles = NotificationHandles()

        if plan.start_at is not None:
            handles.start_id = await self._schedule(
                _STARTED_TITLE, f"{name} has started.", plan.start_at,
            )

        if plan.end_at is not None:
            handles.end_id = await self._schedule(
                _EXPIRED_TITLE, f"{name} has expired.", plan.end_at,
            )
        elif plan.expired:
            try:
                await self._notifier.present(_EXPIRED_TITLE, f"{name} has expired.")
            except Exception as exc:
                logger.warning("Failed to present expiry of '%s': %s", name, exc)

        return handles

    async def _schedule(self, title: str, body: str, fire_at: datetime) -> str | None:
        try:
            handle = await self._notifier.schedule(title, body, fire_at)
        except Exception as exc:
            logger.warning("Failed to schedule '%s' at %s: %s", title, fire_at, exc)
            return None
        logger.debug("Scheduled '%s' at %s as %s", title, fire_at, handle)
        return handle

    async def cancel_activity(self, handles: NotificationHandles | None) -> None:
        """Best-effort cancel of previously returned handles."""
        if handles is None:
            return
        for handle in (handles.start_id, handles.end_id):
            if not handle:
                continue
            try:
                await self._notifier.cancel(handle)
            except Exception as exc:
                logger.debug("Cancel of notification %s failed: %s", handle, exc)

    async def cancel_all(self) -> None:
        try:
            await self._notifier.cancel_all()
        except Exception as exc:
            logger.warning("Failed to cancel all notifications: %s", exc)

    async def list_pending(self) -> list[ScheduledNotification]:
        try:
            return await self._notifier.list_scheduled()
        except Exception as exc:
            logger.warning("Failed to list scheduled notifications: %s", exc)
            return []
