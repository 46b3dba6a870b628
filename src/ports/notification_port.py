"""Notification ports — abstract interfaces for reminders.

Core modules depend on these protocols, never on a specific provider.
`MessagePort` delivers a text to a recipient right now; `NotificationPort`
registers one-shot notifications to be delivered at a given instant.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from src.data.models import ScheduledNotification


class NotificationError(Exception):
    """Raised when a notifier cannot schedule, present or cancel a notification."""


class MessagePort(Protocol):
    """Abstract delivery interface used by notifiers."""

    async def send_message(self, user_id: int, text: str) -> None: ...


class NotificationPort(Protocol):
    """Abstract one-shot notification scheduler used by core modules."""

    async def schedule(self, title: str, body: str, fire_at: datetime) -> str: ...

    async def present(self, title: str, body: str) -> None: ...

    async def cancel(self, handle: str) -> None: ...

    async def cancel_all(self) -> None: ...

    async def list_scheduled(self) -> list[ScheduledNotification]: ...
