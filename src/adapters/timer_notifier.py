"""In-process notifier — implements NotificationPort on the asyncio loop.

Each scheduled notification is a task sleeping until its instant, then
handed to a MessagePort for delivery. Nothing survives a restart.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Callable

from src.data.models import ScheduledNotification
from src.ports.notification_port import MessagePort, NotificationError

logger = logging.getLogger(__name__)


class TimerNotifier:
    """Asyncio-timer implementation of NotificationPort."""

    def __init__(
        self,
        sender: MessagePort,
        recipient_id: int = 0,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._sender = sender
        self._recipient_id = recipient_id
        self._clock = clock
        self._pending: dict[str, tuple[ScheduledNotification, asyncio.Task]] = {}

    async def schedule(self, title: str, body: str, fire_at: datetime) -> str:
        handle = uuid.uuid4().hex
        delay = max((fire_at - self._clock()).total_seconds(), 0.0)
        task = asyncio.create_task(self._fire_later(handle, delay))
        self._pending[handle] = (
            ScheduledNotification(handle=handle, title=title, body=body, fire_at=fire_at),
            task,
        )
        return handle

    async def _fire_later(self, handle: str, delay: float) -> None:
        await asyncio.sleep(delay)
        entry = self._pending.pop(handle, None)
        if entry is None:
            return
        notification = entry[0]
        try:
            await self._sender.send_message(
                self._recipient_id, f"{notification.title}\n{notification.body}",
            )
        except Exception as exc:
            logger.error("Failed to deliver notification '%s': %s", notification.title, exc)

    async def present(self, title: str, body: str) -> None:
        try:
            await self._sender.send_message(self._recipient_id, f"{title}\n{body}")
        except Exception as exc:
            raise NotificationError(f"Failed to present '{title}': {exc}") from exc

    async def cancel(self, handle: str) -> None:
        entry = self._pending.pop(handle, None)
        if entry is None:
            raise NotificationError(f"Unknown notification handle: {handle}")
        entry[1].cancel()

    async def cancel_all(self) -> None:
        for _, task in self._pending.values():
            task.cancel()
        count = len(self._pending)
        self._pending.clear()
        logger.info("Cancelled %d scheduled notifications", count)

    async def list_scheduled(self) -> list[ScheduledNotification]:
        return sorted(
            (notification for notification, _ in self._pending.values()),
            key=lambda n: n.fire_at,
        )
