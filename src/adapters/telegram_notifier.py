"""Telegram delivery adapter — implements MessagePort.

Wraps a telegram.Bot instance so due reminders reach a Telegram chat.
"""

from __future__ import annotations

import logging

from telegram import Bot
from telegram.error import TelegramError

from src.ports.notification_port import NotificationError

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Telegram implementation of MessagePort."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(self, user_id: int, text: str) -> None:
        try:
            # No-op once the bot is initialized
            await self._bot.initialize()
            await self._bot.send_message(chat_id=user_id, text=text)
        except TelegramError as exc:
            raise NotificationError(f"Telegram delivery to {user_id} failed: {exc}") from exc
        logger.debug("Telegram message delivered to %d", user_id)

    async def close(self) -> None:
        await self._bot.shutdown()
