"""Notifier factory — creates the right delivery adapter based on config."""

from __future__ import annotations

from src.adapters.timer_notifier import TimerNotifier
from src.config import settings
from src.ports.notification_port import MessagePort


def create_message_sender() -> MessagePort:
    """Return the delivery adapter matching the NOTIFIER_PROVIDER setting."""
    provider = settings.NOTIFIER_PROVIDER.lower()

    if provider == "log":
        from src.adapters.log_notifier import LogNotifier

        return LogNotifier()

    if provider == "telegram":
        from telegram import Bot

        from src.adapters.telegram_notifier import TelegramNotifier

        return TelegramNotifier(Bot(token=settings.TELEGRAM_BOT_TOKEN))

    raise ValueError(f"Unknown NOTIFIER_PROVIDER: {provider!r}")


def create_notifier() -> TimerNotifier:
    """Return a scheduling notifier delivering through the configured sender."""
    return TimerNotifier(create_message_sender(), recipient_id=settings.TELEGRAM_CHAT_ID)
