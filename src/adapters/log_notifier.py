"""Log delivery adapter — implements MessagePort by writing to the log.

Default delivery when no messaging provider is configured.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class LogNotifier:
    """Logging implementation of MessagePort."""

    async def send_message(self, user_id: int, text: str) -> None:
        logger.info("Notification for %d: %s", user_id, text.replace("\n", " | "))
