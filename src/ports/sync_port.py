"""Sync port — abstract interface for pushing users to the remote server.

The reconciler depends on this protocol, never on a specific HTTP client.
"""

from __future__ import annotations

from typing import Protocol

from src.data.models import User


class SyncError(Exception):
    """Raised when an upload fails.

    `permanent` marks a rejection that retrying cannot fix (e.g. the server
    refuses a duplicate email); anything else is worth another attempt.
    """

    def __init__(self, message: str, permanent: bool = False) -> None:
        super().__init__(message)
        self.permanent = permanent


class UserUploader(Protocol):
    """Creates a user on the remote server and returns its remote id."""

    async def upload_user(self, user: User) -> str: ...
