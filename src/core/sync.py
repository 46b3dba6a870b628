"""
Routine Tracker — User Sync Reconciler.

Users are created locally first. Whenever connectivity comes back, one
sync pass uploads every user the server has not confirmed yet and stores
the id the server assigned. Only one pass runs at a time: connectivity
events arriving while a pass is in flight are ignored.

Failures never reach the user. A failed row keeps `synced = 0` and its
attempt is recorded: transient failures are retried on the next pass
(up to SYNC_MAX_ATTEMPTS when set), permanent rejections are not.

This module is provider-agnostic: it depends on the UserUploader and
ConnectivityPort protocols, not on specific implementations.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable

from src.data.db import StorageError
from src.ports.sync_port import SyncError

if TYPE_CHECKING:
    from src.data.db import UserDB
    from src.data.models import User
    from src.ports.connectivity_port import ConnectivityPort
    from src.ports.sync_port import UserUploader

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """Outcome of one sync pass, as local user ids."""

    synced: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)     # will be retried
    rejected: list[int] = field(default_factory=list)   # permanent, not retried


class SyncReconciler:
    """Pushes unsynced users to the server when the network is reachable."""

    def __init__(
        self,
        user_db: UserDB,
        uploader: UserUploader,
        max_attempts: int = 0,
    ) -> None:
        self._user_db = user_db
        self._uploader = uploader
        self._max_attempts = max_attempts
        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def in_flight(self) -> bool:
        return self._lock.locked() or (self._task is not None and not self._task.done())

    def start(self, source: ConnectivityPort) -> None:
        """Begin listening for connectivity changes."""
        if self._unsubscribe is None:
            self._unsubscribe = source.subscribe(self.on_connectivity_change)

    async def stop(self) -> None:
        """Stop listening and abort a pass that is still uploading."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                logger.info("In-flight sync pass cancelled")
        self._task = None

    async def on_connectivity_change(self, is_connected: bool) -> None:
        if not is_connected:
            return
        if self.in_flight:
            logger.debug("Sync pass already in flight, ignoring connectivity event")
            return
        self._task = asyncio.create_task(self.run_pass())

    async def wait_idle(self) -> SyncReport | None:
        """Wait for the pass started by the last connectivity event, if any."""
        if self._task is None:
            return None
        return await self._task

    async def run_pass(self) -> SyncReport | None:
        """Upload every eligible unsynced user once.

        Returns None without doing anything if another pass is running.
        """
        if self._lock.locked():
            logger.debug("Sync pass already running, skipping")
            return None

        async with self._lock:
            users = self._user_db.list_unsynced(self._max_attempts)
            report = SyncReport()
            if not users:
                return report

            logger.info("Sync pass started: %d unsynced users", len(users))
            for user in users:
                await self._sync_user(user, report)

            logger.info(
                "Sync pass finished: %d synced, %d failed, %d rejected",
                len(report.synced), len(report.failed), len(report.rejected),
            )
            return report

    async def _sync_user(self, user: User, report: SyncReport) -> None:
        try:
            cloud_id = await self._uploader.upload_user(user)
        except SyncError as exc:
            logger.warning("Sync of user #%d failed: %s", user.id, exc)
            self._record_failure(user, str(exc), exc.permanent, report)
            return
        except Exception as exc:
            logger.error("Unexpected error syncing user #%d: %s", user.id, exc)
            self._record_failure(user, str(exc), False, report)
            return

        try:
            self._user_db.mark_synced(user.id, cloud_id)
        except StorageError as exc:
            # The upload went through; the next pass will upload again.
            logger.error("User #%d uploaded but not marked synced: %s", user.id, exc)
            report.failed.append(user.id)
            return
        report.synced.append(user.id)

    def _record_failure(
        self, user: User, error: str, permanent: bool, report: SyncReport,
    ) -> None:
        try:
            self._user_db.record_sync_failure(user.id, error, permanent=permanent)
        except StorageError as exc:
            logger.error("Could not record sync failure of user #%d: %s", user.id, exc)
        if permanent:
            report.rejected.append(user.id)
        else:
            report.failed.append(user.id)
