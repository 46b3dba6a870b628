"""
Routine Tracker — Service wiring and sync daemon.

`build_context()` assembles every component from settings so that callers
(screens, scripts, tests) share one explicitly opened database.
`run_sync_daemon()` keeps the sync reconciler listening for connectivity
until it is cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from src.adapters.http_connectivity import HttpConnectivityMonitor
from src.adapters.notifier_factory import create_notifier
from src.config import settings
from src.core.activity_service import ActivityService
from src.core.notification_scheduler import NotificationScheduler
from src.core.sync import SyncReconciler
from src.data.db import ActivityDB, CategoryDB, Database, UserDB
from src.integrations.sync_api import SyncApiClient

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Every long-lived component, wired together."""

    database: Database
    user_db: UserDB
    activity_db: ActivityDB
    category_db: CategoryDB
    scheduler: NotificationScheduler
    activities: ActivityService
    reconciler: SyncReconciler
    monitor: HttpConnectivityMonitor


def build_context(database: Database | None = None) -> AppContext:
    """Wire the components. The database is opened here if it is not yet."""
    if database is None:
        database = Database(settings.DATABASE_PATH)
    database.open()

    user_db = UserDB(database)
    activity_db = ActivityDB(database)
    category_db = CategoryDB(database)
    scheduler = NotificationScheduler(create_notifier())

    uploader = SyncApiClient(
        settings.SYNC_API_BASE_URL,
        timeout=settings.SYNC_TIMEOUT_SECONDS,
        terminal_on_reject=settings.SYNC_TERMINAL_ON_REJECT,
    )
    reconciler = SyncReconciler(user_db, uploader, max_attempts=settings.SYNC_MAX_ATTEMPTS)
    monitor = HttpConnectivityMonitor(
        settings.SYNC_API_BASE_URL,
        interval_seconds=settings.CONNECTIVITY_POLL_SECONDS,
    )

    return AppContext(
        database=database,
        user_db=user_db,
        activity_db=activity_db,
        category_db=category_db,
        scheduler=scheduler,
        activities=ActivityService(activity_db, category_db, scheduler),
        reconciler=reconciler,
        monitor=monitor,
    )


async def run_sync_daemon(context: AppContext | None = None) -> None:
    """Sync users whenever the server is reachable, until cancelled."""
    if context is None:
        context = build_context()

    context.reconciler.start(context.monitor)
    context.monitor.start()
    logger.info("Sync daemon running against %s", settings.SYNC_API_BASE_URL)
    try:
        await asyncio.Event().wait()
    finally:
        await context.monitor.stop()
        await context.reconciler.stop()
        await context.scheduler.cancel_all()
        context.database.close()
        logger.info("Sync daemon stopped")


def main() -> None:
    """Entry point: configure logging and run the sync daemon."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting Routine Tracker sync daemon...")
    try:
        asyncio.run(run_sync_daemon())
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
