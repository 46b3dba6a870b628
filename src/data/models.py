"""
Routine Tracker — Data Models.

Users, activities and categories live in the local SQLite store, which is
the system of record. Users are additionally pushed to the remote server
by the sync reconciler; activities and categories never leave the device.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class ActivityStatus(str, Enum):
    """Lifecycle of an activity. Missed is only ever derived at read time."""

    PENDING = "Pending"
    DONE = "Done"
    MISSED = "Missed"


class Priority(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


@dataclass
class User:
    """A locally registered user.

    `cloud_id` and `synced` are owned by the sync reconciler: they start
    empty/False and are only set once the remote server accepted the user.
    `pending_password` holds the typed password of a user the server has not
    accepted yet, because the stored `password` may be a one-way hash.
    """

    first_name: str
    last_name: str
    email: str
    mobile_number: str
    birth_day: str                    # ISO date YYYY-MM-DD
    gender: str
    user_name: str
    password: str                     # hash when HASH_PASSWORDS is on
    id: int | None = None
    photo_uri: str | None = None      # local file path or file:// URI
    cloud_id: str | None = None
    synced: bool = False
    sync_attempts: int = 0
    sync_failed: bool = False         # terminal: rejected by the server
    sync_error: str | None = None
    pending_password: str | None = None  # cleartext kept only until the first upload


@dataclass
class Activity:
    """A dated activity owned by exactly one user."""

    name: str
    date: str                         # ISO date YYYY-MM-DD
    id: int | None = None
    user_id: int | None = None
    start_time: str | None = None     # HH:MM
    end_time: str | None = None       # HH:MM
    status: str = ActivityStatus.PENDING.value
    category: str | None = None       # category name, copied on assignment
    priority: str | None = None       # category priority, copied on assignment
    notes: str | None = None


@dataclass
class Category:
    """A per-user activity category. Names are unique per user."""

    name: str
    id: int | None = None
    user_id: int | None = None
    priority: str = Priority.MEDIUM.value
    notes: str | None = None


@dataclass
class NotificationHandles:
    """Opaque handles of the reminders scheduled for one activity."""

    start_id: str | None = None
    end_id: str | None = None


@dataclass
class ScheduledNotification:
    """A pending one-shot notification as reported by a notifier."""

    handle: str
    title: str
    body: str
    fire_at: datetime
