"""Shared test fixtures and configuration.

Sets up environment variables before any src imports so the settings
singleton is deterministic, and provides a temp-file database per test.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("SYNC_API_BASE_URL", "http://sync.test")
os.environ.setdefault("NOTIFIER_PROVIDER", "log")
os.environ.setdefault("HASH_PASSWORDS", "true")

import pytest

from src.data.models import Activity, User


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_routine.db")


@pytest.fixture
def database(tmp_db_path):
    """Return an opened Database backed by a temp file."""
    from src.data.db import Database

    db = Database(db_path=tmp_db_path).open()
    yield db
    db.close()


@pytest.fixture
def user_db(database):
    from src.data.db import UserDB
    return UserDB(database)


@pytest.fixture
def activity_db(database):
    from src.data.db import ActivityDB
    return ActivityDB(database)


@pytest.fixture
def category_db(database):
    from src.data.db import CategoryDB
    return CategoryDB(database)


def make_user(
    user_name: str = "dana",
    email: str = "dana@example.com",
    password: str = "s3cret",
    **overrides,
) -> User:
    fields = dict(
        first_name="Dana",
        last_name="Levi",
        email=email,
        mobile_number="0501234567",
        birth_day="1990-04-12",
        gender="Female",
        user_name=user_name,
        password=password,
    )
    fields.update(overrides)
    return User(**fields)


def make_activity(
    name: str = "Morning run",
    date: str = "2025-01-10",
    start_time: str | None = "09:00",
    end_time: str | None = "10:00",
    **overrides,
) -> Activity:
    return Activity(name=name, date=date, start_time=start_time, end_time=end_time, **overrides)


@pytest.fixture
def saved_user(user_db):
    """A user already stored locally."""
    return user_db.upsert_user(make_user())
