"""
Routine Tracker — Local Store.

SQLite is the system of record: users, activities and categories persist
here first and survive restarts and network outages. The sync reconciler
only ever reads unsynced users and writes back their sync bookkeeping.

One `Database` object owns the single connection; repositories receive it
explicitly. Every statement runs under the database lock, so writers are
serialized regardless of which thread or task issues them.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Iterator

from werkzeug.security import check_password_hash, generate_password_hash

from src.data.models import Activity, ActivityStatus, Category, Priority, User

logger = logging.getLogger(__name__)

_MEMORY_PATH = ":memory:"

_DEFAULT_CATEGORIES = (
    ("Work", Priority.HIGH.value),
    ("Exercise", Priority.MEDIUM.value),
    ("Study", Priority.LOW.value),
)

_HASH_METHODS = ("scrypt", "pbkdf2")


class StorageError(Exception):
    """Raised when the storage engine fails an operation."""

    def __init__(self, operation: str, cause: BaseException | str) -> None:
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}")


class ConflictError(StorageError):
    """Raised when a write would break a uniqueness rule."""


class NotFoundError(LookupError):
    """Raised when an operation targets a row that does not exist."""


class Database:
    """Explicitly opened SQLite connection shared by all repositories."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def path(self) -> str:
        return self._db_path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> Database:
        """Connect and make sure the schema exists. Opening twice is a no-op."""
        with self._lock:
            if self._conn is not None:
                return self

            if self._db_path != _MEMORY_PATH:
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

            try:
                conn = sqlite3.connect(self._db_path, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA foreign_keys = ON")
                if self._db_path != _MEMORY_PATH:
                    conn.execute("PRAGMA journal_mode = WAL")
            except sqlite3.Error as exc:
                raise StorageError("open", exc) from exc

            self._conn = conn
            try:
                self._init_schema()
            except StorageError:
                self.close()
                raise

        logger.info("Local store opened at %s", self._db_path)
        return self

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
        logger.info("Local store closed at %s", self._db_path)

    def __enter__(self) -> Database:
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Yield the connection under the lock; commit or roll back as a unit.

        Engine failures surface as StorageError tagged with `operation`.
        """
        with self._lock:
            conn = self._conn
            if conn is None:
                raise StorageError(operation, "database is not open")
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise StorageError(operation, exc) from exc
            except BaseException:
                conn.rollback()
                raise

    def _init_schema(self) -> None:
        """Create tables and indexes if missing, and migrate older schemas."""
        with self.transaction("init_schema") as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id            INTEGER PRIMARY KEY AUTOINCREMENT,
                    firstName     TEXT    NOT NULL,
                    lastName      TEXT    NOT NULL,
                    email         TEXT    NOT NULL UNIQUE,
                    mobileNumber  TEXT    NOT NULL,
                    birthDay      TEXT    NOT NULL,
                    gender        TEXT    NOT NULL,
                    userName      TEXT    NOT NULL UNIQUE,
                    password      TEXT    NOT NULL,
                    photoUri      TEXT,
                    cloudId       TEXT,
                    synced        INTEGER NOT NULL DEFAULT 0,
                    syncAttempts  INTEGER NOT NULL DEFAULT 0,
                    syncFailed    INTEGER NOT NULL DEFAULT 0,
                    syncError     TEXT,
                    pendingPassword TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS activities (
                    id         INTEGER PRIMARY KEY AUTOINCREMENT,
                    userId     INTEGER NOT NULL,
                    name       TEXT    NOT NULL,
                    date       TEXT    NOT NULL,
                    startTime  TEXT,
                    endTime    TEXT,
                    status     TEXT    NOT NULL DEFAULT 'Pending',
                    category   TEXT,
                    priority   TEXT,
                    notes      TEXT,
                    FOREIGN KEY(userId) REFERENCES users(id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS categories (
                    id        INTEGER PRIMARY KEY AUTOINCREMENT,
                    userId    INTEGER NOT NULL,
                    name      TEXT    NOT NULL,
                    priority  TEXT    NOT NULL DEFAULT 'Medium',
                    notes     TEXT,
                    UNIQUE(userId, name),
                    FOREIGN KEY(userId) REFERENCES users(id)
                )
            """)

            # Migrate existing DBs: add sync bookkeeping columns if missing
            existing_cols = {
                row[1] for row in conn.execute("PRAGMA table_info(users)").fetchall()
            }
            if "syncAttempts" not in existing_cols:
                conn.execute(
                    "ALTER TABLE users ADD COLUMN syncAttempts INTEGER NOT NULL DEFAULT 0"
                )
            if "syncFailed" not in existing_cols:
                conn.execute(
                    "ALTER TABLE users ADD COLUMN syncFailed INTEGER NOT NULL DEFAULT 0"
                )
            if "syncError" not in existing_cols:
                conn.execute("ALTER TABLE users ADD COLUMN syncError TEXT")
            if "pendingPassword" not in existing_cols:
                conn.execute("ALTER TABLE users ADD COLUMN pendingPassword TEXT")

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_users_synced ON users(synced)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_activities_user_date "
                "ON activities(userId, date)"
            )
        logger.debug("Schema initialized at %s", self._db_path)


def _scope_to_owner(query: str, params: list, user_id: int | None) -> str:
    if user_id is not None:
        query += " AND userId = ?"
        params.append(user_id)
    return query


class UserDB:
    """Users: registration, login, profile edits and sync bookkeeping."""

    def __init__(self, database: Database, hash_passwords: bool | None = None) -> None:
        if hash_passwords is None:
            from src.config import settings
            hash_passwords = settings.HASH_PASSWORDS

        self._database = database
        self._hash_passwords = hash_passwords

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            first_name=row["firstName"],
            last_name=row["lastName"],
            email=row["email"],
            mobile_number=row["mobileNumber"],
            birth_day=row["birthDay"],
            gender=row["gender"],
            user_name=row["userName"],
            password=row["password"],
            photo_uri=row["photoUri"] or None,
            cloud_id=row["cloudId"],
            synced=bool(row["synced"]),
            sync_attempts=row["syncAttempts"],
            sync_failed=bool(row["syncFailed"]),
            sync_error=row["syncError"],
            pending_password=row["pendingPassword"],
        )

    def _stored_password(self, raw: str, current: str | None = None) -> str:
        """Return the value to persist for `raw`.

        An empty password or the already-stored value keeps the current one,
        so re-saving a loaded user does not hash its hash.
        """
        if current is not None and (not raw or raw == current):
            return current
        if self._hash_passwords:
            return generate_password_hash(raw)
        return raw

    def _pending_password(self, raw: str, existing: sqlite3.Row | None = None) -> str | None:
        """Return the cleartext the first upload must send, or None.

        Only needed while the row is unsynced and `password` holds a hash.
        """
        if not self._hash_passwords:
            return None
        if existing is None:
            return raw
        if existing["synced"]:
            return None
        if not raw or raw == existing["password"]:
            return existing["pendingPassword"]
        return raw

    @staticmethod
    def _password_matches(stored: str, candidate: str) -> bool:
        method, sep, _ = stored.partition("$")
        if sep and stored.count("$") == 2 and method.startswith(_HASH_METHODS):
            return check_password_hash(stored, candidate)
        # Rows written with HASH_PASSWORDS off
        return stored == candidate

    def upsert_user(self, user: User) -> User:
        """Insert a new user, or update the one matching its id or user name.

        Raises ConflictError when the email or user name belongs to a
        different user. The update path never touches id, cloudId or synced.
        """
        operation = "upsert_user"
        with self._database.transaction(operation) as conn:
            existing = conn.execute(
                "SELECT * FROM users WHERE id = ? OR userName = ? "
                "ORDER BY id = ? DESC LIMIT 1",
                (user.id, user.user_name, user.id),
            ).fetchone()

            try:
                if existing is not None:
                    user_id = existing["id"]
                    duplicate = conn.execute(
                        "SELECT id FROM users WHERE (email = ? OR userName = ?) AND id != ? LIMIT 1",
                        (user.email, user.user_name, user_id),
                    ).fetchone()
                    if duplicate is not None:
                        raise ConflictError(operation, "Username or email already exists")

                    conn.execute(
                        """
                        UPDATE users
                        SET firstName = ?, lastName = ?, email = ?, mobileNumber = ?,
                            birthDay = ?, gender = ?, userName = ?, password = ?,
                            pendingPassword = ?, photoUri = ?,
                            syncAttempts = CASE WHEN synced = 1 THEN syncAttempts ELSE 0 END,
                            syncFailed   = CASE WHEN synced = 1 THEN syncFailed ELSE 0 END,
                            syncError    = CASE WHEN synced = 1 THEN syncError ELSE NULL END
                        WHERE id = ?
                        """,
                        (
                            user.first_name, user.last_name, user.email,
                            user.mobile_number, user.birth_day, user.gender,
                            user.user_name,
                            self._stored_password(user.password, existing["password"]),
                            self._pending_password(user.password, existing),
                            user.photo_uri, user_id,
                        ),
                    )
                    action = "updated"
                else:
                    cursor = conn.execute(
                        """
                        INSERT INTO users
                            (firstName, lastName, email, mobileNumber, birthDay,
                             gender, userName, password, pendingPassword, photoUri, synced)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0)
                        """,
                        (
                            user.first_name, user.last_name, user.email,
                            user.mobile_number, user.birth_day, user.gender,
                            user.user_name, self._stored_password(user.password),
                            self._pending_password(user.password),
                            user.photo_uri,
                        ),
                    )
                    user_id = cursor.lastrowid
                    action = "saved"
            except sqlite3.IntegrityError as exc:
                raise ConflictError(operation, exc) from exc

            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()

        logger.info("User %s: #%d '%s'", action, user_id, user.user_name)
        return self._row_to_user(row)

    def find_by_credentials(self, login: str, password: str) -> User | None:
        """Exact match on user name (or email) and password, or None."""
        try:
            with self._database.transaction("find_by_credentials") as conn:
                rows = conn.execute(
                    "SELECT * FROM users WHERE userName = ? OR email = ?",
                    (login, login),
                ).fetchall()
        except StorageError as exc:
            logger.warning("Credential lookup failed: %s", exc)
            return None

        for row in rows:
            if self._password_matches(row["password"], password):
                return self._row_to_user(row)
        return None

    def get_user(self, user_id: int) -> User | None:
        try:
            with self._database.transaction("get_user") as conn:
                row = conn.execute(
                    "SELECT * FROM users WHERE id = ?", (user_id,)
                ).fetchone()
        except StorageError as exc:
            logger.warning("User lookup failed: %s", exc)
            return None
        if row is None:
            return None
        return self._row_to_user(row)

    def list_users(self) -> list[User]:
        """Return all users, oldest first."""
        try:
            with self._database.transaction("list_users") as conn:
                rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
        except StorageError as exc:
            logger.warning("Listing users failed, returning empty result: %s", exc)
            return []
        return [self._row_to_user(r) for r in rows]

    def get_any_user(self) -> User | None:
        """Return the first stored user (bootstrap of a single-user device)."""
        try:
            with self._database.transaction("get_any_user") as conn:
                row = conn.execute(
                    "SELECT * FROM users ORDER BY id LIMIT 1"
                ).fetchone()
        except StorageError as exc:
            logger.warning("Fetching first user failed: %s", exc)
            return None
        if row is None:
            return None
        return self._row_to_user(row)

    def list_unsynced(self, max_attempts: int = 0) -> list[User]:
        """Users not yet confirmed by the server and still eligible for upload.

        Rows the server rejected permanently are excluded, and so are rows
        that reached `max_attempts` transient failures when a cap is set.
        """
        query = "SELECT * FROM users WHERE synced = 0 AND syncFailed = 0"
        params: list = []
        if max_attempts > 0:
            query += " AND syncAttempts < ?"
            params.append(max_attempts)
        query += " ORDER BY id"

        try:
            with self._database.transaction("list_unsynced") as conn:
                rows = conn.execute(query, params).fetchall()
        except StorageError as exc:
            logger.warning("Listing unsynced users failed, returning empty result: %s", exc)
            return []
        return [self._row_to_user(r) for r in rows]

    def mark_synced(self, user_id: int, cloud_id: str) -> bool:
        """Record the server-assigned id. Calling it again is harmless."""
        with self._database.transaction("mark_synced") as conn:
            cursor = conn.execute(
                """
                UPDATE users
                SET synced = 1, cloudId = ?, syncFailed = 0, syncError = NULL,
                    pendingPassword = NULL
                WHERE id = ?
                """,
                (cloud_id, user_id),
            )
        found = cursor.rowcount > 0
        if found:
            logger.info("User #%d marked as synced (cloud id %s)", user_id, cloud_id)
        return found

    def record_sync_failure(
        self, user_id: int, error: str, permanent: bool = False,
    ) -> bool:
        """Count a failed upload; a permanent failure stops further attempts."""
        with self._database.transaction("record_sync_failure") as conn:
            cursor = conn.execute(
                """
                UPDATE users
                SET syncAttempts = syncAttempts + 1,
                    syncError = ?,
                    syncFailed = CASE WHEN ? THEN 1 ELSE syncFailed END
                WHERE id = ? AND synced = 0
                """,
                (error, int(permanent), user_id),
            )
        return cursor.rowcount > 0

    def delete_all_users(self) -> int:
        """Remove every user along with their activities and categories."""
        with self._database.transaction("delete_all_users") as conn:
            conn.execute("DELETE FROM activities")
            conn.execute("DELETE FROM categories")
            cursor = conn.execute("DELETE FROM users")
        logger.info("All users deleted (%d)", cursor.rowcount)
        return cursor.rowcount


class ActivityDB:
    """Activities, always scoped to their owning user."""

    def __init__(self, database: Database) -> None:
        self._database = database

    @staticmethod
    def _row_to_activity(row: sqlite3.Row) -> Activity:
        # Empty strings come from rows written by older app versions
        return Activity(
            id=row["id"],
            user_id=row["userId"],
            name=row["name"],
            date=row["date"],
            start_time=row["startTime"] or None,
            end_time=row["endTime"] or None,
            status=row["status"] or ActivityStatus.PENDING.value,
            category=row["category"] or None,
            priority=row["priority"] or None,
            notes=row["notes"] or None,
        )

    @staticmethod
    def _status_value(status: str | None) -> str:
        return ActivityStatus(status or ActivityStatus.PENDING.value).value

    def list_activities(self, user_id: int) -> list[Activity]:
        """Return the user's activities ordered by day and start time."""
        try:
            with self._database.transaction("list_activities") as conn:
                rows = conn.execute(
                    """
                    SELECT * FROM activities WHERE userId = ?
                    ORDER BY date, COALESCE(startTime, ''), id
                    """,
                    (user_id,),
                ).fetchall()
        except StorageError as exc:
            logger.warning("Listing activities failed, returning empty result: %s", exc)
            return []
        return [self._row_to_activity(r) for r in rows]

    def get_activity(
        self, activity_id: int, user_id: int | None = None,
    ) -> Activity | None:
        params: list = [activity_id]
        query = _scope_to_owner("SELECT * FROM activities WHERE id = ?", params, user_id)
        try:
            with self._database.transaction("get_activity") as conn:
                row = conn.execute(query, params).fetchone()
        except StorageError as exc:
            logger.warning("Activity lookup failed: %s", exc)
            return None
        if row is None:
            return None
        return self._row_to_activity(row)

    def create_activity(self, user_id: int, activity: Activity) -> Activity:
        """Insert an activity for `user_id` and return it with its new id."""
        status = self._status_value(activity.status)
        with self._database.transaction("create_activity") as conn:
            cursor = conn.execute(
                """
                INSERT INTO activities
                    (userId, name, date, startTime, endTime,
                     status, category, priority, notes)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id, activity.name, activity.date,
                    activity.start_time or None, activity.end_time or None,
                    status, activity.category or None,
                    activity.priority or None, activity.notes or None,
                ),
            )
            activity_id = cursor.lastrowid

        logger.info("Activity added: #%d '%s' on %s", activity_id, activity.name, activity.date)
        return replace(activity, id=activity_id, user_id=user_id, status=status)

    def update_activity(
        self, activity_id: int, activity: Activity, user_id: int | None = None,
    ) -> bool:
        """Overwrite an activity's fields. Returns False if no row matched."""
        params: list = [
            activity.name, activity.date,
            activity.start_time or None, activity.end_time or None,
            self._status_value(activity.status), activity.category or None,
            activity.priority or None, activity.notes or None,
            activity_id,
        ]
        query = _scope_to_owner(
            """
            UPDATE activities
            SET name = ?, date = ?, startTime = ?, endTime = ?, status = ?,
                category = ?, priority = ?, notes = ?
            WHERE id = ?
            """,
            params, user_id,
        )
        with self._database.transaction("update_activity") as conn:
            cursor = conn.execute(query, params)
        found = cursor.rowcount > 0
        if found:
            logger.info("Activity #%d updated", activity_id)
        return found

    def set_status(
        self, activity_id: int, status: str, user_id: int | None = None,
    ) -> bool:
        params: list = [self._status_value(status), activity_id]
        query = _scope_to_owner(
            "UPDATE activities SET status = ? WHERE id = ?", params, user_id,
        )
        with self._database.transaction("set_status") as conn:
            cursor = conn.execute(query, params)
        found = cursor.rowcount > 0
        if found:
            logger.info("Activity #%d status set to %s", activity_id, status)
        return found

    def delete_activity(self, activity_id: int, user_id: int | None = None) -> bool:
        """Permanently delete an activity. Returns False if no row matched."""
        params: list = [activity_id]
        query = _scope_to_owner("DELETE FROM activities WHERE id = ?", params, user_id)
        with self._database.transaction("delete_activity") as conn:
            cursor = conn.execute(query, params)
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Activity #%d deleted", activity_id)
        return deleted


class CategoryDB:
    """Per-user categories. Duplicate names are silently ignored on create."""

    def __init__(self, database: Database) -> None:
        self._database = database

    @staticmethod
    def _row_to_category(row: sqlite3.Row) -> Category:
        return Category(
            id=row["id"],
            user_id=row["userId"],
            name=row["name"],
            priority=row["priority"] or Priority.MEDIUM.value,
            notes=row["notes"] or None,
        )

    @staticmethod
    def _priority_value(priority: str | None) -> str:
        return Priority(priority or Priority.MEDIUM.value).value

    def list_categories(self, user_id: int) -> list[Category]:
        """Return the user's categories, newest first."""
        try:
            with self._database.transaction("list_categories") as conn:
                rows = conn.execute(
                    "SELECT * FROM categories WHERE userId = ? ORDER BY id DESC",
                    (user_id,),
                ).fetchall()
        except StorageError as exc:
            logger.warning("Listing categories failed, returning empty result: %s", exc)
            return []
        return [self._row_to_category(r) for r in rows]

    def get_category(self, category_id: int) -> Category | None:
        try:
            with self._database.transaction("get_category") as conn:
                row = conn.execute(
                    "SELECT * FROM categories WHERE id = ?", (category_id,)
                ).fetchone()
        except StorageError as exc:
            logger.warning("Category lookup failed: %s", exc)
            return None
        if row is None:
            return None
        return self._row_to_category(row)

    def find_by_name(self, user_id: int, name: str) -> Category | None:
        try:
            with self._database.transaction("find_category") as conn:
                row = conn.execute(
                    "SELECT * FROM categories WHERE userId = ? AND name = ?",
                    (user_id, name),
                ).fetchone()
        except StorageError as exc:
            logger.warning("Category lookup failed: %s", exc)
            return None
        if row is None:
            return None
        return self._row_to_category(row)

    def create_category(self, user_id: int, category: Category) -> bool:
        """Insert a category. Returns False when the name already exists for the user."""
        priority = self._priority_value(category.priority)
        with self._database.transaction("create_category") as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO categories (userId, name, priority, notes) "
                "VALUES (?, ?, ?, ?)",
                (user_id, category.name, priority, category.notes or None),
            )
        inserted = cursor.rowcount > 0
        if inserted:
            logger.info("Category saved: '%s' (%s) for user #%d", category.name, priority, user_id)
        else:
            logger.debug("Category '%s' already exists for user #%d", category.name, user_id)
        return inserted

    def update_category(
        self, category_id: int, category: Category, user_id: int | None = None,
    ) -> bool:
        operation = "update_category"
        params: list = [
            category.name, self._priority_value(category.priority),
            category.notes or None, category_id,
        ]
        query = _scope_to_owner(
            "UPDATE categories SET name = ?, priority = ?, notes = ? WHERE id = ?",
            params, user_id,
        )
        with self._database.transaction(operation) as conn:
            try:
                cursor = conn.execute(query, params)
            except sqlite3.IntegrityError as exc:
                raise ConflictError(operation, exc) from exc
        found = cursor.rowcount > 0
        if found:
            logger.info("Category #%d updated", category_id)
        return found

    def delete_category(self, category_id: int, user_id: int | None = None) -> bool:
        params: list = [category_id]
        query = _scope_to_owner("DELETE FROM categories WHERE id = ?", params, user_id)
        with self._database.transaction("delete_category") as conn:
            cursor = conn.execute(query, params)
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Category #%d deleted", category_id)
        return deleted

    def ensure_default_categories(self, user_id: int) -> list[Category]:
        """Seed the default categories for a user who has none yet."""
        current = self.list_categories(user_id)
        if current:
            return current

        for name, priority in _DEFAULT_CATEGORIES:
            self.create_category(user_id, Category(name=name, priority=priority))
        logger.info("Default categories created for user #%d", user_id)
        return self.list_categories(user_id)
