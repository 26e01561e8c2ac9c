"""
SQLite persistence for verdicts, credits and anonymous usage.

Every mutation that has to be atomic with another runs inside
`transaction()`, which takes the database write lock up front
(BEGIN IMMEDIATE). Unique-constraint losses surface as StorageConflictError.
"""

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

from app.exceptions.custom import StorageConflictError
from app.schemas.entitlement import CachedVerdict, Identity
from app.schemas.verdict import VerdictResult

logger = logging.getLogger(__name__)

DATABASE_FILE = "donotstay.db"

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        credits_remaining INTEGER NOT NULL DEFAULT 0 CHECK (credits_remaining >= 0),
        has_purchased INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS verdicts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        identity_kind TEXT NOT NULL,
        identity_key TEXT NOT NULL,
        hotel_id TEXT NOT NULL,
        hotel_url TEXT NOT NULL,
        payload TEXT NOT NULL,
        review_count INTEGER NOT NULL,
        created_at TEXT NOT NULL,
        UNIQUE(identity_kind, identity_key, hotel_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS anonymous_checks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        device_id TEXT NOT NULL,
        hotel_id TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_anonymous_checks_device ON anonymous_checks(device_id)",
    """
    CREATE TABLE IF NOT EXISTS anonymous_claims (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        device_id TEXT NOT NULL UNIQUE,
        user_id TEXT NOT NULL UNIQUE,
        credits_claimed INTEGER NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS feedback (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        verdict_id INTEGER NOT NULL,
        type TEXT NOT NULL,
        details TEXT,
        created_at TEXT NOT NULL
    )
    """,
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class UserRow:
    id: str
    credits_remaining: int
    has_purchased: bool


def _read_user(conn: sqlite3.Connection, user_id: str) -> UserRow | None:
    row = conn.execute(
        "SELECT id, credits_remaining, has_purchased FROM users WHERE id = ?", (user_id,)
    ).fetchone()
    if row is None:
        return None
    return UserRow(row["id"], row["credits_remaining"], bool(row["has_purchased"]))


def _read_verdict(conn: sqlite3.Connection, identity: Identity, hotel_id: str) -> CachedVerdict | None:
    row = conn.execute(
        """
        SELECT id, hotel_id, hotel_url, payload, review_count, created_at FROM verdicts
        WHERE identity_kind = ? AND identity_key = ? AND hotel_id = ?
        """,
        (identity.kind.value, identity.key, hotel_id),
    ).fetchone()
    if row is None:
        return None
    return CachedVerdict(
        id=row["id"],
        hotel_id=row["hotel_id"],
        hotel_url=row["hotel_url"],
        verdict=VerdictResult.model_validate_json(row["payload"]),
        review_count=row["review_count"],
        created_at=row["created_at"],
    )


def _count_checks(conn: sqlite3.Connection, device_id: str) -> int:
    return conn.execute(
        "SELECT COUNT(*) FROM anonymous_checks WHERE device_id = ?", (device_id,)
    ).fetchone()[0]


def _has_claim(conn: sqlite3.Connection, device_id: str | None, user_id: str | None) -> bool:
    row = conn.execute(
        "SELECT 1 FROM anonymous_claims WHERE device_id = ? OR user_id = ? LIMIT 1",
        (device_id, user_id),
    ).fetchone()
    return row is not None


class StoreTransaction:
    """Primitives usable only inside SqliteStore.transaction()."""

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def get_user(self, user_id: str) -> UserRow | None:
        return _read_user(self._conn, user_id)

    def insert_verdict(
        self,
        identity: Identity,
        hotel_id: str,
        hotel_url: str,
        verdict: VerdictResult,
        review_count: int,
    ) -> tuple[int, str]:
        """(verdict id, created_at) of the new row."""
        created_at = _now()
        try:
            cursor = self._conn.execute(
                """
                INSERT INTO verdicts
                    (identity_kind, identity_key, hotel_id, hotel_url, payload, review_count, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    identity.kind.value,
                    identity.key,
                    hotel_id,
                    hotel_url,
                    verdict.model_dump_json(),
                    review_count,
                    created_at,
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise StorageConflictError("verdicts") from exc
        return cursor.lastrowid, created_at

    def decrement_credit(self, user_id: str) -> int | None:
        """New balance, or None when there was no credit to take."""
        cursor = self._conn.execute(
            "UPDATE users SET credits_remaining = credits_remaining - 1 "
            "WHERE id = ? AND credits_remaining > 0",
            (user_id,),
        )
        if cursor.rowcount == 0:
            return None
        return self._conn.execute(
            "SELECT credits_remaining FROM users WHERE id = ?", (user_id,)
        ).fetchone()[0]

    def add_credits(self, user_id: str, amount: int, purchased: bool = False) -> None:
        self._conn.execute(
            "UPDATE users SET credits_remaining = credits_remaining + ?, "
            "has_purchased = MAX(has_purchased, ?) WHERE id = ?",
            (amount, 1 if purchased else 0, user_id),
        )

    def count_anonymous_checks(self, device_id: str) -> int:
        return _count_checks(self._conn, device_id)

    def has_claim(self, device_id: str) -> bool:
        return _has_claim(self._conn, device_id, None)

    def insert_anonymous_check(self, device_id: str, hotel_id: str) -> None:
        self._conn.execute(
            "INSERT INTO anonymous_checks (device_id, hotel_id, created_at) VALUES (?, ?, ?)",
            (device_id, hotel_id, _now()),
        )

    def insert_claim(self, device_id: str, user_id: str, credits: int) -> None:
        try:
            self._conn.execute(
                "INSERT INTO anonymous_claims (device_id, user_id, credits_claimed, created_at) "
                "VALUES (?, ?, ?, ?)",
                (device_id, user_id, credits, _now()),
            )
        except sqlite3.IntegrityError as exc:
            raise StorageConflictError("anonymous_claims") from exc


class SqliteStore:
    """
    Usage:
        store = SqliteStore("donotstay.db")
        store.init()

        with store.transaction() as tx:
            tx.insert_verdict(identity, hotel_id, url, verdict, 120)
            tx.decrement_credit(identity.key)
    """

    def __init__(self, db_path: str = DATABASE_FILE):
        self.db_path = db_path

    @contextmanager
    def _get_connection(self):
        conn = sqlite3.connect(self.db_path, timeout=10.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def init(self) -> None:
        with self._get_connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            for statement in _SCHEMA:
                conn.execute(statement)
        logger.info("Database initialized: %s", self.db_path)

    @contextmanager
    def transaction(self):
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield StoreTransaction(conn)
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    # --- reads (autocommit) ---

    def get_user(self, user_id: str) -> UserRow | None:
        with self._get_connection() as conn:
            return _read_user(conn, user_id)

    def ensure_user(self, user_id: str, initial_credits: int) -> UserRow:
        """Create the user row on first sight with the signup credits."""
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO users (id, credits_remaining, has_purchased, created_at) "
                "VALUES (?, ?, 0, ?)",
                (user_id, initial_credits, _now()),
            )
            return _read_user(conn, user_id)

    def get_verdict(self, identity: Identity, hotel_id: str) -> CachedVerdict | None:
        with self._get_connection() as conn:
            return _read_verdict(conn, identity, hotel_id)

    def count_anonymous_checks(self, device_id: str) -> int:
        with self._get_connection() as conn:
            return _count_checks(conn, device_id)

    def has_claim(self, device_id: str | None = None, user_id: str | None = None) -> bool:
        with self._get_connection() as conn:
            return _has_claim(conn, device_id, user_id)

    def insert_feedback(self, user_id: str, verdict_id: int, feedback_type: str, details: str | None) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO feedback (user_id, verdict_id, type, details, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (user_id, verdict_id, feedback_type, details, _now()),
            )
            return cursor.lastrowid
