import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from core.exceptions import PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path("nyamedia.db")
MEMORY_DB = ":memory:"

SCHEMA = """
CREATE TABLE IF NOT EXISTS telegram_users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    telegram_id INTEGER NOT NULL UNIQUE,
    username TEXT NOT NULL,
    admin BOOLEAN NOT NULL DEFAULT 0,
    emby_user_id TEXT
);

CREATE TABLE IF NOT EXISTS media_requests (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source TEXT NOT NULL,
    media_id TEXT NOT NULL,
    request_user INTEGER NOT NULL,
    status INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (source, media_id)
);

CREATE TABLE IF NOT EXISTS media (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    media_request_id INTEGER NOT NULL UNIQUE REFERENCES media_requests (id),
    title TEXT NOT NULL,
    summary TEXT,
    poster TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_media_requests_status ON media_requests (status);
"""


def utcnow_iso() -> str:
    """Timestamp format stored in created_at / updated_at columns."""
    return datetime.now(UTC).isoformat(timespec="seconds")


class Database:
    """Async SQLite connection shared by the user directory and request ledger.

    The connection runs in autocommit mode: every statement is its own
    transaction, so the guarded UPDATE and the constrained INSERT used by the
    ledger are atomic without application-level locks.
    """

    def __init__(self, db_path: Path | str | None = None):
        self.db_path = db_path if db_path is not None else DEFAULT_DB_PATH
        self._conn: aiosqlite.Connection | None = None

    @property
    def is_memory(self) -> bool:
        return str(self.db_path) == MEMORY_DB

    async def connect(self):
        """Open the database connection and create missing tables."""
        if not self.is_memory:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = await aiosqlite.connect(self.db_path, isolation_level=None)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA foreign_keys = ON")
            await self._conn.executescript(SCHEMA)
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to open database {self.db_path}: {e}") from e

        logger.info(f"Connected to SQLite database: {self.db_path}")

    async def is_available(self) -> bool:
        """Check if the database connection is alive."""
        try:
            if self._conn is None:
                return False
            async with self._conn.execute("SELECT 1") as cursor:
                row = await cursor.fetchone()
                return row is not None
        except Exception:
            return False

    async def close(self):
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("Closed SQLite connection")

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise PersistenceError("Database not connected")
        return self._conn

    async def fetchone(self, sql: str, params: Sequence[Any] = ()) -> aiosqlite.Row | None:
        try:
            async with self.conn.execute(sql, params) as cursor:
                return await cursor.fetchone()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Query failed: {e}") from e

    async def fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[aiosqlite.Row]:
        try:
            async with self.conn.execute(sql, params) as cursor:
                return list(await cursor.fetchall())
        except aiosqlite.Error as e:
            raise PersistenceError(f"Query failed: {e}") from e

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> tuple[int, int | None]:
        """Run a write statement and return ``(rowcount, lastrowid)``.

        ``aiosqlite.IntegrityError`` propagates unchanged so callers can map
        constraint violations to domain errors; other failures become
        ``PersistenceError``.
        """
        try:
            async with self.conn.execute(sql, params) as cursor:
                return cursor.rowcount, cursor.lastrowid
        except aiosqlite.IntegrityError:
            raise
        except aiosqlite.Error as e:
            raise PersistenceError(f"Statement failed: {e}") from e

    async def backup(self, dest_dir: Path | None = None) -> str | None:
        """Copy the live database to ``<stem>.backup.<timestamp>.sqlite3``.

        Returns the backup path, or None when there is no database file to copy.
        """
        if self.is_memory or not Path(self.db_path).exists():
            logger.info(f"Database file does not exist, skipping backup: {self.db_path}")
            return None

        source = Path(self.db_path)
        timestamp = datetime.now(UTC).strftime("%Y%m%d_%H%M%S")
        target_dir = dest_dir or source.parent
        target_dir.mkdir(parents=True, exist_ok=True)
        backup_path = target_dir / f"{source.stem}.backup.{timestamp}.sqlite3"

        try:
            async with aiosqlite.connect(backup_path) as target:
                await self.conn.backup(target)
        except aiosqlite.Error as e:
            raise PersistenceError(f"Backup failed: {e}") from e

        logger.info(f"Database backup complete: {source} -> {backup_path}")
        return str(backup_path)
