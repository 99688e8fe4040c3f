"""SQLite conversation store backend.

Provides persistent key/value storage of the conversation list in a SQLite
database. Uses aiosqlite for async access.
"""

import logging
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from ..config import DEFAULT_STORE_DIR, DEFAULT_STORE_KEY
from .base import ConversationStore
from .errors import PersistenceCorrupt, StoreNotConnected

logger = logging.getLogger(__name__)


class SQLiteConversationStore(ConversationStore):
    """SQLite-backed conversation store.

    Stores the serialized conversation list in a ``kv`` table, one row per key.
    """

    def __init__(
        self,
        path: str | Path = f"{DEFAULT_STORE_DIR}/conversations.db",
        key: str = DEFAULT_STORE_KEY
    ):
        super().__init__(key)
        self._db_path = Path(path).expanduser()
        self._connection: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Initialize database connection and schema.

        A file at ``path`` that is not a readable SQLite database is renamed
        to ``<name>.corrupt`` and a fresh database is created in its place,
        so the store starts with no history.
        """
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            await self._open()
        except sqlite3.DatabaseError as exc:
            await self.disconnect()
            backup = self._db_path.with_name(f"{self._db_path.name}.corrupt")
            logger.warning("Unreadable database %s (%s); moved to %s", self._db_path, exc, backup)
            os.replace(self._db_path, backup)
            await self._open()

    async def _open(self) -> None:
        self._connection = await aiosqlite.connect(self._db_path)
        await self._create_schema()

    async def _create_schema(self) -> None:
        """Create database tables."""
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        await self._connection.commit()

    async def disconnect(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def _read_blob(self) -> str | None:
        connection = self._require_connection()
        try:
            async with connection.execute(
                "SELECT value FROM kv WHERE key = ?",
                (self._key,)
            ) as cursor:
                row = await cursor.fetchone()
        except sqlite3.DatabaseError as exc:
            raise PersistenceCorrupt(f"Cannot read {self._db_path}: {exc}") from exc

        return row[0] if row else None

    async def _write_blob(self, blob: str) -> None:
        connection = self._require_connection()
        now = datetime.now(timezone.utc).isoformat()
        await connection.execute("""
            INSERT INTO kv (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
        """, (self._key, blob, now))
        await connection.commit()

    def _require_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise StoreNotConnected("SQLite store is not connected; call connect() first")
        return self._connection

    @property
    def backend_type(self) -> str:
        return "sqlite"

    @property
    def db_path(self) -> Path:
        return self._db_path
