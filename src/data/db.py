"""
Takeamin Assistant — Key-Value Store.

Plans, smart-reminder settings and the behavior profile persist in a single
SQLite table of string keys and JSON string values, surviving bot restarts.
Implements the KeyValueStore port.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from pathlib import Path

from src.ports.store_port import StoreError

logger = logging.getLogger(__name__)


class SqliteKeyValueStore:
    """SQLite-backed async get/set/remove store."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create the kv table if it doesn't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key        TEXT PRIMARY KEY,
                    value      TEXT NOT NULL,
                    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
            """)
        logger.debug("KV table initialized at %s", self._db_path)

    # -- sync helpers, run off the event loop --------------------------------

    def _get_sync(self, key: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return None if row is None else row["value"]

    def _set_sync(self, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO kv (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE
                    SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, value),
            )

    def _remove_sync(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))

    # -- KeyValueStore -------------------------------------------------------

    async def get(self, key: str) -> str | None:
        try:
            return await asyncio.to_thread(self._get_sync, key)
        except sqlite3.Error as exc:
            logger.error("KV read failed for %r: %s", key, exc)
            raise StoreError(f"Failed to read {key!r}: {exc}") from exc

    async def set(self, key: str, value: str) -> None:
        try:
            await asyncio.to_thread(self._set_sync, key, value)
        except sqlite3.Error as exc:
            logger.error("KV write failed for %r: %s", key, exc)
            raise StoreError(f"Failed to write {key!r}: {exc}") from exc
        logger.debug("KV %r written (%d bytes)", key, len(value))

    async def remove(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._remove_sync, key)
        except sqlite3.Error as exc:
            logger.error("KV delete failed for %r: %s", key, exc)
            raise StoreError(f"Failed to remove {key!r}: {exc}") from exc
        logger.info("KV %r removed", key)
