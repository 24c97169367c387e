from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Dict, Optional, Protocol

from app.config import settings
from app.core.errors import PersistFailed
from app.core.logging import get_logger

logger = get_logger()


class KeyValueStore(Protocol):
    """
    Persisted cache contract. Last write wins; no transactions.
    `set`/`delete` raise PersistFailed; `get` returns None on a miss.
    """

    def get(self, key: str) -> Optional[bytes]: ...

    def set(self, key: str, value: bytes) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryKeyValueStore:
    """Process-local store; used for dry runs and tests."""

    def __init__(self) -> None:
        self._data: Dict[str, bytes] = {}

    def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class SQLiteKeyValueStore:
    """
    Key-value cache backed by SQLite.
    Schema: kv_cache(key TEXT PRIMARY KEY, data BLOB, updated_at TIMESTAMP)
    """

    def __init__(self, db_path: Optional[str] = None) -> None:
        self.db_path = str(db_path or settings.CACHE_DB_PATH)
        self._init_db()

    def _init_db(self) -> None:
        parent = Path(self.db_path).parent
        parent.mkdir(parents=True, exist_ok=True)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_cache (
                    key TEXT PRIMARY KEY,
                    data BLOB NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

    def get(self, key: str) -> Optional[bytes]:
        try:
            with sqlite3.connect(self.db_path) as conn:
                row = conn.execute("SELECT data FROM kv_cache WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as exc:
            logger.warning("kv_cache_get_failed", key=key, error=str(exc))
            return None
        if row is None:
            return None
        data = row[0]
        return data.encode("utf-8") if isinstance(data, str) else bytes(data)

    def set(self, key: str, value: bytes) -> None:
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO kv_cache (key, data, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    """,
                    (key, sqlite3.Binary(value)),
                )
        except sqlite3.Error as exc:
            raise PersistFailed("kv_cache_set_failed", {"key": key, "error": str(exc)}) from exc

    def delete(self, key: str) -> None:
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute("DELETE FROM kv_cache WHERE key = ?", (key,))
        except sqlite3.Error as exc:
            raise PersistFailed("kv_cache_delete_failed", {"key": key, "error": str(exc)}) from exc
