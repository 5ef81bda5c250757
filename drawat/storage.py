"""Local persistent state: session blob and the handle -> DID cache.

Both live in one SQLite file. The ``local_kv`` table plays the role of
browser local storage (a handful of whole-value keys), ``handleCache`` holds
what the OAuth client resolved for each handle typed at login.
"""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

HANDLE_CACHE_STORE = "handleCache"
SESSION_KEY = "oauth_session"

SCHEMA = f"""
-- Whole-value keys, overwritten and removed wholesale
CREATE TABLE IF NOT EXISTS local_kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Handle typed at login -> identity resolved by the OAuth client
CREATE TABLE IF NOT EXISTS {HANDLE_CACHE_STORE} (
    handle TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class LocalStorage:
    """SQLite-backed durable key-value store."""

    def __init__(self, db_path: str | Path):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Open the database and create the schema."""
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA)
        self._conn.commit()
        logger.debug(f"LocalStorage connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    # Local key-value slots

    def get_item(self, key: str) -> Any | None:
        """Return the decoded value stored under key, or None."""
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT value FROM local_kv WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return None
        return json.loads(row["value"])

    def set_item(self, key: str, value: Any) -> None:
        """Store value under key, replacing any previous value."""
        conn = self._ensure_connected()
        conn.execute(
            """
            INSERT INTO local_kv (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, json.dumps(value), datetime.now().isoformat()),
        )
        conn.commit()

    def remove_item(self, key: str) -> bool:
        """Remove key. Returns True if something was removed."""
        conn = self._ensure_connected()
        cursor = conn.execute("DELETE FROM local_kv WHERE key = ?", (key,))
        conn.commit()
        return cursor.rowcount > 0

    # Handle cache

    def cache_handle(self, handle: str, did: str) -> None:
        """Remember the identity resolved for a handle."""
        conn = self._ensure_connected()
        conn.execute(
            f"""
            INSERT INTO {HANDLE_CACHE_STORE} (handle, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(handle) DO UPDATE SET
                value = excluded.value, updated_at = excluded.updated_at
            """,
            (handle, did, datetime.now().isoformat()),
        )
        conn.commit()

    def lookup_identity_by_handle(self, handle: str) -> str | None:
        """Return the DID cached for handle, or None."""
        conn = self._ensure_connected()
        row = conn.execute(
            f"SELECT value FROM {HANDLE_CACHE_STORE} WHERE handle = ?", (handle,)
        ).fetchone()
        return row["value"] if row else None

    def forget_identity(self, did: str) -> int:
        """Drop every cached handle that resolves to did. Returns the count."""
        conn = self._ensure_connected()
        cursor = conn.execute(
            f"DELETE FROM {HANDLE_CACHE_STORE} WHERE value = ?", (did,)
        )
        conn.commit()
        return cursor.rowcount


class SessionSlot:
    """Short-lived in-memory slots that survive a redirect but not a restart."""

    def __init__(self):
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()
