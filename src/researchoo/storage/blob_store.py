"""SQLite key-value store for the persisted session and project history."""

from __future__ import annotations

import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path


class BlobStore:
    """Opaque text blobs keyed by name.

    Values are stored verbatim; callers own the serialization format.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        # Analysis tasks write from worker threads
        self._lock = threading.Lock()

    def init_db(self) -> None:
        """Create the blobs table."""
        with self._lock:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS blobs (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )
            self._conn.commit()

    def set(self, key: str, value: str) -> None:
        """Set a blob (INSERT OR REPLACE)."""
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO blobs (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, now),
            )
            self._conn.commit()

    def get(self, key: str) -> str | None:
        """Get a blob by key, or None if not found."""
        with self._lock:
            cur = self._conn.execute("SELECT value FROM blobs WHERE key = ?", (key,))
            row = cur.fetchone()
        return row[0] if row else None

    def remove(self, key: str) -> bool:
        with self._lock:
            cur = self._conn.execute("DELETE FROM blobs WHERE key = ?", (key,))
            self._conn.commit()
        return cur.rowcount > 0

    def keys(self) -> list[str]:
        with self._lock:
            cur = self._conn.execute("SELECT key FROM blobs ORDER BY key")
            return [row[0] for row in cur.fetchall()]

    def close(self) -> None:
        self._conn.close()
