"""Synchronous string-keyed persistent maps.

Two implementations share the ``KeyValueStore`` protocol:

* ``MemoryStore`` -- a dict behind a lock, used by tests and one-shot tools.
* ``SqliteStore`` -- a single ``kv`` table in a SQLite file.  Several
  processes may open the same file; each call opens its own connection
  (WAL journal, busy timeout) so concurrent writers serialise at the
  database rather than in Python.

Keys starting with ``INTERNAL_PREFIX`` hold engine bookkeeping (settings,
pending changes) and are never offered for sync.
"""

from __future__ import annotations

import contextlib
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Iterator, Protocol

logger = logging.getLogger(__name__)

INTERNAL_PREFIX = "kvsync:"


def is_internal_key(key: str) -> bool:
    """Return ``True`` for keys reserved for engine bookkeeping."""
    return key.startswith(INTERNAL_PREFIX)


class KeyValueStore(Protocol):
    """Minimal synchronous get/set/remove interface."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


class MemoryStore:
    """In-process store backed by a dict, safe to share between threads."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._data)


class SqliteStore:
    """Store persisted in a SQLite database file.

    Args:
        db_path: Path to the database file.  Parent directories are
            created on first use.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS kv ("
                "key TEXT PRIMARY KEY, value TEXT NOT NULL)"
            )

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    @contextlib.contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection, committing on success and always closing it."""
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except Exception as e:
            logger.debug("Transaction failed, rolling back: %s", e)
            conn.rollback()
            raise
        finally:
            conn.close()

    def get(self, key: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM kv WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row is not None else None

    def set(self, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO kv (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )

    def remove(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))

    def keys(self) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT key FROM kv ORDER BY key"
            ).fetchall()
        return [row["key"] for row in rows]
