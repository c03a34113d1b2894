#!/usr/bin/env python3
"""Durable key-value storage for Juniper.

Provides:
- KeyValueStore: the string-to-string contract the session cache relies on
- SqliteStore: a file-backed store that survives process restarts
- MemoryStore: a dict-backed store for tests and throwaway runs
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Protocol

from juniper.errors import StorageError


class KeyValueStore(Protocol):
    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryStore:
    """Dict-backed store. Nothing survives the process."""

    def __init__(self, items: dict[str, str] | None = None):
        self.items: dict[str, str] = dict(items or {})

    def get_item(self, key: str) -> str | None:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.items[key] = value

    def remove_item(self, key: str) -> None:
        self.items.pop(key, None)


class SqliteStore:
    """Repository for the storage table.

    Each call re-reads the database, so a record written by another process
    (or a previous run) is always seen as it is on disk.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._conn: sqlite3.Connection | None = None

    def _connect(self) -> sqlite3.Connection:
        if self._conn is not None:
            return self._conn
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.path)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS storage (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            conn.commit()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Cannot open storage at {self.path}: {e}") from e
        self._conn = conn
        return conn

    def get_item(self, key: str) -> str | None:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT value FROM storage WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot read {key!r} from {self.path}: {e}") from e
        return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        conn = self._connect()
        try:
            conn.execute(
                "INSERT OR REPLACE INTO storage (key, value) VALUES (?, ?)",
                (key, value),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot write {key!r} to {self.path}: {e}") from e

    def remove_item(self, key: str) -> None:
        conn = self._connect()
        try:
            conn.execute("DELETE FROM storage WHERE key = ?", (key,))
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot delete {key!r} from {self.path}: {e}") from e

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
