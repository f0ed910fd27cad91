"""Key-value persistence backends for `ProgressStore`.

`SqliteBackend` keeps one JSON document per key in a single table and commits
every write, so a value is durable once `set` returns. `MemoryBackend` is the
non-durable variant used for tests and dry runs.
"""

from __future__ import annotations

import copy
import json
from pathlib import Path
import sqlite3
from typing import Any

from loguru import logger

from core.errors import PersistenceError

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""


def connect(db_path: Path) -> sqlite3.Connection:
    """Connect to the SQLite database and make sure the schema exists."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = FULL")
    conn.execute("PRAGMA busy_timeout = 5000")
    conn.executescript(SCHEMA_SQL)
    conn.commit()
    return conn


class SqliteBackend:
    """Durable key-value store on top of SQLite."""

    def __init__(self, db_path: str | Path) -> None:
        self._path = Path(db_path)
        try:
            self._conn = connect(self._path)
        except sqlite3.Error as ex:
            raise PersistenceError(f"Cannot open progress database {self._path}: {ex}") from ex
        logger.info("Progress database: {}", self._path)

    def get(self, key: str, default: Any | None = None) -> Any:
        try:
            row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as ex:
            logger.error("Read {} failed: {}", key, ex)
            return default
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except ValueError as ex:
            logger.error("Stored value for {} is not valid JSON: {}", key, ex)
            return default

    def set(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False)
        try:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO kv (key, value, updated_at) VALUES (?, ?, datetime('now'))
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                                   updated_at = excluded.updated_at
                    """,
                    (key, payload),
                )
        except sqlite3.Error as ex:
            raise PersistenceError(f"write {key}: {ex}") from ex

    def remove(self, key: str) -> None:
        try:
            with self._conn:
                self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        except sqlite3.Error as ex:
            raise PersistenceError(f"remove {key}: {ex}") from ex

    def close(self) -> None:
        self._conn.close()


class MemoryBackend:
    """In-process backend; values are deep-copied to mimic serialization."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    def get(self, key: str, default: Any | None = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)
