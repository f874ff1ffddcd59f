"""SQLite-backed key/value store used by the remote handlers."""
from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, List, Optional

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
"""


def _connect(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.executescript(SCHEMA_SQL)
    return conn


class KeyValueStore:
    """Opaque ``get``/``set`` over JSON values. No cross-key transactions."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    def get(self, key: str) -> Optional[Any]:
        conn = _connect(self.db_path)
        try:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            return None

    def set(self, key: str, value: Any) -> None:
        conn = _connect(self.db_path)
        try:
            with conn:
                conn.execute(
                    "INSERT INTO kv (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP",
                    (key, json.dumps(value)),
                )
        finally:
            conn.close()

    def delete(self, key: str) -> None:
        conn = _connect(self.db_path)
        try:
            with conn:
                conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        finally:
            conn.close()

    def keys(self) -> List[str]:
        conn = _connect(self.db_path)
        try:
            rows = conn.execute("SELECT key FROM kv ORDER BY key").fetchall()
        finally:
            conn.close()
        return [row["key"] for row in rows]
