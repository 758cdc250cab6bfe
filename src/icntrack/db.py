"""Key-value persistence for icntrack.

The core only needs ``get`` / ``set`` / ``keys`` (plus ``delete`` for a
full reset), so storage is expressed as the ``KeyValueStore`` protocol:

- ``IcnDB``: SQLite table ``kv`` created from the bundled schema.sql
- ``MemoryStore``: a dict, for tests and previews
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol, runtime_checkable


@runtime_checkable
class KeyValueStore(Protocol):
    """String-keyed, string-valued durable storage."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def keys(self) -> list[str]: ...

    def delete(self, key: str) -> None: ...


def _get_schema_sql() -> str:
    """Read the schema.sql file bundled with the package."""
    schema_path = Path(__file__).parent / "schema.sql"
    return schema_path.read_text()


class IcnDB:
    """SQLite-backed key-value store.

    Each ``set`` commits in its own transaction, so a value written before
    a later failure (e.g. a pre-merge backup) is already durable.
    """

    def __init__(self, db_path: str = "icntrack.db"):
        self.db_path = db_path
        self.conn = sqlite3.connect(db_path)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")

    def init_schema(self) -> None:
        """Create the kv table from schema.sql (IF NOT EXISTS)."""
        self.conn.executescript(_get_schema_sql())

    def get(self, key: str) -> str | None:
        row = self.conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self.conn:
            self.conn.execute(
                "INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                "updated_at = excluded.updated_at",
                (key, value, now),
            )

    def keys(self) -> list[str]:
        return [r[0] for r in self.conn.execute("SELECT key FROM kv ORDER BY key")]

    def delete(self, key: str) -> None:
        with self.conn:
            self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))

    def query(self, sql: str, params: tuple = ()) -> list[dict]:
        """Execute a read-only SQL query and return results as list of dicts."""
        cursor = self.conn.execute(sql, params)
        columns = [desc[0] for desc in cursor.description] if cursor.description else []
        return [dict(zip(columns, row, strict=False)) for row in cursor.fetchall()]

    def summary(self) -> list[dict]:
        """Return key, value size and last update time for every stored key."""
        return self.query(
            "SELECT key, LENGTH(value) AS size, updated_at FROM kv ORDER BY key"
        )

    def close(self) -> None:
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class MemoryStore:
    """In-memory ``KeyValueStore``."""

    def __init__(self, data: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(data or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def keys(self) -> list[str]:
        return sorted(self.data)

    def delete(self, key: str) -> None:
        self.data.pop(key, None)
