"""
Snapshot Store - named JSON blobs in SQLite

The server keeps its whole entity store as one blob ("entities") and its
idempotency cache as another; the client keeps its offline pack here. The
store is deliberately a keyed record set, not a schema: every blob is
replaced wholesale on save.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from pydantic import BaseModel

from lifelines_core.kernel.errors import StorageError
from lifelines_core.kernel.retry import retry_on_sqlite_lock


class StoredSnapshot(BaseModel):
    """A named blob with a save counter"""

    name: str
    version: int
    state: dict[str, Any]
    updated_at: datetime


class SQLiteSnapshotStore:
    """
    SQLite-based snapshot store

    Schema:
    - snapshots table: name, version (incremented on every save), JSON state
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Initialize snapshot store with SQLite database

        Args:
            db_path: Path to SQLite database file (can be shared with the audit sink)
        """
        self.db_path = Path(db_path)
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        """Create tables if they don't exist"""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS snapshots (
                    name TEXT PRIMARY KEY,
                    version INTEGER NOT NULL,
                    state_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections"""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=2.0)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open snapshot store {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @retry_on_sqlite_lock()
    def _write(self, name: str, payload: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO snapshots (name, version, state_json, updated_at)
                VALUES (?, 1, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    version = snapshots.version + 1,
                    state_json = excluded.state_json,
                    updated_at = excluded.updated_at
            """,
                (name, payload, datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()

    def save(self, name: str, state: dict[str, Any]) -> None:
        """
        Save or replace a named snapshot

        Args:
            name: Snapshot name (e.g., "entities", "offline_pack")
            state: JSON-serializable state

        Raises:
            StorageError: If the database stays locked or cannot be written
        """
        payload = json.dumps(state, default=str)
        try:
            self._write(name, payload)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save snapshot {name}: {e}") from e

    def load(self, name: str) -> StoredSnapshot | None:
        """
        Load a snapshot by name

        Returns:
            StoredSnapshot if exists, None otherwise
        """
        with self._connect() as conn:
            row = conn.execute(
                "SELECT name, version, state_json, updated_at FROM snapshots WHERE name = ?",
                (name,),
            ).fetchone()

        if not row:
            return None

        return StoredSnapshot(
            name=row["name"],
            version=row["version"],
            state=json.loads(row["state_json"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def load_state(self, name: str) -> dict[str, Any] | None:
        """Load just the state portion of a snapshot"""
        snapshot = self.load(name)
        return snapshot.state if snapshot else None

    def delete(self, name: str) -> None:
        """Delete a snapshot"""
        with self._connect() as conn:
            conn.execute("DELETE FROM snapshots WHERE name = ?", (name,))
            conn.commit()

    def list_snapshots(self) -> list[str]:
        """List all snapshot names"""
        with self._connect() as conn:
            cursor = conn.execute("SELECT name FROM snapshots ORDER BY name")
            return [row["name"] for row in cursor.fetchall()]
