"""
Audit Ledger - append-only record of every state change

Every mutating lifecycle operation ends by calling ``AuditLedger.record``
exactly once. Records live in the entity store's audit list (so they roll back
with the operation that produced them) and, when a durable sink is attached,
are copied to an append-only SQLite table after the owning transaction
commits.

The sink write is best-effort: if storage is unavailable the operation still
succeeds, the record stays in a backlog, and the backlog is retried on the
next write or an explicit ``flush()``.

Fun fact: double-entry bookkeeping spread through Venice in the 1490s largely
because merchants wanted a ledger nobody could quietly edit. Same idea here.
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterator, Protocol

from pydantic import BaseModel, Field

from lifelines_core.kernel.errors import StorageError
from lifelines_core.kernel.ids import IdFactory, default_id_factory
from lifelines_core.kernel.logging import get_logger
from lifelines_core.kernel.metrics import audit_backlog, audit_records_total, audit_sink_failures_total
from lifelines_core.kernel.retry import retry_on_sqlite_lock
from lifelines_core.kernel.time import TimeProvider

if TYPE_CHECKING:
    from lifelines_core.store.entity_store import EntityStore

logger = get_logger(__name__)


class AuditRecord(BaseModel):
    """
    One immutable ledger entry

    ``seq`` is a store-wide insertion counter; ordering is by timestamp with
    ties broken by ``seq``.
    """

    id: str
    seq: int = Field(..., ge=1)
    entity_type: str
    entity_id: str
    action: str
    actor_id: str | None = None
    timestamp: datetime
    details: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class AuditPage(BaseModel):
    """A newest-first slice of the ledger plus the cursor for the next one"""

    records: list[AuditRecord]
    next_cursor: int | None = Field(
        default=None, description="Pass as before_seq to fetch older records"
    )


class AuditSink(Protocol):
    """Durable destination for audit records"""

    def append(self, records: list[AuditRecord]) -> None: ...

    def latest(
        self,
        limit: int,
        entity_id: str | None = None,
        actor_id: str | None = None,
        before_seq: int | None = None,
    ) -> list[AuditRecord]: ...

    def max_seq(self) -> int: ...

    def count(self) -> int: ...


class SQLiteAuditSink:
    """
    Append-only audit table in SQLite

    Schema:
    - audit_records: seq (primary key), id (unique), entity columns, details_json
    - Indices on entity_id and actor_id for filtered reads

    Appends are idempotent on ``seq`` so a retried backlog never duplicates.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS audit_records (
                    seq INTEGER PRIMARY KEY,
                    id TEXT NOT NULL UNIQUE,
                    entity_type TEXT NOT NULL,
                    entity_id TEXT NOT NULL,
                    action TEXT NOT NULL,
                    actor_id TEXT,
                    timestamp TEXT NOT NULL,
                    details_json TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_records(entity_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_audit_actor ON audit_records(actor_id)"
            )
            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=2.0)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open audit sink {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @retry_on_sqlite_lock()
    def _insert(self, rows: list[tuple]) -> None:
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT OR IGNORE INTO audit_records (
                    seq, id, entity_type, entity_id, action, actor_id, timestamp, details_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
                rows,
            )
            conn.commit()

    def append(self, records: list[AuditRecord]) -> None:
        """
        Append records

        Raises:
            StorageError: If the table cannot be written
        """
        rows = [
            (
                r.seq,
                r.id,
                r.entity_type,
                r.entity_id,
                r.action,
                r.actor_id,
                r.timestamp.isoformat(),
                json.dumps(r.details, default=str),
            )
            for r in records
        ]
        try:
            self._insert(rows)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to append audit records: {e}") from e

    def latest(
        self,
        limit: int,
        entity_id: str | None = None,
        actor_id: str | None = None,
        before_seq: int | None = None,
    ) -> list[AuditRecord]:
        """Newest-first read with optional filters"""
        clauses: list[str] = []
        params: list[Any] = []
        if entity_id:
            clauses.append("entity_id = ?")
            params.append(entity_id)
        if actor_id:
            clauses.append("actor_id = ?")
            params.append(actor_id)
        if before_seq is not None:
            clauses.append("seq < ?")
            params.append(before_seq)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM audit_records {where} ORDER BY timestamp DESC, seq DESC LIMIT ?",
                params,
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def max_seq(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT MAX(seq) AS seq FROM audit_records").fetchone()
        return row["seq"] or 0

    def count(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM audit_records").fetchone()[0]

    def _row_to_record(self, row: sqlite3.Row) -> AuditRecord:
        return AuditRecord(
            id=row["id"],
            seq=row["seq"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            action=row["action"],
            actor_id=row["actor_id"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            details=json.loads(row["details_json"]),
        )


class AuditLedger:
    """
    Append-only ledger over the entity store's audit list

    Retention: without a sink nothing is ever dropped. With a sink, at most
    ``memory_limit`` records are kept in memory once they are safely on disk,
    and reads that run past the in-memory window continue in the sink.
    """

    def __init__(
        self,
        store: "EntityStore",
        time_provider: TimeProvider,
        sink: AuditSink | None = None,
        memory_limit: int | None = None,
        id_factory: IdFactory = default_id_factory,
    ) -> None:
        self.store = store
        self.time_provider = time_provider
        self.sink = sink
        self.memory_limit = memory_limit
        self.id_factory = id_factory
        self._backlog: list[AuditRecord] = []
        self._backlog_lock = threading.Lock()
        self._seq = sink.max_seq() if sink else 0
        self._trimmed = False

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        actor_id: str | None,
        details: dict[str, Any] | None = None,
    ) -> AuditRecord:
        """
        Append one record

        Must be the last write of the operation that owns it; inside a store
        transaction the sink write is deferred until that transaction commits.

        Returns:
            The appended AuditRecord
        """
        with self.store.transaction():
            last = self.store.audit[-1].seq if self.store.audit else 0
            self._seq = max(self._seq, last) + 1
            record = AuditRecord(
                id=self.id_factory.generate("aud"),
                seq=self._seq,
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                actor_id=actor_id,
                timestamp=self.time_provider.now(),
                details=details or {},
            )
            self.store.audit.append(record)
            self.store.after_commit(lambda: self._committed(record))

        return record

    def _committed(self, record: AuditRecord) -> None:
        audit_records_total.labels(entity_type=record.entity_type, action=record.action).inc()
        if self.sink is None:
            return
        with self._backlog_lock:
            self._backlog.append(record)
        self.flush()

    def flush(self) -> bool:
        """
        Write the backlog to the sink

        Returns:
            True if nothing is left pending
        """
        if self.sink is None:
            return True
        with self._backlog_lock:
            pending = list(self._backlog)
            if not pending:
                return True
            try:
                self.sink.append(pending)
            except StorageError as e:
                audit_sink_failures_total.inc()
                audit_backlog.set(len(self._backlog))
                logger.warning("Audit sink unavailable, keeping backlog", pending=len(pending), error=str(e))
                return False
            del self._backlog[: len(pending)]
            audit_backlog.set(len(self._backlog))
        self._trim()
        return True

    @property
    def backlog_size(self) -> int:
        with self._backlog_lock:
            return len(self._backlog)

    def _trim(self) -> None:
        if self.sink is None or not self.memory_limit:
            return
        with self.store.transaction():
            excess = len(self.store.audit) - self.memory_limit
            if excess > 0:
                del self.store.audit[:excess]
                self._trimmed = True

    def load_from_sink(self) -> int:
        """
        Fill the in-memory window from the sink (server start-up)

        Returns:
            Number of records loaded
        """
        if self.sink is None:
            return 0
        limit = self.memory_limit or self.sink.count()
        records = list(reversed(self.sink.latest(limit)))
        with self.store.transaction():
            self.store.audit = records
        self._seq = max(self._seq, self.sink.max_seq())
        self._trimmed = self.sink.count() > len(records)
        return len(records)

    def reset(self) -> None:
        """Forget in-memory state after the store was replaced wholesale"""
        with self._backlog_lock:
            self._backlog.clear()
        audit_backlog.set(0)
        self._seq = self.sink.max_seq() if self.sink else 0
        self._trimmed = False

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def latest(
        self,
        limit: int = 50,
        entity_id: str | None = None,
        actor_id: str | None = None,
        before_seq: int | None = None,
    ) -> list[AuditRecord]:
        """
        Newest-first records, optionally filtered by entity or actor

        Args:
            limit: Maximum number of records
            entity_id: Only records about this entity
            actor_id: Only records made by this actor
            before_seq: Only records older than this cursor
        """
        if limit <= 0:
            return []

        def matches(r: AuditRecord) -> bool:
            return (
                (entity_id is None or r.entity_id == entity_id)
                and (actor_id is None or r.actor_id == actor_id)
                and (before_seq is None or r.seq < before_seq)
            )

        in_memory = sorted(
            (r for r in self.store.audit if matches(r)),
            key=lambda r: (r.timestamp, r.seq),
            reverse=True,
        )
        records = in_memory[:limit]

        if len(records) < limit and self._trimmed and self.sink is not None:
            oldest = self.store.audit[0].seq if self.store.audit else before_seq
            if before_seq is not None and oldest is not None:
                oldest = min(oldest, before_seq)
            records.extend(
                self.sink.latest(limit - len(records), entity_id, actor_id, before_seq=oldest)
            )
        return records

    def page(
        self,
        limit: int = 50,
        before_seq: int | None = None,
        entity_id: str | None = None,
        actor_id: str | None = None,
    ) -> AuditPage:
        """Cursor-paginated read, newest first"""
        records = self.latest(limit + 1, entity_id, actor_id, before_seq)
        if len(records) > limit:
            records = records[:limit]
            return AuditPage(records=records, next_cursor=records[-1].seq)
        return AuditPage(records=records, next_cursor=None)
