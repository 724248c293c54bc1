"""
Entity Store - keyed collections of frozen records

Holds actors, projects, damage reports, plans, resources, bids, licenses and
the audit trail in memory. Durability is someone else's job: the server
facade saves ``to_snapshot()`` into the snapshot store, the client ships it
around as part of the offline pack.

Every multi-record change runs inside ``transaction()``: one re-entrant lock
for the whole store (single writer at a time) plus a checkpoint of every
collection that is restored if the block raises, so no caller can ever
observe half an award.

Fun fact: copy-on-write checkpoints are how the first Smalltalk images
implemented undo - the records are frozen, so saving a slot map is enough.
"""

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from lifelines_core.bidding.models import Bid
from lifelines_core.kernel.errors import EntityNotFound
from lifelines_core.kernel.records import Record
from lifelines_core.lifecycle.models import Actor, DamageReport, License, Plan, Project
from lifelines_core.resource.models import Resource
from lifelines_core.store.audit import AuditRecord

# collection name -> (record type, singular entity type used in errors and audit)
COLLECTIONS: dict[str, tuple[type[Record], str]] = {
    "actors": (Actor, "actor"),
    "projects": (Project, "project"),
    "reports": (DamageReport, "damage_report"),
    "plans": (Plan, "plan"),
    "resources": (Resource, "resource"),
    "bids": (Bid, "bid"),
    "licenses": (License, "license"),
}

SNAPSHOT_FORMAT = 1


class EntityStore:
    """
    In-memory keyed record set with referential lookups

    Example:
        >>> store = EntityStore()
        >>> with store.transaction():
        ...     store.put("projects", project)
        >>> store.require("projects", project.id).title
        'Library Rebuild'
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._collections: dict[str, dict[str, Record]] = {name: {} for name in COLLECTIONS}
        self.audit: list[AuditRecord] = []
        self._depth = 0
        self._after_commit: list[Callable[[], None]] = []

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator["EntityStore"]:
        """
        Atomic block over the whole store

        Nested transactions join the outermost one. Callbacks registered with
        ``after_commit`` run once the outermost block exits cleanly and are
        discarded on rollback.
        """
        callbacks: list[Callable[[], None]] = []
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return

            checkpoint = {name: dict(items) for name, items in self._collections.items()}
            audit_checkpoint = list(self.audit)
            self._depth = 1
            try:
                yield self
            except BaseException:
                self._collections = checkpoint
                self.audit = audit_checkpoint
                self._after_commit.clear()
                raise
            finally:
                self._depth = 0

            callbacks, self._after_commit = self._after_commit, []

        # outside the lock: callbacks may do I/O
        for callback in callbacks:
            callback()

    def after_commit(self, callback: Callable[[], None]) -> None:
        """Run callback when the current transaction commits (now, if none is open)"""
        with self._lock:
            if self._depth:
                self._after_commit.append(callback)
                return
        callback()

    # ------------------------------------------------------------------
    # Keyed CRUD
    # ------------------------------------------------------------------

    def _collection(self, collection: str) -> dict[str, Record]:
        try:
            return self._collections[collection]
        except KeyError:
            raise ValueError(f"Unknown collection: {collection}") from None

    def put(self, collection: str, record: Record) -> Record:
        """Insert or replace a record by id"""
        record_type, _ = COLLECTIONS[collection]
        if not isinstance(record, record_type):
            raise TypeError(f"{collection} holds {record_type.__name__}, got {type(record).__name__}")
        with self.transaction():
            self._collection(collection)[record.id] = record
        return record

    def get(self, collection: str, record_id: str) -> Any:
        with self._lock:
            return self._collection(collection).get(record_id)

    def require(self, collection: str, record_id: str) -> Any:
        """Get a record or raise EntityNotFound"""
        record = self.get(collection, record_id)
        if record is None:
            raise EntityNotFound(COLLECTIONS[collection][1], record_id)
        return record

    def delete(self, collection: str, record_id: str) -> Record | None:
        with self.transaction():
            return self._collection(collection).pop(record_id, None)

    def select(self, collection: str, where: Callable[[Any], bool] | None = None) -> list[Any]:
        """All records in insertion order, optionally filtered"""
        with self._lock:
            records = list(self._collection(collection).values())
        if where is None:
            return records
        return [r for r in records if where(r)]

    def count(self, collection: str) -> int:
        with self._lock:
            return len(self._collection(collection))

    # ------------------------------------------------------------------
    # Referential lookups
    # ------------------------------------------------------------------

    def actor_by_email(self, email: str) -> Actor | None:
        email = email.strip().lower()
        for actor in self.select("actors"):
            if actor.email == email:
                return actor
        return None

    def bids_for_project(self, project_id: str) -> list[Bid]:
        return self.select("bids", lambda b: b.project_id == project_id)

    def reports_for_project(self, project_id: str) -> list[DamageReport]:
        return self.select("reports", lambda r: r.project_id == project_id)

    def latest_report(self, project_id: str) -> DamageReport | None:
        """Most recent report; equal timestamps resolve to the later insertion"""
        reports = self.reports_for_project(project_id)
        if not reports:
            return None
        return max(enumerate(reports), key=lambda pair: (pair[1].created_at, pair[0]))[1]

    def plans_for_project(self, project_id: str) -> list[Plan]:
        """Plan history, oldest version first"""
        return sorted(
            self.select("plans", lambda p: p.project_id == project_id),
            key=lambda p: p.version,
        )

    def latest_plan(self, project_id: str) -> Plan | None:
        plans = self.plans_for_project(project_id)
        return plans[-1] if plans else None

    def license_for_project(self, project_id: str) -> License | None:
        for license_ in self.select("licenses"):
            if license_.project_id == project_id:
                return license_
        return None

    def resources_reserved_for(self, project_id: str) -> list[Resource]:
        return self.select("resources", lambda r: r.reserved_for_project_id == project_id)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def to_snapshot(self, audit_limit: int | None = None, include_audit: bool = True) -> dict[str, Any]:
        """
        Serialize the whole store as a JSON-ready dict

        Args:
            audit_limit: Keep only the newest N audit records (None = all)
            include_audit: Leave the audit trail out entirely

        Returns:
            ``{"format": 1, "actors": [...], ..., "audit": [...]}``
        """
        with self._lock:
            snapshot: dict[str, Any] = {"format": SNAPSHOT_FORMAT}
            for name, items in self._collections.items():
                snapshot[name] = [r.model_dump(mode="json") for r in items.values()]
            if include_audit:
                audit = self.audit
                if audit_limit is not None:
                    audit = audit[-audit_limit:] if audit_limit > 0 else []
                snapshot["audit"] = [r.model_dump(mode="json") for r in audit]
        return snapshot

    def load_snapshot(self, snapshot: dict[str, Any], keep_audit: bool = False) -> None:
        """
        Replace the entire contents with a snapshot (server wins)

        Args:
            snapshot: Output of ``to_snapshot`` (possibly from another process)
            keep_audit: Leave the current audit trail in place when the snapshot has none
        """
        collections: dict[str, dict[str, Record]] = {}
        for name, (record_type, _) in COLLECTIONS.items():
            records = (record_type.model_validate(data) for data in snapshot.get(name, []))
            collections[name] = {r.id: r for r in records}
        audit = [AuditRecord.model_validate(data) for data in snapshot.get("audit", [])]

        with self.transaction():
            self._collections = collections
            if "audit" in snapshot or not keep_audit:
                self.audit = sorted(audit, key=lambda r: r.seq)

    @classmethod
    def from_snapshot(cls, snapshot: dict[str, Any]) -> "EntityStore":
        store = cls()
        store.load_snapshot(snapshot)
        return store

    def clear(self, keep_audit: bool = False) -> None:
        with self.transaction():
            self._collections = {name: {} for name in COLLECTIONS}
            if not keep_audit:
                self.audit = []
