"""
Outbox - the client-owned FIFO of writes not yet confirmed by the server

Each entry moves Queued → InFlight → Committed (removed) or back to Queued
for a retry. A mutation the server rejects outright is moved to the
dead-letter list so it can be inspected, and the queue keeps draining behind
it.

Entities created offline carry a provisional id. When the server confirms the
create and answers with its own id, ``rebind`` rewrites that id everywhere it
appears in the mutations still queued behind it.
"""

import threading
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from lifelines_core.kernel.ids import generate_id
from lifelines_core.kernel.metrics import outbox_depth


class MutationStatus(str, Enum):
    QUEUED = "Queued"
    IN_FLIGHT = "InFlight"
    COMMITTED = "Committed"
    REJECTED = "Rejected"


class PendingMutation(BaseModel):
    """
    One queued remote write

    ``mutation_id`` doubles as the idempotency key, so a write whose response
    was lost is not applied twice when it is retried.
    """

    mutation_id: str = Field(default_factory=lambda: generate_id("mut"))
    operation: str
    method: str
    path: str
    payload: dict[str, Any] = Field(default_factory=dict)
    enqueued_at: datetime
    status: MutationStatus = MutationStatus.QUEUED
    attempts: int = 0
    last_error: str | None = None
    local_id: str | None = None
    actor_id: str | None = None

    model_config = {"frozen": True}


def _replace_id(value: Any, old: str, new: str) -> Any:
    if isinstance(value, str):
        return new if value == old else value
    if isinstance(value, dict):
        return {k: _replace_id(v, old, new) for k, v in value.items()}
    if isinstance(value, list):
        return [_replace_id(v, old, new) for v in value]
    return value


def _replace_path_id(path: str, old: str, new: str) -> str:
    return "/".join(new if segment == old else segment for segment in path.split("/"))


class MutationQueue:
    """
    Thread-safe FIFO outbox

    Enqueuing while a drain is in progress is safe: the new entry lands
    behind whatever the drain is working on.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: list[PendingMutation] = []
        self.dead_letters: list[PendingMutation] = []

    def _index(self, mutation_id: str) -> int:
        for i, item in enumerate(self._items):
            if item.mutation_id == mutation_id:
                return i
        raise KeyError(mutation_id)

    def _update(self, mutation_id: str, **changes: Any) -> PendingMutation:
        i = self._index(mutation_id)
        self._items[i] = self._items[i].model_copy(update=changes)
        return self._items[i]

    def _publish_depth(self) -> None:
        outbox_depth.set(len(self._items))

    def enqueue(
        self,
        operation: str,
        method: str,
        path: str,
        payload: dict[str, Any],
        enqueued_at: datetime,
        local_id: str | None = None,
        mutation_id: str | None = None,
        actor_id: str | None = None,
    ) -> PendingMutation:
        """
        Append a mutation to the tail

        Args:
            actor_id: Who queued it; the replay must run under the same actor
        """
        fields: dict[str, Any] = {}
        if mutation_id:
            fields["mutation_id"] = mutation_id
        mutation = PendingMutation(
            operation=operation,
            method=method.upper(),
            path=path,
            payload=payload,
            enqueued_at=enqueued_at,
            local_id=local_id,
            actor_id=actor_id,
            **fields,
        )
        with self._lock:
            self._items.append(mutation)
            self._publish_depth()
        return mutation

    def peek(self) -> PendingMutation | None:
        """Head of the queue, or None when empty"""
        with self._lock:
            return self._items[0] if self._items else None

    def mark_in_flight(self, mutation_id: str) -> PendingMutation:
        with self._lock:
            item = self._items[self._index(mutation_id)]
            return self._update(
                mutation_id, status=MutationStatus.IN_FLIGHT, attempts=item.attempts + 1
            )

    def requeue(self, mutation_id: str, error: str) -> PendingMutation:
        """Back to Queued at the same position, keeping FIFO order"""
        with self._lock:
            return self._update(mutation_id, status=MutationStatus.QUEUED, last_error=error)

    def commit(self, mutation_id: str) -> PendingMutation:
        """Remove a mutation the server confirmed"""
        with self._lock:
            item = self._items.pop(self._index(mutation_id))
            self._publish_depth()
        return item.model_copy(update={"status": MutationStatus.COMMITTED})

    def reject(self, mutation_id: str, error: str) -> PendingMutation:
        """Move a mutation the server refused to the dead-letter list"""
        with self._lock:
            item = self._items.pop(self._index(mutation_id))
            rejected = item.model_copy(update={"status": MutationStatus.REJECTED, "last_error": error})
            self.dead_letters.append(rejected)
            self._publish_depth()
        return rejected

    def rebind(self, local_id: str, server_id: str) -> int:
        """
        Replace a provisional id with the server's id in every queued mutation

        Returns:
            Number of mutations rewritten
        """
        if local_id == server_id:
            return 0
        rewritten = 0
        with self._lock:
            for i, item in enumerate(self._items):
                path = _replace_path_id(item.path, local_id, server_id)
                payload = _replace_id(item.payload, local_id, server_id)
                changes = {
                    "path": path,
                    "payload": payload,
                    "local_id": server_id if item.local_id == local_id else item.local_id,
                    "actor_id": server_id if item.actor_id == local_id else item.actor_id,
                }
                if any(getattr(item, k) != v for k, v in changes.items()):
                    self._items[i] = item.model_copy(update=changes)
                    rewritten += 1
        return rewritten

    def items(self) -> list[PendingMutation]:
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
            self.dead_letters.clear()
            self._publish_depth()

    # ------------------------------------------------------------------
    # Serialization (offline pack)
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "queued": [m.model_dump(mode="json") for m in self._items],
                "dead_letters": [m.model_dump(mode="json") for m in self.dead_letters],
            }

    def load(self, data: dict[str, Any]) -> None:
        """
        Replace the queue contents

        Anything persisted while InFlight is back to Queued: its response was
        never seen, and the idempotency key makes the retry safe.
        """
        queued = [
            PendingMutation.model_validate(m).model_copy(update={"status": MutationStatus.QUEUED})
            for m in data.get("queued", [])
        ]
        dead = [PendingMutation.model_validate(m) for m in data.get("dead_letters", [])]
        with self._lock:
            self._items = queued
            self.dead_letters = dead
            self._publish_depth()
