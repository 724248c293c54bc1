"""
Base Record model for stored entities

Records are the unit the entity store keys and replaces. They are frozen:
a change produces a new record via ``evolve`` and the store swaps it in, so
a rolled-back transaction only has to restore dictionary slots, never undo
field writes.
"""

from typing import Any

from pydantic import BaseModel, Field


class Record(BaseModel):
    """
    Base class for every entity kept in the entity store

    ``pending_sync`` is only ever True on a client's local replica, for
    entities created or changed while the remote source of truth was
    unreachable.
    """

    id: str = Field(..., description="Unique entity identifier")
    pending_sync: bool = Field(
        default=False,
        description="True when this copy is a local, not-yet-confirmed change",
    )

    model_config = {"frozen": True}

    def evolve(self, **changes: Any) -> "Record":
        """Return a copy with the given fields replaced (validated)"""
        data = self.model_dump()
        data.update(changes)
        return type(self).model_validate(data)
