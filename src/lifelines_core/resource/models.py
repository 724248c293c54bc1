"""
Resource inventory models

A resource is salvaged or surplus material sitting somewhere on the map,
available to be reserved by exactly one reconstruction project at a time.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from lifelines_core.kernel.records import Record


class GeoPoint(BaseModel):
    """WGS84 coordinate"""

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

    model_config = {"frozen": True}


class ResourceLocation(GeoPoint):
    address: str = ""


class ResourceStatus(str, Enum):
    """
    Inventory status label

    Identified -> Sampled -> Certified: inspection progress
    Allocated: reserved for a project (release returns it to Certified)
    """

    IDENTIFIED = "Identified"
    SAMPLED = "Sampled"
    CERTIFIED = "Certified"
    ALLOCATED = "Allocated"


class Resource(Record):
    """
    Inventory item with an exclusive reservation slot

    ``reserved_for_project_id`` is either None or the id of the single
    project holding the reservation.
    """

    type: str = Field(..., min_length=1, description="Material type, e.g. Bricks, Steel")
    condition: str = Field(default="Good")
    quantity: float = Field(..., ge=0)
    unit: str = Field(..., min_length=1)
    location: ResourceLocation
    source_project_id: str | None = None
    reserved_for_project_id: str | None = None
    status: ResourceStatus = ResourceStatus.IDENTIFIED
    created_at: datetime

    @property
    def is_reserved(self) -> bool:
        return self.reserved_for_project_id is not None
