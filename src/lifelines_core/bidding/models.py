"""
Bid models

A bid is a contractor's offer on a Published project. Its score is not a
property of the bid alone: it is recomputed against every other bid on the
same project whenever the cohort changes.
"""

from datetime import datetime
from enum import Enum

from pydantic import Field

from lifelines_core.kernel.records import Record


class BidStatus(str, Enum):
    """
    Bid states

    Submitted → Awarded (exactly one per project)
              → Rejected (every other bid, at award time)
    """

    SUBMITTED = "Submitted"
    AWARDED = "Awarded"
    REJECTED = "Rejected"


class Bid(Record):
    project_id: str
    contractor_id: str
    cost: float = Field(..., gt=0, description="Total price")
    timeline_months: float = Field(..., gt=0)
    experience: int = Field(..., ge=0, description="Comparable projects delivered")
    recycled_percent: float = Field(..., ge=0, le=100)
    notes: str = ""
    score: float = Field(default=0.0, ge=0, le=1)
    status: BidStatus = BidStatus.SUBMITTED
    created_at: datetime
