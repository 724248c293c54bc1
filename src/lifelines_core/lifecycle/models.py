"""
Lifecycle domain models

Actors, projects and the documents that accumulate on a project as it moves
from damage assessment to a licensed rebuild.

Fun fact: after the 1906 San Francisco earthquake, the city reused so much
rubble that parts of the Marina District are literally built on it. Tracking
recoverable material per project is an old idea with better bookkeeping.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from lifelines_core.kernel.records import Record
from lifelines_core.resource.models import GeoPoint


class Role(str, Enum):
    ADMIN = "admin"
    OFFICIAL = "official"
    CONTRACTOR = "contractor"
    COMMUNITY = "community"


class ProjectStatus(str, Enum):
    """
    Project lifecycle states

    Finite state machine:
    Draft → Published → Awarded → Licensed → Completed

    Deletion is not a status: an admin delete removes the project and
    everything hanging off it.
    """

    DRAFT = "Draft"
    PUBLISHED = "Published"
    AWARDED = "Awarded"
    LICENSED = "Licensed"
    COMPLETED = "Completed"


class Visibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class Severity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


# ============================================================================
# Actors
# ============================================================================


class Region(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)

    model_config = {"frozen": True}


class Actor(Record):
    """
    A person acting in one role

    Immutable except for region; never deleted.
    """

    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    role: Role
    region: Region
    created_at: datetime

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("email must contain @")
        return v


# ============================================================================
# Projects
# ============================================================================


class Location(GeoPoint):
    address: str = ""
    region: str = Field(default="", description="Region id used for official visibility")


class CommunityInput(BaseModel):
    """A resident's comment on a public project"""

    id: str
    author_id: str
    comment: str = Field(..., min_length=1, max_length=2000)
    approval_signal: bool = Field(default=True, description="Thumbs up / thumbs down")
    created_at: datetime

    model_config = {"frozen": True}


class Project(Record):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    location: Location
    status: ProjectStatus = ProjectStatus.DRAFT
    visibility: Visibility = Visibility.PRIVATE
    community_feedback_enabled: bool = False
    owner_id: str
    community_inputs: tuple[CommunityInput, ...] = ()
    images: tuple[str, ...] = Field(default=(), description="Image references for assessment")
    created_at: datetime
    updated_at: datetime

    @property
    def is_public(self) -> bool:
        return self.visibility == Visibility.PUBLIC


# ============================================================================
# Damage assessment
# ============================================================================


class DebrisVolume(BaseModel):
    """Debris estimate in cubic metres with its error band"""

    estimate_m3: float = Field(..., ge=0)
    margin_pct: float = Field(..., ge=0, le=100)
    min_m3: float = Field(..., ge=0)
    max_m3: float = Field(..., ge=0)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def check_range(self) -> "DebrisVolume":
        if self.max_m3 < self.min_m3:
            raise ValueError("max_m3 must be >= min_m3")
        return self


class Recoverable(BaseModel):
    """Salvageable material found on site"""

    type: str = Field(..., min_length=1)
    unit: str
    quantity: float = Field(..., ge=0)
    margin_pct: float = Field(default=0, ge=0, le=100)
    min_quantity: float = Field(..., ge=0)
    max_quantity: float = Field(..., ge=0)
    quality_score: float = Field(..., ge=0, le=1)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def check_range(self) -> "Recoverable":
        if self.max_quantity < self.min_quantity:
            raise ValueError("max_quantity must be >= min_quantity")
        return self


class DamageReport(Record):
    """
    Structured output of the damage-assessment producer

    Immutable once created. A newer report for the same project supersedes
    it by recency.
    """

    project_id: str
    severity: Severity
    issues: tuple[str, ...] = ()
    debris_volume: DebrisVolume
    recoverables: tuple[Recoverable, ...] = ()
    confidence: dict[str, float] = Field(default_factory=dict)
    producer_version: str
    created_by: str
    created_at: datetime

# ============================================================================
# Plans
# ============================================================================


class PlanMaterial(BaseModel):
    type: str = Field(..., min_length=1)
    quantity: float = Field(..., gt=0)
    unit: str = ""
    notes: str = ""

    model_config = {"frozen": True}


class CostItem(BaseModel):
    item: str = Field(..., min_length=1)
    cost: float = Field(..., ge=0)

    model_config = {"frozen": True}


class SustainabilityOptions(BaseModel):
    solar_panels: bool = False
    insulation: bool = False
    seismic_reinforcement: bool = False

    model_config = {"frozen": True}


class SustainabilityMetrics(BaseModel):
    recycled_percent: float = Field(default=0, ge=0, le=100)
    co2_saved_kg: float = Field(default=0, ge=0)
    energy_kwh_saved: float = Field(default=0, ge=0)

    model_config = {"frozen": True}


class Plan(Record):
    """
    One version of a project's reconstruction plan

    Versions are per project, start at 1, and only ever go up. History is
    retained; the highest version is the current plan.
    """

    project_id: str
    version: int = Field(..., ge=1)
    building_spec: dict[str, Any] = Field(default_factory=dict)
    materials: tuple[PlanMaterial, ...] = ()
    cost_breakdown: tuple[CostItem, ...] = ()
    timeline_months: float = Field(..., gt=0)
    sustainability_options: SustainabilityOptions = Field(default_factory=SustainabilityOptions)
    sustainability_metrics: SustainabilityMetrics = Field(default_factory=SustainabilityMetrics)
    created_by: str
    created_at: datetime

    @property
    def total_cost(self) -> float:
        return sum(item.cost for item in self.cost_breakdown)


# ============================================================================
# Licenses
# ============================================================================

SIGNATURE_PLACEHOLDER = "DIGITAL-SIGNATURE-PLACEHOLDER"


class License(Record):
    """Construction license issued once per awarded project. Immutable."""

    project_id: str
    contractor_id: str
    bid_id: str
    valid_from: date
    valid_to: date
    conditions: tuple[str, ...] = ()
    issued_by: str
    signature: str = SIGNATURE_PLACEHOLDER
    issued_at: datetime
