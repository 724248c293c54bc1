"""
Lifecycle commands - validated payloads for every mutating operation

The same models are used three ways: as the Python API of the lifecycle
service, as the JSON body of the HTTP route, and as the payload stored in a
client's outbox while it is offline.
"""

from datetime import date
from typing import Any, TypeVar

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from lifelines_core.kernel.errors import ValidationError
from lifelines_core.lifecycle.models import (
    CostItem,
    DebrisVolume,
    Location,
    PlanMaterial,
    Recoverable,
    Region,
    Role,
    Severity,
    SustainabilityMetrics,
    SustainabilityOptions,
    Visibility,
)
from lifelines_core.resource.models import ResourceLocation, ResourceStatus

C = TypeVar("C", bound=BaseModel)


class Command(BaseModel):
    """Base class for command payloads (unknown fields rejected)"""

    model_config = {"extra": "forbid", "frozen": True}


def parse_command(command_type: type[C], data: C | dict[str, Any] | None) -> C:
    """
    Coerce a dict (or an existing instance) into a command

    Raises:
        ValidationError: With a readable summary of every failing field
    """
    if isinstance(data, command_type):
        return data
    try:
        return command_type.model_validate(data or {})
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(f"Invalid {command_type.__name__}: {problems}") from e


# ============================================================================
# Actors
# ============================================================================


SELF_REGISTRATION_ROLES = (Role.COMMUNITY, Role.OFFICIAL, Role.CONTRACTOR)


class RegisterActor(Command):
    name: str = Field(..., min_length=1, max_length=120)
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=6)
    role: Role = Role.COMMUNITY
    region: Region

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: Role) -> Role:
        if v not in SELF_REGISTRATION_ROLES:
            raise ValueError("admin accounts cannot be self-registered")
        return v

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("email must contain @")
        return v


class Login(Command):
    email: str
    password: str


class UpdateRegion(Command):
    region: Region


# ============================================================================
# Projects
# ============================================================================


class CreateProject(Command):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    location: Location
    visibility: Visibility = Visibility.PRIVATE
    community_feedback_enabled: bool = False
    images: tuple[str, ...] = ()


class UpdateProject(Command):
    """Partial update: only fields that are set are applied"""

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    location: Location | None = None
    visibility: Visibility | None = None
    community_feedback_enabled: bool | None = None
    images: tuple[str, ...] | None = None

    def changes(self) -> dict[str, Any]:
        return {k: getattr(self, k) for k in self.model_fields_set if getattr(self, k) is not None}


class AddCommunityInput(Command):
    comment: str = Field(..., min_length=1, max_length=2000)
    approval_signal: bool = True


# ============================================================================
# Assessment & planning
# ============================================================================


class SaveDamageReport(Command):
    severity: Severity
    issues: tuple[str, ...] = ()
    debris_volume: DebrisVolume
    recoverables: tuple[Recoverable, ...] = ()
    confidence: dict[str, float] = Field(default_factory=dict)
    producer_version: str = Field(..., min_length=1)

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, v: dict[str, float]) -> dict[str, float]:
        for key, score in v.items():
            if not 0 <= score <= 1:
                raise ValueError(f"confidence {key} must be within [0, 1]")
        return v


class SavePlan(Command):
    """
    Plan content

    ``version`` is accepted for compatibility with generators that number
    their output, but the service always assigns max existing + 1.
    """

    version: int | None = Field(default=None, ge=1)
    building_spec: dict[str, Any] = Field(default_factory=dict)
    materials: tuple[PlanMaterial, ...] = Field(..., min_length=1)
    cost_breakdown: tuple[CostItem, ...] = ()
    timeline_months: float = Field(..., gt=0)
    sustainability_options: SustainabilityOptions = Field(default_factory=SustainabilityOptions)
    sustainability_metrics: SustainabilityMetrics = Field(default_factory=SustainabilityMetrics)


# ============================================================================
# Bidding & licensing
# ============================================================================


class SubmitBid(Command):
    cost: float = Field(..., gt=0)
    timeline_months: float = Field(..., gt=0)
    experience: int = Field(..., ge=0)
    recycled_percent: float = Field(..., ge=0, le=100)
    notes: str = Field(default="", max_length=2000)


class AwardBid(Command):
    bid_id: str = Field(..., min_length=1)


class IssueLicense(Command):
    """
    License request

    Dates default to the issuance day. ``contractor_id``, when given, must
    name the contractor of the awarded bid.
    """

    valid_from: date | None = None
    valid_to: date | None = None
    conditions: tuple[str, ...] = ()
    contractor_id: str | None = None

    @model_validator(mode="after")
    def check_window(self) -> "IssueLicense":
        if self.valid_from and self.valid_to and self.valid_to < self.valid_from:
            raise ValueError("valid_to must not be before valid_from")
        return self


# ============================================================================
# Resources
# ============================================================================


class RegisterResource(Command):
    type: str = Field(..., min_length=1)
    condition: str = "Good"
    quantity: float = Field(..., gt=0)
    unit: str = Field(..., min_length=1)
    location: ResourceLocation
    source_project_id: str | None = None
    status: ResourceStatus = ResourceStatus.IDENTIFIED

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: ResourceStatus) -> ResourceStatus:
        if v == ResourceStatus.ALLOCATED:
            raise ValueError("new resources cannot start allocated")
        return v


class ReserveResource(Command):
    project_id: str = Field(..., min_length=1)
