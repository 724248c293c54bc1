"""
Lifecycle invariants - pure checks that raise on violation

The transition table is the single source of truth for project status
changes; every handler goes through ``check_transition``.
"""

from datetime import date

from lifelines_core.bidding.models import Bid, BidStatus
from lifelines_core.kernel.errors import (
    BidNotInProject,
    ConflictError,
    InvalidTransition,
    ValidationError,
)
from lifelines_core.lifecycle.models import Plan, Project, ProjectStatus

TRANSITIONS: dict[ProjectStatus, set[ProjectStatus]] = {
    ProjectStatus.DRAFT: {ProjectStatus.PUBLISHED},
    ProjectStatus.PUBLISHED: {ProjectStatus.AWARDED},
    ProjectStatus.AWARDED: {ProjectStatus.LICENSED},
    ProjectStatus.LICENSED: {ProjectStatus.COMPLETED},
    ProjectStatus.COMPLETED: set(),
}


def check_transition(project: Project, target: ProjectStatus) -> None:
    """
    Validate a status change against the transition table

    Raises:
        InvalidTransition: If target is not reachable from the current status
    """
    if target not in TRANSITIONS[project.status]:
        raise InvalidTransition(project.id, project.status.value, target.value)


def check_editable(project: Project) -> None:
    """Completed projects are frozen"""
    if project.status == ProjectStatus.COMPLETED:
        raise ConflictError(f"Project {project.id} is completed and can no longer change")


def check_accepts_bids(project: Project) -> None:
    if project.status != ProjectStatus.PUBLISHED:
        raise ConflictError(
            f"Project {project.id} is {project.status.value}; bids are only accepted while Published"
        )


def check_accepts_feedback(project: Project) -> None:
    if not project.is_public or not project.community_feedback_enabled:
        raise ConflictError(f"Project {project.id} is not open for community feedback")


def check_bid_in_project(bid: Bid, project: Project) -> None:
    if bid.project_id != project.id:
        raise BidNotInProject(bid.id, project.id)


def check_single_award(bids: list[Bid]) -> None:
    """
    After an award exactly one bid is Awarded and none is left Submitted

    Raises:
        ConflictError: If the cohort is in any other shape
    """
    awarded = [b for b in bids if b.status == BidStatus.AWARDED]
    submitted = [b for b in bids if b.status == BidStatus.SUBMITTED]
    if len(awarded) != 1 or submitted:
        raise ConflictError(
            f"Award left {len(awarded)} awarded and {len(submitted)} submitted bids"
        )


def find_awarded_bid(project: Project, bids: list[Bid]) -> Bid:
    """
    Raises:
        InvalidTransition: If the project has no awarded bid to license
    """
    for bid in bids:
        if bid.status == BidStatus.AWARDED:
            return bid
    raise InvalidTransition(
        project.id, project.status.value, ProjectStatus.LICENSED.value, "no awarded bid"
    )


def check_license_window(valid_from: date, valid_to: date) -> None:
    if valid_to < valid_from:
        raise ValidationError("License valid_to must not be before valid_from")


def next_plan_version(plans: list[Plan]) -> int:
    """Versions are max existing + 1, so a deleted or rejected number is never reused"""
    return max((p.version for p in plans), default=0) + 1
