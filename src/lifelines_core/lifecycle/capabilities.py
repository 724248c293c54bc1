"""
Capabilities - who may do what to which project

One function answers every role question the lifecycle guards and the HTTP
surface ask, returning a typed Decision instead of scattering role string
comparisons across callers.
"""

from enum import Enum

from pydantic import BaseModel

from lifelines_core.kernel.errors import AuthenticationError, AuthorizationError
from lifelines_core.lifecycle.models import Actor, Project, ProjectStatus, Role


class Capability(str, Enum):
    CREATE_PROJECT = "create_project"
    EDIT_PROJECT = "edit_project"
    PUBLISH = "publish"
    SAVE_DAMAGE_REPORT = "save_damage_report"
    SAVE_PLAN = "save_plan"
    SUBMIT_BID = "submit_bid"
    AWARD = "award"
    ISSUE_LICENSE = "issue_license"
    COMPLETE = "complete"
    DELETE_PROJECT = "delete_project"
    COMMUNITY_INPUT = "community_input"
    MANAGE_RESOURCES = "manage_resources"
    VIEW_PROJECT = "view_project"
    VIEW_AUDIT = "view_audit"
    ADMINISTER = "administer"


class Decision(BaseModel):
    allowed: bool
    reason: str = ""

    model_config = {"frozen": True}

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(allowed=True)

# Project-scoped capabilities held by the owning official (and any admin)
OWNER_CAPABILITIES = {
    Capability.EDIT_PROJECT,
    Capability.PUBLISH,
    Capability.SAVE_DAMAGE_REPORT,
    Capability.SAVE_PLAN,
    Capability.AWARD,
    Capability.ISSUE_LICENSE,
    Capability.COMPLETE,
}

ROLE_CAPABILITIES: dict[Capability, set[Role]] = {
    Capability.CREATE_PROJECT: {Role.ADMIN, Role.OFFICIAL},
    Capability.SUBMIT_BID: {Role.CONTRACTOR},
    Capability.COMMUNITY_INPUT: {Role.COMMUNITY},
    Capability.MANAGE_RESOURCES: {Role.ADMIN, Role.OFFICIAL},
    Capability.VIEW_AUDIT: {Role.ADMIN, Role.OFFICIAL},
    Capability.DELETE_PROJECT: {Role.ADMIN},
    Capability.ADMINISTER: {Role.ADMIN},
}

CONTRACTOR_VISIBLE = {
    ProjectStatus.PUBLISHED,
    ProjectStatus.AWARDED,
    ProjectStatus.LICENSED,
    ProjectStatus.COMPLETED,
}


def deny(reason: str) -> Decision:
    return Decision(allowed=False, reason=reason)


def can_view(actor: Actor | None, project: Project) -> Decision:
    """
    Project visibility

    - anonymous and community: public projects
    - contractor: projects open for or past bidding
    - official: own projects and projects in their region
    - admin: everything
    """
    if actor is None or actor.role == Role.COMMUNITY:
        return ALLOW if project.is_public else deny("Project is not public")
    if actor.role == Role.ADMIN:
        return ALLOW
    if actor.role == Role.CONTRACTOR:
        if project.status in CONTRACTOR_VISIBLE:
            return ALLOW
        return deny("Project is not open to contractors yet")
    if project.owner_id == actor.id or project.location.region == actor.region.id:
        return ALLOW
    return deny("Project is outside your region")


def check(actor: Actor | None, capability: Capability, project: Project | None = None) -> Decision:
    """
    Decide whether actor holds capability (on project, when project-scoped)

    Example:
        >>> check(official, Capability.PUBLISH, their_project)
        Decision(allowed=True, reason='')
    """
    if actor is None:
        return deny("Sign-in required")

    if capability == Capability.VIEW_PROJECT:
        if project is None:
            return ALLOW
        return can_view(actor, project)

    if capability in OWNER_CAPABILITIES:
        if actor.role == Role.ADMIN:
            return ALLOW
        if actor.role != Role.OFFICIAL:
            return deny(f"{actor.role.value} cannot {capability.value}")
        if project is not None and project.owner_id != actor.id:
            return deny("Only the owning official or an admin can do this")
        return ALLOW

    roles = ROLE_CAPABILITIES.get(capability, set())
    if actor.role in roles:
        return ALLOW
    return deny(f"{actor.role.value} cannot {capability.value}")


def require(actor: Actor | None, capability: Capability, project: Project | None = None) -> Actor:
    """
    Guard form of ``check``

    Raises:
        AuthenticationError: If there is no acting actor
        AuthorizationError: If the decision is a denial
    """
    if actor is None:
        raise AuthenticationError("Sign-in required")
    decision = check(actor, capability, project)
    if not decision:
        raise AuthorizationError(decision.reason, actor_id=actor.id, capability=capability.value)
    return actor
