"""
Read-side queries over the entity store

Everything here is a pure function of the store and the asking actor, so the
server, the HTTP layer and the client's local replica all answer the same
questions the same way.
"""

from collections import defaultdict
from typing import Any

from lifelines_core.bidding.models import Bid, BidStatus
from lifelines_core.bidding.scoring import rank_bids
from lifelines_core.kernel.errors import ConflictError
from lifelines_core.lifecycle.capabilities import Capability, can_view, check
from lifelines_core.lifecycle.models import Actor, Project, Role
from lifelines_core.resource.matching import MatchCandidate, MaterialNeed, match_resources
from lifelines_core.store.entity_store import SNAPSHOT_FORMAT, EntityStore


def visible_projects(store: EntityStore, actor: Actor | None) -> list[Project]:
    """Projects the actor may see, newest first"""
    projects = [p for p in store.select("projects") if can_view(actor, p)]
    return sorted(projects, key=lambda p: p.created_at, reverse=True)


def bids_visible_to(store: EntityStore, actor: Actor | None, project: Project) -> list[Bid]:
    """
    Bids on a project, best first

    Owner officials and admins see the whole cohort; a contractor sees only
    their own bids; everyone else sees none.
    """
    bids = store.bids_for_project(project.id)
    if actor is None:
        return []
    if check(actor, Capability.AWARD, project):
        return rank_bids(bids, [b.score for b in bids])
    if actor.role == Role.CONTRACTOR:
        own = [b for b in bids if b.contractor_id == actor.id]
        return rank_bids(own, [b.score for b in own])
    return []


def project_detail(store: EntityStore, actor: Actor | None, project: Project) -> dict[str, Any]:
    """Project with its latest report, plan history, visible bids and license"""
    report = store.latest_report(project.id)
    license_ = store.license_for_project(project.id)
    return {
        "project": project.model_dump(mode="json"),
        "latest_report": report.model_dump(mode="json") if report else None,
        "plans": [p.model_dump(mode="json") for p in store.plans_for_project(project.id)],
        "bids": [b.model_dump(mode="json") for b in bids_visible_to(store, actor, project)],
        "license": license_.model_dump(mode="json") if license_ else None,
        "reserved_resources": [
            r.model_dump(mode="json") for r in store.resources_reserved_for(project.id)
        ],
    }


def matches_for_project(store: EntityStore, project: Project) -> list[MatchCandidate]:
    """
    Match the latest plan's materials against the inventory

    Raises:
        ConflictError: If the project has no plan yet
    """
    plan = store.latest_plan(project.id)
    if plan is None:
        raise ConflictError(f"Project {project.id} has no plan to match against")
    needs = [MaterialNeed(type=m.type, quantity=m.quantity, unit=m.unit) for m in plan.materials]
    return match_resources(project.id, project.location, needs, store.select("resources"))


def snapshot_for(
    store: EntityStore, actor: Actor | None, audit_limit: int | None = None
) -> dict[str, Any]:
    """
    Role-filtered copy of the store in ``EntityStore.to_snapshot`` format

    Admins get everything. Other actors get the projects they can see and
    the records hanging off them, their own actor record plus the owners of
    visible projects, the whole resource inventory, and bids filtered by
    ``bids_visible_to``. Audit records are included for roles holding
    VIEW_AUDIT, trimmed to the newest ``audit_limit``.
    """
    if actor is not None and actor.role == Role.ADMIN:
        return store.to_snapshot(audit_limit=audit_limit)

    projects = visible_projects(store, actor)
    project_ids = {p.id for p in projects}
    actor_ids = {p.owner_id for p in projects}
    if actor is not None:
        actor_ids.add(actor.id)

    bids: list[Bid] = []
    for project in projects:
        bids.extend(bids_visible_to(store, actor, project))

    def dump(records: list) -> list[dict[str, Any]]:
        return [r.model_dump(mode="json") for r in records]

    snapshot: dict[str, Any] = {
        "format": SNAPSHOT_FORMAT,
        "actors": dump(store.select("actors", lambda a: a.id in actor_ids)),
        "projects": dump(projects),
        "reports": dump(store.select("reports", lambda r: r.project_id in project_ids)),
        "plans": dump(store.select("plans", lambda p: p.project_id in project_ids)),
        "resources": dump(store.select("resources")),
        "bids": dump(bids),
        "licenses": dump(store.select("licenses", lambda lic: lic.project_id in project_ids)),
        "audit": [],
    }
    if actor is not None and check(actor, Capability.VIEW_AUDIT):
        snapshot["audit"] = store.to_snapshot(audit_limit=audit_limit)["audit"]
    return snapshot


def public_snapshot(store: EntityStore) -> dict[str, Any]:
    """
    What an anonymous visitor sees: public projects, their plans and
    licenses, and no actors, bids or audit trail
    """
    snapshot = snapshot_for(store, None)
    snapshot["actors"] = []
    snapshot["resources"] = []
    return snapshot


def contractor_stats(store: EntityStore, contractor_id: str) -> dict[str, Any]:
    """Bid history summary for one contractor"""
    bids = store.select("bids", lambda b: b.contractor_id == contractor_id)
    awarded = [b for b in bids if b.status == BidStatus.AWARDED]
    rejected = [b for b in bids if b.status == BidStatus.REJECTED]
    licenses = store.select("licenses", lambda lic: lic.contractor_id == contractor_id)
    return {
        "contractor_id": contractor_id,
        "bids": len(bids),
        "awarded": len(awarded),
        "rejected": len(rejected),
        "pending": len(bids) - len(awarded) - len(rejected),
        "win_rate": round(len(awarded) / len(bids), 3) if bids else 0.0,
        "average_score": round(sum(b.score for b in bids) / len(bids), 3) if bids else 0.0,
        "licenses": len(licenses),
    }


def material_summary(store: EntityStore) -> list[dict[str, Any]]:
    """Inventory totals per material type and unit, sorted by type"""
    totals: dict[tuple[str, str], dict[str, Any]] = defaultdict(
        lambda: {"items": 0, "available": 0.0, "reserved": 0.0}
    )
    for resource in store.select("resources"):
        entry = totals[(resource.type, resource.unit)]
        entry["items"] += 1
        key = "reserved" if resource.is_reserved else "available"
        entry[key] += resource.quantity

    return [
        {"type": material, "unit": unit, **entry}
        for (material, unit), entry in sorted(totals.items())
    ]
