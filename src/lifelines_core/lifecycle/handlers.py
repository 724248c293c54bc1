"""
Lifecycle Service - validated, atomic, audited state changes

Every public method here is one lifecycle operation. Each takes the acting
Actor as its first argument (there is no ambient "current user"), runs inside
a single entity-store transaction, and ends with exactly one audit record.
Replays that change nothing (awarding the same bid twice, releasing a free
resource) return the current state and write no audit record.

The same service runs on the server, where it is the source of truth, and on
a client's local replica with ``provisional=True``, where everything it
writes is marked ``pending_sync`` until the server's copy replaces it.

Fun fact: the Draft → Published → Awarded → Licensed → Completed chain mirrors
the public works procedure in most civil-law countries, minus the stamps.
"""

from typing import Any

from lifelines_core.bidding.models import Bid, BidStatus
from lifelines_core.bidding.scoring import rescore_cohort
from lifelines_core.kernel.errors import (
    AuthorizationError,
    ConflictError,
    DuplicateIdentity,
    ResourceAlreadyReserved,
)
from lifelines_core.kernel.ids import IdFactory, default_id_factory, generate_license_id
from lifelines_core.kernel.logging import get_logger
from lifelines_core.kernel.metrics import bids_scored_total, track_operation
from lifelines_core.kernel.records import Record
from lifelines_core.kernel.time import TimeProvider
from lifelines_core.lifecycle import commands, invariants
from lifelines_core.lifecycle.capabilities import Capability, can_view, require
from lifelines_core.lifecycle.commands import parse_command
from lifelines_core.lifecycle.models import (
    Actor,
    CommunityInput,
    DamageReport,
    License,
    Plan,
    Project,
    ProjectStatus,
    Role,
    Visibility,
)
from lifelines_core.resource.models import Resource, ResourceStatus
from lifelines_core.store.audit import AuditLedger
from lifelines_core.store.entity_store import EntityStore

logger = get_logger(__name__)


class LifecycleService:
    """
    Lifecycle operations over one entity store and audit ledger

    Example:
        >>> service = LifecycleService(store, ledger, time_provider)
        >>> project = service.create_project(official, {"title": "Library Rebuild", ...})
        >>> service.publish(official, project.id).status
        <ProjectStatus.PUBLISHED: 'Published'>
    """

    def __init__(
        self,
        store: EntityStore,
        ledger: AuditLedger,
        time_provider: TimeProvider,
        id_factory: IdFactory = default_id_factory,
        provisional: bool = False,
    ) -> None:
        """
        Args:
            store: Entity store to mutate
            ledger: Audit ledger over the same store
            time_provider: Source of every timestamp
            id_factory: Source of new entity ids
            provisional: Mark written records as pending sync (client replica)
        """
        self.store = store
        self.ledger = ledger
        self.time_provider = time_provider
        self.id_factory = id_factory
        self.provisional = provisional

    def _stamp(self, record: Record) -> Any:
        if self.provisional and not record.pending_sync:
            return record.evolve(pending_sync=True)
        return record

    def _put(self, collection: str, record: Record) -> Any:
        return self.store.put(collection, self._stamp(record))

    def _project(self, project_id: str) -> Project:
        return self.store.require("projects", project_id)

    def _audit(self, entity_type: str, entity_id: str, action: str, actor: Actor | None, **details: Any) -> None:
        if self.provisional:
            details["provisional"] = True
        self.ledger.record(entity_type, entity_id, action, actor.id if actor else None, details)

    # ========================================================================
    # Actors
    # ========================================================================

    @track_operation("register")
    def register_actor(
        self, payload: commands.RegisterActor | dict, actor_id: str | None = None
    ) -> Actor:
        """
        Create an actor from a self-registration

        Args:
            payload: RegisterActor (the password is the credential registry's concern)
            actor_id: Use this id instead of minting one (local replay of a server id)

        Raises:
            DuplicateIdentity: If the email already belongs to an actor
        """
        cmd = parse_command(commands.RegisterActor, payload)
        with self.store.transaction():
            if self.store.actor_by_email(cmd.email):
                raise DuplicateIdentity(cmd.email)
            actor = self._put(
                "actors",
                Actor(
                    id=actor_id or self.id_factory.generate("user"),
                    name=cmd.name,
                    email=cmd.email,
                    role=cmd.role,
                    region=cmd.region,
                    created_at=self.time_provider.now(),
                ),
            )
            self._audit("actor", actor.id, "register", actor, role=actor.role.value)
        return actor

    @track_operation("update_region")
    def update_region(
        self, ctx: Actor, actor_id: str, payload: commands.UpdateRegion | dict
    ) -> Actor:
        """Change an actor's region (self, or any actor for an admin)"""
        cmd = parse_command(commands.UpdateRegion, payload)
        if ctx.id != actor_id and ctx.role != Role.ADMIN:
            raise AuthorizationError("Only the actor or an admin can change a region", actor_id=ctx.id)
        with self.store.transaction():
            actor = self.store.require("actors", actor_id)
            updated = self._put("actors", actor.evolve(region=cmd.region))
            self._audit("actor", actor_id, "update_region", ctx, region=cmd.region.id)
        return updated

    # ========================================================================
    # Projects
    # ========================================================================

    @track_operation("create")
    def create_project(self, ctx: Actor, payload: commands.CreateProject | dict) -> Project:
        """Create a Draft project owned by the caller"""
        cmd = parse_command(commands.CreateProject, payload)
        require(ctx, Capability.CREATE_PROJECT)
        now = self.time_provider.now()
        location = cmd.location
        if not location.region:
            location = location.model_copy(update={"region": ctx.region.id})

        with self.store.transaction():
            project = self._put(
                "projects",
                Project(
                    id=self.id_factory.generate("proj"),
                    title=cmd.title,
                    description=cmd.description,
                    location=location,
                    visibility=cmd.visibility,
                    community_feedback_enabled=cmd.community_feedback_enabled,
                    images=cmd.images,
                    owner_id=ctx.id,
                    created_at=now,
                    updated_at=now,
                ),
            )
            self._audit("project", project.id, "create", ctx, title=project.title)

        logger.info("Project created", project_id=project.id, owner_id=ctx.id)
        return project

    @track_operation("update")
    def update_project(
        self, ctx: Actor, project_id: str, payload: commands.UpdateProject | dict
    ) -> Project:
        """Edit descriptive fields; status only moves through transitions"""
        cmd = parse_command(commands.UpdateProject, payload)
        with self.store.transaction():
            project = self._project(project_id)
            require(ctx, Capability.EDIT_PROJECT, project)
            invariants.check_editable(project)
            changes = cmd.changes()
            if not changes:
                return project
            updated = self._put(
                "projects", project.evolve(**changes, updated_at=self.time_provider.now())
            )
            self._audit("project", project_id, "update", ctx, fields=sorted(changes))
        return updated

    @track_operation("community_input")
    def add_community_input(
        self, ctx: Actor, project_id: str, payload: commands.AddCommunityInput | dict
    ) -> Project:
        """Append a resident's comment to a public, feedback-enabled project"""
        cmd = parse_command(commands.AddCommunityInput, payload)
        with self.store.transaction():
            project = self._project(project_id)
            require(ctx, Capability.COMMUNITY_INPUT, project)
            invariants.check_accepts_feedback(project)
            now = self.time_provider.now()
            entry = CommunityInput(
                id=self.id_factory.generate("ci"),
                author_id=ctx.id,
                comment=cmd.comment,
                approval_signal=cmd.approval_signal,
                created_at=now,
            )
            updated = self._put(
                "projects",
                project.evolve(community_inputs=(*project.community_inputs, entry), updated_at=now),
            )
            self._audit(
                "project", project_id, "community_input", ctx,
                input_id=entry.id, approval_signal=entry.approval_signal,
            )
        return updated

    @track_operation("publish")
    def publish(self, ctx: Actor, project_id: str) -> Project:
        """Draft → Published; the project becomes public"""
        with self.store.transaction():
            project = self._project(project_id)
            require(ctx, Capability.PUBLISH, project)
            invariants.check_transition(project, ProjectStatus.PUBLISHED)
            updated = self._put(
                "projects",
                project.evolve(
                    status=ProjectStatus.PUBLISHED,
                    visibility=Visibility.PUBLIC,
                    updated_at=self.time_provider.now(),
                ),
            )
            self._audit("project", project_id, "publish", ctx)

        logger.info("Project published", project_id=project_id)
        return updated

    @track_operation("complete")
    def complete(self, ctx: Actor, project_id: str) -> Project:
        """Licensed → Completed (terminal)"""
        with self.store.transaction():
            project = self._project(project_id)
            require(ctx, Capability.COMPLETE, project)
            invariants.check_transition(project, ProjectStatus.COMPLETED)
            updated = self._put(
                "projects",
                project.evolve(status=ProjectStatus.COMPLETED, updated_at=self.time_provider.now()),
            )
            self._audit("project", project_id, "complete", ctx)
        return updated

    @track_operation("delete")
    def delete_project(self, ctx: Actor, project_id: str) -> Project:
        """
        Remove a project in any state, with everything that hangs off it

        Reports, plans, bids and the license are deleted; resources reserved
        for the project are released.
        """
        with self.store.transaction():
            project = self._project(project_id)
            require(ctx, Capability.DELETE_PROJECT, project)

            removed: dict[str, int] = {}
            for collection, records in (
                ("reports", self.store.reports_for_project(project_id)),
                ("plans", self.store.plans_for_project(project_id)),
                ("bids", self.store.bids_for_project(project_id)),
            ):
                for record in records:
                    self.store.delete(collection, record.id)
                removed[collection] = len(records)

            license_ = self.store.license_for_project(project_id)
            if license_:
                self.store.delete("licenses", license_.id)
            removed["licenses"] = 1 if license_ else 0

            released = self.store.resources_reserved_for(project_id)
            for resource in released:
                self._put(
                    "resources",
                    resource.evolve(reserved_for_project_id=None, status=ResourceStatus.CERTIFIED),
                )

            self.store.delete("projects", project_id)
            self._audit(
                "project", project_id, "delete", ctx,
                title=project.title, removed=removed, released=[r.id for r in released],
            )

        logger.info("Project deleted", project_id=project_id, removed=removed)
        return project

    # ========================================================================
    # Assessment & planning
    # ========================================================================

    @track_operation("save_damage_report")
    def save_damage_report(
        self, ctx: Actor, project_id: str, payload: commands.SaveDamageReport | dict
    ) -> DamageReport:
        """Store a new report; it supersedes earlier ones by recency"""
        cmd = parse_command(commands.SaveDamageReport, payload)
        with self.store.transaction():
            project = self._project(project_id)
            require(ctx, Capability.SAVE_DAMAGE_REPORT, project)
            invariants.check_editable(project)
            report = self._put(
                "reports",
                DamageReport(
                    id=self.id_factory.generate("dr"),
                    project_id=project_id,
                    created_by=ctx.id,
                    created_at=self.time_provider.now(),
                    **cmd.model_dump(),
                ),
            )
            self._audit(
                "damage_report", report.id, "save_damage_report", ctx,
                project_id=project_id, severity=report.severity.value,
            )
        return report

    @track_operation("save_plan")
    def save_plan(self, ctx: Actor, project_id: str, payload: commands.SavePlan | dict) -> Plan:
        """Store the next plan version (max existing + 1)"""
        cmd = parse_command(commands.SavePlan, payload)
        with self.store.transaction():
            project = self._project(project_id)
            require(ctx, Capability.SAVE_PLAN, project)
            invariants.check_editable(project)
            version = invariants.next_plan_version(self.store.plans_for_project(project_id))
            content = cmd.model_dump(exclude={"version"})
            plan = self._put(
                "plans",
                Plan(
                    id=self.id_factory.generate("plan"),
                    project_id=project_id,
                    version=version,
                    created_by=ctx.id,
                    created_at=self.time_provider.now(),
                    **content,
                ),
            )
            self._audit("plan", plan.id, "save_plan", ctx, project_id=project_id, version=version)
        return plan

    # ========================================================================
    # Bidding, award, license
    # ========================================================================

    @track_operation("submit_bid")
    def submit_bid(self, ctx: Actor, project_id: str, payload: commands.SubmitBid | dict) -> Bid:
        """
        Attach a bid to a Published project and rescore the whole cohort

        Every bid's score is recomputed against the new cohort baselines, so
        earlier bids can move.
        """
        cmd = parse_command(commands.SubmitBid, payload)
        with self.store.transaction():
            project = self._project(project_id)
            require(ctx, Capability.SUBMIT_BID, project)
            invariants.check_accepts_bids(project)

            bid = Bid(
                id=self.id_factory.generate("bid"),
                project_id=project_id,
                contractor_id=ctx.id,
                created_at=self.time_provider.now(),
                **cmd.model_dump(),
            )
            cohort = [*self.store.bids_for_project(project_id), bid]
            scores = rescore_cohort(cohort)
            for member, score in zip(cohort, scores):
                if member.id == bid.id:
                    bid = self._put("bids", member.evolve(score=score))
                elif member.score != score:
                    self._put("bids", member.evolve(score=score))
            bids_scored_total.inc(len(cohort))

            self._audit(
                "bid", bid.id, "submit_bid", ctx,
                project_id=project_id, cost=bid.cost, score=bid.score, cohort_size=len(cohort),
            )
        return bid

    @track_operation("award")
    def award(self, ctx: Actor, project_id: str, payload: commands.AwardBid | dict | str) -> Project:
        """
        Published → Awarded

        The chosen bid becomes Awarded and every other bid on the project
        becomes Rejected. Replaying the same award is a no-op.
        """
        if isinstance(payload, str):
            payload = {"bid_id": payload}
        cmd = parse_command(commands.AwardBid, payload)

        with self.store.transaction():
            project = self._project(project_id)
            require(ctx, Capability.AWARD, project)
            bid = self.store.require("bids", cmd.bid_id)
            invariants.check_bid_in_project(bid, project)

            if project.status == ProjectStatus.AWARDED and bid.status == BidStatus.AWARDED:
                return project
            invariants.check_transition(project, ProjectStatus.AWARDED)

            rejected = []
            for other in self.store.bids_for_project(project_id):
                status = BidStatus.AWARDED if other.id == bid.id else BidStatus.REJECTED
                if other.id != bid.id:
                    rejected.append(other.id)
                self._put("bids", other.evolve(status=status))
            invariants.check_single_award(self.store.bids_for_project(project_id))

            updated = self._put(
                "projects",
                project.evolve(status=ProjectStatus.AWARDED, updated_at=self.time_provider.now()),
            )
            self._audit(
                "project", project_id, "award", ctx,
                bid_id=bid.id, contractor_id=bid.contractor_id, rejected=rejected,
            )

        logger.info("Bid awarded", project_id=project_id, bid_id=bid.id)
        return updated

    @track_operation("issue_license")
    def issue_license(
        self, ctx: Actor, project_id: str, payload: commands.IssueLicense | dict | None = None
    ) -> License:
        """
        Awarded → Licensed, producing an immutable license for the awarded contractor

        Replaying on an already licensed project returns the existing license.
        """
        cmd = parse_command(commands.IssueLicense, payload or {})
        with self.store.transaction():
            project = self._project(project_id)
            require(ctx, Capability.ISSUE_LICENSE, project)

            existing = self.store.license_for_project(project_id)
            if existing and project.status in (ProjectStatus.LICENSED, ProjectStatus.COMPLETED):
                return existing
            invariants.check_transition(project, ProjectStatus.LICENSED)
            if existing:
                raise ConflictError(f"Project {project_id} already has license {existing.id}")

            awarded = invariants.find_awarded_bid(project, self.store.bids_for_project(project_id))
            if cmd.contractor_id and cmd.contractor_id != awarded.contractor_id:
                raise ConflictError(
                    f"License must go to the awarded contractor {awarded.contractor_id}"
                )

            now = self.time_provider.now()
            valid_from = cmd.valid_from or now.date()
            valid_to = cmd.valid_to or valid_from
            invariants.check_license_window(valid_from, valid_to)

            license_id = generate_license_id()
            while self.store.get("licenses", license_id) is not None:
                license_id = generate_license_id()

            license_ = self._put(
                "licenses",
                License(
                    id=license_id,
                    project_id=project_id,
                    contractor_id=awarded.contractor_id,
                    bid_id=awarded.id,
                    valid_from=valid_from,
                    valid_to=valid_to,
                    conditions=cmd.conditions,
                    issued_by=ctx.id,
                    issued_at=now,
                ),
            )
            self._put("projects", project.evolve(status=ProjectStatus.LICENSED, updated_at=now))
            self._audit(
                "project", project_id, "issue_license", ctx,
                license_id=license_id, contractor_id=awarded.contractor_id,
            )

        logger.info("License issued", project_id=project_id, license_id=license_id)
        return license_

    # ========================================================================
    # Resources
    # ========================================================================

    @track_operation("register_resource")
    def register_resource(self, ctx: Actor, payload: commands.RegisterResource | dict) -> Resource:
        """Add an inventory item"""
        cmd = parse_command(commands.RegisterResource, payload)
        require(ctx, Capability.MANAGE_RESOURCES)
        with self.store.transaction():
            if cmd.source_project_id:
                self._project(cmd.source_project_id)
            resource = self._put(
                "resources",
                Resource(
                    id=self.id_factory.generate("res"),
                    created_at=self.time_provider.now(),
                    **cmd.model_dump(),
                ),
            )
            self._audit(
                "resource", resource.id, "register_resource", ctx,
                type=resource.type, quantity=resource.quantity,
            )
        return resource

    @track_operation("reserve")
    def reserve_resource(
        self, ctx: Actor, resource_id: str, payload: commands.ReserveResource | dict | str
    ) -> Resource:
        """
        Claim a resource for one project

        Check-then-set runs under the store lock, so two projects can never
        both observe the resource as free.

        Raises:
            ResourceAlreadyReserved: If another project holds it
        """
        if isinstance(payload, str):
            payload = {"project_id": payload}
        cmd = parse_command(commands.ReserveResource, payload)
        require(ctx, Capability.MANAGE_RESOURCES)

        with self.store.transaction():
            project = self._project(cmd.project_id)
            resource = self.store.require("resources", resource_id)
            if resource.reserved_for_project_id == project.id:
                return resource
            if resource.reserved_for_project_id is not None:
                raise ResourceAlreadyReserved(resource_id, resource.reserved_for_project_id)
            updated = self._put(
                "resources",
                resource.evolve(reserved_for_project_id=project.id, status=ResourceStatus.ALLOCATED),
            )
            self._audit("resource", resource_id, "reserve", ctx, project_id=project.id)
        return updated

    @track_operation("release")
    def release_resource(self, ctx: Actor, resource_id: str) -> Resource:
        """Clear a reservation; releasing a free resource is a no-op"""
        require(ctx, Capability.MANAGE_RESOURCES)
        with self.store.transaction():
            resource = self.store.require("resources", resource_id)
            if resource.reserved_for_project_id is None:
                return resource
            previous = resource.reserved_for_project_id
            updated = self._put(
                "resources",
                resource.evolve(reserved_for_project_id=None, status=ResourceStatus.CERTIFIED),
            )
            self._audit("resource", resource_id, "release", ctx, project_id=previous)
        return updated

    # ========================================================================
    # Guarded reads
    # ========================================================================

    def get_project(self, ctx: Actor | None, project_id: str) -> Project:
        """
        Raises:
            EntityNotFound: If missing
            AuthorizationError: If the caller may not see it
        """
        project = self._project(project_id)
        decision = can_view(ctx, project)
        if not decision:
            raise AuthorizationError(decision.reason, actor_id=ctx.id if ctx else None)
        return project
