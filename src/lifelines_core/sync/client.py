"""
Lifelines client - the offline-capable API a presentation layer calls

Each write method only describes its operation as a Mutation; the
``@mutation`` decorator hands it to ``SyncEngine.execute``, which is the one
place that decides between remote, local-and-queue, and error. Reads are
answered from the local replica.
"""

from collections.abc import Callable
from functools import wraps
from typing import Any, ParamSpec

from lifelines_core.bidding.models import Bid
from lifelines_core.kernel.errors import AuthorizationError
from lifelines_core.lifecycle import commands, producers, queries
from lifelines_core.lifecycle.capabilities import Capability, check
from lifelines_core.lifecycle.commands import parse_command
from lifelines_core.lifecycle.models import (
    Actor,
    DamageReport,
    License,
    Plan,
    Project,
    Region,
    Severity,
    SustainabilityOptions,
)
from lifelines_core.resource.matching import MatchCandidate
from lifelines_core.resource.models import Resource
from lifelines_core.store.audit import AuditRecord
from lifelines_core.sync.engine import Mutation, Session, SyncEngine, SyncResult
from lifelines_core.sync.worker import SyncWorker

P = ParamSpec("P")


def mutation(func: Callable[P, Mutation]) -> Callable[P, SyncResult]:
    """Route a method's Mutation through the sync engine"""

    @wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> SyncResult:
        client = args[0]
        return client.engine.execute(func(*args, **kwargs))

    return wrapper


class LifelinesClient:
    """
    Example:
        >>> client = LifelinesClient(SyncEngine(RemoteClient(settings.api_base_url)))
        >>> client.login("official@example.com", "official123")
        >>> result = client.create_project({"title": "Library Rebuild", "location": {...}})
        >>> result.pending_sync   # True when the server was unreachable
    """

    def __init__(self, engine: SyncEngine) -> None:
        self.engine = engine
        self.worker: SyncWorker | None = None

    @property
    def service(self):
        return self.engine.service

    # ========================================================================
    # Session
    # ========================================================================

    def login(self, email: str, password: str) -> Session:
        return self.engine.login(email, password)

    def logout(self) -> None:
        self.engine.logout()

    def register(self, payload: commands.RegisterActor | dict[str, Any]) -> SyncResult:
        return self.engine.register(payload)

    @property
    def actor(self) -> Actor:
        return self.engine.current_actor()

    @mutation
    def update_region(self, region: Region | dict[str, Any]) -> Mutation:
        cmd = parse_command(commands.UpdateRegion, {"region": region})
        actor_id = self.engine.current_actor().id
        return Mutation(
            operation="update_region",
            method="PUT",
            path=f"/users/{actor_id}/region",
            payload=cmd.model_dump(mode="json"),
            apply_local=lambda actor: self.service.update_region(actor, actor_id, cmd),
            result_type=Actor,
        )

    # ========================================================================
    # Projects
    # ========================================================================

    @mutation
    def create_project(self, payload: commands.CreateProject | dict[str, Any]) -> Mutation:
        cmd = parse_command(commands.CreateProject, payload)
        return Mutation(
            operation="create",
            method="POST",
            path="/projects",
            payload=cmd.model_dump(mode="json"),
            apply_local=lambda actor: self.service.create_project(actor, cmd),
            result_type=Project,
            creates=True,
        )

    @mutation
    def update_project(
        self, project_id: str, payload: commands.UpdateProject | dict[str, Any]
    ) -> Mutation:
        cmd = parse_command(commands.UpdateProject, payload)
        return Mutation(
            operation="update",
            method="PUT",
            path=f"/projects/{project_id}",
            payload=cmd.model_dump(mode="json", exclude_unset=True),
            apply_local=lambda actor: self.service.update_project(actor, project_id, cmd),
            result_type=Project,
        )

    @mutation
    def publish(self, project_id: str) -> Mutation:
        return Mutation(
            operation="publish",
            method="POST",
            path=f"/projects/{project_id}/publish",
            apply_local=lambda actor: self.service.publish(actor, project_id),
            result_type=Project,
        )

    @mutation
    def add_community_input(
        self, project_id: str, payload: commands.AddCommunityInput | dict[str, Any]
    ) -> Mutation:
        cmd = parse_command(commands.AddCommunityInput, payload)
        return Mutation(
            operation="community_input",
            method="POST",
            path=f"/projects/{project_id}/community-input",
            payload=cmd.model_dump(mode="json"),
            apply_local=lambda actor: self.service.add_community_input(actor, project_id, cmd),
            result_type=Project,
        )

    @mutation
    def complete(self, project_id: str) -> Mutation:
        return Mutation(
            operation="complete",
            method="POST",
            path=f"/projects/{project_id}/complete",
            apply_local=lambda actor: self.service.complete(actor, project_id),
            result_type=Project,
        )

    @mutation
    def delete_project(self, project_id: str) -> Mutation:
        return Mutation(
            operation="delete",
            method="DELETE",
            path=f"/projects/{project_id}",
            apply_local=lambda actor: self.service.delete_project(actor, project_id),
            result_type=Project,
        )

    # ========================================================================
    # Assessment & planning
    # ========================================================================

    @mutation
    def save_damage_report(
        self, project_id: str, payload: commands.SaveDamageReport | dict[str, Any]
    ) -> Mutation:
        cmd = parse_command(commands.SaveDamageReport, payload)
        return Mutation(
            operation="save_damage_report",
            method="POST",
            path=f"/projects/{project_id}/damage-report",
            payload=cmd.model_dump(mode="json"),
            apply_local=lambda actor: self.service.save_damage_report(actor, project_id, cmd),
            result_type=DamageReport,
            creates=True,
        )

    @mutation
    def save_plan(self, project_id: str, payload: commands.SavePlan | dict[str, Any]) -> Mutation:
        cmd = parse_command(commands.SavePlan, payload)
        return Mutation(
            operation="save_plan",
            method="POST",
            path=f"/projects/{project_id}/plan",
            payload=cmd.model_dump(mode="json"),
            apply_local=lambda actor: self.service.save_plan(actor, project_id, cmd),
            result_type=Plan,
            creates=True,
        )

    def assess_damage(
        self, project_id: str, image_count: int = 1, seed: int | str | None = None
    ) -> SyncResult:
        """Run the damage producer on the submitted images and save its report"""
        return self.save_damage_report(project_id, producers.assess_damage(image_count, seed))

    def generate_plan(
        self,
        project_id: str,
        options: SustainabilityOptions | dict[str, Any] | None = None,
        seed: int | str | None = None,
    ) -> SyncResult:
        """
        Run the plan producer and save the result as the next plan version

        The latest damage report's severity sizes the materials; without one
        the producer assumes Medium damage.
        """
        project = self.project(project_id)
        report = self.engine.store.latest_report(project_id)
        severity = report.severity if report else Severity.MEDIUM
        if isinstance(options, dict):
            options = SustainabilityOptions.model_validate(options)
        return self.save_plan(project_id, producers.generate_plan(project, severity, options, seed))

    # ========================================================================
    # Bidding & licensing
    # ========================================================================

    @mutation
    def submit_bid(self, project_id: str, payload: commands.SubmitBid | dict[str, Any]) -> Mutation:
        cmd = parse_command(commands.SubmitBid, payload)
        return Mutation(
            operation="submit_bid",
            method="POST",
            path=f"/projects/{project_id}/bids",
            payload=cmd.model_dump(mode="json"),
            apply_local=lambda actor: self.service.submit_bid(actor, project_id, cmd),
            result_type=Bid,
            creates=True,
        )

    @mutation
    def award(self, project_id: str, bid_id: str) -> Mutation:
        cmd = parse_command(commands.AwardBid, {"bid_id": bid_id})
        return Mutation(
            operation="award",
            method="POST",
            path=f"/projects/{project_id}/award",
            payload=cmd.model_dump(mode="json"),
            apply_local=lambda actor: self.service.award(actor, project_id, cmd),
            result_type=Project,
        )

    @mutation
    def issue_license(
        self, project_id: str, payload: commands.IssueLicense | dict[str, Any] | None = None
    ) -> Mutation:
        cmd = parse_command(commands.IssueLicense, payload or {})
        return Mutation(
            operation="issue_license",
            method="POST",
            path=f"/projects/{project_id}/license",
            payload=cmd.model_dump(mode="json", exclude_none=True),
            apply_local=lambda actor: self.service.issue_license(actor, project_id, cmd),
            result_type=License,
            creates=True,
        )

    # ========================================================================
    # Resources
    # ========================================================================

    @mutation
    def register_resource(self, payload: commands.RegisterResource | dict[str, Any]) -> Mutation:
        cmd = parse_command(commands.RegisterResource, payload)
        return Mutation(
            operation="register_resource",
            method="POST",
            path="/resources",
            payload=cmd.model_dump(mode="json"),
            apply_local=lambda actor: self.service.register_resource(actor, cmd),
            result_type=Resource,
            creates=True,
        )

    @mutation
    def reserve_resource(self, resource_id: str, project_id: str) -> Mutation:
        cmd = parse_command(commands.ReserveResource, {"project_id": project_id})
        return Mutation(
            operation="reserve",
            method="POST",
            path=f"/resources/{resource_id}/reserve",
            payload=cmd.model_dump(mode="json"),
            apply_local=lambda actor: self.service.reserve_resource(actor, resource_id, cmd),
            result_type=Resource,
        )

    @mutation
    def release_resource(self, resource_id: str) -> Mutation:
        return Mutation(
            operation="release",
            method="POST",
            path=f"/resources/{resource_id}/release",
            apply_local=lambda actor: self.service.release_resource(actor, resource_id),
            result_type=Resource,
        )

    # ========================================================================
    # Local reads
    # ========================================================================

    def projects(self) -> list[Project]:
        return queries.visible_projects(self.engine.store, self.engine.current_actor())

    def project(self, project_id: str) -> Project:
        return self.service.get_project(self.engine.current_actor(), project_id)

    def bids(self, project_id: str) -> list[Bid]:
        actor = self.engine.current_actor()
        return queries.bids_visible_to(
            self.engine.store, actor, self.service.get_project(actor, project_id)
        )

    def matches(self, project_id: str) -> list[MatchCandidate]:
        project = self.service.get_project(self.engine.current_actor(), project_id)
        return queries.matches_for_project(self.engine.store, project)

    def audit(self, limit: int = 50, entity_id: str | None = None) -> list[AuditRecord]:
        actor = self.engine.current_actor()
        decision = check(actor, Capability.VIEW_AUDIT)
        if not decision:
            raise AuthorizationError(decision.reason, actor_id=actor.id)
        return self.engine.ledger.latest(limit, entity_id=entity_id)

    def material_summary(self) -> list[dict[str, Any]]:
        return queries.material_summary(self.engine.store)

    # ========================================================================
    # Sync controls
    # ========================================================================

    def drain(self):
        return self.engine.drain()

    def probe(self) -> bool:
        return self.engine.probe()

    def start_background_sync(self, interval: float | None = None) -> SyncWorker:
        """
        Probe and drain on a daemon thread

        Args:
            interval: Seconds between passes (None = LIFELINES_DRAIN_INTERVAL_SECONDS)
        """
        if self.worker is None or not self.worker.running:
            self.worker = SyncWorker(self.engine, interval)
            self.worker.start()
        return self.worker

    def stop_background_sync(self, timeout: float | None = None) -> None:
        if self.worker is not None:
            self.worker.stop(timeout)
            self.worker = None

    def status(self) -> dict[str, Any]:
        return self.engine.status()

    def export_pack(self) -> dict[str, Any]:
        return self.engine.export_pack()

    def import_pack(self, pack: dict[str, Any]) -> None:
        self.engine.import_pack(pack)
