"""
Lifelines - server-side façade

The source of truth. One object owns the entity store, the audit ledger, the
lifecycle service, the credential registry and the session table, and every
call runs under a single lock so no request observes another's partial
effect. With a database path, state survives restarts: the entity store is
saved as a snapshot blob after each write and the audit trail goes to an
append-only SQLite table.

Example:
    >>> from lifelines_core import Lifelines
    >>> lifelines = Lifelines("lifelines.db")
    >>> token, official = lifelines.login("official@example.com", "official123")
    >>> project = lifelines.create_project(official, {"title": "Library Rebuild", ...})
    >>> lifelines.publish(official, project.id).status
    <ProjectStatus.PUBLISHED: 'Published'>
"""

import threading
from collections import OrderedDict
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

from lifelines_core.bidding.models import Bid
from lifelines_core.kernel.errors import (
    AuthenticationError,
    AuthorizationError,
    DuplicateIdentity,
    LifelinesError,
    StorageError,
    TransientError,
)
from lifelines_core.kernel.ids import IdFactory, default_id_factory, generate_token
from lifelines_core.kernel.logging import LogOperation, get_logger
from lifelines_core.kernel.metrics import snapshot_save_failures_total
from lifelines_core.kernel.settings import LifelinesSettings, get_settings
from lifelines_core.kernel.snapshot_store import SQLiteSnapshotStore
from lifelines_core.kernel.time import RealTimeProvider, TimeProvider
from lifelines_core.lifecycle import commands, queries
from lifelines_core.lifecycle.capabilities import Capability, require
from lifelines_core.lifecycle.credentials import CredentialRegistry
from lifelines_core.lifecycle.handlers import LifecycleService
from lifelines_core.lifecycle.models import Actor, DamageReport, License, Plan, Project, Role
from lifelines_core.lifecycle.seed import seed_credentials, seed_store
from lifelines_core.resource.matching import MatchCandidate
from lifelines_core.resource.models import Resource
from lifelines_core.store.audit import AuditLedger, AuditPage, SQLiteAuditSink
from lifelines_core.store.entity_store import EntityStore

logger = get_logger(__name__)

T = TypeVar("T")

ENTITIES_SNAPSHOT = "entities"
AUTH_SNAPSHOT = "auth"
IDEMPOTENCY_SNAPSHOT = "idempotency"
IDEMPOTENCY_CACHE_SIZE = 1000


class Lifelines:
    """
    Lifelines main façade

    Provides one method per lifecycle operation (each taking the acting
    Actor), token sessions, role-filtered reads, idempotent replay of client
    writes and an admin reset.
    """

    def __init__(
        self,
        db_path: str | Path | None = None,
        time_provider: TimeProvider | None = None,
        settings: LifelinesSettings | None = None,
        id_factory: IdFactory = default_id_factory,
        seed: bool | None = None,
    ) -> None:
        """
        Initialize the server state

        Args:
            db_path: SQLite file for snapshots and audit (None = settings, then memory only)
            time_provider: Time provider (uses real time if None)
            settings: Runtime settings (uses environment if None)
            id_factory: Source of entity ids
            seed: Load demo data into an empty store (None = settings.seed_demo_data)
        """
        self.settings = settings or get_settings()
        self.time_provider = time_provider or RealTimeProvider()
        db_path = db_path if db_path is not None else self.settings.db_path
        self.db_path = Path(db_path) if db_path else None

        self.snapshot_store = SQLiteSnapshotStore(self.db_path) if self.db_path else None
        sink = SQLiteAuditSink(self.db_path) if self.db_path else None

        self.store = EntityStore()
        self.ledger = AuditLedger(
            self.store,
            self.time_provider,
            sink=sink,
            memory_limit=self.settings.audit_memory_limit if sink else None,
            id_factory=id_factory,
        )
        self.service = LifecycleService(self.store, self.ledger, self.time_provider, id_factory)
        self.credentials = CredentialRegistry()
        self._sessions: dict[str, str] = {}
        self._idempotency: OrderedDict[str, dict[str, Any]] = OrderedDict()
        self.lock = threading.RLock()
        self.persist_pending = False

        loaded = self._load()
        if not loaded and (self.settings.seed_demo_data if seed is None else seed):
            self.seed()

    # ========================================================================
    # Persistence
    # ========================================================================

    def _load(self) -> bool:
        """Restore state from the snapshot store; False if there was none"""
        if self.snapshot_store is None:
            return False
        entities = self.snapshot_store.load_state(ENTITIES_SNAPSHOT)
        if entities is None:
            return False

        self.store.load_snapshot(entities, keep_audit=True)
        self.ledger.load_from_sink()
        auth = self.snapshot_store.load_state(AUTH_SNAPSHOT) or {}
        self.credentials.load(auth.get("credentials", []))
        self._sessions = dict(auth.get("sessions", {}))
        cached = self.snapshot_store.load_state(IDEMPOTENCY_SNAPSHOT) or {}
        self._idempotency = OrderedDict(cached.get("entries", {}))
        logger.info(
            "State restored",
            db_path=str(self.db_path),
            projects=self.store.count("projects"),
            audit_in_memory=len(self.store.audit),
        )
        return True

    def persist(self) -> None:
        """Save entities, credentials, sessions and the idempotency cache"""
        if self.snapshot_store is None:
            return
        with self.lock:
            self.snapshot_store.save(ENTITIES_SNAPSHOT, self.store.to_snapshot(include_audit=False))
            self.snapshot_store.save(
                AUTH_SNAPSHOT,
                {"credentials": self.credentials.to_list(), "sessions": self._sessions},
            )
            self.snapshot_store.save(IDEMPOTENCY_SNAPSHOT, {"entries": dict(self._idempotency)})
        self.ledger.flush()

    def _save(self) -> bool:
        """
        Persist after a change that is already applied in memory

        A failed save is logged and retried by the next one; it never turns
        an applied change into an error response.
        """
        try:
            self.persist()
        except StorageError as e:
            snapshot_save_failures_total.inc()
            self.persist_pending = True
            logger.warning("State snapshot save failed, will retry on next change", error=str(e))
            return False
        self.persist_pending = False
        return True

    def _mutate(self, operation: Callable[..., T], *args: Any) -> T:
        with self.lock:
            result = operation(*args)
            self._save()
        return result

    def seed(self) -> None:
        """Load the demo identities and dataset"""
        with self.lock:
            seed_store(self.store, self.ledger, self.time_provider)
            seed_credentials(self.credentials)
            self.persist()
        logger.info("Demo data loaded", actors=self.store.count("actors"))

    def reset(self, actor: Actor) -> None:
        """
        Admin reset: wipe every entity and reload the demo dataset

        The audit trail is append-only and keeps its history.
        """
        require(actor, Capability.ADMINISTER)
        with self.lock, LogOperation(logger, "reset", actor_id=actor.id):
            self.store.clear(keep_audit=True)
            self.credentials.clear()
            self._idempotency.clear()
            self._sessions = {
                token: actor_id for token, actor_id in self._sessions.items() if actor_id == actor.id
            }
            seed_store(self.store, self.ledger, self.time_provider, actor.id, "reset")
            seed_credentials(self.credentials)
            self._save()

    # ========================================================================
    # Sessions
    # ========================================================================

    def login(self, email: str, password: str) -> tuple[str, Actor]:
        """
        Returns:
            (session token, actor)

        Raises:
            AuthenticationError: If the email/password pair is unknown
        """
        cmd = commands.parse_command(commands.Login, {"email": email, "password": password})
        with self.lock:
            actor_id = self.credentials.verify(cmd.email, cmd.password)
            actor = self.store.get("actors", actor_id) if actor_id else None
            if actor is None:
                raise AuthenticationError("Invalid credentials")
            token = generate_token()
            self._sessions[token] = actor.id
            self._save()
        logger.info("Signed in", actor_id=actor.id, role=actor.role.value)
        return token, actor

    def register(self, payload: commands.RegisterActor | dict[str, Any]) -> tuple[str, Actor]:
        """Self-registration followed by sign-in"""
        cmd = commands.parse_command(commands.RegisterActor, payload)
        with self.lock:
            if self.credentials.knows(cmd.email):
                raise DuplicateIdentity(cmd.email)
            actor = self.service.register_actor(cmd)
            self.credentials.register(actor.id, cmd.email, cmd.password)
            token = generate_token()
            self._sessions[token] = actor.id
            self._save()
        return token, actor

    def logout(self, token: str) -> None:
        with self.lock:
            self._sessions.pop(token, None)
            self._save()

    def authenticate(self, token: str | None) -> Actor:
        """
        Resolve a session token

        Raises:
            AuthenticationError: If the token is missing or unknown
        """
        if not token:
            raise AuthenticationError("Sign-in required")
        with self.lock:
            actor_id = self._sessions.get(token)
            actor = self.store.get("actors", actor_id) if actor_id else None
        if actor is None:
            raise AuthenticationError("Session expired or unknown")
        return actor

    # ========================================================================
    # Idempotent replay
    # ========================================================================

    def idempotent(self, key: str | None, call: Callable[[], tuple[int, Any]]) -> tuple[int, Any]:
        """
        Run ``call`` once per idempotency key

        Successful responses and final rejections are cached and replayed for
        a retried key; transient failures are not, so the retry runs again.

        Returns:
            (HTTP status, JSON body)
        """
        with self.lock:
            if key and key in self._idempotency:
                cached = self._idempotency[key]
                logger.debug("Replaying idempotent response", key=key)
                return cached["status"], cached["body"]
            try:
                status, body = call()
            except (TransientError, StorageError):
                raise
            except LifelinesError as e:
                status, body = e.http_status, e.to_payload()
                if key:
                    self._remember(key, status, body)
                raise
            if key:
                self._remember(key, status, body)
            return status, body

    def _remember(self, key: str, status: int, body: Any) -> None:
        self._idempotency[key] = {"status": status, "body": body}
        while len(self._idempotency) > IDEMPOTENCY_CACHE_SIZE:
            self._idempotency.popitem(last=False)
        self._save()

    # ========================================================================
    # Actors
    # ========================================================================

    def update_region(self, actor: Actor, actor_id: str, payload: Any) -> Actor:
        return self._mutate(self.service.update_region, actor, actor_id, payload)

    # ========================================================================
    # Projects
    # ========================================================================

    def create_project(self, actor: Actor, payload: Any) -> Project:
        return self._mutate(self.service.create_project, actor, payload)

    def update_project(self, actor: Actor, project_id: str, payload: Any) -> Project:
        return self._mutate(self.service.update_project, actor, project_id, payload)

    def add_community_input(self, actor: Actor, project_id: str, payload: Any) -> Project:
        return self._mutate(self.service.add_community_input, actor, project_id, payload)

    def publish(self, actor: Actor, project_id: str) -> Project:
        return self._mutate(self.service.publish, actor, project_id)

    def complete(self, actor: Actor, project_id: str) -> Project:
        return self._mutate(self.service.complete, actor, project_id)

    def delete_project(self, actor: Actor, project_id: str) -> Project:
        return self._mutate(self.service.delete_project, actor, project_id)

    def save_damage_report(self, actor: Actor, project_id: str, payload: Any) -> DamageReport:
        return self._mutate(self.service.save_damage_report, actor, project_id, payload)

    def save_plan(self, actor: Actor, project_id: str, payload: Any) -> Plan:
        return self._mutate(self.service.save_plan, actor, project_id, payload)

    # ========================================================================
    # Bidding & licensing
    # ========================================================================

    def submit_bid(self, actor: Actor, project_id: str, payload: Any) -> Bid:
        return self._mutate(self.service.submit_bid, actor, project_id, payload)

    def award(self, actor: Actor, project_id: str, payload: Any) -> Project:
        return self._mutate(self.service.award, actor, project_id, payload)

    def issue_license(self, actor: Actor, project_id: str, payload: Any = None) -> License:
        return self._mutate(self.service.issue_license, actor, project_id, payload)

    # ========================================================================
    # Resources
    # ========================================================================

    def register_resource(self, actor: Actor, payload: Any) -> Resource:
        return self._mutate(self.service.register_resource, actor, payload)

    def reserve_resource(self, actor: Actor, resource_id: str, payload: Any) -> Resource:
        return self._mutate(self.service.reserve_resource, actor, resource_id, payload)

    def release_resource(self, actor: Actor, resource_id: str) -> Resource:
        return self._mutate(self.service.release_resource, actor, resource_id)

    # ========================================================================
    # Reads
    # ========================================================================

    def snapshot(self, actor: Actor) -> dict[str, Any]:
        """Role-filtered snapshot with the newest audit records"""
        with self.lock:
            return queries.snapshot_for(self.store, actor, self.settings.snapshot_audit_limit)

    def public_snapshot(self) -> dict[str, Any]:
        with self.lock:
            return queries.public_snapshot(self.store)

    def projects(self, actor: Actor | None) -> list[Project]:
        with self.lock:
            return queries.visible_projects(self.store, actor)

    def project_detail(self, actor: Actor | None, project_id: str) -> dict[str, Any]:
        with self.lock:
            project = self.service.get_project(actor, project_id)
            return queries.project_detail(self.store, actor, project)

    def bids(self, actor: Actor, project_id: str) -> list[Bid]:
        with self.lock:
            project = self.service.get_project(actor, project_id)
            return queries.bids_visible_to(self.store, actor, project)

    def matches(self, actor: Actor, project_id: str) -> list[MatchCandidate]:
        with self.lock:
            project = self.service.get_project(actor, project_id)
            return queries.matches_for_project(self.store, project)

    def resources(self) -> list[Resource]:
        with self.lock:
            return self.store.select("resources")

    def material_summary(self) -> list[dict[str, Any]]:
        with self.lock:
            return queries.material_summary(self.store)

    def contractor_stats(self, actor: Actor, contractor_id: str) -> dict[str, Any]:
        """Contractors see their own numbers; officials and admins see anyone's"""
        if actor.id != contractor_id and actor.role not in (Role.ADMIN, Role.OFFICIAL):
            raise AuthorizationError("Contractor statistics are private", actor_id=actor.id)
        with self.lock:
            self.store.require("actors", contractor_id)
            return queries.contractor_stats(self.store, contractor_id)

    def audit(
        self,
        actor: Actor,
        limit: int = 50,
        before_seq: int | None = None,
        entity_id: str | None = None,
        actor_id: str | None = None,
    ) -> AuditPage:
        require(actor, Capability.VIEW_AUDIT)
        with self.lock:
            return self.ledger.page(limit, before_seq, entity_id, actor_id)

    def health(self) -> dict[str, Any]:
        with self.lock:
            return {
                "ok": True,
                "time": self.time_provider.now().isoformat(),
                "projects": self.store.count("projects"),
                "audit_backlog": self.ledger.backlog_size,
                "durable": self.db_path is not None,
                "persist_pending": self.persist_pending,
            }

