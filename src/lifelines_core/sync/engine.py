"""
Synchronization Engine - remote first, local replica plus outbox when offline

Every client write goes through ``SyncEngine.execute``:

1. If the outbox holds anything, drain it first. New writes only go remote
   once everything queued before them has been confirmed (strict FIFO).
2. Try the remote. Success returns the server's entity and refreshes the
   local replica from the server.
3. On TransientError (and only then) apply the same operation to the local
   replica with the provisional lifecycle service, enqueue it, and return
   the result flagged ``pending_sync``. Validation, authorization, conflict
   and not-found errors propagate and are never queued.

``drain`` replays the outbox in order, stops at the first transient failure,
dead-letters mutations the server rejects, and after a full drain replaces
the local replica with the server's snapshot (server wins, nothing merged).

Fun fact: field crews in disaster zones routinely work through multi-day
connectivity gaps, which is why the fallback login accepts the same demo
identities the server seeds.
"""

import threading
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel

from lifelines_core.kernel.errors import (
    AuthenticationError,
    LifelinesError,
    TransientError,
    is_queueable,
)
from lifelines_core.kernel.ids import IdFactory, default_id_factory, generate_token, is_local_token
from lifelines_core.kernel.logging import LogOperation, get_logger
from lifelines_core.kernel.metrics import drains_total, mutations_rejected_total
from lifelines_core.kernel.snapshot_store import SQLiteSnapshotStore
from lifelines_core.kernel.time import TimeProvider, default_time_provider
from lifelines_core.lifecycle import commands
from lifelines_core.lifecycle.credentials import CredentialRegistry
from lifelines_core.lifecycle.handlers import LifecycleService
from lifelines_core.lifecycle.models import Actor
from lifelines_core.lifecycle.seed import demo_actors, seed_credentials
from lifelines_core.store.audit import AuditLedger
from lifelines_core.store.entity_store import EntityStore
from lifelines_core.sync.outbox import MutationQueue, PendingMutation
from lifelines_core.sync.transport import RemoteClient

logger = get_logger(__name__)

PACK_FORMAT = 1
DEFAULT_PACK_NAME = "offline_pack"
REGISTER_PATH = "/auth/register"


class Mutation(BaseModel):
    """
    A write described once for both paths

    ``method``/``path``/``payload`` are the remote call; ``apply_local``
    performs the same operation against the local replica given the acting
    actor. ``creates`` marks operations whose result id is provisional when
    applied locally.
    """

    operation: str
    method: str
    path: str
    payload: dict[str, Any] = {}
    apply_local: Callable[[Actor | None], Any]
    result_type: type[BaseModel] | None = None
    creates: bool = False

    model_config = {"arbitrary_types_allowed": True, "frozen": True}


class SyncResult(BaseModel):
    """Outcome of a client write; ``pending_sync`` marks provisional state"""

    value: Any = None
    pending_sync: bool = False
    mutation_id: str | None = None

    model_config = {"arbitrary_types_allowed": True}


class Session(BaseModel):
    token: str
    actor_id: str

    model_config = {"frozen": True}

    @property
    def local(self) -> bool:
        return is_local_token(self.token)


class DrainReport(BaseModel):
    committed: int = 0
    rejected: int = 0
    remaining: int = 0
    interrupted: bool = False
    skipped: bool = False
    hydrated: bool = False


class SyncEngine:
    """
    Client-side outbox, connectivity probe and server-wins reconciliation

    Example:
        >>> engine = SyncEngine(RemoteClient("http://127.0.0.1:4000/api"))
        >>> engine.login("official@example.com", "official123")
        >>> result = engine.execute(mutation)
        >>> result.pending_sync
        False
    """

    def __init__(
        self,
        remote: RemoteClient,
        time_provider: TimeProvider = default_time_provider,
        snapshot_store: SQLiteSnapshotStore | None = None,
        pack_name: str = DEFAULT_PACK_NAME,
        id_factory: IdFactory = default_id_factory,
    ) -> None:
        """
        Args:
            remote: Transport to the source of truth
            time_provider: Source of timestamps for local writes and the outbox
            snapshot_store: Where to persist the offline pack (None = memory only)
            pack_name: Snapshot name of the persisted pack
            id_factory: Source of provisional ids and mutation idempotency keys
        """
        self.remote = remote
        self.time_provider = time_provider
        self.snapshot_store = snapshot_store
        self.pack_name = pack_name
        self.id_factory = id_factory

        self.store = EntityStore()
        self.ledger = AuditLedger(self.store, time_provider, id_factory=id_factory)
        self.service = LifecycleService(
            self.store, self.ledger, time_provider, id_factory=id_factory, provisional=True
        )
        self.queue = MutationQueue()
        self.credentials = CredentialRegistry()
        seed_credentials(self.credentials)

        self.session: Session | None = None
        self.online: bool | None = None
        self._pending_login: tuple[str, str] | None = None
        self._drain_lock = threading.Lock()

        with self.store.transaction():
            for actor in demo_actors(time_provider):
                self.store.put("actors", actor)
        stored = snapshot_store.load_state(pack_name) if snapshot_store else None
        if stored:
            self.import_pack(stored, persist=False)

    # ========================================================================
    # Sessions
    # ========================================================================

    def _start_session(self, token: str, actor_id: str) -> Session:
        self.session = Session(token=token, actor_id=actor_id)
        self.remote.token = None if self.session.local else token
        return self.session

    def _accept_remote_login(self, body: dict[str, Any], email: str, password: str) -> Session:
        actor = Actor.model_validate(body["user"])
        self.store.put("actors", actor)
        if self.credentials.verify(email, password) != actor.id:
            self.credentials.register(actor.id, email, password, replace=True)
        self._pending_login = None
        self.online = True
        return self._start_session(body["token"], actor.id)

    def login(self, email: str, password: str) -> Session:
        """
        Sign in remotely, or against the local registry when unreachable

        A local session carries a ``local_`` token and is upgraded to a remote
        one on the next successful contact.

        Raises:
            AuthenticationError: Unknown credentials (remote or local)
        """
        payload = commands.Login(email=email, password=password).model_dump()
        try:
            body = self.remote.request("POST", "/auth/login", payload, operation="login")
        except TransientError:
            self.online = False
            actor_id = self.credentials.verify(email, password)
            if actor_id is None or self.store.get("actors", actor_id) is None:
                raise AuthenticationError("Invalid credentials") from None
            self._pending_login = (email, password)
            logger.info("Signed in locally while offline", actor_id=actor_id)
            return self._start_session(generate_token(local=True), actor_id)

        session = self._accept_remote_login(body, email, password)
        self._refresh()
        return session

    def logout(self) -> None:
        self.session = None
        self.remote.token = None
        self._pending_login = None

    def _ensure_remote_session(self) -> None:
        if self.session is None:
            raise AuthenticationError("Sign-in required")
        if not self.session.local:
            return
        if self._pending_login is None:
            raise AuthenticationError("Local session has no credentials to upgrade")
        email, password = self._pending_login
        body = self.remote.request(
            "POST", "/auth/login", {"email": email, "password": password}, operation="login"
        )
        self._accept_remote_login(body, email, password)
        logger.info("Local session upgraded", actor_id=self.session.actor_id)

    def current_actor(self) -> Actor:
        """
        Raises:
            AuthenticationError: If no one is signed in
        """
        if self.session is None:
            raise AuthenticationError("Sign-in required")
        actor = self.store.get("actors", self.session.actor_id)
        if actor is None:
            raise AuthenticationError(f"Actor {self.session.actor_id} is unknown locally")
        return actor

    def register(self, payload: commands.RegisterActor | dict[str, Any]) -> SyncResult:
        """
        Self-registration; offline it creates a local actor and session and
        queues the remote registration
        """
        cmd = commands.parse_command(commands.RegisterActor, payload)
        body = cmd.model_dump(mode="json")

        def apply_local(_: Actor | None) -> Actor:
            actor = self.service.register_actor(cmd)
            self.credentials.register(actor.id, cmd.email, cmd.password)
            self._pending_login = (cmd.email, cmd.password)
            self._start_session(generate_token(local=True), actor.id)
            return actor

        mutation = Mutation(
            operation="register",
            method="POST",
            path=REGISTER_PATH,
            payload=body,
            apply_local=apply_local,
            creates=True,
        )
        result = self.execute(mutation, require_session=False)
        if not result.pending_sync:
            session = self._accept_remote_login(result.value, cmd.email, cmd.password)
            result = SyncResult(value=self.store.require("actors", session.actor_id))
            self._refresh()
        return result

    # ========================================================================
    # Writes
    # ========================================================================

    def execute(self, mutation: Mutation, require_session: bool = True) -> SyncResult:
        """
        Run one write through the remote-first, queue-on-transient path

        Raises:
            LifelinesError: Any non-transient failure, remote or local
        """
        if require_session and self.session is None:
            raise AuthenticationError("Sign-in required")

        # one key for the remote attempt and any queued retry of it
        mutation_id = self.id_factory.generate("mut")
        if len(self.queue):
            self.drain()
        if not len(self.queue):
            try:
                return self._execute_remote(mutation, mutation_id, require_session)
            except LifelinesError as e:
                if not is_queueable(e):
                    raise
                self.online = False
                logger.info("Remote unavailable, applying locally", operation=mutation.operation, error=str(e))
        return self._execute_local(mutation, mutation_id)

    def _execute_remote(
        self, mutation: Mutation, mutation_id: str, require_session: bool
    ) -> SyncResult:
        if require_session:
            self._ensure_remote_session()
        body = self.remote.request(
            mutation.method,
            mutation.path,
            mutation.payload,
            idempotency_key=mutation_id,
            operation=mutation.operation,
        )
        self.online = True
        value: Any = body
        if mutation.result_type is not None and isinstance(body, dict):
            value = mutation.result_type.model_validate(body)
        if require_session:
            self._refresh()
        return SyncResult(value=value, pending_sync=False, mutation_id=mutation_id)

    def _execute_local(self, mutation: Mutation, mutation_id: str) -> SyncResult:
        actor = self.current_actor() if self.session is not None else None
        value = mutation.apply_local(actor)
        # a local register has just opened the new actor's session
        author = self.session.actor_id if self.session is not None else None
        local_id = getattr(value, "id", None) if mutation.creates else None
        queued = self.queue.enqueue(
            operation=mutation.operation,
            method=mutation.method,
            path=mutation.path,
            payload=mutation.payload,
            enqueued_at=self.time_provider.now(),
            local_id=local_id,
            mutation_id=mutation_id,
            actor_id=author,
        )
        logger.info(
            "Saved locally, pending sync",
            operation=mutation.operation,
            mutation_id=queued.mutation_id,
            queued=len(self.queue),
        )
        self.persist()
        return SyncResult(value=value, pending_sync=True, mutation_id=queued.mutation_id)

    # ========================================================================
    # Drain & reconciliation
    # ========================================================================

    def drain(self) -> DrainReport:
        """
        Replay the outbox in FIFO order

        Only one drain runs at a time; a concurrent call returns immediately
        with ``skipped=True``.
        """
        if not self._drain_lock.acquire(blocking=False):
            drains_total.labels(outcome="skipped").inc()
            return DrainReport(skipped=True, remaining=len(self.queue))

        report = DrainReport()
        try:
            with LogOperation(logger, "drain", queued=len(self.queue)):
                while (mutation := self.queue.peek()) is not None:
                    try:
                        self._replay(mutation)
                    except LifelinesError as e:
                        # a session problem is not the mutation's fault: keep it queued
                        if is_queueable(e) or isinstance(e, AuthenticationError):
                            if is_queueable(e):
                                self.online = False
                            self.queue.requeue(mutation.mutation_id, str(e))
                            report.interrupted = True
                            break
                        self.queue.reject(mutation.mutation_id, str(e))
                        mutations_rejected_total.labels(operation=mutation.operation).inc()
                        logger.warning(
                            "Queued mutation rejected",
                            operation=mutation.operation,
                            mutation_id=mutation.mutation_id,
                            kind=e.kind,
                            error=e.message,
                        )
                        report.rejected += 1
                        continue
                    report.committed += 1

                report.remaining = len(self.queue)
                if not report.interrupted and (report.committed or report.rejected):
                    report.hydrated = self._refresh()
        finally:
            self._drain_lock.release()

        drains_total.labels(outcome="interrupted" if report.interrupted else "complete").inc()
        self.persist()
        return report

    def _replay(self, mutation: PendingMutation) -> None:
        is_register = mutation.path == REGISTER_PATH
        if not is_register:
            self._ensure_remote_session()
            if mutation.actor_id and mutation.actor_id != self.session.actor_id:
                raise AuthenticationError(
                    f"Queued by {mutation.actor_id}; waiting for that actor to sign in"
                )

        self.queue.mark_in_flight(mutation.mutation_id)
        body = self.remote.request(
            mutation.method,
            mutation.path,
            mutation.payload,
            idempotency_key=mutation.mutation_id,
            operation=mutation.operation,
        )
        self.online = True
        self.queue.commit(mutation.mutation_id)

        if not mutation.local_id or not isinstance(body, dict):
            return
        server_entity = body.get("user", body) if is_register else body
        server_id = server_entity.get("id")
        if server_id:
            self.queue.rebind(mutation.local_id, server_id)
        if is_register and self.session and self.session.actor_id == mutation.local_id:
            email, password = self._pending_login or (mutation.payload["email"], mutation.payload["password"])
            self._accept_remote_login(body, email, password)

    def hydrate(self) -> None:
        """
        Replace the local replica with the server's snapshot

        Raises:
            TransientError: If the server is unreachable
        """
        self._ensure_remote_session()
        with LogOperation(logger, "hydrate"):
            snapshot = self.remote.request("GET", "/snapshot", operation="snapshot")
            self._load_replica(snapshot)
        self.online = True
        self.persist()

    def _load_replica(self, snapshot: dict[str, Any]) -> None:
        """
        Replace the replica wholesale, keeping the actors that can sign in
        locally

        A server snapshot only lists the actors its viewer may see; dropping
        the rest would strand their credentials for the next offline login.
        """
        known = self.credentials.actor_ids()
        keep = self.store.select("actors", lambda a: a.id in known)
        self.store.load_snapshot(snapshot)
        with self.store.transaction():
            for actor in keep:
                if self.store.get("actors", actor.id) is None:
                    self.store.put("actors", actor)
        self.ledger.reset()

    def _refresh(self) -> bool:
        """Hydrate when the outbox is empty; a failed refresh leaves the replica as is"""
        if len(self.queue):
            return False
        try:
            self.hydrate()
        except TransientError as e:
            self.online = False
            logger.warning("Refresh from server failed", error=str(e))
            return False
        return True

    def probe(self) -> bool:
        """
        Check connectivity; coming back online triggers a drain

        Returns:
            True if the server answered
        """
        was_online = self.online
        try:
            self.remote.health()
        except TransientError:
            self.online = False
            return False
        self.online = True
        if len(self.queue) and self.session is not None:
            logger.info("Connectivity restored" if was_online is False else "Server reachable", queued=len(self.queue))
            self.drain()
        return True

    # ========================================================================
    # Offline pack
    # ========================================================================

    def export_pack(self) -> dict[str, Any]:
        """Local replica plus outbox as one JSON-ready blob"""
        return {
            "format": PACK_FORMAT,
            "exported_at": self.time_provider.now().isoformat(),
            "snapshot": self.store.to_snapshot(),
            "outbox": self.queue.to_dict(),
        }

    def import_pack(self, pack: dict[str, Any], persist: bool = True) -> None:
        """
        Replace the local replica and outbox with a pack

        Raises:
            ValueError: If the pack format is not understood
        """
        if pack.get("format") != PACK_FORMAT:
            raise ValueError(f"Unsupported offline pack format: {pack.get('format')}")
        self._load_replica(pack.get("snapshot", {}))
        self.queue.load(pack.get("outbox", {}))
        if persist:
            self.persist()

    def persist(self) -> None:
        if self.snapshot_store is not None:
            self.snapshot_store.save(self.pack_name, self.export_pack())

    def status(self) -> dict[str, Any]:
        return {
            "online": self.online,
            "signed_in": self.session is not None,
            "local_session": bool(self.session and self.session.local),
            "queued": len(self.queue),
            "dead_letters": len(self.queue.dead_letters),
            "last_error": next(
                (m.last_error for m in self.queue.items() if m.last_error), None
            ),
        }

    def queued(self) -> list[PendingMutation]:
        return self.queue.items()

