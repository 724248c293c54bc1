"""
Tests for the sync engine: offline writes, ordered drain and server-wins reconciliation

Every test drives a real Flask app through a transport that can be switched
off, so "offline" means the same thing it means in the field: the socket
never connects.

Fun fact: the store-and-forward pattern tested here predates computers -
telegraph relay stations queued messages on paper tape until the next line
was free.
"""

from pathlib import Path

import httpx
import pytest

from lifelines_core.kernel.errors import AuthenticationError, ConflictError, InvalidTransition
from lifelines_core.kernel.ids import SequentialIdFactory
from lifelines_core.kernel.snapshot_store import SQLiteSnapshotStore
from lifelines_core.lifecycle.models import ProjectStatus, Role
from lifelines_core.sync.client import LifelinesClient
from lifelines_core.sync.engine import SyncEngine
from lifelines_core.sync.outbox import MutationStatus
from lifelines_core.sync.transport import RemoteClient
from tests.helpers import ToggleTransport, make_engine, project_payload, register_payload


class LossyTransport(ToggleTransport):
    """Delivers requests but can lose every response on the way back"""

    def __init__(self, app) -> None:
        super().__init__(app)
        self.drop_responses = False

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        response = super().handle_request(request)
        if self.drop_responses:
            raise httpx.ReadError("connection reset", request=request)
        return response


@pytest.fixture
def engine_and_transport(app, time_provider):
    return make_engine(app, time_provider)


@pytest.fixture
def official_client(engine_and_transport):
    engine, _ = engine_and_transport
    engine.login("official@example.com", "official123")
    return LifelinesClient(engine)


def server_titles(lifelines, title: str) -> list:
    return lifelines.store.select("projects", lambda p: p.title == title)


# =============================================================================
# Online path
# =============================================================================


class TestOnline:
    """Remote first"""

    def test_login_hydrates_replica(self, official_client):
        engine = official_client.engine
        assert engine.online is True
        assert not engine.session.local
        assert {p.id for p in official_client.projects()} == {
            "proj_alnoor", "proj_seaside_clinic", "proj_school_blockb",
        }

    def test_online_write_is_confirmed(self, official_client, lifelines):
        result = official_client.create_project(project_payload("Pump Station"))
        assert result.pending_sync is False
        assert result.value.id == server_titles(lifelines, "Pump Station")[0].id
        assert len(official_client.engine.queue) == 0
        assert official_client.engine.store.get("projects", result.value.id) is not None

    def test_rejection_is_never_queued(self, official_client):
        """Test that a conflict from the server propagates and leaves the outbox empty"""
        with pytest.raises(ConflictError):
            official_client.publish("proj_alnoor")
        assert len(official_client.engine.queue) == 0

    def test_wrong_password(self, engine_and_transport):
        engine, _ = engine_and_transport
        with pytest.raises(AuthenticationError):
            engine.login("official@example.com", "nope")


# =============================================================================
# Offline path
# =============================================================================


class TestOffline:
    """Local apply and enqueue on transient failure"""

    def test_offline_create_then_drain(self, official_client, engine_and_transport, lifelines):
        """Test the reconnect scenario: local Draft replaced by the server's copy"""
        engine, transport = engine_and_transport
        transport.online = False

        result = official_client.create_project(project_payload("Library Rebuild"))
        assert result.pending_sync is True
        assert result.value.status == ProjectStatus.DRAFT
        assert result.value.pending_sync is True
        local_id = result.value.id
        assert engine.status()["queued"] == 1
        assert engine.online is False

        transport.online = True
        report = engine.drain()
        assert (report.committed, report.rejected, report.remaining) == (1, 0, 0)
        assert report.hydrated is True

        (server_copy,) = server_titles(lifelines, "Library Rebuild")
        assert server_copy.id != local_id
        local_copy = engine.store.require("projects", server_copy.id)
        assert local_copy.title == "Library Rebuild"
        assert local_copy.pending_sync is False
        assert engine.store.get("projects", local_id) is None

    def test_three_offline_creates_arrive_once_each(self, official_client, engine_and_transport, lifelines):
        engine, transport = engine_and_transport
        transport.online = False
        for title in ("Site A", "Site B", "Site C"):
            official_client.create_project(project_payload(title))
        assert len(engine.queue) == 3

        transport.online = True
        assert engine.drain().committed == 3
        for title in ("Site A", "Site B", "Site C"):
            assert len(server_titles(lifelines, title)) == 1

    def test_dependent_mutations_are_rebound(self, official_client, engine_and_transport, lifelines):
        """Test that a publish queued against a provisional id reaches the real project"""
        engine, transport = engine_and_transport
        transport.online = False
        created = official_client.create_project(project_payload("Field Office"))
        official_client.publish(created.value.id)
        assert [m.operation for m in engine.queued()] == ["create", "publish"]

        transport.online = True
        engine.drain()
        (server_copy,) = server_titles(lifelines, "Field Office")
        assert server_copy.status == ProjectStatus.PUBLISHED

    def test_new_writes_wait_for_the_queue(self, official_client, engine_and_transport):
        """Test strict FIFO: queued writes reach the server before a new one"""
        engine, transport = engine_and_transport
        transport.online = False
        official_client.create_project(project_payload("Queued First"))

        transport.online = True
        transport.requests.clear()
        official_client.publish("proj_seaside_clinic")

        posts = [path for method, path in transport.requests if method == "POST"]
        assert posts == ["/api/projects", "/api/projects/proj_seaside_clinic/publish"]

    def test_local_rules_still_apply_offline(self, official_client, engine_and_transport):
        """Test that an invalid offline write fails immediately and is not queued"""
        engine, transport = engine_and_transport
        transport.online = False
        with pytest.raises(InvalidTransition):
            official_client.publish("proj_alnoor")
        assert len(engine.queue) == 0

    def test_server_rejection_is_dead_lettered(self, official_client, engine_and_transport, lifelines):
        """Test that the drain skips past a mutation the server refuses"""
        engine, transport = engine_and_transport
        transport.online = False
        official_client.publish("proj_seaside_clinic")
        official_client.create_project(project_payload("After The Rejection"))

        admin = lifelines.store.require("actors", "user_admin")
        lifelines.delete_project(admin, "proj_seaside_clinic")

        transport.online = True
        report = engine.drain()
        assert (report.committed, report.rejected, report.remaining) == (1, 1, 0)
        (dead,) = engine.queue.dead_letters
        assert dead.operation == "publish"
        assert dead.status == MutationStatus.REJECTED
        assert len(server_titles(lifelines, "After The Rejection")) == 1

    def test_lost_response_is_not_applied_twice(self, app, time_provider, lifelines):
        """Test that the idempotency key absorbs a retry after a lost response"""
        lossy = LossyTransport(app)
        remote = RemoteClient("http://testserver/api", timeout=2.0, transport=lossy)
        engine = SyncEngine(remote, time_provider=time_provider, id_factory=SequentialIdFactory())
        engine.login("official@example.com", "official123")

        lossy.drop_responses = True
        result = LifelinesClient(engine).create_project(project_payload("Water Tower"))
        assert result.pending_sync is True
        assert result.mutation_id == "mut_0001"
        assert len(server_titles(lifelines, "Water Tower")) == 1

        lossy.drop_responses = False
        report = engine.drain()
        assert report.committed == 1
        assert len(server_titles(lifelines, "Water Tower")) == 1

    def test_interrupted_drain_keeps_order(self, official_client, engine_and_transport):
        engine, transport = engine_and_transport
        transport.online = False
        official_client.create_project(project_payload("One"))
        official_client.create_project(project_payload("Two"))

        report = engine.drain()
        assert report.interrupted is True
        assert report.remaining == 2
        assert [m.payload["title"] for m in engine.queued()] == ["One", "Two"]

    def test_concurrent_drain_is_skipped(self, official_client):
        engine = official_client.engine
        engine._drain_lock.acquire()
        try:
            assert engine.drain().skipped is True
        finally:
            engine._drain_lock.release()


# =============================================================================
# Sessions while offline
# =============================================================================


class TestOfflineSessions:
    """Local sign-in and registration"""

    def test_local_login_upgrades_on_reconnect(self, engine_and_transport, lifelines):
        engine, transport = engine_and_transport
        transport.online = False
        session = engine.login("official@example.com", "official123")
        assert session.local
        assert engine.status()["local_session"] is True

        client = LifelinesClient(engine)
        assert client.create_project(project_payload("Offline Clinic")).pending_sync is True

        transport.online = True
        assert engine.drain().committed == 1
        assert not engine.session.local
        assert len(server_titles(lifelines, "Offline Clinic")) == 1

    def test_local_login_survives_a_filtered_hydrate(self, engine_and_transport):
        """Test that an identity missing from another actor's snapshot can still sign in offline"""
        engine, transport = engine_and_transport
        engine.login("official@example.com", "official123")
        engine.logout()
        transport.online = False

        session = engine.login("contractor@example.com", "contractor123")
        assert session.local
        assert session.actor_id == "user_contractor"
        assert engine.current_actor().role == Role.CONTRACTOR

    def test_local_login_rejects_unknown_credentials(self, engine_and_transport):
        engine, transport = engine_and_transport
        transport.online = False
        with pytest.raises(AuthenticationError):
            engine.login("official@example.com", "wrong")

    def test_offline_registration(self, engine_and_transport, lifelines):
        engine, transport = engine_and_transport
        transport.online = False
        result = engine.register(register_payload("field@example.com", role="community"))
        assert result.pending_sync is True
        local_id = result.value.id
        assert engine.session.local

        transport.online = True
        engine.drain()
        server_actor = lifelines.store.actor_by_email("field@example.com")
        assert server_actor is not None
        assert engine.session.actor_id == server_actor.id != local_id
        assert not engine.session.local

    def test_writes_need_a_session(self, engine_and_transport):
        engine, _ = engine_and_transport
        with pytest.raises(AuthenticationError):
            LifelinesClient(engine).publish("proj_alnoor")


# =============================================================================
# Queued authorship
# =============================================================================


class TestQueuedAuthorship:
    """A queued write replays as the actor who made it"""

    def test_mutation_records_its_author(self, official_client, engine_and_transport):
        engine, transport = engine_and_transport
        transport.online = False
        official_client.create_project(project_payload("Authored"))
        (queued,) = engine.queued()
        assert queued.actor_id == "user_official"

    def test_drain_waits_for_the_author(self, official_client, engine_and_transport, lifelines):
        """Test that another actor's session never replays someone else's write"""
        engine, transport = engine_and_transport
        transport.online = False
        official_client.create_project(project_payload("Owned Offline"))
        engine.logout()

        transport.online = True
        engine.login("admin@example.com", "admin123")
        report = engine.drain()
        assert report.interrupted is True
        assert report.remaining == 1
        assert "user_official" in engine.queued()[0].last_error
        assert server_titles(lifelines, "Owned Offline") == []

        engine.logout()
        engine.login("official@example.com", "official123")
        assert engine.drain().committed == 1
        (project,) = server_titles(lifelines, "Owned Offline")
        assert project.owner_id == "user_official"

    def test_offline_registrant_keeps_authorship_after_rebind(self, engine_and_transport, lifelines):
        """Test that writes queued by a provisional actor follow it to its server id"""
        engine, transport = engine_and_transport
        transport.online = False
        engine.register(register_payload("newofficial@example.com", role="official"))
        LifelinesClient(engine).create_project(project_payload("Registrant Project"))
        local_id = engine.session.actor_id
        assert [m.actor_id for m in engine.queued()] == [local_id, local_id]

        transport.online = True
        assert engine.drain().committed == 2
        server_actor = lifelines.store.actor_by_email("newofficial@example.com")
        (project,) = server_titles(lifelines, "Registrant Project")
        assert project.owner_id == server_actor.id


# =============================================================================
# Offline pack
# =============================================================================


class TestOfflinePack:
    """Export, import and persistence of replica plus outbox"""

    def test_export_import_roundtrip(self, official_client, engine_and_transport, app, time_provider):
        engine, transport = engine_and_transport
        transport.online = False
        official_client.create_project(project_payload("Packed"))
        pack = engine.export_pack()

        other, _ = make_engine(app, time_provider)
        other.import_pack(pack)
        assert [m.payload["title"] for m in other.queued()] == ["Packed"]
        assert other.store.count("projects") == engine.store.count("projects")

    def test_unknown_pack_format(self, engine_and_transport):
        engine, _ = engine_and_transport
        with pytest.raises(ValueError):
            engine.import_pack({"format": 99})

    def test_outbox_survives_restart(self, app, time_provider, lifelines, tmp_path: Path):
        state = SQLiteSnapshotStore(tmp_path / "client.db")
        engine, transport = make_engine(app, time_provider, snapshot_store=state)
        engine.login("official@example.com", "official123")
        transport.online = False
        LifelinesClient(engine).create_project(project_payload("Survivor"))

        restarted, _ = make_engine(app, time_provider, snapshot_store=SQLiteSnapshotStore(tmp_path / "client.db"))
        assert len(restarted.queue) == 1
        restarted.login("official@example.com", "official123")
        assert restarted.drain().committed == 1
        assert len(server_titles(lifelines, "Survivor")) == 1
