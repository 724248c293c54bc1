"""
Tests for the HTTP API

These drive the Flask app through its test client, the same routes the
sync engine calls over the network.
"""

import pytest

from lifelines_core.kernel.errors import StorageError
from tests.helpers import auth, bid_payload, plan_payload, project_payload, register_payload


def login(client, email: str, password: str) -> str:
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200
    return response.get_json()["token"]


@pytest.fixture
def official_token(client) -> str:
    return login(client, "official@example.com", "official123")


@pytest.fixture
def contractor_token(client) -> str:
    return login(client, "contractor@example.com", "contractor123")


# =============================================================================
# Health, metrics, snapshots
# =============================================================================


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    data = response.get_json()
    assert data["ok"] is True
    assert data["projects"] == 3


def test_metrics_exposed(client, official_token):
    client.post("/api/projects", json=project_payload(), headers=auth(official_token))
    response = client.get("/api/metrics")
    assert response.status_code == 200
    assert b"lifelines_" in response.data


def test_public_snapshot_without_auth(client):
    data = client.get("/api/public/snapshot").get_json()
    assert {p["id"] for p in data["projects"]} == {"proj_alnoor", "proj_school_blockb"}
    assert data["bids"] == []
    assert data["actors"] == []


def test_snapshot_requires_auth(client):
    response = client.get("/api/snapshot")
    assert response.status_code == 401
    assert response.get_json()["kind"] == "authentication"


def test_official_snapshot_includes_audit(client, official_token):
    data = client.get("/api/snapshot", headers=auth(official_token)).get_json()
    assert data["audit"]
    assert "proj_seaside_clinic" in {p["id"] for p in data["projects"]}


# =============================================================================
# Auth
# =============================================================================


class TestAuth:
    """Test login, registration and logout routes"""

    def test_login_returns_user(self, client):
        data = client.post(
            "/api/auth/login", json={"email": "admin@example.com", "password": "admin123"}
        ).get_json()
        assert data["token"]
        assert data["user"]["role"] == "admin"

    def test_bad_login(self, client):
        response = client.post(
            "/api/auth/login", json={"email": "admin@example.com", "password": "nope"}
        )
        assert response.status_code == 401

    def test_register(self, client):
        response = client.post("/api/auth/register", json=register_payload("new@example.com"))
        assert response.status_code == 201
        data = response.get_json()
        assert data["user"]["email"] == "new@example.com"
        me = client.get("/api/snapshot", headers=auth(data["token"]))
        assert me.status_code == 200

    def test_register_duplicate(self, client):
        response = client.post(
            "/api/auth/register", json=register_payload("official@example.com", role="official")
        )
        assert response.status_code == 409
        assert response.get_json()["kind"] == "conflict"

    def test_register_admin_refused(self, client):
        response = client.post("/api/auth/register", json=register_payload("x@example.com", role="admin"))
        assert response.status_code == 400
        assert response.get_json()["kind"] == "validation"

    def test_logout(self, client, official_token):
        client.post("/api/auth/logout", headers=auth(official_token))
        assert client.get("/api/snapshot", headers=auth(official_token)).status_code == 401

    def test_update_own_region(self, client, official_token):
        response = client.put(
            "/api/users/user_official/region",
            json={"region": {"id": "lusail", "name": "Lusail"}},
            headers=auth(official_token),
        )
        assert response.status_code == 200
        assert response.get_json()["region"]["id"] == "lusail"

    def test_update_other_region_forbidden(self, client, official_token):
        response = client.put(
            "/api/users/user_contractor/region",
            json={"region": {"id": "lusail", "name": "Lusail"}},
            headers=auth(official_token),
        )
        assert response.status_code == 403


# =============================================================================
# Project lifecycle
# =============================================================================


def test_full_lifecycle(client, official_token, contractor_token):
    """Test create → plan → publish → bid → award → license → complete over HTTP"""
    official = auth(official_token)
    project = client.post("/api/projects", json=project_payload(), headers=official).get_json()
    project_id = project["id"]
    assert project["status"] == "Draft"

    assert client.post(f"/api/projects/{project_id}/plan", json=plan_payload(), headers=official).status_code == 201
    assert client.post(f"/api/projects/{project_id}/publish", headers=official).get_json()["status"] == "Published"

    bid = client.post(
        f"/api/projects/{project_id}/bids",
        json=bid_payload(120_000, 5, 6, 25),
        headers=auth(contractor_token),
    ).get_json()
    assert 0.0 <= bid["score"] <= 1.0

    awarded = client.post(f"/api/projects/{project_id}/award", json={"bid_id": bid["id"]}, headers=official)
    assert awarded.get_json()["status"] == "Awarded"

    license_ = client.post(f"/api/projects/{project_id}/license", json={}, headers=official)
    assert license_.status_code == 201
    assert license_.get_json()["contractor_id"] == "user_contractor"

    completed = client.post(f"/api/projects/{project_id}/complete", headers=official)
    assert completed.get_json()["status"] == "Completed"

    detail = client.get(f"/api/projects/{project_id}", headers=official).get_json()
    assert detail["license"]["project_id"] == project_id
    assert len(detail["plans"]) == 1


def test_list_projects_filtered_by_role(client, contractor_token):
    anonymous = client.get("/api/projects").get_json()
    assert "proj_seaside_clinic" not in {p["id"] for p in anonymous}
    contractor = client.get("/api/projects", headers=auth(contractor_token)).get_json()
    assert "proj_alnoor" in {p["id"] for p in contractor}


def test_private_project_hidden_from_anonymous(client):
    response = client.get("/api/projects/proj_seaside_clinic")
    assert response.status_code == 403


def test_unknown_project(client, official_token):
    response = client.get("/api/projects/proj_missing", headers=auth(official_token))
    assert response.status_code == 404
    assert response.get_json()["kind"] == "not_found"


def test_illegal_transition_is_conflict(client, official_token):
    response = client.post("/api/projects/proj_seaside_clinic/complete", headers=auth(official_token))
    assert response.status_code == 409
    assert response.get_json()["kind"] == "conflict"


def test_invalid_payload(client, official_token):
    response = client.post("/api/projects", json={"title": ""}, headers=auth(official_token))
    assert response.status_code == 400
    assert "title" in response.get_json()["message"]


def test_non_object_body(client, official_token):
    response = client.post("/api/projects", json=[1, 2], headers=auth(official_token))
    assert response.status_code == 400


def test_contractor_cannot_create(client, contractor_token):
    response = client.post("/api/projects", json=project_payload(), headers=auth(contractor_token))
    assert response.status_code == 403
    assert response.get_json()["kind"] == "authorization"


def test_contractor_sees_only_own_bids(client, contractor_token):
    other = client.post("/api/auth/register", json=register_payload("rival@example.com")).get_json()
    client.post(
        "/api/projects/proj_alnoor/bids", json=bid_payload(150_000, 7, 3, 10), headers=auth(other["token"])
    )
    own = client.get("/api/projects/proj_alnoor/bids", headers=auth(contractor_token)).get_json()
    assert {b["contractor_id"] for b in own} == {"user_contractor"}


def test_community_input(client):
    token = login(client, "community@example.com", "community123")
    response = client.post(
        "/api/projects/proj_alnoor/community-input", json={"comment": "Add a ramp"}, headers=auth(token)
    )
    assert response.status_code == 201
    assert response.get_json()["community_inputs"][-1]["comment"] == "Add a ramp"


def test_admin_delete(client):
    token = login(client, "admin@example.com", "admin123")
    response = client.delete("/api/projects/proj_seaside_clinic", headers=auth(token))
    assert response.status_code == 200
    assert client.get("/api/projects/proj_seaside_clinic", headers=auth(token)).status_code == 404


# =============================================================================
# Resources
# =============================================================================


def test_resources_and_reservation(client, official_token):
    official = auth(official_token)
    data = client.get("/api/resources", headers=official).get_json()
    assert len(data["resources"]) == 5
    assert {row["type"] for row in data["summary"]} >= {"Bricks", "Steel"}

    reserved = client.post(
        "/api/resources/res_bricks_01/reserve", json={"project_id": "proj_alnoor"}, headers=official
    )
    assert reserved.get_json()["reserved_for_project_id"] == "proj_alnoor"

    clash = client.post(
        "/api/resources/res_bricks_01/reserve", json={"project_id": "proj_school_blockb"}, headers=official
    )
    assert clash.status_code == 409

    released = client.post("/api/resources/res_bricks_01/release", headers=official)
    assert released.get_json()["reserved_for_project_id"] is None


def test_matches(client, official_token):
    candidates = client.get("/api/projects/proj_alnoor/matches", headers=auth(official_token)).get_json()
    distances = [c["distance_km"] for c in candidates]
    assert distances == sorted(distances)


def test_matches_without_plan(client, official_token):
    response = client.get("/api/projects/proj_school_blockb/matches", headers=auth(official_token))
    assert response.status_code == 409


# =============================================================================
# Idempotency
# =============================================================================


def test_idempotency_key_replays(client, lifelines, official_token):
    headers = {**auth(official_token), "Idempotency-Key": "mut_test_1"}
    first = client.post("/api/projects", json=project_payload("Once"), headers=headers)
    second = client.post("/api/projects", json=project_payload("Once"), headers=headers)
    assert first.status_code == second.status_code == 201
    assert first.get_json()["id"] == second.get_json()["id"]
    assert len(lifelines.store.select("projects", lambda p: p.title == "Once")) == 1


def test_idempotency_key_replays_rejection(client, official_token):
    headers = {**auth(official_token), "Idempotency-Key": "mut_test_2"}
    first = client.post("/api/projects/proj_seaside_clinic/complete", headers=headers)
    second = client.post("/api/projects/proj_seaside_clinic/complete", headers=headers)
    assert first.status_code == second.status_code == 409
    assert first.get_json() == second.get_json()


def test_failed_snapshot_save_does_not_duplicate_a_retry(client, lifelines, official_token, monkeypatch):
    """Test that an applied write answers 201 and is cached even when the save behind it fails"""
    original_save = lifelines.snapshot_store.save
    failures = iter([True])

    def flaky_save(name, state):
        if next(failures, False):
            raise StorageError("database is locked")
        original_save(name, state)

    monkeypatch.setattr(lifelines.snapshot_store, "save", flaky_save)
    headers = {**auth(official_token), "Idempotency-Key": "mut_test_3"}
    first = client.post("/api/projects", json=project_payload("Dup"), headers=headers)
    second = client.post("/api/projects", json=project_payload("Dup"), headers=headers)
    assert first.status_code == second.status_code == 201
    assert first.get_json()["id"] == second.get_json()["id"]
    assert len(lifelines.store.select("projects", lambda p: p.title == "Dup")) == 1
    assert client.get("/api/health").get_json()["persist_pending"] is False


# =============================================================================
# Audit & admin
# =============================================================================


class TestAudit:
    """Test the audit route's filters and validation"""

    def test_audit_page(self, client, official_token):
        official = auth(official_token)
        client.put("/api/projects/proj_seaside_clinic", json={"description": "v2"}, headers=official)
        data = client.get("/api/audit?limit=1", headers=official).get_json()
        assert len(data["records"]) == 1
        assert data["records"][0]["action"] == "update"
        assert data["next_cursor"] == data["records"][0]["seq"]

    def test_audit_filters(self, client, official_token):
        official = auth(official_token)
        client.put("/api/projects/proj_seaside_clinic", json={"description": "v2"}, headers=official)
        data = client.get("/api/audit?entity_id=proj_alnoor", headers=official).get_json()
        assert data["records"] == []
        data = client.get("/api/audit?actor_id=user_official", headers=official).get_json()
        assert {r["actor_id"] for r in data["records"]} == {"user_official"}

    @pytest.mark.parametrize("limit", ["0", "501", "ten"])
    def test_audit_limit_validated(self, client, official_token, limit):
        response = client.get(f"/api/audit?limit={limit}", headers=auth(official_token))
        assert response.status_code == 400
        assert response.get_json()["kind"] == "validation"

    def test_audit_forbidden_for_contractor(self, client, contractor_token):
        assert client.get("/api/audit", headers=auth(contractor_token)).status_code == 403


def test_admin_reset(client, official_token):
    admin = auth(login(client, "admin@example.com", "admin123"))
    client.post("/api/projects", json=project_payload("Temporary"), headers=auth(official_token))
    assert client.post("/api/admin/reset", headers=admin).get_json() == {"ok": True}

    titles = {p["title"] for p in client.get("/api/projects", headers=admin).get_json()}
    assert "Temporary" not in titles
    # resets end other sessions
    assert client.get("/api/snapshot", headers=auth(official_token)).status_code == 401


def test_admin_reset_forbidden(client, official_token):
    assert client.post("/api/admin/reset", headers=auth(official_token)).status_code == 403


def test_unknown_route(client):
    response = client.get("/api/nowhere")
    assert response.status_code == 404
    assert response.get_json()["kind"] == "not_found"


def test_contractor_stats_route(client, contractor_token):
    data = client.get("/api/contractors/user_contractor/stats", headers=auth(contractor_token)).get_json()
    assert data["bids"] == 1
