"""
Tests for the HTTP transport and its error mapping
"""

import httpx
import pytest

from lifelines_core.kernel.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    TransientError,
    ValidationError,
)
from lifelines_core.sync.transport import IDEMPOTENCY_HEADER, RemoteClient
from tests.helpers import ToggleTransport


@pytest.fixture
def transport(app) -> ToggleTransport:
    return ToggleTransport(app)


@pytest.fixture
def remote(transport) -> RemoteClient:
    return RemoteClient("http://testserver/api", timeout=2.0, transport=transport)


def signed_in(remote: RemoteClient, email: str = "official@example.com", password: str = "official123") -> RemoteClient:
    body = remote.request("POST", "/auth/login", {"email": email, "password": password})
    remote.token = body["token"]
    return remote


def test_health(remote) -> None:
    assert remote.health()["ok"] is True


def test_unreachable_is_transient(remote, transport) -> None:
    """Test that a network failure surfaces as TransientError"""
    transport.online = False
    with pytest.raises(TransientError):
        remote.health()


def test_timeout_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    remote = RemoteClient("http://testserver/api", transport=httpx.MockTransport(handler))
    with pytest.raises(TransientError):
        remote.health()


@pytest.mark.parametrize("status", [500, 503, 429])
def test_server_errors_are_transient(status) -> None:
    remote = RemoteClient(
        "http://testserver/api",
        transport=httpx.MockTransport(lambda request: httpx.Response(status, text="upstream down")),
    )
    with pytest.raises(TransientError):
        remote.request("GET", "/projects")


def test_rejections_keep_their_type(remote) -> None:
    """Test that domain errors cross the wire as the same error kinds"""
    with pytest.raises(AuthenticationError):
        remote.request("POST", "/auth/login", {"email": "official@example.com", "password": "wrong"})

    signed_in(remote)
    with pytest.raises(ConflictError):
        remote.request("POST", "/projects/proj_alnoor/publish")
    with pytest.raises(NotFoundError):
        remote.request("POST", "/projects/proj_missing/publish")
    with pytest.raises(ValidationError):
        remote.request("POST", "/projects", {"title": ""})


def test_idempotency_key_replays_first_response(remote, lifelines) -> None:
    """Test that a retried key does not create a second project"""
    signed_in(remote)
    payload = {"title": "Pump Station", "location": {"lat": 25.3, "lng": 51.5}}
    first = remote.request("POST", "/projects", payload, idempotency_key="mut_abc")
    second = remote.request("POST", "/projects", payload, idempotency_key="mut_abc")

    assert first["id"] == second["id"]
    assert len(lifelines.store.select("projects", lambda p: p.title == "Pump Station")) == 1


def test_headers_sent() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    client = RemoteClient("http://testserver/api", transport=httpx.MockTransport(handler), token="tok")
    client.request("POST", "/projects", {"title": "x"}, idempotency_key="mut_1")
    assert seen[0].headers["Authorization"] == "Bearer tok"
    assert seen[0].headers[IDEMPOTENCY_HEADER] == "mut_1"
    assert seen[0].url.path == "/api/projects"
