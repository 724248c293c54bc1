"""
HTTP server for the Lifelines transport boundary.

Every remote operation the sync engine performs maps 1:1 onto a route here.
Bodies are JSON; errors come back as ``{"message", "kind"}`` with the error's
HTTP status, so the client can rebuild the typed error. Writes honour an
``Idempotency-Key`` header: a retried key replays the first response instead
of applying the write twice.
"""

from collections.abc import Callable
from typing import Any

from flask import Flask, Response, jsonify, request
from pydantic import BaseModel
from werkzeug.exceptions import HTTPException

from lifelines_core.kernel.errors import LifelinesError, ValidationError
from lifelines_core.kernel.logging import generate_correlation_id, get_logger, set_correlation_id
from lifelines_core.kernel.metrics import get_metrics_text
from lifelines_core.lifecycle.models import Actor
from lifelines_core.lifelines import Lifelines
from lifelines_core.sync.transport import CORRELATION_HEADER, IDEMPOTENCY_HEADER

logger = get_logger(__name__)

app = Flask(__name__)

# Global state - will be set by initialize_server()
_lifelines: Lifelines | None = None


def initialize_server(lifelines: Lifelines) -> Flask:
    """
    Attach the façade the routes operate on.

    Args:
        lifelines: Server-side façade (source of truth)

    Returns:
        The Flask app, ready to run or to mount in a test transport
    """
    global _lifelines
    _lifelines = lifelines
    logger.info("Server initialized", db_path=str(lifelines.db_path) if lifelines.db_path else None)
    return app


def _core() -> Lifelines:
    if _lifelines is None:
        raise LifelinesError("Server not initialized")
    return _lifelines


# ============================================================================
# Request helpers
# ============================================================================


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_dump(v) for v in value]
    return value


def _body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _token() -> str | None:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def _actor() -> Actor:
    return _core().authenticate(_token())


def _optional_actor() -> Actor | None:
    token = _token()
    return _core().authenticate(token) if token else None


def _write(call: Callable[[], tuple[int, Any]]) -> tuple[Response, int]:
    """Run a write through the idempotency cache"""
    status, body = _core().idempotent(request.headers.get(IDEMPOTENCY_HEADER), call)
    return jsonify(body), status


def _entity(status: int, operation: Callable[[], Any]) -> Callable[[], tuple[int, Any]]:
    return lambda: (status, _dump(operation()))


@app.before_request
def _bind_correlation_id() -> None:
    set_correlation_id(request.headers.get(CORRELATION_HEADER) or generate_correlation_id())


@app.errorhandler(LifelinesError)
def _handle_lifelines_error(error: LifelinesError) -> tuple[Response, int]:
    if error.http_status >= 500:
        logger.error("Request failed", path=request.path, kind=error.kind, error=error.message)
    return jsonify(error.to_payload()), error.http_status


@app.errorhandler(HTTPException)
def _handle_http_error(error: HTTPException) -> tuple[Response, int]:
    kind = "not_found" if error.code == 404 else "validation"
    return jsonify({"message": error.description, "kind": kind}), error.code or 500


# ============================================================================
# Health, metrics, snapshots
# ============================================================================


@app.route("/api/health", methods=["GET"])
def health() -> tuple[Response, int]:
    return jsonify(_core().health()), 200


@app.route("/api/metrics", methods=["GET"])
def metrics() -> Response:
    payload, content_type = get_metrics_text()
    return Response(payload, content_type=content_type)


@app.route("/api/public/snapshot", methods=["GET"])
def public_snapshot() -> tuple[Response, int]:
    return jsonify(_core().public_snapshot()), 200


@app.route("/api/snapshot", methods=["GET"])
def snapshot() -> tuple[Response, int]:
    return jsonify(_core().snapshot(_actor())), 200


# ============================================================================
# Auth & actors
# ============================================================================


def _session_body(token: str, actor: Actor) -> dict[str, Any]:
    return {"token": token, "user": actor.model_dump(mode="json")}


@app.route("/api/auth/login", methods=["POST"])
def login() -> tuple[Response, int]:
    data = _body()
    token, actor = _core().login(data.get("email", ""), data.get("password", ""))
    return jsonify(_session_body(token, actor)), 200


@app.route("/api/auth/register", methods=["POST"])
def register() -> tuple[Response, int]:
    data = _body()
    return _write(lambda: (201, _session_body(*_core().register(data))))


@app.route("/api/auth/logout", methods=["POST"])
def logout() -> tuple[Response, int]:
    token = _token()
    if token:
        _core().logout(token)
    return jsonify({"ok": True}), 200


@app.route("/api/users/<actor_id>/region", methods=["PUT"])
def update_region(actor_id: str) -> tuple[Response, int]:
    actor, data = _actor(), _body()
    return _write(_entity(200, lambda: _core().update_region(actor, actor_id, data)))


# ============================================================================
# Projects
# ============================================================================


@app.route("/api/projects", methods=["GET"])
def list_projects() -> tuple[Response, int]:
    return jsonify(_dump(_core().projects(_optional_actor()))), 200


@app.route("/api/projects", methods=["POST"])
def create_project() -> tuple[Response, int]:
    actor, data = _actor(), _body()
    return _write(_entity(201, lambda: _core().create_project(actor, data)))


@app.route("/api/projects/<project_id>", methods=["GET"])
def get_project(project_id: str) -> tuple[Response, int]:
    return jsonify(_core().project_detail(_optional_actor(), project_id)), 200


@app.route("/api/projects/<project_id>", methods=["PUT"])
def update_project(project_id: str) -> tuple[Response, int]:
    actor, data = _actor(), _body()
    return _write(_entity(200, lambda: _core().update_project(actor, project_id, data)))


@app.route("/api/projects/<project_id>", methods=["DELETE"])
def delete_project(project_id: str) -> tuple[Response, int]:
    actor = _actor()
    return _write(_entity(200, lambda: _core().delete_project(actor, project_id)))


@app.route("/api/projects/<project_id>/publish", methods=["POST"])
def publish(project_id: str) -> tuple[Response, int]:
    actor = _actor()
    return _write(_entity(200, lambda: _core().publish(actor, project_id)))


@app.route("/api/projects/<project_id>/complete", methods=["POST"])
def complete(project_id: str) -> tuple[Response, int]:
    actor = _actor()
    return _write(_entity(200, lambda: _core().complete(actor, project_id)))


@app.route("/api/projects/<project_id>/community-input", methods=["POST"])
def community_input(project_id: str) -> tuple[Response, int]:
    actor, data = _actor(), _body()
    return _write(_entity(201, lambda: _core().add_community_input(actor, project_id, data)))


@app.route("/api/projects/<project_id>/damage-report", methods=["POST"])
def damage_report(project_id: str) -> tuple[Response, int]:
    actor, data = _actor(), _body()
    return _write(_entity(201, lambda: _core().save_damage_report(actor, project_id, data)))


@app.route("/api/projects/<project_id>/plan", methods=["POST"])
def plan(project_id: str) -> tuple[Response, int]:
    actor, data = _actor(), _body()
    return _write(_entity(201, lambda: _core().save_plan(actor, project_id, data)))


@app.route("/api/projects/<project_id>/matches", methods=["GET"])
def matches(project_id: str) -> tuple[Response, int]:
    return jsonify(_dump(_core().matches(_actor(), project_id))), 200


# ============================================================================
# Bidding & licensing
# ============================================================================


@app.route("/api/projects/<project_id>/bids", methods=["GET"])
def list_bids(project_id: str) -> tuple[Response, int]:
    return jsonify(_dump(_core().bids(_actor(), project_id))), 200


@app.route("/api/projects/<project_id>/bids", methods=["POST"])
def submit_bid(project_id: str) -> tuple[Response, int]:
    actor, data = _actor(), _body()
    return _write(_entity(201, lambda: _core().submit_bid(actor, project_id, data)))


@app.route("/api/projects/<project_id>/award", methods=["POST"])
def award(project_id: str) -> tuple[Response, int]:
    actor, data = _actor(), _body()
    return _write(_entity(200, lambda: _core().award(actor, project_id, data)))


@app.route("/api/projects/<project_id>/license", methods=["POST"])
def issue_license(project_id: str) -> tuple[Response, int]:
    actor, data = _actor(), _body()
    return _write(_entity(201, lambda: _core().issue_license(actor, project_id, data)))


@app.route("/api/contractors/<contractor_id>/stats", methods=["GET"])
def contractor_stats(contractor_id: str) -> tuple[Response, int]:
    return jsonify(_core().contractor_stats(_actor(), contractor_id)), 200


# ============================================================================
# Resources
# ============================================================================


@app.route("/api/resources", methods=["GET"])
def list_resources() -> tuple[Response, int]:
    _actor()
    core = _core()
    return jsonify({"resources": _dump(core.resources()), "summary": core.material_summary()}), 200


@app.route("/api/resources", methods=["POST"])
def register_resource() -> tuple[Response, int]:
    actor, data = _actor(), _body()
    return _write(_entity(201, lambda: _core().register_resource(actor, data)))


@app.route("/api/resources/<resource_id>/reserve", methods=["POST"])
def reserve_resource(resource_id: str) -> tuple[Response, int]:
    actor, data = _actor(), _body()
    return _write(_entity(200, lambda: _core().reserve_resource(actor, resource_id, data)))


@app.route("/api/resources/<resource_id>/release", methods=["POST"])
def release_resource(resource_id: str) -> tuple[Response, int]:
    actor = _actor()
    return _write(_entity(200, lambda: _core().release_resource(actor, resource_id)))


# ============================================================================
# Audit & admin
# ============================================================================


def _int_arg(name: str, default: int | None) -> int | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"Query parameter {name} must be an integer") from None


@app.route("/api/audit", methods=["GET"])
def audit() -> tuple[Response, int]:
    limit = _int_arg("limit", 50)
    if limit is None or not 1 <= limit <= 500:
        raise ValidationError("limit must be between 1 and 500")
    page = _core().audit(
        _actor(),
        limit=limit,
        before_seq=_int_arg("before", None),
        entity_id=request.args.get("entity_id") or None,
        actor_id=request.args.get("actor_id") or None,
    )
    return jsonify(page.model_dump(mode="json")), 200


@app.route("/api/admin/reset", methods=["POST"])
def admin_reset() -> tuple[Response, int]:
    _core().reset(_actor())
    return jsonify({"ok": True}), 200


def run_server(host: str = "127.0.0.1", port: int = 4000, debug: bool = False) -> None:
    """
    Run the API server.

    Args:
        host: Interface to bind
        port: Port to listen on (default: 4000)
        debug: Enable Flask debug mode (default: False)
    """
    logger.info("Starting Lifelines API server", host=host, port=port)
    app.run(host=host, port=port, debug=debug, threaded=True)
