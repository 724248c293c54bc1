"""
Tests for the error taxonomy and its transport encoding
"""

import pytest

from lifelines_core.kernel.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    EntityNotFound,
    InvalidTransition,
    LifelinesError,
    NotFoundError,
    ResourceAlreadyReserved,
    StorageError,
    TransientError,
    ValidationError,
    error_from_payload,
    is_queueable,
)


@pytest.mark.parametrize(
    "error_cls,kind,status",
    [
        (ValidationError, "validation", 400),
        (AuthenticationError, "authentication", 401),
        (AuthorizationError, "authorization", 403),
        (NotFoundError, "not_found", 404),
        (ConflictError, "conflict", 409),
        (TransientError, "transient", 503),
        (StorageError, "storage", 500),
    ],
)
def test_error_kinds_and_statuses(error_cls, kind, status):
    """Each error class carries its wire kind and HTTP status"""
    error = error_cls("boom")
    assert error.kind == kind
    assert error.http_status == status
    assert error.to_payload()["kind"] == kind


def test_specific_errors_are_conflicts():
    """Domain-specific failures fall under the conflict kind"""
    assert isinstance(InvalidTransition("p1", "Draft", "Awarded"), ConflictError)
    assert isinstance(ResourceAlreadyReserved("r1", "p2"), ConflictError)
    assert isinstance(EntityNotFound("project", "p1"), NotFoundError)


def test_invalid_transition_message_names_both_states():
    error = InvalidTransition("proj_1", "Draft", "Awarded", "not published")
    assert "Draft" in error.message
    assert "Awarded" in error.message
    assert error.to_payload()["context"]["project_id"] == "proj_1"


def test_error_from_payload_uses_kind_first():
    error = error_from_payload(400, {"message": "taken", "kind": "conflict"})
    assert isinstance(error, ConflictError)
    assert error.message == "taken"


def test_error_from_payload_falls_back_to_status():
    assert isinstance(error_from_payload(404, None), NotFoundError)
    assert isinstance(error_from_payload(403, {"message": "nope"}), AuthorizationError)
    assert isinstance(error_from_payload(418, {}), ValidationError)


@pytest.mark.parametrize("status", [500, 502, 503, 408, 429])
def test_error_from_payload_server_failures_are_transient(status):
    assert isinstance(error_from_payload(status, {"kind": "conflict"}), TransientError)


def test_only_transient_errors_are_queueable():
    assert is_queueable(TransientError("offline"))
    for error in (ValidationError(), AuthorizationError(), ConflictError(), NotFoundError()):
        assert not is_queueable(error)
    assert not is_queueable(RuntimeError("bug"))


def test_base_error_defaults_message_to_class_name():
    assert LifelinesError().message == "LifelinesError"
