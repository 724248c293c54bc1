"""
Custom exceptions for Lifelines

A small, closed error taxonomy. Every failure that crosses the core boundary is
one of these kinds, and the kind decides what happens next: validation,
authorization, conflict and not-found failures are surfaced to the caller
immediately, while transient failures are the only ones the synchronization
engine is allowed to absorb into its offline queue.

Fun fact: HTTP 409 Conflict was defined in 1997 for WebDAV-style editing
collisions. Two cities claiming the same pallet of bricks is the same problem.
"""

from typing import Any


class LifelinesError(Exception):
    """Base exception for all Lifelines errors"""

    kind = "error"
    http_status = 500

    def __init__(self, message: str = "", **context: Any) -> None:
        self.message = message or self.__class__.__name__
        self.context = context
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        """Structured error body sent across the transport boundary"""
        payload: dict[str, Any] = {"message": self.message, "kind": self.kind}
        if self.context:
            payload["context"] = self.context
        return payload


# ============================================================================
# Rejected immediately (never queued)
# ============================================================================


class ValidationError(LifelinesError):
    """Bad input shape or range"""

    kind = "validation"
    http_status = 400


class AuthenticationError(LifelinesError):
    """Missing, unknown or expired session handle"""

    kind = "authentication"
    http_status = 401


class AuthorizationError(LifelinesError):
    """Role or ownership guard failed"""

    kind = "authorization"
    http_status = 403

    def __init__(
        self, message: str = "", actor_id: str | None = None, capability: str | None = None
    ) -> None:
        self.actor_id = actor_id
        self.capability = capability
        context = {k: v for k, v in (("capability", capability),) if v}
        super().__init__(message or "Forbidden", **context)


class NotFoundError(LifelinesError):
    """Referenced entity missing"""

    kind = "not_found"
    http_status = 404


class EntityNotFound(NotFoundError):
    """Raised when a keyed lookup in the entity store misses"""

    def __init__(self, entity_type: str, entity_id: str) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"{entity_type} {entity_id} not found",
            entity_type=entity_type,
            entity_id=entity_id,
        )


class ConflictError(LifelinesError):
    """
    State conflict - retrying will not change the outcome

    Examples: resource already reserved elsewhere, awarding a bid on a
    project that is not Published.
    """

    kind = "conflict"
    http_status = 409


class InvalidTransition(ConflictError):
    """Raised when a project status change is not in the transition table"""

    def __init__(self, project_id: str, current: str, target: str, reason: str = "") -> None:
        self.project_id = project_id
        self.current = current
        self.target = target
        message = f"Project {project_id} cannot move from {current} to {target}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, project_id=project_id, current=current, target=target)


class ResourceAlreadyReserved(ConflictError):
    """Raised when a resource is held by a different project"""

    def __init__(self, resource_id: str, reserved_for: str) -> None:
        self.resource_id = resource_id
        self.reserved_for = reserved_for
        super().__init__(
            f"Resource {resource_id} is already reserved for project {reserved_for}",
            resource_id=resource_id,
            reserved_for=reserved_for,
        )


class BidNotInProject(ConflictError):
    """Raised when an award names a bid attached to another project"""

    def __init__(self, bid_id: str, project_id: str) -> None:
        self.bid_id = bid_id
        self.project_id = project_id
        super().__init__(
            f"Bid {bid_id} does not belong to project {project_id}",
            bid_id=bid_id,
            project_id=project_id,
        )


class DuplicateIdentity(ConflictError):
    """Raised when registering an email that already has an account"""

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__(f"An account already exists for {email}")


# ============================================================================
# Retried later
# ============================================================================


class TransientError(LifelinesError):
    """
    Network unreachable, remote timeout or temporary server failure

    The only error kind that triggers the local-write-and-queue fallback.
    """

    kind = "transient"
    http_status = 503


class StorageError(LifelinesError):
    """Durable storage unavailable (SQLite file locked, missing or corrupt)"""

    kind = "storage"
    http_status = 500


_KIND_TO_ERROR: dict[str, type[LifelinesError]] = {
    cls.kind: cls
    for cls in (
        ValidationError,
        AuthenticationError,
        AuthorizationError,
        NotFoundError,
        ConflictError,
        TransientError,
        StorageError,
    )
}

_STATUS_TO_ERROR: dict[int, type[LifelinesError]] = {
    400: ValidationError,
    401: AuthenticationError,
    403: AuthorizationError,
    404: NotFoundError,
    409: ConflictError,
    422: ValidationError,
}


def error_from_payload(status_code: int, payload: Any) -> LifelinesError:
    """
    Rebuild a typed error from a remote error response

    Args:
        status_code: HTTP status of the response
        payload: Decoded JSON body (``{"message", "kind"}``) or anything else

    Returns:
        Instance of the matching LifelinesError subclass
    """
    message = ""
    kind = None
    if isinstance(payload, dict):
        message = str(payload.get("message") or "")
        kind = payload.get("kind")

    if status_code >= 500 or status_code in (408, 429):
        return TransientError(message or f"Remote returned {status_code}")

    error_cls = _KIND_TO_ERROR.get(kind) if kind else None
    if error_cls is None:
        error_cls = _STATUS_TO_ERROR.get(status_code, ValidationError)
    if error_cls is AuthorizationError:
        return AuthorizationError(message or "Forbidden")
    return error_cls(message or f"Remote returned {status_code}")


def is_queueable(exc: BaseException) -> bool:
    """True only for failures that may be absorbed into the offline queue"""
    return isinstance(exc, TransientError)
