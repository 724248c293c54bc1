"""
Kernel - shared infrastructure

Errors, ids, time, logging, metrics, retries, settings and the SQLite
snapshot store that every other module builds upon.
"""

from lifelines_core.kernel.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    LifelinesError,
    NotFoundError,
    StorageError,
    TransientError,
    ValidationError,
)
from lifelines_core.kernel.ids import IdFactory, generate_id
from lifelines_core.kernel.time import FixedTimeProvider, RealTimeProvider, TimeProvider

__all__ = [
    # IDs
    "IdFactory",
    "generate_id",
    # Time
    "TimeProvider",
    "RealTimeProvider",
    "FixedTimeProvider",
    # Errors
    "LifelinesError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "ConflictError",
    "TransientError",
    "StorageError",
]
