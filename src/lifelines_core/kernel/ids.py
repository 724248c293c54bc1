"""
ID generation for entities, sessions and licenses

Entity ids are prefixed, time-ordered and random enough to be minted
independently on a disconnected client without colliding with server ids.
License ids are short and human-readable so they can be read out over a
phone line or copied onto a paper permit.

Fun fact: the license alphabet drops 0, 1, I and O - the four characters
people most often confuse when reading a code aloud.
"""

import secrets
import time
from typing import Protocol

LICENSE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
LICENSE_PREFIX = "LIC-"
LICENSE_CODE_LENGTH = 8

LOCAL_TOKEN_PREFIX = "local_"


class IdFactory(Protocol):
    """Protocol for ID generation strategies"""

    def generate(self, prefix: str) -> str:
        """Generate a new unique ID with the given prefix"""
        ...


def generate_id(prefix: str) -> str:
    """
    Generate a prefixed, roughly time-ordered identifier

    Format: ``<prefix>_<12 hex ms timestamp><10 hex random>``

    Args:
        prefix: Entity prefix (e.g. "proj", "bid", "res")

    Returns:
        Identifier such as ``proj_0190a3c1f2e4b1c2d3e4f5``
    """
    timestamp_ms = int(time.time() * 1000) & 0xFFFFFFFFFFFF
    return f"{prefix}_{timestamp_ms:012x}{secrets.randbits(40):010x}"


def generate_token(local: bool = False) -> str:
    """
    Generate an opaque session handle

    Locally-issued tokens carry a prefix so they can never be mistaken for
    a session the remote source of truth knows about.
    """
    token = secrets.token_urlsafe(24)
    return f"{LOCAL_TOKEN_PREFIX}{token}" if local else token


def is_local_token(token: str | None) -> bool:
    """Check whether a session handle was issued by the local fallback"""
    return bool(token) and token.startswith(LOCAL_TOKEN_PREFIX)


def generate_license_id() -> str:
    """Generate a license id such as ``LIC-7KQ2M9XA``"""
    code = "".join(secrets.choice(LICENSE_ALPHABET) for _ in range(LICENSE_CODE_LENGTH))
    return f"{LICENSE_PREFIX}{code}"


class DefaultIdFactory:
    """Default ID factory using prefixed time-ordered ids"""

    def generate(self, prefix: str) -> str:
        return generate_id(prefix)


class SequentialIdFactory:
    """Deterministic ids (``proj_0001``, ``proj_0002``...) for tests and seeds"""

    def __init__(self) -> None:
        self._counters: dict[str, int] = {}

    def generate(self, prefix: str) -> str:
        self._counters[prefix] = self._counters.get(prefix, 0) + 1
        return f"{prefix}_{self._counters[prefix]:04d}"


# Global default factory
default_id_factory = DefaultIdFactory()
