"""
Credential registry - email/password to actor id

Shared by the server (its only login path) and the sync engine (the fallback
login path while the server is unreachable). Passwords are stored as salted
PBKDF2 hashes so a serialized registry never carries them in the clear.
"""

import threading

from pydantic import BaseModel
from werkzeug.security import check_password_hash, generate_password_hash

from lifelines_core.kernel.errors import DuplicateIdentity

PASSWORD_HASH_METHOD = "pbkdf2:sha256:20000"


def hash_password(password: str) -> str:
    return generate_password_hash(password, method=PASSWORD_HASH_METHOD, salt_length=16)


class Credential(BaseModel):
    actor_id: str
    email: str
    password_hash: str

    model_config = {"frozen": True}


class CredentialRegistry:
    """Thread-safe email-keyed credential table"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_email: dict[str, Credential] = {}

    def register(
        self, actor_id: str, email: str, password: str, replace: bool = False
    ) -> Credential:
        """
        Args:
            replace: Overwrite an existing entry (a provisional id confirmed by the server)

        Raises:
            DuplicateIdentity: If the email is already registered and replace is False
        """
        email = email.strip().lower()
        credential = Credential(actor_id=actor_id, email=email, password_hash=hash_password(password))
        with self._lock:
            if email in self._by_email and not replace:
                raise DuplicateIdentity(email)
            self._by_email[email] = credential
        return credential

    def verify(self, email: str, password: str) -> str | None:
        """Actor id for a matching email/password pair, None otherwise"""
        with self._lock:
            credential = self._by_email.get(email.strip().lower())
        if credential is None:
            return None
        if not check_password_hash(credential.password_hash, password):
            return None
        return credential.actor_id

    def knows(self, email: str) -> bool:
        with self._lock:
            return email.strip().lower() in self._by_email

    def clear(self) -> None:
        with self._lock:
            self._by_email.clear()

    def to_list(self) -> list[dict]:
        with self._lock:
            return [c.model_dump() for c in self._by_email.values()]

    def load(self, entries: list[dict]) -> None:
        credentials = [Credential.model_validate(e) for e in entries]
        with self._lock:
            self._by_email = {c.email: c for c in credentials}

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_email)

    def actor_ids(self) -> set[str]:
        with self._lock:
            return {c.actor_id for c in self._by_email.values()}
