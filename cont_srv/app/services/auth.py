"""Basic-auth credential check that pays the bcrypt cost only once."""

from __future__ import annotations

import hmac
import logging
from threading import Lock
from typing import Optional

import bcrypt

logger = logging.getLogger(__name__)

DEFAULT_HASH_ROUNDS = 12


def hash_password(password: str, rounds: int = DEFAULT_HASH_ROUNDS) -> str:
    """Returns a bcrypt hash suitable for the ``password_hash`` setting."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds)).decode("ascii")


def _check_hash(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError as exc:
        logger.warning("Configured password hash is not a valid bcrypt hash: %s", exc)
        return False


class AuthCache:
    """Single configured user whose verified plaintext password is remembered.

    After the first successful bcrypt verification the plaintext is kept for
    the lifetime of the process and later requests are compared against it
    directly. Failed attempts never touch the remembered value.
    """

    def __init__(self, user: str, password_hash: str) -> None:
        self.user = user
        self.password_hash = password_hash
        self._lock = Lock()
        self._cached_password: Optional[str] = None

    @property
    def has_cached_password(self) -> bool:
        with self._lock:
            return self._cached_password is not None

    def verify(self, user: str, password: Optional[str]) -> bool:
        if user != self.user or password is None:
            return False

        with self._lock:
            cached = self._cached_password
        if cached is not None:
            return hmac.compare_digest(cached.encode("utf-8"), password.encode("utf-8"))

        # The lock is released while hashing; concurrent first logins all pay for bcrypt.
        if not _check_hash(password, self.password_hash):
            return False
        with self._lock:
            self._cached_password = password
        logger.info("Credentials for %s verified; later requests skip bcrypt", user)
        return True
