"""Argon2id password hashing."""

from __future__ import annotations

import logging

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

logger = logging.getLogger(__name__)

# Stored for organization accounts until the invite is accepted. It is not a
# valid argon2 encoding, so no password can ever verify against it.
PLACEHOLDER_PASSWORD_HASH = "!pending-activation"


class CredentialHasher:
    """One-way password hashing with constant-time verification."""

    def __init__(self, hasher: PasswordHasher | None = None) -> None:
        self._hasher = hasher or PasswordHasher(type=Type.ID)

    def hash(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify(self, password: str, password_hash: str) -> bool:
        """Return ``True`` when ``password`` matches ``password_hash``.

        Malformed hashes (including the activation placeholder) never match.
        """
        if password_hash == PLACEHOLDER_PASSWORD_HASH:
            return False
        try:
            return self._hasher.verify(password_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHash, VerificationError):
            logger.warning("stored password hash could not be verified")
            return False
