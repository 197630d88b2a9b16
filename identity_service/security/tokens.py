"""Utilities for issuing access JWTs and single-use secret tokens."""

from __future__ import annotations

import hashlib
import secrets
import time
from datetime import timedelta
from enum import Enum
from typing import Any

import jwt

from ..config import Settings, get_settings

# 48 random bytes, 384 bits of entropy
SECRET_TOKEN_BYTES = 48


class TokenKind(str, Enum):
    """The four single-purpose secret token kinds and their storage tables."""

    email_verification = "email_verification"
    password_reset = "password_reset"
    refresh = "refresh"
    password_setup = "password_setup"

    @property
    def table(self) -> str:
        return f"{self.value}_tokens"

    def ttl(self, settings: Settings | None = None) -> timedelta:
        """Return the configured lifetime for tokens of this kind."""
        settings = settings or get_settings()
        seconds = {
            TokenKind.email_verification: settings.email_verification_ttl_seconds,
            TokenKind.password_reset: settings.password_reset_ttl_seconds,
            TokenKind.refresh: settings.refresh_ttl_seconds,
            TokenKind.password_setup: settings.password_setup_ttl_seconds,
        }[self]
        return timedelta(seconds=seconds)


def issue_access_token(*, subject: str, email: str, account_type: str) -> tuple[str, int]:
    """Create a signed JWT representing an authenticated account.

    Parameters
    ----------
    subject:
        Account identifier to embed in the token `sub` claim.
    email:
        Normalised login email of the account.
    account_type:
        Account class used by downstream authorization checks.

    Returns
    -------
    tuple[str, int]
        A tuple containing the encoded JWT string and its TTL (in seconds).
    """

    settings = get_settings()
    now = int(time.time())
    expires_in = settings.jwt_ttl_seconds
    payload: dict[str, Any] = {
        "iss": settings.jwt_issuer,
        "sub": subject,
        "email": email,
        "account_type": account_type,
        "iat": now,
        "exp": now + expires_in,
    }

    token = jwt.encode(payload, settings.jwt_secret, algorithm="HS256")
    return token, expires_in


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode and verify a JWT returning its payload.

    Raises
    ------
    jwt.PyJWTError
        Propagated when the token is invalid, expired, or signed by another issuer.
    """

    settings = get_settings()
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=["HS256"],
        issuer=settings.jwt_issuer,
        options={"require": ["exp", "sub", "iss"]},
    )


def generate_secret_token() -> tuple[str, str]:
    """Generate a raw secret token and its SHA-256 hash."""
    token = secrets.token_urlsafe(SECRET_TOKEN_BYTES)
    return token, hash_secret_token(token)


def hash_secret_token(token: str) -> str:
    """Return the SHA-256 hex digest for a secret token string."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
