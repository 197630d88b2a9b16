"""Issuance, lookup and single-use consumption of hashed secret tokens."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from .account import Account
from .. import errors
from ..config import Settings, get_settings
from ..metrics import TOKENS_ISSUED
from ..repository import AccountRepository
from ..security.tokens import TokenKind, generate_secret_token, hash_secret_token

logger = logging.getLogger(__name__)

_INVALID_MESSAGES: dict[TokenKind, str] = {
    TokenKind.email_verification: "Invalid or expired verification token",
    TokenKind.password_reset: "Invalid or expired reset token",
    TokenKind.refresh: "Invalid or expired refresh token",
    TokenKind.password_setup: "Activation link is invalid or has expired. Please contact your administrator.",
}


def invalid_token_error(kind: TokenKind) -> errors.AuthenticationError:
    """The one failure returned for unknown, expired, consumed or malformed tokens."""
    reason = (
        errors.INVALID_OR_EXPIRED_REFRESH_TOKEN
        if kind is TokenKind.refresh
        else errors.INVALID_OR_EXPIRED_TOKEN
    )
    return errors.AuthenticationError(_INVALID_MESSAGES[kind], reason=reason)


class TokenEngine:
    """Generic engine for the four secret token kinds.

    Only SHA-256 digests of the raw secrets are persisted. Expiry is checked
    lazily by the storage queries, so an expired token and a never-issued one
    produce the same failure.
    """

    def __init__(self, repository: AccountRepository, settings: Settings | None = None) -> None:
        self._repository = repository
        self._settings = settings or get_settings()

    def ttl(self, kind: TokenKind) -> timedelta:
        return kind.ttl(self._settings)

    def issue(self, kind: TokenKind, user_id: str) -> str:
        """Store a new token for ``user_id`` and return the raw secret for delivery."""
        raw, token_hash = generate_secret_token()
        expires_at = datetime.now(timezone.utc) + self.ttl(kind)
        self._repository.insert_token(kind, user_id=user_id, token_hash=token_hash, expires_at=expires_at)
        TOKENS_ISSUED.labels(kind=kind.value).inc()
        logger.debug("issued %s token for user_id=%s", kind.value, user_id)
        return raw

    def resolve(self, kind: TokenKind, raw: str) -> Account:
        """Return the owner of a valid token without consuming it."""
        if not raw:
            raise invalid_token_error(kind)
        account = self._repository.find_token_owner(kind, hash_secret_token(raw), datetime.now(timezone.utc))
        if account is None:
            raise invalid_token_error(kind)
        return account

    def consume(self, kind: TokenKind, raw: str) -> Account:
        """Atomically delete a valid token and return its owner.

        Of several concurrent calls with the same secret exactly one succeeds.
        """
        if not raw:
            raise invalid_token_error(kind)
        account = self._repository.consume_token(kind, hash_secret_token(raw), datetime.now(timezone.utc))
        if account is None:
            raise invalid_token_error(kind)
        return account

    def discard(self, kind: TokenKind, raw: str) -> bool:
        """Delete a single token whether or not it is still valid."""
        if not raw:
            return False
        return self._repository.delete_token(kind, hash_secret_token(raw))

    def revoke_all_for_user(self, kind: TokenKind, user_id: str) -> int:
        revoked = self._repository.delete_tokens_for_user(kind, user_id)
        if revoked:
            logger.info("revoked %d %s token(s) for user_id=%s", revoked, kind.value, user_id)
        return revoked

    def purge_expired(self) -> dict[TokenKind, int]:
        """Delete expired rows of every kind; returns the number removed per kind."""
        now = datetime.now(timezone.utc)
        purged = {kind: self._repository.purge_expired_tokens(kind, now) for kind in TokenKind}
        logger.info(
            "purged expired tokens: %s",
            ", ".join(f"{kind.value}={count}" for kind, count in purged.items()),
        )
        return purged
