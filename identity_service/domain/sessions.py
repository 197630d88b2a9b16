"""Login, refresh-token rotation and logout."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .account import Account
from .contracts import normalize_email
from .token_engine import TokenEngine
from .. import errors
from ..metrics import LOGIN_ATTEMPTS
from ..repository import AccountRepository
from ..security.passwords import CredentialHasher
from ..security.tokens import TokenKind, issue_access_token

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Session:
    """Encapsulates the access/refresh token pair returned to API consumers."""

    account: Account
    access_token: str = field(repr=False)
    access_expires_in: int
    refresh_token: str = field(repr=False)
    refresh_expires_in: int


class SessionManager:
    """Issues sessions and rotates refresh tokens."""

    def __init__(
        self,
        repository: AccountRepository,
        token_engine: TokenEngine,
        hasher: CredentialHasher,
    ) -> None:
        self._repository = repository
        self._tokens = token_engine
        self._hasher = hasher

    def issue_session(self, account: Account) -> Session:
        """Issue a signed access token and a fresh stored refresh token."""
        access_token, expires_in = issue_access_token(
            subject=account.user_id,
            email=account.email,
            account_type=account.account_type.value,
        )
        refresh_token = self._tokens.issue(TokenKind.refresh, account.user_id)
        return Session(
            account=account,
            access_token=access_token,
            access_expires_in=expires_in,
            refresh_token=refresh_token,
            refresh_expires_in=int(self._tokens.ttl(TokenKind.refresh).total_seconds()),
        )

    def authenticate(self, email: str, password: str) -> Session:
        """Check credentials and account state, then issue a session.

        Every attempt is written to the audit log with its outcome.
        """
        email = normalize_email(email)
        account = self._repository.find_by_email(email)
        try:
            self._check_credentials(account, password)
        except errors.AuthenticationError as exc:
            LOGIN_ATTEMPTS.labels(outcome="failure").inc()
            logger.warning("login failed for %s: %s", email, exc.reason)
            self._repository.write_audit_event(
                account_id=account.user_id if account is not None else None,
                event_type="login.failed",
                actor=None,
                metadata={"email": email, "reason": exc.reason},
            )
            raise

        session = self.issue_session(account)
        LOGIN_ATTEMPTS.labels(outcome="success").inc()
        logger.info("login succeeded user_id=%s", account.user_id)
        self._repository.write_audit_event(
            account_id=account.user_id,
            event_type="login.succeeded",
            actor=account.user_id,
            metadata={"email": email},
        )
        return session

    def _check_credentials(self, account: Account | None, password: str) -> None:
        if account is None:
            raise errors.AuthenticationError("Invalid email or password", reason=errors.INVALID_CREDENTIALS)
        if not account.is_email_verified:
            raise errors.AuthenticationError(
                "Please verify your email to activate your account.",
                reason=errors.EMAIL_NOT_VERIFIED,
            )
        if not account.is_active:
            raise errors.AuthenticationError(
                "Account is not active. Contact admin.",
                reason=errors.ACCOUNT_INACTIVE,
            )
        if not self._hasher.verify(password, account.password_hash):
            raise errors.AuthenticationError("Invalid email or password", reason=errors.INVALID_CREDENTIALS)

    def refresh(self, refresh_token: str) -> Session:
        """Exchange a refresh token for a brand-new access/refresh pair.

        The presented token is consumed atomically, so a second use of the same
        token (a replay after rotation) fails like an unknown token.
        """
        account = self._tokens.consume(TokenKind.refresh, refresh_token)
        if not account.is_usable:
            logger.warning("refresh rejected for unusable account user_id=%s", account.user_id)
            raise errors.AuthenticationError(
                "Invalid or expired refresh token",
                reason=errors.INVALID_OR_EXPIRED_REFRESH_TOKEN,
            )
        session = self.issue_session(account)
        self._repository.write_audit_event(
            account_id=account.user_id,
            event_type="token.refreshed",
            actor=account.user_id,
            metadata={},
        )
        return session

    def logout(self, refresh_token: str | None) -> None:
        """Revoke a single refresh token; unknown tokens are ignored."""
        if refresh_token and self._tokens.discard(TokenKind.refresh, refresh_token):
            logger.info("refresh token revoked on logout")

    def logout_all(self, user_id: str) -> int:
        """Revoke every refresh token held by ``user_id``."""
        revoked = self._tokens.revoke_all_for_user(TokenKind.refresh, user_id)
        self._repository.write_audit_event(
            account_id=user_id,
            event_type="session.revoked_all",
            actor=user_id,
            metadata={"revoked": revoked},
        )
        return revoked
