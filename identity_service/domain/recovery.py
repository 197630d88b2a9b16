"""Forgot/reset password and authenticated password change."""

from __future__ import annotations

import logging

from .contracts import normalize_email
from .token_engine import TokenEngine, invalid_token_error
from .. import errors
from ..mailer import EmailDispatcher, EmailKind, redact_email
from ..repository import AccountRepository
from ..security.passwords import CredentialHasher
from ..security.tokens import TokenKind

logger = logging.getLogger(__name__)

FORGOT_PASSWORD_MESSAGE = "If the email exists, password reset instructions have been sent."
RESET_PASSWORD_MESSAGE = "Password has been reset successfully."
CHANGE_PASSWORD_MESSAGE = "Password changed successfully."


class PasswordRecovery:
    def __init__(
        self,
        repository: AccountRepository,
        token_engine: TokenEngine,
        hasher: CredentialHasher,
        mailer: EmailDispatcher,
    ) -> None:
        self._repository = repository
        self._tokens = token_engine
        self._hasher = hasher
        self._mailer = mailer

    def forgot_password(self, email: str) -> str:
        """Email a reset link to an active account.

        The returned message is identical whether or not anything was sent.
        """
        account = self._repository.find_by_email(normalize_email(email))
        if account is None or not account.is_active:
            return FORGOT_PASSWORD_MESSAGE

        self._tokens.revoke_all_for_user(TokenKind.password_reset, account.user_id)
        token = self._tokens.issue(TokenKind.password_reset, account.user_id)
        try:
            self._mailer.send(EmailKind.password_reset, account.email, token)
        except errors.EmailDeliveryError:
            # The caller must not learn that this address exists.
            logger.error("password reset email to %s could not be delivered", redact_email(account.email))
            return FORGOT_PASSWORD_MESSAGE

        self._repository.write_audit_event(
            account_id=account.user_id,
            event_type="password.reset_requested",
            actor=account.user_id,
            metadata={},
        )
        return FORGOT_PASSWORD_MESSAGE

    def reset_password(self, token: str, new_password: str) -> str:
        """Set a new password using an emailed reset token."""
        owner = self._tokens.resolve(TokenKind.password_reset, token)
        password_hash = self._hasher.hash(new_password)
        self._tokens.consume(TokenKind.password_reset, token)
        if self._repository.update_password(owner.user_id, password_hash) is None:
            raise invalid_token_error(TokenKind.password_reset)
        self._tokens.revoke_all_for_user(TokenKind.password_reset, owner.user_id)

        self._repository.write_audit_event(
            account_id=owner.user_id,
            event_type="password.reset",
            actor=owner.user_id,
            metadata={},
        )
        logger.info("password reset user_id=%s", owner.user_id)
        return RESET_PASSWORD_MESSAGE

    def change_password(self, user_id: str, current_password: str, new_password: str) -> str:
        account = self._repository.get_account(user_id)
        if account is None:
            raise errors.NotFoundError("User not found")
        if not self._hasher.verify(current_password, account.password_hash):
            raise errors.AuthenticationError(
                "Current password is incorrect",
                reason=errors.INCORRECT_CURRENT_PASSWORD,
            )
        self._repository.update_password(account.user_id, self._hasher.hash(new_password))

        self._repository.write_audit_event(
            account_id=account.user_id,
            event_type="password.changed",
            actor=account.user_id,
            metadata={},
        )
        logger.info("password changed user_id=%s", account.user_id)
        return CHANGE_PASSWORD_MESSAGE
