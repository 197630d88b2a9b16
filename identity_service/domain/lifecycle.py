"""Account registration, organization onboarding and activation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .account import AccountType, AccountWithProfile
from .contracts import CreateOrganizationInviteInput, RegisterIndividualInput, normalize_email
from .sessions import Session, SessionManager
from .token_engine import TokenEngine, invalid_token_error
from .. import errors
from ..mailer import EmailDispatcher, EmailKind, redact_email
from ..repository import AccountRepository
from ..security.passwords import PLACEHOLDER_PASSWORD_HASH, CredentialHasher
from ..security.tokens import TokenKind

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RegistrationResult:
    """A freshly created pending account.

    ``activation_token`` is the raw secret that was emailed. It is kept only so
    a development deployment can echo it; production responses omit it.
    """

    created: AccountWithProfile
    activation_token: str = field(repr=False)


class AccountLifecycle:
    """Creates pending accounts and moves them to the active state."""

    def __init__(
        self,
        repository: AccountRepository,
        token_engine: TokenEngine,
        sessions: SessionManager,
        hasher: CredentialHasher,
        mailer: EmailDispatcher,
    ) -> None:
        self._repository = repository
        self._tokens = token_engine
        self._sessions = sessions
        self._hasher = hasher
        self._mailer = mailer

    def register_individual(self, payload: RegisterIndividualInput) -> RegistrationResult:
        """Create a pending individual account and email its verification link.

        The uniqueness checks here only fail fast; the storage constraints
        decide races and surface as the same :class:`ConflictError`.
        """
        payload = payload.normalized()
        if self._repository.email_exists(payload.email):
            raise errors.ConflictError("Email address is already registered", reason=errors.EMAIL_TAKEN)
        if payload.phone_number and self._repository.phone_number_exists(payload.phone_number):
            raise errors.ConflictError("Phone number is already registered", reason=errors.PHONE_TAKEN)

        password_hash = self._hasher.hash(payload.password)
        created = self._repository.create_individual_account(payload, password_hash)
        account = created.account

        token = self._tokens.issue(TokenKind.email_verification, account.user_id)
        self._mailer.send(EmailKind.verification, account.email, token)

        self._repository.write_audit_event(
            account_id=account.user_id,
            event_type="account.registered",
            actor=account.user_id,
            metadata={"email": account.email, "account_type": account.account_type.value},
        )
        logger.info("individual account registered (pending verification) user_id=%s", account.user_id)
        return RegistrationResult(created=created, activation_token=token)

    def create_organization_invite(
        self, payload: CreateOrganizationInviteInput, created_by_admin_id: str
    ) -> RegistrationResult:
        """Create a pending organization account and email a password setup link."""
        payload = payload.normalized()
        if self._repository.email_exists(payload.email):
            raise errors.ConflictError("Email address is already registered", reason=errors.EMAIL_TAKEN)
        if payload.official_email and self._repository.official_email_exists(payload.official_email):
            raise errors.ConflictError(
                "Organization official email is already registered",
                reason=errors.OFFICIAL_EMAIL_TAKEN,
            )

        created = self._repository.create_organization_account(
            payload, PLACEHOLDER_PASSWORD_HASH, created_by_admin_id
        )
        account = created.account

        token = self._tokens.issue(TokenKind.password_setup, account.user_id)
        self._mailer.send(EmailKind.organization_invite, account.email, token)

        self._repository.write_audit_event(
            account_id=account.user_id,
            event_type="organization.invited",
            actor=created_by_admin_id,
            metadata={"email": account.email, "organization_name": payload.organization_name},
        )
        logger.info(
            "organization account created user_id=%s by admin_id=%s",
            account.user_id,
            created_by_admin_id,
        )
        return RegistrationResult(created=created, activation_token=token)

    def verify_email(self, token: str) -> Session:
        """Consume an email verification token, activate the account and log it in."""
        owner = self._tokens.consume(TokenKind.email_verification, token)
        account = self._repository.activate_account(owner.user_id)
        if account is None:
            raise invalid_token_error(TokenKind.email_verification)
        self._tokens.revoke_all_for_user(TokenKind.email_verification, account.user_id)

        self._repository.write_audit_event(
            account_id=account.user_id,
            event_type="account.activated",
            actor=account.user_id,
            metadata={"method": "email_verification"},
        )
        logger.info("email verified and account activated user_id=%s", account.user_id)
        return self._sessions.issue_session(account)

    def activate_and_set_password(self, token: str, new_password: str) -> Session:
        """Accept an organization invite: set the first password and activate.

        A setup token is refused once the account is verified or active, even
        if the token itself has not expired.
        """
        owner = self._tokens.resolve(TokenKind.password_setup, token)
        if owner.is_email_verified or owner.is_active:
            raise invalid_token_error(TokenKind.password_setup)

        password_hash = self._hasher.hash(new_password)
        # Consuming after hashing keeps concurrent activations to a single winner.
        self._tokens.consume(TokenKind.password_setup, token)
        account = self._repository.set_password_and_activate(owner.user_id, password_hash)
        if account is None:
            raise invalid_token_error(TokenKind.password_setup)

        self._repository.write_audit_event(
            account_id=account.user_id,
            event_type="account.activated",
            actor=account.user_id,
            metadata={"method": "password_setup"},
        )
        logger.info("organization account activated user_id=%s", account.user_id)
        return self._sessions.issue_session(account)

    def resend_verification(self, email: str) -> None:
        """Send a fresh verification link to an unverified account.

        Returns silently for unknown or already verified addresses. Invited
        organization accounts activate through their setup link instead.
        """
        account = self._repository.find_by_email(normalize_email(email))
        if account is None or account.is_email_verified:
            return
        if account.account_type is not AccountType.individual:
            return
        self._tokens.revoke_all_for_user(TokenKind.email_verification, account.user_id)
        token = self._tokens.issue(TokenKind.email_verification, account.user_id)
        self._mailer.send(EmailKind.verification, account.email, token)
        logger.info("verification email resent to %s", redact_email(account.email))

    def get_profile(self, user_id: str) -> AccountWithProfile:
        result = self._repository.get_account_with_profile(user_id)
        if result is None:
            raise errors.NotFoundError("User not found")
        return result
