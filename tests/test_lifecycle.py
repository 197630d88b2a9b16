from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from identity_service import errors
from identity_service.domain.account import AccountType
from identity_service.mailer import EmailKind
from identity_service.security.passwords import PLACEHOLDER_PASSWORD_HASH
from identity_service.security.tokens import TokenKind

from conftest import individual, organization


def test_register_creates_pending_account_without_session(services, repository, mailer):
    result = services.lifecycle.register_individual(individual(email="  A@X.com "))

    account = result.created.account
    assert account.email == "a@x.com"
    assert account.account_type is AccountType.individual
    assert account.is_pending
    assert result.created.profile.first_name == "Ada"
    assert repository.tokens_for(TokenKind.refresh, account.user_id) == []

    kind, recipient, token = mailer.sent[-1]
    assert (kind, recipient) == (EmailKind.verification, "a@x.com")
    assert token == result.activation_token
    assert "activation_token" not in repr(result)


def test_register_hashes_password(services, repository):
    account = services.lifecycle.register_individual(individual()).created.account
    stored = repository.get_account(account.user_id).password_hash
    assert stored != "Abcd1234!"
    assert stored.startswith("$argon2")


def test_register_rejects_taken_email(services):
    services.lifecycle.register_individual(individual())
    with pytest.raises(errors.ConflictError) as exc_info:
        services.lifecycle.register_individual(individual(email="A@x.com"))
    assert exc_info.value.reason == errors.EMAIL_TAKEN


def test_register_rejects_taken_phone(services):
    services.lifecycle.register_individual(individual(phone_number="0123456789"))
    with pytest.raises(errors.ConflictError) as exc_info:
        services.lifecycle.register_individual(individual(email="b@x.com", phone_number="0123456789"))
    assert exc_info.value.reason == errors.PHONE_TAKEN


def test_storage_constraint_decides_registration_race(services, repository, monkeypatch):
    # Both requests pass the advisory pre-check, as two racing requests would.
    monkeypatch.setattr(repository, "email_exists", lambda email: False)

    services.lifecycle.register_individual(individual())
    with pytest.raises(errors.ConflictError) as exc_info:
        services.lifecycle.register_individual(individual())

    assert exc_info.value.reason == errors.EMAIL_TAKEN
    assert len(repository.accounts) == 1


def test_email_failure_aborts_registration(services, mailer):
    mailer.fail = True
    with pytest.raises(errors.EmailDeliveryError):
        services.lifecycle.register_individual(individual())


def test_verify_email_activates_and_issues_session(services, repository, mailer):
    account = services.lifecycle.register_individual(individual()).created.account

    session = services.lifecycle.verify_email(mailer.last_token(EmailKind.verification))

    assert session.account.user_id == account.user_id
    assert session.account.is_usable
    assert repository.get_account(account.user_id).is_usable
    assert session.access_token and session.refresh_token
    assert repository.events("account.activated")


def test_verify_email_token_cannot_be_replayed(services, mailer):
    services.lifecycle.register_individual(individual())
    token = mailer.last_token(EmailKind.verification)
    services.lifecycle.verify_email(token)

    with pytest.raises(errors.AuthenticationError) as exc_info:
        services.lifecycle.verify_email(token)
    assert exc_info.value.message == "Invalid or expired verification token"


def test_verify_email_rejects_expired_token(services, repository, mailer):
    account = services.lifecycle.register_individual(individual()).created.account
    repository.expire_tokens(TokenKind.email_verification)

    with pytest.raises(errors.AuthenticationError):
        services.lifecycle.verify_email(mailer.last_token(EmailKind.verification))
    assert repository.get_account(account.user_id).is_pending


def test_verify_email_clears_sibling_verification_tokens(services, repository, mailer):
    account = services.lifecycle.register_individual(individual()).created.account
    services.tokens.issue(TokenKind.email_verification, account.user_id)

    services.lifecycle.verify_email(mailer.last_token(EmailKind.verification))

    assert repository.tokens_for(TokenKind.email_verification, account.user_id) == []


def test_organization_invite_creates_unusable_account(services, repository, mailer):
    result = services.lifecycle.create_organization_invite(organization(), created_by_admin_id="admin-1")

    account = result.created.account
    assert account.account_type is AccountType.organization
    assert account.is_pending
    assert account.password_hash == PLACEHOLDER_PASSWORD_HASH
    assert result.created.profile.created_by_admin_id == "admin-1"
    assert mailer.sent[-1][:2] == (EmailKind.organization_invite, "org@x.com")
    assert repository.tokens_for(TokenKind.password_setup, account.user_id)
    assert repository.tokens_for(TokenKind.email_verification, account.user_id) == []

    with pytest.raises(errors.AuthenticationError):
        services.sessions.authenticate("org@x.com", PLACEHOLDER_PASSWORD_HASH)


def test_organization_invite_rejects_taken_official_email(services):
    services.lifecycle.create_organization_invite(organization(official_email="info@club.org"), "admin-1")
    with pytest.raises(errors.ConflictError) as exc_info:
        services.lifecycle.create_organization_invite(
            organization(email="other@x.com", official_email="INFO@club.org"), "admin-1"
        )
    assert exc_info.value.reason == errors.OFFICIAL_EMAIL_TAKEN


def test_organization_invite_rejects_taken_account_email(services):
    services.lifecycle.register_individual(individual(email="org@x.com"))
    with pytest.raises(errors.ConflictError) as exc_info:
        services.lifecycle.create_organization_invite(organization(), "admin-1")
    assert exc_info.value.reason == errors.EMAIL_TAKEN


def test_invite_activation_succeeds_once(services, repository):
    setup_token = services.lifecycle.create_organization_invite(organization(), "admin-1").activation_token

    session = services.lifecycle.activate_and_set_password(setup_token, "NewPass1!")
    assert session.account.is_usable
    assert session.refresh_token

    with pytest.raises(errors.AuthenticationError):
        services.lifecycle.activate_and_set_password(setup_token, "NewPass1!")

    assert services.sessions.authenticate("org@x.com", "NewPass1!").account.user_id == session.account.user_id


def test_setup_token_refused_once_account_is_active(services, repository):
    result = services.lifecycle.create_organization_invite(organization(), "admin-1")
    user_id = result.created.account.user_id
    spare = services.tokens.issue(TokenKind.password_setup, user_id)
    services.lifecycle.activate_and_set_password(result.activation_token, "NewPass1!")

    with pytest.raises(errors.AuthenticationError):
        services.lifecycle.activate_and_set_password(spare, "Other123!")
    assert services.sessions.authenticate("org@x.com", "NewPass1!")


def test_resend_verification_replaces_outstanding_tokens(services, repository, mailer):
    account = services.lifecycle.register_individual(individual()).created.account
    first = mailer.last_token(EmailKind.verification)

    services.lifecycle.resend_verification("A@x.com")

    second = mailer.last_token(EmailKind.verification)
    assert second != first
    assert len(repository.tokens_for(TokenKind.email_verification, account.user_id)) == 1
    with pytest.raises(errors.AuthenticationError):
        services.lifecycle.verify_email(first)
    assert services.lifecycle.verify_email(second).account.is_usable


def test_resend_verification_is_silent_for_unknown_or_verified(services, mailer, active_user):
    sent_before = len(mailer.sent)
    services.lifecycle.resend_verification("nobody@x.com")
    services.lifecycle.resend_verification(active_user.email)
    assert len(mailer.sent) == sent_before


def test_get_profile(services, active_user):
    result = services.lifecycle.get_profile(active_user.user_id)
    assert result.account.email == "a@x.com"
    assert result.profile.last_name == "Lovelace"

    with pytest.raises(errors.NotFoundError):
        services.lifecycle.get_profile("missing")


def test_concurrent_registrations_have_a_single_winner(services, repository, monkeypatch):
    monkeypatch.setattr(repository, "email_exists", lambda email: False)

    def attempt(_):
        try:
            services.lifecycle.register_individual(individual())
            return "created"
        except errors.ConflictError as exc:
            return exc.reason

    with ThreadPoolExecutor(max_workers=4) as pool:
        outcomes = list(pool.map(attempt, range(4)))

    assert outcomes.count("created") == 1
    assert outcomes.count(errors.EMAIL_TAKEN) == 3
    assert len(repository.accounts) == 1
