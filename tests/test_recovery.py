from __future__ import annotations

import pytest

from identity_service import errors
from identity_service.domain.recovery import (
    CHANGE_PASSWORD_MESSAGE,
    FORGOT_PASSWORD_MESSAGE,
    RESET_PASSWORD_MESSAGE,
)
from identity_service.mailer import EmailKind
from identity_service.security.tokens import TokenKind

from conftest import individual


def test_forgot_password_response_never_reveals_account_state(services, repository, mailer, active_user):
    services.lifecycle.register_individual(individual(email="pending@x.com"))
    services.lifecycle.register_individual(individual(email="off@x.com"))
    off = repository.find_by_email("off@x.com")
    repository.activate_account(off.user_id)
    repository.set_active(off.user_id, False)
    sent_before = len(mailer.sent)

    messages = {
        services.recovery.forgot_password("nobody@x.com"),
        services.recovery.forgot_password("pending@x.com"),
        services.recovery.forgot_password("off@x.com"),
        services.recovery.forgot_password("A@x.com"),
    }

    assert messages == {FORGOT_PASSWORD_MESSAGE}
    assert [entry[:2] for entry in mailer.sent[sent_before:]] == [(EmailKind.password_reset, "a@x.com")]


def test_forgot_password_swallows_delivery_failures(services, repository, mailer, active_user):
    mailer.fail = True
    assert services.recovery.forgot_password("a@x.com") == FORGOT_PASSWORD_MESSAGE
    assert repository.events("password.reset_requested") == []


def test_forgot_password_replaces_outstanding_reset_tokens(services, repository, mailer, active_user):
    services.recovery.forgot_password("a@x.com")
    first = mailer.last_token(EmailKind.password_reset)
    services.recovery.forgot_password("a@x.com")

    assert len(repository.tokens_for(TokenKind.password_reset, active_user.user_id)) == 1
    with pytest.raises(errors.AuthenticationError):
        services.recovery.reset_password(first, "NewPass1!")


def test_reset_password_replaces_credentials(services, mailer, active_user):
    services.recovery.forgot_password("a@x.com")
    token = mailer.last_token(EmailKind.password_reset)

    assert services.recovery.reset_password(token, "NewPass1!") == RESET_PASSWORD_MESSAGE

    assert services.sessions.authenticate("a@x.com", "NewPass1!").account.user_id == active_user.user_id
    with pytest.raises(errors.AuthenticationError):
        services.sessions.authenticate("a@x.com", "Abcd1234!")
    with pytest.raises(errors.AuthenticationError):
        services.recovery.reset_password(token, "Other123!")


def test_expired_reset_token_is_rejected(services, repository, mailer, active_user):
    services.recovery.forgot_password("a@x.com")
    token = mailer.last_token(EmailKind.password_reset)
    repository.expire_tokens(TokenKind.password_reset)

    with pytest.raises(errors.AuthenticationError) as exc_info:
        services.recovery.reset_password(token, "NewPass1!")

    assert exc_info.value.message == "Invalid or expired reset token"
    assert services.sessions.authenticate("a@x.com", "Abcd1234!")


def test_reset_token_does_not_work_as_other_kinds(services, mailer, active_user):
    services.recovery.forgot_password("a@x.com")
    token = mailer.last_token(EmailKind.password_reset)

    with pytest.raises(errors.AuthenticationError):
        services.sessions.refresh(token)
    with pytest.raises(errors.AuthenticationError):
        services.lifecycle.verify_email(token)
    assert services.recovery.reset_password(token, "NewPass1!") == RESET_PASSWORD_MESSAGE


def test_change_password(services, repository, active_user):
    assert services.recovery.change_password(active_user.user_id, "Abcd1234!", "NewPass1!") == CHANGE_PASSWORD_MESSAGE

    assert services.sessions.authenticate("a@x.com", "NewPass1!")
    assert repository.events("password.changed")


def test_change_password_requires_current_password(services, active_user):
    with pytest.raises(errors.AuthenticationError) as exc_info:
        services.recovery.change_password(active_user.user_id, "Wrong123!", "NewPass1!")
    assert exc_info.value.reason == errors.INCORRECT_CURRENT_PASSWORD
    assert services.sessions.authenticate("a@x.com", "Abcd1234!")


def test_change_password_for_unknown_user(services):
    with pytest.raises(errors.NotFoundError):
        services.recovery.change_password("missing", "Abcd1234!", "NewPass1!")
