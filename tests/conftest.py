from __future__ import annotations

import dataclasses
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest
from argon2 import PasswordHasher

from identity_service import errors
from identity_service.domain.account import (
    Account,
    AccountType,
    AccountWithProfile,
    IndividualProfile,
    OrganizationProfile,
)
from identity_service.domain.contracts import CreateOrganizationInviteInput, RegisterIndividualInput
from identity_service.domain.service import IdentityServices
from identity_service.mailer import EmailKind
from identity_service.security.passwords import CredentialHasher
from identity_service.security.tokens import TokenKind


@dataclass
class FakeToken:
    user_id: str
    expires_at: datetime


@dataclass
class FakeAuditLogRecord:
    audit_id: int
    account_id: str | None
    event_type: str
    actor: str | None
    metadata: dict
    created_at: datetime


class FakeRepository:
    """In-memory repository mimicking the Postgres-backed contracts.

    A single lock stands in for row-level atomicity: account creation checks
    the unique columns and inserts together, and token consumption is a
    conditional delete.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.accounts: dict[str, Account] = {}
        self.profiles: dict[str, IndividualProfile | OrganizationProfile] = {}
        self.tokens: dict[TokenKind, dict[str, FakeToken]] = {kind: {} for kind in TokenKind}
        self.audit_log: list[FakeAuditLogRecord] = []
        self._audit_seq = 0

    # uniqueness pre-checks

    def email_exists(self, email: str) -> bool:
        return any(account.email == email for account in self.accounts.values())

    def phone_number_exists(self, phone_number: str) -> bool:
        return any(
            isinstance(profile, IndividualProfile) and profile.phone_number == phone_number
            for profile in self.profiles.values()
        )

    def official_email_exists(self, official_email: str) -> bool:
        return any(
            isinstance(profile, OrganizationProfile) and profile.official_email == official_email
            for profile in self.profiles.values()
        )

    # creation

    def _new_account(self, email: str, password_hash: str, account_type: AccountType) -> Account:
        # Mirrors the users_email_key constraint, independent of the pre-check.
        if any(account.email == email for account in self.accounts.values()):
            raise errors.ConflictError("Email address is already registered", reason=errors.EMAIL_TAKEN)
        now = datetime.now(timezone.utc)
        return Account(
            user_id=str(uuid.uuid4()),
            email=email,
            password_hash=password_hash,
            account_type=account_type,
            is_email_verified=False,
            is_active=False,
            created_at=now,
            updated_at=now,
        )

    def create_individual_account(self, payload: RegisterIndividualInput, password_hash: str) -> AccountWithProfile:
        with self._lock:
            account = self._new_account(payload.email, password_hash, AccountType.individual)
            if payload.phone_number and self.phone_number_exists(payload.phone_number):
                raise errors.ConflictError("Phone number is already registered", reason=errors.PHONE_TAKEN)
            profile = IndividualProfile(
                user_id=account.user_id,
                first_name=payload.first_name,
                last_name=payload.last_name,
                phone_number=payload.phone_number,
                gender=payload.gender,
                date_of_birth=payload.date_of_birth,
                country=payload.country,
                city=payload.city,
                address=payload.address,
            )
            self.accounts[account.user_id] = account
            self.profiles[account.user_id] = profile
        return AccountWithProfile(account=account, profile=profile)

    def create_organization_account(
        self, payload: CreateOrganizationInviteInput, password_hash: str, created_by_admin_id: str
    ) -> AccountWithProfile:
        with self._lock:
            account = self._new_account(payload.email, password_hash, AccountType.organization)
            if payload.official_email and self.official_email_exists(payload.official_email):
                raise errors.ConflictError(
                    "Organization official email is already registered",
                    reason=errors.OFFICIAL_EMAIL_TAKEN,
                )
            fields = {f.name: getattr(payload, f.name) for f in dataclasses.fields(payload) if f.name != "email"}
            profile = OrganizationProfile(
                user_id=account.user_id, created_by_admin_id=created_by_admin_id, **fields
            )
            self.accounts[account.user_id] = account
            self.profiles[account.user_id] = profile
        return AccountWithProfile(account=account, profile=profile)

    # reads

    def get_account(self, user_id: str) -> Account | None:
        return self.accounts.get(user_id)

    def find_by_email(self, email: str) -> Account | None:
        return next((account for account in self.accounts.values() if account.email == email), None)

    def get_account_with_profile(self, user_id: str) -> AccountWithProfile | None:
        account = self.accounts.get(user_id)
        if account is None:
            return None
        return AccountWithProfile(account=account, profile=self.profiles.get(user_id))

    # mutations

    def _update(self, user_id: str, **changes) -> Account | None:
        with self._lock:
            account = self.accounts.get(user_id)
            if account is None:
                return None
            account = dataclasses.replace(account, updated_at=datetime.now(timezone.utc), **changes)
            self.accounts[user_id] = account
        return account

    def activate_account(self, user_id: str) -> Account | None:
        return self._update(user_id, is_email_verified=True, is_active=True)

    def update_password(self, user_id: str, password_hash: str) -> Account | None:
        return self._update(user_id, password_hash=password_hash)

    def set_password_and_activate(self, user_id: str, password_hash: str) -> Account | None:
        return self._update(user_id, password_hash=password_hash, is_email_verified=True, is_active=True)

    def set_active(self, user_id: str, is_active: bool) -> Account | None:
        return self._update(user_id, is_active=is_active)

    # tokens

    def insert_token(self, kind: TokenKind, *, user_id: str, token_hash: str, expires_at: datetime) -> None:
        with self._lock:
            self.tokens[kind][token_hash] = FakeToken(user_id=user_id, expires_at=expires_at)

    def find_token_owner(self, kind: TokenKind, token_hash: str, now: datetime) -> Account | None:
        token = self.tokens[kind].get(token_hash)
        if token is None or token.expires_at <= now:
            return None
        return self.accounts.get(token.user_id)

    def consume_token(self, kind: TokenKind, token_hash: str, now: datetime) -> Account | None:
        with self._lock:
            token = self.tokens[kind].get(token_hash)
            if token is None or token.expires_at <= now:
                return None
            del self.tokens[kind][token_hash]
            return self.accounts.get(token.user_id)

    def delete_token(self, kind: TokenKind, token_hash: str) -> bool:
        with self._lock:
            return self.tokens[kind].pop(token_hash, None) is not None

    def delete_tokens_for_user(self, kind: TokenKind, user_id: str) -> int:
        with self._lock:
            doomed = [h for h, token in self.tokens[kind].items() if token.user_id == user_id]
            for token_hash in doomed:
                del self.tokens[kind][token_hash]
        return len(doomed)

    def purge_expired_tokens(self, kind: TokenKind, now: datetime) -> int:
        with self._lock:
            doomed = [h for h, token in self.tokens[kind].items() if token.expires_at <= now]
            for token_hash in doomed:
                del self.tokens[kind][token_hash]
        return len(doomed)

    def tokens_for(self, kind: TokenKind, user_id: str) -> list[FakeToken]:
        return [token for token in self.tokens[kind].values() if token.user_id == user_id]

    def expire_tokens(self, kind: TokenKind) -> None:
        for token in self.tokens[kind].values():
            token.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)

    # audit

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict | None = None,
    ) -> None:
        with self._lock:
            self._audit_seq += 1
            self.audit_log.append(
                FakeAuditLogRecord(
                    audit_id=self._audit_seq,
                    account_id=account_id,
                    event_type=event_type,
                    actor=actor,
                    metadata=metadata or {},
                    created_at=datetime.now(timezone.utc),
                )
            )

    def list_audit_events(
        self,
        *,
        account_id: str | None = None,
        event_type: str | None = None,
        created_after: datetime | None = None,
        created_before: datetime | None = None,
        limit: int = 50,
        cursor: tuple[datetime, int] | None = None,
    ):
        results = list(self.audit_log)
        if account_id:
            results = [record for record in results if record.account_id == account_id]
        if event_type:
            results = [record for record in results if record.event_type == event_type]
        if created_after:
            results = [record for record in results if record.created_at >= created_after]
        if created_before:
            results = [record for record in results if record.created_at <= created_before]
        results.sort(key=lambda r: (r.created_at, r.audit_id), reverse=True)
        if cursor:
            results = [record for record in results if (record.created_at, record.audit_id) < cursor]
        slice_ = results[:limit]
        next_cursor = None
        # Same rule as the SQL query: a full page always carries a cursor.
        if slice_ and len(slice_) == limit:
            last = slice_[-1]
            next_cursor = (last.created_at, last.audit_id)
        return slice_, next_cursor

    def events(self, event_type: str) -> list[FakeAuditLogRecord]:
        return [record for record in self.audit_log if record.event_type == event_type]


class FakeMailer:
    """Records outgoing emails instead of sending them."""

    def __init__(self) -> None:
        self.sent: list[tuple[EmailKind, str, str]] = []
        self.fail = False

    def send(self, kind: EmailKind, recipient: str, token: str) -> None:
        if self.fail:
            raise errors.EmailDeliveryError("Failed to send email")
        self.sent.append((kind, recipient, token))

    def last_token(self, kind: EmailKind, recipient: str | None = None) -> str:
        for sent_kind, sent_to, token in reversed(self.sent):
            if sent_kind is kind and (recipient is None or sent_to == recipient):
                return token
        raise AssertionError(f"no {kind.value} email sent")


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def hasher() -> CredentialHasher:
    # Cheap parameters keep the suite fast; production uses argon2 defaults.
    return CredentialHasher(PasswordHasher(time_cost=1, memory_cost=1024, parallelism=1))


@pytest.fixture
def services(repository: FakeRepository, mailer: FakeMailer, hasher: CredentialHasher) -> IdentityServices:
    return IdentityServices.build(repository, mailer, hasher=hasher)


def individual(email: str = "a@x.com", password: str = "Abcd1234!", **overrides) -> RegisterIndividualInput:
    data = {"email": email, "password": password, "first_name": "Ada", "last_name": "Lovelace"}
    data.update(overrides)
    return RegisterIndividualInput(**data)


def organization(email: str = "org@x.com", **overrides) -> CreateOrganizationInviteInput:
    data = {"email": email, "organization_name": "Robotics Club", "organization_type": "club"}
    data.update(overrides)
    return CreateOrganizationInviteInput(**data)


@pytest.fixture
def active_user(services: IdentityServices, mailer: FakeMailer) -> Account:
    """An individual account that has completed email verification."""
    services.lifecycle.register_individual(individual())
    session = services.lifecycle.verify_email(mailer.last_token(EmailKind.verification))
    return session.account
