"""Request and response models for the identity HTTP API."""

from __future__ import annotations

import re
from dataclasses import asdict
from datetime import date, datetime
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, EmailStr, Field, field_validator

from ..domain.account import Account, AccountWithProfile
from ..domain.sessions import Session

_STRONG_PASSWORD = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[^A-Za-z\d]).{8,128}$")
_NAME = re.compile(r"^[a-zA-Z\s'-]+$")

PASSWORD_RULES = (
    "Password must be 8-128 characters long and contain at least one uppercase letter, "
    "one lowercase letter, one number, and one special character (e.g., !@#$%^&*)."
)


def _check_password(value: str) -> str:
    if not _STRONG_PASSWORD.match(value):
        raise ValueError(PASSWORD_RULES)
    return value


StrongPassword = Annotated[str, AfterValidator(_check_password)]


class AccountResponse(BaseModel):
    """Serialised representation of an `Account` aggregate."""

    user_id: str
    email: EmailStr
    account_type: str
    is_email_verified: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, account: Account) -> "AccountResponse":
        return cls(
            user_id=account.user_id,
            email=account.email,
            account_type=account.account_type.value,
            is_email_verified=account.is_email_verified,
            is_active=account.is_active,
            created_at=account.created_at,
            updated_at=account.updated_at,
        )


class ProfileResponse(BaseModel):
    user: AccountResponse
    profile: dict[str, Any] | None = None

    @classmethod
    def from_domain(cls, result: AccountWithProfile) -> "ProfileResponse":
        return cls(
            user=AccountResponse.from_domain(result.account),
            profile=asdict(result.profile) if result.profile is not None else None,
        )


class RegisterRequest(BaseModel):
    """Payload accepted when registering an individual account."""

    email: EmailStr
    password: StrongPassword
    first_name: str = Field(..., min_length=2, max_length=100)
    last_name: str = Field(..., min_length=2, max_length=100)
    phone_number: str | None = Field(default=None, pattern=r"^\d{10,15}$")
    gender: str | None = Field(default=None, max_length=20)
    date_of_birth: date | None = None
    country: str | None = Field(default=None, min_length=2, max_length=100)
    city: str | None = Field(default=None, min_length=2, max_length=100)
    address: str | None = Field(default=None, min_length=5, max_length=255)

    @field_validator("first_name", "last_name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not _NAME.match(value):
            raise ValueError("Name can only contain letters, spaces, hyphens, and apostrophes")
        return value

    @field_validator("date_of_birth")
    @classmethod
    def _check_birth_date(cls, value: date | None) -> date | None:
        if value is not None and value > date.today():
            raise ValueError("Date of birth cannot be in the future")
        return value


class OrganizationInviteRequest(BaseModel):
    """Payload a support admin submits to onboard an organization."""

    email: EmailStr
    organization_name: str = Field(..., min_length=2, max_length=255)
    organization_type: str = Field(..., max_length=50)
    organization_short_name: str | None = Field(default=None, max_length=50)
    official_email: EmailStr | None = None
    official_website_url: str | None = Field(default=None, max_length=255)
    profile_picture: str | None = None
    cover_picture: str | None = None
    address: str | None = Field(default=None, max_length=255)
    mission_description: str | None = None
    establishment_date: date | None = None
    campus_affiliation_scope: str | None = Field(default=None, max_length=50)
    affiliated_schools_names: str | None = None
    affiliated_department_names: str | None = None
    primary_contact_person_name: str | None = Field(default=None, max_length=255)
    primary_contact_person_email: EmailStr | None = None
    primary_contact_person_phone: str | None = Field(default=None, max_length=20)


class RegistrationResponse(BaseModel):
    """Pending account details; the raw token is only echoed in development."""

    message: str
    user: AccountResponse
    profile: dict[str, Any] | None = None
    activation_token: str | None = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class SessionResponse(BaseModel):
    """Token issuance response containing the bearer token and metadata."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_token: str
    refresh_expires_in: int
    user: AccountResponse

    @classmethod
    def from_domain(cls, session: Session) -> "SessionResponse":
        return cls(
            access_token=session.access_token,
            expires_in=session.access_expires_in,
            refresh_token=session.refresh_token,
            refresh_expires_in=session.refresh_expires_in,
            user=AccountResponse.from_domain(session.account),
        )


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1)


class ActivateRequest(BaseModel):
    token: str = Field(..., min_length=1)
    new_password: StrongPassword


class RefreshTokenRequest(BaseModel):
    """Request body for exchanging refresh tokens for new access credentials."""

    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(BaseModel):
    refresh_token: str | None = None


class EmailRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    reset_token: str = Field(..., min_length=1)
    new_password: StrongPassword


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: StrongPassword


class MessageResponse(BaseModel):
    message: str


class PurgeResponse(BaseModel):
    purged: dict[str, int]


class AuditLogEntry(BaseModel):
    """Audit log response entry."""

    audit_id: int
    account_id: str | None
    event_type: str
    actor: str | None
    metadata: dict[str, Any]
    created_at: datetime


class AuditLogResponse(BaseModel):
    """Envelope for paginated audit log data."""

    items: list[AuditLogEntry]
    next_cursor: str | None = None
