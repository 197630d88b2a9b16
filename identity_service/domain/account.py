from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum


class AccountType(str, Enum):
    individual = "individual_user"
    organization = "organization_user"
    support_admin = "support_admin"


@dataclass(slots=True)
class Account:
    """Aggregate root for a single login identity."""

    user_id: str
    email: str
    password_hash: str
    account_type: AccountType
    is_email_verified: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime

    @property
    def is_usable(self) -> bool:
        """Only verified, active accounts may hold sessions."""
        return self.is_email_verified and self.is_active

    @property
    def is_pending(self) -> bool:
        return not self.is_email_verified and not self.is_active


@dataclass(slots=True)
class IndividualProfile:
    user_id: str
    first_name: str
    last_name: str
    phone_number: str | None = None
    gender: str | None = None
    date_of_birth: date | None = None
    country: str | None = None
    city: str | None = None
    address: str | None = None


@dataclass(slots=True)
class OrganizationProfile:
    user_id: str
    organization_name: str
    organization_type: str
    created_by_admin_id: str
    organization_short_name: str | None = None
    official_email: str | None = None
    official_website_url: str | None = None
    profile_picture: str | None = None
    cover_picture: str | None = None
    address: str | None = None
    mission_description: str | None = None
    establishment_date: date | None = None
    campus_affiliation_scope: str | None = None
    affiliated_schools_names: str | None = None
    affiliated_department_names: str | None = None
    primary_contact_person_name: str | None = None
    primary_contact_person_email: str | None = None
    primary_contact_person_phone: str | None = None


Profile = IndividualProfile | OrganizationProfile


@dataclass(slots=True)
class AccountWithProfile:
    """An account together with its one-to-one profile."""

    account: Account
    profile: Profile | None
