"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date


def normalize_email(email: str) -> str:
    """Lower-case and trim an email address for storage and lookups."""
    return email.strip().lower()


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(slots=True)
class RegisterIndividualInput:
    """Validated inputs required to register an individual account."""

    email: str
    password: str
    first_name: str
    last_name: str
    phone_number: str | None = None
    gender: str | None = None
    date_of_birth: date | None = None
    country: str | None = None
    city: str | None = None
    address: str | None = None

    def normalized(self) -> "RegisterIndividualInput":
        """Return a copy with the email normalised and free-text fields trimmed."""
        return RegisterIndividualInput(
            email=normalize_email(self.email),
            password=self.password,
            first_name=self.first_name.strip(),
            last_name=self.last_name.strip(),
            phone_number=_clean(self.phone_number),
            gender=_clean(self.gender),
            date_of_birth=self.date_of_birth,
            country=_clean(self.country),
            city=_clean(self.city),
            address=_clean(self.address),
        )


@dataclass(slots=True)
class CreateOrganizationInviteInput:
    """Organization profile and contact email supplied by a support admin."""

    email: str
    organization_name: str
    organization_type: str
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

    def normalized(self) -> "CreateOrganizationInviteInput":
        return CreateOrganizationInviteInput(
            email=normalize_email(self.email),
            organization_name=self.organization_name.strip(),
            organization_type=self.organization_type.strip(),
            organization_short_name=_clean(self.organization_short_name),
            official_email=normalize_email(self.official_email) if self.official_email else None,
            official_website_url=_clean(self.official_website_url),
            profile_picture=_clean(self.profile_picture),
            cover_picture=_clean(self.cover_picture),
            address=_clean(self.address),
            mission_description=_clean(self.mission_description),
            establishment_date=self.establishment_date,
            campus_affiliation_scope=_clean(self.campus_affiliation_scope),
            affiliated_schools_names=_clean(self.affiliated_schools_names),
            affiliated_department_names=_clean(self.affiliated_department_names),
            primary_contact_person_name=_clean(self.primary_contact_person_name),
            primary_contact_person_email=_clean(self.primary_contact_person_email),
            primary_contact_person_phone=_clean(self.primary_contact_person_phone),
        )
