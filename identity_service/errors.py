"""Error taxonomy shared by the domain services and the HTTP layer."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Coarse error classes the transport layer maps to status codes."""

    conflict = "conflict"
    authentication = "authentication"
    not_found = "not_found"
    validation = "validation"
    database = "database"
    email_delivery = "email_delivery"


class IdentityError(Exception):
    """Base class for every failure raised by the identity core.

    ``kind`` is the tag callers should branch on; ``reason`` is a stable
    machine-readable code and ``message`` is safe to show to end users.
    """

    kind: ErrorKind = ErrorKind.validation
    reason: str = "error"

    def __init__(self, message: str, *, reason: str | None = None, detail: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        if reason is not None:
            self.reason = reason
        self.detail = detail or {}


class ConflictError(IdentityError):
    kind = ErrorKind.conflict
    reason = "conflict"


class AuthenticationError(IdentityError):
    kind = ErrorKind.authentication
    reason = "authentication_failed"


class NotFoundError(IdentityError):
    kind = ErrorKind.not_found
    reason = "not_found"


class ValidationError(IdentityError):
    kind = ErrorKind.validation
    reason = "invalid_input"


class DatabaseError(IdentityError):
    """Unclassified persistence failure; the cause is chained, never echoed."""

    kind = ErrorKind.database
    reason = "database_error"


class EmailDeliveryError(IdentityError):
    kind = ErrorKind.email_delivery
    reason = "email_delivery_failed"


# Stable reason codes
EMAIL_TAKEN = "email_taken"
PHONE_TAKEN = "phone_taken"
OFFICIAL_EMAIL_TAKEN = "official_email_taken"
INVALID_CREDENTIALS = "invalid_credentials"
EMAIL_NOT_VERIFIED = "email_not_verified"
ACCOUNT_INACTIVE = "account_inactive"
INVALID_OR_EXPIRED_TOKEN = "invalid_or_expired_token"
INVALID_OR_EXPIRED_REFRESH_TOKEN = "invalid_or_expired_refresh_token"
INCORRECT_CURRENT_PASSWORD = "incorrect_current_password"
