"""Service wiring and audit trail queries."""

from __future__ import annotations

from base64 import urlsafe_b64decode, urlsafe_b64encode
from dataclasses import dataclass
from datetime import datetime
import json
from typing import Tuple, Optional

from .lifecycle import AccountLifecycle
from .recovery import PasswordRecovery
from .sessions import SessionManager
from .token_engine import TokenEngine
from .. import errors
from ..mailer import EmailDispatcher
from ..repository import AccountRepository, AuditLogRecord
from ..security.passwords import CredentialHasher


class AuditTrail:
    """Read access to the identity audit log."""

    def __init__(self, repository: AccountRepository) -> None:
        self._repository = repository

    def list_audit_events(
        self,
        *,
        account_id: str | None = None,
        event_type: str | None = None,
        created_after: datetime | None = None,
        created_before: datetime | None = None,
        limit: int = 50,
        cursor: str | None = None,
    ) -> tuple[list[AuditLogRecord], str | None]:
        """Return audit log records with optional filters and cursor pagination."""
        decoded_cursor: Optional[Tuple[datetime, int]] = None
        if cursor:
            decoded_cursor = self._decode_cursor(cursor)
        records, next_cursor_tuple = self._repository.list_audit_events(
            account_id=account_id,
            event_type=event_type,
            created_after=created_after,
            created_before=created_before,
            limit=limit,
            cursor=decoded_cursor,
        )
        next_cursor = self._encode_cursor(next_cursor_tuple) if next_cursor_tuple else None
        return records, next_cursor

    def _encode_cursor(self, cursor: Tuple[datetime, int] | None) -> str | None:
        if cursor is None:
            return None
        created_at, audit_id = cursor
        payload = json.dumps({"created_at": created_at.isoformat(), "audit_id": audit_id})
        return urlsafe_b64encode(payload.encode("utf-8")).decode("utf-8")

    def _decode_cursor(self, cursor: str) -> Tuple[datetime, int]:
        try:
            data = json.loads(urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8"))
            created_at = datetime.fromisoformat(data["created_at"])
            audit_id = int(data["audit_id"])
            return created_at, audit_id
        except (ValueError, KeyError, TypeError) as exc:
            raise errors.ValidationError("invalid cursor", reason="invalid_cursor") from exc


@dataclass(slots=True)
class IdentityServices:
    """All use-case services sharing one repository, hasher and mailer."""

    tokens: TokenEngine
    sessions: SessionManager
    lifecycle: AccountLifecycle
    recovery: PasswordRecovery
    audit: AuditTrail

    @classmethod
    def build(
        cls,
        repository: AccountRepository,
        mailer: EmailDispatcher,
        hasher: CredentialHasher | None = None,
    ) -> "IdentityServices":
        hasher = hasher or CredentialHasher()
        tokens = TokenEngine(repository)
        sessions = SessionManager(repository, tokens, hasher)
        return cls(
            tokens=tokens,
            sessions=sessions,
            lifecycle=AccountLifecycle(repository, tokens, sessions, hasher, mailer),
            recovery=PasswordRecovery(repository, tokens, hasher, mailer),
            audit=AuditTrail(repository),
        )
