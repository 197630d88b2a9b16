"""Database repository for identity/account data."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterator, Optional, Tuple

import psycopg
from psycopg import sql
from psycopg.errors import UniqueViolation
from psycopg.rows import tuple_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool

from . import errors
from .domain.account import (
    Account,
    AccountType,
    AccountWithProfile,
    IndividualProfile,
    OrganizationProfile,
)
from .domain.contracts import CreateOrganizationInviteInput, RegisterIndividualInput
from .security.tokens import TokenKind

logger = logging.getLogger(__name__)

_ACCOUNT_COLUMNS = (
    "user_id, email, password_hash, account_type, is_email_verified, is_active, created_at, updated_at"
)

_INDIVIDUAL_COLUMNS = (
    "user_id, first_name, last_name, phone_number, gender, date_of_birth, country, city, address"
)

_ORGANIZATION_COLUMNS = (
    "user_id, organization_name, organization_type, created_by_admin_id, organization_short_name, "
    "official_email, official_website_url, profile_picture, cover_picture, address, "
    "mission_description, establishment_date, campus_affiliation_scope, affiliated_schools_names, "
    "affiliated_department_names, primary_contact_person_name, primary_contact_person_email, "
    "primary_contact_person_phone"
)

# Unique constraint name -> (reason code, user-facing message)
_UNIQUE_CONSTRAINTS: dict[str, tuple[str, str]] = {
    "users_email_key": (errors.EMAIL_TAKEN, "Email address is already registered"),
    "individual_profiles_phone_number_key": (errors.PHONE_TAKEN, "Phone number is already registered"),
    "organization_profiles_official_email_key": (
        errors.OFFICIAL_EMAIL_TAKEN,
        "Organization official email is already registered",
    ),
}


@dataclass(slots=True)
class AuditLogRecord:
    """Row projection for items in identity_audit_log."""

    audit_id: int
    account_id: str | None
    event_type: str
    actor: str | None
    metadata: dict[str, Any]
    created_at: datetime


def conflict_from_unique_violation(exc: UniqueViolation) -> errors.ConflictError:
    """Translate a Postgres unique violation into the matching domain conflict."""
    constraint = exc.diag.constraint_name or ""
    reason, message = _UNIQUE_CONSTRAINTS.get(constraint, ("conflict", "Resource already exists"))
    return errors.ConflictError(message, reason=reason)


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    """Convert driver exceptions into the identity error taxonomy."""
    try:
        yield
    except UniqueViolation as exc:
        raise conflict_from_unique_violation(exc) from exc
    except psycopg.Error as exc:
        logger.error("database operation %s failed: %s", operation, exc.__class__.__name__)
        raise errors.DatabaseError("A database error occurred") from exc


class AccountRepository:
    """Postgres-backed persistence for accounts, profiles, secret tokens and audit events."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    # -- uniqueness pre-checks -------------------------------------------------

    def _exists(self, query: str, value: str, operation: str) -> bool:
        with _translate_errors(operation):
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(query, (value,))
                    return cur.fetchone() is not None

    def email_exists(self, email: str) -> bool:
        return self._exists("SELECT 1 FROM users WHERE email = %s", email, "email_exists")

    def phone_number_exists(self, phone_number: str) -> bool:
        return self._exists(
            "SELECT 1 FROM individual_profiles WHERE phone_number = %s",
            phone_number,
            "phone_number_exists",
        )

    def official_email_exists(self, official_email: str) -> bool:
        return self._exists(
            "SELECT 1 FROM organization_profiles WHERE official_email = %s",
            official_email,
            "official_email_exists",
        )

    # -- account creation ------------------------------------------------------

    def _insert_account(self, cur: psycopg.Cursor, email: str, password_hash: str, account_type: AccountType) -> Account:
        now = datetime.now(timezone.utc)
        cur.execute(
            f"""
            INSERT INTO users (user_id, email, password_hash, account_type, is_email_verified, is_active, created_at, updated_at)
            VALUES (%s, %s, %s, %s, FALSE, FALSE, %s, %s)
            RETURNING {_ACCOUNT_COLUMNS}
            """,
            (str(uuid.uuid4()), email, password_hash, account_type.value, now, now),
        )
        return self._map_account(cur.fetchone())

    def create_individual_account(self, payload: RegisterIndividualInput, password_hash: str) -> AccountWithProfile:
        """Insert a pending individual account and its profile in one transaction."""
        with _translate_errors("create_individual_account"):
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    account = self._insert_account(cur, payload.email, password_hash, AccountType.individual)
                    cur.execute(
                        f"""
                        INSERT INTO individual_profiles ({_INDIVIDUAL_COLUMNS})
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                        RETURNING {_INDIVIDUAL_COLUMNS}
                        """,
                        (
                            account.user_id,
                            payload.first_name,
                            payload.last_name,
                            payload.phone_number,
                            payload.gender,
                            payload.date_of_birth,
                            payload.country,
                            payload.city,
                            payload.address,
                        ),
                    )
                    profile = self._map_individual(cur.fetchone())
                conn.commit()
        return AccountWithProfile(account=account, profile=profile)

    def create_organization_account(
        self,
        payload: CreateOrganizationInviteInput,
        password_hash: str,
        created_by_admin_id: str,
    ) -> AccountWithProfile:
        """Insert a pending organization account and its profile in one transaction."""
        with _translate_errors("create_organization_account"):
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    account = self._insert_account(cur, payload.email, password_hash, AccountType.organization)
                    cur.execute(
                        f"""
                        INSERT INTO organization_profiles ({_ORGANIZATION_COLUMNS})
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                        RETURNING {_ORGANIZATION_COLUMNS}
                        """,
                        (
                            account.user_id,
                            payload.organization_name,
                            payload.organization_type,
                            created_by_admin_id,
                            payload.organization_short_name,
                            payload.official_email,
                            payload.official_website_url,
                            payload.profile_picture,
                            payload.cover_picture,
                            payload.address,
                            payload.mission_description,
                            payload.establishment_date,
                            payload.campus_affiliation_scope,
                            payload.affiliated_schools_names,
                            payload.affiliated_department_names,
                            payload.primary_contact_person_name,
                            payload.primary_contact_person_email,
                            payload.primary_contact_person_phone,
                        ),
                    )
                    profile = self._map_organization(cur.fetchone())
                conn.commit()
        return AccountWithProfile(account=account, profile=profile)

    # -- account reads ---------------------------------------------------------

    def get_account(self, user_id: str) -> Account | None:
        """Fetch an account by identifier or return ``None``."""
        with _translate_errors("get_account"):
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(f"SELECT {_ACCOUNT_COLUMNS} FROM users WHERE user_id = %s", (user_id,))
                    row = cur.fetchone()
        return self._map_account(row) if row else None

    def find_by_email(self, email: str) -> Account | None:
        """Fetch an account by its normalised email or return ``None``."""
        with _translate_errors("find_by_email"):
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(f"SELECT {_ACCOUNT_COLUMNS} FROM users WHERE email = %s", (email,))
                    row = cur.fetchone()
        return self._map_account(row) if row else None

    def get_account_with_profile(self, user_id: str) -> AccountWithProfile | None:
        account = self.get_account(user_id)
        if account is None:
            return None
        if account.account_type is AccountType.individual:
            table, columns, mapper = "individual_profiles", _INDIVIDUAL_COLUMNS, self._map_individual
        elif account.account_type is AccountType.organization:
            table, columns, mapper = "organization_profiles", _ORGANIZATION_COLUMNS, self._map_organization
        else:
            return AccountWithProfile(account=account, profile=None)
        with _translate_errors("get_profile"):
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(f"SELECT {columns} FROM {table} WHERE user_id = %s", (user_id,))
                    row = cur.fetchone()
        return AccountWithProfile(account=account, profile=mapper(row) if row else None)

    # -- account mutations -----------------------------------------------------

    def _update_account(self, assignments: str, params: tuple, user_id: str, operation: str) -> Account | None:
        with _translate_errors(operation):
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        f"""
                        UPDATE users
                        SET {assignments}, updated_at = NOW()
                        WHERE user_id = %s
                        RETURNING {_ACCOUNT_COLUMNS}
                        """,
                        (*params, user_id),
                    )
                    row = cur.fetchone()
                conn.commit()
        return self._map_account(row) if row else None

    def activate_account(self, user_id: str) -> Account | None:
        """Mark the account verified and active in a single statement."""
        return self._update_account(
            "is_email_verified = TRUE, is_active = TRUE", (), user_id, "activate_account"
        )

    def update_password(self, user_id: str, password_hash: str) -> Account | None:
        return self._update_account("password_hash = %s", (password_hash,), user_id, "update_password")

    def set_password_and_activate(self, user_id: str, password_hash: str) -> Account | None:
        """Store the first real password of an invited account and activate it."""
        return self._update_account(
            "password_hash = %s, is_email_verified = TRUE, is_active = TRUE",
            (password_hash,),
            user_id,
            "set_password_and_activate",
        )

    def set_active(self, user_id: str, is_active: bool) -> Account | None:
        return self._update_account("is_active = %s", (is_active,), user_id, "set_active")

    # -- secret tokens ---------------------------------------------------------

    def insert_token(self, kind: TokenKind, *, user_id: str, token_hash: str, expires_at: datetime) -> None:
        """Persist a hashed secret token for the given kind."""
        query = sql.SQL(
            "INSERT INTO {table} (user_id, token_hash, expires_at) VALUES (%s, %s, %s)"
        ).format(table=sql.Identifier(kind.table))
        with _translate_errors(f"insert_{kind.value}_token"):
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, (user_id, token_hash, expires_at))
                conn.commit()

    def find_token_owner(self, kind: TokenKind, token_hash: str, now: datetime) -> Account | None:
        """Return the owner of an unexpired token without consuming it."""
        query = sql.SQL(
            "SELECT {columns} FROM {table} t JOIN users u ON u.user_id = t.user_id "
            "WHERE t.token_hash = %s AND t.expires_at > %s"
        ).format(columns=self._qualified_account_columns(), table=sql.Identifier(kind.table))
        with _translate_errors(f"find_{kind.value}_token"):
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(query, (token_hash, now))
                    row = cur.fetchone()
        return self._map_account(row) if row else None

    def consume_token(self, kind: TokenKind, token_hash: str, now: datetime) -> Account | None:
        """Delete an unexpired token and return its owner in one atomic statement.

        Concurrent callers racing on the same hash see exactly one returned row.
        """
        query = sql.SQL(
            "DELETE FROM {table} t USING users u "
            "WHERE u.user_id = t.user_id AND t.token_hash = %s AND t.expires_at > %s "
            "RETURNING {columns}"
        ).format(columns=self._qualified_account_columns(), table=sql.Identifier(kind.table))
        with _translate_errors(f"consume_{kind.value}_token"):
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(query, (token_hash, now))
                    row = cur.fetchone()
                conn.commit()
        return self._map_account(row) if row else None

    def delete_token(self, kind: TokenKind, token_hash: str) -> bool:
        query = sql.SQL("DELETE FROM {table} WHERE token_hash = %s").format(table=sql.Identifier(kind.table))
        with _translate_errors(f"delete_{kind.value}_token"):
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, (token_hash,))
                    deleted = cur.rowcount
                conn.commit()
        return deleted > 0

    def delete_tokens_for_user(self, kind: TokenKind, user_id: str) -> int:
        query = sql.SQL("DELETE FROM {table} WHERE user_id = %s").format(table=sql.Identifier(kind.table))
        with _translate_errors(f"delete_{kind.value}_tokens_for_user"):
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, (user_id,))
                    deleted = cur.rowcount
                conn.commit()
        return deleted

    def purge_expired_tokens(self, kind: TokenKind, now: datetime) -> int:
        query = sql.SQL("DELETE FROM {table} WHERE expires_at <= %s").format(table=sql.Identifier(kind.table))
        with _translate_errors(f"purge_{kind.value}_tokens"):
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, (now,))
                    deleted = cur.rowcount
                conn.commit()
        return deleted

    # -- audit log -------------------------------------------------------------

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record an audit trail entry capturing identity workflow activity."""
        with _translate_errors("write_audit_event"):
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        INSERT INTO identity_audit_log (account_id, event_type, actor, metadata)
                        VALUES (%s, %s, %s, %s)
                        """,
                        (account_id, event_type, actor, Json(metadata or {})),
                    )
                conn.commit()

    def list_audit_events(
        self,
        *,
        account_id: str | None = None,
        event_type: str | None = None,
        created_after: datetime | None = None,
        created_before: datetime | None = None,
        limit: int = 50,
        cursor: Tuple[datetime, int] | None = None,
    ) -> tuple[list[AuditLogRecord], Optional[Tuple[datetime, int]]]:
        """Return audit log entries with optional filters and cursor pagination."""
        limit = max(1, min(limit, 100))
        clauses = ["TRUE"]
        params: list[Any] = []

        if account_id:
            clauses.append("account_id = %s")
            params.append(account_id)
        if event_type:
            clauses.append("event_type = %s")
            params.append(event_type)
        if created_after:
            clauses.append("created_at >= %s")
            params.append(created_after)
        if created_before:
            clauses.append("created_at <= %s")
            params.append(created_before)
        if cursor:
            clauses.append("(created_at, audit_id) < (%s, %s)")
            params.extend(cursor)

        where_sql = " AND ".join(clauses)
        query = f"""
            SELECT audit_id, account_id, event_type, actor, metadata, created_at
            FROM identity_audit_log
            WHERE {where_sql}
            ORDER BY created_at DESC, audit_id DESC
            LIMIT %s
        """
        params.append(limit)

        records: list[AuditLogRecord] = []
        with _translate_errors("list_audit_events"):
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(query, params)
                    for row in cur.fetchall():
                        records.append(
                            AuditLogRecord(
                                audit_id=row[0],
                                account_id=str(row[1]) if row[1] else None,
                                event_type=row[2],
                                actor=row[3],
                                metadata=row[4] or {},
                                created_at=row[5],
                            )
                        )

        next_cursor: Tuple[datetime, int] | None = None
        if len(records) == limit:
            last = records[-1]
            next_cursor = (last.created_at, last.audit_id)
        return records, next_cursor

    # -- row mapping -----------------------------------------------------------

    @staticmethod
    def _qualified_account_columns() -> sql.Composable:
        return sql.SQL(", ").join(
            sql.Identifier("u", column.strip()) for column in _ACCOUNT_COLUMNS.split(",")
        )

    def _map_account(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            user_id=str(row[0]),
            email=row[1],
            password_hash=row[2],
            account_type=AccountType(row[3]),
            is_email_verified=row[4],
            is_active=row[5],
            created_at=row[6],
            updated_at=row[7],
        )

    def _map_individual(self, row: tuple) -> IndividualProfile:
        return IndividualProfile(str(row[0]), *row[1:])

    def _map_organization(self, row: tuple) -> OrganizationProfile:
        return OrganizationProfile(str(row[0]), row[1], row[2], str(row[3]), *row[4:])
