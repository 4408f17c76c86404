"""Postgres repository for user account data."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, Optional, Tuple

import psycopg
from psycopg.errors import UniqueViolation
from psycopg.rows import tuple_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool

from .domain import audit
from .domain.account import AccountState, UserAccount
from .domain.audit import AuditLogRecord
from .domain.contracts import AccountChanges
from .domain.errors import (
    AccountDeactivatedError,
    ConflictError,
    NotFoundError,
    StaleVersionError,
    StorageError,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS user_accounts (
    account_id    TEXT PRIMARY KEY,
    email         TEXT NOT NULL,
    full_name     TEXT NOT NULL,
    phone         TEXT NOT NULL,
    password_hash TEXT NOT NULL,
    version       INTEGER NOT NULL,
    state         TEXT NOT NULL,
    created_at    TIMESTAMPTZ NOT NULL,
    updated_at    TIMESTAMPTZ NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS user_accounts_active_email
    ON user_accounts (email) WHERE state = 'ACTIVE';
CREATE TABLE IF NOT EXISTS user_audit_log (
    audit_id   BIGSERIAL PRIMARY KEY,
    account_id TEXT,
    event_type TEXT NOT NULL,
    actor      TEXT,
    metadata   JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

_COLUMNS = "account_id, email, full_name, phone, password_hash, version, state, created_at, updated_at"


class AccountRepository:
    """Postgres-backed account persistence with compare-and-swap versioning."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    @contextmanager
    def _transaction(self, key: str | None = None) -> Iterator[psycopg.Cursor]:
        """Yield a cursor inside one transaction, translating driver errors.

        The transaction commits when the block exits cleanly and rolls back
        on any exception, including domain errors raised inside the block.
        """
        try:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    yield cur
                conn.commit()
        except UniqueViolation as exc:
            raise ConflictError(key or "") from exc
        except psycopg.Error as exc:
            logger.error("account storage failure: %s", exc)
            raise StorageError(str(exc)) from exc

    def ensure_schema(self) -> None:
        """Create the account and audit tables when missing."""
        with self._transaction() as cur:
            cur.execute(SCHEMA_SQL)

    def insert(self, account: UserAccount, actor: str | None = None) -> str:
        """Persist a new account; the partial unique index enforces key uniqueness."""
        with self._transaction(account.email) as cur:
            cur.execute(
                f"""
                INSERT INTO user_accounts ({_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    account.account_id,
                    account.email,
                    account.full_name,
                    account.phone,
                    account.password_hash,
                    account.version,
                    account.state.value,
                    account.created_at,
                    account.updated_at,
                ),
            )
            self._write_audit_event(
                cur,
                account_id=account.account_id,
                event_type=audit.ACCOUNT_CREATED,
                actor=actor,
                metadata={"email": account.email},
            )
        return account.account_id

    def update(
        self,
        account_id: str,
        version: int,
        changes: AccountChanges,
        actor: str | None = None,
    ) -> UserAccount:
        """Apply ``changes`` only if the stored version still equals ``version``."""
        columns = changes.as_columns()
        assignments = ["version = version + 1", "updated_at = %s"]
        params: list[Any] = [datetime.now(timezone.utc)]
        for column, value in columns.items():
            assignments.append(f"{column} = %s")
            params.append(value)
        params.extend([account_id, version])

        with self._transaction(columns.get("email")) as cur:
            cur.execute(
                f"""
                UPDATE user_accounts
                SET {", ".join(assignments)}
                WHERE account_id = %s AND version = %s AND state = 'ACTIVE'
                RETURNING {_COLUMNS}
                """,
                params,
            )
            row = cur.fetchone()
            if row is None:
                self._raise_rejected(cur, account_id, version)
            self._write_audit_event(
                cur,
                account_id=account_id,
                event_type=audit.ACCOUNT_UPDATED,
                actor=actor,
                metadata={"fields": changes.changed_fields()},
            )
        return self._map_record(row)

    def deactivate(
        self, account_id: str, version: int, actor: str | None = None
    ) -> UserAccount:
        """Soft-delete the account; the partial index then frees its email."""
        with self._transaction() as cur:
            cur.execute(
                f"""
                UPDATE user_accounts
                SET state = %s, version = version + 1, updated_at = %s
                WHERE account_id = %s AND version = %s AND state = 'ACTIVE'
                RETURNING {_COLUMNS}
                """,
                (
                    AccountState.DEACTIVATED.value,
                    datetime.now(timezone.utc),
                    account_id,
                    version,
                ),
            )
            row = cur.fetchone()
            if row is None:
                self._raise_rejected(cur, account_id, version)
            self._write_audit_event(
                cur,
                account_id=account_id,
                event_type=audit.ACCOUNT_DEACTIVATED,
                actor=actor,
                metadata={"email": row[1]},
            )
        return self._map_record(row)

    def get(self, account_id: str) -> UserAccount | None:
        with self._transaction() as cur:
            cur.execute(
                f"SELECT {_COLUMNS} FROM user_accounts WHERE account_id = %s",
                (account_id,),
            )
            row = cur.fetchone()
        return self._map_record(row) if row else None

    def find_by_key(self, key: str) -> UserAccount | None:
        with self._transaction() as cur:
            cur.execute(
                f"SELECT {_COLUMNS} FROM user_accounts WHERE email = %s AND state = 'ACTIVE'",
                (key,),
            )
            row = cur.fetchone()
        return self._map_record(row) if row else None

    def list_accounts(self, include_deactivated: bool = False) -> list[UserAccount]:
        query = f"SELECT {_COLUMNS} FROM user_accounts"
        if not include_deactivated:
            query += " WHERE state = 'ACTIVE'"
        query += " ORDER BY created_at, account_id"
        with self._transaction() as cur:
            cur.execute(query)
            rows = cur.fetchall()
        return [self._map_record(row) for row in rows]

    def list_audit_events(
        self,
        *,
        account_id: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
        cursor: Tuple[datetime, int] | None = None,
    ) -> tuple[list[AuditLogRecord], Optional[Tuple[datetime, int]]]:
        """Return audit entries newest first with optional filters and keyset pagination."""
        limit = max(1, min(limit, 100))
        clauses = ["TRUE"]
        params: list[Any] = []

        if account_id:
            clauses.append("account_id = %s")
            params.append(account_id)
        if event_type:
            clauses.append("event_type = %s")
            params.append(event_type)
        if cursor:
            clauses.append("(created_at, audit_id) < (%s, %s)")
            params.extend(cursor)

        where_sql = " AND ".join(clauses)
        query = f"""
            SELECT audit_id, account_id, event_type, actor, metadata, created_at
            FROM user_audit_log
            WHERE {where_sql}
            ORDER BY created_at DESC, audit_id DESC
            LIMIT %s
        """
        # One extra row tells us whether another page exists.
        params.append(limit + 1)

        with self._transaction() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()

        records = [
            AuditLogRecord(
                audit_id=row[0],
                account_id=row[1],
                event_type=row[2],
                actor=row[3],
                metadata=row[4] or {},
                created_at=row[5],
            )
            for row in rows[:limit]
        ]
        next_cursor: Tuple[datetime, int] | None = None
        if len(rows) > limit:
            last = records[-1]
            next_cursor = (last.created_at, last.audit_id)
        return records, next_cursor

    def _raise_rejected(self, cur: psycopg.Cursor, account_id: str, version: int) -> None:
        """Explain why a versioned write matched no row."""
        cur.execute(
            "SELECT version, state FROM user_accounts WHERE account_id = %s",
            (account_id,),
        )
        row = cur.fetchone()
        if row is None:
            raise NotFoundError(account_id)
        if row[1] != AccountState.ACTIVE.value:
            raise AccountDeactivatedError(account_id)
        raise StaleVersionError(account_id, expected=version, actual=row[0])

    def _write_audit_event(
        self,
        cur: psycopg.Cursor,
        *,
        account_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        cur.execute(
            """
            INSERT INTO user_audit_log (account_id, event_type, actor, metadata, created_at)
            VALUES (%s, %s, %s, %s, %s)
            """,
            (account_id, event_type, actor, Json(metadata or {}), datetime.now(timezone.utc)),
        )

    def _map_record(self, row: tuple) -> UserAccount:
        """Convert a raw database tuple into the domain ``UserAccount`` dataclass."""
        return UserAccount(
            account_id=row[0],
            email=row[1],
            full_name=row[2],
            phone=row[3],
            password_hash=row[4],
            version=row[5],
            state=AccountState(row[6]),
            created_at=row[7],
            updated_at=row[8],
        )
