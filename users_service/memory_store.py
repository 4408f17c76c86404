"""In-process account store used for development and tests."""

from __future__ import annotations

import itertools
from dataclasses import replace
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Optional, Tuple

from .domain import audit
from .domain.account import AccountState, UserAccount
from .domain.audit import AuditLogRecord
from .domain.contracts import AccountChanges
from .domain.errors import (
    AccountDeactivatedError,
    ConflictError,
    NotFoundError,
    StaleVersionError,
)


class InMemoryAccountStore:
    """Dictionary-backed store with the same semantics as the Postgres repository.

    A single lock makes each check-and-write atomic; the audit entry for a
    mutation is appended under the same lock.
    """

    def __init__(self) -> None:
        self._accounts: dict[str, UserAccount] = {}
        self._active_keys: dict[str, str] = {}
        self._audit_log: list[AuditLogRecord] = []
        self._audit_seq = itertools.count(1)
        self._lock = Lock()

    def insert(self, account: UserAccount, actor: str | None = None) -> str:
        with self._lock:
            if account.email in self._active_keys:
                raise ConflictError(account.email)
            self._accounts[account.account_id] = account
            self._active_keys[account.email] = account.account_id
            self._record(account.account_id, audit.ACCOUNT_CREATED, actor, {"email": account.email})
        return account.account_id

    def update(
        self,
        account_id: str,
        version: int,
        changes: AccountChanges,
        actor: str | None = None,
    ) -> UserAccount:
        with self._lock:
            current = self._checked(account_id, version)
            columns = changes.as_columns()
            new_email = columns.get("email", current.email)
            if new_email != current.email:
                holder = self._active_keys.get(new_email)
                if holder is not None and holder != account_id:
                    raise ConflictError(new_email)

            updated = replace(
                current,
                **columns,
                version=current.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            self._accounts[account_id] = updated
            if new_email != current.email:
                del self._active_keys[current.email]
                self._active_keys[new_email] = account_id
            self._record(
                account_id, audit.ACCOUNT_UPDATED, actor, {"fields": changes.changed_fields()}
            )
        return updated

    def deactivate(
        self, account_id: str, version: int, actor: str | None = None
    ) -> UserAccount:
        with self._lock:
            current = self._checked(account_id, version)
            updated = replace(
                current,
                state=AccountState.DEACTIVATED,
                version=current.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            self._accounts[account_id] = updated
            self._active_keys.pop(current.email, None)
            self._record(account_id, audit.ACCOUNT_DEACTIVATED, actor, {"email": current.email})
        return updated

    def get(self, account_id: str) -> UserAccount | None:
        with self._lock:
            return self._accounts.get(account_id)

    def find_by_key(self, key: str) -> UserAccount | None:
        with self._lock:
            account_id = self._active_keys.get(key)
            return self._accounts[account_id] if account_id is not None else None

    def list_accounts(self, include_deactivated: bool = False) -> list[UserAccount]:
        with self._lock:
            accounts = [
                account
                for account in self._accounts.values()
                if include_deactivated or account.is_active
            ]
        return sorted(accounts, key=lambda a: (a.created_at, a.account_id))

    def list_audit_events(
        self,
        *,
        account_id: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
        cursor: Tuple[datetime, int] | None = None,
    ) -> tuple[list[AuditLogRecord], Optional[Tuple[datetime, int]]]:
        limit = max(1, min(limit, 100))
        with self._lock:
            results = list(self._audit_log)
        if account_id:
            results = [record for record in results if record.account_id == account_id]
        if event_type:
            results = [record for record in results if record.event_type == event_type]
        results.sort(key=lambda r: (r.created_at, r.audit_id), reverse=True)
        if cursor:
            results = [r for r in results if (r.created_at, r.audit_id) < cursor]

        page = results[:limit]
        next_cursor = None
        if len(results) > limit:
            last = page[-1]
            next_cursor = (last.created_at, last.audit_id)
        return page, next_cursor

    def _checked(self, account_id: str, version: int) -> UserAccount:
        """Return the current snapshot if it may be mutated at ``version``."""
        current = self._accounts.get(account_id)
        if current is None:
            raise NotFoundError(account_id)
        if not current.is_active:
            raise AccountDeactivatedError(account_id)
        if current.version != version:
            raise StaleVersionError(account_id, expected=version, actual=current.version)
        return current

    def _record(
        self,
        account_id: str,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any],
    ) -> None:
        self._audit_log.append(
            AuditLogRecord(
                audit_id=next(self._audit_seq),
                account_id=account_id,
                event_type=event_type,
                actor=actor,
                metadata=metadata,
                created_at=datetime.now(timezone.utc),
            )
        )
