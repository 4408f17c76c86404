"""Collaborator interfaces the lifecycle manager is composed from."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, Tuple

from .account import UserAccount
from .audit import AuditLogRecord
from .contracts import AccountChanges

AuditCursor = Tuple[datetime, int]


class UniquenessIndex(Protocol):
    """Fail-fast claim on normalized keys among active accounts."""

    def reserve(self, key: str) -> bool:
        """Provisionally hold ``key``; ``False`` immediately if it is already held."""

    def commit(self, key: str) -> None:
        """Make a reservation durable once the store write succeeded.

        A no-op when the key was released in the meantime.
        """

    def release(self, key: str) -> None:
        """Drop a reservation or committed entry so the key can be reused."""

    def is_held(self, key: str) -> bool: ...


class AccountStore(Protocol):
    """Persistent account storage with compare-and-swap versioning."""

    def insert(self, account: UserAccount, actor: str | None = None) -> str: ...

    def update(
        self,
        account_id: str,
        version: int,
        changes: AccountChanges,
        actor: str | None = None,
    ) -> UserAccount: ...

    def deactivate(
        self, account_id: str, version: int, actor: str | None = None
    ) -> UserAccount: ...

    def get(self, account_id: str) -> UserAccount | None: ...

    def find_by_key(self, key: str) -> UserAccount | None: ...

    def list_accounts(self, include_deactivated: bool = False) -> list[UserAccount]: ...

    def list_audit_events(
        self,
        *,
        account_id: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
        cursor: AuditCursor | None = None,
    ) -> tuple[list[AuditLogRecord], Optional[AuditCursor]]: ...
