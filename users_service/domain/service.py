"""Account lifecycle orchestration: validation, key reservation, and versioned writes."""

from __future__ import annotations

import json
import logging
import uuid
from base64 import urlsafe_b64decode, urlsafe_b64encode
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from ..metrics import record_operation
from ..security.passwords import hash_password
from .account import AccountState, UserAccount
from .audit import AuditLogRecord
from .contracts import AccountChanges, AccountPatch, CreateAccountInput
from .errors import (
    AccountDeactivatedError,
    AccountError,
    DuplicateError,
    NotFoundError,
    StaleVersionError,
    ValidationError,
    Violation,
)
from .ports import AccountStore, UniquenessIndex
from .validator import AccountValidator

logger = logging.getLogger(__name__)


class AccountLifecycleManager:
    """Create, update and deactivate accounts while keeping email keys unique.

    Conflicts are never retried here. A stale update may have to be re-merged
    with whatever changed in between, so that decision belongs to the caller.
    """

    def __init__(
        self,
        store: AccountStore,
        index: UniquenessIndex,
        validator: AccountValidator,
        password_hasher: Callable[[str], str] = hash_password,
    ) -> None:
        """Store the collaborators every lifecycle operation is composed from."""
        self._store = store
        self._index = index
        self._validator = validator
        self._hash_password = password_hasher

    def create_account(
        self, payload: CreateAccountInput, actor: str | None = None
    ) -> UserAccount:
        """Validate, reserve the email key, then insert the account.

        The reservation is released if anything after it fails or is
        interrupted, so an abandoned request never leaves the key held.
        """
        try:
            normalized = self._validator.validate_create(payload)
            key = normalized.email
            if not self._index.reserve(key):
                logger.info("account create rejected, key already held: %s", key)
                raise DuplicateError(key)

            try:
                now = datetime.now(timezone.utc)
                account = UserAccount(
                    account_id=str(uuid.uuid4()),
                    email=key,
                    full_name=normalized.full_name,
                    phone=normalized.phone,
                    password_hash=self._hash_password(normalized.password),
                    version=1,
                    state=AccountState.ACTIVE,
                    created_at=now,
                    updated_at=now,
                )
                self._store.insert(account, actor=actor)
            except BaseException:
                self._index.release(key)
                raise
            self._index.commit(key)
        except AccountError as exc:
            record_operation("create", exc.code)
            raise

        record_operation("create")
        logger.info("account created account_id=%s", account.account_id)
        return account

    def update_account(
        self,
        account_id: str,
        version: int,
        patch: AccountPatch,
        actor: str | None = None,
    ) -> UserAccount:
        """Apply a partial update if ``version`` is still current.

        An email change claims the new key before the write and frees the old
        one only after the write succeeded.
        """
        try:
            normalized = self._validator.validate_patch(patch)
            changes = AccountChanges(
                email=normalized.email,
                full_name=normalized.full_name,
                phone=normalized.phone,
                password_hash=(
                    self._hash_password(normalized.password)
                    if normalized.password is not None
                    else None
                ),
            )

            current = self._store.get(account_id)
            if current is None:
                raise NotFoundError(account_id)
            if not current.is_active:
                raise AccountDeactivatedError(account_id)
            # The store re-checks the version atomically; checking here as well
            # makes ``current`` the exact pre-image of a successful write.
            if current.version != version:
                raise StaleVersionError(account_id, expected=version, actual=current.version)
            new_key = changes.email if changes.email not in (None, current.email) else None

            if new_key is None:
                updated = self._store.update(account_id, version, changes, actor=actor)
            else:
                if not self._index.reserve(new_key):
                    raise DuplicateError(new_key)
                try:
                    updated = self._store.update(account_id, version, changes, actor=actor)
                except BaseException:
                    self._index.release(new_key)
                    raise
                self._index.commit(new_key)
                self._index.release(current.email)
        except AccountError as exc:
            record_operation("update", exc.code)
            raise

        record_operation("update")
        logger.info("account updated account_id=%s version=%s", account_id, updated.version)
        return updated

    def deactivate_account(
        self, account_id: str, version: int, actor: str | None = None
    ) -> UserAccount:
        """Soft-delete an account and free its email for reuse.

        Deactivating an already deactivated account is a no-op that returns
        the stored account, whatever version the caller supplied.
        """
        try:
            try:
                account = self._store.deactivate(account_id, version, actor=actor)
            except AccountDeactivatedError:
                account = self._store.get(account_id)
                if account is None:
                    raise NotFoundError(account_id)
                record_operation("deactivate", "noop")
                logger.info("account already deactivated account_id=%s", account_id)
                return account
            self._index.release(account.email)
        except AccountError as exc:
            record_operation("deactivate", exc.code)
            raise

        record_operation("deactivate")
        logger.info("account deactivated account_id=%s", account_id)
        return account

    def get_account(self, account_id: str) -> UserAccount:
        account = self._store.get(account_id)
        if account is None:
            raise NotFoundError(account_id)
        return account

    def find_account_by_email(self, email: str) -> UserAccount | None:
        """Look up the active account holding ``email`` after normalizing it."""
        return self._store.find_by_key(self._validator.normalize_key(email))

    def list_accounts(self, include_deactivated: bool = False) -> list[UserAccount]:
        return self._store.list_accounts(include_deactivated=include_deactivated)

    def list_audit_events(
        self,
        *,
        account_id: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
        cursor: str | None = None,
    ) -> tuple[list[AuditLogRecord], str | None]:
        """Return audit records newest first with opaque cursor pagination."""
        decoded_cursor: Optional[Tuple[datetime, int]] = None
        if cursor:
            decoded_cursor = self._decode_cursor(cursor)
        records, next_cursor_tuple = self._store.list_audit_events(
            account_id=account_id,
            event_type=event_type,
            limit=limit,
            cursor=decoded_cursor,
        )
        next_cursor = self._encode_cursor(next_cursor_tuple) if next_cursor_tuple else None
        return records, next_cursor

    def _encode_cursor(self, cursor: Tuple[datetime, int]) -> str:
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
            raise ValidationError([Violation("cursor", "invalid", "invalid cursor")]) from exc
