from __future__ import annotations

import uuid
from datetime import datetime, timezone

import pytest

from users_service.domain import audit
from users_service.domain.account import AccountState, UserAccount
from users_service.domain.contracts import AccountChanges
from users_service.domain.errors import (
    AccountDeactivatedError,
    ConflictError,
    DuplicateError,
    NotFoundError,
    StaleVersionError,
)
from users_service.memory_store import InMemoryAccountStore


def make_account(email: str = "a@x.com", name: str = "A") -> UserAccount:
    now = datetime.now(timezone.utc)
    return UserAccount(
        account_id=str(uuid.uuid4()),
        email=email,
        full_name=name,
        phone="555-0100",
        password_hash="hash",
        version=1,
        state=AccountState.ACTIVE,
        created_at=now,
        updated_at=now,
    )


@pytest.fixture()
def store() -> InMemoryAccountStore:
    return InMemoryAccountStore()


def test_insert_then_get_round_trips(store):
    account = make_account()
    account_id = store.insert(account)
    assert account_id == account.account_id
    stored = store.get(account_id)
    assert stored == account
    assert stored.version == 1


def test_insert_rejects_active_duplicate_key(store):
    store.insert(make_account("dup@x.com"))
    with pytest.raises(ConflictError) as excinfo:
        store.insert(make_account("dup@x.com"))
    assert isinstance(excinfo.value, DuplicateError)
    assert excinfo.value.key == "dup@x.com"


def test_update_bumps_version_once(store):
    account = make_account()
    store.insert(account)
    updated = store.update(account.account_id, 1, AccountChanges(full_name="B"))
    assert updated.full_name == "B"
    assert updated.version == 2
    assert updated.created_at == account.created_at
    assert updated.updated_at >= account.updated_at
    assert store.get(account.account_id) == updated


def test_stale_update_never_mutates(store):
    account = make_account()
    store.insert(account)
    store.update(account.account_id, 1, AccountChanges(full_name="B"))
    before = store.get(account.account_id)

    with pytest.raises(StaleVersionError) as excinfo:
        store.update(account.account_id, 1, AccountChanges(full_name="C"))

    assert excinfo.value.expected == 1
    assert excinfo.value.actual == 2
    assert store.get(account.account_id) == before


def test_update_unknown_account(store):
    with pytest.raises(NotFoundError):
        store.update("missing", 1, AccountChanges(full_name="B"))


def test_update_email_moves_key(store):
    account = make_account("old@x.com")
    store.insert(account)
    store.update(account.account_id, 1, AccountChanges(email="new@x.com"))
    assert store.find_by_key("old@x.com") is None
    assert store.find_by_key("new@x.com").account_id == account.account_id


def test_update_email_conflicts_with_other_active_account(store):
    first = make_account("first@x.com")
    second = make_account("second@x.com")
    store.insert(first)
    store.insert(second)
    with pytest.raises(ConflictError):
        store.update(second.account_id, 1, AccountChanges(email="first@x.com"))
    assert store.get(second.account_id).email == "second@x.com"


def test_deactivate_frees_key_and_hides_from_lookup(store):
    account = make_account("a@x.com")
    store.insert(account)
    deactivated = store.deactivate(account.account_id, 1)

    assert deactivated.state is AccountState.DEACTIVATED
    assert deactivated.version == 2
    assert store.find_by_key("a@x.com") is None
    assert store.get(account.account_id).state is AccountState.DEACTIVATED

    replacement = make_account("a@x.com")
    store.insert(replacement)
    assert store.find_by_key("a@x.com").account_id == replacement.account_id


def test_deactivate_checks_version_and_state(store):
    account = make_account()
    store.insert(account)
    with pytest.raises(StaleVersionError):
        store.deactivate(account.account_id, 5)
    store.deactivate(account.account_id, 1)
    with pytest.raises(AccountDeactivatedError):
        store.deactivate(account.account_id, 2)
    with pytest.raises(AccountDeactivatedError):
        store.update(account.account_id, 2, AccountChanges(full_name="B"))


def test_list_accounts_filters_deactivated(store):
    keep = make_account("keep@x.com")
    gone = make_account("gone@x.com")
    store.insert(keep)
    store.insert(gone)
    store.deactivate(gone.account_id, 1)

    assert [a.account_id for a in store.list_accounts()] == [keep.account_id]
    assert {a.account_id for a in store.list_accounts(include_deactivated=True)} == {
        keep.account_id,
        gone.account_id,
    }


def test_audit_log_records_mutations_newest_first(store):
    account = make_account()
    store.insert(account, actor="admin")
    store.update(account.account_id, 1, AccountChanges(phone="1", password_hash="h2"))
    store.deactivate(account.account_id, 2)

    records, next_cursor = store.list_audit_events(account_id=account.account_id)
    assert next_cursor is None
    assert [r.event_type for r in records] == [
        audit.ACCOUNT_DEACTIVATED,
        audit.ACCOUNT_UPDATED,
        audit.ACCOUNT_CREATED,
    ]
    assert records[1].metadata == {"fields": ["password", "phone"]}
    assert records[2].actor == "admin"


def test_audit_log_paginates_with_cursor(store):
    for idx in range(5):
        store.insert(make_account(f"user{idx}@x.com"))

    first_page, cursor = store.list_audit_events(limit=3)
    assert len(first_page) == 3
    assert cursor is not None

    second_page, cursor = store.list_audit_events(limit=3, cursor=cursor)
    assert len(second_page) == 2
    assert cursor is None
    seen = {r.audit_id for r in first_page} | {r.audit_id for r in second_page}
    assert seen == {1, 2, 3, 4, 5}
