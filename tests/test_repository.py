"""Tests for the Postgres account repository.

Error translation is checked against a stub pool. The integration tests
run only when ``USERS_SERVICE_TEST_POSTGRES_URL`` points at a disposable
database.
"""

from __future__ import annotations

import os
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone

import psycopg
import pytest
from psycopg.errors import UniqueViolation

from users_service.domain import audit
from users_service.domain.account import AccountState, UserAccount
from users_service.domain.contracts import AccountChanges
from users_service.domain.errors import (
    AccountDeactivatedError,
    ConflictError,
    NotFoundError,
    StaleVersionError,
    StorageError,
)
from users_service.repository import AccountRepository

POSTGRES_URL = os.getenv("USERS_SERVICE_TEST_POSTGRES_URL")


def make_account(email: str = "a@x.com") -> UserAccount:
    now = datetime.now(timezone.utc)
    return UserAccount(
        account_id=str(uuid.uuid4()),
        email=email,
        full_name="A",
        phone="555-0100",
        password_hash="hash",
        version=1,
        state=AccountState.ACTIVE,
        created_at=now,
        updated_at=now,
    )


class RaisingPool:
    """Pool stub whose connections fail with a given driver error."""

    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    @contextmanager
    def connection(self):
        raise self.exc
        yield


def test_unique_violation_becomes_conflict():
    repo = AccountRepository(RaisingPool(UniqueViolation("duplicate key")))  # type: ignore[arg-type]
    with pytest.raises(ConflictError) as excinfo:
        repo.insert(make_account("dup@x.com"))
    assert excinfo.value.key == "dup@x.com"


def test_driver_failure_becomes_storage_error():
    repo = AccountRepository(RaisingPool(psycopg.OperationalError("server closed the connection")))  # type: ignore[arg-type]
    with pytest.raises(StorageError):
        repo.get("anything")


@pytest.fixture()
def repository():
    if not POSTGRES_URL:
        pytest.skip("USERS_SERVICE_TEST_POSTGRES_URL not set")
    from psycopg_pool import ConnectionPool

    pool = ConnectionPool(POSTGRES_URL, open=True)
    repo = AccountRepository(pool)
    repo.ensure_schema()
    with pool.connection() as conn:
        conn.execute("TRUNCATE user_accounts, user_audit_log")
        conn.commit()
    try:
        yield repo
    finally:
        pool.close()


def test_postgres_insert_and_get_round_trip(repository):
    account = make_account()
    assert repository.insert(account) == account.account_id
    stored = repository.get(account.account_id)
    assert stored.account_id == account.account_id
    assert stored.email == account.email
    assert stored.version == 1
    assert stored.state is AccountState.ACTIVE


def test_postgres_enforces_unique_active_email(repository):
    repository.insert(make_account("dup@x.com"))
    with pytest.raises(ConflictError):
        repository.insert(make_account("dup@x.com"))


def test_postgres_versioned_update_and_deactivate(repository):
    account = make_account()
    repository.insert(account)

    updated = repository.update(account.account_id, 1, AccountChanges(full_name="B"))
    assert updated.version == 2

    with pytest.raises(StaleVersionError):
        repository.update(account.account_id, 1, AccountChanges(full_name="C"))
    assert repository.get(account.account_id).full_name == "B"

    with pytest.raises(NotFoundError):
        repository.update("missing", 1, AccountChanges(full_name="C"))

    deactivated = repository.deactivate(account.account_id, 2)
    assert deactivated.state is AccountState.DEACTIVATED
    assert repository.find_by_key(account.email) is None
    with pytest.raises(AccountDeactivatedError):
        repository.deactivate(account.account_id, 3)

    repository.insert(make_account(account.email))
    assert repository.find_by_key(account.email) is not None


def test_postgres_audit_log_pagination(repository):
    for idx in range(4):
        repository.insert(make_account(f"user{idx}@x.com"), actor="seed")

    page, cursor = repository.list_audit_events(limit=3)
    assert len(page) == 3
    assert cursor is not None
    assert all(record.event_type == audit.ACCOUNT_CREATED for record in page)

    rest, cursor = repository.list_audit_events(limit=3, cursor=cursor)
    assert len(rest) == 1
    assert cursor is None
