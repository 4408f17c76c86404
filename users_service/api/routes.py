"""HTTP route definitions for the users service."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from ..domain import errors
from ..domain.account import UserAccount
from ..domain.contracts import AccountPatch, CreateAccountInput
from ..domain.service import AccountLifecycleManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")


class UserAccountResponse(BaseModel):
    """Serialised representation of a `UserAccount`; the password hash never leaves the service."""

    account_id: str
    email: str
    full_name: str
    phone: str
    version: int
    state: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, account: UserAccount) -> "UserAccountResponse":
        """Build a response model from the domain aggregate."""
        return cls(
            account_id=account.account_id,
            email=account.email,
            full_name=account.full_name,
            phone=account.phone,
            version=account.version,
            state=account.state.value,
            created_at=account.created_at,
            updated_at=account.updated_at,
        )


class CreateAccountRequest(BaseModel):
    """Payload accepted when creating an account.

    Fields are loosely typed on purpose so that the domain validator can
    report every violation at once.
    """

    email: str | None = None
    full_name: str | None = None
    phone: str | None = None
    password: str | None = None


class UpdateAccountRequest(BaseModel):
    """Partial update; ``version`` is the version the client last read."""

    version: int = Field(..., ge=1)
    email: str | None = None
    full_name: str | None = None
    phone: str | None = None
    password: str | None = None


class UserListResponse(BaseModel):
    users: list[UserAccountResponse]


class AuditLogEntry(BaseModel):
    """Audit log response entry."""

    audit_id: int
    account_id: str | None
    event_type: str
    actor: str | None
    metadata: dict[str, Any]
    created_at: datetime


class AuditLogResponse(BaseModel):
    """Envelope for paginated audit log data."""

    items: list[AuditLogEntry]
    next_cursor: str | None = None


def get_manager(request: Request) -> AccountLifecycleManager:
    """Resolve the `AccountLifecycleManager` stored on the FastAPI application state."""
    manager: AccountLifecycleManager = request.app.state.account_manager
    return manager


@router.post("/users", response_model=UserAccountResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: CreateAccountRequest,
    manager: AccountLifecycleManager = Depends(get_manager),
    actor: str | None = Header(default=None, alias="X-Actor-ID"),
) -> UserAccountResponse:
    """Create an account; the email must not be held by another active account."""
    try:
        account = manager.create_account(
            CreateAccountInput(
                email=payload.email,
                full_name=payload.full_name,
                phone=payload.phone,
                password=payload.password,
            ),
            actor=actor,
        )
    except errors.AccountError as exc:
        raise _http_error(exc) from exc
    return UserAccountResponse.from_domain(account)


@router.get("/users", response_model=UserListResponse)
def list_users(
    include_deactivated: bool = Query(default=False),
    manager: AccountLifecycleManager = Depends(get_manager),
) -> UserListResponse:
    try:
        accounts = manager.list_accounts(include_deactivated=include_deactivated)
    except errors.AccountError as exc:
        raise _http_error(exc) from exc
    return UserListResponse(users=[UserAccountResponse.from_domain(a) for a in accounts])


@router.get("/users/{account_id}", response_model=UserAccountResponse)
def get_user(
    account_id: str,
    manager: AccountLifecycleManager = Depends(get_manager),
) -> UserAccountResponse:
    """Retrieve an account, including deactivated ones."""
    try:
        account = manager.get_account(account_id)
    except errors.AccountError as exc:
        raise _http_error(exc) from exc
    return UserAccountResponse.from_domain(account)


@router.patch("/users/{account_id}", response_model=UserAccountResponse)
def update_user(
    account_id: str,
    payload: UpdateAccountRequest,
    manager: AccountLifecycleManager = Depends(get_manager),
    actor: str | None = Header(default=None, alias="X-Actor-ID"),
) -> UserAccountResponse:
    """Apply a partial update guarded by the version the client read."""
    try:
        account = manager.update_account(
            account_id,
            payload.version,
            AccountPatch(
                email=payload.email,
                full_name=payload.full_name,
                phone=payload.phone,
                password=payload.password,
            ),
            actor=actor,
        )
    except errors.AccountError as exc:
        raise _http_error(exc) from exc
    return UserAccountResponse.from_domain(account)


@router.delete("/users/{account_id}", response_model=UserAccountResponse)
def deactivate_user(
    account_id: str,
    version: int = Query(..., ge=1),
    manager: AccountLifecycleManager = Depends(get_manager),
    actor: str | None = Header(default=None, alias="X-Actor-ID"),
) -> UserAccountResponse:
    """Soft-delete an account. Repeating the call on a deactivated account is a no-op."""
    try:
        account = manager.deactivate_account(account_id, version, actor=actor)
    except errors.AccountError as exc:
        raise _http_error(exc) from exc
    return UserAccountResponse.from_domain(account)


@router.get("/audit/logs", response_model=AuditLogResponse)
def list_audit_logs(
    account_id: str | None = Query(default=None),
    event_type: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100),
    cursor: str | None = Query(default=None),
    manager: AccountLifecycleManager = Depends(get_manager),
) -> AuditLogResponse:
    """Return paginated audit events with optional filtering."""
    try:
        records, next_cursor = manager.list_audit_events(
            account_id=account_id,
            event_type=event_type,
            limit=limit,
            cursor=cursor,
        )
    except errors.AccountError as exc:
        raise _http_error(exc) from exc

    items = [
        AuditLogEntry(
            audit_id=record.audit_id,
            account_id=record.account_id,
            event_type=record.event_type,
            actor=record.actor,
            metadata=record.metadata,
            created_at=record.created_at,
        )
        for record in records
    ]
    return AuditLogResponse(items=items, next_cursor=next_cursor)


_STATUS_BY_ERROR: list[tuple[type[errors.AccountError], int]] = [
    (errors.ValidationError, status.HTTP_400_BAD_REQUEST),
    (errors.NotFoundError, status.HTTP_404_NOT_FOUND),
    (errors.DuplicateError, status.HTTP_409_CONFLICT),
    (errors.StaleVersionError, status.HTTP_409_CONFLICT),
    (errors.AccountDeactivatedError, status.HTTP_409_CONFLICT),
    (errors.StorageError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def _http_error(exc: errors.AccountError) -> HTTPException:
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, mapped in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = mapped
            break
    if status_code >= 500:
        logger.warning("account operation failed: %s", exc)

    detail: dict[str, Any] = {"code": exc.code, "message": str(exc)}
    if isinstance(exc, errors.ValidationError):
        detail["errors"] = [
            {"field": v.field, "code": v.code, "message": v.message} for v in exc.violations
        ]
    return HTTPException(status_code=status_code, detail=detail)
