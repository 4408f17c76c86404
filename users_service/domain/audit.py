"""Audit trail records written alongside every account mutation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

ACCOUNT_CREATED = "account.created"
ACCOUNT_UPDATED = "account.updated"
ACCOUNT_DEACTIVATED = "account.deactivated"


@dataclass(slots=True)
class AuditLogRecord:
    """Row projection for items in user_audit_log."""

    audit_id: int
    account_id: str | None
    event_type: str
    actor: str | None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
