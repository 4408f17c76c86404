from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class AccountState(str, Enum):
    ACTIVE = "ACTIVE"
    DEACTIVATED = "DEACTIVATED"


@dataclass(frozen=True, slots=True)
class UserAccount:
    """Aggregate root for a user account.

    Instances are immutable snapshots; stores hand out new snapshots on every
    mutation. ``email`` is the normalized unique key.
    """

    account_id: str
    email: str
    full_name: str
    phone: str
    password_hash: str = field(repr=False)
    version: int
    state: AccountState
    created_at: datetime
    updated_at: datetime

    @property
    def is_active(self) -> bool:
        return self.state is AccountState.ACTIVE
