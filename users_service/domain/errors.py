"""Error taxonomy for account lifecycle operations.

Every error carries a stable ``code`` used for metrics labels and by the
transport when mapping failures to responses.
"""

from __future__ import annotations

from dataclasses import dataclass


class AccountError(Exception):
    """Base class for all account lifecycle errors."""

    code = "account_error"


@dataclass(frozen=True, slots=True)
class Violation:
    """A single broken validation rule."""

    field: str
    code: str
    message: str


class ValidationError(AccountError):
    """Client input is malformed; carries every violated rule, not just the first."""

    code = "validation_failed"

    def __init__(self, violations: list[Violation]) -> None:
        self.violations = list(violations)
        summary = "; ".join(f"{v.field}: {v.message}" for v in self.violations)
        super().__init__(summary or "invalid input")


class DuplicateError(AccountError):
    """The normalized key is already held by another active account."""

    code = "duplicate"

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"key already in use: {key}")


class ConflictError(DuplicateError):
    """Raised by stores when the uniqueness constraint rejects a write."""

    code = "conflict"


class StaleVersionError(AccountError):
    """The stored version differs from the version the caller read."""

    code = "stale_version"

    def __init__(self, account_id: str, expected: int, actual: int) -> None:
        self.account_id = account_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"account {account_id} is at version {actual}, not {expected}"
        )


class NotFoundError(AccountError):
    code = "not_found"

    def __init__(self, account_id: str) -> None:
        self.account_id = account_id
        super().__init__(f"account not found: {account_id}")


class AccountDeactivatedError(AccountError):
    """The account is deactivated and can no longer be mutated."""

    code = "deactivated"

    def __init__(self, account_id: str) -> None:
        self.account_id = account_id
        super().__init__(f"account is deactivated: {account_id}")


class StorageError(AccountError):
    """The underlying persistence layer failed; the whole call may be retried."""

    code = "storage_unavailable"
