"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass, fields


@dataclass(slots=True)
class CreateAccountInput:
    """Inputs required to create an account."""

    email: str
    full_name: str
    phone: str
    password: str


@dataclass(slots=True)
class AccountPatch:
    """Partial update requested by a client; ``None`` leaves a field unchanged."""

    email: str | None = None
    full_name: str | None = None
    phone: str | None = None
    password: str | None = None

    def supplied(self) -> dict[str, str]:
        """Return only the fields the caller actually set."""
        return {
            item.name: getattr(self, item.name)
            for item in fields(self)
            if getattr(self, item.name) is not None
        }


@dataclass(frozen=True, slots=True)
class AccountChanges:
    """Normalized, store-ready form of a patch (the password is already hashed)."""

    email: str | None = None
    full_name: str | None = None
    phone: str | None = None
    password_hash: str | None = None

    def as_columns(self) -> dict[str, str]:
        return {
            item.name: getattr(self, item.name)
            for item in fields(self)
            if getattr(self, item.name) is not None
        }

    def changed_fields(self) -> list[str]:
        """Public names of the changed fields, safe to write to the audit log."""
        return sorted(
            "password" if name == "password_hash" else name for name in self.as_columns()
        )
