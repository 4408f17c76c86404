"""Password hashing helpers."""

from __future__ import annotations

from argon2 import PasswordHasher

_ph = PasswordHasher()


def hash_password(password: str) -> str:
    """Return an Argon2 hash of ``password``."""
    return _ph.hash(password)
