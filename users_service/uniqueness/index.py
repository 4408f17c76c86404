"""In-memory uniqueness index with fail-fast reservations."""

from __future__ import annotations

import time
from dataclasses import dataclass
from threading import Lock


@dataclass(slots=True)
class _Entry:
    committed: bool
    expires_at: float | None

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class InMemoryUniquenessIndex:
    """Thread-safe key index for a single process.

    Provisional reservations expire after ``reservation_ttl_seconds`` so a
    request abandoned between reserve and commit cannot hold a key forever.
    Committed entries never expire.
    """

    def __init__(self, reservation_ttl_seconds: float | None = 30.0) -> None:
        self._ttl = reservation_ttl_seconds
        self._entries: dict[str, _Entry] = {}
        self._lock = Lock()

    def reserve(self, key: str) -> bool:
        """Return ``True`` when the key was free and is now provisionally held."""
        now = time.monotonic()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and not entry.expired(now):
                return False
            expires_at = now + self._ttl if self._ttl else None
            self._entries[key] = _Entry(committed=False, expires_at=expires_at)
            return True

    def commit(self, key: str) -> None:
        """Upgrade a reservation that is still held; a released key stays free."""
        with self._lock:
            if key not in self._entries:
                return
            self._entries[key] = _Entry(committed=True, expires_at=None)

    def release(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def is_held(self, key: str) -> bool:
        now = time.monotonic()
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.expired(now)
