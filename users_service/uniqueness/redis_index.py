"""Redis-backed uniqueness index shared by every service process."""

from __future__ import annotations

from typing import Final

from redis import Redis
from redis.exceptions import RedisError

from ..domain.errors import StorageError


class RedisUniquenessIndex:
    """Distributed key index built on ``SET NX`` with a reservation TTL."""

    _RESERVED: Final[str] = "reserved"
    _COMMITTED: Final[str] = "committed"

    def __init__(
        self,
        client: Redis,
        *,
        reservation_ttl_seconds: int = 30,
        key_prefix: str = "users:key",
    ) -> None:
        """Store the Redis client, the reservation TTL and the key namespace."""
        self._client = client
        self._ttl_ms = reservation_ttl_seconds * 1000
        self._key_prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}"

    def reserve(self, key: str) -> bool:
        """Return ``True`` when this caller won the key; never waits on contention."""
        try:
            result = self._client.set(self._key(key), self._RESERVED, nx=True, px=self._ttl_ms)
        except RedisError as exc:
            raise StorageError(f"uniqueness index unavailable: {exc}") from exc
        return bool(result)

    def commit(self, key: str) -> None:
        """Make a reservation this caller still holds permanent.

        ``XX`` leaves a key that was released in the meantime (for example by
        a concurrent deactivation) free instead of resurrecting it.
        """
        try:
            self._client.set(self._key(key), self._COMMITTED, xx=True)
        except RedisError as exc:
            raise StorageError(f"uniqueness index unavailable: {exc}") from exc

    def release(self, key: str) -> None:
        try:
            self._client.delete(self._key(key))
        except RedisError as exc:
            raise StorageError(f"uniqueness index unavailable: {exc}") from exc

    def is_held(self, key: str) -> bool:
        try:
            return bool(self._client.exists(self._key(key)))
        except RedisError as exc:
            raise StorageError(f"uniqueness index unavailable: {exc}") from exc
