"""Short-lived key/value storage for OTPs, verification tokens and counters.

``get`` returns ``None`` for a missing or expired key; an empty string is a
real value. A store that cannot be reached raises :class:`StoreUnavailable`
so callers never mistake an outage for a confirmed miss.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Protocol, Tuple

import redis

from rabhan_auth.services.errors import StoreUnavailable

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class EphemeralStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class RedisStore:
    """Redis-backed store; every key is namespaced with ``prefix``."""

    def __init__(self, client: redis.Redis, prefix: str = ""):
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "") -> "RedisStore":
        client = redis.Redis.from_url(url, decode_responses=True, socket_timeout=5)
        return cls(client, prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> Optional[str]:
        try:
            return self._client.get(self._key(key))
        except redis.RedisError as exc:
            logger.error("Ephemeral store read failed for %s: %s", key, exc)
            raise StoreUnavailable() from exc

    def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            self._client.setex(self._key(key), ttl_seconds, value)
        except redis.RedisError as exc:
            logger.error("Ephemeral store write failed for %s: %s", key, exc)
            raise StoreUnavailable() from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete(self._key(key))
        except redis.RedisError as exc:
            logger.error("Ephemeral store delete failed for %s: %s", key, exc)
            raise StoreUnavailable() from exc


class MemoryStore:
    """In-process store with clock-driven expiry for development and tests."""

    def __init__(self, clock: Clock = datetime.utcnow):
        self._clock = clock
        self._items: Dict[str, Tuple[str, datetime]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at <= self._clock():
                del self._items[key]
                return None
            return value

    def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._items[key] = (str(value), self._clock() + timedelta(seconds=ttl_seconds))

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)


def build_store(url: str, prefix: str = "", clock: Clock = datetime.utcnow) -> EphemeralStore:
    if url.startswith("memory://"):
        logger.warning("Using the in-process ephemeral store; state is lost on restart.")
        return MemoryStore(clock)
    return RedisStore.from_url(url, prefix)
