"""TTL-bearing keyed store shared by every worker instance."""

from __future__ import annotations

import threading
import time
from typing import Protocol

from .db import PostgresStore


class KeyValueStore(Protocol):
    def claim(self, key: str, ttl_seconds: int) -> bool:
        """Atomically create ``key``; ``False`` when a live entry already exists."""
        ...

    def release(self, key: str) -> None: ...

    def exists(self, key: str) -> bool: ...


class PostgresKeyValueStore(PostgresStore):
    """:class:`KeyValueStore` over the ``relay_kv`` table."""

    def claim(self, key: str, ttl_seconds: int) -> bool:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO relay_kv (key, expires_at)
                VALUES (%s, now() + make_interval(secs => %s))
                ON CONFLICT (key) DO UPDATE
                    SET expires_at = EXCLUDED.expires_at, created_at = now()
                    WHERE relay_kv.expires_at <= now()
                RETURNING key
                """,
                (key, ttl_seconds),
            )
            return cur.fetchone() is not None

    def release(self, key: str) -> None:
        with self._cursor() as cur:
            cur.execute("DELETE FROM relay_kv WHERE key = %s", (key,))

    def exists(self, key: str) -> bool:
        with self._cursor() as cur:
            cur.execute(
                "SELECT 1 FROM relay_kv WHERE key = %s AND expires_at > now()",
                (key,),
            )
            return cur.fetchone() is not None

    def purge_expired(self) -> int:
        with self._cursor() as cur:
            cur.execute("DELETE FROM relay_kv WHERE expires_at <= now()")
            return cur.rowcount or 0


class InMemoryKeyValueStore:
    """Single-process store used by tests and local runs without a database."""

    def __init__(self, clock=time.monotonic) -> None:
        self._entries: dict[str, float] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def claim(self, key: str, ttl_seconds: int) -> bool:
        now = self._clock()
        with self._lock:
            expires_at = self._entries.get(key)
            if expires_at is not None and expires_at > now:
                return False
            self._entries[key] = now + ttl_seconds
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def exists(self, key: str) -> bool:
        with self._lock:
            expires_at = self._entries.get(key)
            return expires_at is not None and expires_at > self._clock()


__all__ = ["InMemoryKeyValueStore", "KeyValueStore", "PostgresKeyValueStore"]
