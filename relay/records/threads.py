"""Per-user conversation threads shared across channels."""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from psycopg.types.json import Jsonb

from ..db import PostgresStore

logger = logging.getLogger(__name__)

DEFAULT_THREAD_TITLE = "Thread"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ThreadRecord:
    id: int
    tenant_id: str
    user_id: str
    title: str
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass
class ThreadMessageRecord:
    id: int
    thread_id: int
    tenant_id: str
    role: str
    channel: str
    content: str
    confidence: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    external_message_id: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)


class ThreadRepository(Protocol):
    """Persistence abstraction used by :class:`ThreadWriter`."""

    def find_latest_thread(self, tenant_id: str, user_id: str) -> Optional[ThreadRecord]: ...

    def create_thread(self, tenant_id: str, user_id: str, title: str) -> ThreadRecord: ...

    def append_message(
        self,
        thread: ThreadRecord,
        *,
        role: str,
        channel: str,
        content: str,
        confidence: Optional[float],
        metadata: Dict[str, Any],
        external_message_id: Optional[str],
    ) -> ThreadMessageRecord: ...

    def touch_thread(self, thread_id: int) -> None: ...

    def has_external_message(
        self, tenant_id: str, channel: str, external_message_id: str
    ) -> bool: ...


class PostgresThreadRepository(PostgresStore):
    """PostgreSQL implementation of :class:`ThreadRepository`."""

    def find_latest_thread(self, tenant_id: str, user_id: str) -> Optional[ThreadRecord]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT id, tenant_id, user_id, title, created_at, updated_at
                FROM relay_threads
                WHERE tenant_id = %s AND user_id = %s
                ORDER BY updated_at DESC
                LIMIT 1
                """,
                (tenant_id, user_id),
            )
            row = cur.fetchone()
        return ThreadRecord(**row) if row else None

    def create_thread(self, tenant_id: str, user_id: str, title: str) -> ThreadRecord:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO relay_threads (tenant_id, user_id, title)
                VALUES (%s, %s, %s)
                RETURNING id, tenant_id, user_id, title, created_at, updated_at
                """,
                (tenant_id, user_id, title),
            )
            row = cur.fetchone()
        return ThreadRecord(**row)

    def append_message(
        self,
        thread: ThreadRecord,
        *,
        role: str,
        channel: str,
        content: str,
        confidence: Optional[float],
        metadata: Dict[str, Any],
        external_message_id: Optional[str],
    ) -> ThreadMessageRecord:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO relay_thread_messages
                    (thread_id, tenant_id, role, channel, content, confidence, metadata, external_message_id)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING id, thread_id, tenant_id, role, channel, content, confidence,
                          metadata, external_message_id, created_at
                """,
                (
                    thread.id,
                    thread.tenant_id,
                    role,
                    channel,
                    content,
                    confidence,
                    Jsonb(metadata),
                    external_message_id,
                ),
            )
            row = cur.fetchone()
        return ThreadMessageRecord(**row)

    def touch_thread(self, thread_id: int) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE relay_threads SET updated_at = now() WHERE id = %s",
                (thread_id,),
            )

    def has_external_message(
        self, tenant_id: str, channel: str, external_message_id: str
    ) -> bool:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT 1 FROM relay_thread_messages
                WHERE tenant_id = %s AND channel = %s AND external_message_id = %s
                LIMIT 1
                """,
                (tenant_id, channel, external_message_id),
            )
            return cur.fetchone() is not None


class InMemoryThreadRepository:
    """Simple in-memory implementation useful for testing."""

    def __init__(self) -> None:
        self._threads: Dict[int, ThreadRecord] = {}
        self.messages: List[ThreadMessageRecord] = []
        self._thread_seq = itertools.count(1)
        self._message_seq = itertools.count(1)
        self._lock = threading.Lock()

    def find_latest_thread(self, tenant_id: str, user_id: str) -> Optional[ThreadRecord]:
        candidates = [
            t for t in self._threads.values() if t.tenant_id == tenant_id and t.user_id == user_id
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda t: (t.updated_at, t.id))

    def create_thread(self, tenant_id: str, user_id: str, title: str) -> ThreadRecord:
        with self._lock:
            thread = ThreadRecord(
                id=next(self._thread_seq), tenant_id=tenant_id, user_id=user_id, title=title
            )
            self._threads[thread.id] = thread
        return thread

    def append_message(
        self,
        thread: ThreadRecord,
        *,
        role: str,
        channel: str,
        content: str,
        confidence: Optional[float],
        metadata: Dict[str, Any],
        external_message_id: Optional[str],
    ) -> ThreadMessageRecord:
        with self._lock:
            record = ThreadMessageRecord(
                id=next(self._message_seq),
                thread_id=thread.id,
                tenant_id=thread.tenant_id,
                role=role,
                channel=channel,
                content=content,
                confidence=confidence,
                metadata=dict(metadata),
                external_message_id=external_message_id,
            )
            self.messages.append(record)
        return record

    def touch_thread(self, thread_id: int) -> None:
        thread = self._threads.get(thread_id)
        if thread:
            thread.updated_at = _utcnow()

    def has_external_message(
        self, tenant_id: str, channel: str, external_message_id: str
    ) -> bool:
        return any(
            m.tenant_id == tenant_id
            and m.channel == channel
            and m.external_message_id == external_message_id
            for m in self.messages
        )

    def threads(self) -> List[ThreadRecord]:
        return list(self._threads.values())


class ThreadWriter:
    """Find-or-create the user's thread and append turns to it.

    Write failures are logged and reported as ``False``; a reply that has
    already been sent is never undone by a failed record.
    """

    def __init__(self, repository: ThreadRepository, *, title: str = DEFAULT_THREAD_TITLE) -> None:
        self._repository = repository
        self._title = title

    def _thread_for(self, tenant_id: str, user_id: str) -> ThreadRecord:
        thread = self._repository.find_latest_thread(tenant_id, user_id)
        if thread is None:
            thread = self._repository.create_thread(tenant_id, user_id, self._title)
        return thread

    def append(
        self,
        *,
        tenant_id: str,
        user_id: str,
        role: str,
        channel: str,
        content: str,
        confidence: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
        external_message_id: Optional[str] = None,
    ) -> bool:
        try:
            thread = self._thread_for(tenant_id, user_id)
            self._repository.append_message(
                thread,
                role=role,
                channel=channel,
                content=content,
                confidence=confidence,
                metadata=metadata or {},
                external_message_id=external_message_id,
            )
            self._repository.touch_thread(thread.id)
        except Exception:
            logger.exception(
                "Thread write failed for tenant=%s user=%s role=%s", tenant_id, user_id, role
            )
            return False
        return True

    def has_message(self, tenant_id: str, channel: str, external_message_id: str) -> bool:
        try:
            return self._repository.has_external_message(tenant_id, channel, external_message_id)
        except Exception:
            logger.exception("Thread lookup failed for message %s", external_message_id)
            return False


__all__ = [
    "InMemoryThreadRepository",
    "PostgresThreadRepository",
    "ThreadMessageRecord",
    "ThreadRecord",
    "ThreadRepository",
    "ThreadWriter",
]
