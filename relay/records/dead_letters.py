"""Dead-letter records for events the pipeline could not process."""

from __future__ import annotations

import base64
import itertools
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple

from psycopg.types.json import Jsonb

from ..db import PostgresStore
from ..queue.base import MessageQueue
from .audit import ACTION_DLQ_REPLAY, AuditWriter

logger = logging.getLogger(__name__)

UNKNOWN_TENANT = "unknown"
MAX_ERROR_MESSAGE_LENGTH = 2000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeadLetterNotFoundError(RuntimeError):
    """Raised when a dead letter could not be located."""


class DeadLetterAlreadyRetriedError(RuntimeError):
    """Raised when replaying a dead letter that was already replayed."""


@dataclass
class DeadLetterRecord:
    tenant_id: str
    queue_message_id: Optional[str]
    event_type: str
    payload: Dict[str, Any]
    error_message: str
    error_status: Optional[int] = None
    retried: bool = False
    retried_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=_utcnow)
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenantId": self.tenant_id,
            "queueMessageId": self.queue_message_id,
            "eventType": self.event_type,
            "payload": self.payload,
            "errorMessage": self.error_message,
            "errorStatus": self.error_status,
            "retried": self.retried,
            "retriedAt": self.retried_at.isoformat() if self.retried_at else None,
            "createdAt": self.created_at.isoformat(),
        }


class DeadLetterRepository(Protocol):
    def add(self, record: DeadLetterRecord) -> DeadLetterRecord: ...

    def get(self, record_id: int) -> Optional[DeadLetterRecord]: ...

    def list(
        self,
        *,
        page: int = 1,
        limit: int = 20,
        tenant_id: Optional[str] = None,
        retried: Optional[bool] = None,
        event_type: Optional[str] = None,
    ) -> Tuple[List[DeadLetterRecord], int]: ...

    def mark_retried(self, record_id: int, when: datetime) -> None: ...


class PostgresDeadLetterRepository(PostgresStore):
    _COLUMNS = """
        id, tenant_id, queue_message_id, event_type, payload, error_message,
        error_status, retried, retried_at, created_at
    """

    def add(self, record: DeadLetterRecord) -> DeadLetterRecord:
        with self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO relay_dead_letters
                    (tenant_id, queue_message_id, event_type, payload, error_message, error_status)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING {self._COLUMNS}
                """,
                (
                    record.tenant_id,
                    record.queue_message_id,
                    record.event_type,
                    Jsonb(record.payload),
                    record.error_message,
                    record.error_status,
                ),
            )
            row = cur.fetchone()
        return DeadLetterRecord(**row)

    def get(self, record_id: int) -> Optional[DeadLetterRecord]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {self._COLUMNS} FROM relay_dead_letters WHERE id = %s",
                (record_id,),
            )
            row = cur.fetchone()
        return DeadLetterRecord(**row) if row else None

    def list(
        self,
        *,
        page: int = 1,
        limit: int = 20,
        tenant_id: Optional[str] = None,
        retried: Optional[bool] = None,
        event_type: Optional[str] = None,
    ) -> Tuple[List[DeadLetterRecord], int]:
        clauses: List[str] = []
        params: List[Any] = []
        if tenant_id is not None:
            clauses.append("tenant_id = %s")
            params.append(tenant_id)
        if retried is not None:
            clauses.append("retried = %s")
            params.append(retried)
        if event_type is not None:
            clauses.append("event_type = %s")
            params.append(event_type)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._cursor() as cur:
            cur.execute(f"SELECT count(*) AS total FROM relay_dead_letters {where}", params)
            total = cur.fetchone()["total"]
            cur.execute(
                f"""
                SELECT {self._COLUMNS} FROM relay_dead_letters {where}
                ORDER BY created_at DESC
                LIMIT %s OFFSET %s
                """,
                [*params, limit, (page - 1) * limit],
            )
            rows = cur.fetchall()
        return [DeadLetterRecord(**row) for row in rows], int(total)

    def mark_retried(self, record_id: int, when: datetime) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE relay_dead_letters SET retried = true, retried_at = %s WHERE id = %s",
                (when, record_id),
            )


class InMemoryDeadLetterRepository:
    def __init__(self) -> None:
        self._records: Dict[int, DeadLetterRecord] = {}
        self._seq = itertools.count(1)
        self._lock = threading.Lock()

    def add(self, record: DeadLetterRecord) -> DeadLetterRecord:
        with self._lock:
            stored = replace(record, id=next(self._seq))
            self._records[stored.id] = stored
        return stored

    def get(self, record_id: int) -> Optional[DeadLetterRecord]:
        return self._records.get(record_id)

    def list(
        self,
        *,
        page: int = 1,
        limit: int = 20,
        tenant_id: Optional[str] = None,
        retried: Optional[bool] = None,
        event_type: Optional[str] = None,
    ) -> Tuple[List[DeadLetterRecord], int]:
        items = [
            r
            for r in self._records.values()
            if (tenant_id is None or r.tenant_id == tenant_id)
            and (retried is None or r.retried == retried)
            and (event_type is None or r.event_type == event_type)
        ]
        items.sort(key=lambda r: (r.created_at, r.id or 0), reverse=True)
        start = (page - 1) * limit
        return items[start : start + limit], len(items)

    def mark_retried(self, record_id: int, when: datetime) -> None:
        record = self._records.get(record_id)
        if record:
            record.retried = True
            record.retried_at = when


def encode_payload(raw_bytes: bytes) -> Dict[str, Any]:
    """Store the raw body losslessly inside a JSON column."""

    return {"raw": base64.b64encode(raw_bytes).decode("ascii")}


def decode_payload(payload: Dict[str, Any]) -> bytes:
    return base64.b64decode(payload.get("raw", ""))


class DeadLetterWriter:
    """Best-effort dead-letter writes; failures are logged, never raised."""

    def __init__(self, repository: DeadLetterRepository) -> None:
        self._repository = repository

    def write(
        self,
        *,
        tenant_id: Optional[str],
        queue_message_id: Optional[str],
        event_type: str,
        raw_bytes: bytes,
        attributes: Optional[Dict[str, str]] = None,
        error_message: str,
        error_status: Optional[int] = None,
    ) -> Optional[DeadLetterRecord]:
        payload = encode_payload(raw_bytes)
        payload["attributes"] = dict(attributes or {})
        record = DeadLetterRecord(
            tenant_id=tenant_id or UNKNOWN_TENANT,
            queue_message_id=queue_message_id,
            event_type=event_type,
            payload=payload,
            error_message=error_message[:MAX_ERROR_MESSAGE_LENGTH],
            error_status=error_status,
        )
        try:
            stored = self._repository.add(record)
        except Exception:
            logger.exception(
                "Dead-letter write failed for message %s (%s)", queue_message_id, event_type
            )
            return None
        logger.warning(
            "Dead-lettered message %s (%s) for tenant %s: %s",
            queue_message_id,
            event_type,
            record.tenant_id,
            record.error_message,
        )
        return stored


def replay_dead_letter(
    record_id: int,
    *,
    repository: DeadLetterRepository,
    queue: MessageQueue,
    audit: Optional[AuditWriter] = None,
    actor_id: Optional[str] = None,
) -> Tuple[DeadLetterRecord, str]:
    """Re-publish a dead letter and mark it retried.

    Returns the updated record and the new queue message id.
    """

    record = repository.get(record_id)
    if record is None:
        raise DeadLetterNotFoundError(f"Dead letter {record_id} not found")
    if record.retried:
        raise DeadLetterAlreadyRetriedError(f"Dead letter {record_id} was already retried")

    attributes = dict(record.payload.get("attributes") or {})
    attributes["replayOf"] = str(record_id)
    attributes["webhookId"] = f"replay-{record_id}"
    message_id = queue.publish(decode_payload(record.payload), attributes)

    when = _utcnow()
    repository.mark_retried(record_id, when)
    record.retried = True
    record.retried_at = when
    if audit is not None:
        audit.record(
            tenant_id=record.tenant_id,
            actor_id=actor_id,
            action_type=ACTION_DLQ_REPLAY,
            metadata={
                "deadLetterId": record_id,
                "eventType": record.event_type,
                "queueMessageId": message_id,
            },
        )
    logger.info("Replayed dead letter %s as message %s", record_id, message_id)
    return record, message_id


__all__ = [
    "DeadLetterAlreadyRetriedError",
    "DeadLetterNotFoundError",
    "DeadLetterRecord",
    "DeadLetterRepository",
    "DeadLetterWriter",
    "InMemoryDeadLetterRepository",
    "PostgresDeadLetterRepository",
    "UNKNOWN_TENANT",
    "replay_dead_letter",
]
