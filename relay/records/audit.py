"""Append-only audit trail of answered queries and diagnostic actions."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from psycopg.types.json import Jsonb

from ..db import PostgresStore

logger = logging.getLogger(__name__)

QUERY_PREVIEW_LENGTH = 500

ACTION_QUERY = "query"
ACTION_KEY_REVOKED = "key_revoked"
ACTION_DLQ_REPLAY = "dlq_replay"


@dataclass
class AuditRecord:
    tenant_id: str
    actor_id: Optional[str]
    action_type: str
    status: str = "completed"
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AuditRepository(Protocol):
    def append(self, record: AuditRecord) -> None: ...


class PostgresAuditRepository(PostgresStore):
    def append(self, record: AuditRecord) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO relay_audit_log (tenant_id, actor_id, action_type, status, metadata, created_at)
                VALUES (%s, %s, %s, %s, %s, %s)
                """,
                (
                    record.tenant_id,
                    record.actor_id,
                    record.action_type,
                    record.status,
                    Jsonb(record.metadata),
                    record.created_at,
                ),
            )


class InMemoryAuditRepository:
    def __init__(self) -> None:
        self.records: List[AuditRecord] = []
        self._lock = threading.Lock()

    def append(self, record: AuditRecord) -> None:
        with self._lock:
            self.records.append(record)


class AuditWriter:
    """Best-effort audit writes; every failure is logged and swallowed."""

    def __init__(self, repository: AuditRepository) -> None:
        self._repository = repository

    def record(
        self,
        *,
        tenant_id: str,
        actor_id: Optional[str],
        action_type: str,
        status: str = "completed",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        try:
            self._repository.append(
                AuditRecord(
                    tenant_id=tenant_id,
                    actor_id=actor_id,
                    action_type=action_type,
                    status=status,
                    metadata=metadata or {},
                )
            )
        except Exception:
            logger.exception("Audit write failed for %s (tenant=%s)", action_type, tenant_id)
            return False
        return True

    def record_query(
        self,
        *,
        tenant_id: str,
        actor_id: Optional[str],
        channel: str,
        query: str,
        response: str,
        confidence: Optional[float],
        routing_key: Optional[str] = None,
        decision: Optional[str] = None,
        delivered: Optional[bool] = None,
    ) -> bool:
        metadata: Dict[str, Any] = {
            "channel": channel,
            "query": query[:QUERY_PREVIEW_LENGTH],
            "responseLength": len(response),
            "confidence": confidence,
        }
        if routing_key is not None:
            metadata["routingKey"] = routing_key
        if decision is not None:
            metadata["decision"] = decision
        if delivered is not None:
            metadata["delivered"] = delivered
        return self.record(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action_type=f"{channel}_{ACTION_QUERY}",
            metadata=metadata,
        )


__all__ = [
    "ACTION_DLQ_REPLAY",
    "ACTION_KEY_REVOKED",
    "AuditRecord",
    "AuditRepository",
    "AuditWriter",
    "InMemoryAuditRepository",
    "PostgresAuditRepository",
]
