"""Admin routes to inspect and replay dead-lettered events."""

from __future__ import annotations

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..core.auth import require_internal_auth
from ..dependencies import get_audit_writer, get_dead_letter_repository, get_queue
from ..queue.base import MessageQueue
from ..records.audit import AuditWriter
from ..records.dead_letters import (
    DeadLetterAlreadyRetriedError,
    DeadLetterNotFoundError,
    DeadLetterRepository,
    replay_dead_letter,
)

MAX_PAGE_SIZE = 100

router = APIRouter(prefix="/api/admin/dead-letters", tags=["admin"])

Actor = Annotated[str, Depends(require_internal_auth)]
Repository = Annotated[DeadLetterRepository, Depends(get_dead_letter_repository)]


@router.get("")
def list_dead_letters(
    actor: Actor,
    repository: Repository,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    tenant_id: Optional[str] = None,
    retried: Optional[bool] = None,
    event_type: Optional[str] = None,
) -> dict:
    limit = min(limit, MAX_PAGE_SIZE)
    items, total = repository.list(
        page=page,
        limit=limit,
        tenant_id=tenant_id,
        retried=retried,
        event_type=event_type,
    )
    return {
        "items": [item.to_dict() for item in items],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.get("/{record_id}")
def get_dead_letter(record_id: int, actor: Actor, repository: Repository) -> dict:
    record = repository.get(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Dead letter {record_id} not found")
    return record.to_dict()


@router.post("/{record_id}/retry")
def retry_dead_letter(
    record_id: int,
    actor: Actor,
    repository: Repository,
    queue: MessageQueue = Depends(get_queue),
    audit: AuditWriter = Depends(get_audit_writer),
) -> dict:
    """Re-publish the stored body with its original attributes."""

    try:
        record, message_id = replay_dead_letter(
            record_id, repository=repository, queue=queue, audit=audit, actor_id=actor
        )
    except DeadLetterNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except DeadLetterAlreadyRetriedError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"deadLetter": record.to_dict(), "messageId": message_id}
