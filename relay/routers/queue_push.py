"""Push endpoint for brokers that deliver queue messages over HTTP."""

from __future__ import annotations

import base64
import binascii
import logging
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from ..dependencies import get_processor
from ..events.processor import EventProcessor, event_from_delivery
from ..queue.base import QueueDelivery

logger = logging.getLogger(__name__)

router = APIRouter(tags=["queue"])


@router.post("/api/queue/push")
async def push_delivery(
    request: Request,
    processor: EventProcessor = Depends(get_processor),
) -> dict:
    """Process one Pub/Sub-style envelope.

    ``200`` acknowledges the delivery; ``500`` asks the broker to redeliver.
    """

    try:
        envelope = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid push envelope") from exc
    message = envelope.get("message") if isinstance(envelope, dict) else None
    if not isinstance(message, dict) or "data" not in message:
        raise HTTPException(status_code=400, detail="Push envelope has no message data")

    message_id = str(message.get("messageId") or message.get("message_id") or uuid4().hex)
    try:
        data = base64.b64decode(message["data"], validate=True)
    except (binascii.Error, TypeError, ValueError):
        logger.error("Dropping push message %s with undecodable data", message_id)
        return {"status": "dropped", "reason": "undecodable"}

    delivery = QueueDelivery(
        message_id=message_id,
        data=data,
        attributes={str(k): str(v) for k, v in (message.get("attributes") or {}).items()},
        delivery_count=int(envelope.get("deliveryAttempt") or 1),
    )
    try:
        outcome = await run_in_threadpool(processor.process, event_from_delivery(delivery))
    except Exception as exc:
        logger.error("Push message %s failed; requesting redelivery: %s", message_id, exc)
        raise HTTPException(status_code=500, detail="Processing failed") from exc
    return {"status": outcome.status, "reason": outcome.reason}
