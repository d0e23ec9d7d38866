"""Webhook receiver: verify, enqueue and acknowledge.

The handler never normalizes, resolves tenants or calls the answer backend;
it only authenticates the raw body, checks that it is JSON and publishes it.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse

from ..channels import get_adapter
from ..config import get_settings
from ..dependencies import get_queue
from ..queue.base import MessageQueue

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post("/api/webhooks/{channel}")
async def receive_webhook(
    channel: str,
    request: Request,
    queue: MessageQueue = Depends(get_queue),
) -> dict:
    started = time.perf_counter()
    settings = get_settings()
    try:
        adapter_cls = get_adapter(channel)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    adapter = adapter_cls(settings)
    if not adapter.is_configured():
        logger.error("Webhook secret for %s is not configured", adapter.channel_name)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook secret not configured",
        )

    body = await request.body()
    if not adapter.verify_signature(body, request.headers):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid JSON payload: {exc}") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Webhook payload must be a JSON object")

    event_type = adapter.classify(payload)
    attributes = {
        "channel": adapter.channel_name,
        "eventType": event_type,
        "webhookId": adapter.event_id(payload, request.headers) or "",
        "receivedAt": datetime.now(timezone.utc).isoformat(),
    }
    try:
        message_id = queue.publish(body, attributes)
    except Exception:
        # The webhook is acknowledged regardless.
        logger.exception("Failed to enqueue %s webhook %s", adapter.channel_name, event_type)
        message_id = None

    elapsed_ms = (time.perf_counter() - started) * 1000
    if elapsed_ms > settings.webhook_ack_budget_ms:
        logger.warning(
            "%s webhook ack took %.0fms (budget %sms)",
            adapter.channel_name,
            elapsed_ms,
            settings.webhook_ack_budget_ms,
        )
    else:
        logger.debug("Enqueued %s %s as %s", adapter.channel_name, event_type, message_id)
    return {"received": True}


@router.get("/api/webhooks/whatsapp", response_class=PlainTextResponse)
async def verify_whatsapp_subscription(
    mode: str | None = Query(None, alias="hub.mode"),
    verify_token: str | None = Query(None, alias="hub.verify_token"),
    challenge: str | None = Query(None, alias="hub.challenge"),
) -> str:
    """Answer the Meta webhook subscription challenge."""

    expected = get_settings().whatsapp_verify_token
    if mode == "subscribe" and expected and verify_token == expected and challenge is not None:
        return challenge
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Verification failed")
