"""Roam channel adapter."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from ..errors import MalformedPayload, SignatureInvalid
from ..events.models import NormalizedMessage
from .base import ChannelAdapter, Normalizer, parse_timestamp
from .signatures import verify_standard_webhook

logger = logging.getLogger(__name__)


def _data(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    data = payload.get("data")
    if not isinstance(data, Mapping):
        raise MalformedPayload(f"Roam event {payload.get('type')!r} has no data object")
    return data


def _text(data: Mapping[str, Any]) -> str | None:
    text = data.get("text")
    if not isinstance(text, str) or not text.strip():
        return None
    return text


def normalize_legacy_message(payload: Mapping[str, Any]) -> NormalizedMessage | None:
    """``message.created``: flat ``group_id``/``sender_id`` fields."""

    data = _data(payload)
    text = _text(data)
    if text is None:
        return None
    group_id = data.get("group_id")
    sender_id = data.get("sender_id")
    if not group_id or not sender_id:
        raise MalformedPayload("message.created requires group_id and sender_id")
    return NormalizedMessage(
        channel="roam",
        external_message_id=str(data["id"]) if data.get("id") else None,
        channel_routing_key=str(group_id),
        sender_id=str(sender_id),
        sender_display_name=data.get("sender_name"),
        text=text,
        thread_ref=data.get("thread_id") or None,
        timestamp=parse_timestamp(data.get("created_at")),
        metadata={"event_type": "message.created"},
    )


def _normalize_chat_message(
    payload: Mapping[str, Any], *, is_direct: bool = False, is_mention: bool = False
) -> NormalizedMessage | None:
    data = _data(payload)
    text = _text(data)
    if text is None:
        return None
    sender = data.get("sender") if isinstance(data.get("sender"), Mapping) else {}
    chat = data.get("chat") if isinstance(data.get("chat"), Mapping) else {}
    chat_id = chat.get("id")
    sender_id = sender.get("id")
    if not chat_id or not sender_id:
        raise MalformedPayload(f"{payload.get('type')} requires chat.id and sender.id")
    return NormalizedMessage(
        channel="roam",
        external_message_id=str(data["id"]) if data.get("id") else None,
        channel_routing_key=str(chat_id),
        sender_id=str(sender_id),
        sender_display_name=sender.get("name"),
        text=text,
        thread_ref=data.get("thread_id") or None,
        timestamp=parse_timestamp(data.get("timestamp")),
        is_direct=is_direct,
        is_mention=is_mention,
        metadata={"event_type": payload.get("type")},
    )


def normalize_group_message(payload: Mapping[str, Any]) -> NormalizedMessage | None:
    """``chat.message.group`` and ``chat.message.channel``."""

    return _normalize_chat_message(payload)


def normalize_mention(payload: Mapping[str, Any]) -> NormalizedMessage | None:
    return _normalize_chat_message(payload, is_mention=True)


def normalize_direct_message(payload: Mapping[str, Any]) -> NormalizedMessage | None:
    return _normalize_chat_message(payload, is_direct=True)


class RoamAdapter(ChannelAdapter):
    channel_name = "roam"

    def is_configured(self) -> bool:
        return bool(self.settings.roam_webhook_secret)

    def verify_signature(self, body: bytes, headers: Mapping[str, str]) -> bool:
        secret = self.settings.roam_webhook_secret
        if not secret:
            return False
        try:
            verify_standard_webhook(
                body,
                headers,
                secret,
                tolerance=self.settings.webhook_tolerance_seconds,
            )
        except SignatureInvalid as exc:
            logger.warning("Roam webhook rejected: %s", exc)
            return False
        return True

    def classify(self, payload: Mapping[str, Any]) -> str:
        return str(payload.get("type") or "unknown")

    def event_id(
        self, payload: Mapping[str, Any], headers: Mapping[str, str]
    ) -> str | None:
        return headers.get("webhook-id")

    def normalizers(self) -> Mapping[str, Normalizer]:
        return {
            "message.created": normalize_legacy_message,
            "chat.message.group": normalize_group_message,
            "chat.message.channel": normalize_group_message,
            "chat.message.mention": normalize_mention,
            "chat.message.dm": normalize_direct_message,
        }
