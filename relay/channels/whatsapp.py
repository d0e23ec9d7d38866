"""WhatsApp channel adapter for the Vonage Messages API and Meta Cloud API."""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Mapping
from typing import Any

import jwt

from ..errors import MalformedPayload
from ..events.models import NormalizedMessage
from .base import ChannelAdapter, Normalizer, parse_timestamp

logger = logging.getLogger(__name__)


def _sender_number(value: Any) -> str:
    if isinstance(value, Mapping):
        value = value.get("number") or value.get("id")
    return str(value or "").lstrip("+")


def normalize_vonage_inbound(payload: Mapping[str, Any]) -> NormalizedMessage | None:
    """Vonage inbound message; ``from`` is either a string or ``{"number": ...}``."""

    message_type = payload.get("message_type")
    if message_type != "text":
        logger.info("Ignoring Vonage %s message %s", message_type, payload.get("message_uuid"))
        return None
    text = payload.get("text")
    if not isinstance(text, str) or not text.strip():
        return None
    sender = _sender_number(payload.get("from"))
    profile = payload.get("profile") if isinstance(payload.get("profile"), Mapping) else {}
    return NormalizedMessage(
        channel="whatsapp",
        external_message_id=payload.get("message_uuid"),
        channel_routing_key=sender,
        sender_id=sender,
        sender_display_name=profile.get("name"),
        text=text,
        timestamp=parse_timestamp(payload.get("timestamp")),
        is_direct=True,
        metadata={"provider": "vonage", "recipient": _sender_number(payload.get("to"))},
    )


def _mappings(container: Mapping[str, Any], key: str) -> list[Mapping[str, Any]]:
    """Return ``container[key]`` as a list of objects, rejecting any other shape."""

    items = container.get(key) or []
    if not isinstance(items, list) or not all(isinstance(item, Mapping) for item in items):
        raise MalformedPayload(f"Meta webhook field {key!r} must be a list of objects")
    return items


def _meta_values(payload: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    values = []
    for entry in _mappings(payload, "entry"):
        for change in _mappings(entry, "changes"):
            value = change.get("value") or {}
            if not isinstance(value, Mapping):
                raise MalformedPayload("Meta webhook change value must be an object")
            values.append(value)
    return values


def normalize_meta_inbound(payload: Mapping[str, Any]) -> NormalizedMessage | None:
    """Meta Cloud API: the first text message in ``entry[].changes[].value``."""

    for value in _meta_values(payload):
        contacts = {c.get("wa_id"): c for c in _mappings(value, "contacts")}
        metadata = value.get("metadata") if isinstance(value.get("metadata"), Mapping) else {}
        for message in _mappings(value, "messages"):
            if message.get("type") != "text":
                continue
            body = message.get("text")
            if not isinstance(body, Mapping):
                raise MalformedPayload("Meta text message requires a text object")
            text = body.get("body")
            if not isinstance(text, str) or not text.strip():
                continue
            sender_id = str(message.get("from") or "")
            if not sender_id:
                raise MalformedPayload("Meta text message requires a sender")
            contact = contacts.get(sender_id, {})
            profile = contact.get("profile") if isinstance(contact.get("profile"), Mapping) else {}
            context = message.get("context") if isinstance(message.get("context"), Mapping) else {}
            return NormalizedMessage(
                channel="whatsapp",
                external_message_id=message.get("id"),
                channel_routing_key=sender_id,
                sender_id=sender_id,
                sender_display_name=profile.get("name"),
                text=text,
                thread_ref=context.get("id"),
                timestamp=parse_timestamp(message.get("timestamp")),
                is_direct=True,
                metadata={"provider": "meta", "recipient": metadata.get("phone_number_id")},
            )
    return None


class WhatsAppAdapter(ChannelAdapter):
    channel_name = "whatsapp"

    @property
    def provider(self) -> str:
        return self.settings.whatsapp_provider

    def is_configured(self) -> bool:
        if self.provider == "meta":
            return bool(self.settings.meta_app_secret)
        return bool(self.settings.vonage_signature_secret)

    def verify_signature(self, body: bytes, headers: Mapping[str, str]) -> bool:
        if self.provider == "meta":
            return self._verify_meta(body, headers)
        return self._verify_vonage(body, headers)

    def _verify_meta(self, body: bytes, headers: Mapping[str, str]) -> bool:
        secret = self.settings.meta_app_secret
        received = headers.get("X-Hub-Signature-256")
        if not secret or not received:
            return False
        digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        expected = f"sha256={digest}"
        return hmac.compare_digest(received, expected)

    def _verify_vonage(self, body: bytes, headers: Mapping[str, str]) -> bool:
        """Vonage signs webhooks with an HS256 JWT whose ``payload_hash`` claim
        is the SHA-256 hex digest of the raw body."""

        secret = self.settings.vonage_signature_secret
        authorization = headers.get("Authorization") or ""
        scheme, _, token = authorization.partition(" ")
        if not secret or not token or scheme.lower() != "bearer":
            return False
        try:
            claims = jwt.decode(token, secret, algorithms=["HS256"])
        except jwt.InvalidTokenError as exc:
            logger.warning("Vonage webhook rejected: %s", exc)
            return False
        expected = hashlib.sha256(body).hexdigest()
        received = str(claims.get("payload_hash") or "")
        return hmac.compare_digest(received, expected)

    def classify(self, payload: Mapping[str, Any]) -> str:
        if payload.get("object") == "whatsapp_business_account":
            try:
                values = _meta_values(payload)
            except MalformedPayload:
                return "meta.unknown"
            for value in values:
                if value.get("messages"):
                    return "meta.inbound"
                if value.get("statuses"):
                    return "meta.status"
            return "meta.unknown"
        if payload.get("channel") not in (None, "whatsapp"):
            return f"vonage.{payload.get('channel')}"
        if "status" in payload and "message_uuid" in payload:
            return "vonage.status"
        if "message_uuid" in payload and "from" in payload:
            return "vonage.inbound"
        return "unknown"

    def event_id(
        self, payload: Mapping[str, Any], headers: Mapping[str, str]
    ) -> str | None:
        if payload.get("message_uuid"):
            return str(payload["message_uuid"])
        entries = payload.get("entry")
        for entry in entries if isinstance(entries, list) else []:
            if isinstance(entry, Mapping) and entry.get("id"):
                return str(entry["id"])
        return None

    def normalizers(self) -> Mapping[str, Normalizer]:
        return {
            "vonage.inbound": normalize_vonage_inbound,
            "meta.inbound": normalize_meta_inbound,
        }
