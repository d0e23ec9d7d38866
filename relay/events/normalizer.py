"""Map queued webhook bodies onto :class:`NormalizedMessage`.

Each channel adapter contributes one mapping function per payload family,
keyed by the type tag assigned at the receiver. Lookup is a dictionary hit on
``(channel, type tag)``; unsupported tags are logged and dropped.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from ..channels import ChannelAdapter, registered_adapters
from ..channels.base import Normalizer
from ..config import RelaySettings
from ..errors import MalformedPayload
from .models import InboundEvent, NormalizedMessage

logger = logging.getLogger(__name__)


class EventNormalizer:
    def __init__(
        self,
        adapters: Iterable[ChannelAdapter] | None = None,
        *,
        settings: RelaySettings | None = None,
    ) -> None:
        if adapters is None:
            adapters = [cls(settings) for cls in registered_adapters()]
        self._adapters: dict[str, ChannelAdapter] = {}
        self._registry: dict[tuple[str, str], Normalizer] = {}
        for adapter in adapters:
            self._adapters[adapter.channel_name] = adapter
            for type_tag, fn in adapter.normalizers().items():
                self._registry[(adapter.channel_name, type_tag)] = fn

    def supports(self, channel: str, type_tag: str) -> bool:
        return (channel, type_tag) in self._registry

    def decode(self, event: InboundEvent) -> Mapping[str, Any]:
        try:
            payload = json.loads(event.raw_bytes.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise MalformedPayload(f"Event body is not valid JSON: {exc}") from exc
        if not isinstance(payload, Mapping):
            raise MalformedPayload("Event body must be a JSON object")
        return payload

    def type_tag(self, event: InboundEvent, payload: Mapping[str, Any]) -> str:
        if event.decoded_type:
            return event.decoded_type
        adapter = self._adapters.get(event.channel_type)
        return adapter.classify(payload) if adapter else "unknown"

    def normalize(self, event: InboundEvent) -> NormalizedMessage | None:
        """Return the normalized message, or ``None`` for unsupported events.

        Raises :class:`MalformedPayload` when the body is not JSON or a known
        event family lacks its required fields.
        """

        payload = self.decode(event)
        type_tag = self.type_tag(event, payload)
        fn = self._registry.get((event.channel_type, type_tag))
        if fn is None:
            logger.info(
                "Dropping unsupported %s event type %s (message %s)",
                event.channel_type,
                type_tag,
                event.queue_message_id,
            )
            return None
        message = fn(payload)
        if message is None:
            logger.info("Event %s carried no answerable text", event.queue_message_id)
            return None
        message.delivery_ref = event.attributes.get("webhookId") or event.queue_message_id or None
        return message


__all__ = ["EventNormalizer"]
