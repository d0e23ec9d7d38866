"""Duplicate-delivery guard run before any outbound side effect.

A claim is taken in the shared key-value store; the thread store is consulted
as well so that events already recorded before their claim expired are still
recognised. Two truly concurrent deliveries of one message can both pass the
thread lookup, but only one of them wins the atomic claim.
"""

from __future__ import annotations

import logging

from ..kvstore import KeyValueStore
from ..records.threads import ThreadWriter
from .models import NormalizedMessage

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60 * 60 * 24 * 7


class DedupGuard:
    def __init__(
        self,
        store: KeyValueStore,
        threads: ThreadWriter | None = None,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ) -> None:
        self._store = store
        self._threads = threads
        self._ttl = ttl_seconds

    @staticmethod
    def key(tenant_id: str, message: NormalizedMessage) -> str:
        return f"dedup:{tenant_id}:{message.channel}:{message.dedup_key}"

    def claim(self, tenant_id: str, message: NormalizedMessage) -> bool:
        """Return ``True`` for the first delivery of ``message`` within ``tenant_id``."""

        if (
            self._threads is not None
            and message.external_message_id
            and self._threads.has_message(tenant_id, message.channel, message.external_message_id)
        ):
            logger.info("Duplicate %s message %s (already in thread)", message.channel, message.dedup_key)
            return False
        if not self._store.claim(self.key(tenant_id, message), self._ttl):
            logger.info("Duplicate %s message %s (claimed)", message.channel, message.dedup_key)
            return False
        return True

    def release(self, tenant_id: str, message: NormalizedMessage) -> None:
        """Drop the claim so a redelivery of a failed event is processed again."""

        try:
            self._store.release(self.key(tenant_id, message))
        except Exception:
            logger.exception("Failed to release dedup claim for %s", message.dedup_key)


__all__ = ["DedupGuard"]
