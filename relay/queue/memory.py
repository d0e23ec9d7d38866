"""In-process queue for tests and single-process development runs."""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Mapping
from dataclasses import replace
from uuid import uuid4

from .base import QueueDelivery

logger = logging.getLogger(__name__)


class InMemoryQueue:
    def __init__(self, *, max_delivery_attempts: int = 5) -> None:
        self.max_delivery_attempts = max_delivery_attempts
        self._ready: deque[QueueDelivery] = deque()
        self._in_flight: dict[str, QueueDelivery] = {}
        self.published: list[QueueDelivery] = []
        self.abandoned: list[QueueDelivery] = []
        self._lock = threading.Lock()

    def publish(self, data: bytes, attributes: Mapping[str, str]) -> str:
        delivery = QueueDelivery(
            message_id=uuid4().hex, data=data, attributes=dict(attributes), delivery_count=0
        )
        with self._lock:
            self._ready.append(delivery)
            self.published.append(delivery)
        return delivery.message_id

    def pull(self, max_messages: int = 1) -> list[QueueDelivery]:
        batch: list[QueueDelivery] = []
        with self._lock:
            while self._ready and len(batch) < max_messages:
                delivery = self._ready.popleft()
                delivery = replace(delivery, delivery_count=delivery.delivery_count + 1)
                self._in_flight[delivery.message_id] = delivery
                batch.append(delivery)
        return batch

    def ack(self, delivery: QueueDelivery) -> None:
        with self._lock:
            self._in_flight.pop(delivery.message_id, None)

    def nack(self, delivery: QueueDelivery) -> None:
        with self._lock:
            self._in_flight.pop(delivery.message_id, None)
            if delivery.delivery_count >= self.max_delivery_attempts:
                logger.error(
                    "Giving up on message %s after %s deliveries",
                    delivery.message_id,
                    delivery.delivery_count,
                )
                self.abandoned.append(delivery)
                return
            self._ready.append(delivery)

    def redeliver(self, message_id: str) -> None:
        """Re-queue an already acked message, as a broker does on duplicate delivery."""

        with self._lock:
            for delivery in self.published:
                if delivery.message_id == message_id:
                    self._ready.append(delivery)
                    return
        raise KeyError(message_id)

    def __len__(self) -> int:
        return len(self._ready)
