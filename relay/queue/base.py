"""Queue contract between the webhook receiver and the event processor.

Delivery is at-least-once: a message may arrive more than once, out of order
and concurrently with its duplicates. ``ack`` removes a delivery; ``nack``
makes it visible again until the maximum delivery attempts are exhausted.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol


@dataclass(frozen=True)
class QueueDelivery:
    message_id: str
    data: bytes
    attributes: dict[str, str] = field(default_factory=dict)
    delivery_count: int = 1


class MessageQueue(Protocol):
    def publish(self, data: bytes, attributes: Mapping[str, str]) -> str:
        """Publish ``data`` and return the broker-assigned message id."""
        ...


class ConsumableQueue(MessageQueue, Protocol):
    def pull(self, max_messages: int = 1) -> list[QueueDelivery]: ...

    def ack(self, delivery: QueueDelivery) -> None: ...

    def nack(self, delivery: QueueDelivery) -> None: ...
