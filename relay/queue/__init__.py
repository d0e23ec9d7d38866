"""Message queue contract and adapters."""

from .base import ConsumableQueue, MessageQueue, QueueDelivery
from .memory import InMemoryQueue

__all__ = ["ConsumableQueue", "InMemoryQueue", "MessageQueue", "QueueDelivery"]
