import json
import threading

import pytest

from relay.events.processor import event_from_delivery
from relay.queue.base import QueueDelivery
from relay.queue.memory import InMemoryQueue
from relay.worker import Worker

from conftest import roam_message


class _ExplodingProcessor:
    def process(self, event):
        raise RuntimeError("backend auth revoked")


@pytest.fixture
def queue():
    return InMemoryQueue(max_delivery_attempts=3)


def _publish(queue, payload, event_type="chat.message.dm"):
    return queue.publish(
        json.dumps(payload).encode(), {"channel": "roam", "eventType": event_type}
    )


def test_event_from_delivery_reads_attributes():
    delivery = QueueDelivery(
        message_id="m-1", data=b"{}", attributes={"channel": "whatsapp", "eventType": "vonage.inbound"}
    )

    event = event_from_delivery(delivery)

    assert event.channel_type == "whatsapp"
    assert event.decoded_type == "vonage.inbound"
    assert event.queue_message_id == "m-1"


def test_in_memory_queue_gives_up_after_max_attempts(queue):
    _publish(queue, {})

    for attempt in range(1, 4):
        [delivery] = queue.pull()
        assert delivery.delivery_count == attempt
        queue.nack(delivery)

    assert len(queue) == 0
    assert len(queue.abandoned) == 1


def test_worker_acks_processed_events(queue, pipeline):
    _publish(queue, roam_message("When is the filing due?"))
    worker = Worker(queue, pipeline.processor, concurrency=2)
    try:
        assert worker.run_once() == 1
    finally:
        worker.close()

    assert len(queue) == 0
    assert queue.abandoned == []
    assert len(pipeline.sender.sent) == 1


def test_worker_redelivery_is_deduplicated(queue, pipeline):
    message_id = _publish(queue, roam_message("When is the filing due?"))
    worker = Worker(queue, pipeline.processor)
    try:
        worker.run_once()
        queue.redeliver(message_id)
        worker.run_once()
    finally:
        worker.close()

    assert len(pipeline.sender.sent) == 1


def test_worker_nacks_failures(queue):
    _publish(queue, {})
    worker = Worker(queue, _ExplodingProcessor())
    try:
        [delivery] = queue.pull()
        assert worker.handle(delivery) is False
    finally:
        worker.close()

    assert len(queue) == 1


def test_run_stops_when_signalled(queue, pipeline):
    worker = Worker(queue, pipeline.processor, poll_interval=0.01)
    stop = threading.Event()
    stop.set()
    try:
        worker.run(stop)
    finally:
        worker.close()
