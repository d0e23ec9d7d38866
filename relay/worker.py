"""Pull-based worker that drains the event queue.

Each pulled delivery is processed on a thread pool. A processed event is
acknowledged; an exception nacks it so the queue redelivers it until the
maximum delivery attempts are exhausted.

Usage::

    relay-worker [--concurrency N] [--once]
"""

from __future__ import annotations

import argparse
import logging
import signal
import threading
from concurrent.futures import ThreadPoolExecutor, wait

from .app_logging import init_logging
from .dependencies import get_services
from .events.processor import EventProcessor, event_from_delivery
from .queue.base import ConsumableQueue, QueueDelivery

logger = logging.getLogger(__name__)


class Worker:
    def __init__(
        self,
        queue: ConsumableQueue,
        processor: EventProcessor,
        *,
        concurrency: int = 4,
        poll_interval: float = 1.0,
    ) -> None:
        self.queue = queue
        self.processor = processor
        self.concurrency = max(1, concurrency)
        self.poll_interval = poll_interval
        self._pool = ThreadPoolExecutor(
            max_workers=self.concurrency, thread_name_prefix="relay-worker"
        )

    def handle(self, delivery: QueueDelivery) -> bool:
        """Process one delivery; return ``True`` when it was acknowledged."""

        try:
            outcome = self.processor.process(event_from_delivery(delivery))
        except Exception as exc:
            logger.warning(
                "Message %s failed on delivery %s: %s",
                delivery.message_id,
                delivery.delivery_count,
                exc,
            )
            self.queue.nack(delivery)
            return False
        self.queue.ack(delivery)
        logger.debug("Message %s acked (%s)", delivery.message_id, outcome.status)
        return True

    def run_once(self) -> int:
        """Pull one batch, process it and return the batch size."""

        batch = self.queue.pull(self.concurrency)
        if batch:
            wait([self._pool.submit(self.handle, delivery) for delivery in batch])
        return len(batch)

    def run(self, stop: threading.Event) -> None:
        logger.info("Worker started with concurrency %s", self.concurrency)
        while not stop.is_set():
            try:
                pulled = self.run_once()
            except Exception:
                logger.exception("Queue pull failed")
                pulled = 0
            if not pulled:
                stop.wait(self.poll_interval)
        logger.info("Worker stopped")

    def close(self) -> None:
        self._pool.shutdown(wait=True)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Process queued webhook events.")
    parser.add_argument("--concurrency", type=int, default=None, help="Events processed in parallel")
    parser.add_argument("--once", action="store_true", help="Drain a single batch and exit")
    args = parser.parse_args(argv)

    init_logging()
    services = get_services()
    settings = services.settings
    worker = Worker(
        services.queue,
        services.processor,
        concurrency=args.concurrency or settings.worker_concurrency,
        poll_interval=settings.queue_poll_interval,
    )
    try:
        if args.once:
            worker.run_once()
            return 0
        stop = threading.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, lambda *_: stop.set())
        worker.run(stop)
    finally:
        worker.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
