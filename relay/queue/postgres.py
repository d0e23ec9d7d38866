"""Postgres-backed queue using ``FOR UPDATE SKIP LOCKED`` leases."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from uuid import uuid4

from psycopg.types.json import Jsonb

from ..db import PostgresStore
from .base import QueueDelivery

logger = logging.getLogger(__name__)


class PostgresQueue(PostgresStore):
    """Pulled deliveries stay invisible for ``visibility_timeout`` seconds.

    A worker that dies mid-event therefore gets its message redelivered once
    the lease expires.
    """

    def __init__(
        self,
        dsn: str,
        *,
        visibility_timeout: int = 60,
        max_delivery_attempts: int = 5,
        retry_delay: int = 10,
    ) -> None:
        super().__init__(dsn)
        self.visibility_timeout = visibility_timeout
        self.max_delivery_attempts = max_delivery_attempts
        self.retry_delay = retry_delay

    def publish(self, data: bytes, attributes: Mapping[str, str]) -> str:
        message_id = uuid4().hex
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO relay_queue (message_id, data, attributes)
                VALUES (%s, %s, %s)
                """,
                (message_id, data, Jsonb(dict(attributes))),
            )
        return message_id

    def pull(self, max_messages: int = 1) -> list[QueueDelivery]:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE relay_queue
                SET delivery_count = delivery_count + 1,
                    visible_at = now() + make_interval(secs => %s)
                WHERE id IN (
                    SELECT id FROM relay_queue
                    WHERE visible_at <= now()
                    ORDER BY id
                    FOR UPDATE SKIP LOCKED
                    LIMIT %s
                )
                RETURNING message_id, data, attributes, delivery_count
                """,
                (self.visibility_timeout, max_messages),
            )
            rows = cur.fetchall()
        return [
            QueueDelivery(
                message_id=row["message_id"],
                data=bytes(row["data"]),
                attributes=dict(row["attributes"] or {}),
                delivery_count=row["delivery_count"],
            )
            for row in rows
        ]

    def ack(self, delivery: QueueDelivery) -> None:
        with self._cursor() as cur:
            cur.execute("DELETE FROM relay_queue WHERE message_id = %s", (delivery.message_id,))

    def nack(self, delivery: QueueDelivery) -> None:
        if delivery.delivery_count >= self.max_delivery_attempts:
            logger.error(
                "Giving up on message %s after %s deliveries",
                delivery.message_id,
                delivery.delivery_count,
            )
            self.ack(delivery)
            return
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE relay_queue
                SET visible_at = now() + make_interval(secs => %s)
                WHERE message_id = %s
                """,
                (self.retry_delay * delivery.delivery_count, delivery.message_id),
            )


__all__ = ["PostgresQueue"]
