"""Short-lived psycopg connections for the Postgres-backed stores."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import psycopg
from psycopg.rows import dict_row

logger = logging.getLogger(__name__)


class PostgresStore:
    """Base for stores that open one connection per operation.

    The worker runs several events in parallel threads; a connection per call
    keeps psycopg connections out of shared state.
    """

    def __init__(self, dsn: str) -> None:
        if not dsn:
            raise RuntimeError("DATABASE_URL is not configured.")
        self._dsn = dsn

    @contextmanager
    def _cursor(self) -> Iterator[psycopg.Cursor]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                yield cur


__all__ = ["PostgresStore"]
