"""Assemble the pipeline collaborators and expose them as FastAPI dependencies.

With ``DATABASE_URL`` set every store is PostgreSQL-backed; without it the
in-memory implementations are used, which only suits tests and a single
process.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache

from .answers.client import AnswerClient
from .config import RelaySettings, get_settings
from .delivery.sender import ReplySender
from .events.dedup import DedupGuard
from .events.filters import MessageFilter
from .events.normalizer import EventNormalizer
from .events.processor import EventProcessor
from .kvstore import InMemoryKeyValueStore, KeyValueStore, PostgresKeyValueStore
from .models.session import get_sessionmaker
from .queue.base import ConsumableQueue
from .queue.memory import InMemoryQueue
from .queue.postgres import PostgresQueue
from .records.audit import AuditWriter, InMemoryAuditRepository, PostgresAuditRepository
from .records.dead_letters import (
    DeadLetterRepository,
    DeadLetterWriter,
    InMemoryDeadLetterRepository,
    PostgresDeadLetterRepository,
)
from .records.threads import InMemoryThreadRepository, PostgresThreadRepository, ThreadWriter
from .tenants.crypto import CredentialCipher
from .tenants.repository import InMemoryTenantRepository, SqlAlchemyTenantRepository
from .tenants.resolver import TenantResolver

logger = logging.getLogger(__name__)


@dataclass
class RelayServices:
    settings: RelaySettings
    queue: ConsumableQueue
    kv: KeyValueStore
    dead_letter_repository: DeadLetterRepository
    dead_letters: DeadLetterWriter
    audit: AuditWriter
    threads: ThreadWriter
    resolver: TenantResolver
    answers: AnswerClient
    sender: ReplySender
    processor: EventProcessor


def build_services(settings: RelaySettings | None = None) -> RelayServices:
    settings = settings or get_settings()
    dsn = settings.database_url
    if dsn:
        queue: ConsumableQueue = PostgresQueue(
            dsn,
            visibility_timeout=settings.queue_visibility_timeout,
            max_delivery_attempts=settings.queue_max_delivery_attempts,
        )
        kv: KeyValueStore = PostgresKeyValueStore(dsn)
        dead_letter_repository: DeadLetterRepository = PostgresDeadLetterRepository(dsn)
        audit = AuditWriter(PostgresAuditRepository(dsn))
        threads = ThreadWriter(PostgresThreadRepository(dsn))
        tenants = SqlAlchemyTenantRepository(get_sessionmaker(dsn))
    else:
        logger.warning("DATABASE_URL not set; using in-memory stores")
        queue = InMemoryQueue(max_delivery_attempts=settings.queue_max_delivery_attempts)
        kv = InMemoryKeyValueStore()
        dead_letter_repository = InMemoryDeadLetterRepository()
        audit = AuditWriter(InMemoryAuditRepository())
        threads = ThreadWriter(InMemoryThreadRepository())
        tenants = InMemoryTenantRepository()

    cipher = CredentialCipher(settings.credential_encryption_key)
    if not cipher.configured:
        logger.warning("CREDENTIAL_ENCRYPTION_KEY not set; tenant credentials cannot be decrypted")
    resolver = TenantResolver(tenants, cipher, settings)
    dead_letters = DeadLetterWriter(dead_letter_repository)
    answers = AnswerClient(settings)
    sender = ReplySender(settings)
    processor = EventProcessor(
        normalizer=EventNormalizer(settings=settings),
        message_filter=MessageFilter(settings.bot_identities, settings.mention_tokens),
        resolver=resolver,
        dedup=DedupGuard(kv, threads, ttl_seconds=settings.dedup_ttl_seconds),
        answers=answers,
        sender=sender,
        threads=threads,
        audit=audit,
        dead_letters=dead_letters,
        settings=settings,
    )
    return RelayServices(
        settings=settings,
        queue=queue,
        kv=kv,
        dead_letter_repository=dead_letter_repository,
        dead_letters=dead_letters,
        audit=audit,
        threads=threads,
        resolver=resolver,
        answers=answers,
        sender=sender,
        processor=processor,
    )


@lru_cache(maxsize=1)
def get_services() -> RelayServices:
    return build_services()


def reset_services() -> None:
    get_services.cache_clear()


# FastAPI dependencies; tests replace these through ``app.dependency_overrides``.


def get_queue() -> ConsumableQueue:
    return get_services().queue


def get_processor() -> EventProcessor:
    return get_services().processor


def get_dead_letter_repository() -> DeadLetterRepository:
    return get_services().dead_letter_repository


def get_audit_writer() -> AuditWriter:
    return get_services().audit


def get_answer_client() -> AnswerClient:
    return get_services().answers


def get_resolver() -> TenantResolver:
    return get_services().resolver


__all__ = [
    "RelayServices",
    "build_services",
    "get_answer_client",
    "get_audit_writer",
    "get_dead_letter_repository",
    "get_processor",
    "get_queue",
    "get_resolver",
    "get_services",
    "reset_services",
]
