import json
import pathlib
import sys
from dataclasses import dataclass
from typing import Any

import pytest
from cryptography.fernet import Fernet
from fastapi import FastAPI, Request

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from relay.app_logging import init_logging
from relay.config import RelaySettings
from relay.events.dedup import DedupGuard
from relay.events.filters import MessageFilter
from relay.events.models import AnswerResult, InboundEvent, SendResult
from relay.events.normalizer import EventNormalizer
from relay.events.processor import EventProcessor
from relay.kvstore import InMemoryKeyValueStore
from relay.records.audit import AuditWriter, InMemoryAuditRepository
from relay.records.dead_letters import DeadLetterWriter, InMemoryDeadLetterRepository
from relay.records.threads import InMemoryThreadRepository, ThreadWriter
from relay.tenants.crypto import CredentialCipher
from relay.tenants.repository import InMemoryTenantRepository
from relay.tenants.resolver import TenantResolver

ROAM_SECRET = "whsec_dGVzdC1yb2FtLXNpZ25pbmctc2VjcmV0"


@pytest.fixture
def settings() -> RelaySettings:
    return RelaySettings(
        roam_webhook_secret=ROAM_SECRET,
        vonage_signature_secret="vonage-signature-secret",
        meta_app_secret="meta-app-secret",
        whatsapp_verify_token="verify-me",
        backend_url="http://backend.test",
        internal_auth_secret="internal-secret",
        default_tenant_id="default",
        default_user_id="default-user",
        credential_encryption_key=Fernet.generate_key().decode("ascii"),
        roam_api_key="platform-roam-key",
        vonage_api_key="platform-vonage-key",
        vonage_api_secret="platform-vonage-secret",
        vonage_whatsapp_number="14155550100",
    )


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str, log_request_bodies: bool = False):
        """Create a FastAPI app with logging initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        app = FastAPI()

        @app.post("/echo")
        async def echo(request: Request):
            return await request.json()

        init_logging(app)
        return app

    return _create_app


class FakeAnswers:
    """Stands in for :class:`AnswerClient`; returns ``result`` or raises ``error``."""

    def __init__(self) -> None:
        self.result = AnswerResult(text="The filing is due on 30 June.", confidence_score=0.9)
        self.error: Exception | None = None
        self.calls: list[dict[str, Any]] = []

    def query(self, text, *, user_id, system_prompt_override=None):
        self.calls.append(
            {"text": text, "user_id": user_id, "system_prompt_override": system_prompt_override}
        )
        if self.error is not None:
            raise self.error
        return self.result


class RecordingSender:
    """Stands in for :class:`ReplySender` and records every call."""

    def __init__(self) -> None:
        self.sent: list[tuple[Any, str, Any]] = []
        self.typing: list[Any] = []
        self.reject_tenant_credential = False
        self.fail_status: int | None = None

    def send(self, message, text, tenant):
        self.sent.append((message, text, tenant))
        used_tenant = bool(tenant.decrypted_credential)
        if self.reject_tenant_credential and used_tenant:
            return SendResult(
                success=False, error="401 Unauthorized", status=401, used_tenant_credential=True
            )
        if self.fail_status is not None:
            return SendResult(success=False, error="send failed", status=self.fail_status)
        return SendResult(
            success=True,
            external_message_id=f"out-{len(self.sent)}",
            used_tenant_credential=used_tenant,
        )

    def send_typing(self, message, tenant):
        self.typing.append(message)


@dataclass
class Pipeline:
    settings: RelaySettings
    processor: EventProcessor
    tenants: InMemoryTenantRepository
    threads: InMemoryThreadRepository
    audit: InMemoryAuditRepository
    dead_letters: InMemoryDeadLetterRepository
    kv: InMemoryKeyValueStore
    cipher: CredentialCipher
    answers: FakeAnswers
    sender: RecordingSender

    def event(
        self,
        channel: str,
        payload: dict[str, Any],
        event_type: str = "",
        message_id: str = "queue-1",
    ) -> InboundEvent:
        return InboundEvent(
            raw_bytes=json.dumps(payload).encode("utf-8"),
            channel_type=channel,
            decoded_type=event_type,
            attributes={"channel": channel, "eventType": event_type},
            queue_message_id=message_id,
        )

    def connect(self, channel: str, routing_key: str, *, api_key: str | None = "tenant-key", **fields):
        fields.setdefault("tenant_id", "tenant-a")
        fields.setdefault("user_id", "user-a")
        return self.tenants.add_integration(
            channel=channel,
            routing_key=routing_key,
            api_key_encrypted=self.cipher.encrypt(api_key) if api_key else None,
            **fields,
        )


@pytest.fixture
def pipeline(settings) -> Pipeline:
    tenants = InMemoryTenantRepository()
    threads = InMemoryThreadRepository()
    audit = InMemoryAuditRepository()
    dead_letters = InMemoryDeadLetterRepository()
    kv = InMemoryKeyValueStore()
    cipher = CredentialCipher(settings.credential_encryption_key)
    answers = FakeAnswers()
    sender = RecordingSender()
    thread_writer = ThreadWriter(threads)
    processor = EventProcessor(
        normalizer=EventNormalizer(settings=settings),
        message_filter=MessageFilter(settings.bot_identities, settings.mention_tokens),
        resolver=TenantResolver(tenants, cipher, settings),
        dedup=DedupGuard(kv, thread_writer, ttl_seconds=settings.dedup_ttl_seconds),
        answers=answers,
        sender=sender,
        threads=thread_writer,
        audit=AuditWriter(audit),
        dead_letters=DeadLetterWriter(dead_letters),
        settings=settings,
    )
    return Pipeline(
        settings=settings,
        processor=processor,
        tenants=tenants,
        threads=threads,
        audit=audit,
        dead_letters=dead_letters,
        kv=kv,
        cipher=cipher,
        answers=answers,
        sender=sender,
    )


def roam_message(
    text: str,
    *,
    event_type: str = "chat.message.dm",
    message_id: str | None = "msg-1",
    chat_id: str = "chat-1",
    sender_id: str = "user-1",
    sender_name: str = "Dana",
    timestamp: int | None = 1_717_000_000_000,
) -> dict[str, Any]:
    data: dict[str, Any] = {
        "text": text,
        "sender": {"id": sender_id, "name": sender_name},
        "chat": {"id": chat_id},
    }
    if timestamp is not None:
        data["timestamp"] = timestamp
    if message_id is not None:
        data["id"] = message_id
    return {"type": event_type, "data": data}
