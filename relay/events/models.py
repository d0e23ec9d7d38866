"""Domain models flowing through the event pipeline."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Union

from ..errors import ErrorKind


@dataclass(frozen=True)
class InboundEvent:
    """Raw webhook body as it was published to the queue."""

    raw_bytes: bytes
    channel_type: str
    decoded_type: str
    attributes: dict[str, str] = field(default_factory=dict)
    queue_message_id: str | None = None


@dataclass
class NormalizedMessage:
    """Uniform representation of an inbound chat message."""

    channel: str
    external_message_id: str | None
    channel_routing_key: str
    sender_id: str
    text: str
    sender_display_name: str | None = None
    thread_ref: str | None = None
    timestamp: datetime | None = None
    is_direct: bool = False
    is_mention: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
    #: Stable id of the delivery that carried the message (webhook id, then
    #: queue message id); set by the normalizer.
    delivery_ref: str | None = None

    @property
    def dedup_key(self) -> str:
        """Return the external id, or the most stable surrogate available.

        Surrogates in order: routing key plus the payload timestamp, routing key
        plus the delivery ref, then a digest of routing key, sender and text.
        """

        if self.external_message_id:
            return self.external_message_id
        if self.timestamp is not None:
            return f"{self.channel_routing_key}:{int(self.timestamp.timestamp() * 1000)}"
        if self.delivery_ref:
            return f"{self.channel_routing_key}:delivery:{self.delivery_ref}"
        digest = hashlib.sha256(
            f"{self.channel_routing_key}\0{self.sender_id}\0{self.text}".encode("utf-8")
        ).hexdigest()[:32]
        return f"{self.channel_routing_key}:text:{digest}"


@dataclass(frozen=True)
class TenantContext:
    tenant_id: str
    user_id: str | None
    decrypted_credential: str | None = None
    personality_prompt: str | None = None
    mention_only: bool = False
    features: dict[str, Any] = field(default_factory=dict)
    resolution: Literal["integration", "fallback"] = "fallback"
    integration_id: str | None = None
    encrypted_credential: str | None = field(default=None, repr=False)

    @property
    def is_fallback(self) -> bool:
        return self.resolution == "fallback"


@dataclass(frozen=True)
class Citation:
    index: int
    document_id: str
    source_name: str
    excerpt: str
    relevance_score: float | None = None
    chunk_id: str | None = None


@dataclass
class AnswerResult:
    """Parsed answer backend response."""

    text: str
    confidence_score: float | None
    citations: list[Citation] = field(default_factory=list)
    explicit_silence: bool = False
    suggestions: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class CitationBlock:
    """Citation enriched with provenance and a confidence tier."""

    index: int
    document_id: str
    source_name: str
    excerpt: str
    confidence_score: float
    confidence_level: Literal["high", "medium", "low"]
    confidence_color: Literal["green", "amber", "red"]
    retrieval_timestamp: datetime
    query_hash: str
    response_hash: str
    document_url: str
    chunk_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "documentId": self.document_id,
            "chunkId": self.chunk_id,
            "sourceName": self.source_name,
            "excerpt": self.excerpt,
            "confidenceScore": self.confidence_score,
            "confidenceLevel": self.confidence_level,
            "confidenceColor": self.confidence_color,
            "retrievalTimestamp": self.retrieval_timestamp.isoformat(),
            "queryHash": self.query_hash,
            "responseHash": self.response_hash,
            "documentUrl": self.document_url,
        }


@dataclass(frozen=True)
class Answer:
    text: str
    citation_blocks: tuple[CitationBlock, ...] = ()
    confidence: float | None = None
    kind: Literal["answer"] = "answer"


@dataclass(frozen=True)
class Silence:
    """Refusal to answer; never carries an answer body or citations."""

    reasoning: str
    suggestions: tuple[str, ...] = ()
    confidence: float | None = None
    kind: Literal["silence"] = "silence"


@dataclass(frozen=True)
class Error:
    error_kind: ErrorKind
    kind: Literal["error"] = "error"


ReplyDecision = Union[Answer, Silence, Error]


@dataclass
class SendResult:
    success: bool
    external_message_id: str | None = None
    error: str | None = None
    status: int | None = None
    used_tenant_credential: bool = False

    @property
    def auth_failed(self) -> bool:
        return not self.success and self.status == 401


@dataclass
class ProcessOutcome:
    """Result of processing one queued event; every status is ack-worthy."""

    status: Literal["replied", "silenced", "errored", "duplicate", "ignored", "dropped"]
    reason: str | None = None
    tenant_id: str | None = None
    decision: ReplyDecision | None = None
    send_result: SendResult | None = None


__all__ = [
    "Answer",
    "AnswerResult",
    "Citation",
    "CitationBlock",
    "Error",
    "InboundEvent",
    "NormalizedMessage",
    "ProcessOutcome",
    "ReplyDecision",
    "SendResult",
    "Silence",
    "TenantContext",
]
