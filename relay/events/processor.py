"""Process one queued webhook event end to end.

Stages run sequentially: normalize, self-loop filter, tenant resolution,
mention filter, dedup claim, credential decryption, answer, confidence gate,
formatting, send, thread append and audit. Every stage before the send is
free of outbound side effects so a duplicate or filtered event leaves no
trace.

:meth:`EventProcessor.process` returns a :class:`ProcessOutcome` for every
event that should be acknowledged and raises for events the broker should
redeliver.
"""

from __future__ import annotations

import logging
from typing import Any

from ..answers.citations import build_citation_blocks
from ..answers.client import AnswerClient
from ..answers.gate import decide
from ..config import RelaySettings, get_settings
from ..delivery.sender import ReplySender
from ..errors import BackendAuthRevoked, BackendUnavailable, ErrorKind, MalformedPayload
from ..formatting import format_reply
from ..queue.base import QueueDelivery
from ..records.audit import ACTION_KEY_REVOKED, AuditWriter
from ..records.dead_letters import DeadLetterWriter
from ..records.threads import ThreadWriter
from ..tenants.resolver import TenantResolver
from .dedup import DedupGuard
from .filters import MessageFilter
from .models import (
    Answer,
    Error,
    InboundEvent,
    NormalizedMessage,
    ProcessOutcome,
    ReplyDecision,
    SendResult,
    Silence,
    TenantContext,
)
from .normalizer import EventNormalizer

logger = logging.getLogger(__name__)


def event_from_delivery(delivery: QueueDelivery) -> InboundEvent:
    attributes = dict(delivery.attributes)
    return InboundEvent(
        raw_bytes=delivery.data,
        channel_type=attributes.get("channel", ""),
        decoded_type=attributes.get("eventType", ""),
        attributes=attributes,
        queue_message_id=delivery.message_id,
    )


class EventProcessor:
    def __init__(
        self,
        *,
        normalizer: EventNormalizer,
        message_filter: MessageFilter,
        resolver: TenantResolver,
        dedup: DedupGuard,
        answers: AnswerClient,
        sender: ReplySender,
        threads: ThreadWriter,
        audit: AuditWriter,
        dead_letters: DeadLetterWriter,
        settings: RelaySettings | None = None,
    ) -> None:
        self.normalizer = normalizer
        self.filter = message_filter
        self.resolver = resolver
        self.dedup = dedup
        self.answers = answers
        self.sender = sender
        self.threads = threads
        self.audit = audit
        self.dead_letters = dead_letters
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    def process(self, event: InboundEvent) -> ProcessOutcome:
        tenant: TenantContext | None = None
        try:
            try:
                message = self.normalizer.normalize(event)
            except MalformedPayload as exc:
                logger.warning(
                    "Malformed %s event %s: %s", event.channel_type, event.queue_message_id, exc
                )
                self._dead_letter(event, None, str(exc), 400)
                return ProcessOutcome(status="dropped", reason="malformed")
            if message is None:
                return ProcessOutcome(status="ignored", reason="unsupported")

            if self.filter.is_self(message):
                logger.debug("Ignoring own message %s", message.dedup_key)
                return ProcessOutcome(status="ignored", reason="self")

            tenant = self.resolver.resolve(message.channel, message.channel_routing_key)

            if not self.filter.is_addressed(message, tenant.mention_only):
                logger.debug("Ignoring unaddressed %s message %s", message.channel, message.dedup_key)
                return ProcessOutcome(
                    status="ignored", reason="not_addressed", tenant_id=tenant.tenant_id
                )

            if not tenant.user_id:
                logger.error(
                    "No user configured for tenant %s; dropping %s message %s",
                    tenant.tenant_id,
                    message.channel,
                    message.dedup_key,
                )
                self._dead_letter(event, tenant.tenant_id, "No user id for tenant", None)
                return ProcessOutcome(status="dropped", reason="no_user", tenant_id=tenant.tenant_id)

            if not self.dedup.claim(tenant.tenant_id, message):
                return ProcessOutcome(status="duplicate", tenant_id=tenant.tenant_id)
        except Exception as exc:
            logger.exception(
                "Failed to admit %s event %s", event.channel_type, event.queue_message_id
            )
            self._dead_letter(
                event,
                tenant.tenant_id if tenant is not None else None,
                str(exc) or type(exc).__name__,
                None,
            )
            raise

        try:
            return self._handle(event, message, tenant)
        except BackendAuthRevoked:
            raise
        except Exception as exc:
            logger.exception(
                "Processing failed for %s message %s", message.channel, message.dedup_key
            )
            self._dead_letter(event, tenant.tenant_id, str(exc) or type(exc).__name__, None)
            self.dedup.release(tenant.tenant_id, message)
            raise

    # ------------------------------------------------------------------
    def _handle(
        self, event: InboundEvent, message: NormalizedMessage, tenant: TenantContext
    ) -> ProcessOutcome:
        tenant = self.resolver.with_credential(tenant)
        query = self.filter.strip_mention(message.text)

        self.sender.send_typing(message, tenant)
        decision = self._decide(query, tenant)
        reply = format_reply(
            message.channel, decision, low_confidence=self.settings.low_confidence_warning
        )
        result = self.sender.send(message, reply, tenant)

        if result.auth_failed and result.used_tenant_credential:
            self._revoke(event, message, tenant, result)

        self._record(message, tenant, query, reply, decision, result)

        if not result.success:
            status = "errored"
            reason = "send_failed"
        elif isinstance(decision, Answer):
            status, reason = "replied", None
        elif isinstance(decision, Silence):
            status, reason = "silenced", None
        else:
            status, reason = "errored", decision.error_kind.value
        logger.info(
            "Processed %s message %s for tenant %s: %s",
            message.channel,
            message.dedup_key,
            tenant.tenant_id,
            status,
        )
        return ProcessOutcome(
            status=status,
            reason=reason,
            tenant_id=tenant.tenant_id,
            decision=decision,
            send_result=result,
        )

    def _decide(self, query: str, tenant: TenantContext) -> ReplyDecision:
        try:
            result = self.answers.query(
                query,
                user_id=tenant.user_id,
                system_prompt_override=tenant.personality_prompt,
            )
        except BackendUnavailable as exc:
            logger.error("Answer backend unavailable for tenant %s: %s", tenant.tenant_id, exc)
            return Error(ErrorKind.UPSTREAM_FAILURE)
        except Exception:
            logger.exception("Answer query failed for tenant %s", tenant.tenant_id)
            return Error(ErrorKind.INTERNAL_ERROR)

        blocks = build_citation_blocks(
            result.citations,
            query=query,
            response_text=result.text,
            fallback_score=result.confidence_score,
            green=self.settings.citation_green_threshold,
            amber=self.settings.citation_amber_threshold,
            document_base_url=self.settings.document_base_url,
        )
        decision = decide(
            result.confidence_score,
            result.explicit_silence,
            self.settings.silence_threshold,
            text=result.text,
            citation_blocks=blocks,
            suggestions=result.suggestions,
        )
        if isinstance(decision, Answer) and not decision.text.strip():
            logger.error("Answer backend returned an empty reply for tenant %s", tenant.tenant_id)
            return Error(ErrorKind.INTERNAL_ERROR)
        return decision

    def _revoke(
        self,
        event: InboundEvent,
        message: NormalizedMessage,
        tenant: TenantContext,
        result: SendResult,
    ) -> None:
        reason = f"Channel API returned 401: {result.error}"
        logger.error(
            "Tenant %s %s credential rejected; marking integration %s as errored",
            tenant.tenant_id,
            message.channel,
            tenant.integration_id,
        )
        try:
            self.resolver.mark_revoked(tenant, reason)
        except Exception:
            logger.exception("Failed to mark integration %s as errored", tenant.integration_id)
        self.audit.record(
            tenant_id=tenant.tenant_id,
            actor_id=tenant.user_id,
            action_type=ACTION_KEY_REVOKED,
            status="failed",
            metadata={
                "channel": message.channel,
                "integrationId": tenant.integration_id,
                "routingKey": message.channel_routing_key,
                "error": (result.error or "")[:500],
            },
        )
        self._dead_letter(event, tenant.tenant_id, reason, result.status)
        self.dedup.release(tenant.tenant_id, message)
        raise BackendAuthRevoked(tenant.tenant_id)

    def _record(
        self,
        message: NormalizedMessage,
        tenant: TenantContext,
        query: str,
        reply: str,
        decision: ReplyDecision,
        result: SendResult,
    ) -> None:
        user_id = tenant.user_id or ""
        self.threads.append(
            tenant_id=tenant.tenant_id,
            user_id=user_id,
            role="user",
            channel=message.channel,
            content=message.text,
            metadata={
                "routingKey": message.channel_routing_key,
                "senderId": message.sender_id,
                "senderName": message.sender_display_name,
                "threadRef": message.thread_ref,
            },
            external_message_id=message.external_message_id,
        )
        outbound: dict[str, Any] = {
            "decision": decision.kind,
            "delivered": result.success,
            "externalMessageId": result.external_message_id,
        }
        if isinstance(decision, Answer):
            outbound["citations"] = [block.to_dict() for block in decision.citation_blocks]
        if not result.success:
            outbound["sendError"] = result.error
        self.threads.append(
            tenant_id=tenant.tenant_id,
            user_id=user_id,
            role="assistant",
            channel=message.channel,
            content=reply,
            confidence=getattr(decision, "confidence", None),
            metadata=outbound,
        )
        self.audit.record_query(
            tenant_id=tenant.tenant_id,
            actor_id=tenant.user_id,
            channel=message.channel,
            query=query,
            response=reply,
            confidence=getattr(decision, "confidence", None),
            routing_key=message.channel_routing_key,
            decision=decision.kind,
            delivered=result.success,
        )

    def _dead_letter(
        self,
        event: InboundEvent,
        tenant_id: str | None,
        error_message: str,
        error_status: int | None,
    ) -> None:
        self.dead_letters.write(
            tenant_id=tenant_id,
            queue_message_id=event.queue_message_id,
            event_type=event.decoded_type or event.channel_type or "unknown",
            raw_bytes=event.raw_bytes,
            attributes=event.attributes,
            error_message=error_message,
            error_status=error_status,
        )


__all__ = ["EventProcessor", "event_from_delivery"]
