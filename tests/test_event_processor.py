import pytest

from relay.errors import BackendAuthRevoked, BackendUnavailable, ErrorKind
from relay.events.models import AnswerResult, Citation, Error, InboundEvent, Silence
from relay.models.tenant import STATUS_ERROR
from relay.records.dead_letters import decode_payload

from conftest import roam_message


def _process(pipeline, payload, channel="roam", **kwargs):
    return pipeline.processor.process(pipeline.event(channel, payload, **kwargs))


def test_direct_message_is_answered_and_recorded(pipeline):
    outcome = _process(pipeline, roam_message("When is the filing due?"))

    assert outcome.status == "replied"
    assert outcome.tenant_id == "default"
    assert len(pipeline.sender.sent) == 1
    message, text, tenant = pipeline.sender.sent[0]
    assert message.channel_routing_key == "chat-1"
    assert text.startswith("The filing is due on 30 June.")
    assert tenant.is_fallback
    assert pipeline.sender.typing == [message]
    assert pipeline.answers.calls[0]["user_id"] == "default-user"

    roles = [m.role for m in pipeline.threads.messages]
    assert roles == ["user", "assistant"]
    assert pipeline.threads.messages[0].external_message_id == "msg-1"
    assert pipeline.threads.messages[1].content == text

    [record] = pipeline.audit.records
    assert record.action_type == "roam_query"
    assert record.metadata["query"] == "When is the filing due?"
    assert record.metadata["responseLength"] == len(text)
    assert record.metadata["confidence"] == 0.9


def test_redelivered_event_is_sent_once(pipeline):
    payload = roam_message("When is the filing due?")

    outcomes = [_process(pipeline, payload, message_id=f"q-{n}") for n in range(5)]

    assert [o.status for o in outcomes] == ["replied"] + ["duplicate"] * 4
    assert len(pipeline.sender.sent) == 1
    assert len(pipeline.threads.messages) == 2
    assert len(pipeline.answers.calls) == 1


def test_events_without_id_dedup_on_routing_key_and_timestamp(pipeline):
    payload = roam_message("hello?", message_id=None)

    assert _process(pipeline, payload).status == "replied"
    assert _process(pipeline, payload).status == "duplicate"
    later = roam_message("hello?", message_id=None, timestamp=1_717_000_000_500)
    assert _process(pipeline, later).status == "replied"


def test_own_messages_are_dropped_without_side_effects(pipeline):
    outcome = _process(pipeline, roam_message("Here is your answer", sender_id="x", sender_name="Relay"))

    assert outcome.status == "ignored"
    assert outcome.reason == "self"
    assert pipeline.sender.sent == []
    assert pipeline.threads.messages == []
    assert pipeline.answers.calls == []


def test_group_message_without_mention_is_ignored(pipeline):
    outcome = _process(
        pipeline, roam_message("anyone seen the filing?", event_type="chat.message.group")
    )

    assert outcome.status == "ignored"
    assert outcome.reason == "not_addressed"
    assert pipeline.sender.sent == []
    assert pipeline.kv.exists("dedup:default:roam:msg-1") is False


def test_group_mention_is_answered_with_token_stripped(pipeline):
    outcome = _process(
        pipeline, roam_message("@bot summarize the filing", event_type="chat.message.group")
    )

    assert outcome.status == "replied"
    assert pipeline.answers.calls[0]["text"] == "summarize the filing"
    assert pipeline.threads.messages[0].content == "@bot summarize the filing"


def test_group_message_answered_when_tenant_disables_mention_only(pipeline):
    pipeline.connect("roam", "chat-1", mention_only=False)

    outcome = _process(
        pipeline, roam_message("anyone seen the filing?", event_type="chat.message.group")
    )

    assert outcome.status == "replied"


def test_direct_message_bypasses_mention_requirement(pipeline):
    pipeline.connect("roam", "chat-1", mention_only=True)

    assert _process(pipeline, roam_message("no mention here")).status == "replied"


def test_low_confidence_answer_is_silenced(pipeline):
    pipeline.answers.result = AnswerResult(
        text="Possibly 30 June.",
        confidence_score=0.40,
        citations=[Citation(index=1, document_id="doc-1", source_name="Filing.pdf", excerpt="...")],
    )

    outcome = _process(pipeline, roam_message("When is the filing due?"))

    assert outcome.status == "silenced"
    assert isinstance(outcome.decision, Silence)
    _, text, _ = pipeline.sender.sent[0]
    assert "Silence Protocol" in text
    assert "Sources" not in text
    assert "Possibly 30 June." not in text
    assert pipeline.audit.records[0].metadata["decision"] == "silence"


def test_backend_outage_is_an_error_not_silence(pipeline):
    pipeline.answers.error = BackendUnavailable("Answer backend timed out")

    outcome = _process(pipeline, roam_message("When is the filing due?"))

    assert outcome.status == "errored"
    assert outcome.decision == Error(ErrorKind.UPSTREAM_FAILURE)
    _, text, _ = pipeline.sender.sent[0]
    assert "processing issue" in text
    assert "timed out" not in text
    assert "Silence Protocol" not in text


def test_unexpected_answer_failure_maps_to_internal_error(pipeline):
    pipeline.answers.error = ValueError("boom")

    outcome = _process(pipeline, roam_message("When is the filing due?"))

    assert outcome.decision == Error(ErrorKind.INTERNAL_ERROR)
    assert "boom" not in pipeline.sender.sent[0][1]


def test_tenant_credential_and_persona_are_used(pipeline):
    pipeline.connect("roam", "chat-1", api_key="tenant-roam-key", tenant_id="tenant-a")
    pipeline.tenants.personas["tenant-a"] = "You are a tax assistant."

    outcome = _process(pipeline, roam_message("When is the filing due?"))

    assert outcome.tenant_id == "tenant-a"
    _, _, tenant = pipeline.sender.sent[0]
    assert tenant.decrypted_credential == "tenant-roam-key"
    assert pipeline.answers.calls[0]["system_prompt_override"] == "You are a tax assistant."
    assert pipeline.answers.calls[0]["user_id"] == "user-a"


def test_undecryptable_credential_falls_back_to_platform_key(pipeline):
    pipeline.tenants.add_integration(
        tenant_id="tenant-a",
        user_id="user-a",
        channel="roam",
        routing_key="chat-1",
        api_key_encrypted="not-a-fernet-token",
    )

    outcome = _process(pipeline, roam_message("When is the filing due?"))

    assert outcome.status == "replied"
    _, _, tenant = pipeline.sender.sent[0]
    assert tenant.tenant_id == "tenant-a"
    assert tenant.decrypted_credential is None


def test_revoked_tenant_key_marks_integration_and_recovers_on_redelivery(pipeline):
    integration = pipeline.connect("roam", "chat-1", api_key="revoked-key")
    pipeline.sender.reject_tenant_credential = True
    payload = roam_message("When is the filing due?")

    with pytest.raises(BackendAuthRevoked):
        _process(pipeline, payload)

    assert integration.status == STATUS_ERROR
    assert "401" in integration.error_reason
    actions = [r.action_type for r in pipeline.audit.records]
    assert actions == ["key_revoked"]
    [dead] = pipeline.dead_letters.list()[0]
    assert dead.error_status == 401
    assert dead.tenant_id == "tenant-a"
    assert pipeline.threads.messages == []

    outcome = _process(pipeline, payload, message_id="queue-2")

    assert outcome.status == "replied"
    assert outcome.tenant_id == "default"
    assert pipeline.sender.sent[-1][2].decrypted_credential is None


def test_failed_send_still_records_thread_and_audit(pipeline):
    pipeline.sender.fail_status = 503

    outcome = _process(pipeline, roam_message("When is the filing due?"))

    assert outcome.status == "errored"
    assert outcome.reason == "send_failed"
    assert [m.role for m in pipeline.threads.messages] == ["user", "assistant"]
    assert pipeline.threads.messages[1].metadata["delivered"] is False
    assert pipeline.audit.records[0].metadata["delivered"] is False


def test_malformed_known_event_is_dead_lettered_and_dropped(pipeline):
    payload = {"type": "message.created", "data": {"id": "m-1", "text": "hi"}}

    outcome = _process(pipeline, payload)

    assert outcome.status == "dropped"
    [dead] = pipeline.dead_letters.list()[0]
    assert dead.tenant_id == "unknown"
    assert dead.error_status == 400
    assert decode_payload(dead.payload).startswith(b'{"type": "message.created"')


def test_non_json_body_is_dropped(pipeline):
    event = InboundEvent(
        raw_bytes=b"not json",
        channel_type="roam",
        decoded_type="chat.message.dm",
        queue_message_id="q-bad",
    )

    assert pipeline.processor.process(event).status == "dropped"
    assert pipeline.sender.sent == []


def test_unsupported_event_type_is_ignored_without_dead_letter(pipeline):
    payload = {"type": "chat.reaction.added", "data": {"emoji": "+1"}}

    outcome = _process(pipeline, payload)

    assert outcome.status == "ignored"
    assert outcome.reason == "unsupported"
    assert pipeline.dead_letters.list()[1] == 0


def test_missing_user_is_dropped_and_dead_lettered(pipeline):
    pipeline.connect("roam", "chat-1", user_id="")

    outcome = _process(pipeline, roam_message("When is the filing due?"))

    assert outcome.status == "dropped"
    assert outcome.reason == "no_user"
    assert pipeline.sender.sent == []
    assert pipeline.dead_letters.list()[1] == 1


def test_unexpected_failure_releases_claim_and_propagates(pipeline):
    def _explode(message, text, tenant):
        raise RuntimeError("socket closed")

    original_send = pipeline.sender.send
    pipeline.sender.send = _explode
    payload = roam_message("When is the filing due?")

    with pytest.raises(RuntimeError):
        _process(pipeline, payload)

    assert pipeline.dead_letters.list()[1] == 1
    assert not pipeline.kv.exists("dedup:default:roam:msg-1")

    pipeline.sender.send = original_send
    assert _process(pipeline, payload).status == "replied"


def test_whatsapp_vonage_message_is_answered(pipeline):
    payload = {
        "message_uuid": "wa-1",
        "from": "+15551234567",
        "to": "14155550100",
        "channel": "whatsapp",
        "message_type": "text",
        "text": "What is the deadline?",
        "profile": {"name": "Ana"},
        "timestamp": "2024-05-29T10:00:00Z",
    }

    outcome = _process(pipeline, payload, channel="whatsapp")

    assert outcome.status == "replied"
    message, text, _ = pipeline.sender.sent[0]
    assert message.channel_routing_key == "15551234567"
    assert message.metadata["recipient"] == "14155550100"
    assert pipeline.sender.typing == [message]
    assert pipeline.audit.records[0].action_type == "whatsapp_query"


def test_redelivery_without_id_or_timestamp_is_sent_once(pipeline):
    payload = roam_message("hello?", message_id=None, timestamp=None)

    outcomes = [_process(pipeline, payload, message_id="queue-7") for _ in range(3)]

    assert [o.status for o in outcomes] == ["replied", "duplicate", "duplicate"]
    assert len(pipeline.sender.sent) == 1
    assert pipeline.kv.exists("dedup:default:roam:chat-1:delivery:queue-7")


def test_meta_message_with_unexpected_shape_is_dead_lettered(pipeline):
    payload = {
        "object": "whatsapp_business_account",
        "entry": [
            {"changes": [{"value": {"messages": [{"from": "1555", "id": "wamid.3", "type": "text", "text": "hi"}]}}]}
        ],
    }

    outcome = _process(pipeline, payload, channel="whatsapp", event_type="meta.inbound")

    assert outcome.status == "dropped"
    assert outcome.reason == "malformed"
    [dead] = pipeline.dead_letters.list()[0]
    assert dead.tenant_id == "unknown"
    assert pipeline.sender.sent == []


def test_failure_before_handling_is_dead_lettered_and_propagates(pipeline, monkeypatch):
    def _unavailable(key, ttl_seconds):
        raise ConnectionError("kv store unavailable")

    monkeypatch.setattr(pipeline.kv, "claim", _unavailable)

    with pytest.raises(ConnectionError):
        _process(pipeline, roam_message("When is the filing due?"))

    [dead] = pipeline.dead_letters.list()[0]
    assert dead.tenant_id == "default"
    assert dead.error_message == "kv store unavailable"
    assert pipeline.sender.sent == []


def test_empty_answer_is_reported_as_processing_issue(pipeline):
    pipeline.answers.result = AnswerResult(text="  ", confidence_score=None)

    outcome = _process(pipeline, roam_message("When is the filing due?"))

    assert outcome.status == "errored"
    assert outcome.reason == ErrorKind.INTERNAL_ERROR.value
    assert isinstance(outcome.decision, Error)
    _, text, _ = pipeline.sender.sent[0]
    assert text.startswith("⚠ Processing issue")
