import json
from dataclasses import replace

import pytest
import requests

from relay.delivery.roam_client import RoamClient
from relay.delivery.sender import ReplySender
from relay.delivery.whatsapp_client import WhatsAppClient
from relay.errors import ChannelApiError
from relay.events.models import NormalizedMessage, TenantContext


class _FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.text = json.dumps(payload) if payload is not None else ""
        self.content = self.text.encode()

    def json(self):
        if self._payload is None:
            raise ValueError("no body")
        return self._payload


class _FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class _InlineExecutor:
    def submit(self, fn, *args, **kwargs):
        fn(*args, **kwargs)


def _message(channel="roam", routing_key="chat-1", thread_ref=None):
    return NormalizedMessage(
        channel=channel,
        external_message_id="m-1",
        channel_routing_key=routing_key,
        sender_id="user-1",
        text="hi",
        thread_ref=thread_ref,
    )


def _tenant(credential=None):
    return TenantContext(tenant_id="tenant-a", user_id="user-a", decrypted_credential=credential)


def test_roam_retries_transient_failures(settings):
    sleeps = []
    session = _FakeSession(
        _FakeResponse(503, {"error": "busy"}),
        requests.ConnectionError("reset"),
        _FakeResponse(200, {"id": "out-1"}),
    )
    client = RoamClient(settings, session=session, sleep=sleeps.append)

    data = client.send_message("chat-1", "hello", thread_id="t-1")

    assert data == {"id": "out-1"}
    assert sleeps == [0.5, 1.0]
    assert len(session.calls) == 3
    method, url, kwargs = session.calls[0]
    assert method == "POST"
    assert url == "https://api.ro.am/v1/messages"
    assert kwargs["json"] == {"addressId": "chat-1", "text": "hello", "thread_id": "t-1"}
    assert kwargs["headers"]["Authorization"] == "Bearer platform-roam-key"


def test_roam_gives_up_after_three_attempts(settings):
    session = _FakeSession(*[_FakeResponse(502, {"error": "down"}) for _ in range(3)])
    client = RoamClient(settings, session=session, sleep=lambda _: None)

    with pytest.raises(ChannelApiError) as excinfo:
        client.send_message("chat-1", "hello")

    assert excinfo.value.status == 502
    assert len(session.calls) == 3


def test_roam_unreachable_after_retries_raises_last_error(settings):
    session = _FakeSession(*[requests.ConnectionError(f"reset {n}") for n in range(3)])
    client = RoamClient(settings, session=session, sleep=lambda _: None)

    with pytest.raises(ChannelApiError) as excinfo:
        client.send_message("chat-1", "hello")

    assert excinfo.value.status == 503
    assert "reset 2" in str(excinfo.value)


def test_roam_does_not_retry_auth_failures(settings):
    session = _FakeSession(_FakeResponse(401, {"error": {"code": "invalid_key"}}))
    client = RoamClient(settings, session=session, sleep=lambda _: None)

    with pytest.raises(ChannelApiError) as excinfo:
        client.send_message("chat-1", "hello", api_key="tenant-key")

    assert excinfo.value.is_auth_failure
    assert excinfo.value.code == "invalid_key"
    assert session.calls[0][2]["headers"]["Authorization"] == "Bearer tenant-key"
    assert len(session.calls) == 1


def test_roam_without_any_key_is_a_config_error(settings):
    client = RoamClient(replace(settings, roam_api_key=None), session=_FakeSession())

    with pytest.raises(ChannelApiError) as excinfo:
        client.send_typing("chat-1")

    assert excinfo.value.code == "CONFIG_ERROR"


def test_vonage_send_uses_basic_auth(settings):
    session = _FakeSession(_FakeResponse(202, {"message_uuid": "uuid-1"}))
    client = WhatsAppClient(settings, session=session)

    data = client.send_text("+15551234567", "hello")

    assert data == {"id": "uuid-1"}
    [(method, url, kwargs)] = session.calls
    assert url == settings.vonage_messages_url
    assert kwargs["auth"] == ("platform-vonage-key", "platform-vonage-secret")
    assert kwargs["json"] == {
        "message_type": "text",
        "text": "hello",
        "to": "15551234567",
        "from": "14155550100",
        "channel": "whatsapp",
    }


def test_vonage_tenant_credential_is_split(settings):
    session = _FakeSession(_FakeResponse(202, {"message_uuid": "uuid-1"}))

    WhatsAppClient(settings, session=session).send_text("1555", "hi", credential="key-a:secret-a")

    assert session.calls[0][2]["auth"] == ("key-a", "secret-a")


def test_meta_send(settings):
    meta = replace(settings, whatsapp_provider="meta", meta_access_token="meta-token", meta_phone_number_id="pn-1")
    session = _FakeSession(_FakeResponse(200, {"messages": [{"id": "wamid.out"}]}))

    data = WhatsAppClient(meta, session=session).send_text("15551234567", "hello")

    assert data == {"id": "wamid.out"}
    _, url, kwargs = session.calls[0]
    assert url == "https://graph.facebook.com/v19.0/pn-1/messages"
    assert kwargs["headers"]["Authorization"] == "Bearer meta-token"
    assert kwargs["json"]["text"] == {"body": "hello"}


def test_whatsapp_errors_carry_status(settings):
    session = _FakeSession(_FakeResponse(401, {"title": "Unauthorized"}), requests.Timeout("slow"))
    client = WhatsAppClient(settings, session=session)

    with pytest.raises(ChannelApiError) as unauthorized:
        client.send_text("1555", "hi")
    with pytest.raises(ChannelApiError) as unreachable:
        client.send_text("1555", "hi")

    assert unauthorized.value.status == 401
    assert unreachable.value.status == 503


def test_sender_reports_success(settings):
    session = _FakeSession(_FakeResponse(200, {"id": "out-9"}))
    sender = ReplySender(
        settings, roam=RoamClient(settings, session=session), executor=_InlineExecutor()
    )

    result = sender.send(_message(thread_ref="t-1"), "hello", _tenant("tenant-key"))

    assert result.success
    assert result.external_message_id == "out-9"
    assert result.used_tenant_credential
    assert session.calls[0][2]["json"]["thread_id"] == "t-1"


def test_sender_maps_auth_failures(settings):
    session = _FakeSession(_FakeResponse(401, {"error": "revoked"}))
    sender = ReplySender(settings, roam=RoamClient(settings, session=session))

    result = sender.send(_message(), "hello", _tenant("tenant-key"))

    assert not result.success
    assert result.status == 401
    assert result.auth_failed
    assert result.used_tenant_credential


def test_sender_routes_whatsapp(settings):
    session = _FakeSession(_FakeResponse(202, {"message_uuid": "uuid-2"}))
    sender = ReplySender(settings, whatsapp=WhatsAppClient(settings, session=session))

    result = sender.send(_message("whatsapp", "15551234567"), "hello", _tenant())

    assert result.success
    assert result.external_message_id == "uuid-2"
    assert not result.used_tenant_credential


def test_sender_rejects_unknown_channel(settings):
    result = ReplySender(settings).send(_message("telegram"), "hello", _tenant())

    assert not result.success


def test_typing_failures_are_swallowed(settings):
    session = _FakeSession(_FakeResponse(403, {"error": "forbidden"}))
    sender = ReplySender(
        settings, roam=RoamClient(settings, session=session), executor=_InlineExecutor()
    )

    sender.send_typing(_message(), _tenant())
    sender.send_typing(_message("whatsapp"), _tenant())

    [(_, url, kwargs)] = session.calls
    assert url.endswith("/chat.typing")
    assert kwargs["json"] == {"chat": "chat-1"}
