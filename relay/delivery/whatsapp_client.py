"""Outbound WhatsApp messages through Vonage or the Meta Cloud API."""

from __future__ import annotations

import logging
from typing import Any

import requests

from ..config import RelaySettings, get_settings
from ..errors import ChannelApiError

logger = logging.getLogger(__name__)


class WhatsAppClient:
    """Send plain-text WhatsApp messages.

    Tenant credentials for Vonage are stored as ``"api_key:api_secret"``; for
    Meta they are the bearer access token.
    """

    def __init__(
        self,
        settings: RelaySettings | None = None,
        *,
        session: requests.Session | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._session = session or requests.Session()

    def send_text(self, to: str, text: str, *, credential: str | None = None) -> dict[str, Any]:
        if self._settings.whatsapp_provider == "meta":
            return self._send_meta(to, text, credential)
        return self._send_vonage(to, text, credential)

    def _send_vonage(self, to: str, text: str, credential: str | None) -> dict[str, Any]:
        if credential and ":" in credential:
            api_key, _, api_secret = credential.partition(":")
        else:
            api_key = self._settings.vonage_api_key or ""
            api_secret = self._settings.vonage_api_secret or ""
        sender = self._settings.vonage_whatsapp_number
        if not api_key or not api_secret or not sender:
            raise ChannelApiError("Vonage credentials not configured", status=500, code="CONFIG_ERROR")
        payload = {
            "message_type": "text",
            "text": text,
            "to": to.lstrip("+"),
            "from": sender.lstrip("+"),
            "channel": "whatsapp",
        }
        data = self._post(
            self._settings.vonage_messages_url,
            payload,
            auth=(api_key, api_secret),
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )
        return {"id": data.get("message_uuid")}

    def _send_meta(self, to: str, text: str, credential: str | None) -> dict[str, Any]:
        token = credential or self._settings.meta_access_token
        phone_number_id = self._settings.meta_phone_number_id
        if not token or not phone_number_id:
            raise ChannelApiError("Meta WhatsApp credentials not configured", status=500, code="CONFIG_ERROR")
        payload = {
            "messaging_product": "whatsapp",
            "to": to.lstrip("+"),
            "type": "text",
            "text": {"body": text},
        }
        data = self._post(
            f"{self._settings.meta_graph_url}/{phone_number_id}/messages",
            payload,
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
        )
        messages = data.get("messages") or [{}]
        return {"id": messages[0].get("id")}

    def _post(self, url: str, payload: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._session.request(
                "POST",
                url,
                json=payload,
                timeout=self._settings.send_timeout_seconds,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise ChannelApiError(f"WhatsApp API unreachable: {exc}", status=503) from exc
        if not 200 <= response.status_code < 300:
            raise ChannelApiError(
                f"WhatsApp API {response.status_code}: {(response.text or '')[:200]}",
                status=response.status_code,
            )
        try:
            return response.json()
        except ValueError:
            return {}


__all__ = ["WhatsAppClient"]
