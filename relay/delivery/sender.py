"""Deliver formatted replies back to the originating channel."""

from __future__ import annotations

import logging
from concurrent.futures import Executor, ThreadPoolExecutor

from ..config import RelaySettings, get_settings
from ..errors import ChannelApiError
from ..events.models import NormalizedMessage, SendResult, TenantContext
from .roam_client import RoamClient
from .whatsapp_client import WhatsAppClient

logger = logging.getLogger(__name__)


class ReplySender:
    """Send replies with the tenant credential, else the platform default.

    Channel API failures are reported through :class:`SendResult` and never
    raised; the caller decides what a 401 means for the tenant.
    """

    def __init__(
        self,
        settings: RelaySettings | None = None,
        *,
        roam: RoamClient | None = None,
        whatsapp: WhatsAppClient | None = None,
        executor: Executor | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._roam = roam or RoamClient(self._settings)
        self._whatsapp = whatsapp or WhatsAppClient(self._settings)
        self._executor = executor or ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="relay-typing"
        )

    def send(self, message: NormalizedMessage, text: str, tenant: TenantContext) -> SendResult:
        credential = tenant.decrypted_credential
        try:
            if message.channel == "roam":
                data = self._roam.send_message(
                    message.channel_routing_key,
                    text,
                    thread_id=message.thread_ref,
                    api_key=credential,
                )
                external_id = data.get("id") or data.get("message_id")
            elif message.channel == "whatsapp":
                data = self._whatsapp.send_text(message.channel_routing_key, text, credential=credential)
                external_id = data.get("id")
            else:
                return SendResult(success=False, error=f"Unsupported channel {message.channel}")
        except ChannelApiError as exc:
            logger.error(
                "%s send to %s failed (status=%s, tenant credential=%s): %s",
                message.channel,
                message.channel_routing_key,
                exc.status,
                bool(credential),
                exc,
            )
            return SendResult(
                success=False,
                error=str(exc),
                status=exc.status,
                used_tenant_credential=bool(credential),
            )
        logger.info("Sent %s reply to %s", message.channel, message.channel_routing_key)
        return SendResult(
            success=True,
            external_message_id=str(external_id) if external_id else None,
            used_tenant_credential=bool(credential),
        )

    def send_typing(self, message: NormalizedMessage, tenant: TenantContext) -> None:
        """Show a typing indicator without waiting for, or failing on, the call."""

        if message.channel != "roam":
            return
        self._executor.submit(
            self._typing, message.channel_routing_key, tenant.decrypted_credential
        )

    def _typing(self, chat_id: str, api_key: str | None) -> None:
        try:
            self._roam.send_typing(chat_id, api_key=api_key)
        except ChannelApiError as exc:
            logger.debug("Typing indicator for %s failed: %s", chat_id, exc)


__all__ = ["ReplySender"]
